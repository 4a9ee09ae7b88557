"""Tests for engine/platform_probe.py"""
from collections import namedtuple
from unittest.mock import MagicMock, patch

import psutil
import pytest

from config.exceptions import CommandError, DataAccessFailed
from engine.platform_probe import (
    LinuxProbe,
    MacProbe,
    WindowsProbe,
    get_platform_probe,
)

Addr = namedtuple("Addr", "ip port")
Conn = namedtuple("Conn", "fd family type laddr raddr status pid")


def _conn(remote_ip, status="ESTABLISHED", pid=42, port=443):
    return Conn(-1, 2, 1, Addr("192.168.1.50", 50000), Addr(remote_ip, port) if remote_ip else (),
                status, pid)


class TestProbeSelection:
    """Tests for get_platform_probe."""

    @pytest.mark.parametrize("platform,cls", [
        ("win32", WindowsProbe),
        ("darwin", MacProbe),
        ("freebsd13", MacProbe),
        ("linux", LinuxProbe),
    ])
    def test_selects_by_platform(self, platform, cls):
        assert isinstance(get_platform_probe(platform), cls)


class TestArpParsing:
    """Tests for ARP output parsing per OS."""

    def test_windows(self, windows_arp_output):
        entries = WindowsProbe().parse_arp(windows_arp_output)
        assert [(e.ip, e.mac, e.entry_type) for e in entries] == [
            ("192.168.1.1", "00:11:22:33:44:55", "dynamic"),
            ("192.168.1.20", "aa:bb:cc:dd:ee:01", "dynamic"),
            ("192.168.1.30", "aa:bb:cc:dd:ee:02", "static"),
        ]

    def test_macos(self, mac_arp_output):
        entries = MacProbe().parse_arp(mac_arp_output)
        assert [(e.ip, e.mac, e.entry_type) for e in entries] == [
            ("192.168.1.1", "00:11:22:33:44:55", "dynamic"),
            ("192.168.1.20", "aa:bb:cc:dd:ee:01", "dynamic"),
            ("192.168.1.50", "3c:22:fb:00:00:01", "static"),
        ]

    def test_linux_ip_neigh(self, linux_neigh_output):
        entries = LinuxProbe().parse_arp(linux_neigh_output)
        assert [(e.ip, e.mac, e.entry_type) for e in entries] == [
            ("192.168.1.1", "00:11:22:33:44:55", "dynamic"),
            ("192.168.1.20", "aa:bb:cc:dd:ee:01", "dynamic"),
            ("192.168.1.30", "aa:bb:cc:dd:ee:02", "static"),
        ]

    def test_linux_arp_fallback_format(self):
        output = (
            "? (192.168.1.1) at 00:11:22:33:44:55 [ether] on eth0\n"
            "? (192.168.1.9) at 00:11:22:33:44:66 [ether] PERM on eth0\n"
            "? (192.168.1.7) at <incomplete> on eth0\n"
        )
        entries = LinuxProbe().parse_arp(output)
        assert [(e.ip, e.entry_type) for e in entries] == [
            ("192.168.1.1", "dynamic"), ("192.168.1.9", "static"),
        ]

    def test_all_macs_normalized_and_broadcast_excluded(self, windows_arp_output, mac_arp_output,
                                                        linux_neigh_output):
        for probe, output in ((WindowsProbe(), windows_arp_output),
                              (MacProbe(), mac_arp_output),
                              (LinuxProbe(), linux_neigh_output)):
            for entry in probe.parse_arp(output):
                assert entry.mac == entry.mac.lower()
                assert "-" not in entry.mac
                assert entry.mac != "ff:ff:ff:ff:ff:ff"

    def test_read_arp_table_dedupes_by_ip(self):
        output = (
            "  192.168.1.1           00-11-22-33-44-55     dynamic\n"
            "  192.168.1.1           00-11-22-33-44-55     dynamic\n"
        )
        with patch("engine.platform_probe.run_with_fallback", return_value=output):
            entries = WindowsProbe().read_arp_table()
        assert len(entries) == 1

    def test_read_arp_table_command_failure_is_empty(self):
        with patch("engine.platform_probe.run_with_fallback", return_value=None):
            assert LinuxProbe().read_arp_table() == []

    def test_linux_tries_ip_neigh_first(self):
        with patch("engine.platform_probe.run_with_fallback", return_value="") as mock_run:
            LinuxProbe().read_arp_table()
        commands = mock_run.call_args[0][0]
        assert commands[0] == ['ip', 'neigh', 'show']
        assert commands[1] == ['arp', '-an']


class TestConnectionParsing:
    """Tests for netstat/ss output parsing."""

    def test_windows_netstat(self):
        output = (
            "\nActive Connections\n\n"
            "  Proto  Local Address          Foreign Address        State           PID\n"
            "  TCP    192.168.1.50:50000     142.250.1.1:443        ESTABLISHED     4242\n"
            "  TCP    192.168.1.50:50001     151.101.1.1:443        TIME_WAIT       0\n"
            "  TCP    [::1]:50002            [::1]:8080             ESTABLISHED     17\n"
        )
        conns = WindowsProbe().parse_connections(output)
        assert [(c.remote_ip, c.remote_port, c.pid) for c in conns] == [("142.250.1.1", 443, 4242)]

    def test_macos_netstat(self):
        output = (
            "Active Internet connections\n"
            "Proto Recv-Q Send-Q  Local Address          Foreign Address        (state)\n"
            "tcp4       0      0  192.168.1.50.50000     142.250.1.1.443        ESTABLISHED\n"
            "tcp4       0      0  *.22                   *.*                    LISTEN\n"
            "tcp6       0      0  fe80::1%lo0.1024       fe80::1%lo0.50001      ESTABLISHED\n"
        )
        conns = MacProbe().parse_connections(output)
        assert [(c.remote_ip, c.remote_port) for c in conns] == [("142.250.1.1", 443)]

    def test_linux_netstat_and_ss(self):
        netstat = (
            "Proto Recv-Q Send-Q Local Address           Foreign Address         State\n"
            "tcp        0      0 192.168.1.50:50000      142.250.1.1:443         ESTABLISHED\n"
            "tcp6       0      0 ::ffff:192.168.1.50:22  ::ffff:151.101.1.1:5000 ESTABLISHED\n"
            "tcp        0      0 0.0.0.0:22              0.0.0.0:*               LISTEN\n"
        )
        ss = (
            "State  Recv-Q Send-Q Local Address:Port   Peer Address:Port Process\n"
            "ESTAB  0      0      192.168.1.50:50000  142.250.1.1:443\n"
        )
        assert [c.remote_ip for c in LinuxProbe().parse_connections(netstat)] == [
            "142.250.1.1", "151.101.1.1",
        ]
        assert [c.remote_ip for c in LinuxProbe().parse_connections(ss)] == ["142.250.1.1"]


class TestListConnections:
    """Tests for connection enumeration and its fallbacks."""

    def test_psutil_filters_to_established_remote_ipv4(self):
        conns = [
            _conn("142.250.1.1"),
            _conn("127.0.0.1"),
            _conn("0.0.0.0"),
            _conn("::ffff:151.101.1.1"),
            _conn("2001:db8::1"),
            _conn("8.8.8.8", status="TIME_WAIT"),
            _conn(None, status="LISTEN"),
        ]
        process = MagicMock()
        process.name.return_value = "chrome"
        with patch("psutil.net_connections", return_value=conns), \
                patch("psutil.Process", return_value=process):
            result = LinuxProbe().list_connections()
        assert [c.remote_ip for c in result] == ["142.250.1.1", "151.101.1.1"]
        assert all(c.process_name == "chrome" for c in result)

    def test_falls_back_to_netstat_when_denied(self):
        output = "tcp4  0  0  192.168.1.50.50000  142.250.1.1.443  ESTABLISHED\n"
        with patch("psutil.net_connections", side_effect=psutil.AccessDenied()), \
                patch("engine.platform_probe.run_command", return_value=output):
            result = MacProbe().list_connections()
        assert [c.remote_ip for c in result] == ["142.250.1.1"]

    def test_all_sources_fail_raises_with_privilege_hint(self):
        with patch("psutil.net_connections", side_effect=psutil.AccessDenied()), \
                patch("engine.platform_probe.run_command",
                      side_effect=CommandError("not found", command=["netstat"])):
            with pytest.raises(DataAccessFailed) as exc_info:
                LinuxProbe().list_connections()
        assert exc_info.value.requires_elevated_privilege is True

    def test_failure_without_denial_has_no_privilege_hint(self):
        with patch("psutil.net_connections", side_effect=OSError("boom")), \
                patch("engine.platform_probe.run_command",
                      side_effect=CommandError("not found", command=["netstat"])):
            with pytest.raises(DataAccessFailed) as exc_info:
                WindowsProbe().list_connections()
        assert exc_info.value.requires_elevated_privilege is False


class TestCounters:
    """Tests for interface counter collection."""

    def test_psutil_counters(self):
        per_nic = {"eth0": MagicMock(bytes_sent=100, bytes_recv=200)}
        with patch("psutil.net_io_counters", return_value=per_nic) as mock_counters:
            sample = LinuxProbe().read_counters()
        assert (sample.bytes_sent, sample.bytes_recv, sample.source) == (100, 200, "psutil")
        mock_counters.assert_called_once_with(pernic=True)

    @pytest.mark.parametrize("loopback", ["lo", "lo0", "Loopback Pseudo-Interface 1"])
    def test_loopback_traffic_excluded(self, loopback):
        per_nic = {
            loopback: MagicMock(bytes_sent=20_000_000, bytes_recv=20_000_000),
            "eth0": MagicMock(bytes_sent=100, bytes_recv=200),
            "wlan0": MagicMock(bytes_sent=50, bytes_recv=25),
        }
        with patch("psutil.net_io_counters", return_value=per_nic):
            sample = LinuxProbe().read_counters()
        assert (sample.bytes_sent, sample.bytes_recv) == (150, 225)

    def test_only_loopback_falls_back_to_commands(self):
        per_nic = {"lo": MagicMock(bytes_sent=1, bytes_recv=1)}
        with patch("psutil.net_io_counters", return_value=per_nic), \
                patch("engine.platform_probe.run_command",
                      side_effect=CommandError("not found", command=["ip"])):
            assert LinuxProbe().read_counters() is None

    def test_command_fallback(self):
        output = (
            "1: lo: <LOOPBACK,UP,LOWER_UP> mtu 65536\n"
            "    link/loopback 00:00:00:00:00:00 brd 00:00:00:00:00:00\n"
            "    RX:  bytes packets errors dropped  missed   mcast\n"
            "         9999      10      0       0       0       0\n"
            "    TX:  bytes packets errors dropped carrier collsns\n"
            "         9999      10      0       0       0       0\n"
            "2: eth0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500\n"
            "    link/ether 00:11:22:33:44:55 brd ff:ff:ff:ff:ff:ff\n"
            "    RX:  bytes packets errors dropped  missed   mcast\n"
            "         5000      50      0       0       0       0\n"
            "    TX:  bytes packets errors dropped carrier collsns\n"
            "         3000      30      0       0       0       0\n"
        )
        with patch("psutil.net_io_counters", side_effect=psutil.AccessDenied()), \
                patch("engine.platform_probe.run_command", return_value=output):
            probe = LinuxProbe()
            sample = probe.read_counters()
        assert (sample.bytes_sent, sample.bytes_recv, sample.source) == (3000, 5000, "ip")
        assert probe.counters_access_denied is True

    def test_unavailable_counters_return_none(self):
        with patch("psutil.net_io_counters", return_value=None), \
                patch("engine.platform_probe.run_command",
                      side_effect=CommandError("denied", command=["netstat"])):
            assert WindowsProbe().read_counters() is None

    def test_windows_netstat_e(self):
        output = (
            "Interface Statistics\n\n"
            "                           Received            Sent\n\n"
            "Bytes                    123456789       98765432\n"
            "Unicast packets             100000          90000\n"
        )
        assert WindowsProbe().parse_counters(output) == (98765432, 123456789)

    def test_macos_netstat_ib(self):
        output = (
            "Name       Mtu   Network       Address            Ipkts Ierrs     Ibytes    Opkts Oerrs     Obytes  Coll\n"
            "lo0        16384 <Link#1>                         12345     0    1234567    12345     0    1234567     0\n"
            "en0        1500  <Link#6>    aa:bb:cc:dd:ee:ff     1000     0    5000000      800     0     400000     0\n"
            "en0        1500  192.168.1     192.168.1.50         900     -    4000000      700     -     300000     -\n"
        )
        assert MacProbe().parse_counters(output) == (400000, 5000000)
