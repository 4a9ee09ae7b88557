"""Run a command with administrator privileges through the OS prompt.

The elevated process's exit code is not visible to the launcher (Windows
``Start-Process -Verb RunAs`` in particular swallows it), so the command is
wrapped in a disposable script that writes a ``done`` or ``error`` marker
file next to itself. The launcher only reports whether the prompt was
accepted; the markers report what the command did.

All artifacts live in a private temporary directory that is removed on
every exit path.

Usage:
    from config.elevated import run_elevated

    run_elevated(['netsh', 'advfirewall', 'show', 'allprofiles'])
"""
import shlex
import subprocess
import sys
import tempfile
import time
from pathlib import Path
from typing import List, Optional, Sequence, Union

from config.constants import INTERVALS, STORAGE
from config.exceptions import ElevationCancelled, ElevationCommandFailed
from config.logging_config import get_logger
from config.subprocess_cache import safe_run

logger = get_logger(__name__)

DONE_MARKER = "done"
ERROR_MARKER = "error"


def _command_text(command: Union[str, Sequence[str]], windows: bool) -> str:
    if isinstance(command, str):
        return command
    if windows:
        return subprocess.list2cmdline(list(command))
    return shlex.join(list(command))


def build_script(command: Union[str, Sequence[str]], done_file: Path,
                 error_file: Path, windows: bool) -> str:
    """Build the wrapper script that records the command's outcome."""
    text = _command_text(command, windows)
    if windows:
        return (
            "@echo off\r\n"
            f"{text}\r\n"
            "if %ERRORLEVEL% NEQ 0 (\r\n"
            f"  echo %ERRORLEVEL% > \"{error_file}\"\r\n"
            ") else (\r\n"
            f"  echo 0 > \"{done_file}\"\r\n"
            ")\r\n"
        )
    return (
        "#!/bin/sh\n"
        f"{text}\n"
        "rc=$?\n"
        "if [ \"$rc\" -ne 0 ]; then\n"
        f"  echo \"$rc\" > {shlex.quote(str(error_file))}\n"
        "else\n"
        f"  echo 0 > {shlex.quote(str(done_file))}\n"
        "fi\n"
    )


def build_launcher(script: Path, platform: str) -> List[str]:
    """Build the command that runs ``script`` behind the elevation prompt."""
    if platform == "win32":
        return [
            "powershell", "-NoProfile", "-Command",
            f"Start-Process -FilePath '{script}' -Verb RunAs -WindowStyle Hidden -Wait",
        ]
    if platform == "darwin":
        inner = f"/bin/sh {shlex.quote(str(script))}"
        inner = inner.replace("\\", "\\\\").replace('"', '\\"')
        return ["osascript", "-e", f'do shell script "{inner}" with administrator privileges']
    return ["pkexec", "/bin/sh", str(script)]


def _read_exit_code(marker: Path) -> Optional[int]:
    try:
        return int(marker.read_text(encoding="utf-8", errors="ignore").strip())
    except (OSError, ValueError):
        return None


def run_elevated(command: Union[str, Sequence[str]], timeout: Optional[float] = None,
                 platform: Optional[str] = None) -> None:
    """Run ``command`` elevated and block until it finishes.

    May show a user-facing privilege prompt.

    Args:
        command: Command as an argument list, or a preformatted command line.
        timeout: Seconds to wait for the prompt and the command together.
        platform: Override ``sys.platform`` (tests).

    Raises:
        ElevationCancelled: The prompt was dismissed or the launcher failed
            before the script reported anything.
        ElevationCommandFailed: The script ran and the command exited nonzero,
            or nothing was reported although the launcher succeeded.
        CommandError: The launcher timed out or could not be started.
    """
    platform = platform or sys.platform
    windows = platform == "win32"
    timeout = timeout or INTERVALS.ELEVATION_TIMEOUT_SECONDS

    with tempfile.TemporaryDirectory(prefix=STORAGE.ELEVATION_TEMP_PREFIX) as tmp:
        workdir = Path(tmp)
        script = workdir / ("elevated.bat" if windows else "elevated.sh")
        done_file = workdir / DONE_MARKER
        error_file = workdir / ERROR_MARKER

        script.write_text(build_script(command, done_file, error_file, windows), encoding="utf-8")
        if not windows:
            script.chmod(0o700)

        launcher = build_launcher(script, platform)
        logger.info(f"Requesting elevation for: {_command_text(command, windows)}")
        result = safe_run(launcher, timeout=timeout)

        succeeded = done_file.exists()
        failed = error_file.exists()
        if not succeeded and not failed:
            # Let a slow elevated process finish writing its marker.
            time.sleep(INTERVALS.ELEVATION_FLUSH_SECONDS)
            succeeded = done_file.exists()
            failed = error_file.exists()

        if succeeded:
            logger.debug("Elevated command completed")
            return

        if failed:
            exit_code = _read_exit_code(error_file)
            logger.warning(f"Elevated command failed with exit code {exit_code}")
            raise ElevationCommandFailed(
                "Command failed with non-zero exit code", exit_code=exit_code
            )

        if result.returncode != 0:
            logger.info("Elevation was cancelled or failed")
            raise ElevationCancelled(
                "Elevation was cancelled or failed",
                {"launcher_returncode": result.returncode},
            )

        raise ElevationCommandFailed("Elevated command did not report completion")
