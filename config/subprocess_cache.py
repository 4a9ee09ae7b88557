"""External command execution with caching and safety checks.

This is the substrate every engine component uses to talk to the OS:
ARP tables, connection tables and interface counters all come from
diagnostic commands run here.

Security Note:
    Commands are argument lists validated against
    ALLOWED_SUBPROCESS_COMMANDS. Shell=False is always used to prevent
    shell injection.

Usage:
    from config.subprocess_cache import run_command, get_subprocess_cache

    # Run and get stdout, CommandError on failure
    output = run_command(['arp', '-a'], timeout=10.0)

    # With caching (for repeated calls)
    cache = get_subprocess_cache()
    result = cache.run(['arp', '-a'], ttl=2.0)
"""

# nosec B404 - subprocess usage is required and validated via allowlist
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from config.constants import ALLOWED_SUBPROCESS_COMMANDS, INTERVALS
from config.exceptions import CommandError
from config.logging_config import get_logger, log_subprocess_call

logger = get_logger(__name__)


@dataclass
class CachedResult:
    """Cached subprocess result with metadata."""

    result: subprocess.CompletedProcess
    timestamp: float
    duration_ms: float

    def is_expired(self, ttl: float) -> bool:
        return (time.monotonic() - self.timestamp) >= ttl


class SubprocessCache:
    """Caches subprocess results to reduce redundant system calls.

    Thread-safe. Only successful (exit code 0) results are cached, so a
    transient failure is retried on the next call.

    Example:
        >>> cache = SubprocessCache(default_ttl=2.0)
        >>> result = cache.run(['arp', '-a'])
        >>> # A second call within 2 seconds returns the cached result
        >>> result2 = cache.run(['arp', '-a'])
    """

    def __init__(self, default_ttl: float = 2.0, max_cache_size: int = 50):
        self.default_ttl = default_ttl
        self.max_cache_size = max_cache_size
        self._cache: Dict[Tuple[str, ...], CachedResult] = {}
        self._lock = threading.Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "errors": 0,
        }

    def _trim(self) -> None:
        """Drop the oldest entries once the cache grows past its limit."""
        if len(self._cache) > self.max_cache_size:
            oldest = sorted(self._cache.items(), key=lambda item: item[1].timestamp)
            for key, _ in oldest[: len(self._cache) - self.max_cache_size]:
                del self._cache[key]

    def run(
        self,
        cmd: List[str],
        ttl: Optional[float] = None,
        bypass_cache: bool = False,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> subprocess.CompletedProcess:
        """Run a command, reusing a recent result when one is cached.

        Args:
            cmd: Command and arguments as list.
            ttl: Time-to-live for cache in seconds. Uses default if not specified.
            bypass_cache: If True, always run the command fresh.
            timeout: Command timeout in seconds.
            **kwargs: Additional arguments passed to subprocess.run().

        Returns:
            subprocess.CompletedProcess with command output. A nonzero exit
            code is returned, not raised.

        Raises:
            CommandError: If the command times out or cannot be started.
        """
        ttl = ttl if ttl is not None else self.default_ttl
        timeout = timeout or INTERVALS.SUBPROCESS_TIMEOUT_SECONDS
        key = tuple(cmd)

        if not bypass_cache and ttl > 0:
            with self._lock:
                cached = self._cache.get(key)
                if cached and not cached.is_expired(ttl):
                    self._stats["hits"] += 1
                    logger.debug(f"Cache hit for: {cmd[0]}")
                    return cached.result

        with self._lock:
            self._stats["misses"] += 1
        start_time = time.monotonic()

        try:
            kwargs.setdefault("capture_output", True)
            kwargs.setdefault("text", True)
            kwargs["timeout"] = timeout

            result = subprocess.run(cmd, **kwargs)  # nosec B603 - Commands validated via allowlist
        except subprocess.TimeoutExpired as e:
            self._record_error()
            logger.warning(f"Command timed out after {timeout}s: {cmd}")
            raise CommandError(
                f"Command timed out after {timeout}s", command=cmd, details={"timeout": timeout}
            ) from e
        except FileNotFoundError as e:
            self._record_error()
            logger.debug(f"Command not found: {cmd[0]}")
            raise CommandError(f"Command not found: {cmd[0]}", command=cmd) from e
        except OSError as e:
            self._record_error()
            logger.error(f"Could not start {cmd[0]}: {e}")
            raise CommandError(f"Could not start {cmd[0]}: {e}", command=cmd) from e

        duration_ms = (time.monotonic() - start_time) * 1000
        log_subprocess_call(
            logger, cmd, result.returncode, duration_ms, success=(result.returncode == 0)
        )

        if result.returncode == 0:
            with self._lock:
                self._cache[key] = CachedResult(
                    result=result, timestamp=time.monotonic(), duration_ms=duration_ms
                )
                self._trim()

        return result

    def _record_error(self) -> None:
        with self._lock:
            self._stats["errors"] += 1

    def invalidate(self, cmd: Optional[List[str]] = None) -> None:
        """Invalidate cached results.

        Args:
            cmd: Specific command to invalidate. If None, clears entire cache.
        """
        with self._lock:
            if cmd is None:
                self._cache.clear()
            else:
                self._cache.pop(tuple(cmd), None)

    def get_stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = (self._stats["hits"] / total * 100) if total > 0 else 0
            return {
                **self._stats,
                "cache_size": len(self._cache),
                "hit_rate_percent": round(hit_rate, 1),
            }


# Global cache instance
_global_cache: Optional[SubprocessCache] = None
_global_cache_lock = threading.Lock()


def get_subprocess_cache() -> SubprocessCache:
    """Get or create the global subprocess cache."""
    global _global_cache
    with _global_cache_lock:
        if _global_cache is None:
            _global_cache = SubprocessCache()
        return _global_cache


def check_allowed(cmd: List[str]) -> None:
    """Raise CommandError unless the command's executable is allowlisted."""
    if not cmd:
        raise CommandError("Empty command", command=cmd)

    base_cmd = Path(cmd[0]).name
    if base_cmd.lower().endswith(".exe"):
        base_cmd = base_cmd[:-4]

    if base_cmd not in ALLOWED_SUBPROCESS_COMMANDS:
        raise CommandError(
            f"Command not in allowlist: {base_cmd}",
            command=cmd,
            details={"allowed": sorted(ALLOWED_SUBPROCESS_COMMANDS)},
        )


def safe_run(
    cmd: List[str], timeout: Optional[float] = None, ttl: float = 0, **kwargs
) -> subprocess.CompletedProcess:
    """Run an allowlisted command and return the completed process.

    Args:
        cmd: Command and arguments as list.
        timeout: Command timeout in seconds.
        ttl: Reuse a cached result younger than this many seconds (0 = never).
        **kwargs: Additional arguments passed to subprocess.run().

    Raises:
        CommandError: If the command is not allowed, times out or cannot start.
    """
    check_allowed(cmd)
    return get_subprocess_cache().run(
        cmd, ttl=ttl, bypass_cache=ttl <= 0, timeout=timeout, **kwargs
    )


def run_command(cmd: List[str], timeout: Optional[float] = None, ttl: float = 0) -> str:
    """Run an allowlisted command and return its stdout.

    Args:
        cmd: Command and arguments as list.
        timeout: Command timeout in seconds.
        ttl: Reuse a cached result younger than this many seconds (0 = never).

    Returns:
        The command's standard output.

    Raises:
        CommandError: On nonzero exit (message is stderr when present),
            timeout, or when the command cannot be run.

    Example:
        >>> output = run_command(['netstat', '-n', '-p', 'TCP'])
    """
    result = safe_run(cmd, timeout=timeout, ttl=ttl)
    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise CommandError(
            stderr or f"{cmd[0]} exited with code {result.returncode}",
            command=cmd,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
    return result.stdout or ""


def run_with_fallback(
    commands: List[List[str]], timeout: Optional[float] = None, ttl: float = 0
) -> Optional[str]:
    """Try multiple commands in order and return the first successful stdout.

    Useful for platform commands that are not installed everywhere.

    Returns:
        Output of the first command that succeeded, or None if all fail.

    Example:
        >>> output = run_with_fallback([
        ...     ['ip', 'neigh', 'show'],
        ...     ['arp', '-an'],
        ... ])
    """
    for cmd in commands:
        try:
            return run_command(cmd, timeout=timeout, ttl=ttl)
        except CommandError as e:
            logger.debug(f"Fallback command failed: {cmd[0]} - {e.message}")
            continue

    return None
