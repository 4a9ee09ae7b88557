"""Exception hierarchy for the NetPulse engine.

Pipeline-level failures surface to callers as one of these types, each with
a human-readable message that the UI shows verbatim.
"""

from typing import Optional


class NetPulseError(Exception):
    """Base exception for all engine errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dictionary with additional error context.
    """

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class CommandError(NetPulseError):
    """An external OS command failed.

    Raised on nonzero exit, timeout, a missing executable, or a command
    outside the allowlist. The message is the command's stderr when it
    produced any, otherwise a description of the failure.

    Attributes:
        command: The command that failed.
        returncode: Exit code if available.
        stdout: Standard output if available.
        stderr: Standard error if available.

    Examples:
        >>> raise CommandError("arp: not found", command=["arp", "-a"], returncode=127)
    """

    def __init__(
        self,
        message: str,
        command: Optional[list] = None,
        returncode: Optional[int] = None,
        stdout: Optional[str] = None,
        stderr: Optional[str] = None,
        details: Optional[dict] = None,
    ):
        details = details or {}
        if command:
            details["command"] = command
        if returncode is not None:
            details["returncode"] = returncode
        if stdout:
            details["stdout"] = stdout[:500]  # Truncate long output
        if stderr:
            details["stderr"] = stderr[:500]

        super().__init__(message, details)
        self.command = command
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class ElevationError(NetPulseError):
    """Base class for privileged (elevated) execution failures."""

    pass


class ElevationCancelled(ElevationError):
    """The user dismissed the OS privilege prompt, or it never completed."""

    pass


class ElevationCommandFailed(ElevationError):
    """The elevated command ran but reported failure.

    Attributes:
        exit_code: Exit code recorded by the elevated script, if any.
    """

    def __init__(self, message: str, exit_code: Optional[int] = None,
                 details: Optional[dict] = None):
        details = details or {}
        if exit_code is not None:
            details["exit_code"] = exit_code
        super().__init__(message, details)
        self.exit_code = exit_code


class SpeedTestError(NetPulseError):
    """Base class for speed test failures."""

    pass


class PingFailed(SpeedTestError):
    """No ping attempt succeeded."""

    pass


class DownloadFailed(SpeedTestError):
    """The download stage transferred zero bytes."""

    pass


class UploadFailed(SpeedTestError):
    """The upload stage transferred zero bytes."""

    pass


class AlreadyRunning(SpeedTestError):
    """A speed test is already in flight in this process."""

    pass


class DataAccessFailed(NetPulseError):
    """The traffic estimator could not read any data source.

    Attributes:
        requires_elevated_privilege: True when the OS denied access and
            running with elevated privilege would likely resolve it.
    """

    def __init__(self, message: str, requires_elevated_privilege: bool = False,
                 details: Optional[dict] = None):
        details = details or {}
        details["requires_elevated_privilege"] = requires_elevated_privilege
        super().__init__(message, details)
        self.requires_elevated_privilege = requires_elevated_privilege


class DiscoveryError(NetPulseError):
    """Device discovery hit an unrecoverable error."""

    pass


class ConfigurationError(NetPulseError):
    """Invalid engine settings.

    Examples:
        >>> raise ConfigurationError("Invalid traffic interval", {"value": -1})
    """

    pass
