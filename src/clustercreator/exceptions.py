"""Exceptions raised by ClusterCreator managers."""

from typing import List, Optional


class ClusterCreatorError(Exception):
    """Base class for all ClusterCreator errors."""


class ConfigError(ClusterCreatorError):
    """Raised when required configuration is missing or invalid."""


class CommandNotFoundError(ClusterCreatorError):
    """Raised when a required binary is not on PATH."""

    def __init__(self, command: str, hint: Optional[str] = None) -> None:
        message = f"Required command '{command}' not found"
        if hint:
            message = f"{message}. {hint}"
        super().__init__(message)
        self.command = command


class CommandError(ClusterCreatorError):
    """Raised when an external command exits non-zero."""

    def __init__(self, cmd: List[str], returncode: int, stderr: str = "") -> None:
        self.cmd = cmd
        self.returncode = returncode
        self.stderr = stderr
        detail = f": {stderr.strip()}" if stderr and stderr.strip() else ""
        super().__init__(f"Command '{' '.join(cmd)}' failed with exit code {returncode}{detail}")


class RemoteCommandError(ClusterCreatorError):
    """Raised when a command run over SSH fails."""

    def __init__(self, host: str, command: str, exit_code: int, stderr: str = "") -> None:
        self.host = host
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        super().__init__(f"[{host}] '{command}' failed with exit code {exit_code}: {stderr}".rstrip(": "))


class OperationCancelled(ClusterCreatorError):
    """Raised when the user declines a confirmation prompt.

    ``exit_code`` mirrors what the CLI returns; some cancellations are a clean
    exit (0) and some are treated as a failure (1).
    """

    def __init__(self, message: str = "Operation canceled.", exit_code: int = 1) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class SSHConnectionError(ClusterCreatorError):
    """Raised when an SSH session cannot be opened."""

    def __init__(self, host: str, reason: str) -> None:
        self.host = host
        super().__init__(f"Cannot connect to {host} over SSH: {reason}")
