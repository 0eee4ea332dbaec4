"""Local command execution for the external tools ClusterCreator drives."""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

from clustercreator.exceptions import CommandError, CommandNotFoundError

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class CommandRunner:
    """Thin wrapper around subprocess.run.

    Every manager shells out through one of these so tests can swap it for a
    fake and so that failures surface as CommandError instead of
    CalledProcessError.
    """

    def __init__(self, env: Optional[Dict[str, str]] = None) -> None:
        self.env = env or {}

    def run(
        self,
        cmd: List[str],
        check: bool = True,
        capture: bool = True,
        cwd: Optional[PathLike] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        merged_env = os.environ.copy()
        merged_env.update(self.env)
        if env:
            merged_env.update(env)

        logger.debug(f"Running: {' '.join(cmd)}" + (f" (cwd={cwd})" if cwd else ""))
        try:
            result = subprocess.run(
                cmd,
                capture_output=capture,
                text=True,
                cwd=str(cwd) if cwd else None,
                env=merged_env,
                timeout=timeout,
                input=input,
            )
        except FileNotFoundError:
            raise CommandNotFoundError(cmd[0])
        except subprocess.TimeoutExpired:
            logger.error(f"Timeout running {cmd[0]} after {timeout}s")
            raise CommandError(cmd, -1, f"timed out after {timeout}s")

        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr or "")
        return result

    def succeeds(self, cmd: List[str], **kwargs) -> bool:
        """Run a command and report only whether it exited 0."""
        try:
            return self.run(cmd, check=False, **kwargs).returncode == 0
        except (CommandNotFoundError, CommandError):
            return False

    def output(self, cmd: List[str], **kwargs) -> str:
        """Run a command (check=True) and return stripped stdout."""
        return (self.run(cmd, **kwargs).stdout or "").strip()

    @staticmethod
    def has_command(name: str) -> bool:
        return shutil.which(name) is not None

    def ensure_command(self, name: str, hint: Optional[str] = None) -> None:
        if not self.has_command(name):
            raise CommandNotFoundError(name, hint)
