"""SSH access to Proxmox hosts and cluster VMs.

Same connection pattern as the other managers: one cached paramiko client per
host, commands return ``(stdout, stderr, exit_code)``.

Usage:
    with RemoteHost("10.11.12.136", user="root") as host:
        stdout, stderr, code = host.run("vgs gamma")
"""

import io
import logging
import os
from typing import Optional, Tuple

import paramiko

from clustercreator.config import Config
from clustercreator.exceptions import RemoteCommandError, SSHConnectionError

logger = logging.getLogger(__name__)


class RemoteHost:
    """A host reachable over SSH."""

    def __init__(
        self,
        hostname: str,
        user: str = "root",
        key_path: Optional[str] = None,
        timeout: int = 10,
    ) -> None:
        self.hostname = hostname
        self.user = user
        self.key_path = os.path.expanduser(key_path or Config.SSH_KEY_PATH)
        self.timeout = timeout
        self.ssh_client: Optional[paramiko.SSHClient] = None

    def __enter__(self) -> "RemoteHost":
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:
        self.close()

    @property
    def target(self) -> str:
        return f"{self.user}@{self.hostname}"

    def _get_ssh_client(self) -> paramiko.SSHClient:
        """Get or create the SSH connection."""
        if not self.ssh_client:
            client = paramiko.SSHClient()
            client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
            key_filename = self.key_path if os.path.exists(self.key_path) else None
            try:
                client.connect(
                    hostname=self.hostname,
                    username=self.user,
                    key_filename=key_filename,
                    timeout=self.timeout,
                )
            except (paramiko.SSHException, OSError) as e:
                client.close()
                raise SSHConnectionError(self.target, str(e)) from e
            self.ssh_client = client
        return self.ssh_client

    def run(self, command: str) -> Tuple[str, str, int]:
        """Execute a command. Returns (stdout, stderr, exit_code)."""
        ssh = self._get_ssh_client()
        logger.debug(f"[{self.hostname}] {command}")
        stdin, stdout, stderr = ssh.exec_command(command)
        exit_code = stdout.channel.recv_exit_status()
        return (
            stdout.read().decode().strip(),
            stderr.read().decode().strip(),
            exit_code,
        )

    def check(self, command: str) -> str:
        """Execute a command and raise RemoteCommandError on non-zero exit."""
        out, err, code = self.run(command)
        if code != 0:
            raise RemoteCommandError(self.hostname, command, code, err)
        return out

    def succeeds(self, command: str) -> bool:
        return self.run(command)[2] == 0

    def is_reachable(self) -> bool:
        """Open the connection and run a trivial command."""
        try:
            return self.succeeds("echo 'Connection successful'")
        except Exception as e:
            logger.debug(f"Cannot connect to {self.target}: {e}")
            return False

    def write_file(self, path: str, content: str, mode: Optional[int] = None) -> None:
        """Upload content to path via SFTP, optionally chmod-ing it."""
        sftp = self._get_ssh_client().open_sftp()
        try:
            sftp.putfo(io.BytesIO(content.encode()), path)
            if mode is not None:
                sftp.chmod(path, mode)
        finally:
            sftp.close()
        logger.debug(f"[{self.hostname}] wrote {path}")

    def close(self) -> None:
        """Close SSH connection."""
        if self.ssh_client:
            self.ssh_client.close()
            self.ssh_client = None
