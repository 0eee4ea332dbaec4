"""Tests for the SSH remote host wrapper."""

from unittest import mock

import paramiko
import pytest

from clustercreator.exceptions import ClusterCreatorError, RemoteCommandError, SSHConnectionError
from clustercreator.remote import RemoteHost


def _exec_result(out=b"", err=b"", code=0):
    stdout = mock.MagicMock()
    stdout.read.return_value = out
    stdout.channel.recv_exit_status.return_value = code
    stderr = mock.MagicMock()
    stderr.read.return_value = err
    return mock.MagicMock(), stdout, stderr


@pytest.fixture
def ssh():
    with mock.patch('clustercreator.remote.paramiko.SSHClient') as mock_client:
        client = mock_client.return_value
        client.exec_command.return_value = _exec_result(b"gamma 4 2\n")
        yield client


class TestRemoteHost:
    def test_run_returns_output_and_exit_code(self, ssh):
        host = RemoteHost("10.11.12.136", key_path="/nonexistent/key")

        assert host.run("vgs gamma") == ("gamma 4 2", "", 0)
        ssh.connect.assert_called_once_with(
            hostname="10.11.12.136", username="root", key_filename=None, timeout=10
        )

    def test_connection_is_reused(self, ssh):
        host = RemoteHost("10.11.12.136")
        host.run("true")
        host.run("true")

        assert ssh.connect.call_count == 1

    def test_check_raises_on_failure(self, ssh):
        ssh.exec_command.return_value = _exec_result(err=b"Volume group not found", code=5)

        with pytest.raises(RemoteCommandError) as exc:
            RemoteHost("10.11.12.136").check("vgs gamma")

        assert exc.value.exit_code == 5
        assert "Volume group not found" in str(exc.value)

    def test_unreachable_host(self, ssh):
        ssh.connect.side_effect = OSError("No route to host")

        assert RemoteHost("10.11.12.200").is_reachable() is False

    @pytest.mark.parametrize("error", [
        OSError("No route to host"),
        paramiko.AuthenticationException("Authentication failed."),
    ])
    def test_connect_failure_raises_connection_error(self, ssh, error):
        ssh.connect.side_effect = error
        host = RemoteHost("10.11.12.200")

        with pytest.raises(SSHConnectionError) as exc:
            host.run("vgs gamma")

        assert isinstance(exc.value, ClusterCreatorError)
        assert "root@10.11.12.200" in str(exc.value)
        assert str(error) in str(exc.value)
        assert host.ssh_client is None

    def test_context_manager_closes(self, ssh):
        with RemoteHost("10.11.12.136", user="ubuntu") as host:
            assert host.target == "ubuntu@10.11.12.136"
            host.run("uptime")

        ssh.close.assert_called_once()
        assert host.ssh_client is None

    def test_write_file_uses_sftp(self, ssh):
        sftp = ssh.open_sftp.return_value

        RemoteHost("10.11.12.136").write_file("/etc/smartd.conf", "DEVICESCAN", mode=0o644)

        assert sftp.putfo.call_args[0][1] == "/etc/smartd.conf"
        sftp.chmod.assert_called_once_with("/etc/smartd.conf", 0o644)
        sftp.close.assert_called_once()
