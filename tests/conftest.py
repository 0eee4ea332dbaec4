"""Shared test fixtures and fakes for clustercreator tests."""

import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional

import pytest

from clustercreator.config import Config
from clustercreator.exceptions import CommandError, CommandNotFoundError, RemoteCommandError
from clustercreator.shell import CommandRunner


@dataclass
class Call:
    cmd: List[str]
    cwd: Optional[str] = None
    env: Optional[Dict[str, str]] = None
    input: Optional[str] = None
    capture: bool = True

    @property
    def line(self) -> str:
        return " ".join(self.cmd)


class FakeRunner(CommandRunner):
    """CommandRunner that answers from canned responses.

    Responses are matched by substring against the joined command line; the
    first match wins. A list of stdout values is consumed one per call, the
    last one repeating.
    """

    def __init__(self, missing=()):
        super().__init__()
        self.responses = []
        self.calls: List[Call] = []
        self.missing = set(missing)

    def on(self, match: str, stdout="", returncode: int = 0, stderr: str = "") -> "FakeRunner":
        self.responses.append([match, stdout, returncode, stderr])
        return self

    def run(self, cmd, check=True, capture=True, cwd=None, env=None, timeout=None, input=None):
        self.calls.append(Call(list(cmd), str(cwd) if cwd else None, env, input, capture))
        if cmd[0] in self.missing:
            raise CommandNotFoundError(cmd[0])
        line = " ".join(cmd)
        stdout, returncode, stderr = "", 0, ""
        for response in self.responses:
            if response[0] in line:
                stdout, returncode, stderr = response[1], response[2], response[3]
                if isinstance(stdout, list):
                    stdout = stdout.pop(0) if len(stdout) > 1 else stdout[0]
                break
        if check and returncode != 0:
            raise CommandError(list(cmd), returncode, stderr)
        return subprocess.CompletedProcess(cmd, returncode, stdout, stderr)

    def has_command(self, name):
        return name not in self.missing

    def lines(self) -> List[str]:
        return [c.line for c in self.calls]


class FakeRemoteHost:
    """Stands in for RemoteHost; commands are matched by substring."""

    def __init__(self, hostname="10.11.12.136", user="root", reachable=True):
        self.hostname = hostname
        self.user = user
        self.reachable = reachable
        self.responses = []
        self.commands: List[str] = []
        self.files: Dict[str, str] = {}
        self.modes: Dict[str, int] = {}
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        self.close()

    @property
    def target(self):
        return f"{self.user}@{self.hostname}"

    def on(self, match: str, out: str = "", code=0, err: str = "") -> "FakeRemoteHost":
        """``code`` may be a list of exit codes consumed one per call."""
        self.responses.append((match, out, code, err))
        return self

    def run(self, command):
        self.commands.append(command)
        for match, out, code, err in self.responses:
            if match in command:
                if isinstance(code, list):
                    code = code.pop(0) if len(code) > 1 else code[0]
                return out, err, code
        return "", "", 0

    def check(self, command):
        out, err, code = self.run(command)
        if code != 0:
            raise RemoteCommandError(self.hostname, command, code, err)
        return out

    def succeeds(self, command):
        return self.run(command)[2] == 0

    def is_reachable(self):
        return self.reachable

    def write_file(self, path, content, mode=None):
        self.files[path] = content
        if mode is not None:
            self.modes[path] = mode

    def close(self):
        self.closed = True


class ScriptedPrompter:
    """Prompter with pre-recorded answers."""

    def __init__(self, confirms=(), answers=()):
        self.confirms = list(confirms)
        self.answers = list(answers)
        self.questions: List[str] = []

    def confirm(self, question):
        self.questions.append(question)
        return self.confirms.pop(0) if self.confirms else False

    def ask(self, question):
        self.questions.append(question)
        return self.answers.pop(0) if self.answers else ""

    def phrase(self, question, expected):
        return self.ask(question) == expected


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def remote():
    return FakeRemoteHost()


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Keep tests away from the real context file, repo and home directory."""
    monkeypatch.delenv("CLUSTER_NAME", raising=False)
    monkeypatch.setattr(Config, "CONTEXT_FILE", tmp_path / "ctx" / "current_cluster")
    monkeypatch.setattr(Config, "REPO_PATH", tmp_path / "repo")
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
    (tmp_path / "repo").mkdir()
    (tmp_path / "home").mkdir()
    return tmp_path


@pytest.fixture
def repo(isolated_config):
    return isolated_config / "repo"
