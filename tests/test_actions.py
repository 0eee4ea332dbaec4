"""Tests for GitHub Actions pinning."""

import textwrap
from unittest import mock

import pytest
import requests

from clustercreator.actions import (
    UNKNOWN,
    UP_TO_DATE,
    UPDATE_AVAILABLE,
    ActionPinner,
    GitHubClient,
    is_sha,
    repo_of,
    version_gt,
    workflow_files,
)

from conftest import ScriptedPrompter

OLD_SHA = "0123456789abcdef0123456789abcdef01234567"
NEW_SHA = "b" * 40
CHECKOUT_SHA = "a" * 40

WORKFLOW = textwrap.dedent(f"""\
    jobs:
      build:
        steps:
          - uses: actions/checkout@v4
          - uses: ./.github/actions/local@main
          - uses: actions/setup-python@{OLD_SHA} # v5.0.0
          - name: Upload
            uses: github/codeql-action/upload-sarif@v3
""")


class FakeGitHub:
    token = "t"

    def __init__(self):
        self.shas = {("actions/checkout", "v4"): CHECKOUT_SHA, ("actions/setup-python", "v5.1.0"): NEW_SHA,
                     ("github/codeql-action/upload-sarif", "v3"): "c" * 40}
        self.tags = {("actions/setup-python", OLD_SHA): "v5.0.0"}
        self.latest = {"actions/checkout": "v4", "actions/setup-python": "v5.1.0",
                       "github/codeql-action/upload-sarif": "v3"}

    def resolve_sha(self, action, ref):
        return self.shas.get((action, ref))

    def latest_release(self, action):
        return self.latest.get(action)

    def latest_tag(self, action):
        return None

    def tag_for_sha(self, action, sha):
        return self.tags.get((action, sha))


@pytest.fixture
def workflow(tmp_path):
    path = tmp_path / ".github" / "workflows" / "ci.yml"
    path.parent.mkdir(parents=True)
    path.write_text(WORKFLOW)
    (tmp_path / "other.yml").write_text("uses: actions/checkout@v1\n")
    return path


def _response(status, payload):
    response = mock.MagicMock(status_code=status)
    response.json.return_value = payload
    return response


class TestHelpers:
    def test_repo_of_subpath_action(self):
        assert repo_of("github/codeql-action/upload-sarif") == "github/codeql-action"

    def test_is_sha(self):
        assert is_sha(OLD_SHA)
        assert not is_sha("v4")

    @pytest.mark.parametrize("a, b, expected", [
        ("v1.10.0", "v1.9.0", True),
        ("v1.2.0", "v1.2.0", False),
        ("1.2.0", "1.10.0", False),
        ("v4", "v3.9.9", True),
        ("v3", "v4", False),
    ])
    def test_version_gt(self, a, b, expected):
        assert version_gt(a, b) is expected

    def test_workflow_files_only_under_github(self, workflow, tmp_path):
        assert workflow_files(tmp_path) == [workflow]


class TestGitHubClient:
    def test_resolve_sha_falls_back_to_tag_ref(self):
        with mock.patch('clustercreator.actions.requests.get') as mock_get:
            mock_get.side_effect = [
                _response(422, {}),
                _response(404, {}),
                _response(200, {"object": {"sha": NEW_SHA}}),
            ]

            assert GitHubClient(token="t").resolve_sha("actions/checkout", "v4") == NEW_SHA
            assert mock_get.call_args[0][0].endswith("/repos/actions/checkout/git/refs/tags/v4")
            assert mock_get.call_args[1]["headers"]["Authorization"] == "token t"

    def test_network_error_returns_none(self):
        with mock.patch('clustercreator.actions.requests.get', side_effect=requests.ConnectionError):
            assert GitHubClient(token="").latest_release("actions/checkout") is None

    def test_tag_for_sha(self):
        with mock.patch('clustercreator.actions.requests.get') as mock_get:
            mock_get.return_value = _response(200, [
                {"name": "v5.1.0", "commit": {"sha": NEW_SHA}},
                {"name": "v5.0.0", "commit": {"sha": OLD_SHA}},
            ])

            assert GitHubClient(token="").tag_for_sha("actions/setup-python", OLD_SHA) == "v5.0.0"


class TestActionPinner:
    def test_pins_tags_to_shas(self, workflow, tmp_path):
        summary = ActionPinner(FakeGitHub(), assume_yes=True).run(tmp_path)

        text = workflow.read_text()
        assert f"- uses: actions/checkout@{CHECKOUT_SHA}" in text
        assert f"uses: github/codeql-action/upload-sarif@{'c' * 40}" in text
        assert f"actions/setup-python@{OLD_SHA} # v5.0.0" in text
        assert "./.github/actions/local@main" in text
        assert summary.updated_files == [workflow]
        assert [c.action for c in summary.changes if c.applied] == [
            "actions/checkout", "github/codeql-action/upload-sarif"]

    def test_dry_run_does_not_write(self, workflow, tmp_path):
        summary = ActionPinner(FakeGitHub(), dry_run=True).run(tmp_path)

        assert workflow.read_text() == WORKFLOW
        assert summary.changes[0].new_ref == CHECKOUT_SHA
        assert not summary.changes[0].applied

    def test_abort_at_prompt(self, workflow, tmp_path):
        assert ActionPinner(FakeGitHub(), ScriptedPrompter(confirms=[False])).run(tmp_path) is None
        assert workflow.read_text() == WORKFLOW

    def test_upgrade_mode(self, workflow, tmp_path):
        summary = ActionPinner(FakeGitHub(), assume_yes=True, upgrade=True).run(tmp_path)

        statuses = {c.action: c.status for c in summary.changes}
        assert statuses["actions/checkout"] == UP_TO_DATE
        assert statuses["actions/setup-python"] == UPDATE_AVAILABLE
        assert f"actions/setup-python@{NEW_SHA} # v5.0.0" in workflow.read_text()

    def test_upgrade_declined_per_action(self, workflow, tmp_path):
        prompter = ScriptedPrompter(confirms=[True, False])

        ActionPinner(FakeGitHub(), prompter, upgrade=True).run(tmp_path)

        assert workflow.read_text() == WORKFLOW

    def test_unknown_sha_is_reported(self, workflow, tmp_path):
        client = FakeGitHub()
        client.tags = {}

        summary = ActionPinner(client, assume_yes=True, upgrade=True).run(tmp_path)

        setup = next(c for c in summary.changes if c.action == "actions/setup-python")
        assert setup.status == UNKNOWN
        assert setup.current == "SHA: 0123456..."
