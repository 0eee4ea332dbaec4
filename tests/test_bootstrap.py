"""Tests for ansible, bootstrap and addons modules."""

import pytest

from clustercreator.addons import GPU_WORKING_PLAYBOOK, AddonFixer
from clustercreator.ansible import PlaybookRunner
from clustercreator.bootstrap import (
    ADDONS_PLAYBOOKS,
    FULL_PLAYBOOKS,
    METRICS_PLAYBOOK,
    ClusterBootstrapper,
    bootstrap_summary,
    select_playbooks,
)
from clustercreator.exceptions import CommandError, OperationCancelled

from conftest import FakeRunner, ScriptedPrompter


@pytest.fixture
def playbooks(repo, runner):
    return PlaybookRunner("homelab", repo_path=repo, user="ubuntu", runner=runner)


def _playbook_names(runner):
    return [call.cmd[5] for call in runner.calls if call.cmd[0] == "ansible-playbook"]


class TestPlaybookRunner:
    def test_command_uses_cluster_inventory(self, playbooks):
        cmd = playbooks.command_for("trust-hosts.yaml")

        assert cmd == [
            "ansible-playbook", "-i", "tmp/homelab/ansible-hosts.txt", "-u", "ubuntu",
            "trust-hosts.yaml", "-e", "cluster_name=homelab",
        ]

    def test_runs_from_ansible_directory(self, playbooks, runner, repo):
        playbooks.run_playbooks(["a.yaml", "b.yaml"], extra_env={"X": "1"})

        assert [c.cwd for c in runner.calls] == [str(repo / "ansible")] * 2
        assert runner.calls[0].env == {"X": "1"}
        assert runner.calls[0].capture is False

    def test_stops_at_first_failure(self, playbooks, runner):
        runner.on("b.yaml", returncode=2)

        with pytest.raises(CommandError):
            playbooks.run_playbooks(["a.yaml", "b.yaml", "c.yaml"])

        assert _playbook_names(runner) == ["a.yaml", "b.yaml"]

    def test_cleanup_ignores_missing_files(self, playbooks, repo):
        target = repo / "ansible" / "tmp" / "homelab" / "worker_join_command.sh"
        target.parent.mkdir(parents=True)
        target.write_text("kubeadm join")

        removed = playbooks.cleanup_files(["tmp/homelab/worker_join_command.sh", "tmp/homelab/nope.sh"])

        assert removed == [target]
        assert not target.exists()


class TestPlaybookSelection:
    def test_full_sequence(self):
        assert select_playbooks() == FULL_PLAYBOOKS
        assert len(FULL_PLAYBOOKS) == 25
        assert FULL_PLAYBOOKS[0] == "generate-hosts-txt.yaml"
        assert FULL_PLAYBOOKS[-1] == "ending-output.yaml"

    def test_addons_only_skips_node_setup(self):
        playbooks = select_playbooks(addons_only=True)

        assert playbooks[:3] == ["generate-hosts-txt.yaml", "trust-hosts.yaml", "kubelet-csr-approver.yaml"]
        assert "prepare-nodes.yaml" not in playbooks
        assert playbooks == ADDONS_PLAYBOOKS

    def test_metrics_appended_only_for_addons(self):
        assert select_playbooks(addons_only=True, enable_metrics=True)[-1] == METRICS_PLAYBOOK
        assert METRICS_PLAYBOOK not in select_playbooks(enable_metrics=True)


class TestClusterBootstrapper:
    def test_full_bootstrap_requires_confirmation(self, playbooks, runner):
        bootstrapper = ClusterBootstrapper("homelab", playbooks, ScriptedPrompter(confirms=[False]))

        with pytest.raises(OperationCancelled) as exc:
            bootstrapper.bootstrap()

        assert exc.value.exit_code == 1
        assert runner.calls == []

    def test_addons_only_runs_without_prompt(self, playbooks, runner):
        prompter = ScriptedPrompter()

        ran = ClusterBootstrapper("homelab", playbooks, prompter).bootstrap(addons_only=True, enable_metrics=True)

        assert prompter.questions == []
        assert _playbook_names(runner) == ran
        assert runner.calls[0].env == {"ENABLE_CONTROL_PLANE_METRICS": "true"}

    def test_join_files_removed_after_failure(self, playbooks, runner, repo):
        tmp = repo / "ansible" / "tmp" / "homelab"
        tmp.mkdir(parents=True)
        for name in ("worker_join_command.sh", "control_plane_join_command.sh"):
            (tmp / name).write_text("secret")
        runner.on("join-worker-nodes.yaml", returncode=1)

        with pytest.raises(CommandError):
            ClusterBootstrapper("homelab", playbooks, ScriptedPrompter(confirms=[True])).bootstrap()

        assert list(tmp.iterdir()) == []

    def test_summary_mentions_cluster(self):
        assert "kubectx homelab" in bootstrap_summary("homelab")[-1]


class TestAddonFixer:
    def test_gpu_fix_declined(self, playbooks, runner):
        with pytest.raises(OperationCancelled, match="Fix canceled"):
            AddonFixer(playbooks, ScriptedPrompter(confirms=[False])).fix_gpu_operator()
        assert runner.calls == []

    def test_gpu_fix_forced_with_working_daemonsets(self, playbooks, runner):
        ran = AddonFixer(playbooks, ScriptedPrompter()).fix_gpu_operator(force=True, deploy_working=True)

        assert ran[-1] == GPU_WORKING_PLAYBOOK
        assert _playbook_names(runner) == ran
        assert all(c.env == {"FORCE_GPU_RESTART": "true"} for c in runner.calls)

    def test_update_metrics_requires_exact_yes(self, playbooks, runner):
        with pytest.raises(OperationCancelled):
            AddonFixer(playbooks, ScriptedPrompter(answers=["y"])).update_metrics()
        assert runner.calls == []

        ran = AddonFixer(playbooks, ScriptedPrompter(answers=["yes"])).update_metrics()
        assert ran == ["trust-hosts.yaml", "update-control-plane-metrics.yaml"]
