"""Tests for destroy module."""

import pytest

from clustercreator import context
from clustercreator.destroy import ClusterDestroyer, kubeconfig_candidates, workspace_exists
from clustercreator.exceptions import ConfigError, OperationCancelled

from conftest import ScriptedPrompter

WORKSPACES = "  default\n* homelab\n  homelab-old\n"


@pytest.fixture
def cluster_files(repo, isolated_config):
    tf = repo / "terraform"
    (tf / ".terraform").mkdir(parents=True)
    (tf / ".terraform.lock.hcl").write_text("lock")
    (tf / "terraform.tfstate").write_text("{}")
    (tf / "terraform.tfstate.backup").write_text("{}")
    tmp = repo / "ansible" / "tmp" / "homelab"
    tmp.mkdir(parents=True)
    (tmp / "ansible-hosts.txt").write_text("[all]")
    kube = isolated_config / "home" / ".kube"
    kube.mkdir()
    (kube / "homelab.yml").write_text("apiVersion: v1")
    context.set_current_cluster("homelab")
    return repo


def _destroyer(repo, runner, prompter):
    return ClusterDestroyer("homelab", repo_path=repo, runner=runner, prompter=prompter)


class TestWorkspaceHelpers:
    def test_workspace_exists_exact_match(self):
        assert workspace_exists(WORKSPACES, "homelab")
        assert workspace_exists(WORKSPACES, "default")
        assert not workspace_exists(WORKSPACES, "home")

    def test_kubeconfig_candidates(self):
        names = [p.name for p in kubeconfig_candidates("gamma")]
        assert names == ["gamma.yml", "gamma.yaml", "config.gamma"]


class TestClusterDestroyer:
    def test_requires_cluster(self, repo, runner):
        with pytest.raises(ConfigError, match="No cluster context"):
            ClusterDestroyer(None, repo_path=repo, runner=runner).destroy()

    def test_missing_workspace(self, repo, runner):
        runner.on("tofu workspace list", stdout="  default\n")

        with pytest.raises(ConfigError, match="does not exist"):
            _destroyer(repo, runner, ScriptedPrompter()).destroy()

    def test_full_destroy_after_confirmations(self, cluster_files, runner, isolated_config):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="module.a\nmodule.b\nmodule.c\n")
        prompter = ScriptedPrompter(answers=["DELETE-EVERYTHING", "YES"])

        report = _destroyer(cluster_files, runner, prompter).destroy()

        assert report.resource_count == 3
        assert report.terraform_destroyed
        assert report.workspace_deleted
        assert report.context_cleared
        assert "tofu destroy" in runner.lines()
        assert "tofu workspace delete homelab" in runner.lines()
        tf = cluster_files / "terraform"
        assert not (tf / ".terraform").exists()
        assert not (tf / "terraform.tfstate.backup").exists()
        assert not (cluster_files / "ansible" / "tmp" / "homelab").exists()
        assert not (isolated_config / "home" / ".kube" / "homelab.yml").exists()
        assert context.current_cluster() is None

    def test_force_skips_prompts(self, cluster_files, runner):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="module.a\n")
        prompter = ScriptedPrompter()

        _destroyer(cluster_files, runner, prompter).destroy(force=True)

        assert prompter.questions == []
        assert "tofu destroy -auto-approve" in runner.lines()

    def test_wrong_phrase_cancels_cleanly(self, cluster_files, runner):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="module.a\n")

        with pytest.raises(OperationCancelled) as exc:
            _destroyer(cluster_files, runner, ScriptedPrompter(answers=["delete-everything"])).destroy()

        assert exc.value.exit_code == 0
        assert not any(line.startswith("tofu destroy") for line in runner.lines())
        assert (cluster_files / "terraform" / ".terraform").exists()

    def test_final_confirmation_must_be_yes(self, cluster_files, runner):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="module.a\n")

        with pytest.raises(OperationCancelled):
            _destroyer(cluster_files, runner, ScriptedPrompter(answers=["DELETE-EVERYTHING", "y"])).destroy()

    def test_no_resources_declined(self, cluster_files, runner):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="")

        with pytest.raises(OperationCancelled) as exc:
            _destroyer(cluster_files, runner, ScriptedPrompter(confirms=[False])).destroy()

        assert exc.value.exit_code == 0

    def test_no_resources_cleans_local_files_only(self, cluster_files, runner):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="")

        report = _destroyer(cluster_files, runner, ScriptedPrompter(confirms=[True])).destroy(force=True)

        assert not report.terraform_destroyed
        assert report.terraform_skipped_reason == "no resources found"
        assert not any(line.startswith("tofu destroy") for line in runner.lines())
        assert not (cluster_files / "ansible" / "tmp" / "homelab").exists()

    def test_destroy_loads_script_env(self, cluster_files, runner):
        (cluster_files / "scripts").mkdir()
        (cluster_files / "scripts" / ".env").write_text("TF_VAR_proxmox_token=secret\n")
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="module.a\n")

        _destroyer(cluster_files, runner, ScriptedPrompter()).destroy(force=True)

        destroy_call = next(c for c in runner.calls if c.cmd[:2] == ["tofu", "destroy"])
        assert destroy_call.env == {"TF_VAR_proxmox_token": "secret"}
        assert destroy_call.cwd == str(cluster_files / "terraform")

    def test_failed_provider_upgrade_reinitializes(self, cluster_files, runner):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="module.a\n")
        runner.on("tofu init -upgrade", returncode=1)
        lock = cluster_files / "terraform" / ".terraform.lock.hcl"

        report = _destroyer(cluster_files, runner, ScriptedPrompter()).destroy(force=True)

        lines = runner.lines()
        assert lines.index("tofu init") == lines.index("tofu init -upgrade") + 1
        assert lines.index("tofu init") < lines.index("tofu destroy -auto-approve")
        assert not lock.exists()
        assert lock not in report.removed_paths

    def test_provider_upgrade_success_skips_reinit(self, cluster_files, runner):
        runner.on("tofu workspace list", stdout=WORKSPACES)
        runner.on("tofu state list", stdout="module.a\n")

        _destroyer(cluster_files, runner, ScriptedPrompter()).destroy(force=True)

        assert "tofu init -upgrade" in runner.lines()
        assert "tofu init" not in runner.lines()
