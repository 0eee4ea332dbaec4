"""Tests for config and context modules."""

import pytest

from clustercreator import context
from clustercreator.config import Config, _split_list
from clustercreator.exceptions import ConfigError


class TestConfig:
    def test_cluster_name_prefers_environment(self, monkeypatch):
        context.set_current_cluster("stored")
        monkeypatch.setenv("CLUSTER_NAME", "from-env")

        assert Config.cluster_name() == "from-env"

    def test_cluster_name_falls_back_to_context_file(self):
        context.set_current_cluster("homelab")

        assert Config.cluster_name() == "homelab"

    def test_require_cluster_name_raises_without_context(self):
        with pytest.raises(ConfigError, match="ccr ctx"):
            Config.require_cluster_name()

    def test_require_lists_missing_variables(self, monkeypatch):
        monkeypatch.setenv("PRESENT", "1")
        monkeypatch.delenv("ABSENT_ONE", raising=False)
        monkeypatch.delenv("ABSENT_TWO", raising=False)

        with pytest.raises(ConfigError) as exc:
            Config.require("PRESENT", "ABSENT_ONE", "ABSENT_TWO")

        assert "ABSENT_ONE, ABSENT_TWO" in str(exc.value)

    def test_cluster_paths(self, repo):
        assert Config.cluster_config_path("gamma") == repo / "ansible" / "tmp" / "gamma" / "cluster_config.json"
        assert Config.kubeconfig_path("gamma").name == "gamma.yml"

    def test_split_list_ignores_blanks(self):
        assert _split_list(" sda, ,sdc,") == ["sda", "sdc"]


class TestContext:
    def test_set_and_read_current_cluster(self):
        context.set_current_cluster("  homelab  ")

        assert context.current_cluster() == "homelab"
        assert Config.CONTEXT_FILE.read_text() == "homelab\n"

    def test_set_rejects_empty_name(self):
        with pytest.raises(ValueError):
            context.set_current_cluster("   ")

    def test_current_cluster_none_when_file_empty(self):
        Config.CONTEXT_FILE.parent.mkdir(parents=True)
        Config.CONTEXT_FILE.write_text("\n")

        assert context.current_cluster() is None

    def test_clear_only_matching_cluster(self):
        context.set_current_cluster("homelab")

        assert context.clear_current_cluster("other") is False
        assert context.current_cluster() == "homelab"
        assert context.clear_current_cluster("homelab") is True
        assert not Config.CONTEXT_FILE.exists()

    def test_clear_without_context(self):
        assert context.clear_current_cluster() is False

    def test_blank_context_file_reads_as_unset_everywhere(self):
        Config.CONTEXT_FILE.parent.mkdir(parents=True, exist_ok=True)
        Config.CONTEXT_FILE.write_text("  \n")

        assert Config.stored_cluster_name() is None
        assert context.current_cluster() is None
        assert Config.cluster_name() is None

    def test_environment_does_not_change_stored_context(self, monkeypatch):
        context.set_current_cluster("homelab")
        monkeypatch.setenv("CLUSTER_NAME", "chopper")

        assert Config.cluster_name() == "chopper"
        assert context.current_cluster() == "homelab"
