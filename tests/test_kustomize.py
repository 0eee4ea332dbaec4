"""Tests for kustomization reference checks."""

import textwrap

import pytest
import yaml

from clustercreator.exceptions import CommandNotFoundError
from clustercreator.kustomize import (
    BUILD_ERROR,
    BUILD_OK,
    BUILD_PANIC,
    KustomizationChecker,
    classify_build,
    collect_refs,
)

from conftest import FakeRunner

APP_KUSTOMIZATION = textwrap.dedent("""\
    apiVersion: kustomize.config.k8s.io/v1beta1
    kind: Kustomization
    resources:
      - deployment.yaml
      - missing.yaml
      - ../base
      - https://github.com/example/manifests//deploy?ref=v1
    patches:
      - path: patch.yaml
        target:
          kind: Deployment
    configMapGenerator:
      - name: settings
        files:
          - app.conf=settings.conf
""")


@pytest.fixture
def tree(tmp_path):
    app = tmp_path / "apps" / "app"
    base = tmp_path / "apps" / "base"
    app.mkdir(parents=True)
    base.mkdir(parents=True)
    (app / "kustomization.yaml").write_text(APP_KUSTOMIZATION)
    for name in ("deployment.yaml", "patch.yaml", "settings.conf"):
        (app / name).write_text("x")
    (base / "kustomization.yaml").write_text("resources:\n  - ns.yaml\n")
    (base / "ns.yaml").write_text("kind: Namespace\n")
    return tmp_path


class TestParsing:
    def test_collect_refs(self):
        refs = collect_refs(yaml.safe_load(APP_KUSTOMIZATION))

        assert refs == ["deployment.yaml", "missing.yaml", "../base", "patch.yaml", "settings.conf"]

    def test_classify_build(self):
        assert classify_build("panic: runtime error: invalid memory address") == BUILD_PANIC
        assert classify_build("Error: accumulating resources") == BUILD_ERROR
        assert classify_build("", returncode=1) == BUILD_ERROR
        assert classify_build("kind: Deployment") == BUILD_OK


class TestKustomizationChecker:
    def test_reports_missing_references(self, tree):
        runner = FakeRunner()

        report = KustomizationChecker(tree, runner).run()

        assert report.missing == 1
        assert report.results[0].missing == [tree / "apps" / "app" / "missing.yaml"]
        assert report.exit_code == 1
        assert len(runner.calls) == 2

    def test_build_error_alone_does_not_fail(self, tree):
        (tree / "apps" / "app" / "missing.yaml").write_text("x")
        runner = FakeRunner().on("apps/base", returncode=1, stderr="Error: something")

        report = KustomizationChecker(tree, runner).run()

        assert report.build_errors == 1
        assert report.exit_code == 0

    def test_panic_fails(self, tree):
        (tree / "apps" / "app" / "missing.yaml").write_text("x")
        runner = FakeRunner().on("apps/app", stdout="", returncode=2, stderr="panic: boom")

        report = KustomizationChecker(tree, runner).run()

        assert report.panics == 1
        assert report.exit_code == 1

    def test_invalid_yaml_still_builds(self, tree):
        (tree / "apps" / "base" / "kustomization.yaml").write_text("resources: [unclosed\n")
        runner = FakeRunner()

        result = KustomizationChecker(tree, runner).check(tree / "apps" / "base" / "kustomization.yaml")

        assert result.missing == []
        assert runner.calls[0].cmd == ["kubectl", "kustomize", str(tree / "apps" / "base")]

    def test_requires_kubectl(self, tree):
        with pytest.raises(CommandNotFoundError):
            KustomizationChecker(tree, FakeRunner(missing={"kubectl"})).run()
