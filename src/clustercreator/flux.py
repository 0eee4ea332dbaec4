"""Flux v2 bootstrap with SOPS secret decryption and a phased rollout."""

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from clustercreator.config import Config
from clustercreator.exceptions import ClusterCreatorError, ConfigError, OperationCancelled
from clustercreator.kubectl import Kubectl
from clustercreator.prompts import Prompter
from clustercreator.shell import CommandRunner
from clustercreator.validation import InfrastructureValidator

logger = logging.getLogger(__name__)

FAILED_REASONS = ("BuildFailed", "HealthCheckFailed")


class FluxBootstrapError(ClusterCreatorError):
    """Raised when a bootstrap step or a kustomization phase fails."""


@dataclass
class FluxProfile:
    """Per-cluster Flux bootstrap settings."""

    name: str
    cluster_path: str
    sops_test_file: str
    controller_selector: str
    phases: List[Tuple[str, int]] = field(default_factory=list)
    components_extra: Optional[str] = None
    kubeconfig: Optional[Path] = None
    validate_infrastructure: bool = False


PROFILES: Dict[str, FluxProfile] = {
    "homelab": FluxProfile(
        name="homelab",
        cluster_path="flux/clusters/homelab",
        sops_test_file="flux/infrastructure/base/security-policies/cloudflare-secret.yaml",
        controller_selector="app",
        components_extra="image-reflector-controller,image-automation-controller",
        phases=[
            ("infrastructure-core", 600),
            ("infrastructure-platform", 600),
            ("infrastructure-security-policies", 600),
            ("infrastructure-backup", 300),
            ("apps-monitoring", 900),
        ],
        validate_infrastructure=True,
    ),
    "chopper": FluxProfile(
        name="chopper",
        cluster_path="flux/clusters/chopper",
        sops_test_file="flux/apps/base/demo/nginx-secret.yaml",
        controller_selector="app.kubernetes.io/part-of=flux",
        phases=[("apps-demo", 300)],
        kubeconfig=Path.home() / ".kube" / "chopper",
    ),
}


class FluxBootstrapper:
    """Bootstraps Flux against GitHub for one profile."""

    def __init__(
        self,
        profile: FluxProfile,
        repo_path: Optional[Path] = None,
        runner: Optional[CommandRunner] = None,
        kubectl: Optional[Kubectl] = None,
        prompter: Optional[Prompter] = None,
        validator: Optional[InfrastructureValidator] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.profile = profile
        self.repo_path = Path(repo_path or Config.REPO_PATH)
        env = {"KUBECONFIG": str(profile.kubeconfig)} if profile.kubeconfig else None
        self.runner = runner or CommandRunner(env=env)
        self.kubectl = kubectl or Kubectl(self.runner)
        self.prompter = prompter or Prompter()
        self.validator = validator
        self.sleep = sleep

    @property
    def age_key(self) -> Path:
        return self.repo_path / "age.agekey"

    def check_prerequisites(self) -> None:
        self.runner.ensure_command("flux", "Install it with: curl -s https://fluxcd.io/install.sh | sudo bash")
        if not self.kubectl.cluster_reachable():
            hint = f" (kubeconfig: {self.profile.kubeconfig})" if self.profile.kubeconfig else ""
            raise ConfigError(f"kubectl is not configured or cluster is not accessible{hint}")

    def confirm(self) -> None:
        context = self.kubectl.current_context()
        logger.warning(f"⚠️  Current Kubernetes context: {context}")
        if not self.prompter.confirm(f"Are you sure you want to bootstrap Flux on the {self.profile.name} cluster?"):
            raise OperationCancelled("Aborted by user.", exit_code=0)

    def check_secrets_tooling(self) -> None:
        self.runner.ensure_command("sops")
        self.runner.ensure_command("age")
        Config.require("GITHUB_TOKEN")
        if not self.age_key.exists():
            raise ConfigError(
                f"age.agekey not found at {self.age_key}. Generate it with: age-keygen -o age.agekey"
            )

    def verify_sops(self) -> None:
        logger.info("Verifying SOPS can decrypt secrets...")
        ok = self.runner.succeeds(
            ["sops", "-d", str(self.repo_path / self.profile.sops_test_file)],
            env={"SOPS_AGE_KEY_FILE": str(self.age_key)},
        )
        if not ok:
            raise FluxBootstrapError("SOPS decryption test failed. Please check your age.agekey file.")
        logger.info("✅ SOPS decryption test passed")

    def bootstrap_command(self) -> List[str]:
        cmd = ["flux", "bootstrap", "github"]
        if self.profile.components_extra:
            cmd.append(f"--components-extra={self.profile.components_extra}")
        cmd += [
            f"--owner={Config.GITHUB_USER}",
            f"--repository={Config.GITHUB_REPO}",
            "--branch=main",
            f"--path={self.profile.cluster_path}",
            "--personal",
            "--token-auth",
        ]
        return cmd

    def create_sops_secret(self) -> None:
        manifest = self.kubectl.run([
            "create", "secret", "generic", "sops-age",
            "--namespace=flux-system",
            f"--from-file=age.agekey={self.age_key}",
            "--dry-run=client", "-o", "yaml",
        ]).stdout
        self.kubectl.apply_manifest(manifest)
        logger.info("✅ SOPS secret created successfully")

    def wait_for_kustomization(self, name: str, timeout: int = 300, interval: int = 10) -> bool:
        """Poll a kustomization's Ready condition until it is True, failed or timed out."""
        logger.info(f"⏳ Waiting for kustomization '{name}' to be ready...")
        resource = ["kustomization", name, "-n", "flux-system"]
        for attempt in range(1, max(timeout // interval, 1) + 1):
            status = self.kubectl.jsonpath(resource, '{.status.conditions[?(@.type=="Ready")].status}')
            if "True" in status:
                logger.info(f"✅ Kustomization '{name}' is ready")
                return True
            reason = self.kubectl.jsonpath(resource, '{.status.conditions[?(@.type=="Ready")].reason}')
            if any(r in reason for r in FAILED_REASONS):
                logger.error(f"❌ Kustomization '{name}' failed ({reason})")
                logger.error(self.kubectl.output(["get"] + resource + ["-o", "yaml"]))
                return False
            logger.info(f"⏳ Still waiting for '{name}'... ({attempt * interval}s/{timeout}s)")
            self.sleep(interval)
        logger.error(f"❌ Timeout waiting for kustomization '{name}'")
        return False

    def bootstrap(self) -> None:
        logger.info(f"🚀 Starting Flux v2 bootstrap for {self.profile.name}...")
        self.check_prerequisites()
        self.confirm()
        self.check_secrets_tooling()
        logger.info("✅ Prerequisites check passed")

        self.verify_sops()

        logger.info("🔧 Bootstrapping Flux v2 with GitHub repository...")
        self.runner.run(self.bootstrap_command(), capture=False, cwd=self.repo_path)
        logger.info("✅ Flux v2 bootstrap completed")

        logger.info("🔐 Setting up SOPS for secret management...")
        self.create_sops_secret()

        if self.profile.validate_infrastructure:
            logger.info("🏗️ Validating infrastructure before GitOps deployment...")
            validator = self.validator or InfrastructureValidator(self.kubectl, self.runner)
            if not validator.validate_infrastructure():
                raise FluxBootstrapError("Infrastructure validation failed. Please fix issues before proceeding.")

        logger.info("🔍 Waiting for Flux controllers to be ready...")
        self.kubectl.run([
            "wait", "--for=condition=Ready", "pod", "-l", self.profile.controller_selector,
            "-n", "flux-system", "--timeout=300s",
        ], capture=False)
        self.kubectl.run(["get", "pods", "-n", "flux-system"], capture=False)

        logger.info("🚀 Starting graduated GitOps deployment...")
        for name, timeout in self.profile.phases:
            if not self.wait_for_kustomization(name, timeout):
                raise FluxBootstrapError(f"Kustomization '{name}' did not become ready")

        for args in (["get", "kustomizations"], ["get", "helmreleases"], ["get", "sources", "all"], ["check"]):
            self.runner.run(["flux"] + args, capture=False)

        logger.info(f"🎉 Flux bootstrap for {self.profile.name} completed successfully")
