"""Full teardown of a cluster: Terraform resources plus every local artifact."""

import logging
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from dotenv import dotenv_values

from clustercreator.config import Config
from clustercreator.context import clear_current_cluster
from clustercreator.exceptions import CommandError, ConfigError, OperationCancelled
from clustercreator.prompts import Prompter
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)

CONFIRM_PHRASE = "DELETE-EVERYTHING"


@dataclass
class DestroyReport:
    """What a destroy run did."""

    cluster: str
    resource_count: int = 0
    terraform_destroyed: bool = False
    terraform_skipped_reason: Optional[str] = None
    workspace_deleted: bool = False
    removed_paths: List[Path] = field(default_factory=list)
    context_cleared: bool = False


def workspace_exists(workspace_list: str, name: str) -> bool:
    """Exact match against ``tofu workspace list`` output (current one has ``*``)."""
    pattern = re.compile(rf"^\s*(\*\s*)?{re.escape(name)}\s*$")
    return any(pattern.match(line) for line in workspace_list.splitlines())


def kubeconfig_candidates(cluster: str) -> List[Path]:
    kube_dir = Path.home() / ".kube"
    return [
        kube_dir / f"{cluster}.yml",
        kube_dir / f"{cluster}.yaml",
        kube_dir / f"config.{cluster}",
    ]


class ClusterDestroyer:
    """Destroys the infrastructure behind the current cluster context."""

    def __init__(
        self,
        cluster: Optional[str],
        repo_path: Optional[Path] = None,
        runner: Optional[CommandRunner] = None,
        prompter: Optional[Prompter] = None,
    ) -> None:
        self.cluster = cluster
        self.repo_path = Path(repo_path or Config.REPO_PATH)
        self.runner = runner or CommandRunner()
        self.prompter = prompter or Prompter()

    @property
    def terraform_dir(self) -> Path:
        return self.repo_path / "terraform"

    def _tofu(self, *args: str, check: bool = True, capture: bool = True, env: Optional[Dict[str, str]] = None):
        return self.runner.run(["tofu", *args], check=check, capture=capture, cwd=self.terraform_dir, env=env)

    def _script_env(self) -> Dict[str, str]:
        env_file = self.repo_path / "scripts" / ".env"
        if not env_file.exists():
            return {}
        logger.info("  • Loading environment variables from scripts/.env")
        return {k: v for k, v in dotenv_values(env_file).items() if v is not None}

    def _check_workspace(self) -> None:
        listing = self._tofu("workspace", "list").stdout or ""
        if not workspace_exists(listing, self.cluster):
            raise ConfigError(
                f"Terraform workspace '{self.cluster}' does not exist. "
                f"Available workspaces:\n{listing.rstrip()}"
            )

    def _count_resources(self) -> int:
        self._tofu("workspace", "select", self.cluster, check=False)
        result = self._tofu("state", "list", check=False)
        if result.returncode != 0:
            return 0
        return len([line for line in (result.stdout or "").splitlines() if line.strip()])

    def _confirm_destruction(self) -> None:
        if not self.prompter.phrase(
            f"Type '{CONFIRM_PHRASE}' to confirm destruction of '{self.cluster}'", CONFIRM_PHRASE
        ):
            raise OperationCancelled(
                f"Destruction cancelled. Cluster '{self.cluster}' remains intact.", exit_code=0
            )
        answer = self.prompter.ask("Final confirmation: Are you 100% certain? (yes/NO)")
        if answer.strip().lower() != "yes":
            raise OperationCancelled(
                f"Destruction cancelled. Cluster '{self.cluster}' remains intact.", exit_code=0
            )

    def _destroy_terraform(self, report: DestroyReport, force: bool) -> None:
        logger.info("Step 1/5: Destroying Terraform infrastructure...")
        if report.terraform_skipped_reason:
            logger.warning(f"⚠️  Skipping Terraform destruction ({report.terraform_skipped_reason})")
            return
        if not (self.terraform_dir / ".terraform.lock.hcl").exists():
            report.terraform_skipped_reason = "no Terraform state found"
            logger.warning("⚠️  No Terraform state found, skipping infrastructure destruction")
            return

        if self._tofu("workspace", "select", self.cluster, check=False).returncode != 0:
            logger.warning(f"⚠️  Workspace '{self.cluster}' not found, continuing...")

        logger.info("  • Checking and updating Terraform providers...")
        if self._tofu("init", "-upgrade", check=False).returncode != 0:
            logger.warning("⚠️  Provider upgrade failed, trying to reinitialize...")
            (self.terraform_dir / ".terraform.lock.hcl").unlink(missing_ok=True)
            self._tofu("init")

        logger.info("  • Running tofu destroy...")
        args = ["destroy", "-auto-approve"] if force else ["destroy"]
        self._tofu(*args, capture=False, env=self._script_env())
        report.terraform_destroyed = True

        logger.info("  • Deleting workspace...")
        self._tofu("workspace", "select", "default", check=False)
        if self._tofu("workspace", "delete", self.cluster, check=False).returncode == 0:
            report.workspace_deleted = True
        else:
            logger.warning("⚠️  Could not delete workspace, may not exist")

    def _remove(self, path: Path, report: DestroyReport) -> None:
        if path.is_dir():
            shutil.rmtree(path)
        elif path.exists() or path.is_symlink():
            path.unlink()
        else:
            return
        report.removed_paths.append(path)
        logger.info(f"  • Removed {path}")

    def _clean_terraform_cache(self, report: DestroyReport) -> None:
        logger.info("Step 2/5: Cleaning up Terraform state and cache...")
        tf = self.terraform_dir
        self._remove(tf / ".terraform", report)
        self._remove(tf / ".terraform.lock.hcl", report)
        if tf.is_dir():
            for pattern in ("terraform.tfstate*", ".terraform.tfstate*"):
                for path in sorted(tf.glob(pattern)):
                    self._remove(path, report)

    def _clean_ansible(self, report: DestroyReport) -> None:
        logger.info("Step 3/5: Cleaning up Ansible configurations...")
        tmp_dir = self.repo_path / "ansible" / "tmp" / self.cluster
        if tmp_dir.exists():
            self._remove(tmp_dir, report)
        else:
            logger.warning(f"⚠️  No Ansible configs found for cluster '{self.cluster}'")

    def _clean_kubeconfig(self, report: DestroyReport) -> None:
        logger.info("Step 4/5: Cleaning up local kubeconfig...")
        found = False
        for path in kubeconfig_candidates(self.cluster):
            if path.is_file():
                self._remove(path, report)
                found = True
        if not found:
            logger.warning(f"⚠️  No kubeconfig files found for cluster '{self.cluster}'")

    def destroy(self, force: bool = False) -> DestroyReport:
        if not self.cluster:
            raise ConfigError("No cluster context set. Use 'ccr ctx <cluster-name>' first.")

        self._check_workspace()
        report = DestroyReport(cluster=self.cluster)
        report.resource_count = self._count_resources()

        if report.resource_count == 0:
            logger.warning(f"⚠️  No Terraform resources found for cluster '{self.cluster}'")
            if not self.prompter.confirm("Continue with cleanup of local files only?"):
                raise OperationCancelled("Operation cancelled.", exit_code=0)
            report.terraform_skipped_reason = "no resources found"
        else:
            logger.info(f"Found {report.resource_count} Terraform resources to destroy")

        if not force:
            self._confirm_destruction()

        logger.warning(f"🔥 DESTRUCTION INITIATED for cluster: {self.cluster}")
        try:
            self._destroy_terraform(report, force)
        except CommandError:
            logger.error("❌ An error occurred during destruction. Some resources may remain.")
            raise
        self._clean_terraform_cache(report)
        self._clean_ansible(report)
        self._clean_kubeconfig(report)

        logger.info("Step 5/5: Cleaning up cluster context...")
        report.context_cleared = clear_current_cluster(self.cluster)

        logger.info(f"✅ Cluster '{self.cluster}' has been completely destroyed")
        return report
