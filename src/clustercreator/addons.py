"""Post-bootstrap addon fixes: GPU operator validation and control-plane metrics."""

import logging
from typing import List, Optional

from clustercreator.ansible import PlaybookRunner
from clustercreator.exceptions import OperationCancelled
from clustercreator.prompts import Prompter

logger = logging.getLogger(__name__)

GPU_FIX_PLAYBOOKS = ["trust-hosts.yaml", "gpu-operator-validation-fix.yaml"]
GPU_WORKING_PLAYBOOK = "gpu-operator-working-daemonsets.yaml"
METRICS_PLAYBOOKS = ["trust-hosts.yaml", "update-control-plane-metrics.yaml"]

METRICS_ENDPOINTS = [
    "kube-scheduler: https://[control-plane-ip]:10259/metrics",
    "kube-controller-manager: https://[control-plane-ip]:10257/metrics",
    "etcd: http://[etcd-ip]:2381/metrics",
]


class AddonFixer:
    def __init__(self, playbooks: PlaybookRunner, prompter: Optional[Prompter] = None) -> None:
        self.playbooks = playbooks
        self.prompter = prompter or Prompter()

    def fix_gpu_operator(self, force: bool = False, deploy_working: bool = False) -> List[str]:
        """Work around the driver-validation deadlock when ``driver.enabled=false``."""
        logger.info(f"Applying GPU operator validation fix for cluster: {self.playbooks.cluster}")
        if force:
            logger.warning("⚠️  Force restart enabled - will restart GPU operator pods")
        elif not self.prompter.confirm("Do you want to apply the GPU operator validation fix?"):
            raise OperationCancelled("Fix canceled.", exit_code=1)

        env = {"FORCE_GPU_RESTART": "true" if force else "false"}
        ran = list(GPU_FIX_PLAYBOOKS)
        self.playbooks.run_playbooks(GPU_FIX_PLAYBOOKS, extra_env=env)
        if deploy_working:
            logger.info("Deploying working GPU operator components...")
            self.playbooks.run_playbooks([GPU_WORKING_PLAYBOOK], extra_env=env)
            ran.append(GPU_WORKING_PLAYBOOK)
        logger.info("✅ GPU operator validation fix applied successfully")
        return ran

    def update_metrics(self) -> List[str]:
        logger.warning("⚠️  This modifies control plane static pod manifests to expose metrics endpoints.")
        logger.warning("⚠️  Control plane components restart temporarily. Take VM backups first.")
        answer = self.prompter.ask("Do you understand the risks and wish to continue? (yes/no)")
        if answer != "yes":
            raise OperationCancelled("Update aborted by the user.", exit_code=1)
        self.playbooks.run_playbooks(METRICS_PLAYBOOKS)
        logger.info("✅ Control plane metrics configuration updated successfully")
        return list(METRICS_PLAYBOOKS)
