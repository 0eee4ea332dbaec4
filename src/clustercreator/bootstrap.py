"""Kubernetes bootstrap through the Ansible playbook chain."""

import logging
from typing import List, Optional

from clustercreator.ansible import PlaybookRunner
from clustercreator.config import Config
from clustercreator.exceptions import OperationCancelled
from clustercreator.prompts import Prompter

logger = logging.getLogger(__name__)

FULL_PLAYBOOKS = [
    "generate-hosts-txt.yaml",
    "trust-hosts.yaml",
    "prepare-nodes.yaml",
    "etcd-nodes-setup.yaml",
    "kubevip-setup.yaml",
    "controlplane-setup.yaml",
    "move-kubeconfig-local.yaml",
    "join-controlplane-nodes.yaml",
    "join-worker-nodes.yaml",
    "move-kubeconfig-remote.yaml",
    "conditionally-taint-controlplane.yaml",
    "etcd-encryption.yaml",
    "cilium-setup.yaml",
    "kubelet-csr-approver.yaml",
    "local-storageclasses-setup.yaml",
    "longhorn-disks-setup.yaml",
    "longhorn-setup.yaml",
    "longhorn-add-disks.yaml",
    "metrics-server-setup.yaml",
    "cilium-lb-setup.yaml",
    "flux-setup.yaml",
    "gpu-operator-setup.yaml",
    "gpu-operator-validation-fix.yaml",
    "label-and-taint-nodes.yaml",
    "ending-output.yaml",
]

# Inventory generation and host trust, then everything from the CSR approver on.
ADDONS_PLAYBOOKS = FULL_PLAYBOOKS[:2] + FULL_PLAYBOOKS[FULL_PLAYBOOKS.index("kubelet-csr-approver.yaml"):]

METRICS_PLAYBOOK = "update-control-plane-metrics.yaml"


def select_playbooks(addons_only: bool = False, enable_metrics: bool = False) -> List[str]:
    if not addons_only:
        return list(FULL_PLAYBOOKS)
    playbooks = list(ADDONS_PLAYBOOKS)
    if enable_metrics:
        playbooks.append(METRICS_PLAYBOOK)
    return playbooks


def join_command_files(cluster: str) -> List[str]:
    return [
        f"tmp/{cluster}/worker_join_command.sh",
        f"tmp/{cluster}/control_plane_join_command.sh",
    ]


class ClusterBootstrapper:
    """Runs the bootstrap playbooks for one cluster."""

    def __init__(
        self,
        cluster: str,
        playbooks: Optional[PlaybookRunner] = None,
        prompter: Optional[Prompter] = None,
    ) -> None:
        self.cluster = cluster
        self.playbooks = playbooks or PlaybookRunner(cluster)
        self.prompter = prompter or Prompter()

    def bootstrap(self, addons_only: bool = False, enable_metrics: bool = False) -> List[str]:
        """Run the bootstrap and return the playbooks that ran.

        The join-command files are removed whether the run succeeds or not.
        """
        if addons_only:
            logger.info(f"Running addons-only bootstrap for cluster: {self.cluster}")
        else:
            logger.info(f"Bootstrapping Kubernetes onto cluster: {self.cluster}")
            logger.warning(
                "⚠️  Once bootstrapped, you can't add/remove decoupled etcd nodes using this toolset."
            )
            if not self.prompter.confirm("Are you sure you want to proceed?"):
                raise OperationCancelled(exit_code=1)

        env = {}
        if enable_metrics:
            env["ENABLE_CONTROL_PLANE_METRICS"] = "true"
            logger.info("Control plane metrics will be enabled")

        playbooks = select_playbooks(addons_only, enable_metrics)
        try:
            self.playbooks.run_playbooks(playbooks, extra_env=env)
        except Exception:
            logger.error("❌ An error occurred. Cleaning up...")
            raise
        finally:
            self.playbooks.cleanup_files(join_command_files(self.cluster))

        logger.info(f"✅ Cluster bootstrap completed for {self.cluster}")
        return playbooks


def bootstrap_summary(cluster: str) -> List[str]:
    """Lines printed after a successful bootstrap."""
    return [
        "Components installed:",
        f"  • Kubernetes v{Config.KUBERNETES_MEDIUM_VERSION}",
        f"  • Cilium CNI v{Config.CILIUM_VERSION}",
        "  • CoreDNS with search domain optimization",
        f"  • Longhorn Storage v{Config.LONGHORN_VERSION} (3x replication)",
        "  • Cilium Load Balancer (integrated with CNI)",
        f"  • Flux GitOps v{Config.FLUX_VERSION}",
        f"  • NVIDIA GPU Operator {Config.GPU_OPERATOR_VERSION} (if GPU nodes present)",
        "",
        "Access services:",
        "  • Longhorn UI: kubectl port-forward -n longhorn-system svc/longhorn-frontend 8080:80",
        "  • Flux status: flux get all",
        "",
        f"Source your bash or zsh profile and run 'kubectx {cluster}' to access the cluster.",
    ]
