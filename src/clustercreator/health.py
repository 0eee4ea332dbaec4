"""Cluster health check across control plane, nodes, GPU, storage, network and addons."""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from clustercreator.kubectl import Kubectl, node_is_ready
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)

GPU_TEST_IMAGE = "nvidia/cuda:12.0-runtime-ubuntu20.04"
GPU_TEST_OVERRIDES = json.dumps({
    "spec": {
        "tolerations": [{"key": "gpu", "operator": "Equal", "value": "true", "effect": "NoSchedule"}],
        "nodeSelector": {"nvidia.com/gpu": "true"},
    }
})


class Scope(str, Enum):
    ALL = "all"
    GPU_ONLY = "gpu-only"
    CONTROL_PLANE = "control-plane"
    STORAGE = "storage"


# Sections each scope runs, in execution order.
SCOPE_SECTIONS = {
    Scope.ALL: ["control_plane", "nodes", "gpu", "storage", "network", "addons"],
    Scope.GPU_ONLY: ["gpu"],
    Scope.CONTROL_PLANE: ["control_plane", "nodes", "network", "addons"],
    Scope.STORAGE: ["storage", "network", "addons"],
}


@dataclass
class CheckLine:
    status: str  # PASS, WARN, FAIL or INFO
    message: str


@dataclass
class HealthReport:
    """Counters plus every line the check produced."""

    total: int = 0
    passed: int = 0
    warnings: int = 0
    failed: int = 0
    lines: List[CheckLine] = field(default_factory=list)

    def begin(self) -> None:
        self.total += 1

    def info(self, message: str) -> None:
        logger.info(message)
        self.lines.append(CheckLine("INFO", message))

    def ok(self, message: str) -> None:
        logger.info(f"✅ {message}")
        self.passed += 1
        self.lines.append(CheckLine("PASS", message))

    def warn(self, message: str) -> None:
        logger.warning(f"⚠️  {message}")
        self.warnings += 1
        self.lines.append(CheckLine("WARN", message))

    def fail(self, message: str) -> None:
        logger.error(f"❌ {message}")
        self.failed += 1
        self.lines.append(CheckLine("FAIL", message))

    @property
    def exit_code(self) -> int:
        if self.failed == 0:
            return 0
        return 1 if self.failed < 3 else 2

    @property
    def verdict(self) -> str:
        return {0: "Cluster is healthy!", 1: "Cluster has minor issues", 2: "Cluster has major issues"}[self.exit_code]


class ClusterHealthChecker:
    """Runs the health-check sections selected by a scope."""

    def __init__(
        self,
        kubectl: Optional[Kubectl] = None,
        runner: Optional[CommandRunner] = None,
        scope: Scope = Scope.ALL,
        auto_fix: bool = False,
    ) -> None:
        self.kubectl = kubectl or Kubectl()
        self.runner = runner or self.kubectl.runner
        self.scope = scope
        self.auto_fix = auto_fix
        self.report = HealthReport()

    def _running(self, namespace: str, selector: Optional[str] = None) -> int:
        return self.kubectl.count_pods(namespace, selector).running

    def check_prerequisites(self) -> bool:
        """kubectl binary and cluster access. Failing here is fatal."""
        if not self.runner.has_command("kubectl"):
            self.report.fail("Required command 'kubectl' not found")
            return False
        self.report.begin()
        if not self.kubectl.cluster_reachable():
            self.report.fail("kubectl cannot connect to cluster")
            return False
        self.report.ok("kubectl access verified")
        return True

    def check_control_plane(self) -> None:
        r = self.report
        r.info("Checking control plane components...")

        r.begin()
        kubevip = len(self.kubectl.pods("kube-system", "component=kube-vip"))
        if kubevip:
            r.ok(f"kube-vip running ({kubevip} pods)")
        else:
            static = self._running("kube-system", "k8s-app=kube-vip")
            if static:
                r.ok(f"kube-vip running as static pod ({static} instances)")
            else:
                r.fail("kube-vip not running")
                if self.auto_fix:
                    r.warn("Manual intervention required: restart kubelet on control plane nodes")

        r.begin()
        statuses = self.kubectl.items(["componentstatuses"])
        etcd_healthy = any(
            cs.get("metadata", {}).get("name", "").startswith("etcd")
            and any(c.get("type") == "Healthy" and c.get("status") == "True" for c in cs.get("conditions", []))
            for cs in statuses
        )
        if etcd_healthy:
            r.ok("etcd healthy")
        else:
            etcd_pods = self._running("kube-system", "component=etcd")
            if etcd_pods:
                r.ok(f"etcd pods running ({etcd_pods} instances)")
            else:
                r.fail("etcd not healthy")

        for component in ("kube-scheduler", "kube-controller-manager"):
            r.begin()
            running = self._running("kube-system", f"component={component}")
            if running:
                r.ok(f"{component} running ({running} instances)")
            else:
                r.fail(f"{component} not running")

    def check_nodes(self) -> None:
        r = self.report
        r.info("Checking node status...")
        r.begin()
        nodes = self.kubectl.nodes()
        not_ready = [n["metadata"]["name"] for n in nodes if not node_is_ready(n)]
        ready = len(nodes) - len(not_ready)
        if not not_ready:
            r.ok(f"All nodes ready ({ready} nodes)")
            return
        r.warn(f"{len(not_ready)} nodes not ready, {ready} nodes ready")
        for name in not_ready:
            r.warn(f"  Not ready: {name}")

    def check_gpu(self) -> None:
        r = self.report
        r.info("Checking GPU components...")
        gpu_nodes = self.kubectl.nodes("nodeclass=gpu")
        if not gpu_nodes:
            r.warn("No GPU nodes found in cluster")
            return
        r.info(f"  Found {len(gpu_nodes)} GPU nodes")

        r.begin()
        if self.kubectl.namespace_exists("gpu-operator"):
            r.ok("GPU operator namespace exists")

            r.begin()
            counts = self.kubectl.count_pods("gpu-operator")
            if counts.total and counts.running == counts.total:
                r.ok(f"All GPU operator pods running ({counts.running}/{counts.total})")
            else:
                r.warn(f"GPU operator pods status: {counts.running}/{counts.total} running")
                if self.auto_fix:
                    r.info("    Attempting to restart failed GPU operator pods...")
                    self.kubectl.succeeds(
                        ["delete", "pods", "-n", "gpu-operator", "--field-selector=status.phase=Failed"]
                    )

            r.begin()
            with_gpu = [
                n for n in self.kubectl.nodes()
                if n.get("status", {}).get("allocatable", {}).get("nvidia.com/gpu") is not None
            ]
            if with_gpu:
                r.ok(f"GPU resources available on {len(with_gpu)} nodes")
                for node in with_gpu:
                    status = node["status"]
                    r.info(
                        f"    {node['metadata']['name']} allocatable={status['allocatable']['nvidia.com/gpu']} "
                        f"capacity={status.get('capacity', {}).get('nvidia.com/gpu', '?')}"
                    )
            else:
                r.fail("No GPU resources available")
                if self.auto_fix and not self.kubectl.resource_exists(
                    "daemonset", "nvidia-device-plugin-fallback", "kube-system"
                ):
                    r.warn("Manual intervention required: deploy fallback device plugin")
        else:
            r.fail("GPU operator namespace not found")
            if self.auto_fix:
                r.warn("Manual intervention required: run 'ccr bootstrap --addons-only'")

        r.begin()
        r.info("  Testing GPU functionality...")
        if self.kubectl.run_pod("gpu-test-health", GPU_TEST_IMAGE, ["nvidia-smi"],
                                timeout="60s", overrides=GPU_TEST_OVERRIDES):
            r.ok("GPU test successful")
        else:
            r.warn("GPU test failed or timed out")

    def check_storage(self) -> None:
        r = self.report
        r.info("Checking storage components...")
        r.begin()
        if not self.kubectl.namespace_exists("longhorn-system"):
            r.warn("Longhorn not installed")
            return
        r.ok("Longhorn namespace exists")

        r.begin()
        managers = self._running("longhorn-system", "app=longhorn-manager")
        if managers:
            r.ok(f"Longhorn managers running ({managers} instances)")
        else:
            r.fail("Longhorn managers not running")

        r.begin()
        if self.kubectl.resource_exists("storageclass", "longhorn"):
            r.ok("Longhorn storage class exists")
        else:
            r.fail("Longhorn storage class missing")

    def check_network(self) -> None:
        r = self.report
        r.info("Checking network components...")
        r.begin()
        cilium = self._running("kube-system", "k8s-app=cilium")
        if cilium:
            r.ok(f"Cilium pods running ({cilium} instances)")
        else:
            r.fail("Cilium pods not running")

        r.begin()
        if not self.kubectl.namespace_exists("metallb-system"):
            r.warn("MetalLB not installed")
            return
        controller = self._running("metallb-system", "app=metallb,component=controller")
        speakers = self._running("metallb-system", "app=metallb,component=speaker")
        if controller and speakers:
            r.ok(f"MetalLB running (controller: {controller}, speakers: {speakers})")
        else:
            r.warn(f"MetalLB issues (controller: {controller}, speakers: {speakers})")

    def check_addons(self) -> None:
        r = self.report
        r.info("Checking critical addons...")
        r.begin()
        if self._running("kube-system", "k8s-app=metrics-server"):
            r.ok("Metrics server running")
        else:
            r.fail("Metrics server not running")

        r.begin()
        if not self.kubectl.namespace_exists("flux-system"):
            r.warn("Flux not installed")
            return
        flux = self._running("flux-system")
        if flux:
            r.ok(f"Flux running ({flux} pods)")
        else:
            r.warn("Flux pods not all running")

    def run(self) -> HealthReport:
        """Run the checks for the configured scope.

        If the prerequisites fail, the report carries the failure and no other
        section runs.
        """
        self.report = HealthReport()
        if not self.check_prerequisites():
            return self.report
        for section in SCOPE_SECTIONS[self.scope]:
            getattr(self, f"check_{section}")()
        return self.report
