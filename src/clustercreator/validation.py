"""Pre-GitOps infrastructure validation."""

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional

from clustercreator.kubectl import Kubectl, node_is_ready
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)

DEFAULT_CLASS_ANNOTATION = "storageclass.kubernetes.io/is-default-class"


@dataclass
class ValidationResult:
    name: str
    passed: bool
    message: str


class InfrastructureValidator:
    """Checks that a cluster is ready for a GitOps deployment.

    Checks run in order and validation stops at the first failure.
    """

    def __init__(self, kubectl: Optional[Kubectl] = None, runner: Optional[CommandRunner] = None) -> None:
        self.kubectl = kubectl or Kubectl()
        self.runner = runner or self.kubectl.runner
        self.results: List[ValidationResult] = []

    def _result(self, name: str, passed: bool, message: str) -> ValidationResult:
        if passed:
            logger.info(f"✅ {message}")
        else:
            logger.error(f"❌ {message}")
        return ValidationResult(name, passed, message)

    def check_api(self) -> ValidationResult:
        if not self.kubectl.cluster_reachable():
            return self._result("api", False, "Kubernetes API is not accessible")
        if not self.kubectl.succeeds(["get", "--raw=/healthz"]):
            return self._result("api", False, "Kubernetes API health check failed")
        return self._result("api", True, "Kubernetes API is accessible and healthy")

    def check_nodes(self) -> ValidationResult:
        nodes = self.kubectl.nodes()
        ready = sum(1 for node in nodes if node_is_ready(node))
        if nodes and ready == len(nodes):
            return self._result("nodes", True, f"All {ready} nodes are ready")
        return self._result("nodes", False, f"Only {ready}/{len(nodes)} nodes are ready")

    def check_cni(self) -> ValidationResult:
        pods = [
            p for p in self.kubectl.pods("kube-system", "k8s-app=cilium")
            if p.get("status", {}).get("phase") == "Running"
        ]
        if not pods:
            return self._result("cni", False, "Cilium is not running")
        pod_name = pods[0]["metadata"]["name"]
        status = self.kubectl.output(
            ["exec", "-n", "kube-system", pod_name, "--", "cilium", "status", "--brief"]
        )
        if "OK" not in status:
            return self._result("cni", False, "Cilium health check failed")
        return self._result("cni", True, "Cilium is healthy")

    def check_dns(self) -> ValidationResult:
        if not self.runner.succeeds(["nslookup", "google.com"], timeout=5):
            return self._result("dns", False, "Host DNS resolution failed")
        coredns = self.kubectl.count_pods("kube-system", "k8s-app=kube-dns")
        if coredns.running == 0:
            return self._result("dns", False, "CoreDNS is not running")
        if not self.kubectl.run_pod("dns-test", "busybox", ["nslookup", "google.com"]):
            return self._result("dns", False, "Pod DNS resolution failed")
        return self._result("dns", True, "Pod DNS resolution working")

    def check_storage(self) -> ValidationResult:
        data = self.kubectl.get_json(["storageclass"])
        if not data:
            return self._result("storage", False, "Storage class validation failed")
        defaults = [
            sc["metadata"]["name"]
            for sc in data.get("items", [])
            if sc.get("metadata", {}).get("annotations", {}).get(DEFAULT_CLASS_ANNOTATION) == "true"
        ]
        if defaults:
            return self._result("storage", True, f"Default storage class '{defaults[0]}' found")
        logger.warning("⚠️  No default storage class found")
        return ValidationResult("storage", True, "No default storage class found")

    def checks(self) -> List[Callable[[], ValidationResult]]:
        return [self.check_api, self.check_nodes, self.check_cni, self.check_dns, self.check_storage]

    def validate_infrastructure(self) -> bool:
        """Run every check in order; False at the first failure."""
        logger.info("🚀 Starting infrastructure validation...")
        self.results = []
        for check in self.checks():
            result = check()
            self.results.append(result)
            if not result.passed:
                return False
        logger.info("🎉 Infrastructure validation completed successfully")
        return True
