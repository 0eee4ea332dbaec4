"""kubectl facade shared by the validation and health-check commands."""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from clustercreator.exceptions import CommandError, CommandNotFoundError
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)


@dataclass
class PodCounts:
    """Pod tallies for a namespace/selector pair."""

    running: int
    ready: int
    total: int


def pod_is_ready(pod: Dict[str, Any]) -> bool:
    """A pod is ready when it is Running and every container reports ready."""
    status = pod.get("status", {})
    if status.get("phase") != "Running":
        return False
    containers = status.get("containerStatuses", [])
    return bool(containers) and all(c.get("ready") for c in containers)


def node_is_ready(node: Dict[str, Any]) -> bool:
    for condition in node.get("status", {}).get("conditions", []):
        if condition.get("type") == "Ready":
            return condition.get("status") == "True"
    return False


class Kubectl:
    """Runs kubectl with an optional kubeconfig."""

    def __init__(
        self,
        runner: Optional[CommandRunner] = None,
        kubeconfig: Optional[Union[str, Path]] = None,
    ) -> None:
        self.runner = runner or CommandRunner()
        self.kubeconfig = str(kubeconfig) if kubeconfig else None

    def _cmd(self, args: List[str]) -> List[str]:
        cmd = ["kubectl"]
        if self.kubeconfig:
            cmd += ["--kubeconfig", self.kubeconfig]
        return cmd + args

    def run(self, args: List[str], check: bool = True, **kwargs):
        return self.runner.run(self._cmd(args), check=check, **kwargs)

    def succeeds(self, args: List[str], **kwargs) -> bool:
        return self.runner.succeeds(self._cmd(args), **kwargs)

    def output(self, args: List[str], **kwargs) -> str:
        result = self.run(args, check=False, **kwargs)
        return (result.stdout or "").strip() if result.returncode == 0 else ""

    def get_json(self, args: List[str]) -> Dict[str, Any]:
        """``kubectl get <args> -o json``; returns {} when the call fails."""
        try:
            result = self.run(["get"] + args + ["-o", "json"], check=False)
        except (CommandError, CommandNotFoundError) as e:
            logger.debug(f"kubectl get {' '.join(args)} failed: {e}")
            return {}
        if result.returncode != 0:
            logger.debug(f"kubectl get {' '.join(args)} failed: {result.stderr}")
            return {}
        try:
            return json.loads(result.stdout)
        except json.JSONDecodeError:
            logger.error(f"Invalid JSON from kubectl get {' '.join(args)}")
            return {}

    def jsonpath(self, args: List[str], path: str) -> str:
        return self.output(["get"] + args + ["-o", f"jsonpath={path}"])

    def items(self, args: List[str]) -> List[Dict[str, Any]]:
        return self.get_json(args).get("items", [])

    def cluster_reachable(self) -> bool:
        return self.succeeds(["cluster-info"])

    def current_context(self) -> str:
        return self.output(["config", "current-context"])

    def namespace_exists(self, namespace: str) -> bool:
        return self.succeeds(["get", "namespace", namespace])

    def resource_exists(self, kind: str, name: str, namespace: Optional[str] = None) -> bool:
        args = ["get", kind, name]
        if namespace:
            args += ["-n", namespace]
        return self.succeeds(args)

    def pods(self, namespace: str, selector: Optional[str] = None) -> List[Dict[str, Any]]:
        args = ["pods", "-n", namespace]
        if selector:
            args += ["-l", selector]
        return self.items(args)

    def count_pods(self, namespace: str, selector: Optional[str] = None) -> PodCounts:
        pods = self.pods(namespace, selector)
        running = sum(1 for p in pods if p.get("status", {}).get("phase") == "Running")
        ready = sum(1 for p in pods if pod_is_ready(p))
        return PodCounts(running=running, ready=ready, total=len(pods))

    def nodes(self, selector: Optional[str] = None) -> List[Dict[str, Any]]:
        args = ["nodes"]
        if selector:
            args += ["-l", selector]
        return self.items(args)

    def patch(self, kind: str, name: str, patch: str, patch_type: str = "merge",
              namespace: Optional[str] = None) -> bool:
        args = ["patch", kind, name]
        if namespace:
            args += ["-n", namespace]
        args += [f"--type={patch_type}", "-p", patch]
        return self.succeeds(args)

    def apply_manifest(self, manifest: str) -> None:
        self.run(["apply", "-f", "-"], input=manifest)

    def run_pod(self, name: str, image: str, command: List[str], timeout: str = "30s",
                overrides: Optional[str] = None) -> bool:
        """Run a throwaway pod to completion and report success."""
        args = ["run", name, f"--image={image}", "--restart=Never", "--rm", "-i",
                f"--timeout={timeout}"]
        if overrides:
            args.append(f"--overrides={overrides}")
        return self.succeeds(args + ["--"] + command)
