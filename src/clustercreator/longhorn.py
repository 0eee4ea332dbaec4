"""Longhorn maintenance: extra disks, the conversion-webhook fix and node tuning."""

import json
import logging
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from clustercreator.config import Config
from clustercreator.exceptions import OperationCancelled
from clustercreator.kubectl import Kubectl
from clustercreator.prompts import Prompter
from clustercreator.remote import RemoteHost

logger = logging.getLogger(__name__)

LONGHORN_NAMESPACE = "longhorn-system"
DEFAULT_DISK_PATH = "/var/lib/longhorn-disk/longhorn-data"
STORAGE_RESERVED = 107374182400  # 100 GiB

LONGHORN_CRDS = [
    "volumes.longhorn.io",
    "nodes.longhorn.io",
    "engineimages.longhorn.io",
    "backuptargets.longhorn.io",
    "replicas.longhorn.io",
    "engines.longhorn.io",
    "instancemanagers.longhorn.io",
    "sharemanagers.longhorn.io",
    "backingimages.longhorn.io",
    "backupvolumes.longhorn.io",
    "backups.longhorn.io",
    "recurringjobs.longhorn.io",
    "settings.longhorn.io",
    "volumeattachments.longhorn.io",
]

GENERAL, GPU, CONTROLPLANE = "general", "gpu", "controlplane"


def disk_name_for(node: str) -> str:
    """``gamma-general-1`` gets ``longhorn-disk-1``."""
    return f"longhorn-disk-{node.rsplit('-', 1)[-1]}"


def disk_patch(node: str, path: str = DEFAULT_DISK_PATH) -> Dict:
    return {
        "spec": {
            "disks": {
                disk_name_for(node): {
                    "allowScheduling": True,
                    "diskDriver": "",
                    "diskType": "filesystem",
                    "evictionRequested": False,
                    "path": path,
                    "storageReserved": STORAGE_RESERVED,
                    "tags": [],
                }
            }
        }
    }


class LonghornDiskManager:
    """Registers the extra data disk on each Longhorn node."""

    def __init__(
        self,
        kubectl: Optional[Kubectl] = None,
        nodes: Optional[List[str]] = None,
        disk_path: str = DEFAULT_DISK_PATH,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.kubectl = kubectl or Kubectl()
        self.nodes = nodes or list(Config.LONGHORN_DISK_NODES)
        self.disk_path = disk_path
        self.sleep = sleep

    def add_disks(self, wait: int = 30) -> Dict[str, bool]:
        results = {}
        for node in self.nodes:
            name = disk_name_for(node)
            logger.info(f"Adding disk {name} to node {node}...")
            ok = self.kubectl.patch(
                "node.longhorn.io", node, json.dumps(disk_patch(node, self.disk_path)),
                namespace=LONGHORN_NAMESPACE,
            )
            if ok:
                logger.info(f"✅ Successfully added disk to {node}")
            else:
                logger.error(f"❌ Failed to add disk to {node}")
            results[node] = ok

        if wait:
            logger.info("Waiting for Longhorn to detect new disks...")
            self.sleep(wait)
        return results

    def disk_status(self) -> Dict[str, Dict]:
        status = {}
        for node in self.nodes:
            data = self.kubectl.get_json(["node.longhorn.io", node, "-n", LONGHORN_NAMESPACE])
            status[node] = data.get("status", {}).get("diskStatus", {})
        return status


def fix_conversion_webhook(kubectl: Kubectl, crds: Optional[List[str]] = None) -> List[str]:
    """Remove ``/spec/conversion`` from the Longhorn CRDs. Returns the CRDs that were patched."""
    patch = json.dumps([{"op": "remove", "path": "/spec/conversion"}])
    patched = []
    for crd in crds or LONGHORN_CRDS:
        logger.info(f"Patching CRD: {crd}")
        if kubectl.patch("crd", crd, patch, patch_type="json"):
            patched.append(crd)
        else:
            logger.warning(f"⚠️  Could not patch {crd} (may not exist or already patched)")
    logger.info(f"✅ Fixed Longhorn conversion webhook configuration ({len(patched)}/{len(crds or LONGHORN_CRDS)})")
    return patched


@dataclass
class Optimization:
    name: str
    node_classes: Tuple[str, ...]
    script: str


def _file_descriptor_script(user: str) -> str:
    return f"""if ! grep -q "{user}.*nofile.*65536" /etc/security/limits.conf; then
    sudo cp /etc/security/limits.conf /etc/security/limits.conf.backup.$(date +%Y%m%d)
    echo '# User file descriptor optimization' | sudo tee -a /etc/security/limits.conf
    echo '{user} soft nofile 65536' | sudo tee -a /etc/security/limits.conf
    echo '{user} hard nofile 65536' | sudo tee -a /etc/security/limits.conf
    echo '* soft nofile 65536' | sudo tee -a /etc/security/limits.conf
    echo '* hard nofile 65536' | sudo tee -a /etc/security/limits.conf
    echo "User file descriptor limits set"
else
    echo "User file descriptor limits already optimized"
fi
"""


def _sysctl_script(marker: str, header: str, settings: List[str], label: str, backup: bool = False) -> str:
    backup_line = "    sudo cp /etc/sysctl.conf /etc/sysctl.conf.backup.$(date +%Y%m%d)\n" if backup else ""
    return f"""if ! grep -q "{marker}" /etc/sysctl.conf; then
{backup_line}    printf '%s\\n' '' '# {header}' {' '.join(shlex.quote(s) for s in settings)} | sudo tee -a /etc/sysctl.conf
    echo "{label} optimized - requires reboot"
else
    echo "{label} already optimized"
fi
"""


IRQBALANCE_SCRIPT = """if ! systemctl is-active --quiet irqbalance; then
    sudo apt update && sudo apt install -y irqbalance >/dev/null 2>&1 || echo "irqbalance install failed, may already be present"
    sudo systemctl enable irqbalance
    sudo systemctl start irqbalance
    echo "IRQ balancing enabled"
else
    echo "IRQ balancing already active"
fi
"""

DISK_IO_SCRIPT = """if [ -b /dev/vdb ]; then
    echo 4096 | sudo tee /sys/block/vdb/queue/read_ahead_kb
    echo 512 | sudo tee /sys/block/vdb/queue/nr_requests
    sudo tee /etc/udev/rules.d/99-longhorn-disk.rules << 'UDEV_EOF'
# Longhorn disk optimization
ACTION=="add|change", KERNEL=="vdb", ATTR{queue/read_ahead_kb}="4096"
ACTION=="add|change", KERNEL=="vdb", ATTR{queue/nr_requests}="512"
ACTION=="add|change", KERNEL=="vdb", ATTR{queue/scheduler}="mq-deadline"
UDEV_EOF
    echo "Longhorn disk I/O optimized"
else
    echo "No /dev/vdb found - not a Longhorn storage node"
fi
"""


def optimizations(user: str) -> List[Optimization]:
    """The node tunings, in the order they are applied."""
    return [
        Optimization("User file descriptor limits", (GENERAL, GPU, CONTROLPLANE), _file_descriptor_script(user)),
        Optimization("Memory management optimization", (GENERAL, GPU), _sysctl_script(
            "vm.swappiness", "Memory optimization for Longhorn workloads",
            ["vm.swappiness = 1", "vm.dirty_ratio = 5", "vm.dirty_background_ratio = 2",
             "vm.vfs_cache_pressure = 50"],
            "Memory management", backup=True,
        )),
        Optimization("Network buffer optimization", (GENERAL, GPU), _sysctl_script(
            "net.core.rmem_max", "Network optimization for replica sync",
            ["net.core.rmem_max = 134217728", "net.core.wmem_max = 134217728",
             "net.ipv4.tcp_rmem = 4096 87380 134217728", "net.ipv4.tcp_wmem = 4096 65536 134217728",
             "net.core.netdev_max_backlog = 5000", "net.ipv4.tcp_congestion_control = bbr"],
            "Network buffers",
        )),
        Optimization("IRQ balancing", (GENERAL, GPU), IRQBALANCE_SCRIPT),
        Optimization("Longhorn disk I/O optimization", (GENERAL,), DISK_IO_SCRIPT),
        Optimization("Process limits for high load", (GENERAL,), _sysctl_script(
            "kernel.pid_max", "Process optimization for high-load Longhorn nodes",
            ["kernel.pid_max = 131072", "kernel.threads-max = 1048576",
             "kernel.sched_migration_cost_ns = 5000000"],
            "Process limits",
        )),
    ]


def render_monitoring_script(general: List[str], gpu: List[str], user: str) -> str:
    return f"""#!/bin/bash
# Targeted Longhorn health check by node class

GENERAL_NODES=({' '.join(f'"{n}"' for n in general)})
GPU_NODES=({' '.join(f'"{n}"' for n in gpu)})
USER="{user}"

echo "=== TARGETED LONGHORN HEALTH CHECK ==="
echo "Timestamp: $(date)"
echo

echo "Longhorn Volumes:"
kubectl get volumes.longhorn.io -n longhorn-system --no-headers | awk '{{print $3}}' | sort | uniq -c

echo -e "\\nReplicas:"
kubectl get replicas.longhorn.io -n longhorn-system --no-headers | awk '{{print $3}}' | sort | uniq -c

echo -e "\\nGENERAL NODE STATUS:"
for node in "${{GENERAL_NODES[@]}}"; do
    load=$(ssh "$USER@$node" "uptime | awk '{{print \\$10, \\$11, \\$12}}'" 2>/dev/null || echo "unreachable")
    memory=$(ssh "$USER@$node" "free -h | awk 'NR==2{{print \\$3\\"/\\"\\$2}}'" 2>/dev/null || echo "N/A")
    echo "  $node: Load=$load Memory=$memory"
done

echo -e "\\nGPU NODE STATUS:"
for node in "${{GPU_NODES[@]}}"; do
    load=$(ssh "$USER@$node" "uptime | awk '{{print \\$10, \\$11, \\$12}}'" 2>/dev/null || echo "unreachable")
    echo "  $node: Load=$load"
done

degraded=$(kubectl get volumes.longhorn.io -n longhorn-system -o custom-columns=ROBUSTNESS:.status.robustness --no-headers | grep degraded | wc -l)
echo -e "\\nCRITICAL: $degraded degraded volumes"

if [ "$degraded" -gt 0 ]; then
    kubectl get volumes.longhorn.io -n longhorn-system -o custom-columns=NAME:.metadata.name,ROBUSTNESS:.status.robustness --no-headers | grep degraded
fi
"""


@dataclass
class OptimizationResult:
    name: str
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class LonghornNodeOptimizer:
    """Applies idempotent OS tunings to Longhorn-relevant nodes over SSH.

    etcd nodes are never touched.
    """

    def __init__(
        self,
        node_classes: Optional[Dict[str, List[str]]] = None,
        user: Optional[str] = None,
        prompter: Optional[Prompter] = None,
        host_factory: Optional[Callable[[str], RemoteHost]] = None,
    ) -> None:
        self.node_classes = node_classes or {
            GENERAL: list(Config.LONGHORN_GENERAL_NODES),
            GPU: list(Config.LONGHORN_GPU_NODES),
            CONTROLPLANE: list(Config.LONGHORN_CONTROLPLANE_NODES),
        }
        self.user = user or Config.VM_USERNAME
        self.prompter = prompter or Prompter()
        self.host_factory = host_factory or (lambda ip: RemoteHost(ip, user=self.user, timeout=10))

    def _nodes(self, classes: Tuple[str, ...]) -> List[str]:
        nodes = []
        for node_class in classes:
            nodes.extend(self.node_classes.get(node_class, []))
        return nodes

    def _run(self, node: str, command: str) -> Optional[str]:
        try:
            with self.host_factory(node) as host:
                out, _, code = host.run(command)
        except Exception as e:
            logger.debug(f"{node}: {e}")
            return None
        return out if code == 0 else None

    def current_state(self) -> Dict[str, Dict[str, str]]:
        probes = {
            GENERAL: {
                "load": "uptime | awk '{print $10, $11, $12}'",
                "fd_limit": "ulimit -n",
                "irqbalance": "systemctl is-active irqbalance",
                "longhorn_disk": "test -b /dev/vdb && echo 'Present' || echo 'Missing'",
            },
            GPU: {"load": "uptime | awk '{print $10, $11, $12}'", "fd_limit": "ulimit -n"},
            CONTROLPLANE: {"load": "uptime | awk '{print $10, $11, $12}'"},
        }
        state = {}
        for node_class, commands in probes.items():
            for node in self.node_classes.get(node_class, []):
                state[node] = {"class": node_class}
                for key, command in commands.items():
                    state[node][key] = self._run(node, command) or "N/A"
        return state

    def apply(self, optimization: Optimization) -> OptimizationResult:
        nodes = self._nodes(optimization.node_classes)
        logger.info(f"Executing on {','.join(nodes)}: {optimization.name}")
        result = OptimizationResult(optimization.name)
        for node in nodes:
            if self._run(node, optimization.script) is not None:
                logger.info(f"✅ Completed on {node}")
                result.applied.append(node)
            else:
                logger.warning(f"⚠️  Skipped {node} (may not be accessible)")
                result.skipped.append(node)
        return result

    def write_monitoring_script(self, path: Path) -> Path:
        path = Path(path).expanduser()
        path.write_text(render_monitoring_script(
            self.node_classes.get(GENERAL, []), self.node_classes.get(GPU, []), self.user
        ))
        path.chmod(0o755)
        logger.info(f"✅ Created targeted monitoring: {path}")
        return path

    def optimize(self, monitor_script: Path = Path("~/monitor_targeted_health.sh")) -> List[OptimizationResult]:
        for node, info in self.current_state().items():
            details = ", ".join(f"{k}={v}" for k, v in info.items() if k != "class")
            logger.info(f"  [{info['class']}] {node}: {details}")

        logger.warning("⚠️  This applies targeted optimizations based on the cluster architecture")
        if not self.prompter.confirm("Continue?"):
            raise OperationCancelled(exit_code=0)

        results = [self.apply(opt) for opt in optimizations(self.user)]
        self.write_monitoring_script(monitor_script)
        logger.info("✅ TARGETED OPTIMIZATION COMPLETE")
        return results


REBOOT_SEQUENCE = [
    "1. Reboot general nodes one at a time",
    "2. Reboot GPU node",
    "3. Control plane nodes (if you applied optimizations)",
    "4. Monitor with: ~/monitor_targeted_health.sh",
]
