"""Pruning of old etcd snapshot files on the decoupled etcd nodes."""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, List, Optional

from clustercreator.config import Config
from clustercreator.exceptions import ConfigError, SSHConnectionError
from clustercreator.remote import RemoteHost
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)

BACKUP_DIR = "/var/backups/etcd"
ETCD_NODE_COUNT = 3


@dataclass
class EtcdCleanupResult:
    node: str
    reachable: bool = True
    files: List[str] = field(default_factory=list)
    total_size: str = "0"
    deleted: bool = False
    disk_usage_before: str = ""
    disk_usage_after: str = ""


def etcd_node_ips(cluster_config: dict, prefix: Optional[str] = None) -> List[str]:
    """The etcd IPs are consecutive from ``node_classes.etcd.start_ip``."""
    prefix = (prefix or Config.CLUSTER_NETWORK_PREFIX).rstrip(".")
    try:
        start = int(cluster_config["node_classes"]["etcd"]["start_ip"])
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"Cluster configuration has no etcd start_ip: {e}")
    return [f"{prefix}.{start + i}" for i in range(ETCD_NODE_COUNT)]


def load_cluster_config(path: Path) -> dict:
    if not path.exists():
        raise ConfigError(f"Cluster configuration not found at {path}")
    with open(path) as f:
        return json.load(f)


class EtcdBackupCleaner:
    """Finds and deletes ``*.db`` backups older than N days on each etcd node."""

    def __init__(
        self,
        cluster: str,
        days: int = 1,
        dry_run: bool = False,
        runner: Optional[CommandRunner] = None,
        host_factory: Optional[Callable[[str], RemoteHost]] = None,
    ) -> None:
        if not isinstance(days, int) or isinstance(days, bool) or days < 1:
            raise ConfigError("Days must be a positive integer")
        self.cluster = cluster
        self.days = days
        self.dry_run = dry_run
        self.runner = runner or CommandRunner()
        self.host_factory = host_factory or (lambda ip: RemoteHost(ip, user=Config.VM_USERNAME))

    def _find(self, suffix: str = "") -> str:
        return f"sudo find {BACKUP_DIR} -name '*.db' -type f -mtime +{self.days}{suffix}"

    def clean_node(self, ip: str) -> EtcdCleanupResult:
        result = EtcdCleanupResult(node=ip)
        logger.info(f"Processing etcd node: {ip}")
        if not self.runner.succeeds(["ping", "-c", "1", "-W", "2", ip]):
            logger.warning(f"⚠️  Node {ip} is not reachable, skipping...")
            result.reachable = False
            return result

        with self.host_factory(ip) as host:
            try:
                result.disk_usage_before = host.run("df -h / | grep -v Filesystem")[0]
            except SSHConnectionError as e:
                logger.warning(f"⚠️  {e}, skipping...")
                result.reachable = False
                return result
            logger.info(f"Current disk usage: {result.disk_usage_before}")

            out, _, _ = host.run(self._find())
            result.files = [line for line in out.splitlines() if line.strip()]
            if not result.files:
                logger.info(f"No old backup files found on {ip}")
                return result

            size, _, _ = host.run(self._find(" -exec du -ch {} + | tail -1 | cut -f1"))
            result.total_size = size.strip() or "0"
            logger.info(f"Found {len(result.files)} files totaling {result.total_size}")
            for path in result.files[:10]:
                logger.info(f"  {path}")

            if self.dry_run:
                return result

            if host.succeeds(self._find(" -delete")):
                result.deleted = True
            else:
                logger.warning("⚠️  Some files could not be deleted")
            result.disk_usage_after = host.run("df -h / | grep -v Filesystem")[0]
            logger.info(f"Disk usage after cleanup: {result.disk_usage_after}")
        return result

    def run(self) -> List[EtcdCleanupResult]:
        config = load_cluster_config(Config.cluster_config_path(self.cluster))
        logger.info(f"Cleaning up etcd backups older than {self.days} day(s)...")
        if self.dry_run:
            logger.info("DRY RUN MODE - No files will be deleted")
        return [self.clean_node(ip) for ip in etcd_node_ips(config)]
