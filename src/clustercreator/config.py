import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from clustercreator.exceptions import ConfigError


def _split_list(raw: str) -> List[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class Config:
    """Loads and manages configuration from environment variables."""

    load_dotenv()

    REPO_PATH = Path(os.getenv("REPO_PATH", os.getcwd())).expanduser()
    CONTEXT_FILE = Path(
        os.getenv("CCR_CONTEXT_FILE", "~/.config/clustercreator/current_cluster")
    ).expanduser()

    VM_USERNAME = os.getenv("VM_USERNAME", "ubuntu")
    SSH_KEY_PATH = os.getenv("SSH_KEY_PATH", "~/.ssh/id_rsa")

    PROXMOX_HOST = os.getenv("PROXMOX_HOST", "10.11.12.136")
    PROXMOX_USER = os.getenv("PROXMOX_USER", "root")

    # Alerting
    ALERT_EMAIL = os.getenv("ALERT_EMAIL", "")
    SMTP_HOST = os.getenv("SMTP_HOST", "localhost")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "25"))
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    TELEGRAM_BOT_TOKEN = os.getenv("TELEGRAM_BOT_TOKEN", "")
    TELEGRAM_CHAT_ID = os.getenv("TELEGRAM_CHAT_ID", "")

    # GitOps
    GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")
    GITHUB_USER = os.getenv("GITHUB_USER", "plpetkov-tech")
    GITHUB_REPO = os.getenv("GITHUB_REPO", "homelab")

    # Component versions reported after bootstrap
    KUBERNETES_MEDIUM_VERSION = os.getenv("KUBERNETES_MEDIUM_VERSION", "")
    CILIUM_VERSION = os.getenv("CILIUM_VERSION", "")
    LONGHORN_VERSION = os.getenv("LONGHORN_VERSION", "")
    FLUX_VERSION = os.getenv("FLUX_VERSION", "")
    GPU_OPERATOR_VERSION = os.getenv("GPU_OPERATOR_VERSION", "")

    CLUSTER_NETWORK_PREFIX = os.getenv("CLUSTER_NETWORK_PREFIX", "10.11.12").rstrip(".")

    # Proxmox gamma datastore
    GAMMA_VG_NAME = os.getenv("GAMMA_VG_NAME", "gamma")
    GAMMA_DISKS = _split_list(os.getenv("GAMMA_DISKS", "sda,sdc,sdd,sde"))

    # Longhorn node classes, e.g. "10.11.12.140,10.11.12.141"
    LONGHORN_GENERAL_NODES = _split_list(
        os.getenv("LONGHORN_GENERAL_NODES", "10.11.12.140,10.11.12.141,10.11.12.142")
    )
    LONGHORN_GPU_NODES = _split_list(os.getenv("LONGHORN_GPU_NODES", "10.11.12.150"))
    LONGHORN_CONTROLPLANE_NODES = _split_list(
        os.getenv("LONGHORN_CONTROLPLANE_NODES", "10.11.12.120,10.11.12.121,10.11.12.122")
    )
    LONGHORN_DISK_NODES = _split_list(
        os.getenv("LONGHORN_DISK_NODES", "gamma-general-0,gamma-general-1,gamma-general-2")
    )

    @classmethod
    def cluster_name(cls) -> Optional[str]:
        """Resolve the active cluster.

        ``CLUSTER_NAME`` wins; otherwise the context file written by
        ``ccr ctx`` is consulted.
        """
        name = os.getenv("CLUSTER_NAME", "").strip()
        if name:
            return name
        return cls.stored_cluster_name()

    @classmethod
    def stored_cluster_name(cls) -> Optional[str]:
        """Name in the context file, or None if it is absent or empty."""
        if not cls.CONTEXT_FILE.exists():
            return None
        return cls.CONTEXT_FILE.read_text().strip() or None

    @classmethod
    def require_cluster_name(cls) -> str:
        name = cls.cluster_name()
        if not name:
            raise ConfigError("No cluster context set. Use 'ccr ctx <cluster-name>' first.")
        return name

    @staticmethod
    def require(*names: str) -> None:
        """Raise ConfigError listing every unset environment variable."""
        missing = [name for name in names if not os.getenv(name)]
        if missing:
            raise ConfigError(f"Missing required environment variables: {', '.join(missing)}")

    @classmethod
    def kubeconfig_path(cls, cluster: str) -> Path:
        return Path.home() / ".kube" / f"{cluster}.yml"

    @classmethod
    def cluster_tmp_dir(cls, cluster: str) -> Path:
        return cls.REPO_PATH / "ansible" / "tmp" / cluster

    @classmethod
    def cluster_config_path(cls, cluster: str) -> Path:
        return cls.cluster_tmp_dir(cluster) / "cluster_config.json"

    @classmethod
    def smtp_enabled(cls) -> bool:
        return bool(cls.ALERT_EMAIL and cls.SMTP_HOST)

    @classmethod
    def telegram_enabled(cls) -> bool:
        return bool(cls.TELEGRAM_BOT_TOKEN and cls.TELEGRAM_CHAT_ID)
