"""Current-cluster context, shared by every ``ccr`` command."""

import logging
from typing import Optional

from clustercreator.config import Config

logger = logging.getLogger(__name__)


def current_cluster() -> Optional[str]:
    """Cluster name stored by ``ccr ctx``, or None."""
    return Config.stored_cluster_name()


def set_current_cluster(name: str) -> None:
    name = name.strip()
    if not name:
        raise ValueError("Cluster name must not be empty")
    Config.CONTEXT_FILE.parent.mkdir(parents=True, exist_ok=True)
    Config.CONTEXT_FILE.write_text(f"{name}\n")
    logger.info(f"✅ Switched context to cluster {name}")


def clear_current_cluster(name: Optional[str] = None) -> bool:
    """Remove the context file.

    With ``name``, only clears when that cluster is the current one.
    Returns True if the file was removed.
    """
    stored = current_cluster()
    if stored is None:
        return False
    if name is not None and stored != name:
        return False
    Config.CONTEXT_FILE.unlink()
    logger.info(f"Cleared cluster context ({stored})")
    return True
