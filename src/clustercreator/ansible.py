"""Runs the Ansible playbooks under ``<repo>/ansible``."""

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from clustercreator.config import Config
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)


class PlaybookRunner:
    """Executes playbooks against the cluster's generated inventory."""

    def __init__(
        self,
        cluster: str,
        repo_path: Optional[Path] = None,
        user: Optional[str] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.cluster = cluster
        self.repo_path = Path(repo_path or Config.REPO_PATH)
        self.user = user or Config.VM_USERNAME
        self.runner = runner or CommandRunner()

    @property
    def ansible_dir(self) -> Path:
        return self.repo_path / "ansible"

    @property
    def inventory(self) -> str:
        return f"tmp/{self.cluster}/ansible-hosts.txt"

    def command_for(self, playbook: str) -> List[str]:
        return [
            "ansible-playbook",
            "-i", self.inventory,
            "-u", self.user,
            playbook,
            "-e", f"cluster_name={self.cluster}",
        ]

    def run_playbooks(self, playbooks: Iterable[str], extra_env: Optional[Dict[str, str]] = None) -> None:
        """Run playbooks in order, stopping at the first failure (CommandError)."""
        playbooks = list(playbooks)
        for index, playbook in enumerate(playbooks, start=1):
            logger.info(f"▶️  [{index}/{len(playbooks)}] {playbook}")
            self.runner.run(
                self.command_for(playbook),
                capture=False,
                cwd=self.ansible_dir,
                env=extra_env,
            )
        logger.info(f"✅ Completed {len(playbooks)} playbook(s) for {self.cluster}")

    def cleanup_files(self, paths: Iterable[Path]) -> List[Path]:
        """Remove generated files, ignoring missing ones. Returns what was removed."""
        removed = []
        for path in paths:
            path = Path(path)
            if not path.is_absolute():
                path = self.ansible_dir / path
            if path.exists():
                path.unlink()
                removed.append(path)
                logger.debug(f"Removed {path}")
        return removed
