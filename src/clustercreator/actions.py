"""Pin GitHub Actions ``uses:`` references to commit SHAs and check for upgrades."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple

import requests

from clustercreator.config import Config
from clustercreator.prompts import Prompter

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
USES_LINE = re.compile(r"^(\s*(?:-\s*)?uses:\s*)([^@\s]+)@([^\s#]+)")
SHA_RE = re.compile(r"^[a-f0-9]{40}$")

UPDATE_AVAILABLE = "update-available"
UNKNOWN = "unknown"
UP_TO_DATE = "up-to-date"


def repo_of(action: str) -> str:
    """``github/codeql-action/upload-sarif`` lives in ``github/codeql-action``."""
    parts = action.split("/")
    return "/".join(parts[:2]) if len(parts) >= 2 else action


def is_sha(ref: str) -> bool:
    return bool(SHA_RE.match(ref))


def _natural_key(version: str) -> Tuple:
    return tuple(
        (0, int(chunk), "") if chunk.isdigit() else (1, 0, chunk)
        for chunk in re.findall(r"\d+|[^\d.\-]+", version)
    )


def version_gt(a: str, b: str) -> bool:
    """True when version ``a`` sorts after ``b`` (leading ``v`` ignored)."""
    a, b = a[1:] if a.startswith("v") else a, b[1:] if b.startswith("v") else b
    return _natural_key(a) > _natural_key(b)


class GitHubClient:
    """Minimal GitHub REST v3 client for ref, release and tag lookups."""

    def __init__(self, token: Optional[str] = None, timeout: int = 15) -> None:
        self.token = token if token is not None else Config.GITHUB_TOKEN
        self.timeout = timeout

    @property
    def headers(self) -> dict:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.token:
            headers["Authorization"] = f"token {self.token}"
        return headers

    def _get(self, path: str):
        try:
            response = requests.get(f"{API_URL}{path}", headers=self.headers, timeout=self.timeout)
        except requests.RequestException as e:
            logger.debug(f"GET {path} failed: {e}")
            return None
        if response.status_code != 200:
            logger.debug(f"GET {path} returned {response.status_code}")
            return None
        try:
            return response.json()
        except ValueError:
            return None

    def resolve_sha(self, action: str, ref: str) -> Optional[str]:
        repo = repo_of(action)
        data = self._get(f"/repos/{repo}/commits/{ref}")
        if isinstance(data, dict) and data.get("sha"):
            return data["sha"]
        for kind in ("heads", "tags"):
            data = self._get(f"/repos/{repo}/git/refs/{kind}/{ref}")
            if isinstance(data, dict) and data.get("object", {}).get("sha"):
                return data["object"]["sha"]
        return None

    def latest_release(self, action: str) -> Optional[str]:
        data = self._get(f"/repos/{repo_of(action)}/releases/latest")
        return data.get("tag_name") if isinstance(data, dict) else None

    def latest_tag(self, action: str) -> Optional[str]:
        data = self._get(f"/repos/{repo_of(action)}/tags?per_page=1")
        return data[0].get("name") if isinstance(data, list) and data else None

    def tag_for_sha(self, action: str, sha: str) -> Optional[str]:
        data = self._get(f"/repos/{repo_of(action)}/tags?per_page=100")
        if not isinstance(data, list):
            return None
        return next((t.get("name") for t in data if t.get("commit", {}).get("sha") == sha), None)


@dataclass
class ActionChange:
    file: Path
    line_no: int
    action: str
    old_ref: str
    new_ref: Optional[str]
    status: str = ""
    current: str = ""
    latest: str = ""
    applied: bool = False


@dataclass
class PinSummary:
    files: List[Path] = field(default_factory=list)
    changes: List[ActionChange] = field(default_factory=list)
    updated_files: List[Path] = field(default_factory=list)


def workflow_files(root: Path) -> List[Path]:
    found = set()
    for pattern in ("*.yml", "*.yaml"):
        for path in Path(root).rglob(pattern):
            if ".github" in path.relative_to(root).parts and path.is_file():
                found.add(path)
    return sorted(found)


class ActionPinner:
    """Walks ``.github`` YAML files and rewrites ``uses:`` lines."""

    def __init__(
        self,
        client: Optional[GitHubClient] = None,
        prompter: Optional[Prompter] = None,
        dry_run: bool = False,
        assume_yes: bool = False,
        upgrade: bool = False,
    ) -> None:
        self.client = client or GitHubClient()
        self.prompter = prompter or Prompter()
        self.dry_run = dry_run
        self.assume_yes = assume_yes
        self.upgrade = upgrade

    def _pin_line(self, change: ActionChange) -> Optional[str]:
        if is_sha(change.old_ref):
            logger.info(f"  ✓ Already pinned: {change.action}@{change.old_ref}")
            return None
        sha = self.client.resolve_sha(change.action, change.old_ref)
        if not sha:
            logger.error(f"  ❌ Failed to resolve {change.action}@{change.old_ref}")
            return None
        logger.info(f"  {change.action}: {change.old_ref} → {sha}")
        return sha

    def _upgrade_line(self, change: ActionChange) -> Optional[str]:
        ref = change.old_ref
        if is_sha(ref):
            current_tag = self.client.tag_for_sha(change.action, ref)
            change.current = f"{current_tag} (SHA: {ref[:7]}...)" if current_tag else f"SHA: {ref[:7]}..."
        else:
            current_tag = ref
            change.current = ref

        latest = self.client.latest_release(change.action) or self.client.latest_tag(change.action)
        if not latest:
            logger.error(f"  ❌ Cannot determine latest version for {change.action}")
            return None
        change.latest = latest

        if current_tag and current_tag != latest and version_gt(latest, current_tag):
            change.status = UPDATE_AVAILABLE
        elif is_sha(ref) and not current_tag:
            change.status = UNKNOWN
            logger.warning(f"  ❓ {change.action}: {change.current}, latest {latest} (manual check recommended)")
            return None
        else:
            change.status = UP_TO_DATE
            logger.info(f"  ✓ {change.action} up to date ({change.current})")
            return None

        logger.warning(f"  ⬆️  {change.action}: {change.current} → {latest}")
        if self.dry_run:
            return None
        if not self.assume_yes and not self.prompter.confirm(f"    Update {change.action} to {latest}?"):
            return None
        sha = self.client.resolve_sha(change.action, latest)
        if not sha:
            logger.error(f"  ❌ Failed to get SHA for {latest}")
            return None
        return sha

    def process_file(self, path: Path, summary: PinSummary) -> bool:
        logger.info(f"Processing: {path}")
        lines = path.read_text().splitlines(keepends=True)
        changed = False
        for index, line in enumerate(lines):
            match = USES_LINE.match(line)
            if not match:
                continue
            prefix, action, ref = match.groups()
            if action.startswith("./"):
                logger.info(f"  ➤ Skipping local action: {action}@{ref}")
                continue
            change = ActionChange(path, index + 1, action, ref, None)
            new_ref = self._upgrade_line(change) if self.upgrade else self._pin_line(change)
            if new_ref:
                change.new_ref = new_ref
                if self.dry_run:
                    logger.info(f"    WOULD CHANGE: {line.strip()}")
                else:
                    lines[index] = line[:match.start(3)] + new_ref + line[match.end(3):]
                    change.applied = True
                    changed = True
            summary.changes.append(change)

        if changed and not self.dry_run:
            path.write_text("".join(lines))
            summary.updated_files.append(path)
            logger.info(f"  ✅ Updated {path}")
        return changed

    def run(self, root: Path) -> Optional[PinSummary]:
        """Process every workflow file; None if the operator aborted."""
        summary = PinSummary(files=workflow_files(root))
        if not summary.files:
            logger.warning("No GitHub workflow files found in .github directories.")
            return summary
        if not self.client.token:
            logger.warning("⚠️  No GitHub token provided. API rate limiting may apply.")

        if self.dry_run:
            logger.info("🔍 DRY RUN MODE - No changes will be made")
        elif not self.assume_yes:
            verb = "checking and upgrading" if self.upgrade else "pinning"
            if not self.prompter.confirm(f"Proceed with {verb} GitHub Actions?"):
                logger.info("Aborted.")
                return None

        for path in summary.files:
            self.process_file(path, summary)
        return summary
