"""Static reference checks and trial builds for every kustomization in the repo."""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

import yaml

from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)

PANIC_RE = re.compile(r"panic|invalid memory address|runtime error")
REMOTE_RE = re.compile(r"^(https?://|git@|github\.com/|ssh://)")

BUILD_OK = "ok"
BUILD_ERROR = "error"
BUILD_PANIC = "panic"


def _as_path(entry) -> Optional[str]:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict) and isinstance(entry.get("path"), str):
        return entry["path"]
    return None


def collect_refs(doc: dict) -> List[str]:
    """Local file references from resources, patches and generator ``files``."""
    refs: List[str] = []
    for key in ("resources", "patches", "patchesStrategicMerge"):
        for entry in doc.get(key) or []:
            ref = _as_path(entry)
            if ref:
                refs.append(ref)
    for key in ("configMapGenerator", "secretGenerator"):
        for generator in doc.get(key) or []:
            for entry in (generator or {}).get("files") or []:
                if isinstance(entry, str):
                    # key=path uses the path part
                    refs.append(entry.split("=", 1)[1] if "=" in entry else entry)
    return [ref for ref in refs if not REMOTE_RE.match(ref)]


def classify_build(output: str, returncode: int = 0) -> str:
    if PANIC_RE.search(output):
        return BUILD_PANIC
    if returncode != 0 or "error" in output.lower():
        return BUILD_ERROR
    return BUILD_OK


@dataclass
class KustomizationResult:
    path: Path
    missing: List[Path] = field(default_factory=list)
    found: List[Path] = field(default_factory=list)
    build: str = BUILD_OK
    build_output: str = ""


@dataclass
class CheckRefsReport:
    results: List[KustomizationResult] = field(default_factory=list)

    @property
    def missing(self) -> int:
        return sum(len(r.missing) for r in self.results)

    @property
    def panics(self) -> int:
        return sum(1 for r in self.results if r.build == BUILD_PANIC)

    @property
    def build_errors(self) -> int:
        return sum(1 for r in self.results if r.build == BUILD_ERROR)

    @property
    def exit_code(self) -> int:
        return 1 if self.missing or self.panics else 0


def find_kustomizations(root: Path) -> List[Path]:
    files = [p for name in ("kustomization.yaml", "kustomization.yml") for p in Path(root).rglob(name)]
    return sorted(p for p in files if ".git" not in p.relative_to(root).parts)


class KustomizationChecker:
    def __init__(self, root: Path, runner: Optional[CommandRunner] = None) -> None:
        self.root = Path(root)
        self.runner = runner or CommandRunner()

    def check(self, kustomization: Path) -> KustomizationResult:
        logger.info(f"📄 Parsing: {kustomization}")
        result = KustomizationResult(path=kustomization)
        base_dir = kustomization.parent
        try:
            doc = yaml.safe_load(kustomization.read_text()) or {}
        except yaml.YAMLError as e:
            logger.error(f"❌ Invalid YAML in {kustomization}: {e}")
            doc = {}

        for ref in collect_refs(doc if isinstance(doc, dict) else {}):
            full_path = base_dir / ref
            if full_path.exists():
                result.found.append(full_path)
            else:
                logger.error(f"  ❌ Missing: {full_path} (referenced in {kustomization})")
                result.missing.append(full_path)

        proc = self.runner.run(["kubectl", "kustomize", str(base_dir)], check=False)
        result.build_output = ((proc.stdout or "") + (proc.stderr or "")).strip()
        result.build = classify_build(result.build_output, proc.returncode)
        if result.build == BUILD_PANIC:
            logger.error(f"  💥 Panic during build: {base_dir}")
        elif result.build == BUILD_ERROR:
            logger.warning(f"  ⚠️  Build error: {base_dir}")
        else:
            logger.info(f"  ✅ Build succeeded: {base_dir}")
        return result

    def run(self) -> CheckRefsReport:
        self.runner.ensure_command("kubectl")
        report = CheckRefsReport()
        for kustomization in find_kustomizations(self.root):
            report.results.append(self.check(kustomization))
        return report
