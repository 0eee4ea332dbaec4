"""Container image SHA-digest pinning for the GitOps manifests."""

import logging
import re
import shutil
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from clustercreator.exceptions import CommandError, CommandNotFoundError
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)

IMAGE_LINE = re.compile(r"""image:\s*["']*([^\s"']+)["']*\s*$""")

SKIP_MARKERS = ("cuda", "ghcr.io/fluxcd/")
LATEST_PREFIXES = ("lscr.io/linuxserver/", "linuxserver/")
LATEST_REPOS = ("ghcr.io/meeb/tubesync", "ghcr.io/hoarder-app/hoarder")


def split_tag(image: str) -> str:
    """Repository part of ``image``, i.e. everything before the last ``:tag``."""
    head, sep, tail = image.rpartition(":")
    if not sep or "/" in tail:
        return image
    return head


def should_skip(image: str) -> bool:
    if "@sha256:" in image or ":" not in image:
        return True
    return any(marker in image for marker in SKIP_MARKERS)


def resolve_target(image: str) -> str:
    """Images that track a rolling release are pinned from ``:latest``."""
    if image.endswith(":latest"):
        return image
    repo = split_tag(image)
    if repo.startswith(LATEST_PREFIXES) or repo in LATEST_REPOS:
        return f"{repo}:latest"
    return image


class ImageDigestResolver:
    """Resolves ``repo:tag`` to ``repo@sha256:...`` using the docker CLI."""

    def __init__(self, runner: Optional[CommandRunner] = None) -> None:
        self.runner = runner or CommandRunner()
        self.cache: Dict[str, Optional[str]] = {}

    def resolve(self, image: str) -> Optional[str]:
        if image in self.cache:
            logger.info(f"Using cached digest for {image}")
            return self.cache[image]
        self.cache[image] = self._resolve(image)
        return self.cache[image]

    def _resolve(self, image: str) -> Optional[str]:
        logger.info(f"Pulling {image}...")
        try:
            self.runner.run(["docker", "pull", image])
            digest = self.runner.output(["docker", "inspect", image, "--format", "{{index .RepoDigests 0}}"])
            if digest and digest != "<no value>":
                return digest
            logger.warning(f"⚠️  No RepoDigest found for {image}, falling back to image ID")
            image_id = self.runner.output(["docker", "inspect", image, "--format", "{{.Id}}"])
        except (CommandError, CommandNotFoundError) as e:
            logger.error(f"❌ Failed to get digest for {image}: {e}")
            return None
        image_id = image_id.split(":", 1)[-1]
        if not image_id:
            logger.error(f"❌ Failed to get digest for {image}")
            return None
        return f"{split_tag(image)}@sha256:{image_id}"


@dataclass
class PinRecord:
    original: str
    target: str
    digest: Optional[str]
    file: Path
    updated: bool


@dataclass
class PinReport:
    records: List[PinRecord] = field(default_factory=list)
    backup_dir: Optional[Path] = None
    summary_file: Optional[Path] = None

    @property
    def found(self) -> int:
        return len(self.records)

    @property
    def processed(self) -> int:
        return sum(1 for r in self.records if r.updated)

    @property
    def success_rate(self) -> int:
        return self.processed * 100 // self.found if self.found else 0


def yaml_files(root: Path) -> List[Path]:
    files = [p for pattern in ("*.yaml", "*.yml") for p in root.rglob(pattern)]
    return sorted(p for p in files if ".git" not in p.relative_to(root).parts)


class ContainerImagePinner:
    """Rewrites ``image:`` lines under a tree to digest references."""

    def __init__(self, root: Path, resolver: Optional[ImageDigestResolver] = None, dry_run: bool = False) -> None:
        self.root = Path(root)
        self.resolver = resolver or ImageDigestResolver()
        self.dry_run = dry_run

    def pin_file(self, path: Path, report: PinReport) -> None:
        text = path.read_text()
        digests: Dict[str, Optional[str]] = {}
        lines = text.splitlines(keepends=True)
        for i, line in enumerate(lines):
            match = IMAGE_LINE.search(line.rstrip("\r\n"))
            if not match:
                continue
            original = match.group(1)
            if should_skip(original):
                continue
            if original not in digests:
                target = resolve_target(original)
                logger.info(f"Processing: {target}")
                digests[original] = self.resolver.resolve(target)
                updated = bool(digests[original]) and not self.dry_run
                if updated:
                    logger.info(f"✅ Updated {original} in {path}")
                report.records.append(PinRecord(original, target, digests[original], path, updated))
            digest = digests[original]
            if digest and not self.dry_run:
                lines[i] = line[:match.start(1)] + digest + line[match.end(1):]
        new_text = "".join(lines)
        if new_text != text:
            path.write_text(new_text)

    def backup(self, files: List[Path], stamp: str) -> Path:
        backup_dir = self.root / f"image-pinning-backup-{stamp}"
        for path in files:
            dest = backup_dir / path.relative_to(self.root)
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(path, dest)
        logger.info(f"Created backup in {backup_dir}")
        return backup_dir

    def pin(self, now: Optional[datetime] = None) -> PinReport:
        now = now or datetime.now()
        stamp = f"{now:%Y%m%d-%H%M%S}"
        files = yaml_files(self.root)
        report = PinReport()
        if not self.dry_run:
            report.backup_dir = self.backup(files, stamp)
        logger.info("Scanning for container images in YAML files...")
        for path in files:
            self.pin_file(path, report)
        if not self.dry_run:
            report.summary_file = self.root / f"image-pinning-summary-{stamp}.md"
            report.summary_file.write_text(render_summary(report, self.resolver.cache, now))
            logger.info(f"Summary written to: {report.summary_file}")
        return report


def render_summary(report: PinReport, digests: Dict[str, Optional[str]], now: datetime) -> str:
    lines = [
        "# Container Image SHA Digest Pinning Summary",
        "",
        f"**Date**: {now:%Y-%m-%d %H:%M:%S}",
        "**Task**: Replace container image tags with SHA digests",
        "",
        "| Original Image | SHA Digest | Status |",
        "|----------------|------------|--------|",
    ]
    for r in report.records:
        status = "✅ Success" if r.updated else "❌ Failed"
        lines.append(f"| `{r.original}` | `{r.digest or 'N/A'}` | {status} |")
    lines += [
        "",
        "## Summary",
        "",
        f"- **Images found**: {report.found}",
        f"- **Images processed**: {report.processed}",
        f"- **Success rate**: {report.success_rate}%",
        "",
        "## Processed Images",
        "",
    ]
    resolved = {image: digest for image, digest in digests.items() if digest}
    if resolved:
        lines += [f"- **{image}** → `{digest}`" for image, digest in resolved.items()]
    else:
        lines.append("No images were processed (all images may already use SHA digests)")
    lines += [
        "",
        "## Backup Location",
        "",
        f"Original files backed up to: `{report.backup_dir}`",
        "",
        "## Next Steps",
        "",
        "1. Review the changes: `git diff`",
        "2. Test the deployments in a staging environment",
        '3. Commit the changes: `git add -A && git commit -m "Pin container images to SHA digests"`',
        "",
    ]
    return "\n".join(lines)


def digest_commands(digests: Dict[str, Optional[str]], target: str) -> List[str]:
    """``sed`` one-liners that swap each resolved image for its digest in ``target``."""
    return [f"sed -i 's|{image}|{digest}|g' {target}" for image, digest in digests.items() if digest]
