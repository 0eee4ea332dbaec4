"""
ccr - ClusterCreator command-line interface.

One dispatcher for the homelab cluster lifecycle:
    ccr ctx homelab            # Select the cluster to work on
    ccr bootstrap              # Install Kubernetes and addons with Ansible
    ccr flux-bootstrap         # Hand the cluster over to GitOps
    ccr health-check           # Check cluster health
    ccr destroy                # Tear everything down
"""

import logging
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from clustercreator import context
from clustercreator.actions import UNKNOWN, UPDATE_AVAILABLE, ActionPinner, GitHubClient
from clustercreator.addons import METRICS_ENDPOINTS, AddonFixer
from clustercreator.ansible import PlaybookRunner
from clustercreator.bootstrap import ClusterBootstrapper, bootstrap_summary
from clustercreator.config import Config
from clustercreator.destroy import ClusterDestroyer
from clustercreator.disk_health import DiskHealthMonitor, attach_log_file, default_log_file
from clustercreator.etcd_backups import EtcdBackupCleaner
from clustercreator.exceptions import ClusterCreatorError, OperationCancelled
from clustercreator.flux import PROFILES, FluxBootstrapper
from clustercreator.health import ClusterHealthChecker, Scope
from clustercreator.images import ContainerImagePinner, ImageDigestResolver, digest_commands
from clustercreator.istio import FAIL, PASS, IstioValidator
from clustercreator.kubectl import Kubectl
from clustercreator.kustomize import BUILD_PANIC, KustomizationChecker
from clustercreator.longhorn import (
    REBOOT_SEQUENCE,
    LonghornDiskManager,
    LonghornNodeOptimizer,
    fix_conversion_webhook,
)
from clustercreator.remote import RemoteHost
from clustercreator.shell import CommandRunner
from clustercreator.smart_monitoring import DEFAULT_EXEC_START, SmartMonitoringInstaller
from clustercreator.validation import InfrastructureValidator
from clustercreator.volume_group import VolumeGroupManager

# Initialize CLI app and console
app = typer.Typer(
    name="ccr",
    help="ClusterCreator - homelab Kubernetes lifecycle CLI",
    add_completion=False
)
console = Console()

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)8s] %(name)s: %(message)s"
)
logger = logging.getLogger(__name__)


def _abort(e: ClusterCreatorError) -> None:
    """Translate a manager error into the process exit code."""
    if isinstance(e, OperationCancelled):
        console.print(escape(str(e)))
        raise typer.Exit(e.exit_code)
    console.print(f"❌ {escape(str(e))}")
    raise typer.Exit(1)


def _cluster() -> str:
    try:
        return Config.require_cluster_name()
    except ClusterCreatorError as e:
        _abort(e)


def _proxmox(host: Optional[str], user: Optional[str] = None) -> RemoteHost:
    return RemoteHost(host or Config.PROXMOX_HOST, user=user or Config.PROXMOX_USER)


def _split(values: Optional[str]) -> Optional[List[str]]:
    if not values:
        return None
    return [v.strip() for v in values.replace(" ", ",").split(",") if v.strip()]


# === CONTEXT ===

@app.command("ctx")
def ctx(
    name: Optional[str] = typer.Argument(None, help="Cluster to switch to"),
    clear: bool = typer.Option(False, "--clear", help="Clear the current cluster context"),
) -> None:
    """Show or switch the current cluster context."""
    if clear:
        if context.clear_current_cluster():
            console.print("✅ Cluster context cleared")
        else:
            console.print("No cluster context set")
        return
    if name is not None:
        try:
            context.set_current_cluster(name)
        except ValueError as e:
            console.print(f"❌ {e}")
            raise typer.Exit(1)
        console.print(f"✅ Switched to cluster [bold]{name}[/bold]")
        return
    current = context.current_cluster()
    if current:
        console.print(current)
    else:
        console.print("No cluster context set. Use 'ccr ctx <cluster-name>'.")
        raise typer.Exit(1)


# === CLUSTER LIFECYCLE ===

@app.command("bootstrap")
def bootstrap(
    addons_only: bool = typer.Option(
        False, "--addons-only", help="Run only storage and addon setup (Longhorn, Cilium LB, Flux, etc.)"
    ),
    enable_metrics: bool = typer.Option(
        False, "--enable-metrics", help="Enable control plane metrics"
    ),
) -> None:
    """Run the Ansible playbooks that bootstrap Kubernetes on the cluster."""
    cluster = _cluster()
    try:
        ClusterBootstrapper(cluster).bootstrap(addons_only=addons_only, enable_metrics=enable_metrics)
    except ClusterCreatorError as e:
        _abort(e)

    console.print("✅ Cluster bootstrap completed successfully!")
    for line in bootstrap_summary(cluster):
        console.print(line)


@app.command("destroy")
def destroy(
    force: bool = typer.Option(False, "--force", help="Skip all confirmation prompts (DANGEROUS)"),
) -> None:
    """COMPLETELY destroy all infrastructure for the current cluster."""
    try:
        report = ClusterDestroyer(Config.cluster_name()).destroy(force=force)
    except ClusterCreatorError as e:
        _abort(e)

    console.print(f"\n🔥 Cluster '{report.cluster}' has been completely destroyed.")
    for path in report.removed_paths:
        console.print(f"  • removed {path}")
    console.print("Use 'ccr ctx <cluster-name>' to switch to a different cluster.")


@app.command("flux-bootstrap")
def flux_bootstrap(
    profile: str = typer.Option("homelab", "--profile", "-p", help=f"Profile: {', '.join(PROFILES)}"),
) -> None:
    """Bootstrap Flux v2 with SOPS and wait for the GitOps phases."""
    if profile not in PROFILES:
        console.print(f"❌ Unknown profile '{profile}'. Choose from: {', '.join(PROFILES)}")
        raise typer.Exit(1)
    try:
        FluxBootstrapper(PROFILES[profile]).bootstrap()
    except ClusterCreatorError as e:
        _abort(e)

    console.print("🎉 Flux bootstrap completed successfully!")
    console.print("Next: flux logs --all-namespaces | flux get all")


# === VALIDATION & HEALTH ===

@app.command("validate")
def validate() -> None:
    """Validate cluster readiness before a GitOps deployment."""
    validator = InfrastructureValidator()
    ok = validator.validate_infrastructure()
    for result in validator.results:
        console.print(f"{'✅' if result.passed else '❌'} {result.name}: {result.message}")
    if not ok:
        raise typer.Exit(1)


@app.command("health-check")
def health_check(
    gpu_only: bool = typer.Option(False, "--gpu-only", help="Check only GPU-related components"),
    control_plane: bool = typer.Option(False, "--control-plane", help="Check only control plane components"),
    storage: bool = typer.Option(False, "--storage", help="Check only storage components"),
    fix: bool = typer.Option(False, "--fix", help="Attempt automatic fixes for common issues"),
) -> None:
    """Comprehensive cluster health check."""
    scopes = [s for s, flag in ((Scope.GPU_ONLY, gpu_only), (Scope.CONTROL_PLANE, control_plane),
                                (Scope.STORAGE, storage)) if flag]
    if len(scopes) > 1:
        console.print("❌ Choose at most one of --gpu-only, --control-plane, --storage")
        raise typer.Exit(1)

    console.print("🔍 ClusterCreator Health Check")
    report = ClusterHealthChecker(scope=scopes[0] if scopes else Scope.ALL, auto_fix=fix).run()

    table = Table(title="📊 Health Check Summary")
    table.add_column("Total", style="cyan")
    table.add_column("Passed", style="green")
    table.add_column("Warnings", style="yellow")
    table.add_column("Failed", style="red")
    table.add_row(str(report.total), str(report.passed), str(report.warnings), str(report.failed))
    console.print(table)
    console.print(report.verdict)
    raise typer.Exit(report.exit_code)


@app.command("validate-istio")
def validate_istio(
    expected_ip: str = typer.Option("10.11.12.200", "--expected-ip", help="Expected ingress LoadBalancer IP"),
) -> None:
    """Validate the ingress-only Istio deployment."""
    report = IstioValidator(expected_lb_ip=expected_ip).validate()

    table = Table(title="Istio Validation")
    table.add_column("Check", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Detail")
    for check in report.checks:
        status = {PASS: "✅", FAIL: "❌"}.get(check.status, "⚠️")
        table.add_row(check.name, status, check.detail)
    console.print(table)
    if not report.ok:
        raise typer.Exit(1)


# === PROXMOX DISKS ===

@app.command("disk-health")
def disk_health(
    host: Optional[str] = typer.Option(None, "--host", help="Proxmox host (default: PROXMOX_HOST)"),
    disks: Optional[str] = typer.Option(None, "--disks", help="Comma-separated disks, e.g. sda,sdc"),
    log_file: Optional[Path] = typer.Option(None, "--log-file", help="Log file (default: /tmp/disk-health-YYYYMMDD.log)"),
) -> None:
    """Check SSD health, LVM status and kernel disk errors on the Proxmox host."""
    attach_log_file(log_file or default_log_file())
    console.print("🔍 ClusterCreator Disk Health Monitor")
    try:
        with _proxmox(host) as remote:
            report = DiskHealthMonitor(remote, disks=_split(disks)).run()
    except ClusterCreatorError as e:
        _abort(e)

    table = Table(title="Disk Health")
    table.add_column("Disk", style="cyan")
    table.add_column("Status", style="bold")
    table.add_column("Temp")
    table.add_column("Wear")
    table.add_column("Reallocated")
    for d in report.disks:
        a = d.attributes
        table.add_row(d.disk, "✅" if d.passed else "❌",
                      *("N/A" if a.get(k) is None else str(a[k]) for k in ("temperature", "wear", "reallocated")))
    console.print(table)
    console.print(f"LVM: {'✅' if report.lvm_ok else '❌'}  Kernel disk errors: {len(report.kernel_errors)}")
    raise typer.Exit(report.exit_code)


@app.command("setup-smart-monitoring")
def setup_smart_monitoring(
    host: Optional[str] = typer.Option(None, "--host", help="Proxmox host (default: PROXMOX_HOST)"),
    email: Optional[str] = typer.Option(None, "--email", help="Alert email (default: ALERT_EMAIL or root@localhost)"),
    exec_start: str = typer.Option(DEFAULT_EXEC_START, "--exec-start", help="Command the hourly monitor runs"),
) -> None:
    """Install smartd, the alert hook and the hourly disk monitor timer on Proxmox."""
    try:
        with _proxmox(host) as remote:
            SmartMonitoringInstaller(remote, email=email, exec_start=exec_start).setup()
    except ClusterCreatorError as e:
        _abort(e)
    console.print("✅ SMART monitoring setup complete!")


vg_app = typer.Typer(help="Proxmox LVM volume group commands")
app.add_typer(vg_app, name="vg")


@vg_app.command("inspect")
def vg_inspect(
    host: Optional[str] = typer.Option(None, "--host"),
    user: Optional[str] = typer.Option(None, "--user"),
    vg: Optional[str] = typer.Option(None, "--vg", help="Volume group (default: GAMMA_VG_NAME)"),
) -> None:
    """Show volume group, PVs and disk-id mapping."""
    try:
        with _proxmox(host, user) as remote:
            info = VolumeGroupManager(remote, vg).inspect()
    except ClusterCreatorError as e:
        _abort(e)
    if not info.exists:
        console.print(f"Volume group '{info.name}' does not exist")
        return
    console.print(info.summary)
    console.print(f"Logical volumes: {info.lv_count}")
    table = Table(title="Physical Volumes")
    table.add_column("Device", style="cyan")
    table.add_column("Size")
    table.add_column("Disk ID", style="blue")
    for pv in info.pvs:
        table.add_row(pv.device, pv.size, pv.disk_id)
    console.print(table)
    console.print(f"Proxmox storage: {info.pvesm_entry or 'not registered'}")


@vg_app.command("cleanup")
def vg_cleanup(
    host: Optional[str] = typer.Option(None, "--host"),
    user: Optional[str] = typer.Option(None, "--user"),
    vg: Optional[str] = typer.Option(None, "--vg"),
) -> None:
    """DESTROY the volume group and wipe its physical volumes."""
    try:
        with _proxmox(host, user) as remote:
            removed = VolumeGroupManager(remote, vg).cleanup()
    except ClusterCreatorError as e:
        _abort(e)
    if removed:
        console.print("✅ Cleanup completed successfully!")
        console.print("Next: ccr vg setup <disk-id>... to rebuild it")


@vg_app.command("setup")
def vg_setup(
    disk_ids: List[str] = typer.Argument(..., help="Whole-disk /dev/disk/by-id names"),
    host: Optional[str] = typer.Option(None, "--host"),
    user: Optional[str] = typer.Option(None, "--user"),
    vg: Optional[str] = typer.Option(None, "--vg"),
) -> None:
    """Reconcile the volume group to the given disks via Ansible."""
    try:
        with _proxmox(host, user) as remote:
            plan = VolumeGroupManager(remote, vg).setup(disk_ids)
    except ClusterCreatorError as e:
        _abort(e)
    console.print(f"✅ Volume group setup finished (+{len(plan.to_add)} / -{len(plan.to_remove)})")


@app.command("cleanup-etcd-backups")
def cleanup_etcd_backups(
    days: int = typer.Option(1, "--days", "-d", help="Remove backups older than DAYS"),
    dry_run: bool = typer.Option(False, "--dry-run", "-n", help="Show what would be deleted"),
) -> None:
    """Remove old etcd backup files from every etcd node."""
    cluster = _cluster()
    try:
        results = EtcdBackupCleaner(cluster, days=days, dry_run=dry_run).run()
    except ClusterCreatorError as e:
        _abort(e)

    table = Table(title="etcd Backup Cleanup")
    table.add_column("Node", style="cyan")
    table.add_column("Files")
    table.add_column("Size")
    table.add_column("Status", style="bold")
    for r in results:
        status = "unreachable" if not r.reachable else ("deleted" if r.deleted else ("dry-run" if dry_run else "-"))
        table.add_row(r.node, str(len(r.files)), r.total_size, status)
    console.print(table)
    if dry_run:
        console.print("Dry run completed. Run without --dry-run to actually delete files.")


# === LONGHORN ===

longhorn_app = typer.Typer(help="Longhorn storage maintenance commands")
app.add_typer(longhorn_app, name="longhorn")


@longhorn_app.command("add-disks")
def longhorn_add_disks(
    nodes: Optional[str] = typer.Option(None, "--nodes", help="Comma-separated Longhorn node names"),
    path: str = typer.Option("/var/lib/longhorn-disk/longhorn-data", "--path", help="Disk mount path"),
    wait: int = typer.Option(30, "--wait", help="Seconds to wait for Longhorn to detect disks"),
) -> None:
    """Add the extra data disk to each Longhorn node."""
    manager = LonghornDiskManager(nodes=_split(nodes), disk_path=path)
    results = manager.add_disks(wait=wait)
    for node, disks in manager.disk_status().items():
        console.print(f"=== {node} === {'✅' if results.get(node) else '❌'}")
        for name, status in disks.items():
            console.print(f"  {name}: {status}")
    if not all(results.values()):
        raise typer.Exit(1)


@longhorn_app.command("fix-webhook")
def longhorn_fix_webhook() -> None:
    """Remove the broken conversion webhook from the Longhorn CRDs."""
    cluster = _cluster()
    patched = fix_conversion_webhook(Kubectl(kubeconfig=Config.kubeconfig_path(cluster)))
    console.print(f"✅ Patched {len(patched)} CRD(s). Monitor with: kubectl top nodes")


@longhorn_app.command("optimize")
def longhorn_optimize(
    monitor_script: Path = typer.Option(
        Path("~/monitor_targeted_health.sh"), "--monitor-script", help="Where to write the monitoring script"
    ),
) -> None:
    """Apply targeted OS tuning to Longhorn, GPU and control plane nodes."""
    try:
        results = LonghornNodeOptimizer().optimize(monitor_script)
    except ClusterCreatorError as e:
        _abort(e)

    table = Table(title="Optimizations")
    table.add_column("Optimization", style="cyan")
    table.add_column("Applied", style="green")
    table.add_column("Skipped", style="yellow")
    for r in results:
        table.add_row(r.name, ", ".join(r.applied) or "-", ", ".join(r.skipped) or "-")
    console.print(table)
    console.print("REBOOT SEQUENCE:")
    for step in REBOOT_SEQUENCE:
        console.print(f"  {step}")


# === ADDONS ===

@app.command("fix-gpu-operator")
def fix_gpu_operator(
    force: bool = typer.Option(False, "--force", help="Force restart of GPU operator even if already running"),
    deploy_working: bool = typer.Option(False, "--deploy-working", help="Deploy working GPU DaemonSets"),
) -> None:
    """Fix the GPU operator validation deadlock with pre-installed drivers."""
    cluster = _cluster()
    try:
        AddonFixer(PlaybookRunner(cluster)).fix_gpu_operator(force=force, deploy_working=deploy_working)
    except ClusterCreatorError as e:
        _abort(e)
    console.print("✅ GPU operator validation fix applied successfully!")
    console.print("Next: kubectl get pods -n gpu-operator -w")


@app.command("update-metrics")
def update_metrics() -> None:
    """Expose control plane metrics endpoints on an existing cluster."""
    cluster = _cluster()
    try:
        AddonFixer(PlaybookRunner(cluster)).update_metrics()
    except ClusterCreatorError as e:
        _abort(e)
    console.print("✅ Metrics endpoints are now available at:")
    for endpoint in METRICS_ENDPOINTS:
        console.print(f"  • {endpoint}")


# === SUPPLY CHAIN PINNING ===

images_app = typer.Typer(help="Container image digest commands")
app.add_typer(images_app, name="images")


@images_app.command("pin")
def images_pin(
    root: Path = typer.Option(Path("."), "--root", help="Directory to scan for YAML manifests"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Resolve digests without editing files"),
) -> None:
    """Replace container image tags with SHA digests in YAML manifests."""
    try:
        CommandRunner().ensure_command("docker", "Please install Docker first.")
    except ClusterCreatorError as e:
        _abort(e)
    report = ContainerImagePinner(root, dry_run=dry_run).pin()
    if not report.found:
        console.print("✅ No container images found or all images already use SHA digests!")
        return
    console.print(f"Images found: {report.found}  processed: {report.processed}  "
                  f"success rate: {report.success_rate}%")
    if report.summary_file:
        console.print(f"Summary written to: {report.summary_file}")
        console.print(f"Backup created in: {report.backup_dir}")
        console.print("⚠️  Please review the changes with 'git diff' before committing!")


@images_app.command("digests")
def images_digests(
    images: List[str] = typer.Argument(..., help="Images to resolve, e.g. linuxserver/radarr:5.14.0"),
    target: str = typer.Option("flux/apps/base/media/newgen_arrstack.yaml", "--target",
                               help="File the sed commands should edit"),
) -> None:
    """Print SHA digests and sed replacement commands for images."""
    resolver = ImageDigestResolver()
    digests = {image: resolver.resolve(image) for image in images}
    console.print("=== REPLACEMENT COMMANDS ===")
    for command in digest_commands(digests, target):
        console.print(command, markup=False, highlight=False)
    console.print("=== SUMMARY ===")
    for image, digest in digests.items():
        console.print(f"✅ {image} -> {digest}" if digest else f"❌ {image} -> FAILED", markup=False)
    if not all(digests.values()):
        raise typer.Exit(1)


actions_app = typer.Typer(help="GitHub Actions pinning commands")
app.add_typer(actions_app, name="actions")


@actions_app.command("pin")
def actions_pin(
    root: Path = typer.Option(Path("."), "--root", help="Repository root"),
    dry_run: bool = typer.Option(False, "--dry-run", "-d", help="Show what would change"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Automatically confirm changes"),
    upgrade: bool = typer.Option(False, "--upgrade", "-u", help="Check for newer versions of pinned actions"),
    token: Optional[str] = typer.Option(None, "--token", "-t", help="GitHub token (or GITHUB_TOKEN)"),
) -> None:
    """Pin GitHub Actions in .github/**/*.yml to commit SHAs."""
    pinner = ActionPinner(GitHubClient(token), dry_run=dry_run, assume_yes=yes, upgrade=upgrade)
    summary = pinner.run(root)
    if summary is None:
        console.print("Aborted.")
        return

    if summary.changes:
        table = Table(title="GitHub Actions")
        table.add_column("File", style="cyan")
        table.add_column("Action", style="blue")
        table.add_column("Ref")
        table.add_column("Result", style="bold")
        for c in summary.changes:
            if c.applied:
                result = f"✅ {c.new_ref}"
            elif c.status == UPDATE_AVAILABLE:
                result = f"⬆️  {c.latest}"
            elif c.status == UNKNOWN:
                result = f"❓ latest {c.latest}"
            elif c.new_ref:
                result = f"would pin {c.new_ref}"
            else:
                result = "-"
            table.add_row(str(c.file), c.action, c.old_ref, result)
        console.print(table)
    if dry_run:
        console.print("🔍 Dry run completed. Use --yes to apply changes.")
    else:
        console.print(f"✅ Updated {len(summary.updated_files)} file(s)")


@app.command("checkrefs")
def checkrefs(
    root: Optional[Path] = typer.Option(None, "--root", help="Repository root (default: REPO_PATH)"),
) -> None:
    """Check kustomization file references and trial-build each one."""
    try:
        report = KustomizationChecker(root or Config.REPO_PATH).run()
    except ClusterCreatorError as e:
        _abort(e)

    for result in report.results:
        if result.build == BUILD_PANIC or result.missing:
            console.print(f"❌ {result.path}")
            for path in result.missing:
                console.print(f"    missing: {path}")
    console.print("🧾 Summary:")
    if report.missing:
        console.print(f"❗ Missing file references: {report.missing}")
    if report.panics:
        console.print(f"💥 Kustomizations with build panic: {report.panics}")
    if report.build_errors:
        console.print(f"⚠️  Kustomizations with build errors: {report.build_errors}")
    if not report.exit_code:
        console.print("✅ All references valid and builds succeeded.")
    raise typer.Exit(report.exit_code)


# === MAIN ENTRY POINT ===

@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging")
) -> None:
    """
    ClusterCreator

    Provision, bootstrap and maintain the homelab Kubernetes clusters.
    """
    if debug:
        logging.getLogger().setLevel(logging.DEBUG)
    elif verbose:
        logging.getLogger().setLevel(logging.INFO)


if __name__ == "__main__":
    app()
