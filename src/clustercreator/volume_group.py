"""Inspection, teardown and disk-ID reconciliation of the Proxmox gamma LVM volume group."""

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from clustercreator.config import Config
from clustercreator.exceptions import ClusterCreatorError, ConfigError, OperationCancelled
from clustercreator.prompts import Prompter
from clustercreator.remote import RemoteHost
from clustercreator.shell import CommandRunner

logger = logging.getLogger(__name__)

SETUP_PLAYBOOK = "ansible/proxmox-gamma-vg-setup.yaml"


class VolumeGroupError(ClusterCreatorError):
    """Raised when a destructive LVM step fails or the VG is still in use."""


@dataclass
class PhysicalVolume:
    device: str
    size: str = ""
    disk_ids: List[str] = field(default_factory=list)

    @property
    def disk_id(self) -> str:
        return self.disk_ids[0] if self.disk_ids else self.device


@dataclass
class VGInspection:
    name: str
    exists: bool
    summary: str = ""
    lv_count: int = 0
    pvs: List[PhysicalVolume] = field(default_factory=list)
    pvesm_entry: str = ""

    @property
    def registered_in_proxmox(self) -> bool:
        return bool(self.pvesm_entry)


@dataclass
class VGPlan:
    to_add: List[str] = field(default_factory=list)
    to_remove: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.to_add or self.to_remove)


def parse_by_id_listing(listing: str) -> Dict[str, List[str]]:
    """Map device basenames to their whole-disk ``/dev/disk/by-id`` names.

    ``listing`` is ``ls -l /dev/disk/by-id/`` output; partition links are dropped.
    """
    mapping: Dict[str, List[str]] = {}
    for line in listing.splitlines():
        if " -> " not in line:
            continue
        left, target = line.rsplit(" -> ", 1)
        name = left.split()[-1]
        if "-part" in name:
            continue
        mapping.setdefault(os.path.basename(target.strip()), []).append(name)
    for names in mapping.values():
        names.sort()
    return mapping


def plan_disk_changes(desired_ids: List[str], pvs: List[PhysicalVolume]) -> VGPlan:
    """Diff the desired disk IDs against the disks already backing the VG."""
    partitions = [disk_id for disk_id in desired_ids if "-part" in disk_id]
    if partitions:
        raise ConfigError(f"Partition IDs are not allowed, use whole-disk IDs: {', '.join(partitions)}")

    plan = VGPlan()
    matched = set()
    for disk_id in desired_ids:
        owner = next((pv for pv in pvs if disk_id in pv.disk_ids), None)
        if owner is None:
            plan.to_add.append(disk_id)
        else:
            plan.unchanged.append(disk_id)
            matched.add(owner.device)
    plan.to_remove = [pv.disk_id for pv in pvs if pv.device not in matched]
    return plan


class VolumeGroupManager:
    """Manages one LVM volume group on the Proxmox host over SSH."""

    def __init__(
        self,
        host: RemoteHost,
        vg_name: Optional[str] = None,
        prompter: Optional[Prompter] = None,
        runner: Optional[CommandRunner] = None,
    ) -> None:
        self.host = host
        self.vg_name = vg_name or Config.GAMMA_VG_NAME
        self.prompter = prompter or Prompter()
        self.runner = runner or CommandRunner()

    def exists(self) -> bool:
        return self.host.succeeds(f"vgs {self.vg_name}")

    def physical_volumes(self) -> List[PhysicalVolume]:
        out, _, _ = self.host.run("pvs --noheadings -o pv_name,pv_size,vg_name")
        by_id = parse_by_id_listing(self.host.run("ls -l /dev/disk/by-id/")[0])
        pvs = []
        for line in out.splitlines():
            parts = line.split()
            if len(parts) < 3 or parts[2] != self.vg_name:
                continue
            device = parts[0]
            pvs.append(PhysicalVolume(device, parts[1], by_id.get(os.path.basename(device), [])))
        return pvs

    def inspect(self) -> VGInspection:
        if not self.exists():
            logger.warning(f"⚠️  Volume group '{self.vg_name}' does not exist")
            return VGInspection(self.vg_name, exists=False)
        summary, _, _ = self.host.run(f"vgs --units g -o vg_name,pv_count,lv_count,vg_size,vg_free {self.vg_name}")
        lvs, _, _ = self.host.run(f"lvs --noheadings -o lv_name {self.vg_name}")
        pvesm, _, _ = self.host.run("pvesm status")
        entry = "\n".join(line for line in pvesm.splitlines() if self.vg_name in line.split())
        return VGInspection(
            name=self.vg_name,
            exists=True,
            summary=summary,
            lv_count=len([line for line in lvs.splitlines() if line.strip()]),
            pvs=self.physical_volumes(),
            pvesm_entry=entry,
        )

    def vms_using_vg(self) -> List[Dict[str, str]]:
        """VMs whose config references ``<vg>:`` storage, with name and status."""
        listing, _, _ = self.host.run("qm list")
        vms = []
        for line in listing.splitlines()[1:]:
            parts = line.split()
            if not parts:
                continue
            vmid = parts[0]
            config, _, _ = self.host.run(f"qm config {vmid}")
            if f"{self.vg_name}:" not in config:
                continue
            name = next(
                (c.split(":", 1)[1].strip() for c in config.splitlines() if c.startswith("name:")), "unknown"
            )
            status_out, _, _ = self.host.run(f"qm status {vmid}")
            status = status_out.split()[1] if len(status_out.split()) > 1 else "unknown"
            vms.append({"vmid": vmid, "name": name, "status": status})
        return vms

    def _step(self, command: str, success: str, failure: str, fatal: bool) -> bool:
        out, err, code = self.host.run(command)
        if code == 0:
            logger.info(f"✅ {success}")
            return True
        if fatal:
            raise VolumeGroupError(f"{failure}: {err}")
        logger.warning(f"⚠️  {failure}")
        return False

    def cleanup(self) -> bool:
        """Destroy the VG and wipe its PVs. Returns False when there was nothing to do."""
        vg = self.vg_name
        if not self.host.is_reachable():
            raise ConfigError(f"Cannot connect to {self.host.target}")
        logger.info("✅ SSH connection successful")

        info = self.inspect()
        if not info.exists:
            logger.warning(f"Volume group '{vg}' does not exist. Nothing to clean up.")
            return False

        logger.warning(f"⚠️  This will DELETE the entire '{vg}' volume group!")
        logger.warning(f"⚠️  ALL DATA in {info.lv_count} logical volume(s) will be PERMANENTLY LOST!")
        if not self.prompter.phrase(f"Type 'DELETE {vg}' to confirm", f"DELETE {vg}"):
            raise OperationCancelled("Cleanup cancelled. No changes made.", exit_code=0)

        in_use = self.vms_using_vg()
        if in_use:
            for vm in in_use:
                logger.warning(f"  VM {vm['vmid']} ({vm['name']}) - Status: {vm['status']}")
            raise VolumeGroupError(
                f"Found {len(in_use)} VM(s) using {vg} storage. Stop and migrate or remove them first."
            )

        if info.lv_count:
            self._step(f"lvchange -an {vg}", "Logical volumes deactivated",
                       "Some logical volumes could not be deactivated", fatal=False)
            self._step(f"lvremove -f {vg}", "Logical volumes removed",
                       "Failed to remove logical volumes", fatal=True)
        self._step(f"vgchange -an {vg}", "Volume group deactivated",
                   "Volume group could not be deactivated", fatal=False)
        self._step(f"vgremove -f {vg}", "Volume group removed", "Failed to remove volume group", fatal=True)

        for pv in info.pvs:
            self._step(f"pvremove -ff {pv.device}", f"PV removed: {pv.device}",
                       f"Could not remove PV: {pv.device}", fatal=False)
            self._step(f"wipefs -a {pv.device}", f"Wiped: {pv.device}",
                       f"Could not wipe: {pv.device}", fatal=False)

        if info.registered_in_proxmox:
            self._step(f"pvesm remove {vg}", "Removed from Proxmox storage configuration",
                       "Could not remove from storage config", fatal=False)

        if self.exists():
            raise VolumeGroupError("Volume group still exists! Cleanup may have failed.")
        logger.info(f"✅ Volume group '{vg}' successfully removed")
        return True

    def plan(self, desired_disk_ids: List[str]) -> VGPlan:
        pvs = self.physical_volumes() if self.exists() else []
        return plan_disk_changes(desired_disk_ids, pvs)

    def setup_command(self, disk_ids: List[str]) -> List[str]:
        return [
            "ansible-playbook", "-i", "localhost,", SETUP_PLAYBOOK,
            "-e", f"proxmox_host={self.host.hostname}",
            "-e", f"proxmox_user={self.host.user}",
            "-e", json.dumps({"gamma_disk_ids": disk_ids}),
        ]

    def setup(self, disk_ids: List[str], repo_path: Optional[Path] = None) -> VGPlan:
        plan = self.plan(disk_ids)
        logger.info(f"Unchanged: {', '.join(plan.unchanged) or '-'}")
        logger.info(f"To add:    {', '.join(plan.to_add) or '-'}")
        logger.info(f"To remove: {', '.join(plan.to_remove) or '-'}")
        if not plan.has_changes:
            logger.info("✅ Volume group already matches the requested disks")
        self.runner.run(self.setup_command(disk_ids), capture=False, cwd=repo_path or Config.REPO_PATH)
        return plan
