"""Tests for volume_group module."""

import json
import textwrap

import pytest

from clustercreator.exceptions import ConfigError, OperationCancelled
from clustercreator.volume_group import (
    PhysicalVolume,
    VolumeGroupError,
    VolumeGroupManager,
    parse_by_id_listing,
    plan_disk_changes,
)

from conftest import FakeRemoteHost, FakeRunner, ScriptedPrompter

BY_ID = textwrap.dedent("""\
    total 0
    lrwxrwxrwx 1 root root  9 Jan 31 10:00 ata-CT1000MX500_AAA -> ../../sda
    lrwxrwxrwx 1 root root 10 Jan 31 10:00 ata-CT1000MX500_AAA-part1 -> ../../sda1
    lrwxrwxrwx 1 root root  9 Jan 31 10:00 wwn-0x500a0751aaa -> ../../sda
    lrwxrwxrwx 1 root root  9 Jan 31 10:00 ata-CT1000MX500_CCC -> ../../sdc
""")

PVS = "  /dev/sda   931.51g gamma\n  /dev/sdc   931.51g gamma\n  /dev/nvme0n1p3 475g pve\n"

QM_LIST = textwrap.dedent("""\
          VMID NAME                 STATUS     MEM(MB)    BOOTDISK(GB) PID
           101 gamma-general-0      running    8192              50.00 1234
           102 other                stopped    2048              32.00 0
""")


@pytest.fixture
def proxmox():
    host = FakeRemoteHost()
    host.on("pvs --noheadings", out=PVS)
    host.on("ls -l /dev/disk/by-id/", out=BY_ID)
    host.on("lvs --noheadings -o lv_name gamma", out="  vm-101-disk-0\n  vm-101-disk-1\n")
    host.on("pvesm status", out="gamma  lvmthin  active  100  0  100  0%\nlocal  dir  active\n")
    host.on("qm list", out=QM_LIST)
    host.on("qm config 101", out="name: gamma-general-0\nscsi1: local-lvm:vm-101-disk-0\n")
    host.on("qm config 102", out="name: other\nscsi0: local-lvm:vm-102-disk-0\n")
    return host


class TestParsing:
    def test_by_id_listing_skips_partitions(self):
        mapping = parse_by_id_listing(BY_ID)

        assert mapping == {"sda": ["ata-CT1000MX500_AAA", "wwn-0x500a0751aaa"], "sdc": ["ata-CT1000MX500_CCC"]}

    def test_plan_disk_changes(self):
        pvs = [PhysicalVolume("/dev/sda", disk_ids=["ata-A"]), PhysicalVolume("/dev/sdc", disk_ids=["ata-C"])]

        plan = plan_disk_changes(["ata-A", "ata-D"], pvs)

        assert plan.unchanged == ["ata-A"]
        assert plan.to_add == ["ata-D"]
        assert plan.to_remove == ["ata-C"]
        assert plan.has_changes

    def test_plan_rejects_partitions(self):
        with pytest.raises(ConfigError, match="ata-A-part1"):
            plan_disk_changes(["ata-A-part1"], [])

    def test_pv_without_by_id_falls_back_to_device(self):
        assert PhysicalVolume("/dev/sdz").disk_id == "/dev/sdz"


class TestVolumeGroupManager:
    def test_inspect(self, proxmox):
        info = VolumeGroupManager(proxmox, "gamma").inspect()

        assert info.exists
        assert info.lv_count == 2
        assert [pv.device for pv in info.pvs] == ["/dev/sda", "/dev/sdc"]
        assert info.pvs[0].disk_id == "ata-CT1000MX500_AAA"
        assert info.registered_in_proxmox

    def test_inspect_missing_vg(self, proxmox):
        proxmox.responses.insert(0, ("vgs gamma", "", 5, ""))

        assert VolumeGroupManager(proxmox, "gamma").inspect().exists is False

    def test_cleanup_requires_phrase(self, proxmox):
        with pytest.raises(OperationCancelled) as exc:
            VolumeGroupManager(proxmox, "gamma", ScriptedPrompter(answers=["delete gamma"])).cleanup()

        assert exc.value.exit_code == 0
        assert not any(c.startswith("vgremove") for c in proxmox.commands)

    def test_cleanup_refuses_when_vms_use_vg(self, proxmox):
        proxmox.responses.insert(0, ("qm config 101", "name: gamma-general-0\nscsi1: gamma:vm-101-disk-0\n", 0, ""))
        proxmox.responses.insert(0, ("qm status 101", "status: running", 0, ""))

        with pytest.raises(VolumeGroupError, match="Found 1 VM"):
            VolumeGroupManager(proxmox, "gamma", ScriptedPrompter(answers=["DELETE gamma"])).cleanup()

        assert not any(c.startswith("lvremove") for c in proxmox.commands)

    def test_cleanup_removes_everything(self, proxmox):
        proxmox.responses.insert(0, ("vgs gamma", "", [0, 5], ""))

        removed = VolumeGroupManager(proxmox, "gamma", ScriptedPrompter(answers=["DELETE gamma"])).cleanup()

        assert removed is True
        for command in ("lvremove -f gamma", "vgremove -f gamma", "pvremove -ff /dev/sda",
                        "wipefs -a /dev/sdc", "pvesm remove gamma"):
            assert command in proxmox.commands

    def test_cleanup_fatal_step(self, proxmox):
        proxmox.responses.insert(0, ("vgremove", "", 5, "in use"))

        with pytest.raises(VolumeGroupError, match="Failed to remove volume group"):
            VolumeGroupManager(proxmox, "gamma", ScriptedPrompter(answers=["DELETE gamma"])).cleanup()

    def test_cleanup_unreachable_host(self):
        with pytest.raises(ConfigError, match="Cannot connect"):
            VolumeGroupManager(FakeRemoteHost(reachable=False), "gamma").cleanup()

    def test_setup_runs_playbook_with_disk_ids(self, proxmox, repo):
        runner = FakeRunner()

        plan = VolumeGroupManager(proxmox, "gamma", runner=runner).setup(["ata-CT1000MX500_AAA", "ata-NEW"])

        assert plan.to_add == ["ata-NEW"]
        assert plan.to_remove == ["ata-CT1000MX500_CCC"]
        cmd = runner.calls[0].cmd
        assert cmd[:4] == ["ansible-playbook", "-i", "localhost,", "ansible/proxmox-gamma-vg-setup.yaml"]
        assert json.loads(cmd[-1]) == {"gamma_disk_ids": ["ata-CT1000MX500_AAA", "ata-NEW"]}
        assert runner.calls[0].cwd == str(repo)
