"""SSD, LVM and kernel-log health monitoring for the Proxmox gamma datastore.

Every probe runs on the Proxmox host over SSH. Alerts go to the log and,
when configured, to email and Telegram.
"""

import logging
import re
import smtplib
from dataclasses import dataclass, field
from datetime import datetime
from email.mime.text import MIMEText
from pathlib import Path
from typing import Dict, List, Optional

import requests

from clustercreator.config import Config
from clustercreator.remote import RemoteHost

logger = logging.getLogger(__name__)

EXPECTED_MIN_SIZE = 900_000_000_000
TEMP_WARN = 70
WEAR_ALERT = 10
WEAR_WARN = 50

ALERT = "alert"
WARNING = "warning"

_SMART_FIELDS = {
    "temperature": (("Temperature_Celsius",), 9),
    "wear": (("Wear_Leveling_Count", "Media_Wearout_Indicator"), 3),
    "reallocated": (("Reallocated_Sector_Ct", "Reallocated_Event_Count"), 9),
}


@dataclass
class Finding:
    level: str
    message: str


@dataclass
class DiskResult:
    disk: str
    passed: bool = True
    findings: List[Finding] = field(default_factory=list)
    attributes: Dict[str, Optional[int]] = field(default_factory=dict)


@dataclass
class DiskHealthReport:
    disks: List[DiskResult] = field(default_factory=list)
    lvm_ok: bool = True
    lvm_findings: List[Finding] = field(default_factory=list)
    kernel_errors: List[str] = field(default_factory=list)

    @property
    def failed(self) -> int:
        return sum(1 for d in self.disks if not d.passed) + (0 if self.lvm_ok else 1)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0


def default_log_file(now: Optional[datetime] = None) -> Path:
    return Path(f"/tmp/disk-health-{(now or datetime.now()):%Y%m%d}.log")


def attach_log_file(path: Path) -> logging.Handler:
    """Append this module's log records to ``path``."""
    handler = logging.FileHandler(path)
    handler.setFormatter(logging.Formatter("[%(asctime)s] %(levelname)s: %(message)s", "%Y-%m-%d %H:%M:%S"))
    logger.addHandler(handler)
    return handler


def _to_int(value: Optional[str]) -> Optional[int]:
    if value is None or not value.isdigit():
        return None
    return int(value)


def parse_smart_attributes(output: str) -> Dict[str, Optional[int]]:
    """Pull temperature, wear and reallocated counts out of ``smartctl -A`` output.

    Temperature and reallocated use RAW_VALUE; wear uses the normalized VALUE.
    Attributes that are missing or non-numeric come back as None.
    """
    values: Dict[str, Optional[int]] = {}
    lines = output.splitlines()
    for key, (names, column) in _SMART_FIELDS.items():
        raw = None
        for line in lines:
            if any(name in line for name in names):
                parts = line.split()
                raw = parts[column] if len(parts) > column else None
                break
        values[key] = _to_int(raw)
    return values


def parse_overall_health(output: str) -> str:
    for line in output.splitlines():
        if "SMART overall-health" in line:
            return line.split()[-1]
    return ""


def evaluate_attributes(disk: str, attrs: Dict[str, Optional[int]]) -> List[Finding]:
    findings = []
    temp = attrs.get("temperature")
    wear = attrs.get("wear")
    reallocated = attrs.get("reallocated")
    if temp is not None and temp > TEMP_WARN:
        findings.append(Finding(WARNING, f"/dev/{disk} temperature is high: {temp}°C"))
    if wear is not None and wear < WEAR_ALERT:
        findings.append(Finding(ALERT, f"/dev/{disk} wear level is critical: {wear}%"))
    elif wear is not None and wear < WEAR_WARN:
        findings.append(Finding(WARNING, f"/dev/{disk} wear level is low: {wear}%"))
    if reallocated is not None and reallocated > 0:
        findings.append(Finding(WARNING, f"/dev/{disk} has {reallocated} reallocated sectors"))
    return findings


def evaluate_size(disk: str, raw_size: str) -> Optional[Finding]:
    """Alert for a missing/zero size, warn when smaller than a 1TB SSD."""
    size = _to_int(raw_size.strip().splitlines()[0].strip() if raw_size.strip() else "")
    if not size:
        return Finding(ALERT, f"/dev/{disk} shows 0 bytes or invalid size - disk disconnected or failed")
    if size < EXPECTED_MIN_SIZE:
        return Finding(WARNING, f"/dev/{disk} size is smaller than expected: {size // 1_000_000_000}GB")
    return None


class Notifier:
    """Delivers alerts by email and Telegram; delivery failures never propagate."""

    def __init__(
        self,
        email: Optional[str] = None,
        telegram_token: Optional[str] = None,
        telegram_chat_id: Optional[str] = None,
    ) -> None:
        self.email = Config.ALERT_EMAIL if email is None else email
        self.telegram_token = Config.TELEGRAM_BOT_TOKEN if telegram_token is None else telegram_token
        self.telegram_chat_id = Config.TELEGRAM_CHAT_ID if telegram_chat_id is None else telegram_chat_id

    def send(self, message: str) -> None:
        if self.email:
            self._send_email("ClusterCreator Disk Alert", message)
        if self.telegram_token and self.telegram_chat_id:
            self._send_telegram(f"🚨 ClusterCreator Disk Alert: {message}")

    def _send_email(self, subject: str, body: str) -> bool:
        msg = MIMEText(body)
        msg["Subject"] = subject
        msg["From"] = Config.SMTP_USER or f"clustercreator@{Config.SMTP_HOST}"
        msg["To"] = self.email
        try:
            with smtplib.SMTP(Config.SMTP_HOST, Config.SMTP_PORT, timeout=10) as server:
                if Config.SMTP_USER and Config.SMTP_PASSWORD:
                    server.starttls()
                    server.login(Config.SMTP_USER, Config.SMTP_PASSWORD)
                server.send_message(msg)
            return True
        except (smtplib.SMTPException, OSError) as e:
            logger.warning(f"⚠️  Failed to send alert email: {e}")
            return False

    def _send_telegram(self, text: str) -> bool:
        url = f"https://api.telegram.org/bot{self.telegram_token}/sendMessage"
        try:
            response = requests.post(url, data={"chat_id": self.telegram_chat_id, "text": text}, timeout=10)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning(f"⚠️  Failed to send Telegram alert: {e}")
            return False


class DiskHealthMonitor:
    """Runs the per-disk, LVM and kernel-log checks against one Proxmox host."""

    def __init__(
        self,
        host: RemoteHost,
        disks: Optional[List[str]] = None,
        vg_name: Optional[str] = None,
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.host = host
        self.disks = disks or list(Config.GAMMA_DISKS)
        self.vg_name = vg_name or Config.GAMMA_VG_NAME
        self.notifier = notifier or Notifier()

    def alert(self, message: str) -> None:
        logger.error(f"🚨 ALERT: {message}")
        self.notifier.send(message)

    def _record(self, result: DiskResult, finding: Finding) -> None:
        result.findings.append(finding)
        if finding.level == ALERT:
            self.alert(finding.message)
        else:
            logger.warning(f"⚠️  WARNING: {finding.message}")

    def check_connectivity(self, disk: str, result: DiskResult) -> bool:
        logger.info(f"Checking connectivity for /dev/{disk}")
        out, _, _ = self.host.run(f"lsblk -b -n -o SIZE /dev/{disk}")
        finding = evaluate_size(disk, out)
        if finding:
            self._record(result, finding)
            if finding.level == ALERT:
                return False
        if not self.host.succeeds(f"dd if=/dev/{disk} of=/dev/null bs=1M count=1"):
            self._record(result, Finding(ALERT, f"/dev/{disk} failed basic read test - I/O errors detected"))
            return False
        return True

    def check_smart_health(self, disk: str, result: DiskResult) -> bool:
        logger.info(f"Checking SMART health for /dev/{disk}")
        out, _, code = self.host.run(f"smartctl -H /dev/{disk}")
        if code != 0:
            self._record(result, Finding(ALERT, f"Cannot access SMART data for /dev/{disk} - disk may be disconnected"))
            return False
        status = parse_overall_health(out)
        if status != "PASSED":
            self._record(result, Finding(ALERT, f"SMART health check FAILED for /dev/{disk} - Status: {status}"))
            return False
        return True

    def check_smart_attributes(self, disk: str, result: DiskResult) -> None:
        logger.info(f"Checking SMART attributes for /dev/{disk}")
        out, _, _ = self.host.run(f"smartctl -A /dev/{disk}")
        result.attributes = parse_smart_attributes(out)
        for finding in evaluate_attributes(disk, result.attributes):
            self._record(result, finding)
        a = result.attributes
        logger.info(
            f"/dev/{disk} - Temp: {a['temperature'] if a['temperature'] is not None else 'N/A'}°C, "
            f"Wear: {a['wear'] if a['wear'] is not None else 'N/A'}%, "
            f"Reallocated: {a['reallocated'] if a['reallocated'] is not None else 'N/A'}"
        )

    def check_disk(self, disk: str) -> DiskResult:
        result = DiskResult(disk=disk)
        logger.info(f"🔍 Testing /dev/{disk}...")
        if not self.check_connectivity(disk, result) or not self.check_smart_health(disk, result):
            result.passed = False
            return result
        self.check_smart_attributes(disk, result)
        logger.info(f"✅ /dev/{disk} passed all tests")
        return result

    def check_lvm(self, report: DiskHealthReport) -> bool:
        vg = self.vg_name
        logger.info(f"Checking LVM health for {vg} volume group")
        out, err, _ = self.host.run(f"vgs {vg}")
        missing = sum(1 for line in (out + "\n" + err).splitlines() if "missing PV" in line)
        if missing:
            report.lvm_findings.append(Finding(ALERT, f"{vg} volume group has {missing} missing physical volumes"))
            self.alert(report.lvm_findings[-1].message)
            return False

        attr, _, _ = self.host.run(f"vgs --noheadings -o vg_attr {vg}")
        attr = attr.strip()
        if not attr.startswith("w"):
            report.lvm_findings.append(Finding(ALERT, f"{vg} volume group is not writable (status: {attr})"))
            self.alert(report.lvm_findings[-1].message)
            return False

        if self.host.succeeds(f"lvs {vg}/data"):
            health, _, _ = self.host.run(f"lvs --noheadings -o lv_health_status {vg}/data")
            health = health.strip()
            if health:
                report.lvm_findings.append(Finding(WARNING, f"{vg} thin pool health status: {health}"))
                logger.warning(f"⚠️  WARNING: {report.lvm_findings[-1].message}")

        logger.info("✅ LVM health check passed")
        return True

    def check_kernel_messages(self) -> List[str]:
        logger.info("Checking kernel messages for disk errors")
        out, _, _ = self.host.run("dmesg")
        lines = [
            line for line in out.splitlines()
            if re.search(r"error|fail", line, re.IGNORECASE) and re.search(r"sd[a-z]", line)
        ][-10:]
        if lines:
            logger.warning(f"⚠️  Found {len(lines)} recent disk-related error messages in kernel log")
            for line in lines[-5:]:
                logger.info(f"KERNEL: {line}")
        return lines

    def run(self) -> DiskHealthReport:
        logger.info("Starting disk health monitoring")
        report = DiskHealthReport()
        for disk in self.disks:
            report.disks.append(self.check_disk(disk))
        report.lvm_ok = self.check_lvm(report)
        report.kernel_errors = self.check_kernel_messages()

        if report.failed:
            self.alert(f"{report.failed} out of {len(self.disks)} disks failed health checks")
        else:
            logger.info(f"✅ All disk health checks passed ({len(self.disks)} disks tested)")
        logger.info("Disk health monitoring completed")
        return report
