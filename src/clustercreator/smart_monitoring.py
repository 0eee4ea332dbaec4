"""Installs smartd, the SMART alert hook and the hourly disk-monitor timer on Proxmox."""

import logging
import shlex
from typing import List, Optional

from clustercreator.config import Config
from clustercreator.remote import RemoteHost

logger = logging.getLogger(__name__)

SMARTD_CONF = "/etc/smartd.conf"
ALERT_SCRIPT = "/usr/local/bin/smart-alert.sh"
UNIT_NAME = "clustercreator-disk-monitor"
SYSTEMD_DIR = "/etc/systemd/system"
DEFAULT_EXEC_START = "/usr/local/bin/ccr disk-health --host localhost"
SELF_TEST_SCHEDULE = "(S/../.././02|L/../../6/03)"


def render_smartd_conf(disks: List[str], email: str) -> str:
    lines = [
        "# smartd configuration for ClusterCreator gamma datastore monitoring",
        "# Short self-test daily at 02:00, long self-test Saturdays at 03:00",
        "",
    ]
    for disk in disks:
        lines.append(
            f"/dev/{disk} -a -o on -S on -s {SELF_TEST_SCHEDULE} -m {email} -M exec {ALERT_SCRIPT}"
        )
    return "\n".join(lines) + "\n"


def render_alert_script(email: str, telegram_token: str = "", telegram_chat_id: str = "") -> str:
    return f"""#!/bin/bash
# Called by smartd when a disk issue is detected.

DEVICE="$1"
MESSAGE="$2"
ALERT_EMAIL={shlex.quote(email)}
TELEGRAM_BOT_TOKEN={shlex.quote(telegram_token)}
TELEGRAM_CHAT_ID={shlex.quote(telegram_chat_id)}

logger -t smartd "DISK ALERT: $DEVICE - $MESSAGE"

{{
    echo "ClusterCreator Disk Alert"
    echo "========================="
    echo "Device: $DEVICE"
    echo "Alert: $MESSAGE"
    echo "Time: $(date)"
    echo
    echo "Current SMART Status:"
    smartctl -a "$DEVICE" || echo "Failed to get SMART data"
    echo
    echo "Recent kernel messages:"
    dmesg | grep "$(basename "$DEVICE")" | tail -10 || echo "No recent kernel messages"
}} | mail -s "ClusterCreator: SMART Alert for $DEVICE" "$ALERT_EMAIL"

if [[ -n "$TELEGRAM_BOT_TOKEN" && -n "$TELEGRAM_CHAT_ID" ]]; then
    curl -s -X POST "https://api.telegram.org/bot$TELEGRAM_BOT_TOKEN/sendMessage" \\
        -d chat_id="$TELEGRAM_CHAT_ID" \\
        -d text="🚨 ClusterCreator SMART Alert: $DEVICE - $MESSAGE" >/dev/null 2>&1 || true
fi

case "$MESSAGE" in
    *"Temperature"*)
        echo "Temperature alert - consider checking cooling"
        ;;
    *"Reallocated"*|*"Pending"*)
        echo "Bad sector alert - disk may be failing"
        ;;
    *"Wear"*|*"Life"*)
        echo "Wear level alert - SSD approaching end of life"
        ;;
esac
"""


def render_service_unit(exec_start: str = DEFAULT_EXEC_START) -> str:
    return f"""[Unit]
Description=ClusterCreator Disk Health Monitor
After=network.target

[Service]
Type=oneshot
ExecStart={exec_start}
User=root
Environment=PROXMOX_HOST=localhost

[Install]
WantedBy=multi-user.target
"""


def render_timer_unit() -> str:
    return f"""[Unit]
Description=Run ClusterCreator Disk Health Monitor every hour
Requires={UNIT_NAME}.service

[Timer]
OnBootSec=5min
OnUnitActiveSec=1h
Persistent=true

[Install]
WantedBy=timers.target
"""


class SmartMonitoringInstaller:
    """Configures smartd and the periodic monitor on a Proxmox host."""

    def __init__(
        self,
        host: RemoteHost,
        disks: Optional[List[str]] = None,
        email: Optional[str] = None,
        exec_start: str = DEFAULT_EXEC_START,
    ) -> None:
        self.host = host
        self.disks = disks or list(Config.GAMMA_DISKS)
        self.email = email or Config.ALERT_EMAIL or "root@localhost"
        self.exec_start = exec_start

    def setup(self) -> None:
        logger.info(f"🔧 Setting up SMART monitoring on {self.host.hostname}...")
        self.host.check("apt-get update && apt-get install -y smartmontools mailutils")

        self.host.write_file(SMARTD_CONF, render_smartd_conf(self.disks, self.email))
        self.host.write_file(
            ALERT_SCRIPT,
            render_alert_script(self.email, Config.TELEGRAM_BOT_TOKEN, Config.TELEGRAM_CHAT_ID),
            mode=0o755,
        )
        self.host.check("systemctl enable smartd && systemctl restart smartd")

        self.host.write_file(f"{SYSTEMD_DIR}/{UNIT_NAME}.service", render_service_unit(self.exec_start))
        self.host.write_file(f"{SYSTEMD_DIR}/{UNIT_NAME}.timer", render_timer_unit())
        self.host.check(
            f"systemctl daemon-reload && systemctl enable {UNIT_NAME}.timer && systemctl start {UNIT_NAME}.timer"
        )
        logger.info("✅ SMART monitoring setup complete")
        logger.info(f"   smartd is monitoring {', '.join('/dev/' + d for d in self.disks)}")
        logger.info(f"   Alerts sent to: {self.email}")
