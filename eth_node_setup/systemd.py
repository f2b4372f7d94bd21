"""
Renders systemd unit files and toggles the services they describe.
"""
import logging
import shlex
import subprocess
from dataclasses import dataclass
from typing import List, Optional

from .runner import CommandRunner

logger = logging.getLogger(__name__)

UNIT_DIR = '/etc/systemd/system'

EXECUTION_SERVICE = 'eth-execution'
CONSENSUS_SERVICE = 'eth-consensus'
VALIDATOR_SERVICE = 'eth-validator'
MEV_BOOST_SERVICE = 'mev-boost'


@dataclass
class ServiceUnit:
    name: str
    description: str
    exec_start: List[str]
    user: str
    after: Optional[List[str]] = None
    memory_max: str = ''
    cpu_quota: str = ''
    timeout_stop_sec: int = 300
    limit_nofile: int = 65536

    @property
    def filename(self) -> str:
        return f"{self.name}.service"

    @property
    def path(self) -> str:
        return f"{UNIT_DIR}/{self.filename}"

    def render(self) -> str:
        after = ['network-online.target'] + [f"{unit}.service" for unit in (self.after or [])]
        exec_start = ' \\\n    '.join(shlex.quote(arg) for arg in self.exec_start)

        lines = [
            "[Unit]",
            f"Description={self.description}",
            f"After={' '.join(after)}",
            "Wants=network-online.target",
            "",
            "[Service]",
            "Type=simple",
            f"User={self.user}",
            f"Group={self.user}",
            f"ExecStart={exec_start}",
            "Restart=on-failure",
            "RestartSec=5",
            f"TimeoutStopSec={self.timeout_stop_sec}",
            f"LimitNOFILE={self.limit_nofile}",
        ]
        if self.memory_max:
            lines.append(f"MemoryMax={self.memory_max}")
        if self.cpu_quota:
            lines.append(f"CPUQuota={self.cpu_quota}")
        lines += [
            "",
            "[Install]",
            "WantedBy=multi-user.target",
        ]
        return '\n'.join(lines) + '\n'


def install_unit(runner: CommandRunner, unit: ServiceUnit):
    """Write a unit file; call daemon_reload afterwards"""
    logger.info(f"Installing systemd unit {unit.filename}")
    runner.write_file(unit.path, unit.render(), mode=0o644)


def daemon_reload(runner: CommandRunner):
    runner.run(['systemctl', 'daemon-reload'])


def enable(runner: CommandRunner, service: str):
    runner.run(['systemctl', 'enable', service])


def restart(runner: CommandRunner, service: str):
    runner.run(['systemctl', 'restart', service])


def is_active(service: str) -> str:
    """Return systemctl's activity state for a service ('active', 'inactive', 'failed', ...)"""
    try:
        result = subprocess.run(['systemctl', 'is-active', service], capture_output=True, text=True, timeout=10)
        return result.stdout.strip() or 'unknown'
    except (FileNotFoundError, subprocess.TimeoutExpired):
        return 'unknown'
