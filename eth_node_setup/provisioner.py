"""
Provisioning orchestrator.

Runs the ordered list of provisioning steps, skipping those whose feature
flags are off. Each step assumes the ones before it completed: the first
failure stops the run. There are no retries and no rollback.
"""
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

import yaml

from . import backup, client_setup, monitoring, security, system_setup
from .config import NodeConfig
from .context import ProvisionContext
from .runner import ProvisioningError

logger = logging.getLogger(__name__)

OK = 'ok'
SKIPPED = 'skipped'
FAILED = 'failed'
PENDING = 'not run'


@dataclass
class Step:
    """A provisioning step and the condition that enables it"""
    name: str
    description: str
    action: Callable[[ProvisionContext], None]
    gate: Optional[Callable[[NodeConfig], bool]] = None
    gate_reason: str = ''

    def enabled(self, config: NodeConfig) -> bool:
        return self.gate is None or bool(self.gate(config))


@dataclass
class StepResult:
    name: str
    status: str
    duration: float = 0.0
    detail: str = ''


@dataclass
class RunReport:
    started: str
    dry_run: bool
    network: str
    execution_client: str
    consensus_client: str
    results: List[StepResult] = field(default_factory=list)
    finished: Optional[str] = None
    success: bool = False
    installed_versions: Dict[str, str] = field(default_factory=dict)
    notes: List[str] = field(default_factory=list)

    def counts(self) -> Dict[str, int]:
        counts = {}
        for result in self.results:
            counts[result.status] = counts.get(result.status, 0) + 1
        return counts

    def to_dict(self) -> Dict:
        return asdict(self)

    def write(self, path) -> Path:
        """Persist the report as YAML"""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)
        return path


class StepFailed(ProvisioningError):
    """A step failed; carries the report of the interrupted run"""

    def __init__(self, step: str, error: Exception, report: RunReport):
        self.step = step
        self.error = error
        self.report = report
        super().__init__(f"Step '{step}' failed: {error}")


def build_steps() -> List[Step]:
    """The provisioning sequence, in execution order"""
    return [
        Step('preflight', 'Check privileges, OS, resources and connectivity', system_setup.preflight),
        Step('system_update', 'Update and upgrade system packages', system_setup.system_update,
             lambda c: c.update_system, 'UPDATE_SYSTEM=false'),
        Step('install_dependencies', 'Install base packages', system_setup.install_dependencies),
        Step('configure_timezone', 'Set the system timezone', system_setup.configure_timezone,
             lambda c: bool(c.timezone), 'TIMEZONE is empty'),
        Step('configure_swap', 'Create and enable a swap file', system_setup.configure_swap,
             lambda c: c.enable_swap, 'ENABLE_SWAP=false'),
        Step('create_service_user', 'Create the service user', system_setup.create_service_user),
        Step('create_directories', 'Create data and log directories', system_setup.create_directories),
        Step('generate_jwt_secret', 'Generate the engine API JWT secret', system_setup.generate_jwt_secret),
        Step('install_execution_client', 'Install the execution client', client_setup.install_execution_client),
        Step('install_consensus_client', 'Install the consensus client', client_setup.install_consensus_client),
        Step('configure_execution_service', 'Write the execution client service',
             client_setup.configure_execution_service),
        Step('configure_consensus_service', 'Write the consensus client service',
             client_setup.configure_consensus_service),
        Step('install_mev_boost', 'Install MEV-boost and its service', client_setup.install_mev_boost,
             lambda c: c.enable_mev_boost, 'ENABLE_MEV_BOOST=false'),
        Step('configure_validator', 'Write the validator client service', client_setup.configure_validator,
             lambda c: c.enable_validator, 'ENABLE_VALIDATOR=false'),
        Step('configure_firewall', 'Configure the ufw firewall', security.configure_firewall,
             lambda c: c.enable_firewall, 'ENABLE_FIREWALL=false'),
        Step('configure_fail2ban', 'Configure fail2ban for SSH', security.configure_fail2ban,
             lambda c: c.enable_fail2ban, 'ENABLE_FAIL2BAN=false'),
        Step('harden_ssh', 'Harden the SSH daemon', security.harden_ssh,
             lambda c: c.harden_ssh, 'HARDEN_SSH=false'),
        Step('configure_auto_updates', 'Enable unattended security upgrades', security.configure_auto_updates,
             lambda c: c.enable_auto_updates, 'ENABLE_AUTO_UPDATES=false'),
        Step('tune_sysctl', 'Apply kernel network tuning', security.tune_sysctl,
             lambda c: c.enable_sysctl_tuning, 'ENABLE_SYSCTL_TUNING=false'),
        Step('install_monitoring', 'Install Prometheus and node exporter', monitoring.install_monitoring,
             lambda c: c.enable_monitoring, 'ENABLE_MONITORING=false'),
        Step('install_grafana', 'Install Grafana', monitoring.install_grafana,
             lambda c: c.enable_monitoring and c.enable_grafana, 'ENABLE_MONITORING or ENABLE_GRAFANA is false'),
        Step('configure_backups', 'Schedule configuration backups', backup.configure_backups,
             lambda c: c.enable_backups, 'ENABLE_BACKUPS=false'),
        Step('configure_log_rotation', 'Rotate setup logs', system_setup.configure_log_rotation),
        Step('start_services', 'Enable and start services', client_setup.start_services),
    ]


class Provisioner:
    """Runs the provisioning steps for one host"""

    def __init__(self, ctx: ProvisionContext, steps: Optional[List[Step]] = None):
        self.ctx = ctx
        self.steps = steps if steps is not None else build_steps()

    @property
    def config(self) -> NodeConfig:
        return self.ctx.config

    def step_names(self) -> List[str]:
        return [step.name for step in self.steps]

    def plan(self, skip: Iterable[str] = ()) -> List[Dict]:
        """Describe what a run would do without doing it"""
        skip = set(skip)
        plan = []
        for index, step in enumerate(self.steps, 1):
            if step.name in skip:
                enabled, reason = False, 'skipped on request'
            elif not step.enabled(self.config):
                enabled, reason = False, step.gate_reason
            else:
                enabled, reason = True, ''
            plan.append({
                'order': index,
                'step': step.name,
                'description': step.description,
                'enabled': enabled,
                'reason': reason,
            })
        return plan

    def run(self, skip: Iterable[str] = ()) -> RunReport:
        """
        Execute enabled steps in order.

        Args:
            skip: Step names to leave out of this run

        Returns:
            The run report

        Raises:
            StepFailed: on the first failing step; later steps are not run
        """
        skip = set(skip)
        unknown = skip - set(self.step_names())
        if unknown:
            raise ProvisioningError(f"Unknown step(s): {', '.join(sorted(unknown))}")

        config = self.config
        report = RunReport(
            started=datetime.now().isoformat(timespec='seconds'),
            dry_run=self.ctx.runner.dry_run,
            network=config.network,
            execution_client=config.execution_client,
            consensus_client=config.consensus_client,
        )
        logger.info(f"Provisioning {config.network} node: {config.execution_client} + "
                    f"{config.consensus_client}{' (dry run)' if report.dry_run else ''}")

        for position, step in enumerate(self.steps):
            if step.name in skip:
                report.results.append(StepResult(step.name, SKIPPED, detail='skipped on request'))
                logger.info(f"Skipping {step.name} (requested)")
                continue
            if not step.enabled(config):
                report.results.append(StepResult(step.name, SKIPPED, detail=step.gate_reason))
                logger.info(f"Skipping {step.name} ({step.gate_reason})")
                continue

            logger.info(f"==> {step.name}: {step.description}")
            started = time.monotonic()
            try:
                step.action(self.ctx)
            except Exception as e:
                duration = time.monotonic() - started
                logger.error(f"{step.name} failed after {duration:.1f}s: {e}")
                report.results.append(StepResult(step.name, FAILED, duration, str(e)))
                for remaining in self.steps[position + 1:]:
                    report.results.append(StepResult(remaining.name, PENDING))
                report.finished = datetime.now().isoformat(timespec='seconds')
                report.installed_versions = dict(self.ctx.installed_versions)
                report.notes = list(self.ctx.notes)
                raise StepFailed(step.name, e, report) from e

            duration = time.monotonic() - started
            report.results.append(StepResult(step.name, OK, duration))
            logger.info(f"{step.name} completed in {duration:.1f}s")

        report.finished = datetime.now().isoformat(timespec='seconds')
        report.success = True
        report.installed_versions = dict(self.ctx.installed_versions)
        report.notes = list(self.ctx.notes)
        logger.info("Provisioning completed")
        return report
