"""
Config Validator - Checks a node configuration before anything is provisioned

Each check yields ValidationIssue records; a run is refused while any
critical issue remains.
"""
import logging
import os
import re
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional

from .clients import (
    CONSENSUS_CLIENTS,
    CONSENSUS_METRICS_PORT,
    DEFAULT_MEV_RELAYS,
    EXECUTION_CLIENTS,
    EXECUTION_METRICS_PORT,
    MEV_BOOST_PORT,
    NETWORKS,
    VALIDATOR_METRICS_PORT,
    consensus_udp_ports,
)
from .config import NodeConfig, SECRET_KEYS, is_encrypted

logger = logging.getLogger(__name__)

ADDRESS_RE = re.compile(r'^0x[0-9a-fA-F]{40}$')
MEMORY_RE = re.compile(r'^\d+[KMGT]?$')
CPU_QUOTA_RE = re.compile(r'^\d+%$')
CRON_FIELD_RE = re.compile(r'^[0-9*/,\-]+$')

REQUIRED_KEYS = ['NETWORK', 'EXECUTION_CLIENT', 'CONSENSUS_CLIENT', 'ETH_USER',
                 'DATA_DIR', 'INSTALL_DIR', 'LOG_FILE']

CRITICAL = 'critical'
WARNING = 'warning'
INFO = 'info'


@dataclass
class ValidationIssue:
    """Represents a configuration validation issue"""
    key: str
    severity: str  # 'critical', 'warning', 'info'
    description: str
    current_value: Any = None
    suggested_value: Any = None


def has_critical(issues: List[ValidationIssue]) -> bool:
    return any(issue.severity == CRITICAL for issue in issues)


class ConfigValidator:
    """Validates a NodeConfig and, optionally, the file it was loaded from"""

    def __init__(self, config: NodeConfig, path: Optional[str] = None):
        self.config = config
        self.path = path
        self.issues: List[ValidationIssue] = []

    def validate(self) -> List[ValidationIssue]:
        self.issues = []
        self._validate_required()
        self._validate_catalog()
        self._validate_fee_recipient()
        self._validate_ports()
        self._validate_resources()
        self._validate_mev_boost()
        self._validate_backups()
        self._validate_monitoring()
        self._validate_file_permissions()

        for issue in self.issues:
            logger.log(logging.ERROR if issue.severity == CRITICAL else logging.WARNING,
                       f"Config {issue.severity}: {issue.key}: {issue.description}")
        return self.issues

    def _add(self, key: str, severity: str, description: str, current=None, suggested=None):
        self.issues.append(ValidationIssue(key, severity, description, current, suggested))

    def _validate_required(self):
        values = self.config.to_env()
        for key in REQUIRED_KEYS:
            if not values.get(key, '').strip():
                self._add(key, CRITICAL, 'Required value is empty')

    def _validate_catalog(self):
        config = self.config
        if config.network not in NETWORKS:
            self._add('NETWORK', CRITICAL, f"Unsupported network '{config.network}'",
                      config.network, ', '.join(NETWORKS))
        if config.execution_client not in EXECUTION_CLIENTS:
            self._add('EXECUTION_CLIENT', CRITICAL, f"Unknown execution client '{config.execution_client}'",
                      config.execution_client, ', '.join(EXECUTION_CLIENTS))
        if config.consensus_client not in CONSENSUS_CLIENTS:
            self._add('CONSENSUS_CLIENT', CRITICAL, f"Unknown consensus client '{config.consensus_client}'",
                      config.consensus_client, ', '.join(CONSENSUS_CLIENTS))

    def _validate_fee_recipient(self):
        config = self.config
        needs_address = config.enable_validator or config.enable_mev_boost
        value = config.fee_recipient
        if not value:
            if needs_address:
                self._add('FEE_RECIPIENT', CRITICAL,
                          'A fee recipient address is required when the validator or MEV-boost is enabled')
            return
        if not ADDRESS_RE.match(value):
            self._add('FEE_RECIPIENT', CRITICAL if needs_address else WARNING,
                      'Fee recipient must be 0x followed by 40 hex characters', value)

    def _validate_ports(self):
        config = self.config
        ports = {
            'SSH_PORT': config.ssh_port,
            'EXECUTION_P2P_PORT': config.execution_p2p_port,
            'CONSENSUS_P2P_PORT': config.consensus_p2p_port,
            'EXECUTION_RPC_PORT': config.execution_rpc_port,
            'ENGINE_API_PORT': config.engine_api_port,
            'BEACON_API_PORT': config.beacon_api_port,
        }
        for key, port in ports.items():
            if not 1 <= port <= 65535:
                self._add(key, CRITICAL, f"Port {port} is outside 1-65535", port)
        for port in consensus_udp_ports(config):
            if not 1 <= port <= 65535:
                self._add('CONSENSUS_P2P_PORT', CRITICAL,
                          f"{config.consensus_client} also listens on {port}/udp (QUIC), which is outside 1-65535",
                          config.consensus_p2p_port, 9000)

        # Fixed local endpoints the configured ports must not collide with
        reserved = {
            'mev-boost': MEV_BOOST_PORT,
            'execution metrics': EXECUTION_METRICS_PORT,
            'consensus metrics': CONSENSUS_METRICS_PORT,
            'validator metrics': VALIDATOR_METRICS_PORT,
        }
        for name, port in reserved.items():
            ports[name] = port
        for port in consensus_udp_ports(config):
            ports['consensus quic'] = port

        seen = {}
        for key, port in ports.items():
            if port in seen:
                self._add(key, CRITICAL, f"Port {port} is also used by {seen[port]}", port)
            else:
                seen[port] = key

        for key in ('EXECUTION_MAX_PEERS', 'CONSENSUS_MAX_PEERS', 'EXECUTION_CACHE_MB'):
            value = getattr(config, key.lower())
            if value < 1:
                self._add(key, CRITICAL, 'Must be a positive number', value)

    def _validate_resources(self):
        config = self.config
        for key in ('EXECUTION_MEMORY_LIMIT', 'CONSENSUS_MEMORY_LIMIT'):
            value = getattr(config, key.lower())
            if value and not MEMORY_RE.match(value):
                self._add(key, CRITICAL, 'Memory limit must look like 16G, 8192M or a byte count', value, '16G')
        if config.cpu_quota and not CPU_QUOTA_RE.match(config.cpu_quota):
            self._add('CPU_QUOTA', CRITICAL, 'CPU quota must be a percentage such as 400%', config.cpu_quota)
        if config.enable_swap and config.swap_size_gb < 1:
            self._add('SWAP_SIZE_GB', CRITICAL, 'Swap size must be at least 1 GB', config.swap_size_gb)

    def _validate_mev_boost(self):
        config = self.config
        if not config.enable_mev_boost:
            return
        if not config.relay_list() and not DEFAULT_MEV_RELAYS.get(config.network):
            self._add('MEV_RELAYS', CRITICAL, f"No default relays for {config.network}; set MEV_RELAYS")
        for relay in config.relay_list():
            if not relay.startswith('https://') or '@' not in relay:
                self._add('MEV_RELAYS', WARNING, 'Relay URLs are usually https://<pubkey>@<host>', relay)
        if config.mev_min_bid < 0:
            self._add('MEV_MIN_BID', CRITICAL, 'Minimum bid cannot be negative', config.mev_min_bid)
        if not config.enable_validator:
            self._add('ENABLE_MEV_BOOST', WARNING, 'MEV-boost is enabled without a validator; it will sit idle')

    def _validate_backups(self):
        config = self.config
        if not config.enable_backups:
            return
        fields = config.backup_schedule.split()
        if len(fields) != 5 or not all(CRON_FIELD_RE.match(f) for f in fields):
            self._add('BACKUP_SCHEDULE', CRITICAL, 'Backup schedule must be a five-field cron expression',
                      config.backup_schedule, '0 3 * * *')
        if config.backup_retention_days < 1:
            self._add('BACKUP_RETENTION_DAYS', CRITICAL, 'Retention must be at least one day',
                      config.backup_retention_days, 14)
        if not config.backup_dir.startswith('/'):
            self._add('BACKUP_DIR', CRITICAL, 'Backup directory must be an absolute path', config.backup_dir)

    def _validate_monitoring(self):
        config = self.config
        if config.enable_monitoring and config.enable_grafana and not config.grafana_admin_password:
            self._add('GRAFANA_ADMIN_PASSWORD', WARNING, 'Grafana will keep its default admin password')

    def _validate_file_permissions(self):
        if not self.path or is_encrypted(self.path) or not os.path.exists(self.path):
            return
        values = self.config.to_env()
        if not any(values.get(key) for key in SECRET_KEYS):
            return
        mode = Path(self.path).stat().st_mode
        if mode & stat.S_IROTH:
            self._add('CONFIG_FILE', WARNING,
                      'Configuration holds secrets and is world-readable; chmod 600 it or encrypt it',
                      oct(mode & 0o777), '0o600')


def validate_config(config: NodeConfig, path: Optional[str] = None) -> List[ValidationIssue]:
    return ConfigValidator(config, path).validate()
