"""
Handles loading the node configuration from a flat key=value file
(optionally encrypted) and providing typed access to its values.
"""
import io
import logging
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Callable, Dict, List, Optional

from dotenv.parser import parse_stream

logger = logging.getLogger(__name__)

CONFIG_FILENAME = 'eth-node.env'
ENCRYPTED_SUFFIX = '.enc'
SYSTEM_CONFIG_DIR = Path('/etc/eth-node-setup')
SECRET_KEYS = {'GRAFANA_ADMIN_PASSWORD'}
MASK = '********'

TRUE_VALUES = {'true', 'yes', 'on', '1'}
FALSE_VALUES = {'false', 'no', 'off', '0'}


class ConfigError(ValueError):
    """Raised when the configuration cannot be read, decrypted or parsed"""


@dataclass
class NodeConfig:
    """Typed view of the node configuration file. Field names map to UPPER_CASE keys."""
    # Network and clients
    network: str = 'mainnet'
    execution_client: str = 'geth'
    consensus_client: str = 'lighthouse'

    # Paths and identity
    eth_user: str = 'eth'
    data_dir: str = '/var/lib/ethereum'
    install_dir: str = '/usr/local/bin'
    log_file: str = '/var/log/eth-node-setup/setup.log'
    timezone: str = 'UTC'

    # Validator
    fee_recipient: str = ''
    graffiti: str = 'eth-node-setup'
    validator_keys_dir: str = '/var/lib/ethereum/validator_keys'
    checkpoint_sync_url: str = ''

    # Ports and peers
    execution_p2p_port: int = 30303
    consensus_p2p_port: int = 9000
    execution_rpc_port: int = 8545
    engine_api_port: int = 8551
    beacon_api_port: int = 5052
    execution_max_peers: int = 50
    consensus_max_peers: int = 100
    execution_cache_mb: int = 4096

    # Resource limits
    execution_memory_limit: str = '16G'
    consensus_memory_limit: str = '8G'
    cpu_quota: str = ''
    ssh_port: int = 22
    swap_size_gb: int = 8

    # MEV-boost
    mev_relays: str = ''
    mev_min_bid: float = 0.0

    # Monitoring
    grafana_admin_password: str = ''

    # Backups
    backup_dir: str = '/var/backups/eth-node'
    backup_retention_days: int = 14
    backup_schedule: str = '0 3 * * *'
    backup_include_validator_keys: bool = False

    # Feature toggles
    update_system: bool = True
    enable_swap: bool = False
    enable_checkpoint_sync: bool = True
    enable_validator: bool = False
    enable_mev_boost: bool = False
    enable_firewall: bool = True
    enable_fail2ban: bool = True
    harden_ssh: bool = True
    enable_auto_updates: bool = True
    enable_sysctl_tuning: bool = True
    enable_monitoring: bool = False
    enable_grafana: bool = True
    enable_backups: bool = False

    extra: Dict[str, str] = field(default_factory=dict, repr=False)

    @classmethod
    def defaults(cls) -> 'NodeConfig':
        return cls()

    @classmethod
    def from_env(cls, values: Dict[str, str]) -> 'NodeConfig':
        """
        Build a config from raw string values, converting each to its field type.
        Missing keys keep their defaults; unknown keys are kept in `extra`.
        """
        known = {f.name.upper(): f for f in fields(cls) if f.name != 'extra'}
        kwargs = {}
        extra = {}

        for key, raw in values.items():
            config_field = known.get(key.upper())
            if config_field is None:
                logger.warning(f"Unknown configuration key: {key}")
                extra[key] = raw
                continue
            kwargs[config_field.name] = _convert(key, raw, config_field.type)

        return cls(extra=extra, **kwargs)

    def to_env(self) -> Dict[str, str]:
        """Return the configuration as UPPER_CASE string values"""
        values = {}
        for f in fields(self):
            if f.name == 'extra':
                continue
            value = getattr(self, f.name)
            if isinstance(value, bool):
                value = 'true' if value else 'false'
            values[f.name.upper()] = str(value)
        values.update(self.extra)
        return values

    def masked(self) -> Dict[str, str]:
        """Return values with secrets hidden, for display"""
        return {key: (MASK if key in SECRET_KEYS and value else value)
                for key, value in self.to_env().items()}

    def relay_list(self) -> List[str]:
        return [relay.strip() for relay in self.mev_relays.split(',') if relay.strip()]

    @property
    def execution_data_dir(self) -> str:
        return f"{self.data_dir}/execution"

    @property
    def consensus_data_dir(self) -> str:
        return f"{self.data_dir}/consensus"

    @property
    def validator_data_dir(self) -> str:
        return f"{self.data_dir}/validator"

    @property
    def jwt_secret_path(self) -> str:
        return f"{self.data_dir}/jwt.hex"


def _convert(key: str, raw: str, target_type):
    if target_type is bool:
        lowered = raw.strip().lower()
        if lowered in TRUE_VALUES:
            return True
        if lowered in FALSE_VALUES:
            return False
        raise ConfigError(f"{key}: expected a boolean (true/false), got '{raw}'")
    if target_type is int:
        try:
            return int(raw.strip())
        except ValueError:
            raise ConfigError(f"{key}: expected an integer, got '{raw}'")
    if target_type is float:
        try:
            return float(raw.strip())
        except ValueError:
            raise ConfigError(f"{key}: expected a number, got '{raw}'")
    return raw


def parse_env(text: str) -> Dict[str, str]:
    """
    Parse shell-style key=value lines with python-dotenv.

    Supports comments, blank lines, an optional `export` prefix, single or
    double quoted values and trailing ` # comments` on unquoted values.
    Raises ConfigError naming the offending line.
    """
    values = {}
    for binding in parse_stream(io.StringIO(text)):
        original = binding.original.string
        stripped = original.strip()
        # The binding starts at the blank lines that precede it
        leading = original[:len(original) - len(original.lstrip())]
        lineno = binding.original.line + leading.count('\n')

        if binding.error:
            raise ConfigError(f"Line {lineno}: expected KEY=value (unterminated quote?), got '{stripped}'")
        if binding.key is None:
            continue
        if binding.value is None:
            raise ConfigError(f"Line {lineno}: expected KEY=value, got '{stripped}'")
        values[binding.key] = binding.value
    return values


SECTIONS = [
    ("Network and clients", ['NETWORK', 'EXECUTION_CLIENT', 'CONSENSUS_CLIENT']),
    ("Paths and identity", ['ETH_USER', 'DATA_DIR', 'INSTALL_DIR', 'LOG_FILE', 'TIMEZONE']),
    ("Validator", ['ENABLE_VALIDATOR', 'FEE_RECIPIENT', 'GRAFFITI', 'VALIDATOR_KEYS_DIR',
                   'ENABLE_CHECKPOINT_SYNC', 'CHECKPOINT_SYNC_URL']),
    ("Ports and peers", ['EXECUTION_P2P_PORT', 'CONSENSUS_P2P_PORT', 'EXECUTION_RPC_PORT',
                         'ENGINE_API_PORT', 'BEACON_API_PORT', 'EXECUTION_MAX_PEERS',
                         'CONSENSUS_MAX_PEERS', 'EXECUTION_CACHE_MB']),
    ("Resource limits", ['EXECUTION_MEMORY_LIMIT', 'CONSENSUS_MEMORY_LIMIT', 'CPU_QUOTA',
                         'ENABLE_SWAP', 'SWAP_SIZE_GB']),
    ("MEV-boost", ['ENABLE_MEV_BOOST', 'MEV_RELAYS', 'MEV_MIN_BID']),
    ("Security", ['UPDATE_SYSTEM', 'ENABLE_FIREWALL', 'ENABLE_FAIL2BAN', 'HARDEN_SSH', 'SSH_PORT',
                  'ENABLE_AUTO_UPDATES', 'ENABLE_SYSCTL_TUNING']),
    ("Monitoring", ['ENABLE_MONITORING', 'ENABLE_GRAFANA', 'GRAFANA_ADMIN_PASSWORD']),
    ("Backups", ['ENABLE_BACKUPS', 'BACKUP_DIR', 'BACKUP_RETENTION_DAYS', 'BACKUP_SCHEDULE',
                 'BACKUP_INCLUDE_VALIDATOR_KEYS']),
]

FIELD_HELP = {
    'NETWORK': 'mainnet, holesky, sepolia or hoodi',
    'EXECUTION_CLIENT': 'geth, nethermind, besu, erigon or reth',
    'CONSENSUS_CLIENT': 'lighthouse, prysm, teku, nimbus or lodestar',
    'FEE_RECIPIENT': '0x-prefixed address receiving priority fees and MEV',
    'CHECKPOINT_SYNC_URL': 'leave empty to use the network default',
    'CPU_QUOTA': 'systemd CPUQuota, e.g. 400% (empty for no limit)',
    'MEV_RELAYS': 'comma-separated relay URLs; empty uses the network defaults',
    'MEV_MIN_BID': 'minimum bid in ETH; lower bids fall back to local block building',
    'BACKUP_SCHEDULE': 'cron expression (five fields)',
    'BACKUP_INCLUDE_VALIDATOR_KEYS': 'archives keystores; keep backups somewhere safe',
}


def _quote(value: str) -> str:
    if value and not any(c in value for c in ' #*"\''):
        return value
    if '"' in value:
        return f"'{value}'"
    return f'"{value}"'


def render_env(config: NodeConfig) -> str:
    """Render a commented configuration file"""
    values = config.to_env()
    lines = ["# Ethereum node setup configuration",
             "# Encrypt with: eth-node-setup config encrypt", ""]
    for title, keys in SECTIONS:
        lines.append(f"# --- {title} ---")
        for key in keys:
            if key in FIELD_HELP:
                lines.append(f"# {FIELD_HELP[key]}")
            lines.append(f"{key}={_quote(values[key])}")
        lines.append("")
    for key, value in config.extra.items():
        lines.append(f"{key}={_quote(value)}")
    return '\n'.join(lines).rstrip('\n') + '\n'


def get_config_path() -> Path:
    """
    Find the configuration file in multiple locations with priority:
    1. Current working directory (plain, then encrypted)
    2. ETH_NODE_SETUP_CONFIG environment variable
    3. System directory /etc/eth-node-setup (plain, then encrypted)
    Returns the current-directory plain path when nothing exists yet.
    """
    cwd_config = Path.cwd() / CONFIG_FILENAME
    for candidate in (cwd_config, cwd_config.with_name(CONFIG_FILENAME + ENCRYPTED_SUFFIX)):
        if candidate.exists():
            return candidate

    env_path = os.environ.get('ETH_NODE_SETUP_CONFIG')
    if env_path:
        return Path(env_path)

    system_config = SYSTEM_CONFIG_DIR / CONFIG_FILENAME
    for candidate in (system_config, system_config.with_name(CONFIG_FILENAME + ENCRYPTED_SUFFIX)):
        if candidate.exists():
            return candidate

    return cwd_config


def is_encrypted(path) -> bool:
    return str(path).endswith(ENCRYPTED_SUFFIX)


def load_config(path, password_callback: Optional[Callable[[], str]] = None) -> NodeConfig:
    """
    Load the configuration, decrypting it in memory when it is encrypted.

    Args:
        path: Plain or `.enc` configuration file
        password_callback: Called to obtain the password for encrypted files

    Returns:
        The parsed NodeConfig
    """
    path = Path(path)
    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path} (create one with 'config init')")

    if is_encrypted(path):
        from .crypto import decrypt_file, password_from_env

        password = password_from_env()
        if password is None:
            if password_callback is None:
                raise ConfigError(f"{path} is encrypted and no password was supplied")
            password = password_callback()
        logger.info(f"Decrypting configuration {path}")
        text = decrypt_file(path, password)
    else:
        text = path.read_text()

    config = NodeConfig.from_env(parse_env(text))
    logger.info(f"Loaded configuration from {path} "
                f"({config.network}, {config.execution_client}/{config.consensus_client})")
    return config
