"""
Base system steps: preflight checks, packages, swap, service user,
directories, JWT secret and log rotation.
"""
import logging
import os
import pwd
import secrets
import shutil
from pathlib import Path
from typing import Dict, List, Optional

import requests
from dotenv import dotenv_values

from .clients import get_consensus_client, get_execution_client
from .context import ProvisionContext
from .runner import ProvisioningError

logger = logging.getLogger(__name__)

BASE_PACKAGES = [
    'curl', 'wget', 'gnupg', 'ca-certificates', 'software-properties-common',
    'apt-transport-https', 'unzip', 'tar', 'jq', 'openssl', 'logrotate', 'cron',
]
JAVA_PACKAGE = 'openjdk-21-jre-headless'
SUPPORTED_DISTROS = ('ubuntu', 'debian')

# Rough minimums for a full node (GB)
MIN_MEMORY_GB = 16
MIN_DISK_GB = {'mainnet': 2000}
DEFAULT_MIN_DISK_GB = 300

APT_ENV = {'DEBIAN_FRONTEND': 'noninteractive'}


def read_os_release(path: str = '/etc/os-release') -> Dict[str, str]:
    """Parse /etc/os-release into a dict; missing file gives an empty one"""
    values = dotenv_values(path, interpolate=False)
    return {key: value for key, value in values.items() if value is not None}


def total_memory_gb(path: str = '/proc/meminfo') -> Optional[float]:
    try:
        with open(path, 'r') as f:
            for line in f:
                if line.startswith('MemTotal:'):
                    return int(line.split()[1]) / (1024 * 1024)
    except (FileNotFoundError, ValueError, IndexError):
        return None
    return None


def free_disk_gb(path: str) -> float:
    """Free space on the filesystem that will hold `path` (nearest existing parent)"""
    probe = Path(path)
    while not probe.exists() and probe != probe.parent:
        probe = probe.parent
    return shutil.disk_usage(probe).free / (1024 ** 3)


def is_supported_os(os_release: Dict[str, str]) -> bool:
    distro = os_release.get('ID', '').lower()
    like = os_release.get('ID_LIKE', '').lower().split()
    return distro in SUPPORTED_DISTROS or any(d in like for d in SUPPORTED_DISTROS)


def preflight(ctx: ProvisionContext):
    """Check privileges, OS, resources and connectivity before changing anything"""
    config = ctx.config
    dry_run = ctx.runner.dry_run

    if os.geteuid() != 0:
        if not dry_run:
            raise ProvisioningError("This tool must be run as root (try sudo)")
        logger.warning("Not running as root; continuing because this is a dry run")

    os_release = read_os_release()
    if not is_supported_os(os_release):
        message = f"Unsupported operating system: {os_release.get('PRETTY_NAME', 'unknown')} (Ubuntu or Debian required)"
        if not dry_run:
            raise ProvisioningError(message)
        logger.warning(message)
    else:
        logger.info(f"Operating system: {os_release.get('PRETTY_NAME', os_release.get('ID'))}")

    memory = total_memory_gb()
    if memory is not None and memory < MIN_MEMORY_GB:
        logger.warning(f"Only {memory:.1f} GB RAM detected; {MIN_MEMORY_GB} GB or more is recommended")

    disk = free_disk_gb(config.data_dir)
    min_disk = MIN_DISK_GB.get(config.network, DEFAULT_MIN_DISK_GB)
    if disk < min_disk:
        logger.warning(f"Only {disk:.0f} GB free for {config.data_dir}; "
                       f"{config.network} needs about {min_disk} GB")

    if dry_run:
        return
    try:
        requests.head("https://api.github.com", timeout=10)
    except requests.RequestException as e:
        raise ProvisioningError(f"No internet connectivity (GitHub unreachable): {e}") from e


def system_update(ctx: ProvisionContext):
    ctx.runner.run(['apt-get', 'update'], env=APT_ENV)
    ctx.runner.run(['apt-get', 'upgrade', '-y'], env=APT_ENV)


def required_packages(ctx: ProvisionContext) -> List[str]:
    config = ctx.config
    packages = list(BASE_PACKAGES)
    if config.enable_firewall:
        packages.append('ufw')
    if config.enable_fail2ban:
        packages.append('fail2ban')
    if config.enable_auto_updates:
        packages.append('unattended-upgrades')
    execution = get_execution_client(config.execution_client)
    consensus = get_consensus_client(config.consensus_client)
    if execution.needs_java or consensus.needs_java:
        packages.append(JAVA_PACKAGE)
    return packages


def install_dependencies(ctx: ProvisionContext):
    ctx.runner.run(['apt-get', 'install', '-y'] + required_packages(ctx), env=APT_ENV)


def configure_timezone(ctx: ProvisionContext):
    ctx.runner.run(['timedatectl', 'set-timezone', ctx.config.timezone])


def configure_swap(ctx: ProvisionContext):
    swapfile = Path('/swapfile')
    if swapfile.exists():
        logger.info("Swap file already present, leaving it unchanged")
        return
    size = f"{ctx.config.swap_size_gb}G"
    ctx.runner.run(['fallocate', '-l', size, str(swapfile)])
    ctx.runner.run(['chmod', '600', str(swapfile)])
    ctx.runner.run(['mkswap', str(swapfile)])
    ctx.runner.run(['swapon', str(swapfile)])
    ctx.runner.ensure_line('/etc/fstab', f"{swapfile} none swap sw 0 0")


def user_exists(name: str) -> bool:
    try:
        pwd.getpwnam(name)
        return True
    except KeyError:
        return False


def create_service_user(ctx: ProvisionContext):
    user = ctx.config.eth_user
    if user_exists(user):
        logger.info(f"Service user {user} already exists")
        return
    ctx.runner.run(['useradd', '--system', '--no-create-home', '--shell', '/usr/sbin/nologin', user])


def create_directories(ctx: ProvisionContext):
    config = ctx.config
    user = config.eth_user
    ctx.runner.make_dirs(config.data_dir, owner=user)
    ctx.runner.make_dirs(config.execution_data_dir, owner=user, mode=0o750)
    ctx.runner.make_dirs(config.consensus_data_dir, owner=user, mode=0o750)
    if config.enable_validator:
        ctx.runner.make_dirs(config.validator_data_dir, owner=user, mode=0o700)
        ctx.runner.make_dirs(config.validator_keys_dir, owner=user, mode=0o700)
    ctx.runner.make_dirs(config.install_dir)
    ctx.runner.make_dirs(str(Path(config.log_file).parent))


def generate_jwt_secret(ctx: ProvisionContext):
    """Create the engine API secret shared by the execution and consensus clients"""
    path = Path(ctx.config.jwt_secret_path)
    if path.exists():
        logger.info(f"JWT secret {path} already exists, keeping it")
        return
    ctx.runner.write_file(path, secrets.token_hex(32), mode=0o640, owner=ctx.config.eth_user)


def logrotate_config(log_file: str) -> str:
    return f"""{Path(log_file).parent}/*.log {{
    weekly
    rotate 8
    compress
    delaycompress
    missingok
    notifempty
    copytruncate
}}
"""


def configure_log_rotation(ctx: ProvisionContext):
    ctx.runner.write_file('/etc/logrotate.d/eth-node-setup', logrotate_config(ctx.config.log_file))
