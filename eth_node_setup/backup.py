"""
Backup archives of the node's configuration and secrets, plus the cron
entry that produces them on a schedule.
"""
import logging
import os
import shlex
import sys
import tarfile
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable, List, Optional

from . import systemd
from .context import ProvisionContext
from .monitoring import PROMETHEUS_CONFIG

logger = logging.getLogger(__name__)

ARCHIVE_PREFIX = 'eth-node-backup-'
ARCHIVE_SUFFIX = '.tar.gz'
TIMESTAMP_FORMAT = '%Y%m%d-%H%M%S'
CRON_FILE = '/etc/cron.d/eth-node-backup'


def create_backup(dest, includes: Iterable, now: Optional[datetime] = None) -> Path:
    """
    Write a timestamped tar.gz archive of the given paths.

    Missing paths are skipped with a warning. The archive is readable by its
    owner only since it may contain the JWT secret and validator keys.

    Returns:
        Path of the new archive
    """
    now = now or datetime.now()
    dest = Path(dest)
    dest.mkdir(parents=True, exist_ok=True)
    archive = dest / f"{ARCHIVE_PREFIX}{now.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"

    added = 0
    fd = os.open(archive, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'wb') as raw, tarfile.open(fileobj=raw, mode='w:gz') as tar:
        for include in includes:
            path = Path(include)
            if not path.exists():
                logger.warning(f"Backup: skipping missing path {path}")
                continue
            tar.add(str(path), arcname=str(path).lstrip('/'))
            added += 1

    logger.info(f"Backup written to {archive} ({added} paths)")
    return archive


def list_backups(dest) -> List[Path]:
    dest = Path(dest)
    if not dest.is_dir():
        return []
    return sorted(p for p in dest.iterdir()
                  if p.name.startswith(ARCHIVE_PREFIX) and p.name.endswith(ARCHIVE_SUFFIX))


def prune_backups(dest, retention_days: int, now: Optional[datetime] = None) -> List[Path]:
    """Delete archives older than the retention period; returns the deleted paths"""
    now = now or datetime.now()
    cutoff = now - timedelta(days=retention_days)
    removed = []
    for archive in list_backups(dest):
        modified = datetime.fromtimestamp(archive.stat().st_mtime)
        if modified < cutoff:
            archive.unlink()
            removed.append(archive)
            logger.info(f"Pruned old backup {archive}")
    return removed


def backup_includes(ctx: ProvisionContext) -> List[str]:
    """Paths captured by the scheduled backup"""
    config = ctx.config
    includes = []
    if ctx.config_path:
        includes.append(str(ctx.config_path))
    includes.append(config.jwt_secret_path)
    includes += [f"{systemd.UNIT_DIR}/{name}.service" for name in ctx.services + ctx.deferred_services]
    if config.enable_monitoring:
        includes.append(PROMETHEUS_CONFIG)
    if config.enable_validator:
        # Slashing protection lives in the validator data dir
        includes.append(config.validator_data_dir)
        if config.backup_include_validator_keys:
            includes.append(config.validator_keys_dir)
    return includes


def cron_entry(ctx: ProvisionContext) -> str:
    config = ctx.config
    command = [sys.executable, '-m', 'eth_node_setup', 'backup',
               '--dest', config.backup_dir,
               '--retention-days', str(config.backup_retention_days)]
    for include in backup_includes(ctx):
        command += ['--include', include]
    log = str(Path(config.log_file).parent / 'backup.log')
    return (
        "# Managed by eth-node-setup\n"
        "SHELL=/bin/sh\n"
        "PATH=/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin\n"
        f"{config.backup_schedule} root {shlex.join(command)} >> {shlex.quote(log)} 2>&1\n"
    )


def configure_backups(ctx: ProvisionContext):
    ctx.runner.make_dirs(ctx.config.backup_dir, mode=0o700)
    ctx.runner.write_file(CRON_FILE, cron_entry(ctx))
    logger.info(f"Backups scheduled '{ctx.config.backup_schedule}' into {ctx.config.backup_dir}")
