"""
Tests for backup archives, pruning and the backup command
"""
import os
import stat
import tarfile
from datetime import datetime, timedelta

from click.testing import CliRunner

from eth_node_setup.backup import backup_includes, create_backup, cron_entry, list_backups, prune_backups
from eth_node_setup.cli import cli


def test_create_backup(tmp_path):
    secret = tmp_path / 'data' / 'jwt.hex'
    secret.parent.mkdir()
    secret.write_text('ab' * 32)
    dest = tmp_path / 'backups'

    archive = create_backup(dest, [str(secret), str(tmp_path / 'missing.env')],
                            now=datetime(2024, 1, 2, 3, 4, 5))

    assert archive.name == 'eth-node-backup-20240102-030405.tar.gz'
    assert stat.S_IMODE(archive.stat().st_mode) == 0o600
    with tarfile.open(archive) as tar:
        assert tar.getnames() == [str(secret).lstrip('/')]


def test_prune_backups(tmp_path):
    now = datetime(2024, 3, 1, 12, 0, 0)
    old = create_backup(tmp_path, [], now=now - timedelta(days=30))
    recent = create_backup(tmp_path, [], now=now - timedelta(days=2))
    unrelated = tmp_path / 'notes.txt'
    unrelated.write_text('keep me')
    for archive, age in ((old, 30), (recent, 2)):
        timestamp = (now - timedelta(days=age)).timestamp()
        os.utime(archive, (timestamp, timestamp))

    removed = prune_backups(tmp_path, retention_days=14, now=now)

    assert removed == [old]
    assert list_backups(tmp_path) == [recent]
    assert unrelated.exists()


def test_prune_missing_directory(tmp_path):
    assert prune_backups(tmp_path / 'nothing-here', retention_days=7) == []


def test_backup_includes_validator_data(node_config, make_ctx):
    node_config.enable_validator = True
    ctx = make_ctx(node_config, config_path='/etc/eth-node-setup/eth-node.env')
    includes = backup_includes(ctx)
    assert includes[:2] == ['/etc/eth-node-setup/eth-node.env', node_config.jwt_secret_path]
    assert node_config.validator_data_dir in includes
    assert node_config.validator_keys_dir not in includes

    node_config.backup_include_validator_keys = True
    assert node_config.validator_keys_dir in backup_includes(ctx)


def test_cron_entry(node_config, make_ctx):
    node_config.backup_schedule = '15 4 * * 0'
    node_config.backup_retention_days = 30
    line = cron_entry(make_ctx(node_config)).splitlines()[-1]
    assert line.startswith('15 4 * * 0 root ')
    assert '--retention-days 30' in line
    assert f"--dest {node_config.backup_dir}" in line
    assert line.endswith('2>&1')


def test_backup_command(tmp_path):
    source = tmp_path / 'eth-node.env'
    source.write_text('NETWORK=mainnet\n')
    dest = tmp_path / 'backups'

    result = CliRunner().invoke(cli, ['backup', '--dest', str(dest), '--include', str(source)])

    assert result.exit_code == 0, result.output
    assert 'Backup written' in result.output
    assert len(list_backups(dest)) == 1


def test_backup_command_requires_includes(tmp_path):
    result = CliRunner().invoke(cli, ['backup', '--dest', str(tmp_path)])
    assert result.exit_code == 2
