"""
Tests for the rendered host files: systemd units, hardening drop-ins and logging
"""
import logging
from pathlib import Path

import pytest

from conftest import HostRunner
from eth_node_setup import security
from eth_node_setup.config import NodeConfig
from eth_node_setup.logging_setup import setup_logging
from eth_node_setup.runner import CommandError, CommandRunner
from eth_node_setup.security import fail2ban_jail, firewall_rules, sshd_dropin
from eth_node_setup.system_setup import (
    generate_jwt_secret,
    is_supported_os,
    read_os_release,
    required_packages,
)
from eth_node_setup.systemd import ServiceUnit


def test_service_unit_render():
    unit = ServiceUnit(
        name='eth-consensus',
        description='Ethereum consensus client',
        exec_start=['/usr/local/bin/lighthouse', 'bn', '--graffiti', 'my node'],
        user='eth',
        after=['eth-execution'],
        memory_max='8G',
    )
    text = unit.render()
    assert unit.path == '/etc/systemd/system/eth-consensus.service'
    assert 'After=network-online.target eth-execution.service\n' in text
    assert "ExecStart=/usr/local/bin/lighthouse \\\n    bn \\\n    --graffiti \\\n    'my node'\n" in text
    assert 'User=eth\nGroup=eth\n' in text
    assert 'MemoryMax=8G\n' in text
    assert 'CPUQuota' not in text
    assert text.endswith('WantedBy=multi-user.target\n')


def test_firewall_opens_only_ssh_and_p2p():
    rules = firewall_rules(NodeConfig(ssh_port=2222))
    ports = {port for port, _, _ in rules}
    assert ports == {2222, 30303, 9000, 9001}
    assert (9001, 'udp', 'consensus quic') in rules

    ports = {port for port, _, _ in firewall_rules(NodeConfig(consensus_client='prysm'))}
    assert 9001 not in ports
    assert 8545 not in ports


def test_ssh_and_fail2ban_follow_ssh_port():
    config = NodeConfig(ssh_port=2222)
    assert 'Port 2222\n' in sshd_dropin(config)
    assert 'PasswordAuthentication no\n' in sshd_dropin(config)
    assert 'port = 2222\n' in fail2ban_jail(config)


def test_required_packages(make_ctx):
    packages = required_packages(make_ctx(NodeConfig()))
    assert 'ufw' in packages
    assert 'openjdk-21-jre-headless' not in packages

    packages = required_packages(make_ctx(NodeConfig(execution_client='besu', enable_firewall=False)))
    assert 'openjdk-21-jre-headless' in packages
    assert 'ufw' not in packages


def test_os_release(tmp_path):
    path = tmp_path / 'os-release'
    path.write_text('PRETTY_NAME="Ubuntu 24.04 LTS"\nID=ubuntu\nID_LIKE=debian\n')
    release = read_os_release(str(path))
    assert release['PRETTY_NAME'] == 'Ubuntu 24.04 LTS'
    assert is_supported_os(release)
    assert is_supported_os({'ID': 'linuxmint', 'ID_LIKE': 'ubuntu debian'})
    assert not is_supported_os({'ID': 'fedora'})
    assert read_os_release(str(tmp_path / 'missing')) == {}


def test_runner_records_and_redacts():
    runner = CommandRunner(dry_run=True)
    runner.run(['grafana-cli', 'admin', 'reset-admin-password', 's3cret'], redact=['s3cret'])
    runner.write_file('/etc/example.conf', 'key=value\n', mode=0o600)
    assert 's3cret' not in runner.commands()[0]
    assert runner.files == {'/etc/example.conf': 'key=value\n'}
    assert [record.kind for record in runner.history] == ['run', 'write']


def test_runner_real_commands():
    runner = CommandRunner()
    assert runner.run(['true']).returncode == 0
    assert runner.run(['false'], check=False).returncode == 1
    with pytest.raises(CommandError) as excinfo:
        runner.run(['false'])
    assert excinfo.value.returncode == 1


def test_runner_missing_program():
    with pytest.raises(CommandError) as excinfo:
        CommandRunner().run(['definitely-not-a-real-program-xyz'])
    assert excinfo.value.returncode == 127


def test_ensure_line_is_idempotent(tmp_path):
    path = tmp_path / 'fstab'
    path.write_text('/dev/sda1 / ext4 defaults 0 1')
    runner = CommandRunner()
    runner.ensure_line(path, '/swapfile none swap sw 0 0')
    runner.ensure_line(path, '/swapfile none swap sw 0 0')
    assert path.read_text() == '/dev/sda1 / ext4 defaults 0 1\n/swapfile none swap sw 0 0\n'


def test_setup_logging_writes_file(tmp_path):
    log_file = tmp_path / 'logs' / 'setup.log'
    assert setup_logging(str(log_file)) == log_file
    logging.getLogger('eth_node_setup.test').info('hello from the test')
    for handler in logging.getLogger().handlers:
        handler.flush()
    assert 'hello from the test' in log_file.read_text()


def test_setup_logging_falls_back_to_stderr(tmp_path):
    blocker = tmp_path / 'not-a-dir'
    blocker.write_text('')
    assert setup_logging(str(blocker / 'setup.log')) is None


def test_runner_remove_file(tmp_path):
    path = tmp_path / 'stale.conf'
    path.write_text('old\n')
    runner = CommandRunner()
    runner.remove_file(path)
    runner.remove_file(path)
    assert not path.exists()
    assert [record.kind for record in runner.history] == ['remove', 'remove']


def test_jwt_secret_is_generated_once(node_config, make_ctx):
    ctx = make_ctx(node_config)
    generate_jwt_secret(ctx)
    secret = ctx.runner.files[node_config.jwt_secret_path]
    assert len(secret) == 64
    int(secret, 16)


def test_existing_jwt_secret_is_kept(node_config, make_ctx):
    jwt = Path(node_config.jwt_secret_path)
    jwt.parent.mkdir(parents=True)
    jwt.write_text('ab' * 32)

    ctx = make_ctx(node_config)
    generate_jwt_secret(ctx)
    assert node_config.jwt_secret_path not in ctx.runner.files
    assert jwt.read_text() == 'ab' * 32


class TestHardenSsh:

    @pytest.fixture(autouse=True)
    def dropin(self, tmp_path, monkeypatch):
        path = tmp_path / 'sshd_config.d' / '99-eth-node.conf'
        monkeypatch.setattr(security, 'SSHD_DROPIN', str(path))
        return path

    def test_accepted_dropin_restarts_ssh(self, dropin, make_ctx):
        ctx = make_ctx(NodeConfig(ssh_port=2222), runner=HostRunner())
        security.harden_ssh(ctx)
        assert 'Port 2222\n' in dropin.read_text()
        assert ctx.runner.commands() == ['sshd -t', 'systemctl restart ssh']

    def test_rejected_dropin_is_removed(self, dropin, make_ctx):
        ctx = make_ctx(NodeConfig(), runner=HostRunner(failing=[['sshd', '-t']]))
        with pytest.raises(CommandError):
            security.harden_ssh(ctx)
        assert not dropin.exists()
        assert 'systemctl restart ssh' not in ctx.runner.commands()

    def test_rejected_dropin_restores_previous_content(self, dropin, make_ctx):
        dropin.parent.mkdir()
        dropin.write_text('Port 2200\n')
        ctx = make_ctx(NodeConfig(), runner=HostRunner(failing=[['sshd', '-t']]))
        with pytest.raises(CommandError):
            security.harden_ssh(ctx)
        assert dropin.read_text() == 'Port 2200\n'
