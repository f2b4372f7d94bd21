import logging
import shlex
import subprocess

import pytest

from eth_node_setup.clients import ARCH_ALIASES
from eth_node_setup.config import NodeConfig
from eth_node_setup.context import ProvisionContext
from eth_node_setup.runner import ActionRecord, CommandError, CommandRunner

X86_64 = ARCH_ALIASES['x86_64']


class HostRunner(CommandRunner):
    """
    Performs file operations for real but only records commands.
    Commands listed in `failing` raise CommandError instead.
    """

    def __init__(self, failing=()):
        super().__init__()
        self.failing = [list(command) for command in failing]

    def run(self, command, check=True, **kwargs):
        display = shlex.join(command)
        self.history.append(ActionRecord('run', display))
        if check and list(command) in self.failing:
            raise CommandError(display, 255, 'rejected')
        return subprocess.CompletedProcess(command, 0, stdout='', stderr='')


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    # Drop handlers installed by setup_logging, leave pytest's capture handlers alone
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler) in (logging.StreamHandler, logging.FileHandler):
            root.removeHandler(handler)
            handler.close()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv('ETH_NODE_SETUP_PASSWORD', raising=False)
    monkeypatch.delenv('ETH_NODE_SETUP_CONFIG', raising=False)


@pytest.fixture
def node_config(tmp_path):
    """A default config whose filesystem paths live under tmp_path"""
    return NodeConfig(
        data_dir=str(tmp_path / 'data'),
        validator_keys_dir=str(tmp_path / 'keys'),
        log_file=str(tmp_path / 'log' / 'setup.log'),
        backup_dir=str(tmp_path / 'backups'),
    )


@pytest.fixture
def make_ctx():
    def _make(config, config_path=None, runner=None):
        runner = runner or CommandRunner(dry_run=True)
        return ProvisionContext.create(config, runner, config_path=config_path, arch=X86_64)
    return _make
