"""
Interactive Setup for New Operators

Asks a handful of questions and produces a ready-to-edit configuration
file, so nobody has to start from a blank key=value file.
"""

import logging
import os
from pathlib import Path

import click

from .clients import CONSENSUS_CLIENTS, EXECUTION_CLIENTS, NETWORKS
from .config import NodeConfig, render_env
from .config_validator import ADDRESS_RE

logger = logging.getLogger(__name__)


def _validate_address(value):
    if value and not ADDRESS_RE.match(value):
        raise click.BadParameter("must be 0x followed by 40 hex characters")
    return value


class SetupWizard:
    """Interactive wizard producing a NodeConfig"""

    def __init__(self):
        self.config = NodeConfig.defaults()

    def run_interactive_setup(self) -> NodeConfig:
        """
        Run interactive setup wizard

        Returns:
            Configured NodeConfig
        """
        click.echo("🚀 Welcome to Ethereum Node Setup!")
        click.echo("=" * 50)
        click.echo("A few questions and your node configuration is ready.\n")

        self._setup_clients()
        self._setup_validator()
        self._setup_security()
        self._setup_monitoring()
        return self.config

    def _setup_clients(self):
        click.echo("📋 Step 1: Network and Clients")
        click.echo("-" * 30)
        config = self.config
        config.network = click.prompt("Which network?", default=config.network,
                                      type=click.Choice(NETWORKS))
        config.execution_client = click.prompt("Execution client", default=config.execution_client,
                                               type=click.Choice(list(EXECUTION_CLIENTS)))
        config.consensus_client = click.prompt("Consensus client", default=config.consensus_client,
                                               type=click.Choice(list(CONSENSUS_CLIENTS)))
        config.data_dir = click.prompt("Data directory", default=config.data_dir)
        config.validator_keys_dir = f"{config.data_dir}/validator_keys"
        click.echo(f"✅ {config.execution_client} + {config.consensus_client} on {config.network}\n")

    def _setup_validator(self):
        click.echo("🔑 Step 2: Validator and MEV-boost")
        click.echo("-" * 30)
        config = self.config
        config.enable_validator = click.confirm("Run a validator client on this host?", default=False)
        config.enable_mev_boost = click.confirm("Enable MEV-boost?", default=config.enable_validator)

        if config.enable_validator or config.enable_mev_boost:
            config.fee_recipient = click.prompt("Fee recipient address (0x...)",
                                                value_proc=_validate_address)
        if config.enable_validator:
            config.graffiti = click.prompt("Graffiti", default=config.graffiti)
        click.echo("✅ Validator settings recorded\n")

    def _setup_security(self):
        click.echo("🛡️  Step 3: Security")
        click.echo("-" * 30)
        config = self.config
        config.ssh_port = click.prompt("SSH port", default=config.ssh_port, type=int)
        config.enable_firewall = click.confirm("Enable the ufw firewall?", default=True)
        config.harden_ssh = click.confirm(
            "Disable SSH password logins? (make sure your SSH key works first)", default=True)
        click.echo("✅ Security configured\n")

    def _setup_monitoring(self):
        click.echo("📊 Step 4: Monitoring and Backups")
        click.echo("-" * 35)
        config = self.config
        config.enable_monitoring = click.confirm("Install Prometheus and Grafana?", default=False)
        if config.enable_monitoring:
            config.grafana_admin_password = click.prompt(
                "Grafana admin password", hide_input=True, confirmation_prompt=True)
        config.enable_backups = click.confirm("Schedule daily configuration backups?", default=True)
        click.echo("✅ Monitoring configured\n")


def write_config(config: NodeConfig, path) -> Path:
    """Write a rendered config readable by its owner only"""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    # An existing file keeps its old mode through O_CREAT
    os.fchmod(fd, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(render_env(config))
    logger.info(f"Configuration written to {path}")
    return path


def show_next_steps(path):
    """Show the operator what to do after creating a config"""
    click.echo("\n🎯 Configuration ready! Next steps:")
    click.echo("-" * 50)
    click.echo(f"✏️  Review and edit:   {path}")
    click.echo("✅ Validate:          eth-node-setup config validate")
    click.echo("🔒 Encrypt (optional): eth-node-setup config encrypt")
    click.echo("👀 Preview the run:   eth-node-setup plan")
    click.echo("🚀 Provision:         sudo eth-node-setup run")
