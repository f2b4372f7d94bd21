"""
Client steps: install the execution/consensus pair, the optional validator
client and MEV-boost, and write their systemd services.
"""
import logging
from pathlib import Path

from . import systemd
from .clients import (
    MEV_BOOST,
    beacon_command,
    execution_command,
    get_consensus_client,
    get_execution_client,
    mev_boost_command,
    validator_command,
)
from .config import NodeConfig
from .context import ProvisionContext

logger = logging.getLogger(__name__)

KEYSTORE_GLOB = 'keystore-*.json'


def install_execution_client(ctx: ProvisionContext):
    spec = get_execution_client(ctx.config.execution_client)
    ctx.installed_versions[spec.name] = ctx.installer.install(spec)


def install_consensus_client(ctx: ProvisionContext):
    spec = get_consensus_client(ctx.config.consensus_client)
    ctx.installed_versions[spec.name] = ctx.installer.install(spec)


def configure_execution_service(ctx: ProvisionContext):
    config = ctx.config
    unit = systemd.ServiceUnit(
        name=systemd.EXECUTION_SERVICE,
        description=f"Ethereum execution client ({config.execution_client}, {config.network})",
        exec_start=execution_command(config),
        user=config.eth_user,
        memory_max=config.execution_memory_limit,
        cpu_quota=config.cpu_quota,
        timeout_stop_sec=600,
    )
    systemd.install_unit(ctx.runner, unit)
    ctx.register_service(unit.name)


def configure_consensus_service(ctx: ProvisionContext):
    config = ctx.config
    after = [systemd.EXECUTION_SERVICE]
    if config.enable_mev_boost:
        after.append(systemd.MEV_BOOST_SERVICE)
    unit = systemd.ServiceUnit(
        name=systemd.CONSENSUS_SERVICE,
        description=f"Ethereum consensus client ({config.consensus_client}, {config.network})",
        exec_start=beacon_command(config),
        user=config.eth_user,
        after=after,
        memory_max=config.consensus_memory_limit,
        cpu_quota=config.cpu_quota,
    )
    systemd.install_unit(ctx.runner, unit)
    ctx.register_service(unit.name)


def install_mev_boost(ctx: ProvisionContext):
    config = ctx.config
    ctx.installed_versions[MEV_BOOST.name] = ctx.installer.install(MEV_BOOST)
    unit = systemd.ServiceUnit(
        name=systemd.MEV_BOOST_SERVICE,
        description=f"MEV-boost relay sidecar ({config.network})",
        exec_start=mev_boost_command(config),
        user=config.eth_user,
        timeout_stop_sec=30,
    )
    systemd.install_unit(ctx.runner, unit)
    ctx.register_service(unit.name)


def has_validator_keys(config: NodeConfig) -> bool:
    keys_dir = Path(config.validator_keys_dir)
    return keys_dir.is_dir() and any(keys_dir.glob(KEYSTORE_GLOB))


def key_import_hint(config: NodeConfig) -> str:
    """Command the operator runs to import keystores for the selected client"""
    keys = config.validator_keys_dir
    datadir = config.validator_data_dir
    hints = {
        'lighthouse': f"lighthouse account validator import --network {config.network} "
                      f"--datadir {datadir} --directory {keys}",
        'prysm': f"validator accounts import --{config.network} --wallet-dir {datadir}/wallet --keys-dir {keys}",
        'teku': f"place keystore-*.json with matching .txt password files in {keys}",
        'nimbus': f"nimbus_beacon_node deposits import --data-dir={datadir} {keys}",
        'lodestar': f"lodestar validator import --network {config.network} --dataDir {datadir} --importKeystores {keys}",
    }
    return hints[config.consensus_client]


def configure_validator(ctx: ProvisionContext):
    config = ctx.config
    unit = systemd.ServiceUnit(
        name=systemd.VALIDATOR_SERVICE,
        description=f"Ethereum validator client ({config.consensus_client}, {config.network})",
        exec_start=validator_command(config),
        user=config.eth_user,
        after=[systemd.CONSENSUS_SERVICE],
        timeout_stop_sec=60,
    )
    systemd.install_unit(ctx.runner, unit)

    # Only teku loads keystores straight from the keys directory
    if config.consensus_client != 'teku':
        if config.consensus_client == 'prysm':
            ctx.notes.append(f"Create the prysm wallet password file {config.validator_data_dir}/wallet-password.txt "
                             f"(mode 0600, owned by {config.eth_user})")
        ctx.notes.append(f"Import validator keys as {config.eth_user}: {key_import_hint(config)}")

    if has_validator_keys(config):
        ctx.register_service(unit.name)
        if config.consensus_client != 'teku':
            ctx.notes.append(f"Restart the validator after the import: systemctl restart {unit.name}")
        return

    # Never start a validator without keys: enable it and wait for the import
    ctx.register_service(unit.name, start=False)
    logger.warning(f"No keystores found in {config.validator_keys_dir}; "
                   f"{unit.name} is enabled but not started")
    if config.consensus_client == 'teku':
        ctx.notes.append(f"Add validator keys: {key_import_hint(config)}")
    ctx.notes.append(f"Then start the validator: systemctl start {unit.name}")


def start_services(ctx: ProvisionContext):
    """Reload systemd, then enable and start services in dependency order"""
    runner = ctx.runner
    systemd.daemon_reload(runner)
    for service in ctx.services:
        systemd.enable(runner, service)
        systemd.restart(runner, service)
    for service in ctx.deferred_services:
        systemd.enable(runner, service)
