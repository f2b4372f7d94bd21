"""
Client catalog: how each execution and consensus client is installed and
which command line each systemd service runs.
"""
import platform
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .config import NodeConfig

NETWORKS = ['mainnet', 'holesky', 'sepolia', 'hoodi']

CHECKPOINT_SYNC_URLS = {
    'mainnet': 'https://mainnet.checkpoint.sigp.io',
    'holesky': 'https://holesky.checkpoint.sigp.io',
    'sepolia': 'https://sepolia.checkpoint.sigp.io',
    'hoodi': 'https://hoodi.checkpoint.sigp.io',
}

DEFAULT_MEV_RELAYS = {
    'mainnet': [
        'https://0xac6e77dfe25ecd6110b8e780608cce0dab71fdd5ebea22a16c0205200f2f8e2e3ad3b71d3499c54ad14d6c21b41a37ae@boost-relay.flashbots.net',
    ],
    'holesky': [
        'https://0xafa4c6985aa049fb79dd37010438cfebeb0f2bd42b115b89dd678dab0670c1de38da0c4e9138c9290a398ecd9a0b3110@boost-relay-holesky.flashbots.net',
    ],
}

# Local-only endpoints
MEV_BOOST_PORT = 18550
EXECUTION_METRICS_PORT = 6060
CONSENSUS_METRICS_PORT = 5054
VALIDATOR_METRICS_PORT = 5064

# platform.machine() -> naming conventions used by release assets
ARCH_ALIASES = {
    'x86_64': {'go': 'amd64', 'rust': 'x86_64', 'nimbus': 'amd64', 'dotnet': 'x64'},
    'amd64': {'go': 'amd64', 'rust': 'x86_64', 'nimbus': 'amd64', 'dotnet': 'x64'},
    'aarch64': {'go': 'arm64', 'rust': 'aarch64', 'nimbus': 'arm64v8', 'dotnet': 'arm64'},
    'arm64': {'go': 'arm64', 'rust': 'aarch64', 'nimbus': 'arm64v8', 'dotnet': 'arm64'},
}


def detect_arch(machine: Optional[str] = None) -> Dict[str, str]:
    """Return the asset naming aliases for this CPU architecture"""
    machine = (machine or platform.machine()).lower()
    if machine not in ARCH_ALIASES:
        raise ValueError(f"Unsupported CPU architecture: {machine}")
    return ARCH_ALIASES[machine]


@dataclass(frozen=True)
class ClientSpec:
    """How a client is obtained and installed"""
    name: str
    layer: str  # 'execution', 'consensus' or 'sidecar'
    method: str  # 'apt', 'archive', 'binaries' or 'url-archive'
    repo: Optional[str] = None
    asset_pattern: Optional[str] = None
    # For 'binaries': asset regex -> installed binary name
    binary_assets: Dict[str, str] = field(default_factory=dict)
    # For 'url-archive': download URL with {version}
    url_template: Optional[str] = None
    binaries: Tuple[str, ...] = ()
    apt_packages: Tuple[str, ...] = ()
    ppa: Optional[str] = None
    needs_java: bool = False
    # Archives extracted under /opt/<name> and symlinked, instead of copying binaries
    opt_install: bool = False

    def binary_path(self, config: NodeConfig, binary: Optional[str] = None) -> str:
        binary = binary or self.binaries[0]
        if self.method == 'apt':
            return f"/usr/bin/{binary}"
        return f"{config.install_dir}/{binary}"


EXECUTION_CLIENTS: Dict[str, ClientSpec] = {
    'geth': ClientSpec(
        name='geth', layer='execution', method='apt',
        ppa='ppa:ethereum/ethereum', apt_packages=('ethereum',), binaries=('geth',),
    ),
    'nethermind': ClientSpec(
        name='nethermind', layer='execution', method='archive',
        repo='NethermindEth/nethermind',
        asset_pattern=r'nethermind-.*-linux-{dotnet}\.zip$',
        binaries=('nethermind',), opt_install=True,
    ),
    'besu': ClientSpec(
        name='besu', layer='execution', method='archive',
        repo='hyperledger/besu', asset_pattern=r'besu-[0-9.]+\.tar\.gz$',
        binaries=('besu',), needs_java=True, opt_install=True,
    ),
    'erigon': ClientSpec(
        name='erigon', layer='execution', method='archive',
        repo='erigontech/erigon', asset_pattern=r'erigon_.*_linux_{go}\.tar\.gz$',
        binaries=('erigon',),
    ),
    'reth': ClientSpec(
        name='reth', layer='execution', method='archive',
        repo='paradigmxyz/reth', asset_pattern=r'reth-.*-{rust}-unknown-linux-gnu\.tar\.gz$',
        binaries=('reth',),
    ),
}

CONSENSUS_CLIENTS: Dict[str, ClientSpec] = {
    'lighthouse': ClientSpec(
        name='lighthouse', layer='consensus', method='archive',
        repo='sigp/lighthouse', asset_pattern=r'lighthouse-.*-{rust}-unknown-linux-gnu\.tar\.gz$',
        binaries=('lighthouse',),
    ),
    'prysm': ClientSpec(
        name='prysm', layer='consensus', method='binaries',
        repo='prysmaticlabs/prysm',
        binary_assets={
            r'^beacon-chain-v.*-linux-{go}$': 'beacon-chain',
            r'^validator-v.*-linux-{go}$': 'validator',
        },
        binaries=('beacon-chain', 'validator'),
    ),
    'teku': ClientSpec(
        name='teku', layer='consensus', method='url-archive',
        repo='Consensys/teku',
        url_template='https://artifacts.consensys.net/public/teku/raw/names/teku.tar.gz/versions/{version}/teku-{version}.tar.gz',
        binaries=('teku',), needs_java=True, opt_install=True,
    ),
    'nimbus': ClientSpec(
        name='nimbus', layer='consensus', method='archive',
        repo='status-im/nimbus-eth2', asset_pattern=r'nimbus-eth2_Linux_{nimbus}_.*\.tar\.gz$',
        binaries=('nimbus_beacon_node', 'nimbus_validator_client'),
    ),
    'lodestar': ClientSpec(
        name='lodestar', layer='consensus', method='archive',
        repo='ChainSafe/lodestar', asset_pattern=r'lodestar-.*-linux-{go}\.tar\.gz$',
        binaries=('lodestar',),
    ),
}

MEV_BOOST = ClientSpec(
    name='mev-boost', layer='sidecar', method='archive',
    repo='flashbots/mev-boost', asset_pattern=r'mev-boost_.*_linux_{go}\.tar\.gz$',
    binaries=('mev-boost',),
)


def get_execution_client(name: str) -> ClientSpec:
    if name not in EXECUTION_CLIENTS:
        raise ValueError(f"Unknown execution client '{name}' (choose from {', '.join(EXECUTION_CLIENTS)})")
    return EXECUTION_CLIENTS[name]


def get_consensus_client(name: str) -> ClientSpec:
    if name not in CONSENSUS_CLIENTS:
        raise ValueError(f"Unknown consensus client '{name}' (choose from {', '.join(CONSENSUS_CLIENTS)})")
    return CONSENSUS_CLIENTS[name]


def checkpoint_sync_url(config: NodeConfig) -> Optional[str]:
    if not config.enable_checkpoint_sync:
        return None
    return config.checkpoint_sync_url or CHECKPOINT_SYNC_URLS.get(config.network)


def mev_relays(config: NodeConfig) -> List[str]:
    return config.relay_list() or DEFAULT_MEV_RELAYS.get(config.network, [])


def _engine_url(config: NodeConfig) -> str:
    return f"http://127.0.0.1:{config.engine_api_port}"


def _beacon_url(config: NodeConfig) -> str:
    return f"http://127.0.0.1:{config.beacon_api_port}"


def _builder_url() -> str:
    return f"http://127.0.0.1:{MEV_BOOST_PORT}"


# ----------------------------
# Execution client commands
# ----------------------------

def _geth_command(config: NodeConfig) -> List[str]:
    spec = EXECUTION_CLIENTS['geth']
    cmd = [
        spec.binary_path(config), f"--{config.network}",
        '--datadir', config.execution_data_dir,
        '--authrpc.addr', '127.0.0.1', '--authrpc.port', str(config.engine_api_port),
        '--authrpc.jwtsecret', config.jwt_secret_path,
        '--http', '--http.addr', '127.0.0.1', '--http.port', str(config.execution_rpc_port),
        '--port', str(config.execution_p2p_port),
        '--maxpeers', str(config.execution_max_peers),
        '--cache', str(config.execution_cache_mb),
    ]
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics.addr', '127.0.0.1', '--metrics.port', str(EXECUTION_METRICS_PORT)]
    return cmd


def _nethermind_command(config: NodeConfig) -> List[str]:
    spec = EXECUTION_CLIENTS['nethermind']
    cmd = [
        spec.binary_path(config), '--config', config.network,
        '--data-dir', config.execution_data_dir,
        '--JsonRpc.Enabled', 'true', '--JsonRpc.Host', '127.0.0.1',
        '--JsonRpc.Port', str(config.execution_rpc_port),
        '--JsonRpc.EngineHost', '127.0.0.1', '--JsonRpc.EnginePort', str(config.engine_api_port),
        '--JsonRpc.JwtSecretFile', config.jwt_secret_path,
        '--Network.P2PPort', str(config.execution_p2p_port),
        '--Network.DiscoveryPort', str(config.execution_p2p_port),
        '--Network.MaxActivePeers', str(config.execution_max_peers),
    ]
    if config.enable_monitoring:
        cmd += ['--Metrics.Enabled', 'true', '--Metrics.ExposePort', str(EXECUTION_METRICS_PORT)]
    return cmd


def _besu_command(config: NodeConfig) -> List[str]:
    spec = EXECUTION_CLIENTS['besu']
    cmd = [
        spec.binary_path(config), f"--network={config.network}",
        f"--data-path={config.execution_data_dir}",
        '--sync-mode=SNAP', '--data-storage-format=BONSAI',
        '--rpc-http-enabled=true', '--rpc-http-host=127.0.0.1',
        f"--rpc-http-port={config.execution_rpc_port}",
        '--engine-host-allowlist=localhost,127.0.0.1',
        f"--engine-rpc-port={config.engine_api_port}",
        f"--engine-jwt-secret={config.jwt_secret_path}",
        f"--p2p-port={config.execution_p2p_port}",
        f"--max-peers={config.execution_max_peers}",
    ]
    if config.enable_monitoring:
        cmd += ['--metrics-enabled=true', '--metrics-host=127.0.0.1', f"--metrics-port={EXECUTION_METRICS_PORT}"]
    return cmd


def _erigon_command(config: NodeConfig) -> List[str]:
    spec = EXECUTION_CLIENTS['erigon']
    cmd = [
        spec.binary_path(config), f"--chain={config.network}",
        f"--datadir={config.execution_data_dir}",
        '--externalcl',
        '--authrpc.addr=127.0.0.1', f"--authrpc.port={config.engine_api_port}",
        f"--authrpc.jwtsecret={config.jwt_secret_path}",
        '--http.addr=127.0.0.1', f"--http.port={config.execution_rpc_port}",
        f"--port={config.execution_p2p_port}",
        f"--maxpeers={config.execution_max_peers}",
    ]
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics.addr=127.0.0.1', f"--metrics.port={EXECUTION_METRICS_PORT}"]
    return cmd


def _reth_command(config: NodeConfig) -> List[str]:
    spec = EXECUTION_CLIENTS['reth']
    cmd = [
        spec.binary_path(config), 'node', '--chain', config.network,
        '--datadir', config.execution_data_dir,
        '--authrpc.addr', '127.0.0.1', '--authrpc.port', str(config.engine_api_port),
        '--authrpc.jwtsecret', config.jwt_secret_path,
        '--http', '--http.addr', '127.0.0.1', '--http.port', str(config.execution_rpc_port),
        '--port', str(config.execution_p2p_port),
        '--discovery.port', str(config.execution_p2p_port),
        '--max-outbound-peers', str(config.execution_max_peers),
    ]
    if config.enable_monitoring:
        cmd += ['--metrics', f"127.0.0.1:{EXECUTION_METRICS_PORT}"]
    return cmd


# ----------------------------
# Consensus client commands
# ----------------------------

def _lighthouse_beacon_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['lighthouse']
    cmd = [
        spec.binary_path(config), 'bn', '--network', config.network,
        '--datadir', config.consensus_data_dir,
        '--execution-endpoint', _engine_url(config),
        '--execution-jwt', config.jwt_secret_path,
        '--port', str(config.consensus_p2p_port),
        '--http', '--http-address', '127.0.0.1', '--http-port', str(config.beacon_api_port),
        '--target-peers', str(config.consensus_max_peers),
    ]
    sync_url = checkpoint_sync_url(config)
    if sync_url:
        cmd += ['--checkpoint-sync-url', sync_url]
    if config.fee_recipient:
        cmd += ['--suggested-fee-recipient', config.fee_recipient]
    if config.enable_mev_boost:
        cmd += ['--builder', _builder_url()]
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics-address', '127.0.0.1', '--metrics-port', str(CONSENSUS_METRICS_PORT)]
    return cmd


def _prysm_beacon_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['prysm']
    cmd = [
        spec.binary_path(config, 'beacon-chain'), '--accept-terms-of-use', f"--{config.network}",
        f"--datadir={config.consensus_data_dir}",
        f"--execution-endpoint={_engine_url(config)}",
        f"--jwt-secret={config.jwt_secret_path}",
        f"--p2p-tcp-port={config.consensus_p2p_port}",
        f"--p2p-udp-port={config.consensus_p2p_port}",
        '--http-host=127.0.0.1', f"--http-port={config.beacon_api_port}",
        f"--p2p-max-peers={config.consensus_max_peers}",
    ]
    sync_url = checkpoint_sync_url(config)
    if sync_url:
        cmd += [f"--checkpoint-sync-url={sync_url}", f"--genesis-beacon-api-url={sync_url}"]
    if config.fee_recipient:
        cmd += [f"--suggested-fee-recipient={config.fee_recipient}"]
    if config.enable_mev_boost:
        cmd += [f"--http-mev-relay={_builder_url()}"]
    if config.enable_monitoring:
        cmd += ['--monitoring-host=127.0.0.1', f"--monitoring-port={CONSENSUS_METRICS_PORT}"]
    else:
        cmd += ['--disable-monitoring']
    return cmd


def _teku_beacon_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['teku']
    cmd = [
        spec.binary_path(config), f"--network={config.network}",
        f"--data-path={config.consensus_data_dir}",
        f"--ee-endpoint={_engine_url(config)}",
        f"--ee-jwt-secret-file={config.jwt_secret_path}",
        f"--p2p-port={config.consensus_p2p_port}",
        f"--p2p-peer-upper-bound={config.consensus_max_peers}",
        '--rest-api-enabled=true', '--rest-api-interface=127.0.0.1',
        f"--rest-api-port={config.beacon_api_port}",
    ]
    sync_url = checkpoint_sync_url(config)
    if sync_url:
        cmd += [f"--checkpoint-sync-url={sync_url}/eth/v2/debug/beacon/states/finalized"]
    if config.fee_recipient:
        cmd += [f"--validators-proposer-default-fee-recipient={config.fee_recipient}"]
    if config.enable_mev_boost:
        cmd += [f"--builder-endpoint={_builder_url()}"]
    if config.enable_monitoring:
        cmd += ['--metrics-enabled=true', '--metrics-interface=127.0.0.1', f"--metrics-port={CONSENSUS_METRICS_PORT}"]
    return cmd


def _nimbus_beacon_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['nimbus']
    cmd = [
        spec.binary_path(config, 'nimbus_beacon_node'), f"--network={config.network}",
        f"--data-dir={config.consensus_data_dir}",
        f"--el={_engine_url(config)}",
        f"--jwt-secret={config.jwt_secret_path}",
        f"--tcp-port={config.consensus_p2p_port}",
        f"--udp-port={config.consensus_p2p_port}",
        f"--max-peers={config.consensus_max_peers}",
        '--rest', '--rest-address=127.0.0.1', f"--rest-port={config.beacon_api_port}",
    ]
    sync_url = checkpoint_sync_url(config)
    if sync_url:
        cmd += [f"--external-beacon-api-url={sync_url}"]
    if config.fee_recipient:
        cmd += [f"--suggested-fee-recipient={config.fee_recipient}"]
    if config.enable_mev_boost:
        cmd += ['--payload-builder=true', f"--payload-builder-url={_builder_url()}"]
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics-address=127.0.0.1', f"--metrics-port={CONSENSUS_METRICS_PORT}"]
    return cmd


def _lodestar_beacon_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['lodestar']
    cmd = [
        spec.binary_path(config), 'beacon', '--network', config.network,
        '--dataDir', config.consensus_data_dir,
        '--execution.urls', _engine_url(config),
        '--jwt-secret', config.jwt_secret_path,
        '--port', str(config.consensus_p2p_port),
        '--rest', '--rest.address', '127.0.0.1', '--rest.port', str(config.beacon_api_port),
        '--targetPeers', str(config.consensus_max_peers),
    ]
    sync_url = checkpoint_sync_url(config)
    if sync_url:
        cmd += ['--checkpointSyncUrl', sync_url]
    if config.fee_recipient:
        cmd += ['--suggestedFeeRecipient', config.fee_recipient]
    if config.enable_mev_boost:
        cmd += ['--builder', '--builder.urls', _builder_url()]
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics.address', '127.0.0.1', '--metrics.port', str(CONSENSUS_METRICS_PORT)]
    return cmd


# ----------------------------
# Validator client commands
# ----------------------------

def _lighthouse_validator_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['lighthouse']
    cmd = [
        spec.binary_path(config), 'vc', '--network', config.network,
        '--datadir', config.validator_data_dir,
        '--beacon-nodes', _beacon_url(config),
        '--suggested-fee-recipient', config.fee_recipient,
        '--graffiti', config.graffiti,
    ]
    if config.enable_mev_boost:
        cmd += ['--builder-proposals']
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics-address', '127.0.0.1', '--metrics-port', str(VALIDATOR_METRICS_PORT)]
    return cmd


def _prysm_validator_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['prysm']
    cmd = [
        spec.binary_path(config, 'validator'), '--accept-terms-of-use', f"--{config.network}",
        f"--datadir={config.validator_data_dir}",
        f"--wallet-dir={config.validator_data_dir}/wallet",
        f"--wallet-password-file={config.validator_data_dir}/wallet-password.txt",
        f"--beacon-rest-api-provider={_beacon_url(config)}",
        f"--suggested-fee-recipient={config.fee_recipient}",
        f"--graffiti={config.graffiti}",
    ]
    if config.enable_mev_boost:
        cmd += ['--enable-builder']
    if config.enable_monitoring:
        cmd += ['--monitoring-host=127.0.0.1', f"--monitoring-port={VALIDATOR_METRICS_PORT}"]
    else:
        cmd += ['--disable-monitoring']
    return cmd


def _teku_validator_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['teku']
    cmd = [
        spec.binary_path(config), 'validator-client', f"--network={config.network}",
        f"--data-path={config.validator_data_dir}",
        f"--beacon-node-api-endpoint={_beacon_url(config)}",
        f"--validator-keys={config.validator_keys_dir}:{config.validator_keys_dir}",
        f"--validators-proposer-default-fee-recipient={config.fee_recipient}",
        f"--validators-graffiti={config.graffiti}",
    ]
    if config.enable_mev_boost:
        cmd += ['--validators-builder-registration-default-enabled=true']
    if config.enable_monitoring:
        cmd += ['--metrics-enabled=true', '--metrics-interface=127.0.0.1', f"--metrics-port={VALIDATOR_METRICS_PORT}"]
    return cmd


def _nimbus_validator_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['nimbus']
    cmd = [
        spec.binary_path(config, 'nimbus_validator_client'),
        f"--data-dir={config.validator_data_dir}",
        f"--beacon-node={_beacon_url(config)}",
        f"--suggested-fee-recipient={config.fee_recipient}",
        f"--graffiti={config.graffiti}",
    ]
    if config.enable_mev_boost:
        cmd += ['--payload-builder=true']
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics-address=127.0.0.1', f"--metrics-port={VALIDATOR_METRICS_PORT}"]
    return cmd


def _lodestar_validator_command(config: NodeConfig) -> List[str]:
    spec = CONSENSUS_CLIENTS['lodestar']
    cmd = [
        spec.binary_path(config), 'validator', '--network', config.network,
        '--dataDir', config.validator_data_dir,
        '--beaconNodes', _beacon_url(config),
        '--suggestedFeeRecipient', config.fee_recipient,
        '--graffiti', config.graffiti,
    ]
    if config.enable_mev_boost:
        cmd += ['--builder']
    if config.enable_monitoring:
        cmd += ['--metrics', '--metrics.address', '127.0.0.1', '--metrics.port', str(VALIDATOR_METRICS_PORT)]
    return cmd


EXECUTION_COMMANDS: Dict[str, Callable[[NodeConfig], List[str]]] = {
    'geth': _geth_command,
    'nethermind': _nethermind_command,
    'besu': _besu_command,
    'erigon': _erigon_command,
    'reth': _reth_command,
}

BEACON_COMMANDS: Dict[str, Callable[[NodeConfig], List[str]]] = {
    'lighthouse': _lighthouse_beacon_command,
    'prysm': _prysm_beacon_command,
    'teku': _teku_beacon_command,
    'nimbus': _nimbus_beacon_command,
    'lodestar': _lodestar_beacon_command,
}

VALIDATOR_COMMANDS: Dict[str, Callable[[NodeConfig], List[str]]] = {
    'lighthouse': _lighthouse_validator_command,
    'prysm': _prysm_validator_command,
    'teku': _teku_validator_command,
    'nimbus': _nimbus_validator_command,
    'lodestar': _lodestar_validator_command,
}


def execution_command(config: NodeConfig) -> List[str]:
    get_execution_client(config.execution_client)
    return EXECUTION_COMMANDS[config.execution_client](config)


def beacon_command(config: NodeConfig) -> List[str]:
    get_consensus_client(config.consensus_client)
    return BEACON_COMMANDS[config.consensus_client](config)


def validator_command(config: NodeConfig) -> List[str]:
    get_consensus_client(config.consensus_client)
    return VALIDATOR_COMMANDS[config.consensus_client](config)


def mev_boost_command(config: NodeConfig) -> List[str]:
    cmd = [
        MEV_BOOST.binary_path(config), f"-{config.network}",
        '-addr', f"127.0.0.1:{MEV_BOOST_PORT}",
        '-relay-check',
        '-relays', ','.join(mev_relays(config)),
    ]
    if config.mev_min_bid > 0:
        cmd += ['-min-bid', f"{config.mev_min_bid:g}"]
    return cmd


def consensus_udp_ports(config: NodeConfig) -> List[int]:
    """UDP ports the consensus client listens on besides its P2P port"""
    if config.consensus_client == 'lighthouse':
        # QUIC transport
        return [config.consensus_p2p_port + 1]
    return []
