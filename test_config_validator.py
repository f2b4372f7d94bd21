"""
Tests for configuration validation
"""
from eth_node_setup.config import NodeConfig
from eth_node_setup.config_validator import CRITICAL, WARNING, has_critical, validate_config

ADDRESS = '0x' + '1f' * 20


def critical_keys(issues):
    return {issue.key for issue in issues if issue.severity == CRITICAL}


def test_defaults_are_valid():
    assert validate_config(NodeConfig()) == []


def test_required_value_missing():
    issues = validate_config(NodeConfig(eth_user=''))
    assert 'ETH_USER' in critical_keys(issues)
    assert has_critical(issues)


def test_unknown_clients_and_network():
    issues = validate_config(NodeConfig(network='ropsten', execution_client='parity',
                                        consensus_client='prysm2'))
    assert {'NETWORK', 'EXECUTION_CLIENT', 'CONSENSUS_CLIENT'} <= critical_keys(issues)


def test_validator_needs_fee_recipient():
    issues = validate_config(NodeConfig(enable_validator=True))
    assert 'FEE_RECIPIENT' in critical_keys(issues)

    assert not has_critical(validate_config(NodeConfig(enable_validator=True, fee_recipient=ADDRESS)))


def test_malformed_fee_recipient_is_only_a_warning_without_validator():
    issues = validate_config(NodeConfig(fee_recipient='0x1234'))
    assert [(i.key, i.severity) for i in issues] == [('FEE_RECIPIENT', WARNING)]


def test_port_out_of_range():
    issues = validate_config(NodeConfig(ssh_port=70000))
    assert 'SSH_PORT' in critical_keys(issues)


def test_duplicate_ports():
    issues = validate_config(NodeConfig(beacon_api_port=8545))
    duplicate = [i for i in issues if i.key == 'BEACON_API_PORT']
    assert duplicate and 'EXECUTION_RPC_PORT' in duplicate[0].description


def test_lighthouse_quic_port_collision():
    issues = validate_config(NodeConfig(consensus_client='lighthouse', execution_p2p_port=9001))
    assert 'consensus quic' in critical_keys(issues)

    # Other consensus clients do not use the extra port
    assert not has_critical(validate_config(NodeConfig(consensus_client='teku', execution_p2p_port=9001)))


def test_lighthouse_quic_port_out_of_range():
    issues = validate_config(NodeConfig(consensus_client='lighthouse', consensus_p2p_port=65535))
    quic = [i for i in issues if i.key == 'CONSENSUS_P2P_PORT' and i.severity == CRITICAL]
    assert quic and '65536' in quic[0].description

    assert not has_critical(validate_config(NodeConfig(consensus_client='prysm', consensus_p2p_port=65535)))


def test_port_colliding_with_mev_boost():
    issues = validate_config(NodeConfig(execution_rpc_port=18550))
    assert 'mev-boost' in critical_keys(issues)


def test_resource_limits():
    issues = validate_config(NodeConfig(execution_memory_limit='16GB', cpu_quota='4 cores'))
    assert {'EXECUTION_MEMORY_LIMIT', 'CPU_QUOTA'} <= critical_keys(issues)


def test_mev_boost_without_default_relays():
    config = NodeConfig(network='sepolia', enable_mev_boost=True, enable_validator=True, fee_recipient=ADDRESS)
    assert 'MEV_RELAYS' in critical_keys(validate_config(config))

    config.mev_relays = 'https://0xabc@relay.example.org'
    assert not has_critical(validate_config(config))


def test_mev_boost_without_validator_warns():
    issues = validate_config(NodeConfig(enable_mev_boost=True, fee_recipient=ADDRESS))
    assert ('ENABLE_MEV_BOOST', WARNING) in [(i.key, i.severity) for i in issues]
    assert not has_critical(issues)


def test_backup_settings():
    issues = validate_config(NodeConfig(enable_backups=True, backup_schedule='daily',
                                        backup_retention_days=0, backup_dir='backups'))
    assert {'BACKUP_SCHEDULE', 'BACKUP_RETENTION_DAYS', 'BACKUP_DIR'} <= critical_keys(issues)


def test_world_readable_config_with_secrets(tmp_path):
    path = tmp_path / 'eth-node.env'
    path.write_text('GRAFANA_ADMIN_PASSWORD=hunter2\n')
    path.chmod(0o644)
    config = NodeConfig(grafana_admin_password='hunter2')

    issues = validate_config(config, str(path))
    assert [(i.key, i.severity) for i in issues] == [('CONFIG_FILE', WARNING)]

    path.chmod(0o600)
    assert validate_config(config, str(path)) == []
