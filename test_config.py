"""
Tests for config file parsing, typed conversion, rendering and discovery
"""
import pytest

from eth_node_setup import config as config_module
from eth_node_setup.config import (
    MASK,
    ConfigError,
    NodeConfig,
    get_config_path,
    load_config,
    parse_env,
    render_env,
)


def test_parse_env_handles_comments_quotes_and_export():
    text = """
# a comment
NETWORK=holesky
export EXECUTION_CLIENT=nethermind
GRAFFITI="my node # 1"
FEE_RECIPIENT='0xabc'
CONSENSUS_CLIENT=teku   # trailing comment
EMPTY=
"""
    values = parse_env(text)
    assert values == {
        'NETWORK': 'holesky',
        'EXECUTION_CLIENT': 'nethermind',
        'GRAFFITI': 'my node # 1',
        'FEE_RECIPIENT': '0xabc',
        'CONSENSUS_CLIENT': 'teku',
        'EMPTY': '',
    }


def test_parse_env_reports_line_number():
    with pytest.raises(ConfigError, match='Line 2'):
        parse_env("NETWORK=mainnet\nthis is not valid\n")


def test_parse_env_line_number_skips_blank_lines():
    with pytest.raises(ConfigError, match='Line 4'):
        parse_env("# header\nNETWORK=mainnet\n\nnot valid at all\n")


def test_parse_env_rejects_unterminated_quote():
    with pytest.raises(ConfigError, match='Line 1'):
        parse_env('GRAFFITI="oops\n')


def test_parse_env_rejects_key_without_value():
    with pytest.raises(ConfigError, match='Line 2.*NETWORK'):
        parse_env("SSH_PORT=22\nNETWORK\n")


def test_from_env_converts_types():
    config = NodeConfig.from_env({
        'ENABLE_VALIDATOR': 'yes',
        'ENABLE_FIREWALL': 'off',
        'SSH_PORT': '2222',
        'MEV_MIN_BID': '0.05',
        'NETWORK': 'sepolia',
    })
    assert config.enable_validator is True
    assert config.enable_firewall is False
    assert config.ssh_port == 2222
    assert config.mev_min_bid == pytest.approx(0.05)
    assert config.network == 'sepolia'
    # Untouched keys keep their defaults
    assert config.execution_client == 'geth'


@pytest.mark.parametrize('key, value', [
    ('ENABLE_VALIDATOR', 'maybe'),
    ('SSH_PORT', 'twenty-two'),
    ('MEV_MIN_BID', 'lots'),
])
def test_from_env_rejects_bad_values(key, value):
    with pytest.raises(ConfigError, match=key):
        NodeConfig.from_env({key: value})


def test_unknown_keys_are_kept_as_extra():
    config = NodeConfig.from_env({'CUSTOM_THING': 'value'})
    assert config.extra == {'CUSTOM_THING': 'value'}
    assert config.to_env()['CUSTOM_THING'] == 'value'


def test_rendered_file_parses_back_to_the_same_config():
    config = NodeConfig(graffiti='solo staker', backup_schedule='30 2 * * *',
                        enable_validator=True, fee_recipient='0x' + 'ab' * 20)
    text = render_env(config)
    assert 'GRAFFITI="solo staker"' in text
    assert '# --- Validator ---' in text
    assert NodeConfig.from_env(parse_env(text)) == config


def test_masked_hides_secrets_only_when_set():
    assert NodeConfig().masked()['GRAFANA_ADMIN_PASSWORD'] == ''
    masked = NodeConfig(grafana_admin_password='hunter2').masked()
    assert masked['GRAFANA_ADMIN_PASSWORD'] == MASK
    assert masked['NETWORK'] == 'mainnet'


def test_derived_paths():
    config = NodeConfig(data_dir='/srv/eth')
    assert config.execution_data_dir == '/srv/eth/execution'
    assert config.consensus_data_dir == '/srv/eth/consensus'
    assert config.validator_data_dir == '/srv/eth/validator'
    assert config.jwt_secret_path == '/srv/eth/jwt.hex'


def test_relay_list_strips_blanks():
    config = NodeConfig(mev_relays=' https://a@relay.one , ,https://b@relay.two')
    assert config.relay_list() == ['https://a@relay.one', 'https://b@relay.two']


class TestConfigDiscovery:

    @pytest.fixture(autouse=True)
    def isolated(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setattr(config_module, 'SYSTEM_CONFIG_DIR', tmp_path / 'etc')

    def test_defaults_to_current_directory(self, tmp_path):
        assert get_config_path() == tmp_path / 'eth-node.env'

    def test_prefers_encrypted_file_in_current_directory(self, tmp_path):
        (tmp_path / 'eth-node.env.enc').write_bytes(b'Salted__')
        assert get_config_path() == tmp_path / 'eth-node.env.enc'

    def test_environment_variable(self, tmp_path, monkeypatch):
        monkeypatch.setenv('ETH_NODE_SETUP_CONFIG', '/opt/custom.env')
        assert str(get_config_path()) == '/opt/custom.env'

    def test_system_directory(self, tmp_path):
        system_dir = tmp_path / 'etc'
        system_dir.mkdir()
        (system_dir / 'eth-node.env').write_text('NETWORK=mainnet\n')
        assert get_config_path() == system_dir / 'eth-node.env'


def test_load_config_missing_file(tmp_path):
    with pytest.raises(ConfigError, match='not found'):
        load_config(tmp_path / 'missing.env')


def test_load_config_plain(tmp_path):
    path = tmp_path / 'eth-node.env'
    path.write_text('NETWORK=holesky\nCONSENSUS_CLIENT=prysm\n')
    config = load_config(path)
    assert config.network == 'holesky'
    assert config.consensus_client == 'prysm'


def test_load_encrypted_config_needs_a_password(tmp_path):
    path = tmp_path / 'eth-node.env.enc'
    path.write_bytes(b'Salted__garbage')
    with pytest.raises(ConfigError, match='no password'):
        load_config(path)
