"""
Tests for config encryption at rest (needs the openssl binary)
"""
import shutil
import stat

import pytest

from eth_node_setup.config import ConfigError, load_config
from eth_node_setup.crypto import (
    PASSWORD_ENV,
    decrypt_file,
    decrypt_to_file,
    encrypt_bytes,
    encrypt_file,
)

requires_openssl = pytest.mark.skipif(shutil.which('openssl') is None, reason='openssl not installed')

CONFIG_TEXT = 'NETWORK=holesky\nGRAFANA_ADMIN_PASSWORD=hunter2\n'


def test_empty_password_rejected():
    with pytest.raises(ConfigError, match='empty password'):
        encrypt_bytes(b'data', '')


@requires_openssl
def test_encrypt_file_replaces_plaintext(tmp_path):
    path = tmp_path / 'eth-node.env'
    path.write_text(CONFIG_TEXT)

    target = encrypt_file(path, 'correct horse')

    assert target == tmp_path / 'eth-node.env.enc'
    assert not path.exists()
    assert stat.S_IMODE(target.stat().st_mode) == 0o600
    assert target.read_bytes().startswith(b'Salted__')
    assert b'hunter2' not in target.read_bytes()
    assert decrypt_file(target, 'correct horse') == CONFIG_TEXT


@requires_openssl
def test_keep_plaintext(tmp_path):
    path = tmp_path / 'eth-node.env'
    path.write_text(CONFIG_TEXT)
    encrypt_file(path, 'correct horse', keep_plaintext=True)
    assert path.read_text() == CONFIG_TEXT


@requires_openssl
def test_wrong_password(tmp_path):
    path = tmp_path / 'eth-node.env'
    path.write_text(CONFIG_TEXT)
    target = encrypt_file(path, 'correct horse')
    with pytest.raises(ConfigError):
        decrypt_file(target, 'battery staple')


@requires_openssl
def test_decrypt_to_file(tmp_path):
    path = tmp_path / 'eth-node.env'
    path.write_text(CONFIG_TEXT)
    target = encrypt_file(path, 'correct horse')

    output = decrypt_to_file(target, 'correct horse')

    assert output == path
    assert output.read_text() == CONFIG_TEXT
    assert stat.S_IMODE(output.stat().st_mode) == 0o600


@requires_openssl
def test_load_encrypted_config(tmp_path, monkeypatch):
    path = tmp_path / 'eth-node.env'
    path.write_text(CONFIG_TEXT)
    target = encrypt_file(path, 'correct horse')

    config = load_config(target, password_callback=lambda: 'correct horse')
    assert config.network == 'holesky'
    assert config.grafana_admin_password == 'hunter2'

    # The environment wins over the prompt
    monkeypatch.setenv(PASSWORD_ENV, 'correct horse')
    config = load_config(target, password_callback=lambda: pytest.fail('prompted for a password'))
    assert config.network == 'holesky'
