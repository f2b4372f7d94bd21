"""
Encryption at rest for the configuration file.

Uses the openssl CLI (AES-256-CBC, salted, PBKDF2 key derivation) so files
stay readable with plain `openssl enc -d` on any host. The password is handed
to openssl through the child environment, never on the command line.
"""
import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Optional

from .config import ConfigError, ENCRYPTED_SUFFIX

logger = logging.getLogger(__name__)

PASSWORD_ENV = 'ETH_NODE_SETUP_PASSWORD'
_CHILD_PASSWORD_VAR = 'ETH_NODE_SETUP_OPENSSL_PASS'
OPENSSL_CIPHER_ARGS = ['enc', '-aes-256-cbc', '-salt', '-pbkdf2', '-md', 'sha256']


def password_from_env() -> Optional[str]:
    """Password for non-interactive runs (cron, CI)"""
    return os.environ.get(PASSWORD_ENV) or None


def _openssl(args, password: str, data: bytes) -> bytes:
    if not password:
        raise ConfigError("An empty password is not allowed")
    openssl = shutil.which('openssl')
    if openssl is None:
        raise ConfigError("openssl is required to encrypt or decrypt the configuration")

    env = os.environ.copy()
    env[_CHILD_PASSWORD_VAR] = password
    command = [openssl] + OPENSSL_CIPHER_ARGS + args + ['-pass', f"env:{_CHILD_PASSWORD_VAR}"]
    result = subprocess.run(command, input=data, capture_output=True, env=env, timeout=30)
    if result.returncode != 0:
        stderr = result.stderr.decode(errors='replace').strip()
        raise ConfigError(f"openssl failed (wrong password or corrupt file?): {stderr}")
    return result.stdout


def encrypt_bytes(data: bytes, password: str) -> bytes:
    return _openssl([], password, data)


def decrypt_bytes(data: bytes, password: str) -> bytes:
    return _openssl(['-d'], password, data)


def decrypt_file(path, password: str) -> str:
    """Decrypt an encrypted config into memory and return its text"""
    data = Path(path).read_bytes()
    plaintext = decrypt_bytes(data, password)
    try:
        return plaintext.decode('utf-8')
    except UnicodeDecodeError:
        raise ConfigError(f"Decrypted {path} is not valid text (wrong password?)")


def encrypt_file(path, password: str, keep_plaintext: bool = False) -> Path:
    """
    Encrypt a plaintext config to `<path>.enc` with mode 0600.

    Args:
        path: Plaintext configuration file
        password: Encryption password
        keep_plaintext: Leave the plaintext file in place

    Returns:
        Path of the encrypted file
    """
    path = Path(path)
    target = path.with_name(path.name + ENCRYPTED_SUFFIX)
    ciphertext = encrypt_bytes(path.read_bytes(), password)

    # Round-trip before the plaintext goes away
    if decrypt_bytes(ciphertext, password) != path.read_bytes():
        raise ConfigError("Encryption verification failed; plaintext left untouched")

    fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'wb') as f:
        f.write(ciphertext)
    os.chmod(target, 0o600)
    logger.info(f"Encrypted configuration written to {target}")

    if not keep_plaintext:
        path.unlink()
        logger.info(f"Removed plaintext configuration {path}")
    return target


def decrypt_to_file(path, password: str, output=None) -> Path:
    """Decrypt `<name>.enc` back to a plaintext file (mode 0600) for editing"""
    path = Path(path)
    if output is None:
        if not path.name.endswith(ENCRYPTED_SUFFIX):
            raise ConfigError(f"{path} does not end with {ENCRYPTED_SUFFIX}; pass an output path")
        output = path.with_name(path.name[:-len(ENCRYPTED_SUFFIX)])
    output = Path(output)

    text = decrypt_file(path, password)
    fd = os.open(output, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, 'w') as f:
        f.write(text)
    logger.info(f"Decrypted configuration written to {output}")
    return output
