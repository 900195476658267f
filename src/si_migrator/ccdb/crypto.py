"""Encryption of Cloud Controller database payloads.

The Cloud Controller stores credentials as base64 encoded AES-128-CBC
ciphertext. The key is derived from the operator's database encryption key
and a per-row salt. Rows written by old Cloud Controllers carry an 8 byte
salt and use an iterated MD5 derivation instead of PBKDF2.
"""

import base64
import hashlib
import secrets

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

ITERATIONS = 2048
KEY_LENGTH = 16
BLOCK_SIZE_BITS = 128
LEGACY_SALT_LENGTH = 8


class EncryptionError(Exception):
    """Payload could not be encrypted or decrypted."""

    pass


def _legacy_key_and_iv(password: bytes, salt: bytes):
    def iterate(data: bytes) -> bytes:
        digest = hashlib.md5(data).digest()
        for _ in range(ITERATIONS - 1):
            digest = hashlib.md5(digest).digest()
        return digest

    key = iterate(password + salt)
    iv = iterate(key + password + salt)
    return key, iv


def _key_and_iv(password: bytes, salt: bytes):
    if len(salt) == LEGACY_SALT_LENGTH:
        return _legacy_key_and_iv(password, salt)

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(password), salt


def _cipher(salt: str, key: str) -> Cipher:
    derived, iv = _key_and_iv(key.encode('utf-8'), salt.encode('utf-8'))
    try:
        return Cipher(algorithms.AES(derived), modes.CBC(iv))
    except ValueError as e:
        raise EncryptionError(f'invalid salt of length {len(salt)}: {e}') from e


def encrypt(data: str, salt: str, key: str) -> str:
    """Encrypt a payload the way the Cloud Controller does.

    Args:
        data: Plaintext payload
        salt: Hex salt stored next to the ciphertext
        key: Database encryption key

    Returns:
        Base64 encoded ciphertext
    """
    padder = padding.PKCS7(BLOCK_SIZE_BITS).padder()
    padded = padder.update(data.encode('utf-8')) + padder.finalize()

    encryptor = _cipher(salt, key).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(ciphertext).decode('ascii')


def decrypt(data: str, salt: str, key: str) -> str:
    """Decrypt a payload written by :func:`encrypt` or the Cloud Controller.

    Args:
        data: Base64 encoded ciphertext
        salt: Hex salt stored next to the ciphertext
        key: Database encryption key

    Returns:
        Plaintext payload

    Raises:
        EncryptionError: If the payload is malformed or the key is wrong
    """
    try:
        ciphertext = base64.b64decode(data)
        decryptor = _cipher(salt, key).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()

        unpadder = padding.PKCS7(BLOCK_SIZE_BITS).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode('utf-8')
    except (ValueError, UnicodeDecodeError) as e:
        raise EncryptionError(f'failed to decrypt payload: {e}') from e


def generate_salt(length: int) -> str:
    """Generate a random hex salt of ``length`` characters."""
    if length <= 0:
        raise EncryptionError(f'invalid salt length {length}')
    return secrets.token_hex(length // 2)
