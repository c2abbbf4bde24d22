"""
Credential encryption at rest.

Tokens have the form ``<iv hex>:<ciphertext hex>`` (AES-256-CBC, PKCS7
padding, random 16-byte IV per value). The key is the SHA-256 digest of the
configured session secret and is derived once per process.
"""

from __future__ import annotations

import hashlib
import os

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from classbooker.exceptions import DataError

IV_LENGTH = 16
TOKEN_DELIMITER = ":"


def derive_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


def encrypt(text: str, key: bytes) -> str:
    iv = os.urandom(IV_LENGTH)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(text.encode("utf-8")) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return iv.hex() + TOKEN_DELIMITER + ciphertext.hex()


def decrypt(token: str, key: bytes) -> str:
    """
    Decrypt a token produced by :func:`encrypt`.

    Raises:
        DataError: If the token is malformed or was encrypted with another key
    """
    iv_hex, sep, ciphertext_hex = token.partition(TOKEN_DELIMITER)
    if not sep:
        raise DataError("encrypted value has no IV delimiter")

    try:
        iv = bytes.fromhex(iv_hex)
        ciphertext = bytes.fromhex(ciphertext_hex)
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
        return plaintext.decode("utf-8")
    except ValueError as e:
        raise DataError(f"could not decrypt value: {e}") from e
