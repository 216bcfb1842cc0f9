"""
AES encryption of record payloads.

Two token formats are understood, both base64 strings that carry their own
salt and IV:

* v1 (default): the OpenSSL ``Salted__`` passphrase format. An 8-byte salt
  and the passphrase go through EVP_BytesToKey (MD5) to give an AES-256 key
  and CBC IV; the body is PKCS#7 padded. This is what browser clients using
  a passphrase-mode AES library produce, so existing records stay readable.
  It has no integrity check.
* v2: a version byte, a 16-byte salt and a 12-byte nonce followed by
  AES-256-GCM ciphertext and tag. The AES key comes from HKDF-SHA256 over
  the passphrase with the per-record salt.

Decryption detects the format from the decoded leading bytes.
"""

import base64
import binascii
import hashlib
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from medvault.errors import DecryptionFailure, EmptyInput

logger = logging.getLogger(__name__)

FORMAT_LEGACY = 1
FORMAT_AUTHENTICATED = 2
SUPPORTED_FORMATS = (FORMAT_LEGACY, FORMAT_AUTHENTICATED)

SALTED_MAGIC = b"Salted__"
LEGACY_SALT_SIZE = 8
V2_SALT_SIZE = 16
V2_NONCE_SIZE = 12
V2_TAG_SIZE = 16
V2_INFO = b"medvault-record-v2"
BLOCK_SIZE = 16


def _passphrase_bytes(key):
    if isinstance(key, str):
        key = key.encode("utf-8")
    if not key:
        raise EmptyInput("Encryption key must not be empty")
    return key


def evp_bytes_to_key(passphrase: bytes, salt: bytes, key_len: int = 32, iv_len: int = 16):
    """OpenSSL EVP_BytesToKey with MD5 and one iteration

    Returns:
        tuple: (key, iv)
    """
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def _hkdf_key(passphrase: bytes, salt: bytes) -> bytes:
    return HKDF(
        algorithm=hashes.SHA256(),
        length=32,
        salt=salt,
        info=V2_INFO,
        backend=default_backend()
    ).derive(passphrase)


def _encrypt_legacy(data: bytes, passphrase: bytes) -> bytes:
    salt = os.urandom(LEGACY_SALT_SIZE)
    key, iv = evp_bytes_to_key(passphrase, salt)

    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(data) + padder.finalize()

    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()
    return SALTED_MAGIC + salt + ciphertext


def _decrypt_legacy(raw: bytes, passphrase: bytes) -> bytes:
    salt = raw[len(SALTED_MAGIC):len(SALTED_MAGIC) + LEGACY_SALT_SIZE]
    ciphertext = raw[len(SALTED_MAGIC) + LEGACY_SALT_SIZE:]
    if len(salt) != LEGACY_SALT_SIZE or not ciphertext or len(ciphertext) % BLOCK_SIZE:
        raise DecryptionFailure("Ciphertext is truncated")

    key, iv = evp_bytes_to_key(passphrase, salt)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv), backend=default_backend()).decryptor()
    padded = decryptor.update(ciphertext) + decryptor.finalize()

    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    try:
        return unpadder.update(padded) + unpadder.finalize()
    except ValueError:
        raise DecryptionFailure("Wrong key or corrupted ciphertext")


def _encrypt_authenticated(data: bytes, passphrase: bytes) -> bytes:
    header = bytes([FORMAT_AUTHENTICATED])
    salt = os.urandom(V2_SALT_SIZE)
    nonce = os.urandom(V2_NONCE_SIZE)

    encryptor = Cipher(
        algorithms.AES(_hkdf_key(passphrase, salt)),
        modes.GCM(nonce),
        backend=default_backend()
    ).encryptor()
    encryptor.authenticate_additional_data(header)
    ciphertext = encryptor.update(data) + encryptor.finalize()
    return header + salt + nonce + ciphertext + encryptor.tag


def _decrypt_authenticated(raw: bytes, passphrase: bytes) -> bytes:
    header = raw[:1]
    salt = raw[1:1 + V2_SALT_SIZE]
    nonce = raw[1 + V2_SALT_SIZE:1 + V2_SALT_SIZE + V2_NONCE_SIZE]
    body = raw[1 + V2_SALT_SIZE + V2_NONCE_SIZE:]
    if len(nonce) != V2_NONCE_SIZE or len(body) <= V2_TAG_SIZE:
        raise DecryptionFailure("Ciphertext is truncated")
    ciphertext, tag = body[:-V2_TAG_SIZE], body[-V2_TAG_SIZE:]

    decryptor = Cipher(
        algorithms.AES(_hkdf_key(passphrase, salt)),
        modes.GCM(nonce, tag),
        backend=default_backend()
    ).decryptor()
    decryptor.authenticate_additional_data(header)
    try:
        return decryptor.update(ciphertext) + decryptor.finalize()
    except InvalidTag:
        raise DecryptionFailure("Authentication tag mismatch: wrong key or tampered ciphertext")


def token_format(ciphertext) -> int:
    """Return the format version of a ciphertext token

    Raises:
        DecryptionFailure: If the token is not base64 or has no known header
    """
    return _detect(_decode_token(ciphertext))[0]


def _decode_token(ciphertext) -> bytes:
    if isinstance(ciphertext, bytes):
        try:
            ciphertext = ciphertext.decode("ascii")
        except UnicodeDecodeError:
            raise DecryptionFailure("Ciphertext is not a base64 token")
    if not isinstance(ciphertext, str) or not ciphertext.strip():
        raise DecryptionFailure("Ciphertext is empty")
    try:
        return base64.b64decode(ciphertext.strip(), validate=True)
    except (binascii.Error, ValueError):
        raise DecryptionFailure("Ciphertext is not a base64 token")


def _detect(raw: bytes):
    if raw.startswith(SALTED_MAGIC):
        return FORMAT_LEGACY, _decrypt_legacy
    if raw[:1] == bytes([FORMAT_AUTHENTICATED]):
        return FORMAT_AUTHENTICATED, _decrypt_authenticated
    raise DecryptionFailure("Unknown ciphertext format")


def encrypt_buffer(buffer, key, version: int = FORMAT_LEGACY) -> str:
    """Encrypt a binary buffer

    Args:
        buffer: The bytes to encrypt (bytes, bytearray or memoryview)
        key: The derived record key
        version: Token format to write

    Returns:
        str: Base64 ciphertext token
    """
    data = bytes(buffer)
    if not data:
        raise EmptyInput("Cannot encrypt an empty payload")
    passphrase = _passphrase_bytes(key)

    if version == FORMAT_LEGACY:
        raw = _encrypt_legacy(data, passphrase)
    elif version == FORMAT_AUTHENTICATED:
        raw = _encrypt_authenticated(data, passphrase)
    else:
        raise ValueError(f"Unsupported cipher format version: {version}")

    return base64.b64encode(raw).decode("ascii")


def decrypt_buffer(ciphertext, key) -> bytes:
    """Decrypt a ciphertext token back to bytes

    Raises:
        DecryptionFailure: Wrong key, unknown format or corrupted token
    """
    passphrase = _passphrase_bytes(key)
    raw = _decode_token(ciphertext)
    _, decrypt_fn = _detect(raw)
    data = decrypt_fn(raw, passphrase)
    if not data:
        raise DecryptionFailure("Decryption produced no data")
    return data


def encrypt(plaintext, key, version: int = FORMAT_LEGACY) -> str:
    """Encrypt record text with the derived key"""
    if isinstance(plaintext, str):
        plaintext = plaintext.encode("utf-8")
    if not plaintext:
        raise EmptyInput("Cannot encrypt empty plaintext")
    return encrypt_buffer(plaintext, key, version)


def decrypt(ciphertext, key) -> str:
    """Decrypt record text; raises DecryptionFailure on a wrong key"""
    data = decrypt_buffer(ciphertext, key)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("Decrypted bytes are not UTF-8, treating as a key mismatch")
        raise DecryptionFailure("Wrong key or corrupted ciphertext")
