from medvault.crypto.aes import (
    FORMAT_AUTHENTICATED,
    FORMAT_LEGACY,
    decrypt,
    decrypt_buffer,
    encrypt,
    encrypt_buffer,
)
from medvault.crypto.key_derivation import derive_key

__all__ = [
    "FORMAT_AUTHENTICATED",
    "FORMAT_LEGACY",
    "decrypt",
    "decrypt_buffer",
    "derive_key",
    "encrypt",
    "encrypt_buffer",
]
