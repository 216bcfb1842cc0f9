"""
Key derivation for record encryption.

The record key is SHA-256 over ``identifier + secret``. The identifier is a
public wallet address and the secret is normally empty, so anyone who knows
the address can recompute the key. Records already stored depend on this
exact derivation, so it is kept as is; the authenticated v2 cipher format in
``medvault.crypto.aes`` adds a per-record salt on top of it.
"""

import hashlib
import logging

logger = logging.getLogger(__name__)


def derive_key(identifier: str, secret: str = "") -> str:
    """Derive the symmetric record key for an identifier

    Args:
        identifier: Public identifier, usually the patient's wallet address
        secret: Optional extra secret mixed into the key

    Returns:
        str: 64-character lowercase hex SHA-256 digest
    """
    if not identifier:
        logger.warning("Deriving a record key from an empty identifier; the key is predictable")
    base_key = (identifier or "") + (secret or "")
    return hashlib.sha256(base_key.encode("utf-8")).hexdigest()
