"""
Helper functions for IPFS operations over the HTTP API (v0).

Every call is a plain ``requests.post`` against ``<api_url>/<command>``, the
way the IPFS daemon and hosted pinning gateways expect it.
"""

import json
import logging
from typing import Dict, Optional

import requests

from medvault.constants import IPFS_CHUNK_SIZE
from medvault.errors import NotFound, StoreError

logger = logging.getLogger(__name__)

# Fragments of IPFS error messages that mean the CID cannot be resolved
NOT_FOUND_MARKERS = (
    "not found",
    "invalid path",
    "invalid cid",
    "failed to resolve",
    "no link named",
    "selected encoding not supported",
)


def auth_headers(token: Optional[str]) -> Dict[str, str]:
    """Build the Authorization header for an endpoint, empty when no token is set"""
    if not token:
        return {}
    return {"Authorization": f"Bearer {token}"}


def _error_message(response) -> str:
    try:
        body = response.json()
        if isinstance(body, dict) and "Message" in body:
            return str(body["Message"])
    except ValueError:
        pass
    return (response.text or "").strip() or f"HTTP {response.status_code}"


def check_ipfs_node(ipfs_api_url: str, headers: Optional[Dict] = None, timeout: Optional[float] = None) -> Dict:
    """
    Ask an IPFS API endpoint for its version to check that it is usable.

    Args:
        ipfs_api_url: The URL of the IPFS API
        headers: Extra request headers (authentication)
        timeout: Seconds to wait for the endpoint

    Returns:
        dict: The version information reported by the node

    Raises:
        requests.RequestException: If the endpoint cannot be reached
        StoreError: If the endpoint answers with an error
    """
    response = requests.post(f"{ipfs_api_url}/version", headers=headers or {}, timeout=timeout)
    if response.status_code != 200:
        raise StoreError(f"IPFS endpoint {ipfs_api_url} refused version check: {_error_message(response)}")
    try:
        return response.json()
    except ValueError:
        raise StoreError(f"IPFS endpoint {ipfs_api_url} returned a non-JSON version response")


def add_bytes(ipfs_api_url: str, data: bytes, headers: Optional[Dict] = None, pin: bool = True) -> str:
    """
    Add a blob to IPFS.

    Args:
        ipfs_api_url: The URL of the IPFS API
        data: The bytes to store
        headers: Extra request headers (authentication)
        pin: Whether the node should pin the content

    Returns:
        str: The CID of the stored content
    """
    response = requests.post(
        f"{ipfs_api_url}/add",
        params={"pin": "true" if pin else "false", "cid-version": "0"},
        files={"file": ("record", data)},
        headers=headers or {},
    )
    if response.status_code != 200:
        message = _error_message(response)
        logger.error("Error adding to IPFS at %s: %s - %s", ipfs_api_url, response.status_code, message)
        raise StoreError(f"IPFS add failed: {message}")

    # The add endpoint streams one JSON object per line; the last one is the root
    lines = [line for line in response.text.splitlines() if line.strip()]
    if not lines:
        raise StoreError("IPFS add returned an empty response")
    try:
        result = json.loads(lines[-1])
    except ValueError:
        raise StoreError("IPFS add returned a malformed response")
    if "Hash" not in result:
        raise StoreError("IPFS add response has no Hash")
    return result["Hash"]


def cat_bytes(ipfs_api_url: str, cid: str, headers: Optional[Dict] = None, chunk_size: int = IPFS_CHUNK_SIZE) -> bytes:
    """
    Read a CID from IPFS, joining the streamed chunks into one buffer.

    Raises:
        NotFound: If the node cannot resolve the CID
        StoreError: For any other error response
    """
    response = requests.post(
        f"{ipfs_api_url}/cat",
        params={"arg": cid},
        headers=headers or {},
        stream=True,
    )
    try:
        if response.status_code != 200:
            message = _error_message(response)
            if response.status_code == 404 or any(m in message.lower() for m in NOT_FOUND_MARKERS):
                raise NotFound(cid, message)
            logger.error("Error retrieving %s from IPFS at %s: %s", cid, ipfs_api_url, message)
            raise StoreError(f"IPFS cat failed: {message}")

        chunks = []
        for chunk in response.iter_content(chunk_size=chunk_size):
            if chunk:
                chunks.append(chunk)
        return b"".join(chunks)
    finally:
        response.close()


def pin_to_ipfs(ipfs_api_url: str, cid: str, headers: Optional[Dict] = None) -> bool:
    """
    Pin a CID on an IPFS node.

    Returns:
        bool: True if successful, False otherwise
    """
    try:
        response = requests.post(f"{ipfs_api_url}/pin/add", params={"arg": cid}, headers=headers or {})
    except requests.RequestException as e:
        logger.warning("Exception pinning %s to IPFS: %s", cid, e)
        return False

    if response.status_code == 200:
        logger.info("Pinned %s on %s", cid, ipfs_api_url)
        return True
    logger.warning("Error pinning %s to IPFS: %s - %s", cid, response.status_code, _error_message(response))
    return False
