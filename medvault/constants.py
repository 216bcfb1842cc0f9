"""
Constants for the medical records confidentiality pipeline.

This module defines the environment-driven settings used throughout the
package: content store endpoints, cipher format selection and the ledger
connection details.
"""

import os
from dotenv import load_dotenv

# Load environment variables
load_dotenv()

# Content store endpoints (IPFS HTTP API v0)
IPFS_API_URL = os.getenv("IPFS_API_URL", "http://127.0.0.1:5001/api/v0")
IPFS_API_TOKEN = os.getenv("IPFS_API_TOKEN", "")
IPFS_FALLBACK_API_URL = os.getenv("IPFS_FALLBACK_API_URL", "https://ipfs.io/api/v0")
IPFS_FALLBACK_TOKEN = os.getenv("IPFS_FALLBACK_TOKEN", "")

# Seconds allowed for the one-time endpoint check
IPFS_CONNECT_TIMEOUT = float(os.getenv("IPFS_CONNECT_TIMEOUT", "5"))

# Whether to fall back to the in-memory store when no endpoint answers
IPFS_ALLOW_DEGRADED = os.getenv("IPFS_ALLOW_DEGRADED", "true").lower() in ("1", "true", "yes")

# Streamed read size for /cat
IPFS_CHUNK_SIZE = 64 * 1024

# Cipher token format written by encrypt (1 = legacy passphrase format, 2 = authenticated)
RECORD_CIPHER_VERSION = int(os.getenv("RECORD_CIPHER_VERSION", "1"))

# Optional JSON file for the CID registry; in-memory when empty
CID_REGISTRY_PATH = os.getenv("CID_REGISTRY_PATH", "")

# Ledger connection
RPC_URL = os.getenv("RPC_URL", "http://127.0.0.1:8545")
CONTRACT_ADDRESS = os.getenv("CONTRACT_ADDRESS", "")
DEPLOYMENT_FILE = os.getenv("DEPLOYMENT_FILE", "deployment.json")
PRIVATE_KEY = os.getenv("PRIVATE_KEY", "")

# Record types accepted by the ledger
RECORD_TYPES = {
    "DIAGNOSIS": "diagnosis",
    "PRESCRIPTION": "prescription",
    "LAB_RESULT": "lab_result",
    "IMAGING": "imaging",
    "VISIT": "visit",
    "CLAIM": "claim",
}
