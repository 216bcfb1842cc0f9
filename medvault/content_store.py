"""
Content-addressed storage for record ciphertext.

The store talks to an IPFS HTTP API. Which backend serves this process is
decided once, in a fixed order:

1. ``Live`` - the primary endpoint (``IPFS_API_URL``)
2. ``Fallback`` - the secondary endpoint (``IPFS_FALLBACK_API_URL``), with an
   optional bearer token
3. ``Degraded`` - an in-memory dict that lives as long as the store object.
   Identifiers it hands out are not durable and cannot be read by any other
   process.

The resolution runs lazily on first use. Concurrent first callers all await
the same in-flight task, so probing happens once per store.
"""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from typing import ClassVar, Dict, List, Optional, Union

import requests
from pydantic import BaseModel

from medvault import constants
from medvault.errors import BackendUnavailable, MedvaultError, NotFound
from medvault.ipfs_helper import add_bytes, auth_headers, cat_bytes, check_ipfs_node, pin_to_ipfs

logger = logging.getLogger(__name__)

DEGRADED_PREFIX = "Qm"


class IpfsEndpoint(BaseModel):
    """An IPFS HTTP API endpoint and its optional bearer token"""
    url: str
    token: str = ""

    @property
    def headers(self) -> Dict[str, str]:
        return auth_headers(self.token)


class StoreConfig(BaseModel):
    """Settings for backend resolution, built once at startup and injected"""
    primary: Optional[IpfsEndpoint] = None
    fallback: Optional[IpfsEndpoint] = None
    connect_timeout: float = 5.0
    allow_degraded: bool = True

    @classmethod
    def from_env(cls) -> "StoreConfig":
        primary = None
        if constants.IPFS_API_URL:
            primary = IpfsEndpoint(url=constants.IPFS_API_URL.rstrip("/"), token=constants.IPFS_API_TOKEN)
        fallback = None
        if constants.IPFS_FALLBACK_API_URL:
            fallback = IpfsEndpoint(url=constants.IPFS_FALLBACK_API_URL.rstrip("/"), token=constants.IPFS_FALLBACK_TOKEN)
        return cls(
            primary=primary,
            fallback=fallback,
            connect_timeout=constants.IPFS_CONNECT_TIMEOUT,
            allow_degraded=constants.IPFS_ALLOW_DEGRADED,
        )


@dataclass(frozen=True)
class InitError:
    """Why one endpoint was rejected during resolution"""
    endpoint: str
    reason: str


@dataclass(frozen=True)
class _RemoteMode:
    endpoint: IpfsEndpoint

    def put(self, blob: bytes) -> str:
        return add_bytes(self.endpoint.url, blob, headers=self.endpoint.headers)

    def get(self, content_id: str) -> bytes:
        return cat_bytes(self.endpoint.url, content_id, headers=self.endpoint.headers)

    def pin(self, content_id: str) -> bool:
        return pin_to_ipfs(self.endpoint.url, content_id, headers=self.endpoint.headers)

    def describe(self) -> Dict:
        return {"mode": self.name, "endpoint": self.endpoint.url, "durable": True}


@dataclass(frozen=True)
class Live(_RemoteMode):
    name: ClassVar[str] = "live"


@dataclass(frozen=True)
class Fallback(_RemoteMode):
    name: ClassVar[str] = "fallback"


@dataclass(frozen=True)
class Degraded:
    blobs: Dict[str, bytes] = field(default_factory=dict)
    name: ClassVar[str] = "degraded"

    @staticmethod
    def pseudo_identifier(blob: bytes) -> str:
        return DEGRADED_PREFIX + hashlib.sha256(blob).hexdigest()[:44]

    def put(self, blob: bytes) -> str:
        content_id = self.pseudo_identifier(blob)
        self.blobs[content_id] = blob
        logger.warning("Using in-memory content store - data not uploaded. Identifier: %s", content_id)
        return content_id

    def get(self, content_id: str) -> bytes:
        try:
            return self.blobs[content_id]
        except KeyError:
            raise NotFound(content_id, "not in this session's in-memory store")

    def pin(self, content_id: str) -> bool:
        return content_id in self.blobs

    def describe(self) -> Dict:
        return {"mode": self.name, "endpoint": None, "durable": False, "stored": len(self.blobs)}


BackendMode = Union[Live, Fallback, Degraded]


@dataclass
class BackendResolution:
    mode: BackendMode
    errors: List[InitError] = field(default_factory=list)


def _check_endpoint(endpoint: IpfsEndpoint, timeout: float) -> Optional[InitError]:
    try:
        info = check_ipfs_node(endpoint.url, headers=endpoint.headers, timeout=timeout)
    except (requests.RequestException, MedvaultError) as e:
        logger.warning("Could not connect to IPFS at %s: %s", endpoint.url, e)
        return InitError(endpoint=endpoint.url, reason=str(e))
    logger.info("IPFS initialized at %s (version %s)", endpoint.url, info.get("Version", "unknown"))
    return None


def resolve_backend(config: StoreConfig) -> BackendResolution:
    """
    Pick the backend for this process: primary, then fallback, then degraded.

    Args:
        config: The store configuration

    Returns:
        BackendResolution: The selected mode and the errors from rejected endpoints

    Raises:
        BackendUnavailable: If no endpoint answered and degraded mode is disabled
    """
    errors = []
    for endpoint, mode_cls in ((config.primary, Live), (config.fallback, Fallback)):
        if endpoint is None:
            continue
        error = _check_endpoint(endpoint, config.connect_timeout)
        if error is None:
            return BackendResolution(mode=mode_cls(endpoint), errors=errors)
        errors.append(error)

    if not config.allow_degraded:
        raise BackendUnavailable("No IPFS endpoint is reachable", errors)

    logger.warning("No IPFS endpoint reachable; using in-memory content store for this process")
    return BackendResolution(mode=Degraded(), errors=errors)


class ContentStore:
    """Adapter that puts and gets ciphertext blobs on the resolved backend"""

    def __init__(self, config: Optional[StoreConfig] = None):
        self.config = config or StoreConfig.from_env()
        self._resolution: Optional[BackendResolution] = None
        self._resolving: Optional[asyncio.Future] = None

    @classmethod
    def with_mode(cls, mode: BackendMode, config: Optional[StoreConfig] = None) -> "ContentStore":
        """Create a store whose backend is already chosen"""
        store = cls(config or StoreConfig())
        store._resolution = BackendResolution(mode=mode)
        return store

    @property
    def mode(self) -> Optional[BackendMode]:
        """The resolved backend, or None before first use"""
        return self._resolution.mode if self._resolution else None

    @property
    def resolution(self) -> Optional[BackendResolution]:
        return self._resolution

    async def backend(self) -> BackendMode:
        """Resolve the backend once; concurrent callers share one in-flight task"""
        if self._resolution is not None:
            return self._resolution.mode
        if self._resolving is None:
            self._resolving = asyncio.ensure_future(asyncio.to_thread(resolve_backend, self.config))
        resolution = await asyncio.shield(self._resolving)
        self._resolution = resolution
        return resolution.mode

    async def put(self, blob: Union[bytes, str]) -> str:
        """Store a blob and return its content identifier"""
        if isinstance(blob, str):
            blob = blob.encode("utf-8")
        if not isinstance(blob, (bytes, bytearray, memoryview)):
            raise TypeError(f"Blob must be bytes or string, got {type(blob)}")
        mode = await self.backend()
        return await asyncio.to_thread(mode.put, bytes(blob))

    async def get(self, content_id: str) -> bytes:
        """Fetch the exact bytes stored under a content identifier"""
        if not content_id:
            raise NotFound(content_id, "empty identifier")
        mode = await self.backend()
        return await asyncio.to_thread(mode.get, content_id)

    async def pin(self, content_id: str) -> bool:
        mode = await self.backend()
        return await asyncio.to_thread(mode.pin, content_id)

    async def describe(self) -> Dict:
        mode = await self.backend()
        status = mode.describe()
        status["errors"] = [{"endpoint": e.endpoint, "reason": e.reason} for e in self._resolution.errors]
        return status
