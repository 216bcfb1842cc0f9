"""
CID Registry module for tracking which backend produced each content identifier.

Identifiers minted by the in-memory store only resolve inside the process that
created them, so callers that hand a CID to the ledger need to know where it
came from.
"""

import json
import logging
import os
import threading
import time
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


def _empty_registry() -> Dict:
    return {"cids": {}, "owner_cids": {}, "metadata": {"last_updated": time.time()}}


class CidRegistry:
    """Registry of produced CIDs, optionally persisted to a JSON file"""

    def __init__(self, path: Optional[str] = None):
        self.path = path or None
        self._lock = threading.Lock()
        self._registry = self._load()

    def _load(self) -> Dict:
        if not self.path or not os.path.exists(self.path):
            return _empty_registry()
        try:
            with open(self.path, "r") as f:
                registry = json.load(f)
        except (OSError, ValueError) as e:
            logger.error("Error loading CID registry from %s: %s", self.path, e)
            return _empty_registry()
        registry.setdefault("cids", {})
        registry.setdefault("owner_cids", {})
        registry.setdefault("metadata", {"last_updated": time.time()})
        return registry

    def _save(self) -> None:
        self._registry["metadata"]["last_updated"] = time.time()
        if not self.path:
            return
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        with open(self.path, "w") as f:
            json.dump(self._registry, f, indent=2)

    def register_cid(self, cid: str, owner_address: Optional[str] = None, backend_mode: str = "live",
                     record_type: str = "record", metadata: Optional[Dict] = None) -> None:
        """
        Register a CID

        Args:
            cid: The content identifier
            owner_address: The wallet address that owns the record
            backend_mode: Name of the backend mode that stored it
            record_type: The type of record (e.g. "record", "file")
            metadata: Additional metadata to store with the CID
        """
        with self._lock:
            if cid not in self._registry["cids"]:
                self._registry["cids"][cid] = {
                    "timestamp": time.time(),
                    "owner": owner_address,
                    "backend_mode": backend_mode,
                    "type": record_type,
                    "metadata": metadata or {},
                }

            if owner_address:
                owned = self._registry["owner_cids"].setdefault(owner_address.lower(), [])
                if cid not in owned:
                    owned.append(cid)

            self._save()

    def get_cid_info(self, cid: str) -> Optional[Dict]:
        return self._registry["cids"].get(cid)

    def get_owner_cids(self, owner_address: str) -> List[str]:
        return list(self._registry["owner_cids"].get(owner_address.lower(), []))

    def all_cids(self) -> List[str]:
        return list(self._registry["cids"].keys())

    def cid_exists(self, cid: str) -> bool:
        return cid in self._registry["cids"]

    def is_durable(self, cid: str) -> Optional[bool]:
        """Whether a registered CID lives on a durable backend; None if unknown"""
        info = self.get_cid_info(cid)
        if info is None:
            return None
        return info["backend_mode"] != "degraded"

    def remove_cid(self, cid: str) -> bool:
        """
        Remove a CID from the registry

        Returns:
            True if the CID was removed, False otherwise
        """
        with self._lock:
            info = self._registry["cids"].pop(cid, None)
            if info is None:
                return False

            owner = info.get("owner")
            if owner:
                owned = self._registry["owner_cids"].get(owner.lower(), [])
                if cid in owned:
                    owned.remove(cid)

            self._save()
        return True
