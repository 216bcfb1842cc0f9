"""
Record confidentiality pipeline.

Creating a record runs derive -> encrypt -> put; viewing runs get -> decrypt
with the key derived again from the same identifier. Keys are never stored.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from medvault import constants
from medvault.cid_registry import CidRegistry
from medvault.content_store import ContentStore, StoreConfig
from medvault.crypto import aes
from medvault.crypto.key_derivation import derive_key
from medvault.errors import DecryptionFailure, EmptyInput, NotFound
from medvault.models import CiphertextMeta, MedicalRecord, RecordPayload

logger = logging.getLogger(__name__)


class RecordPipeline:
    """Encrypts record bodies and moves their ciphertext through the content store"""

    def __init__(self, store: ContentStore, cipher_version: int = aes.FORMAT_LEGACY,
                 registry: Optional[CidRegistry] = None):
        if cipher_version not in aes.SUPPORTED_FORMATS:
            raise ValueError(f"Unsupported cipher format version: {cipher_version}")
        self.store = store
        self.cipher_version = cipher_version
        self.registry = registry if registry is not None else CidRegistry()

    @staticmethod
    def _key(identifier: str, secret: str) -> str:
        if not identifier:
            raise EmptyInput("Identifier must not be empty")
        return derive_key(identifier, secret)

    async def _store(self, ciphertext: str, identifier: str, record_type: str) -> RecordPayload:
        content_id = await self.store.put(ciphertext)
        mode = self.store.mode
        endpoint = mode.endpoint.url if hasattr(mode, "endpoint") else None
        try:
            await asyncio.to_thread(self.registry.register_cid, content_id, owner_address=identifier,
                                    backend_mode=mode.name, record_type=record_type)
        except OSError as e:
            # The blob is already stored; the registry entry is only bookkeeping
            logger.error("Could not record %s in the CID registry: %s", content_id, e)
        logger.info("Stored %s ciphertext (%d chars) as %s via %s backend",
                    record_type, len(ciphertext), content_id, mode.name)
        return RecordPayload(
            content_id=content_id,
            ciphertext_meta=CiphertextMeta(
                format_version=aes.token_format(ciphertext),
                length=len(ciphertext),
                backend_mode=mode.name,
                endpoint=endpoint,
            ),
        )

    async def _fetch(self, content_id: str) -> str:
        mode = await self.store.backend()
        if self.registry.is_durable(content_id) is False and mode.name != "degraded":
            raise NotFound(content_id, "it was stored in memory by an earlier process and is gone")
        blob = await self.store.get(content_id)
        try:
            return blob.decode("ascii")
        except UnicodeDecodeError:
            raise DecryptionFailure(f"Content {content_id} is not a ciphertext token")

    def owner_records(self, owner: str) -> List[Dict]:
        """
        List the content identifiers registered for an owner.

        Each entry says which backend produced the identifier and whether it
        outlives the process.
        """
        records = []
        for content_id in self.registry.get_owner_cids(owner):
            info = self.registry.get_cid_info(content_id) or {}
            records.append({
                "content_id": content_id,
                "type": info.get("type"),
                "backend_mode": info.get("backend_mode"),
                "durable": bool(self.registry.is_durable(content_id)),
                "timestamp": info.get("timestamp"),
            })
        return records

    async def create_record_payload(self, plaintext: str, identifier: str, secret: str = "") -> RecordPayload:
        """
        Encrypt record text for an identifier and store the ciphertext.

        Args:
            plaintext: The record body
            identifier: The owner's public identifier (wallet address)
            secret: Optional secret mixed into the key

        Returns:
            RecordPayload: The content identifier and ciphertext metadata
        """
        if not plaintext:
            raise EmptyInput("Plaintext must not be empty")
        key = self._key(identifier, secret)
        ciphertext = aes.encrypt(plaintext, key, self.cipher_version)
        return await self._store(ciphertext, identifier, "record")

    async def view_record_payload(self, content_id: str, identifier: str, secret: str = "") -> str:
        """Fetch a stored ciphertext and decrypt it with the identifier's key"""
        key = self._key(identifier, secret)
        ciphertext = await self._fetch(content_id)
        return aes.decrypt(ciphertext, key)

    async def create_file_payload(self, data: bytes, identifier: str, secret: str = "") -> RecordPayload:
        """Encrypt a file buffer and store it"""
        if not data:
            raise EmptyInput("File must not be empty")
        key = self._key(identifier, secret)
        ciphertext = aes.encrypt_buffer(data, key, self.cipher_version)
        return await self._store(ciphertext, identifier, "file")

    async def view_file_payload(self, content_id: str, identifier: str, secret: str = "") -> bytes:
        key = self._key(identifier, secret)
        ciphertext = await self._fetch(content_id)
        return aes.decrypt_buffer(ciphertext, key)

    async def view_record(self, content_id: str, identifier: str, secret: str = "") -> MedicalRecord:
        """Fetch and decrypt a structured record"""
        plaintext = await self.view_record_payload(content_id, identifier, secret)
        try:
            return MedicalRecord.from_plaintext(plaintext)
        except ValueError as e:
            raise DecryptionFailure(f"Decrypted content is not a medical record: {e}")

    async def create_and_register(self, record: MedicalRecord, identifier: str, ledger,
                                  patient: Optional[str] = None, secret: str = "") -> Tuple[int, RecordPayload]:
        """
        Encrypt and store a record, then register its CID on the ledger.

        Args:
            record: The structured record
            identifier: Identifier the key is derived from (the patient's address)
            ledger: Object with create_record(ipfs_hash, patient, record_type)
            patient: Patient address for the ledger, defaults to identifier

        Returns:
            tuple: (record_id, payload)
        """
        payload = await self.create_record_payload(record.to_plaintext(), identifier, secret)
        owner = patient or record.patient_address or identifier
        record_id = await asyncio.to_thread(ledger.create_record, payload.content_id, owner, record.record_type)
        logger.info("Registered %s as record %s for %s", payload.content_id, record_id, owner)
        return record_id, payload

    async def update_and_register(self, record_id: int, record: MedicalRecord, identifier: str, ledger,
                                  secret: str = "") -> RecordPayload:
        """Store a new ciphertext for an existing record and point the ledger at it"""
        payload = await self.create_record_payload(record.to_plaintext(), identifier, secret)
        await asyncio.to_thread(ledger.update_record, record_id, payload.content_id)
        return payload


def build_pipeline(config: Optional[StoreConfig] = None) -> RecordPipeline:
    """Build the pipeline from environment settings; called once at startup"""
    store = ContentStore(config or StoreConfig.from_env())
    registry = CidRegistry(constants.CID_REGISTRY_PATH or None)
    return RecordPipeline(store, cipher_version=constants.RECORD_CIPHER_VERSION, registry=registry)
