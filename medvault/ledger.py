"""
Binding for the patient records contract.

Only the contract's declared methods are used; record ownership and access
rules are enforced on chain. Writes are signed locally when a private key is
configured, otherwise they are sent from the node's default account.
"""

import datetime
import json
import logging
import os
from typing import List, Optional

from web3 import Web3
from web3.logs import DISCARD

from medvault import constants
from medvault.errors import LedgerError
from medvault.models import AccessEntry, StoredRecordReference

logger = logging.getLogger(__name__)

DEFAULT_GAS = 500000


def _fn(name, inputs, outputs=(), mutability="nonpayable"):
    return {
        "type": "function",
        "name": name,
        "stateMutability": mutability,
        "inputs": [{"name": n, "type": t} for n, t in inputs],
        "outputs": list(outputs),
    }


_RECORD_TUPLE = {
    "name": "",
    "type": "tuple",
    "components": [
        {"name": "ipfsHash", "type": "string"},
        {"name": "patient", "type": "address"},
        {"name": "provider", "type": "address"},
        {"name": "timestamp", "type": "uint256"},
        {"name": "recordType", "type": "string"},
        {"name": "isActive", "type": "bool"},
    ],
}

_ACCESS_TUPLE_ARRAY = {
    "name": "",
    "type": "tuple[]",
    "components": [
        {"name": "provider", "type": "address"},
        {"name": "hasReadAccess", "type": "bool"},
        {"name": "hasWriteAccess", "type": "bool"},
        {"name": "grantedAt", "type": "uint256"},
    ],
}

RECORDS_ABI = [
    _fn("createRecord", [("_ipfsHash", "string"), ("_patient", "address"), ("_recordType", "string")],
        [{"name": "", "type": "uint256"}]),
    _fn("updateRecord", [("_recordId", "uint256"), ("_newIpfsHash", "string")]),
    _fn("grantAccess", [("_provider", "address"), ("_readAccess", "bool"), ("_writeAccess", "bool")]),
    _fn("revokeAccess", [("_provider", "address")]),
    _fn("getPatientRecords", [("_patient", "address")], [{"name": "", "type": "uint256[]"}], "view"),
    _fn("getRecord", [("_recordId", "uint256")], [_RECORD_TUPLE], "view"),
    _fn("getAccessList", [("_patient", "address")], [_ACCESS_TUPLE_ARRAY], "view"),
    _fn("hasAccess", [("", "address"), ("", "address")], [{"name": "", "type": "bool"}], "view"),
    {
        "type": "event",
        "name": "RecordCreated",
        "anonymous": False,
        "inputs": [
            {"name": "recordId", "type": "uint256", "indexed": True},
            {"name": "patient", "type": "address", "indexed": True},
            {"name": "provider", "type": "address", "indexed": True},
            {"name": "ipfsHash", "type": "string", "indexed": False},
            {"name": "recordType", "type": "string", "indexed": False},
        ],
    },
]


def load_deployment_address(path: str = constants.DEPLOYMENT_FILE) -> str:
    """Read the contract address written by the deploy script, empty if absent"""
    if not os.path.exists(path):
        return ""
    try:
        with open(path, "r") as f:
            return json.load(f).get("address", "")
    except (OSError, ValueError) as e:
        logger.warning("Could not read deployment file %s: %s", path, e)
        return ""


def _timestamp(value) -> datetime.datetime:
    return datetime.datetime.fromtimestamp(int(value), tz=datetime.timezone.utc)


class PatientRecordsLedger:
    """Calls the record contract's read and write methods"""

    def __init__(self, w3, contract_address: str, private_key: Optional[str] = None,
                 abi=None, gas: int = DEFAULT_GAS):
        if not contract_address:
            raise LedgerError("Contract address is not set. Deploy the contract or set CONTRACT_ADDRESS.")
        self.w3 = w3
        self.address = Web3.to_checksum_address(contract_address)
        self.contract = w3.eth.contract(address=self.address, abi=abi or RECORDS_ABI)
        self.gas = gas
        self._private_key = private_key or None
        self.account = w3.eth.account.from_key(private_key) if private_key else None

    @classmethod
    def from_env(cls) -> "PatientRecordsLedger":
        w3 = Web3(Web3.HTTPProvider(constants.RPC_URL))
        address = constants.CONTRACT_ADDRESS or load_deployment_address()
        return cls(w3, address, private_key=constants.PRIVATE_KEY or None)

    @property
    def sender(self) -> str:
        if self.account is not None:
            return self.account.address
        sender = self.w3.eth.default_account
        if not sender:
            accounts = self.w3.eth.accounts
            if not accounts:
                raise LedgerError("No private key configured and the node exposes no accounts")
            sender = accounts[0]
        return sender

    def _send(self, fn):
        """Sign (or transact) a contract call and wait for its receipt"""
        if self.account is not None:
            tx = fn.build_transaction({
                "from": self.account.address,
                "gas": self.gas,
                "gasPrice": self.w3.eth.gas_price,
                "nonce": self.w3.eth.get_transaction_count(self.account.address),
            })
            signed_tx = self.w3.eth.account.sign_transaction(tx, self._private_key)
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        else:
            tx_hash = fn.transact({"from": self.sender})

        receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash)
        if receipt["status"] != 1:
            raise LedgerError(f"Transaction {Web3.to_hex(tx_hash)} reverted")
        logger.info("Transaction mined: %s", Web3.to_hex(tx_hash))
        return receipt

    def create_record(self, ipfs_hash: str, patient: str, record_type: str) -> int:
        """
        Register a stored ciphertext on the ledger.

        Args:
            ipfs_hash: Content identifier of the encrypted record
            patient: Patient wallet address that owns the record
            record_type: Kind of record (diagnosis, prescription, ...)

        Returns:
            int: The record id assigned by the contract
        """
        if not ipfs_hash:
            raise LedgerError("IPFS hash cannot be empty")
        fn = self.contract.functions.createRecord(ipfs_hash, Web3.to_checksum_address(patient), record_type)
        receipt = self._send(fn)

        events = self.contract.events.RecordCreated().process_receipt(receipt, errors=DISCARD)
        if not events:
            raise LedgerError("createRecord receipt carries no RecordCreated event")
        return int(events[0]["args"]["recordId"])

    def update_record(self, record_id: int, new_ipfs_hash: str) -> None:
        if not new_ipfs_hash:
            raise LedgerError("IPFS hash cannot be empty")
        self._send(self.contract.functions.updateRecord(int(record_id), new_ipfs_hash))

    def grant_access(self, provider: str, read_access: bool = True, write_access: bool = False) -> None:
        fn = self.contract.functions.grantAccess(Web3.to_checksum_address(provider), read_access, write_access)
        self._send(fn)

    def revoke_access(self, provider: str) -> None:
        self._send(self.contract.functions.revokeAccess(Web3.to_checksum_address(provider)))

    def get_patient_records(self, patient: str) -> List[int]:
        ids = self.contract.functions.getPatientRecords(Web3.to_checksum_address(patient)).call()
        return [int(i) for i in ids]

    def get_record(self, record_id: int) -> StoredRecordReference:
        ipfs_hash, patient, provider, timestamp, record_type, is_active = \
            self.contract.functions.getRecord(int(record_id)).call()
        return StoredRecordReference(
            record_id=int(record_id),
            ipfs_hash=ipfs_hash,
            patient=patient,
            provider=provider,
            timestamp=_timestamp(timestamp),
            record_type=record_type,
            is_active=is_active,
        )

    def get_access_list(self, patient: str) -> List[AccessEntry]:
        entries = self.contract.functions.getAccessList(Web3.to_checksum_address(patient)).call()
        return [
            AccessEntry(provider=p, has_read_access=r, has_write_access=w, granted_at=_timestamp(t))
            for p, r, w, t in entries
        ]

    def has_access(self, patient: str, provider: str) -> bool:
        return bool(self.contract.functions.hasAccess(
            Web3.to_checksum_address(patient), Web3.to_checksum_address(provider)
        ).call())
