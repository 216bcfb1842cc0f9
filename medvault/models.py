from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
import datetime
import json


class MedicalRecord(BaseModel):
    """Model for a medical record body before encryption"""
    record_type: str
    patient_address: Optional[str] = None
    diagnosis: Optional[str] = None
    treatment: Optional[str] = None
    medications: List[str] = Field(default_factory=list)
    hospital: Optional[str] = None
    doctor: Optional[str] = None
    notes: Optional[str] = None
    date: Optional[str] = None

    def to_plaintext(self) -> str:
        """Serialize the record to the JSON text that gets encrypted"""
        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_plaintext(cls, plaintext: str) -> "MedicalRecord":
        return cls.model_validate(json.loads(plaintext))


class CiphertextMeta(BaseModel):
    """Model for what the pipeline knows about a stored ciphertext"""
    format_version: int
    length: int
    backend_mode: str
    endpoint: Optional[str] = None


class RecordPayload(BaseModel):
    """Model for the result of encrypting and storing a record"""
    content_id: str
    ciphertext_meta: CiphertextMeta


class StoredRecordReference(BaseModel):
    """Model for a record reference held by the ledger contract"""
    record_id: int
    ipfs_hash: str
    patient: str
    provider: str
    timestamp: datetime.datetime
    record_type: str
    is_active: bool


class AccessEntry(BaseModel):
    """Model for one provider entry in a patient's access list"""
    provider: str
    has_read_access: bool
    has_write_access: bool
    granted_at: datetime.datetime


class CreateRecordRequest(BaseModel):
    """Model for a record creation request"""
    model_config = ConfigDict(populate_by_name=True)

    identifier: str
    plaintext: Optional[str] = None
    record: Optional[MedicalRecord] = None
    secret: str = ""
    register_on_ledger: bool = Field(False, alias="register")


class CreateFileRequest(BaseModel):
    """Model for a file upload request (base64 body)"""
    identifier: str
    content_base64: str
    secret: str = ""
