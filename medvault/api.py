import base64
import binascii
import logging
import time
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from medvault.errors import (
    BackendUnavailable,
    DecryptionFailure,
    EmptyInput,
    LedgerError,
    MedvaultError,
    NotFound,
)
from medvault.ledger import PatientRecordsLedger
from medvault.models import CreateFileRequest, CreateRecordRequest
from medvault.pipeline import RecordPipeline, build_pipeline

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the record pipeline once, before the first request is served"""
    if getattr(app.state, "pipeline", None) is None:
        app.state.pipeline = build_pipeline()
        logger.info("Record pipeline ready")
    try:
        yield
    finally:
        app.state.pipeline = None


app = FastAPI(title="Medical Records Vault API", lifespan=lifespan)

# Enable CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Status code per pipeline error
ERROR_STATUS = {
    EmptyInput: 400,
    NotFound: 404,
    DecryptionFailure: 422,
    LedgerError: 502,
    BackendUnavailable: 503,
}


def success_response(data=None, message=None):
    """
    Create a standardized success response.

    Args:
        data: Optional data to include in the response
        message: Optional message to include in the response

    Returns:
        dict: A standardized success response
    """
    response = {"status": "success"}

    if data is not None:
        response["data"] = data

    if message is not None:
        response["message"] = message

    return response


def error_response(message, status_code=400):
    """Raise an HTTPException carrying the standard error body"""
    raise HTTPException(
        status_code=status_code,
        detail={"status": "error", "error": message}
    )


def pipeline_error(e: MedvaultError):
    for error_type, status_code in ERROR_STATUS.items():
        if isinstance(e, error_type):
            error_response(str(e), status_code)
    error_response(str(e), 500)


def get_pipeline(request: Request) -> RecordPipeline:
    """The pipeline built by the application lifespan"""
    pipeline = getattr(request.app.state, "pipeline", None)
    if pipeline is None:
        error_response("Record pipeline is not initialised", 503)
    return pipeline


def get_ledger(request: Request) -> PatientRecordsLedger:
    ledger = getattr(request.app.state, "ledger", None)
    if ledger is None:
        try:
            ledger = PatientRecordsLedger.from_env()
        except LedgerError as e:
            error_response(str(e), 503)
        request.app.state.ledger = ledger
    return ledger


@app.get("/health")
@app.get("/api/health")
async def health_check():
    """Health check endpoint"""
    return success_response(
        data={"timestamp": int(time.time())},
        message="Service is healthy"
    )


@app.get("/api/storage/status")
async def storage_status(pipeline: RecordPipeline = Depends(get_pipeline)):
    """Report which content store backend this process resolved to"""
    try:
        return success_response(data=await pipeline.store.describe())
    except MedvaultError as e:
        pipeline_error(e)


@app.post("/api/records")
async def create_record(body: CreateRecordRequest, request: Request,
                        pipeline: RecordPipeline = Depends(get_pipeline)):
    """
    Encrypt a record body and store the ciphertext.

    Either ``plaintext`` or a structured ``record`` must be given. With
    ``register`` set, the record is also created on the ledger.
    """
    if body.record is None and not body.plaintext:
        error_response("Either plaintext or record is required", 400)
    if body.register_on_ledger and body.record is None:
        error_response("Registering on the ledger requires a structured record", 400)

    try:
        if body.register_on_ledger:
            ledger = get_ledger(request)
            record_id, payload = await pipeline.create_and_register(
                body.record, body.identifier, ledger, secret=body.secret
            )
            data = payload.model_dump()
            data["record_id"] = record_id
            return success_response(data=data, message="Record stored and registered")

        plaintext = body.plaintext if body.record is None else body.record.to_plaintext()
        payload = await pipeline.create_record_payload(plaintext, body.identifier, body.secret)
        return success_response(data=payload.model_dump(), message="Record stored")
    except MedvaultError as e:
        pipeline_error(e)


@app.get("/api/records")
async def list_records(owner: str = Query(...), pipeline: RecordPipeline = Depends(get_pipeline)):
    """List the content identifiers registered for an owner, with their durability"""
    if not owner:
        error_response("owner must not be empty", 400)
    return success_response(data=pipeline.owner_records(owner))


@app.get("/api/records/{content_id}")
async def view_record(content_id: str, identifier: str = Query(...), secret: str = Query(""),
                      pipeline: RecordPipeline = Depends(get_pipeline)):
    """Fetch and decrypt a record body"""
    try:
        plaintext = await pipeline.view_record_payload(content_id, identifier, secret)
        return success_response(data={"content_id": content_id, "plaintext": plaintext})
    except MedvaultError as e:
        pipeline_error(e)


@app.post("/api/files")
async def create_file(body: CreateFileRequest, pipeline: RecordPipeline = Depends(get_pipeline)):
    """Encrypt and store a base64-encoded file"""
    try:
        data = base64.b64decode(body.content_base64, validate=True)
    except (binascii.Error, ValueError):
        error_response("content_base64 is not valid base64", 400)

    try:
        payload = await pipeline.create_file_payload(data, body.identifier, body.secret)
        return success_response(data=payload.model_dump(), message="File stored")
    except MedvaultError as e:
        pipeline_error(e)


@app.get("/api/files/{content_id}")
async def view_file(content_id: str, identifier: str = Query(...), secret: str = Query(""),
                    pipeline: RecordPipeline = Depends(get_pipeline)):
    """Fetch and decrypt a stored file"""
    try:
        data = await pipeline.view_file_payload(content_id, identifier, secret)
    except MedvaultError as e:
        pipeline_error(e)
    return Response(content=data, media_type="application/octet-stream")
