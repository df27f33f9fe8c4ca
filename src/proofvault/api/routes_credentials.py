from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile
from pydantic import BaseModel, ConfigDict, Field

from proofvault.api.deps import client_actor, get_services
from proofvault.bootstrap import Services
from proofvault.errors import PayloadTooLarge, ValidationError
from proofvault.proofs.payload import PayloadMetadata, detect_payload, structured_from_field

router = APIRouter(prefix="/api/credentials", tags=["credentials"])

DEFAULT_CONTENT_TYPE = "application/octet-stream"


class UploadResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    proof_hash: str = Field(alias="proofHash")
    storage_handle: Optional[str] = Field(default=None, alias="storageHandle")
    status: str
    duplicate: bool
    message: str


class VerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proof_hash: str = Field(alias="proofHash")


class DeleteResponse(BaseModel):
    success: bool = True
    message: str


class AuditResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    proof_hash: str = Field(alias="proofHash")
    entries: List[Dict[str, Any]]


@router.post("/upload", response_model=UploadResponse, response_model_by_alias=True)
async def upload_credential(
    request: Request,
    response: Response,
    file: Optional[UploadFile] = File(None),
    json_data: Optional[str] = Form(None, alias="jsonData"),
    title: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    client_proof_hash: Optional[str] = Form(None, alias="clientProofHash"),
    services: Services = Depends(get_services),
) -> UploadResponse:
    has_file = file is not None and bool(file.filename)
    if has_file and json_data is not None:
        raise ValidationError("Provide either a file or jsonData, not both")
    if not has_file and json_data is None:
        raise ValidationError("Either a file or jsonData is required")

    if has_file:
        limit = services.settings.max_file_bytes
        # one extra byte is enough to know the limit was crossed
        data = await file.read(limit + 1)
        if not data:
            raise ValidationError("Uploaded file is empty", details={"field": "file"})
        if len(data) > limit:
            raise PayloadTooLarge(
                f"File exceeds the {limit} byte limit", details={"limit": limit}
            )
        payload = detect_payload(data)
        metadata = PayloadMetadata(
            filename=file.filename,
            content_type=file.content_type or DEFAULT_CONTENT_TYPE,
            title=title,
            description=description,
        )
    else:
        payload = structured_from_field(json_data)
        metadata = PayloadMetadata(
            filename="data.json",
            content_type="application/json",
            title=title,
            description=description,
        )

    result = await services.issuer.issue(
        payload,
        metadata,
        client_proof_hash=client_proof_hash,
        actor=client_actor(request),
    )
    if result.duplicate:
        message = "Credential already exists"
    else:
        response.status_code = 201
        message = "Credential uploaded and queued for anchoring"
    return UploadResponse(
        proof_hash=result.proof_hash,
        storage_handle=result.storage_handle,
        status=result.status,
        duplicate=result.duplicate,
        message=message,
    )


@router.post("/verify")
async def verify_credential(
    body: VerifyRequest, services: Services = Depends(get_services)
) -> Dict[str, Any]:
    result = await services.verifier.verify(body.proof_hash)
    return result.to_response()


@router.get("/list")
async def list_credentials(
    limit: int = 50,
    offset: int = 0,
    services: Services = Depends(get_services),
) -> Dict[str, Any]:
    return await services.issuer.list_records(limit=limit, offset=offset)


@router.get("/{proof_hash}/audit", response_model=AuditResponse, response_model_by_alias=True)
async def credential_audit(proof_hash: str, services: Services = Depends(get_services)) -> AuditResponse:
    entries = await services.issuer.audit_trail(proof_hash)
    return AuditResponse(proof_hash=proof_hash.strip().lower(), entries=entries)


@router.delete("/{record_handle:path}", response_model=DeleteResponse)
async def delete_credential(
    record_handle: str,
    request: Request,
    services: Services = Depends(get_services),
) -> DeleteResponse:
    credential = await services.issuer.delete(record_handle, actor=client_actor(request))
    return DeleteResponse(message=f"Credential {credential.proof_hash} deleted")
