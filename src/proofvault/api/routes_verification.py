from __future__ import annotations

import base64
import binascii
from typing import Any, Dict, Literal, Optional, Union

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from proofvault.api.deps import get_services
from proofvault.api.routes_credentials import VerifyRequest
from proofvault.bootstrap import Services
from proofvault.errors import PayloadTooLarge, ValidationError
from proofvault.proofs.canonical import canonical_json, canonicalize, hash_binary, hash_structured
from proofvault.proofs.payload import structured_from_field

router = APIRouter(prefix="/api/verification", tags=["verification"])

CANONICALIZATION_RULES = [
    "JSON object keys are sorted by Unicode code point at every depth",
    "Arrays keep their order",
    "Output is compact: no whitespace between tokens",
    "Strings and numbers are written as JavaScript JSON.stringify writes them",
    "The canonical text is hashed as UTF-8 with SHA-256",
    "Binary files are hashed over their raw bytes",
]


class ComputeHashRequest(BaseModel):
    data: Union[str, Dict[str, Any], list]
    type: Literal["json", "binary"] = "json"


class ComputeHashResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool = True
    proof_hash: str = Field(alias="proofHash")
    type: str
    canonical_json: Optional[str] = Field(default=None, alias="canonicalJson")


@router.get("/tools")
def verification_tools(services: Services = Depends(get_services)) -> Dict[str, Any]:
    return {
        "success": True,
        "tools": {
            "cli": "proofvault hash <file>",
            "instructions": [
                "1. Install proofvault and run: proofvault hash <your-file>",
                "2. For JSON text, run: proofvault hash --json '<json>'",
                "3. Compare the output with the proof hash shown for your credential",
                "4. Open the anchor transaction on the testnet explorer",
                "5. Check that the transaction data carries the same proof hash",
            ],
            "explorerUrl": services.settings.anchor_explorer_url,
            "canonicalizationRules": CANONICALIZATION_RULES,
        },
    }


@router.post("/compute-hash", response_model=ComputeHashResponse, response_model_by_alias=True)
def compute_hash(
    body: ComputeHashRequest, services: Services = Depends(get_services)
) -> ComputeHashResponse:
    if body.type == "binary":
        if not isinstance(body.data, str):
            raise ValidationError("Binary data must be a base64 string", details={"field": "data"})
        try:
            raw = base64.b64decode(body.data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise ValidationError("Binary data must be valid base64", details={"field": "data"}) from exc
        limit = services.settings.max_file_bytes
        if len(raw) > limit:
            raise PayloadTooLarge(f"Data exceeds the {limit} byte limit", details={"limit": limit})
        return ComputeHashResponse(proof_hash=hash_binary(raw), type="binary")

    if isinstance(body.data, str):
        payload = structured_from_field(body.data)
        value = payload.value
    else:
        value = body.data
    canonical = canonical_json(canonicalize(value))
    return ComputeHashResponse(proof_hash=hash_structured(value), type="json", canonical_json=canonical)


@router.post("/verify-proof")
async def verify_proof(body: VerifyRequest, services: Services = Depends(get_services)) -> Dict[str, Any]:
    result = await services.verifier.verify(body.proof_hash)
    return {"success": True, **result.to_response()}


@router.get("/integrity/{proof_hash}")
async def integrity(proof_hash: str, services: Services = Depends(get_services)) -> Dict[str, Any]:
    return await services.verifier.check_integrity(proof_hash)
