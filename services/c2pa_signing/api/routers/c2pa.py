"""C2PA manifest signing and remote signer routes.

Consumers:
    Mobile clients (server-side signing):
        POST /api/v1/c2pa/sign   multipart: ``request`` JSON part + ``image`` part
                                 -> signed asset bytes
        POST /api/v1/c2pa/sign   JSON {manifestJSON, format, imageData}
                                 -> {manifestStore, signatureInfo}
    Remote-signer clients (client-side manifests, server-held key):
        GET  /api/v1/c2pa/configuration  -> {algorithm, timestamp_url, signing_url, certificate_chain}
        POST /api/v1/c2pa/sign   JSON {dataToSign} -> {signature}

The sign URL is shared: the body shape selects the operation.
"""

import base64
import binascii
import json
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.concurrency import run_in_threadpool
from pydantic import ValidationError

from c2pa_signing.api.dependencies import (
    get_pipeline,
    get_server_signer,
    get_settings,
    require_bearer,
)
from c2pa_signing.api.models.c2pa import (
    ManifestSigningRequestBody,
    ManifestSigningResponse,
    RawSigningRequestBody,
    RawSigningResponse,
    SignatureInfoModel,
    SignerConfigurationResponse,
)
from c2pa_signing.api.models.common import error_responses
from c2pa_signing.config import Settings
from c2pa_signing.errors import ManifestInvalid, SigningFailed
from c2pa_signing.logging_config import get_logger
from c2pa_signing.services.signing_pipeline import (
    ManifestSigningPipeline,
    ManifestSigningRequest,
)
from c2pa_signing.signing import Signer

router = APIRouter(
    prefix="/c2pa",
    tags=["c2pa"],
    dependencies=[Depends(require_bearer)],
    responses=error_responses(401, 503),
)
logger = get_logger(__name__)


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _too_large(limit: int) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
        detail=f"Request exceeds {limit} bytes",
    )


def _check_declared_size(request: Request, limit: int) -> None:
    declared = request.headers.get("content-length")
    if declared is not None and declared.isdigit() and int(declared) > limit:
        raise _too_large(limit)


def _validation_detail(e: ValidationError) -> str:
    first = e.errors()[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    return f"Invalid request: {location} {first.get('msg', '')}".strip()


# ── Signing ──────────────────────────────────────────────────────────────


@router.post("/sign", response_model=None, responses=error_responses(400, 413, 500))
async def sign(
    request: Request,
    settings: Settings = Depends(get_settings),
    pipeline: ManifestSigningPipeline = Depends(get_pipeline),
    signer: Signer = Depends(get_server_signer),
) -> Response | ManifestSigningResponse | RawSigningResponse:
    """Sign an asset, or produce a raw signature, depending on the body shape."""
    limit = settings.max_request_size
    _check_declared_size(request, limit)

    content_type = request.headers.get("content-type", "").split(";")[0].strip().lower()
    if content_type == "multipart/form-data":
        return await _sign_multipart(request, limit, pipeline, signer)
    if content_type == "application/json":
        body = await request.body()
        if len(body) > limit:
            raise _too_large(limit)
        try:
            payload = json.loads(body)
        except ValueError as e:
            raise _bad_request("Request body is not valid JSON") from e
        if not isinstance(payload, dict):
            raise _bad_request("Request body must be a JSON object")
        if "dataToSign" in payload or "claim" in payload:
            return await _sign_raw(payload, signer)
        return await _sign_json(payload, pipeline, signer)

    raise _bad_request(f"Unsupported content type: {content_type or 'none'}")


async def _sign_multipart(
    request: Request,
    limit: int,
    pipeline: ManifestSigningPipeline,
    signer: Signer,
) -> Response:
    async with request.form() as form:
        request_part = form.get("request")
        image_part = form.get("image")
        if request_part is None or image_part is None or isinstance(image_part, str):
            raise _bad_request("Multipart body needs a 'request' part and an 'image' file part")

        if isinstance(request_part, str):
            request_raw: str | bytes = request_part
        else:
            request_raw = await request_part.read()
        image = await image_part.read()

    if len(image) > limit:
        raise _too_large(limit)
    try:
        request_json = request_raw if isinstance(request_raw, str) else request_raw.decode()
        body = ManifestSigningRequestBody.model_validate(json.loads(request_json))
    except ValueError as e:  # includes UnicodeDecodeError and ValidationError
        detail = _validation_detail(e) if isinstance(e, ValidationError) else "Invalid request part"
        raise _bad_request(detail) from e

    result = await _run_pipeline(pipeline, signer, body.manifest_json, image, body.format)
    return Response(content=result.signed_asset, media_type=body.format)


async def _sign_json(
    payload: dict[str, Any],
    pipeline: ManifestSigningPipeline,
    signer: Signer,
) -> ManifestSigningResponse:
    try:
        body = ManifestSigningRequestBody.model_validate(payload)
    except ValidationError as e:
        raise _bad_request(_validation_detail(e)) from e
    if not body.image_data:
        raise _bad_request("imageData is required for JSON signing requests")
    try:
        image = base64.b64decode(body.image_data, validate=True)
    except (ValueError, binascii.Error) as e:
        raise _bad_request("imageData is not valid base64") from e

    result = await _run_pipeline(pipeline, signer, body.manifest_json, image, body.format)
    return ManifestSigningResponse(
        manifest_store=base64.b64encode(result.signed_asset).decode(),
        signature_info=SignatureInfoModel(
            algorithm=result.signature_info.algorithm,
            certificate_chain=result.signature_info.certificate_chain_pem,
            timestamp=result.signature_info.signed_at,
        ),
    )


async def _sign_raw(payload: dict[str, Any], signer: Signer) -> RawSigningResponse:
    try:
        body = RawSigningRequestBody.model_validate(payload)
        data = base64.b64decode(body.data_to_sign, validate=True)
    except ValidationError as e:
        raise _bad_request(_validation_detail(e)) from e
    except (ValueError, binascii.Error) as e:
        raise _bad_request("dataToSign is not valid base64") from e

    try:
        signature = await run_in_threadpool(signer.sign, data)
    except SigningFailed as e:
        logger.error("Raw signing failed", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Signing failed"
        ) from e

    logger.info("Produced raw signature", algorithm=signer.algorithm.value, size=len(data))
    return RawSigningResponse(signature=base64.b64encode(signature).decode())


async def _run_pipeline(
    pipeline: ManifestSigningPipeline,
    signer: Signer,
    manifest_json: str,
    asset: bytes,
    mime_format: str,
):
    request = ManifestSigningRequest(
        manifest_json=manifest_json,
        asset=asset,
        mime_format=mime_format,
    )
    try:
        return await run_in_threadpool(pipeline.sign, request, signer)
    except ManifestInvalid as e:
        raise _bad_request(str(e)) from e
    except SigningFailed as e:
        logger.error("Manifest signing failed", mime_format=mime_format, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Signing failed"
        ) from e


# ── Remote Signer Configuration ──────────────────────────────────────────


@router.get(
    "/configuration",
    response_model=SignerConfigurationResponse,
    responses=error_responses(500),
)
async def get_configuration(
    settings: Settings = Depends(get_settings),
    signer: Signer = Depends(get_server_signer),
) -> SignerConfigurationResponse:
    """Advertise this server as a remote signer."""
    if not settings.server_url:
        logger.error("Remote signer configuration requested but server_url is not set")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server URL is not configured",
        )

    signing_url = f"{settings.server_url.rstrip('/')}{settings.api_prefix}/c2pa/sign"
    return SignerConfigurationResponse(
        algorithm=signer.algorithm.value,
        timestamp_url=signer.timestamp_authority_url or "",
        signing_url=signing_url,
        certificate_chain=base64.b64encode(signer.certificate_chain_pem.encode()).decode(),
    )
