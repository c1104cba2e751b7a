"""Manifest signing pipeline.

Drives one sign-and-verify pass through the manifest engine:

    IDLE -> BUILDER_CONSTRUCTED -> SIGNING -> SIGNED | SIGN_FAILED
         -> [VERIFYING -> VERIFIED | VERIFY_FAILED] -> DONE

A sign failure propagates as SigningFailed. A verify failure is logged and
recorded on the result; the signed asset is still returned.

Every call blocks (the engine invokes the signer callback synchronously), so
HTTP handlers run it in the worker thread pool.
"""

import contextlib
import datetime
import io
import json
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from c2pa_signing.errors import ManifestInvalid, SigningFailed
from c2pa_signing.logging_config import get_logger
from c2pa_signing.signing import Signer

from .engine import ManifestEngine

logger = get_logger(__name__)


class PipelineState(StrEnum):
    IDLE = "idle"
    BUILDER_CONSTRUCTED = "builder_constructed"
    SIGNING = "signing"
    SIGNED = "signed"
    SIGN_FAILED = "sign_failed"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    VERIFY_FAILED = "verify_failed"
    DONE = "done"


@dataclass(frozen=True)
class ManifestSigningRequest:
    manifest_json: str
    asset: bytes
    mime_format: str
    verify: bool | None = None  # None uses the pipeline default


@dataclass(frozen=True)
class SignatureInfo:
    algorithm: str
    certificate_chain_pem: str | None
    timestamp_url: str | None
    signed_at: datetime.datetime


@dataclass(frozen=True)
class SignedManifestResult:
    signed_asset: bytes
    signature_info: SignatureInfo
    state: PipelineState
    verified: bool
    manifest_store: dict[str, Any] | None = None
    verify_error: str | None = None


class ManifestSigningPipeline:
    """Embeds signed manifests into assets using a ManifestEngine."""

    def __init__(self, engine: ManifestEngine, verify_after_sign: bool = True) -> None:
        self._engine = engine
        self._verify_after_sign = verify_after_sign

    @property
    def engine(self) -> ManifestEngine:
        return self._engine

    def sign_asset(
        self,
        manifest_json: str,
        asset_bytes: bytes,
        mime_format: str,
        signer: Signer,
    ) -> bytes:
        """Embed a manifest signed by ``signer`` and return the signed asset bytes."""
        request = ManifestSigningRequest(
            manifest_json=manifest_json,
            asset=asset_bytes,
            mime_format=mime_format,
        )
        return self.sign(request, signer).signed_asset

    def sign(self, request: ManifestSigningRequest, signer: Signer) -> SignedManifestResult:
        _validate_request(request)
        state = PipelineState.IDLE
        log = logger.bind(mime_format=request.mime_format, algorithm=signer.algorithm.value)

        dest = io.BytesIO()
        try:
            with contextlib.ExitStack() as stack:
                builder = self._engine.create_builder(request.manifest_json)
                stack.callback(builder.close)
                state = PipelineState.BUILDER_CONSTRUCTED

                signer_handle = self._engine.create_signer(signer)
                stack.callback(signer_handle.close)

                state = PipelineState.SIGNING
                source = stack.enter_context(io.BytesIO(request.asset))
                self._engine.sign(builder, signer_handle, request.mime_format, source, dest)
                state = PipelineState.SIGNED
        except Exception as e:
            log.error(
                "Manifest signing failed",
                state=PipelineState.SIGN_FAILED.value,
                failed_after=state.value,
                error=str(e),
            )
            if isinstance(e, SigningFailed):
                raise
            raise SigningFailed("Manifest engine failed to sign the asset") from e

        signed_asset = dest.getvalue()
        log.info("Signed asset", size=len(signed_asset))

        verify = self._verify_after_sign if request.verify is None else request.verify
        store: dict[str, Any] | None = None
        verify_error: str | None = None
        if verify:
            state = PipelineState.VERIFYING
            try:
                store = read_manifest_store(self._engine, signed_asset, request.mime_format)
                state = PipelineState.VERIFIED
            except Exception as e:
                # Signing already succeeded; the asset is returned regardless
                log.warning("Post-sign verification failed", error=str(e))
                verify_error = str(e)
                state = PipelineState.VERIFY_FAILED

        verified = state is PipelineState.VERIFIED
        state = PipelineState.DONE
        return SignedManifestResult(
            signed_asset=signed_asset,
            signature_info=SignatureInfo(
                algorithm=signer.algorithm.value,
                certificate_chain_pem=signer.certificate_chain_pem,
                timestamp_url=signer.timestamp_authority_url,
                signed_at=datetime.datetime.now(datetime.UTC),
            ),
            state=state,
            verified=verified,
            manifest_store=store,
            verify_error=verify_error,
        )


def _validate_request(request: ManifestSigningRequest) -> None:
    if not request.mime_format or not request.mime_format.strip():
        raise ManifestInvalid("Asset format is required")
    if not request.asset:
        raise ManifestInvalid("Asset is empty")
    try:
        manifest = json.loads(request.manifest_json)
    except (TypeError, ValueError) as e:
        raise ManifestInvalid("Manifest definition is not valid JSON") from e
    if not isinstance(manifest, dict):
        raise ManifestInvalid("Manifest definition must be a JSON object")


def read_manifest_store(
    engine: ManifestEngine, asset: bytes, mime_format: str
) -> dict[str, Any]:
    """Read and parse the manifest store embedded in ``asset``."""
    with io.BytesIO(asset) as source:
        store = json.loads(engine.read(mime_format, source))
    if not isinstance(store, dict):
        raise ValueError("Manifest store is not a JSON object")
    return store


def active_manifest(store: dict[str, Any]) -> dict[str, Any] | None:
    """Return the active manifest record of a parsed store, if any."""
    label = store.get("active_manifest")
    if not label:
        return None
    return store.get("manifests", {}).get(label)
