"""Tests for the manifest signing pipeline."""

import json

import pytest
from fixtures.fake_engine import MAGIC, FakeEngine

from c2pa_signing.errors import ManifestInvalid, SigningFailed
from c2pa_signing.services.signing_pipeline import (
    ManifestSigningPipeline,
    ManifestSigningRequest,
    PipelineState,
    active_manifest,
    read_manifest_store,
)
from c2pa_signing.signing import CallbackSigner, SigningAlgorithm


@pytest.fixture
def pipeline(fake_engine: FakeEngine) -> ManifestSigningPipeline:
    return ManifestSigningPipeline(fake_engine)


class TestSign:
    """Test a full sign-and-verify pass."""

    def test_round_trip(self, pipeline, fake_engine, server_signer, manifest_json, jpeg_bytes):
        """Test the signed asset reads back with the same generator and title."""
        result = pipeline.sign(
            ManifestSigningRequest(manifest_json, jpeg_bytes, "image/jpeg"), server_signer
        )

        assert result.state is PipelineState.DONE
        assert result.verified
        assert result.signed_asset.startswith(jpeg_bytes)
        assert MAGIC in result.signed_asset

        manifest = active_manifest(result.manifest_store)
        assert manifest["claim_generator"] == "c2pa-signing-tests/1.0"
        assert manifest["title"] == "photo.jpg"
        assert manifest["signature_info"]["alg"] == "es256"

        store = read_manifest_store(fake_engine, result.signed_asset, "image/jpeg")
        assert active_manifest(store) == manifest

    def test_signature_info(self, pipeline, server_signer, manifest_json, jpeg_bytes):
        """Test the result describes the signer used."""
        info = pipeline.sign(
            ManifestSigningRequest(manifest_json, jpeg_bytes, "image/jpeg"), server_signer
        ).signature_info

        assert info.algorithm == "es256"
        assert info.certificate_chain_pem == server_signer.certificate_chain_pem
        assert info.signed_at.tzinfo is not None

    def test_handles_released(self, pipeline, fake_engine, server_signer, manifest_json, jpeg_bytes):
        """Test builder and signer handles are closed after signing."""
        pipeline.sign_asset(manifest_json, jpeg_bytes, "image/jpeg", server_signer)

        assert len(fake_engine.handles) == 2
        assert all(handle.closed for handle in fake_engine.handles)

    def test_handles_released_on_failure(
        self, pipeline, fake_engine, signing_credentials, manifest_json, jpeg_bytes
    ):
        """Test handles are closed when the signer fails."""

        def fail(data: bytes) -> bytes:
            raise RuntimeError("token removed")

        signer = CallbackSigner(
            SigningAlgorithm.ES256, signing_credentials.certificate_chain_pem, fail
        )
        with pytest.raises(SigningFailed):
            pipeline.sign_asset(manifest_json, jpeg_bytes, "image/jpeg", signer)
        assert fake_engine.handles
        assert all(handle.closed for handle in fake_engine.handles)

    def test_verify_disabled(self, fake_engine, server_signer, manifest_json, jpeg_bytes):
        """Test verification can be turned off per pipeline."""
        pipeline = ManifestSigningPipeline(fake_engine, verify_after_sign=False)
        result = pipeline.sign(
            ManifestSigningRequest(manifest_json, jpeg_bytes, "image/jpeg"), server_signer
        )

        assert result.state is PipelineState.DONE
        assert not result.verified
        assert result.manifest_store is None

    def test_verify_failure_does_not_propagate(self, server_signer, manifest_json, jpeg_bytes):
        """Test a read-back failure is recorded while the asset is still returned."""
        pipeline = ManifestSigningPipeline(FakeEngine(fail_read=True))
        result = pipeline.sign(
            ManifestSigningRequest(manifest_json, jpeg_bytes, "image/jpeg"), server_signer
        )

        assert result.state is PipelineState.DONE
        assert not result.verified
        assert result.verify_error == "read failed"
        assert result.signed_asset.startswith(jpeg_bytes)


class TestRequestValidation:
    """Test inputs rejected before reaching the engine."""

    @pytest.mark.parametrize("manifest", ["not json", "[1, 2]", ""])
    def test_bad_manifest(self, pipeline, fake_engine, server_signer, jpeg_bytes, manifest):
        """Test manifests that are not JSON objects are rejected."""
        with pytest.raises(ManifestInvalid):
            pipeline.sign_asset(manifest, jpeg_bytes, "image/jpeg", server_signer)
        assert fake_engine.sign_calls == 0

    def test_empty_asset(self, pipeline, server_signer, manifest_json):
        """Test an empty asset is rejected."""
        with pytest.raises(ManifestInvalid):
            pipeline.sign_asset(manifest_json, b"", "image/jpeg", server_signer)

    def test_missing_format(self, pipeline, server_signer, manifest_json, jpeg_bytes):
        """Test a blank format is rejected."""
        with pytest.raises(ManifestInvalid):
            pipeline.sign_asset(manifest_json, jpeg_bytes, " ", server_signer)


class TestEngineFailure:
    """Test engine errors surface as signing failures."""

    def test_engine_error_wrapped(self, server_signer, manifest_json, jpeg_bytes):
        """Test an unexpected engine error becomes SigningFailed."""

        class BrokenEngine(FakeEngine):
            def sign(self, *args, **kwargs):
                raise OSError("disk full")

        pipeline = ManifestSigningPipeline(BrokenEngine())
        with pytest.raises(SigningFailed) as exc_info:
            pipeline.sign_asset(manifest_json, jpeg_bytes, "image/jpeg", server_signer)
        assert isinstance(exc_info.value.__cause__, OSError)


class TestActiveManifest:
    """Test manifest store helpers."""

    def test_no_active_manifest(self):
        """Test a store without an active label yields None."""
        assert active_manifest({"manifests": {}}) is None

    def test_store_must_be_object(self):
        """Test a non-object store is rejected."""

        class ListEngine(FakeEngine):
            def read(self, mime_format, source):
                return json.dumps([])

        with pytest.raises(ValueError):
            read_manifest_store(ListEngine(), b"asset", "image/jpeg")
