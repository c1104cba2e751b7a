"""Manifest engine boundary.

The engine builds, embeds and reads C2PA manifests. The pipeline only talks
to the ManifestEngine protocol; C2paEngine adapts the ``c2pa-python``
bindings (``engine`` extra) to it.
"""

from typing import Any, BinaryIO, Protocol, runtime_checkable

from c2pa_signing.errors import ServiceUnavailable
from c2pa_signing.logging_config import get_logger
from c2pa_signing.signing import Signer

logger = get_logger(__name__)


@runtime_checkable
class ManifestEngine(Protocol):
    """Operations the signing pipeline needs from a manifest engine.

    Builder and signer handles expose ``close()`` and are released by the caller.
    """

    def create_builder(self, manifest_json: str) -> Any: ...

    def create_signer(self, signer: Signer) -> Any: ...

    def sign(
        self,
        builder: Any,
        signer_handle: Any,
        mime_format: str,
        source: BinaryIO,
        dest: BinaryIO,
    ) -> None: ...

    def read(self, mime_format: str, source: BinaryIO) -> str: ...


class C2paEngine:
    """ManifestEngine backed by the c2pa-python bindings."""

    def __init__(self) -> None:
        try:
            import c2pa
        except ImportError as e:
            raise ServiceUnavailable(
                "Manifest engine requires the 'engine' extra (c2pa-python)"
            ) from e
        self._c2pa = c2pa
        logger.info("Manifest engine loaded", engine="c2pa-python")

    def create_builder(self, manifest_json: str) -> Any:
        return self._c2pa.Builder(manifest_json)

    def create_signer(self, signer: Signer) -> Any:
        alg = getattr(self._c2pa.C2paSigningAlg, signer.algorithm.name)
        return self._c2pa.Signer.from_callback(
            callback=signer.sign,
            alg=alg,
            certs=signer.certificate_chain_pem,
            tsa_url=signer.timestamp_authority_url,
        )

    def sign(
        self,
        builder: Any,
        signer_handle: Any,
        mime_format: str,
        source: BinaryIO,
        dest: BinaryIO,
    ) -> None:
        builder.sign(signer_handle, mime_format, source, dest)

    def read(self, mime_format: str, source: BinaryIO) -> str:
        with self._c2pa.Reader(mime_format, source) as reader:
            return reader.json()
