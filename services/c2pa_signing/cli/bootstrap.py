"""
Bootstrap script for the certificate authority.

Idempotent: loads the CA hierarchy if it already exists in the data
directory, otherwise generates and persists a new one. Prints the root and
intermediate fingerprints so operators can pin them in clients.
Run via: python -m c2pa_signing.cli.bootstrap [--data-dir DIR] [--export DIR]

Reads configuration from the usual settings sources:
  C2PA_SIGNING_CA_DATA_DIR      - CA data directory (or --data-dir)
  C2PA_SIGNING_CONFIG_FILE      - YAML config file
"""

import argparse
import logging
import sys
from pathlib import Path

from c2pa_signing.auth.ca import (
    CertificateAuthorityService,
    get_certificate_fingerprint,
)
from c2pa_signing.config import settings
from c2pa_signing.errors import C2PASigningError

# Use stdlib logging: structlog isn't configured yet during bootstrap
logger = logging.getLogger("c2pa_signing.bootstrap")


def bootstrap(data_dir: Path, export_dir: Path | None = None) -> CertificateAuthorityService:
    ca = CertificateAuthorityService.load_or_generate(data_dir, settings.certificates)

    logger.info("CA data directory: %s", data_dir)
    logger.info("Root CA:         %s", ca.root_cert.subject.rfc4514_string())
    logger.info("  fingerprint:   %s", get_certificate_fingerprint(ca.root_cert))
    logger.info("  expires:       %s", ca.root_cert.not_valid_after_utc.isoformat())
    logger.info("Intermediate CA: %s", ca.intermediate_cert.subject.rfc4514_string())
    logger.info("  fingerprint:   %s", get_certificate_fingerprint(ca.intermediate_cert))
    logger.info("  expires:       %s", ca.intermediate_cert.not_valid_after_utc.isoformat())

    if export_dir is not None:
        # Public material only, for distribution to verifying clients
        export_dir.mkdir(parents=True, exist_ok=True)
        (export_dir / "root.crt").write_text(ca.root_cert_pem)
        (export_dir / "intermediate.crt").write_text(ca.intermediate_cert_pem)
        (export_dir / "chain.pem").write_text(ca.intermediate_cert_pem + ca.root_cert_pem)
        logger.info("Exported public certificates to %s", export_dir)

    return ca


def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")

    parser = argparse.ArgumentParser(description="Create or load the signing CA hierarchy")
    parser.add_argument("--data-dir", type=Path, default=settings.ca_data_dir)
    parser.add_argument(
        "--export", type=Path, default=None, help="Write public CA certificates here"
    )
    args = parser.parse_args(argv)

    if args.data_dir is None:
        logger.error("A CA data directory is required (--data-dir or C2PA_SIGNING_CA_DATA_DIR)")
        sys.exit(1)

    try:
        bootstrap(args.data_dir, args.export)
    except C2PASigningError as e:
        logger.error("Bootstrap failed: %s", e)
        sys.exit(1)

    logger.info("Bootstrap complete")


if __name__ == "__main__":
    main()
