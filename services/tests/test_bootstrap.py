"""Tests for the CA bootstrap command."""

import pytest
from cryptography import x509

from c2pa_signing.cli.bootstrap import bootstrap, main
from c2pa_signing.config import settings


class TestBootstrap:
    """Test idempotent CA creation and export."""

    def test_creates_then_loads(self, tmp_path):
        """Test a second run loads the hierarchy created by the first."""
        data_dir = tmp_path / "ca"
        first = bootstrap(data_dir)
        second = bootstrap(data_dir)

        assert first.root_cert == second.root_cert
        assert (data_dir / "root.key").exists()

    def test_export_public_material(self, tmp_path):
        """Test export writes certificates but no keys."""
        export_dir = tmp_path / "export"
        ca = bootstrap(tmp_path / "ca", export_dir)

        assert sorted(p.name for p in export_dir.iterdir()) == [
            "chain.pem",
            "intermediate.crt",
            "root.crt",
        ]
        chain = x509.load_pem_x509_certificates((export_dir / "chain.pem").read_bytes())
        assert chain == [ca.intermediate_cert, ca.root_cert]

    def test_main_requires_data_dir(self, monkeypatch):
        """Test the command exits non-zero without a data directory."""
        monkeypatch.setattr(settings, "ca_data_dir", None)
        with pytest.raises(SystemExit) as exc_info:
            main([])
        assert exc_info.value.code == 1

    def test_main_with_data_dir(self, tmp_path):
        """Test the command succeeds with an explicit data directory."""
        main(["--data-dir", str(tmp_path / "ca")])
        assert (tmp_path / "ca" / "intermediate.crt").exists()
