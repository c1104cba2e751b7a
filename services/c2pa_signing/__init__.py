"""C2PA signing service: certificate authority, pluggable signers and manifest signing."""

__version__ = "0.1.0"
