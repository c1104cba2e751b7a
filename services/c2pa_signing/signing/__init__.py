"""Signature codec, signer strategies, keystores and the signer factory."""

from .algorithms import SigningAlgorithm
from .codec import der_to_raw, raw_to_der
from .signers import CallbackSigner, KeyPairSigner, Signer

__all__ = [
    "CallbackSigner",
    "KeyPairSigner",
    "Signer",
    "SigningAlgorithm",
    "der_to_raw",
    "raw_to_der",
]
