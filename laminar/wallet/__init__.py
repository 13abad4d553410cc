from .signer import Ed25519Signer, Signer, verify_signature

__all__ = [
    "Signer",
    "Ed25519Signer",
    "verify_signature",
]
