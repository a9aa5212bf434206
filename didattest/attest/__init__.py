"""On-chain attestation: resolver access, signers and the verify-and-attest flow."""

from .orchestrator import AttestOutcome, AttestationOrchestrator, build_orchestrator
from .resolver import AttestationStatus, ResolverContract
from .signers import CustodialSigner, LocalKeySigner, select_signer

__all__ = [
    "AttestOutcome",
    "AttestationOrchestrator",
    "AttestationStatus",
    "CustodialSigner",
    "LocalKeySigner",
    "ResolverContract",
    "build_orchestrator",
    "select_signer",
]
