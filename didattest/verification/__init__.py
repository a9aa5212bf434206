"""DID ownership verification."""

from .did import DidVerifier
from .outcome import VerificationOutcome
from .prober import OwnershipProber
from .transfer import TransferProofVerifier, calculate_transfer_amount
from .web import WebDidVerifier

__all__ = [
    "DidVerifier",
    "OwnershipProber",
    "TransferProofVerifier",
    "VerificationOutcome",
    "WebDidVerifier",
    "calculate_transfer_amount",
]
