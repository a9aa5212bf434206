"""DID ownership verification and on-chain attestation service."""

__version__ = "0.1.0"
