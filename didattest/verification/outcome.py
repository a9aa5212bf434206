from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


METHOD_DNS = "dns"
METHOD_DOCUMENT = "document"
METHOD_CONTRACT = "contract"
METHOD_TRANSFER = "transfer"
METHOD_MINTING_WALLET = "minting-wallet"

KIND_FORMAT = "format"
KIND_NOT_FOUND = "not_found"
KIND_MISMATCH = "mismatch"
KIND_TRANSIENT = "transient"
KIND_CONFIGURATION = "configuration"


@dataclass(frozen=True)
class VerificationOutcome:
    success: bool
    method: Optional[str] = None
    error: Optional[str] = None
    details: Optional[str] = None
    kind: Optional[str] = None
    expected: Optional[str] = None
    actual: Optional[str] = None

    @classmethod
    def ok(cls, method: str, details: Optional[str] = None) -> "VerificationOutcome":
        return cls(success=True, method=method, details=details)

    @classmethod
    def fail(
        cls,
        error: str,
        details: Optional[str] = None,
        *,
        kind: str,
        expected: Optional[str] = None,
        actual: Optional[str] = None,
    ) -> "VerificationOutcome":
        return cls(
            success=False,
            error=error,
            details=details,
            kind=kind,
            expected=expected,
            actual=actual,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {key: value for key, value in asdict(self).items() if value is not None}


__all__ = [
    "KIND_CONFIGURATION",
    "KIND_FORMAT",
    "KIND_MISMATCH",
    "KIND_NOT_FOUND",
    "KIND_TRANSIENT",
    "METHOD_CONTRACT",
    "METHOD_DNS",
    "METHOD_DOCUMENT",
    "METHOD_MINTING_WALLET",
    "METHOD_TRANSFER",
    "VerificationOutcome",
]
