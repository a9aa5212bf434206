"""Idempotent verify-and-attest flow.

1. read which required schemas the resolver already covers for the claimant
2. verify DID ownership (only when something is missing)
3. write one resolver attestation per missing schema, sequentially
4. aggregate per-schema outcomes; earlier writes are never rolled back
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from ..chain.rpc import JsonRpcChainReader, JsonRpcClient
from ..config import DEFAULT_SCHEMAS, Settings
from ..errors import ConfigurationError, DidAttestError
from ..utils.did import did_hash, parse_did
from ..verification.did import DidVerifier, ReaderFactory
from ..verification.outcome import KIND_CONFIGURATION, KIND_FORMAT
from ..verification.web import DnsTxtResolver, HttpDocumentFetcher, WebDidVerifier
from .resolver import AttestationReader, AttestationStatus, ResolverContract, controller_word
from .signers import Signer, select_signer


logger = logging.getLogger("didattest.attest.orchestrator")

STATUS_READY = "ready"
STATUS_FAILED = "failed"

SignerFactory = Callable[[], Signer]


@dataclass
class WriteResult:
    schema: str
    tx_hash: Optional[str] = None
    error: Optional[str] = None
    diagnostics: Optional[Dict[str, Any]] = None

    @property
    def ok(self) -> bool:
        return self.tx_hash is not None

    def to_warning(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"schema": self.schema, "error": self.error}
        if self.diagnostics:
            data["diagnostics"] = self.diagnostics
        return data


@dataclass
class AttestOutcome:
    ok: bool
    status: str
    present: List[str]
    missing: List[str]
    http_status: int = 200
    tx_hashes: List[str] = field(default_factory=list)
    warnings: List[Dict[str, Any]] = field(default_factory=list)
    error: Optional[str] = None
    details: Any = None
    method: Optional[str] = None
    message: Optional[str] = None
    elapsed_ms: int = 0
    debug: Optional[Dict[str, Any]] = None

    def to_response(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "ok": self.ok,
            "status": self.status,
            "attestations": {"present": list(self.present), "missing": list(self.missing)},
        }
        if self.tx_hashes:
            body["txHashes"] = list(self.tx_hashes)
        if self.warnings:
            body["warnings"] = list(self.warnings)
        for key, value in (
            ("error", self.error),
            ("details", self.details),
            ("method", self.method),
            ("message", self.message),
            ("debug", self.debug),
        ):
            if value is not None:
                body[key] = value
        body["elapsed"] = f"{self.elapsed_ms}ms"
        return body


def verification_http_status(kind: Optional[str]) -> int:
    if kind == KIND_FORMAT:
        return 400
    if kind == KIND_CONFIGURATION:
        return 500
    return 403


class AttestationOrchestrator:
    def __init__(
        self,
        settings: Settings,
        verifier: DidVerifier,
        resolver: ResolverContract,
        signer_factory: SignerFactory,
        *,
        status_reader: Optional[AttestationReader] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._settings = settings
        self._verifier = verifier
        self._resolver = resolver
        self._status_reader = status_reader or resolver
        self._signer_factory = signer_factory
        self._sleep = sleep

    def _select_signer(self):
        try:
            signer = self._signer_factory()
        except ConfigurationError as exc:
            # Only fatal once a write is actually needed
            logger.info("No signer available: %s", exc.detail)
            return None, exc
        logger.info("Using %s signer %s", signer.kind, signer.address)
        return signer, None

    async def verify_and_attest(
        self,
        did: str,
        claimant: str,
        required_schemas: Optional[Sequence[str]] = None,
        tx_ref: Optional[str] = None,
    ) -> AttestOutcome:
        parse_did(did)
        started = time.perf_counter()
        schemas = list(dict.fromkeys(required_schemas or DEFAULT_SCHEMAS))
        signer, signer_error = self._select_signer()

        status = await self._status_reader.status(did, claimant, schemas)
        present, missing = list(status.present), list(status.missing)

        if not missing:
            logger.info("All attestations already exist for %s", did)
            return self._finish(
                started,
                AttestOutcome(
                    ok=True,
                    status=STATUS_READY,
                    present=present,
                    missing=missing,
                    message="All attestations already exist",
                    debug=self._debug(did, claimant, signer),
                ),
            )

        outcome = await self._verifier.verify(did, claimant, tx_ref)
        if not outcome.success:
            logger.info("Ownership verification failed for %s: %s", did, outcome.error)
            return self._finish(
                started,
                AttestOutcome(
                    ok=False,
                    status=STATUS_FAILED,
                    present=present,
                    missing=missing,
                    http_status=verification_http_status(outcome.kind),
                    error=outcome.error or "DID ownership verification failed",
                    details=outcome.details,
                    method=outcome.method,
                    debug=self._debug(did, claimant, signer),
                ),
            )

        logger.info("Ownership of %s verified via %s; writing %d attestation(s)", did, outcome.method, len(missing))
        try:
            if signer is None:
                raise signer_error or ConfigurationError("No signer configured", code="signer_not_configured")
            results = await self._write_all(did, claimant, missing, signer)
        except ConfigurationError as exc:
            logger.error("Cannot write attestations for %s: %s", did, exc.detail)
            return self._finish(
                started,
                AttestOutcome(
                    ok=False,
                    status=STATUS_FAILED,
                    present=present,
                    missing=missing,
                    http_status=500,
                    error="Server configuration error",
                    details=exc.detail,
                    method=outcome.method,
                    debug=self._debug(did, claimant, signer),
                ),
            )

        return self._finish(started, self._aggregate(did, claimant, outcome.method, present, results, signer))

    async def _write_all(self, did: str, claimant: str, schemas: List[str], signer: Signer) -> List[WriteResult]:
        results: List[WriteResult] = []
        for schema in schemas:
            call = self._resolver.prepare_upsert(did, claimant)
            try:
                tx_hash = await signer.send(call)
            except ConfigurationError:
                raise
            except (DidAttestError, ValueError) as exc:
                message = getattr(exc, "detail", None) or str(exc)
                logger.warning("Attestation write for schema %s failed: %s", schema, message)
                diagnostics = None
                if self._settings.debug:
                    diagnostics = {
                        "issuerAddress": signer.address,
                        "contractAddress": call.to,
                        "chainId": self._settings.chain.chain_id,
                        "didHash": did_hash(did),
                        "controllerAddress": controller_word(claimant),
                        "payload": {**call.describe(), "did": did, "connectedAddress": claimant, "schema": schema},
                    }
                results.append(WriteResult(schema=schema, error=message, diagnostics=diagnostics))
                continue

            logger.info("Attestation written for schema %s: %s", schema, tx_hash)
            results.append(WriteResult(schema=schema, tx_hash=tx_hash))
            if self._settings.settle_seconds > 0:
                await self._sleep(self._settings.settle_seconds)
        return results

    def _aggregate(
        self,
        did: str,
        claimant: str,
        method: Optional[str],
        present: List[str],
        results: List[WriteResult],
        signer: Signer,
    ) -> AttestOutcome:
        written = [r for r in results if r.ok]
        failed = [r for r in results if not r.ok]
        logger.info("Wrote %d/%d attestations for %s", len(written), len(results), did)

        if not written:
            return AttestOutcome(
                ok=False,
                status=STATUS_FAILED,
                present=present,
                missing=[r.schema for r in results],
                http_status=500,
                error="Failed to write attestations to blockchain",
                details=[r.to_warning() for r in failed],
                method=method,
                debug=self._debug(did, claimant, signer),
            )

        return AttestOutcome(
            ok=True,
            status=STATUS_READY,
            present=present + [r.schema for r in written],
            missing=[r.schema for r in failed],
            tx_hashes=[r.tx_hash for r in written if r.tx_hash],
            warnings=[r.to_warning() for r in failed],
            method=method,
            debug=self._debug(did, claimant, signer),
        )

    def _debug(self, did: str, claimant: str, signer: Optional[Signer]) -> Optional[Dict[str, Any]]:
        if not self._settings.debug:
            return None
        return {
            "did": did,
            "didHash": did_hash(did),
            "connectedAddress": claimant,
            "activeChain": self._settings.chain.name,
            "chainId": self._settings.chain.chain_id,
            "resolverAddress": self._resolver.address,
            "issuerType": signer.kind if signer else None,
            "issuerAddress": signer.address if signer else None,
        }

    @staticmethod
    def _finish(started: float, outcome: AttestOutcome) -> AttestOutcome:
        outcome.elapsed_ms = int((time.perf_counter() - started) * 1000)
        return outcome


# ----------------------------------------------------------------------
# Wiring from settings
# ----------------------------------------------------------------------
def build_rpc_client(settings: Settings, chain_id: Optional[int] = None) -> JsonRpcClient:
    chain_id = settings.chain.chain_id if chain_id is None else chain_id
    return JsonRpcClient(
        settings.rpc_url_for(chain_id),
        chain_id=chain_id,
        timeout=settings.rpc_timeout,
        max_attempts=settings.rpc_max_attempts,
        retry_delay=settings.rpc_retry_delay,
    )


def build_reader_factory(settings: Settings) -> ReaderFactory:
    def factory(chain_id: int) -> JsonRpcChainReader:
        return JsonRpcChainReader(build_rpc_client(settings, chain_id))

    return factory


def build_did_verifier(settings: Settings) -> DidVerifier:
    web = WebDidVerifier(
        DnsTxtResolver(),
        HttpDocumentFetcher(),
        record_prefix=settings.dns_record_prefix,
        document_timeout=settings.document_timeout,
    )
    return DidVerifier(web, build_reader_factory(settings), min_confirmations=settings.min_confirmations)


def build_orchestrator(settings: Settings) -> AttestationOrchestrator:
    resolver_address = settings.require_resolver()
    rpc = build_rpc_client(settings)
    resolver = ResolverContract(JsonRpcChainReader(rpc), resolver_address)
    return AttestationOrchestrator(
        settings,
        build_did_verifier(settings),
        resolver,
        lambda: select_signer(settings, rpc),
    )


__all__ = [
    "AttestOutcome",
    "AttestationOrchestrator",
    "AttestationStatus",
    "STATUS_FAILED",
    "STATUS_READY",
    "SignerFactory",
    "WriteResult",
    "build_did_verifier",
    "build_orchestrator",
    "build_reader_factory",
    "build_rpc_client",
    "verification_http_status",
]
