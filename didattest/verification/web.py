"""did:web ownership checks: a DNS TXT record first, then the hosted DID document."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Protocol, Tuple

import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx

from ..errors import NotFoundError, TransientNetworkError
from ..utils.caip10 import addresses_equal
from .outcome import (
    KIND_FORMAT,
    KIND_MISMATCH,
    KIND_NOT_FOUND,
    KIND_TRANSIENT,
    METHOD_DNS,
    METHOD_DOCUMENT,
    VerificationOutcome,
)


logger = logging.getLogger("didattest.verification.web")

DID_DOCUMENT_PATH = "/.well-known/did.json"
RECORD_VERSION_TOKEN = "v=1"
CONTROLLER_PREFIXES = ("controller=", "caip10=")
EXAMPLE_CONTROLLER_NAMESPACE = "eip155:66238"

_TOKEN_SPLIT_RE = re.compile(r"[;\s]+")


class TxtResolver(Protocol):
    async def resolve_txt(self, name: str) -> List[str]: ...


class DocumentFetcher(Protocol):
    async def fetch_json(self, url: str, *, timeout: float) -> Tuple[int, Any]: ...


class DnsTxtResolver:
    """TXT lookups via dnspython. Missing names resolve to an empty list."""

    def __init__(self, lifetime: float = 5.0) -> None:
        self._lifetime = lifetime

    async def resolve_txt(self, name: str) -> List[str]:
        try:
            answer = await dns.asyncresolver.resolve(name, "TXT", lifetime=self._lifetime)
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return []
        except dns.exception.DNSException as exc:
            raise TransientNetworkError(f"DNS lookup for {name} failed: {exc}") from exc
        records: List[str] = []
        for rdata in answer:
            # Long TXT values arrive as several character-strings
            records.append("".join(chunk.decode("utf-8", "replace") for chunk in rdata.strings))
        return records


class HttpDocumentFetcher:
    def __init__(self, client: Optional[httpx.AsyncClient] = None) -> None:
        self._client = client

    async def fetch_json(self, url: str, *, timeout: float) -> Tuple[int, Any]:
        headers = {"Accept": "application/json"}
        try:
            if self._client is not None:
                response = await self._client.get(url, headers=headers, timeout=timeout)
            else:
                async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
                    response = await client.get(url, headers=headers)
        except httpx.HTTPError as exc:
            raise TransientNetworkError(f"Failed to fetch {url}: {exc}") from exc
        if not response.is_success:
            return response.status_code, None
        return response.status_code, response.json()


def record_tokens(record: str) -> List[str]:
    """Split a TXT value on ';' or whitespace into trimmed, non-empty tokens."""
    return [token.strip() for token in _TOKEN_SPLIT_RE.split(record) if token.strip()]


def controller_values(tokens: List[str]) -> List[str]:
    values: List[str] = []
    for token in tokens:
        for prefix in CONTROLLER_PREFIXES:
            if token.startswith(prefix):
                values.append(token[len(prefix):].strip())
                break
    return values


def _caip10_address(value: str) -> Optional[str]:
    parts = value.split(":")
    if len(parts) != 3:
        return None
    return parts[2]


def _example_record(claimant: str) -> str:
    return f"v=1 controller={EXAMPLE_CONTROLLER_NAMESPACE}:{claimant}"


class WebDidVerifier:
    def __init__(
        self,
        resolver: TxtResolver,
        fetcher: DocumentFetcher,
        *,
        record_prefix: str = "_omatrust",
        document_timeout: float = 10.0,
    ) -> None:
        self._resolver = resolver
        self._fetcher = fetcher
        self._record_prefix = record_prefix
        self._document_timeout = document_timeout

    def record_name(self, domain: str) -> str:
        return f"{self._record_prefix}.{domain}"

    @staticmethod
    def document_url(domain: str) -> str:
        return f"https://{domain}{DID_DOCUMENT_PATH}"

    async def verify(self, domain: str, claimant: str) -> VerificationOutcome:
        dns_outcome = await self.verify_dns(domain, claimant)
        if dns_outcome.success:
            return dns_outcome

        logger.info("DNS verification for %s failed (%s); trying DID document", domain, dns_outcome.error)
        doc_outcome = await self.verify_document(domain, claimant)
        if doc_outcome.success:
            return doc_outcome

        return VerificationOutcome.fail(
            "DID ownership verification failed",
            f"DNS check: {dns_outcome.error or 'Failed'}. "
            f"DID document check: {doc_outcome.error or 'Failed'}. "
            f"Ensure you have either: 1) DNS TXT record at {self.record_name(domain)} with value "
            f'"{_example_record(claimant)}" OR 2) DID document at {self.document_url(domain)} '
            "with your address in verificationMethod",
            kind=doc_outcome.kind or dns_outcome.kind or KIND_NOT_FOUND,
        )

    async def verify_dns(self, domain: str, claimant: str) -> VerificationOutcome:
        name = self.record_name(domain)
        try:
            records = await self._resolver.resolve_txt(name)
        except (TransientNetworkError, NotFoundError) as exc:
            logger.info("DNS TXT lookup for %s failed: %s", name, exc.detail)
            return VerificationOutcome.fail(
                "DNS lookup failed",
                f"Failed to query DNS TXT record at {name}: {exc.detail}",
                kind=KIND_TRANSIENT,
            )

        if not records:
            return VerificationOutcome.fail(
                "No DNS TXT record found",
                f"No TXT record found at {name}. Create a TXT record with value: {_example_record(claimant)}",
                kind=KIND_NOT_FOUND,
            )

        versioned = False
        found: List[str] = []
        for record in records:
            tokens = record_tokens(record)
            if RECORD_VERSION_TOKEN not in tokens:
                logger.debug("Skipping TXT record without %s: %s", RECORD_VERSION_TOKEN, record)
                continue
            versioned = True
            for value in controller_values(tokens):
                address = _caip10_address(value)
                if address is None:
                    continue
                found.append(address)
                if addresses_equal(address, claimant):
                    logger.info("DNS TXT controller match for %s", domain)
                    return VerificationOutcome.ok(METHOD_DNS)

        if not versioned:
            return VerificationOutcome.fail(
                "Invalid DNS TXT record format",
                f'Found TXT record at {name} but missing "v=1". Record should be: {_example_record(claimant)}',
                kind=KIND_FORMAT,
            )
        if not found:
            return VerificationOutcome.fail(
                "No controller address in DNS TXT record",
                f"Found valid TXT record at {name} but no controller address. "
                f"Add: controller={EXAMPLE_CONTROLLER_NAMESPACE}:{claimant}",
                kind=KIND_NOT_FOUND,
            )
        return VerificationOutcome.fail(
            "Address mismatch in DNS TXT record",
            f"Found addresses [{', '.join(found)}] in TXT record at {name}, but expected {claimant}",
            kind=KIND_MISMATCH,
            expected=claimant,
            actual=", ".join(found),
        )

    async def verify_document(self, domain: str, claimant: str) -> VerificationOutcome:
        url = self.document_url(domain)
        try:
            status, document = await self._fetcher.fetch_json(url, timeout=self._document_timeout)
        except (TransientNetworkError, ValueError) as exc:
            detail = getattr(exc, "detail", None) or str(exc)
            return VerificationOutcome.fail(
                "DID document fetch failed",
                f"Failed to fetch or parse DID document at {url}: {detail}",
                kind=KIND_TRANSIENT,
            )

        if status < 200 or status >= 300:
            return VerificationOutcome.fail(
                "DID document not accessible",
                f"Failed to fetch DID document at {url}: HTTP {status}. "
                "Ensure the file exists and is publicly accessible.",
                kind=KIND_NOT_FOUND,
            )

        methods = document.get("verificationMethod") if isinstance(document, dict) else None
        if not isinstance(methods, list) or not methods:
            return VerificationOutcome.fail(
                "No verification methods in DID document",
                f"DID document at {url} exists but has no verificationMethod array. "
                "Add a verification method with your address.",
                kind=KIND_NOT_FOUND,
            )

        found: List[str] = []
        for entry in methods:
            if not isinstance(entry, dict):
                continue
            for address in _entry_addresses(entry):
                found.append(address)
                if addresses_equal(address, claimant):
                    logger.info("DID document controller match for %s", domain)
                    return VerificationOutcome.ok(METHOD_DOCUMENT)

        return VerificationOutcome.fail(
            "Address not found in DID document",
            f"Found addresses [{', '.join(found)}] in DID document at {url}, but expected {claimant}. "
            "Update your verificationMethod to include your address.",
            kind=KIND_MISMATCH,
            expected=claimant,
            actual=", ".join(found),
        )


def _entry_addresses(entry: Dict[str, Any]) -> List[str]:
    addresses: List[str] = []
    account = entry.get("blockchainAccountId")
    if isinstance(account, str):
        address = _caip10_address(account)
        if address:
            addresses.append(address)
    public_key_hex = entry.get("publicKeyHex")
    if isinstance(public_key_hex, str) and public_key_hex:
        addresses.append("0x" + public_key_hex.removeprefix("0x"))
    return addresses


__all__ = [
    "DID_DOCUMENT_PATH",
    "DnsTxtResolver",
    "DocumentFetcher",
    "HttpDocumentFetcher",
    "TxtResolver",
    "WebDidVerifier",
    "controller_values",
    "record_tokens",
]
