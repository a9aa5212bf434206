import asyncio
from typing import Any, Dict, List, Optional, Tuple

from didattest.errors import TransientNetworkError
from didattest.verification.outcome import KIND_MISMATCH, KIND_NOT_FOUND, METHOD_DNS, METHOD_DOCUMENT
from didattest.verification.web import WebDidVerifier, controller_values, record_tokens


DOMAIN = "example.com"
CLAIMANT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
OTHER = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
THIRD = "0xdbF03B407c01E7cD3CBea99509d93f8DDDC8C6FB"


class FakeTxt:
    def __init__(self, records: Optional[List[str]] = None, error: Optional[Exception] = None):
        self.records = records or []
        self.error = error
        self.names: List[str] = []

    async def resolve_txt(self, name):
        self.names.append(name)
        if self.error:
            raise self.error
        return self.records


class FakeFetcher:
    def __init__(self, status: int = 404, document: Any = None):
        self.status = status
        self.document = document
        self.requests: List[Tuple[str, float]] = []

    async def fetch_json(self, url, *, timeout):
        self.requests.append((url, timeout))
        return self.status, self.document


def verify(txt, fetcher, claimant=CLAIMANT):
    verifier = WebDidVerifier(txt, fetcher, record_prefix="_omatrust", document_timeout=10.0)
    return asyncio.run(verifier.verify(DOMAIN, claimant))


def document(*methods: Dict[str, Any]):
    return {"id": f"did:web:{DOMAIN}", "verificationMethod": list(methods)}


def test_record_parsing_helpers():
    tokens = record_tokens("v=1; controller=eip155:1:0xabc  caip10=eip155:1:0xdef")
    assert tokens == ["v=1", "controller=eip155:1:0xabc", "caip10=eip155:1:0xdef"]
    assert controller_values(tokens) == ["eip155:1:0xabc", "eip155:1:0xdef"]


def test_dns_controller_match_short_circuits_document():
    txt = FakeTxt([f"v=1 controller=eip155:66238:{CLAIMANT.lower()}"])
    fetcher = FakeFetcher()
    outcome = verify(txt, fetcher)
    assert outcome.success and outcome.method == METHOD_DNS
    assert txt.names == ["_omatrust.example.com"]
    assert fetcher.requests == []


def test_legacy_caip10_token_is_accepted():
    outcome = verify(FakeTxt([f"v=1;caip10=eip155:1:{CLAIMANT}"]), FakeFetcher())
    assert outcome.method == METHOD_DNS


def test_document_fallback_via_blockchain_account_id():
    fetcher = FakeFetcher(200, document({"id": "#key-1", "blockchainAccountId": f"eip155:1:{CLAIMANT}"}))
    outcome = verify(FakeTxt([f"v=1 controller=eip155:1:{OTHER}"]), fetcher)
    assert outcome.success and outcome.method == METHOD_DOCUMENT
    assert fetcher.requests == [("https://example.com/.well-known/did.json", 10.0)]


def test_document_public_key_hex():
    fetcher = FakeFetcher(200, document({"id": "#key-1", "publicKeyHex": CLAIMANT[2:].lower()}))
    assert verify(FakeTxt(), fetcher).method == METHOD_DOCUMENT


def test_transient_dns_failure_still_tries_document():
    fetcher = FakeFetcher(200, document({"blockchainAccountId": f"eip155:1:{CLAIMANT}"}))
    outcome = verify(FakeTxt(error=TransientNetworkError("SERVFAIL")), fetcher)
    assert outcome.method == METHOD_DOCUMENT


def test_both_failures_are_combined():
    outcome = verify(FakeTxt(["controller=eip155:1:" + CLAIMANT]), FakeFetcher(404))
    assert not outcome.success
    assert outcome.error == "DID ownership verification failed"
    assert "DNS check: Invalid DNS TXT record format" in outcome.details
    assert "DID document check: DID document not accessible" in outcome.details
    assert outcome.kind == KIND_NOT_FOUND


def test_document_address_mismatch():
    verifier = WebDidVerifier(FakeTxt(), FakeFetcher(200, document({"blockchainAccountId": f"eip155:1:{OTHER}"})))
    outcome = asyncio.run(verifier.verify_document(DOMAIN, CLAIMANT))
    assert outcome.kind == KIND_MISMATCH
    assert outcome.actual == OTHER


def test_dns_mismatch_lists_every_published_controller():
    txt = FakeTxt([f"v=1 controller=eip155:1:{OTHER}; controller=eip155:1:{THIRD}"])
    verifier = WebDidVerifier(txt, FakeFetcher())
    outcome = asyncio.run(verifier.verify_dns(DOMAIN, CLAIMANT))
    assert not outcome.success
    assert outcome.kind == KIND_MISMATCH
    assert outcome.error == "Address mismatch in DNS TXT record"
    assert outcome.expected == CLAIMANT
    for address in (OTHER, THIRD):
        assert address in outcome.actual
        assert address in outcome.details


def test_dns_record_without_controller():
    verifier = WebDidVerifier(FakeTxt(["v=1"]), FakeFetcher())
    outcome = asyncio.run(verifier.verify_dns(DOMAIN, CLAIMANT))
    assert outcome.error == "No controller address in DNS TXT record"


def test_empty_document_methods():
    verifier = WebDidVerifier(FakeTxt(), FakeFetcher(200, {"id": "did:web:example.com"}))
    outcome = asyncio.run(verifier.verify_document(DOMAIN, CLAIMANT))
    assert outcome.error == "No verification methods in DID document"
