import asyncio
from typing import List, Optional, Sequence

import pytest

from didattest.attest.orchestrator import AttestationOrchestrator
from didattest.attest.resolver import AttestationStatus, ResolverContract
from didattest.attest.signers import SignerError
from didattest.config import Settings
from didattest.errors import ConfigurationError, FormatError
from didattest.verification.outcome import KIND_FORMAT, KIND_MISMATCH, VerificationOutcome


DID = "did:web:example.com"
CLAIMANT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
RESOLVER = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"
ISSUER = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"


class FakeStatusReader:
    def __init__(self, present: Sequence[str] = ()):
        self.present = set(present)
        self.calls = 0

    async def status(self, did, claimant, required_schemas):
        self.calls += 1
        return AttestationStatus(
            present=[s for s in required_schemas if s in self.present],
            missing=[s for s in required_schemas if s not in self.present],
        )


class FakeVerifier:
    def __init__(self, outcome: VerificationOutcome):
        self.outcome = outcome
        self.calls = []

    async def verify(self, did, claimant, tx_ref=None):
        self.calls.append((did, claimant, tx_ref))
        return self.outcome


class FakeSigner:
    kind = "local-key"
    address = ISSUER

    def __init__(self, script: Optional[List] = None):
        self.script = list(script or [])
        self.sent = []

    async def send(self, call):
        self.sent.append(call)
        result = self.script.pop(0) if self.script else f"0x{len(self.sent):064x}"
        if isinstance(result, Exception):
            raise result
        return result


class SignerFactory:
    def __init__(self, signer=None, error: Optional[Exception] = None):
        self.signer = signer
        self.error = error
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.signer


def build(
    *,
    present=(),
    outcome=VerificationOutcome.ok("dns"),
    signer=None,
    factory=None,
    settings=None,
    sleep=None,
):
    reader = FakeStatusReader(present)
    verifier = FakeVerifier(outcome)
    signer = signer or FakeSigner()
    factory = factory or SignerFactory(signer)
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)

    orchestrator = AttestationOrchestrator(
        settings or Settings(settle_seconds=0),
        verifier,
        ResolverContract(reader=None, address=RESOLVER),
        factory,
        status_reader=reader,
        sleep=sleep or fake_sleep,
    )
    return orchestrator, reader, verifier, signer, factory, sleeps


def run(orchestrator, schemas=("a", "b"), tx_ref=None):
    return asyncio.run(orchestrator.verify_and_attest(DID, CLAIMANT, list(schemas), tx_ref))


def test_fast_path_performs_no_verification_or_writes():
    orchestrator, _, verifier, signer, _, _ = build(present=("a", "b"))
    outcome = run(orchestrator)
    body = outcome.to_response()

    assert outcome.ok and outcome.http_status == 200
    assert body["message"] == "All attestations already exist"
    assert body["attestations"] == {"present": ["a", "b"], "missing": []}
    assert body["elapsed"].endswith("ms")
    assert "debug" not in body
    assert verifier.calls == []
    assert signer.sent == []


def test_verification_failure_keeps_partition():
    failure = VerificationOutcome.fail("Address mismatch in DNS TXT record", "nope", kind=KIND_MISMATCH)
    orchestrator, _, _, signer, _, _ = build(present=("a",), outcome=failure)
    outcome = run(orchestrator)

    assert not outcome.ok
    assert outcome.status == "failed"
    assert outcome.http_status == 403
    assert outcome.present == ["a"] and outcome.missing == ["b"]
    assert outcome.error == "Address mismatch in DNS TXT record"
    assert signer.sent == []


def test_format_failure_maps_to_400():
    failure = VerificationOutcome.fail("Unsupported blockchain", kind=KIND_FORMAT)
    orchestrator, *_ = build(outcome=failure)
    assert run(orchestrator).http_status == 400


def test_writes_every_missing_schema_sequentially():
    orchestrator, _, verifier, signer, _, _ = build(present=("a",))
    outcome = run(orchestrator, schemas=("a", "b", "c"), tx_ref="0xtx")

    assert outcome.ok
    assert outcome.present == ["a", "b", "c"]
    assert outcome.missing == []
    assert len(outcome.tx_hashes) == 2
    assert len(signer.sent) == 2
    assert verifier.calls == [(DID, CLAIMANT, "0xtx")]
    assert all(call.to == RESOLVER for call in signer.sent)


def test_partial_failure_is_success_with_warnings():
    signer = FakeSigner(["0x" + "1" * 64, SignerError("replacement underpriced")])
    orchestrator, *_ = build(signer=signer)
    outcome = run(orchestrator)
    body = outcome.to_response()

    assert outcome.ok and outcome.http_status == 200
    assert body["attestations"] == {"present": ["a"], "missing": ["b"]}
    assert body["txHashes"] == ["0x" + "1" * 64]
    assert body["warnings"] == [{"schema": "b", "error": "replacement underpriced"}]


def test_failed_first_write_does_not_mislabel_later_success():
    signer = FakeSigner([SignerError("nonce too low"), "0x" + "2" * 64])
    orchestrator, *_ = build(signer=signer)
    outcome = run(orchestrator)

    assert outcome.present == ["b"]
    assert outcome.missing == ["a"]


def test_all_writes_failing_is_hard_failure():
    signer = FakeSigner([SignerError("boom"), SignerError("boom again")])
    orchestrator, *_ = build(signer=signer)
    outcome = run(orchestrator)

    assert not outcome.ok
    assert outcome.http_status == 500
    assert outcome.error == "Failed to write attestations to blockchain"
    assert [d["schema"] for d in outcome.details] == ["a", "b"]


def test_signer_selected_once_per_invocation():
    orchestrator, _, _, _, factory, _ = build()
    run(orchestrator, schemas=("a", "b", "c"))
    assert factory.calls == 1


def test_missing_signer_only_fatal_when_writing():
    factory = SignerFactory(error=ConfigurationError("No private key found", code="issuer_key_missing"))
    orchestrator, *_ = build(present=("a", "b"), factory=factory)
    assert run(orchestrator).ok

    orchestrator, *_ = build(factory=factory)
    outcome = run(orchestrator)
    assert not outcome.ok
    assert outcome.http_status == 500
    assert outcome.details == "No private key found"


def test_settle_pause_after_each_successful_write():
    orchestrator, _, _, _, _, sleeps = build(settings=Settings(settle_seconds=2.5))
    run(orchestrator)
    assert sleeps == [2.5, 2.5]


def test_duplicate_and_default_schemas():
    orchestrator, _, _, signer, _, _ = build()
    outcome = run(orchestrator, schemas=("a", "a"))
    assert outcome.present == ["a"]
    assert len(signer.sent) == 1

    orchestrator, *_ = build(present=("oma3.ownership.v1",))
    outcome = asyncio.run(orchestrator.verify_and_attest(DID, CLAIMANT))
    assert outcome.present == ["oma3.ownership.v1"]


def test_debug_details_only_in_debug_mode():
    signer = FakeSigner(["0x" + "1" * 64, SignerError("boom")])
    orchestrator, *_ = build(signer=signer, settings=Settings(settle_seconds=0, debug=True))
    body = run(orchestrator).to_response()

    assert body["debug"]["resolverAddress"] == RESOLVER
    assert body["debug"]["issuerAddress"] == ISSUER
    diagnostics = body["warnings"][0]["diagnostics"]
    assert diagnostics["payload"]["method"] == "upsertDirect"
    assert diagnostics["controllerAddress"].endswith(CLAIMANT.lower()[2:])


@pytest.mark.parametrize("did", ["did:key:abc", "did:pkh:eip155:1:0xzz", "did:pkh:eip155:one:0x" + "1" * 40])
def test_invalid_did_fails_before_any_read(did):
    orchestrator, reader, verifier, *_ = build()
    with pytest.raises(FormatError):
        asyncio.run(orchestrator.verify_and_attest(did, CLAIMANT, ["a"]))
    assert reader.calls == 0
    assert verifier.calls == []
