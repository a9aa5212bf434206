import asyncio
from typing import Any, Dict, Optional

import pytest

from didattest.utils.did import build_pkh_did
from didattest.verification.outcome import KIND_MISMATCH, KIND_NOT_FOUND, METHOD_TRANSFER
from didattest.verification.transfer import (
    PURPOSE_COMMERCIAL_TX,
    PURPOSE_SHARED_CONTROL,
    TransferProofVerifier,
    UnsupportedChainError,
    calculate_transfer_amount,
    chain_constants,
    explorer_tx_url,
    format_transfer_amount,
)


CHAIN_ID = 66238
CONTRACT = "0xD1220A0cf47c7B9Be7A2E6BA89F429762e7b9aDb"
DID = f"did:pkh:eip155:{CHAIN_ID}:{CONTRACT}"
CONTROLLER = "0xfB6916095ca1df60bB79Ce92cE3Ea74c37c5d359"
CLAIMANT = "0x5aAeb6053F3E94C9b9A09f33669435E7Ef1BeAed"
TX = "0x" + "ab" * 32


def expected_amount() -> int:
    return calculate_transfer_amount(DID, build_pkh_did(CHAIN_ID, CLAIMANT), CHAIN_ID, PURPOSE_SHARED_CONTROL)


class FakeReader:
    chain_id = CHAIN_ID

    def __init__(self, tx: Optional[Dict[str, Any]] = None, receipt: Optional[Dict[str, Any]] = None, head: int = 0):
        self.tx = tx
        self.receipt = receipt
        self.head = head

    async def get_transaction(self, tx_hash):
        return self.tx

    async def get_transaction_receipt(self, tx_hash):
        return self.receipt

    async def block_number(self):
        return self.head


def run(reader, min_confirmations=0):
    verifier = TransferProofVerifier(reader, min_confirmations=min_confirmations)
    return asyncio.run(verifier.verify(DID, CONTROLLER, CLAIMANT, CHAIN_ID, TX))


def good_tx(**overrides):
    tx = {"from": CONTROLLER.lower(), "to": CLAIMANT.lower(), "value": hex(expected_amount())}
    tx.update(overrides)
    return tx


def test_amount_is_within_range_and_deterministic():
    base, value_range = chain_constants(CHAIN_ID, PURPOSE_SHARED_CONTROL)
    amount = expected_amount()
    assert base <= amount < base + value_range
    assert amount == expected_amount()


def test_amount_ignores_did_case_and_whitespace():
    counterparty = build_pkh_did(CHAIN_ID, CLAIMANT)
    assert calculate_transfer_amount(f"  {DID.upper()} ", counterparty, CHAIN_ID) == expected_amount()


def test_amount_depends_on_counterparty_and_purpose():
    other = calculate_transfer_amount(DID, build_pkh_did(CHAIN_ID, CONTROLLER), CHAIN_ID)
    assert other != expected_amount()
    commercial = calculate_transfer_amount(DID, build_pkh_did(CHAIN_ID, CLAIMANT), CHAIN_ID, PURPOSE_COMMERCIAL_TX)
    base, value_range = chain_constants(CHAIN_ID, PURPOSE_COMMERCIAL_TX)
    assert base <= commercial < base + value_range


def test_unsupported_chain():
    with pytest.raises(UnsupportedChainError):
        calculate_transfer_amount(DID, build_pkh_did(999, CLAIMANT), 999)


def test_format_and_explorer_helpers():
    formatted = format_transfer_amount(10**16, CHAIN_ID)
    assert formatted == {"formatted": "0.01", "symbol": "OMA", "wei": str(10**16)}
    assert explorer_tx_url(1, TX) == f"https://etherscan.io/tx/{TX}"


def test_verified_transfer():
    outcome = run(FakeReader(tx=good_tx(), receipt={"blockNumber": "0x10"}))
    assert outcome.success
    assert outcome.method == METHOD_TRANSFER


def test_missing_transaction_and_missing_receipt_are_distinct():
    missing = run(FakeReader())
    pending = run(FakeReader(tx=good_tx()))
    assert missing.error == "Transaction not found"
    assert pending.error == "Transaction not confirmed"
    assert missing.kind == pending.kind == KIND_NOT_FOUND


def test_confirmation_depth():
    reader = FakeReader(tx=good_tx(), receipt={"blockNumber": hex(9)}, head=10)
    shallow = run(reader, min_confirmations=3)
    assert not shallow.success
    assert shallow.actual == "2"
    assert run(reader, min_confirmations=2).success


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"from": CLAIMANT}, "Wrong sender"),
        ({"to": CONTROLLER}, "Wrong recipient"),
        ({"value": "0x1"}, "Wrong amount"),
    ],
)
def test_mismatches_carry_expected_and_actual(overrides, error):
    outcome = run(FakeReader(tx=good_tx(**overrides), receipt={"blockNumber": "0x1"}))
    assert not outcome.success
    assert outcome.error == error
    assert outcome.kind == KIND_MISMATCH
    assert outcome.expected and outcome.actual


def test_wrong_amount_reports_wei_values():
    outcome = run(FakeReader(tx=good_tx(value="0x1"), receipt={"blockNumber": "0x1"}))
    assert outcome.expected == str(expected_amount())
    assert outcome.actual == "1"
