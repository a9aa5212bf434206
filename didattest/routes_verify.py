from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .attest.orchestrator import build_did_verifier, build_orchestrator, verification_http_status
from .config import Settings
from .errors import FormatError, NotFoundError
from .utils.caip10 import Caip10Error, is_evm_address, normalize_caip10
from .utils.did import PkhDid, build_pkh_did, parse_did
from .verification.transfer import PURPOSE_SHARED_CONTROL, calculate_transfer_amount, format_transfer_amount


logger = logging.getLogger("didattest.routes.verify")

router = APIRouter(prefix="/api", tags=["verify"])


class VerifyAndAttestRequest(BaseModel):
    did: str = Field(description="did:web or did:pkh identifier being claimed")
    connectedAddress: str = Field(description="Claimant EVM address (0x + 40 hex)")
    requiredSchemas: Optional[List[str]] = Field(default=None, description="Schemas that must be attested")
    txHash: Optional[str] = Field(default=None, description="Transfer-proof transaction for did:pkh")


class VerifyDidRequest(BaseModel):
    did: str
    connectedAddress: str
    txHash: Optional[str] = None


class DiscoverRequest(BaseModel):
    did: str


class DiscoverResponse(BaseModel):
    ok: bool
    controllingWallet: str
    chainId: int
    contractAddress: str


class TransferAmountResponse(BaseModel):
    chainId: int
    amountWei: str
    formatted: str
    symbol: str
    recipient: str
    purpose: str


class NormalizeRequest(BaseModel):
    value: str


class NormalizeResponse(BaseModel):
    valid: bool
    normalized: Optional[str] = None
    error: Optional[str] = None
    code: Optional[str] = None


def get_settings() -> Settings:
    return Settings.from_env()


def _require_fields(did: str, address: str) -> None:
    if not did or not did.strip() or not address:
        raise FormatError("Missing required fields: did and connectedAddress", code="missing_fields")
    if not is_evm_address(address):
        raise FormatError("Invalid connectedAddress: expected 0x followed by 40 hex characters", code="invalid_address")


@router.post("/verify-and-attest")
async def verify_and_attest(payload: VerifyAndAttestRequest) -> JSONResponse:
    _require_fields(payload.did, payload.connectedAddress)
    did = payload.did.strip()
    parse_did(did)

    orchestrator = build_orchestrator(get_settings())
    outcome = await orchestrator.verify_and_attest(
        did,
        payload.connectedAddress,
        payload.requiredSchemas,
        payload.txHash,
    )
    return JSONResponse(status_code=outcome.http_status, content=outcome.to_response())


@router.post("/verify-did")
async def verify_did(payload: VerifyDidRequest) -> JSONResponse:
    _require_fields(payload.did, payload.connectedAddress)
    started = time.perf_counter()

    verifier = build_did_verifier(get_settings())
    outcome = await verifier.verify(payload.did.strip(), payload.connectedAddress, payload.txHash)

    body: Dict[str, Any] = {"ok": outcome.success}
    body.update({k: v for k, v in outcome.to_dict().items() if k in {"method", "error", "details"}})
    body["elapsed"] = f"{int((time.perf_counter() - started) * 1000)}ms"
    return JSONResponse(status_code=200 if outcome.success else verification_http_status(outcome.kind), content=body)


@router.post("/discover-controlling-wallet", response_model=DiscoverResponse)
async def discover_controlling_wallet(payload: DiscoverRequest) -> DiscoverResponse:
    did = (payload.did or "").strip()
    parsed = parse_did(did)
    if not isinstance(parsed, PkhDid):
        raise FormatError("Controlling wallet discovery requires a did:pkh DID", code="invalid_did_format")

    verifier = build_did_verifier(get_settings())
    controller = await verifier.discover_controller(did)
    if not controller:
        logger.info("No controlling wallet found for %s", did)
        raise NotFoundError(
            "Contract does not have standard ownership functions (owner, admin, getOwner) "
            "or EIP-1967 proxy admin slot",
            code="controller_not_found",
        )

    account = normalize_caip10(str(parsed.account))
    return DiscoverResponse(
        ok=True,
        controllingWallet=controller,
        chainId=int(account.reference),
        contractAddress=account.address,
    )


@router.get("/transfer-amount", response_model=TransferAmountResponse)
def transfer_amount(
    did: str = Query(..., description="did:pkh of the contract"),
    address: str = Query(..., description="Claimant wallet receiving the transfer"),
) -> TransferAmountResponse:
    _require_fields(did, address)
    parsed = parse_did(did.strip())
    if not isinstance(parsed, PkhDid) or parsed.account.namespace != "eip155":
        raise FormatError("Transfer proofs require an eip155 did:pkh DID", code="invalid_did_format")

    chain_id = int(normalize_caip10(str(parsed.account)).reference)
    amount = calculate_transfer_amount(did.strip(), build_pkh_did(chain_id, address), chain_id, PURPOSE_SHARED_CONTROL)
    formatted = format_transfer_amount(amount, chain_id)
    return TransferAmountResponse(
        chainId=chain_id,
        amountWei=str(amount),
        formatted=formatted["formatted"],
        symbol=formatted["symbol"],
        recipient=address,
        purpose=PURPOSE_SHARED_CONTROL,
    )


@router.post("/caip10/normalize", response_model=NormalizeResponse)
def normalize(payload: NormalizeRequest) -> NormalizeResponse:
    try:
        account = normalize_caip10(payload.value)
    except Caip10Error as exc:
        return NormalizeResponse(valid=False, error=exc.detail, code=exc.code)
    return NormalizeResponse(valid=True, normalized=str(account))


@router.get("/config")
def read_config() -> Dict[str, Any]:
    return get_settings().describe()
