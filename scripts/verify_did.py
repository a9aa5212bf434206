#!/usr/bin/env python3
import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

# Ensure repository root is on sys.path
CURRENT_DIR = os.path.dirname(os.path.abspath(__file__))
REPO_ROOT = os.path.dirname(CURRENT_DIR)
if REPO_ROOT not in sys.path:
    sys.path.insert(0, REPO_ROOT)

load_dotenv()

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger("didattest.cli")


async def _run(args) -> int:
    from didattest.attest.orchestrator import build_did_verifier, build_orchestrator
    from didattest.config import Settings

    settings = Settings.from_env()
    if args.attest:
        orchestrator = build_orchestrator(settings)
        outcome = await orchestrator.verify_and_attest(args.did, args.address, args.schema or None, args.tx_hash)
        print(json.dumps(outcome.to_response(), indent=2))
        return 0 if outcome.ok else 1

    verifier = build_did_verifier(settings)
    outcome = await verifier.verify(args.did, args.address, args.tx_hash)
    print(json.dumps({"ok": outcome.success, **outcome.to_dict()}, indent=2))
    return 0 if outcome.success else 1


def main():
    parser = argparse.ArgumentParser(description="Verify DID ownership and optionally write the attestation.")
    parser.add_argument("did", help="did:web or did:pkh identifier")
    parser.add_argument("address", help="Claimant wallet address (0x...)")
    parser.add_argument("--tx-hash", dest="tx_hash", help="Transfer-proof transaction hash (did:pkh only)")
    parser.add_argument("--attest", action="store_true", help="Run the full verify-and-attest flow")
    parser.add_argument(
        "--schema",
        action="append",
        help="Required schema id (repeatable, default oma3.ownership.v1)",
    )
    args = parser.parse_args()

    from didattest.errors import DidAttestError

    try:
        code = asyncio.run(_run(args))
    except DidAttestError as exc:
        logger.error("%s: %s", exc.code, exc.detail)
        raise SystemExit(2)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
