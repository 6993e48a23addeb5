"""
Pact owner tooling.

Create a Pact through the factory, check in, or inspect a Pact's on-chain
state and deadline. Signs with the OWNER's key, not the warden's.

Usage:
    python scripts/pact_admin.py create --beneficiary 0x... --interval 86400 --token 0x...
    python scripts/pact_admin.py check-in --pact 0x...
    python scripts/pact_admin.py show --pact 0x...

Environment (.env):
    OWNER_PRIVATE_KEY   owner signing key (0x prefix optional)
    RPC_URL             JSON-RPC endpoint (MONAD_RPC_URL also accepted)
    CHAIN_ID            default 10143
    FACTORY_ADDRESS     PactFactory address (create only)
"""

import os
import sys
import time
import asyncio
import argparse
import logging
from pathlib import Path

from dotenv import load_dotenv
from web3 import Web3

# Add project root to path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

load_dotenv(ROOT / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("warden.pact_admin")

from core.chain import PactLedger
from core.errors import ConfigError, LedgerError
from core.rules import WARDEN_RULES, normalize_private_key


def parse_interval(text: str) -> int:
    """'86400', '36h', '7d', '90m' -> seconds."""
    text = text.strip().lower()
    units = {"s": 1, "m": 60, "h": 3600, "d": 86400, "w": 604800}
    if text and text[-1] in units:
        value, unit = text[:-1], units[text[-1]]
    else:
        value, unit = text, 1
    if not value.isdigit() or int(value) <= 0:
        raise argparse.ArgumentTypeError(f"invalid interval: {text!r}")
    return int(value) * unit


def connect_owner() -> PactLedger:
    key = os.getenv("OWNER_PRIVATE_KEY", "").strip()
    rpc_url = (os.getenv("RPC_URL", "") or os.getenv("MONAD_RPC_URL", "")).strip()
    if not key or not rpc_url:
        logger.error("OWNER_PRIVATE_KEY and RPC_URL must be set in .env")
        sys.exit(1)

    chain_id = int(os.getenv("CHAIN_ID", str(WARDEN_RULES.DEFAULT_CHAIN_ID)))
    w3 = Web3(Web3.HTTPProvider(
        rpc_url, request_kwargs={"timeout": WARDEN_RULES.DEFAULT_RPC_TIMEOUT_SECONDS}
    ))
    try:
        ledger = PactLedger(w3, normalize_private_key(key), chain_id=chain_id)
    except ConfigError as e:
        logger.error(str(e))
        sys.exit(1)
    logger.info(f"Owner: {ledger.address} | chain_id={chain_id}")
    return ledger


# ============================================================
# COMMANDS
# ============================================================

async def cmd_create(args) -> int:
    factory = args.factory or os.getenv("FACTORY_ADDRESS", "")
    if not factory:
        logger.error("FACTORY_ADDRESS not set (or pass --factory)")
        return 1
    ledger = connect_owner()
    logger.info(
        f"Creating pact: beneficiary={args.beneficiary} interval={args.interval}s token={args.token}"
    )
    result = await ledger.create_pact(factory, args.beneficiary, args.interval, args.token)
    if not result.success:
        logger.error(f"createPact failed: {result.error}")
        return 1
    logger.info("=" * 50)
    logger.info("PACT CREATED")
    logger.info(f"Pact: {result.pact_address or '(address not decoded, check the tx)'}")
    logger.info(f"Tx:   {result.tx_hash}")
    logger.info("=" * 50)
    return 0


async def cmd_check_in(args) -> int:
    ledger = connect_owner()
    result = await ledger.check_in(args.pact)
    if not result.success:
        logger.error(f"checkIn failed: {result.error}")
        return 1
    logger.info(f"Checked in on {args.pact}: tx={result.tx_hash}")
    return 0


async def cmd_show(args) -> int:
    ledger = connect_owner()
    try:
        details = await ledger.read_pact_details(args.pact)
        last_check_in = await ledger.read_last_check_in(args.pact)
    except LedgerError as e:
        logger.error(str(e))
        return 1

    now = int(time.time())
    deadline = last_check_in + details.check_in_interval
    remaining = deadline - now
    print(f"Pact:            {details.pact_address}")
    print(f"Protected token: {details.protected_token}")
    print(f"Warden:          {details.warden}")
    print(f"Interval:        {details.check_in_interval}s")
    print(f"Last check-in:   {last_check_in}")
    print(f"Deadline:        {deadline}")
    if remaining >= 0:
        print(f"Status:          active ({remaining}s left)")
    else:
        print(f"Status:          EXPIRED {-remaining}s ago - recoverable by anyone")
    return 0


# ============================================================
# CLI
# ============================================================

def main():
    parser = argparse.ArgumentParser(description="Pact owner tooling")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create a new Pact via the factory")
    create.add_argument("--beneficiary", required=True, help="Beneficiary address")
    create.add_argument("--interval", required=True, type=parse_interval,
                        help="Check-in interval: seconds, or 90m / 36h / 7d / 2w")
    create.add_argument("--token", required=True, help="Protected token address")
    create.add_argument("--factory", default="", help="Factory address (default: FACTORY_ADDRESS)")
    create.set_defaults(func=cmd_create)

    check_in = sub.add_parser("check-in", help="Check in on a Pact you own")
    check_in.add_argument("--pact", required=True, help="Pact address")
    check_in.set_defaults(func=cmd_check_in)

    show = sub.add_parser("show", help="Show a Pact's on-chain state and deadline")
    show.add_argument("--pact", required=True, help="Pact address")
    show.set_defaults(func=cmd_show)

    args = parser.parse_args()
    sys.exit(asyncio.run(args.func(args)))


if __name__ == "__main__":
    main()
