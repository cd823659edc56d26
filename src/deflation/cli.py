"""Deflation CLI — command-line interface for the token ledger.

Usage:
    python -m deflation.cli status
    python -m deflation.cli balance 0x1111111111111111111111111111111111111111
    python -m deflation.cli transfer --to 0x1111... --amount 10.5
    python -m deflation.cli stake --from 0x1111... --amount 100 --years 5
    python -m deflation.cli recount init
    python -m deflation.cli recount run
    python -m deflation.cli recount finish
    python -m deflation.cli --at 2030-01-01T00:00:00 claim --from 0x1111... --index 0 --amount 1
    python -m deflation.cli check-invariants

Amounts are decimal token strings. Commands that need an acting account
default to the owner (DEFLATION_OWNER, else the configured genesis owner).
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from deflation.persistence.event_log import EventLog
from deflation.persistence.state_store import StateStore
from deflation.policy.invariants import check_params
from deflation.policy.resolver import PolicyResolver
from deflation.service import TokenService
from deflation.structured_logging import configure_logging
from deflation.units import format_units, to_base_units


ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config"
DEFAULT_DATA = ROOT / "data"


def _make_service(args: argparse.Namespace) -> TokenService:
    """Create a TokenService with durable persistence."""
    data_dir: Path = args.data
    data_dir.mkdir(parents=True, exist_ok=True)
    resolver = PolicyResolver.from_config_dir(args.config)
    return TokenService(
        resolver,
        owner=os.getenv("DEFLATION_OWNER"),
        event_log=EventLog(storage_path=data_dir / "events.jsonl"),
        state_store=StateStore(data_dir / "state.json"),
        now=_at(args),
    )


def _at(args: argparse.Namespace) -> datetime:
    if args.at is None:
        return datetime.now(timezone.utc)
    when = datetime.fromisoformat(args.at)
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return when


def _caller(service: TokenService, value: Optional[str]) -> str:
    return value or service.owner


def _amount(service: TokenService, value: str) -> int:
    return to_base_units(value, service.decimals)


def cmd_status(args: argparse.Namespace) -> int:
    service = _make_service(args)
    status = service.status()
    status["supply_audit"] = service.supply_audit()
    print(json.dumps(status, indent=2, default=str))
    return 0


def cmd_balance(args: argparse.Namespace) -> int:
    service = _make_service(args)
    now = _at(args)
    print(json.dumps({
        "address": args.address,
        "balance": format_units(service.balance_of(args.address, now), service.decimals),
        "raw": format_units(service.raw_balance_of(args.address), service.decimals),
        "exempt": service.is_exempt(args.address),
        "claimable": format_units(
            service.calculate_dividends(args.address, now), service.decimals,
        ),
    }, indent=2))
    return 0


def cmd_transfer(args: argparse.Namespace) -> int:
    service = _make_service(args)
    receipt = service.transfer(
        _caller(service, args.sender),
        args.to,
        _amount(service, args.amount),
        now=_at(args),
    )
    print(
        f"Transferred {format_units(receipt.amount, service.decimals)} {service.symbol} "
        f"to {receipt.recipient} "
        f"(commission {format_units(receipt.commission.total, service.decimals)})"
    )
    return 0


def cmd_approve(args: argparse.Namespace) -> int:
    service = _make_service(args)
    service.approve(
        _caller(service, args.owner),
        args.spender,
        _amount(service, args.amount),
        now=_at(args),
    )
    print(f"Approved {args.spender} for {args.amount} {service.symbol}")
    return 0


def cmd_stake(args: argparse.Namespace) -> int:
    service = _make_service(args)
    positions = service.stake(
        _caller(service, args.sender),
        _amount(service, args.amount),
        args.years,
        referral=args.referral,
        now=_at(args),
    )
    for position in positions:
        print(
            f"Opened {format_units(position.amount, service.decimals)} {service.symbol} "
            f"for {position.lock_years} year(s)"
        )
    return 0


def cmd_extend(args: argparse.Namespace) -> int:
    service = _make_service(args)
    position = service.extend_staking(
        _caller(service, args.sender), args.index, args.years, now=_at(args),
    )
    print(f"Position {args.index} now locked for {position.lock_years} year(s)")
    return 0


def cmd_claim(args: argparse.Namespace) -> int:
    service = _make_service(args)
    receipt = service.claim_dividends(
        _caller(service, args.sender),
        args.index,
        _amount(service, args.amount),
        now=_at(args),
    )
    print(
        f"Claimed {format_units(receipt.amount, service.decimals)} {service.symbol} "
        f"({format_units(receipt.from_dividends, service.decimals)} dividends, "
        f"{format_units(receipt.from_principal, service.decimals)} principal)"
    )
    return 0


def cmd_unlock(args: argparse.Namespace) -> int:
    service = _make_service(args)
    receipt = service.smooth_unlock(
        _caller(service, args.caller), args.owner, args.index, now=_at(args),
    )
    print(
        f"Released {format_units(receipt.released, service.decimals)} {service.symbol}, "
        f"{format_units(receipt.remaining, service.decimals)} remaining"
    )
    return 0


def cmd_refresh(args: argparse.Namespace) -> int:
    service = _make_service(args)
    addresses = args.addresses or service.accounts()
    settlements = service.refresh_balances(
        _caller(service, args.caller), addresses, now=_at(args),
    )
    burned = sum(s.burned for s in settlements)
    print(
        f"Settled {len(settlements)} account(s), "
        f"burned {format_units(burned, service.decimals)} {service.symbol}"
    )
    return 0


def cmd_recount(args: argparse.Namespace) -> int:
    service = _make_service(args)
    caller = _caller(service, args.caller)
    now = _at(args)
    if args.phase == "init":
        service.init_dividend_recount(caller, now=now)
        print("Recount window opened")
    elif args.phase == "run":
        summary = service.recount_dividends(
            caller, args.addresses or service.accounts(), now=now,
        )
        print(
            f"Recounted {summary.positions} position(s) across {summary.accounts} account(s), "
            f"compounded {format_units(summary.compounded, service.decimals)} {service.symbol}"
        )
    else:
        service.finish_dividend_recount(caller, now=now)
        print(f"Recount finished (beta {service.dividend_state.beta_indicator})")
    return 0


def cmd_positions(args: argparse.Namespace) -> int:
    service = _make_service(args)
    positions = [p.to_dict() for p in service.staking_positions(args.address)]
    print(json.dumps(positions, indent=2))
    return 0


def cmd_set_pool(args: argparse.Namespace) -> int:
    service = _make_service(args)
    kind = service.set_pool_address(
        _caller(service, args.caller), args.address, args.type, now=_at(args),
    )
    print(f"{kind.value} pool set to {args.address}")
    return 0


def cmd_set_exempt(args: argparse.Namespace) -> int:
    service = _make_service(args)
    service.set_exempt(
        _caller(service, args.caller), args.address, not args.off, now=_at(args),
    )
    print(f"{args.address} exempt: {not args.off}")
    return 0


def cmd_switch_role(args: argparse.Namespace) -> int:
    service = _make_service(args)
    held = service.switch_role(
        _caller(service, args.caller), args.address, args.role, now=_at(args),
    )
    print(f"{args.address} role {args.role} held: {held}")
    return 0


def cmd_check_invariants(args: argparse.Namespace) -> int:
    """Validate the ledger parameter artifact."""
    errors = check_params(PolicyResolver.from_config_dir(args.config))
    if errors:
        print("Invariant check failed:")
        for err in errors:
            print(f"- {err}")
        return 1
    print("Invariant check passed.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="deflation",
        description="DeflationCoin — decaying-balance token ledger CLI",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help="Path to config directory (default: config/)",
    )
    parser.add_argument(
        "--data",
        type=Path,
        default=DEFAULT_DATA,
        help="Path to state directory (default: data/)",
    )
    parser.add_argument(
        "--at",
        help="Evaluate at this ISO-8601 instant instead of now (UTC if no offset)",
    )
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("status", help="Show ledger status and supply audit")

    p_bal = sub.add_parser("balance", help="Show an account's balances")
    p_bal.add_argument("address")

    p_tx = sub.add_parser("transfer", help="Transfer tokens")
    p_tx.add_argument("--from", dest="sender", help="Sender (default: owner)")
    p_tx.add_argument("--to", required=True, help="Recipient")
    p_tx.add_argument("--amount", required=True, help="Amount in tokens")

    p_ap = sub.add_parser("approve", help="Set a spender allowance")
    p_ap.add_argument("--owner", help="Owner (default: owner)")
    p_ap.add_argument("--spender", required=True)
    p_ap.add_argument("--amount", required=True, help="Amount in tokens")

    p_stake = sub.add_parser("stake", help="Open a stake")
    p_stake.add_argument("--from", dest="sender", help="Staker (default: owner)")
    p_stake.add_argument("--amount", required=True, help="Amount in tokens")
    p_stake.add_argument("--years", required=True, type=int, help="Lock length (1-12)")
    p_stake.add_argument("--referral", help="Referral wallet to record")

    p_ext = sub.add_parser("extend", help="Change a position's lock length")
    p_ext.add_argument("--from", dest="sender", help="Staker (default: owner)")
    p_ext.add_argument("--index", required=True, type=int)
    p_ext.add_argument("--years", required=True, type=int)

    p_claim = sub.add_parser("claim", help="Claim from a position")
    p_claim.add_argument("--from", dest="sender", help="Staker (default: owner)")
    p_claim.add_argument("--index", required=True, type=int)
    p_claim.add_argument("--amount", required=True, help="Amount in tokens")

    p_unlock = sub.add_parser("unlock", help="Release one instalment of a matured position")
    p_unlock.add_argument("--caller", help="Technical operator (default: owner)")
    p_unlock.add_argument("--owner", required=True, help="Position owner")
    p_unlock.add_argument("--index", required=True, type=int)

    p_ref = sub.add_parser("refresh", help="Settle pending decay")
    p_ref.add_argument("--caller", help="Technical operator (default: owner)")
    p_ref.add_argument("addresses", nargs="*", help="Accounts (default: all)")

    p_rc = sub.add_parser("recount", help="Run a dividend recount phase")
    p_rc.add_argument("phase", choices=["init", "run", "finish"])
    p_rc.add_argument("--caller", help="Technical operator (default: owner)")
    p_rc.add_argument("addresses", nargs="*", help="Accounts for 'run' (default: all)")

    p_pos = sub.add_parser("positions", help="List an account's stake positions")
    p_pos.add_argument("address")

    p_pool = sub.add_parser("set-pool", help="Configure a pool address")
    p_pool.add_argument("--caller", help="Admin (default: owner)")
    p_pool.add_argument("--address", required=True)
    p_pool.add_argument(
        "--type", required=True, type=int, choices=[1, 2, 3],
        help="1 = dividend, 2 = marketing, 3 = technical",
    )

    p_ex = sub.add_parser("set-exempt", help="Exempt an account from decay")
    p_ex.add_argument("--caller", help="Admin (default: owner)")
    p_ex.add_argument("--address", required=True)
    p_ex.add_argument("--off", action="store_true", help="Remove the exemption instead")

    p_role = sub.add_parser("switch-role", help="Toggle a role")
    p_role.add_argument("--caller", help="Admin (default: owner)")
    p_role.add_argument("--address", required=True)
    p_role.add_argument(
        "--role", required=True, type=int, choices=[0, 1],
        help="0 = technical, 1 = admin",
    )

    sub.add_parser("check-invariants", help="Validate ledger parameters")

    return parser


def main(argv: list[str] | None = None) -> int:
    load_dotenv(ROOT / ".env")
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    commands = {
        "status": cmd_status,
        "balance": cmd_balance,
        "transfer": cmd_transfer,
        "approve": cmd_approve,
        "stake": cmd_stake,
        "extend": cmd_extend,
        "claim": cmd_claim,
        "unlock": cmd_unlock,
        "refresh": cmd_refresh,
        "recount": cmd_recount,
        "positions": cmd_positions,
        "set-pool": cmd_set_pool,
        "set-exempt": cmd_set_exempt,
        "switch-role": cmd_switch_role,
        "check-invariants": cmd_check_invariants,
    }

    handler = commands.get(args.command)
    if handler is None:
        print(f"Unknown command: {args.command}", file=sys.stderr)
        return 1

    try:
        return handler(args)
    except ValueError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
