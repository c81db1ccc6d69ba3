"""
Command-line interface for verifying and settling x402 exact payments.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, Sequence, Tuple

from .api import (
    ConfigError,
    create_facilitator,
    create_facilitator_client,
    parse_facilitator_request,
    settle_request,
    verify_request,
)
from .core.chain import ChainUnavailableError
from .core.client import FacilitatorUnavailableError
from .core.config import FacilitatorConfig, load_facilitator_config
from .core.payloads import build_facilitator_request, decode_payment_header
from .core.types import PayloadError, PaymentRequirements


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _env_override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _collect_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, value in pairs:
        overrides[key] = value
    return overrides


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="x402-facilitator",
        description="Verify or settle an x402 exact-scheme EVM payment",
    )
    parser.add_argument(
        "command",
        choices=("verify", "settle"),
        help="verify checks the authorization, settle also submits it on-chain",
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument(
        "--request",
        help="Path to a JSON facilitator request with paymentPayload and paymentRequirements",
    )
    source.add_argument(
        "--payment-header",
        help="Base64 X-PAYMENT header value (requires --requirements)",
    )
    parser.add_argument(
        "--requirements",
        help="Path to a JSON file holding the payment requirements",
    )
    parser.add_argument(
        "--remote",
        action="store_true",
        help="Forward the request to X402_FACILITATOR_URL instead of using X402_RPC_URL",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing X402_* settings (default: .env)",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_env_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    return parser


def _read_json(path: str) -> Any:
    return json.loads(Path(path).read_text(encoding="utf-8"))


def _load_request(args: argparse.Namespace) -> Dict[str, Any]:
    if args.request:
        return _read_json(args.request)
    payload = decode_payment_header(args.payment_header)
    requirements = PaymentRequirements.from_dict(_read_json(args.requirements))
    return build_facilitator_request(payload, requirements)


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.payment_header and not args.requirements:
        parser.error("--payment-header requires --requirements")

    _configure_logging(args.log_level)
    overrides = _collect_overrides(args.set or ())

    try:
        config = load_facilitator_config(env_file=args.env_file, overrides=overrides)
    except (ConfigError, ValueError) as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    try:
        body = _load_request(args)
    except (OSError, ValueError) as exc:
        logging.error("Could not read payment request: %s", exc)
        return 1

    try:
        if args.remote:
            result = _run_remote(args.command, config, body)
        else:
            result = asyncio.run(_run_local(args.command, config, body))
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1
    except PayloadError as exc:
        logging.error("Malformed payment request (%s): %s", exc.reason.value, exc)
        return 1
    except (ChainUnavailableError, FacilitatorUnavailableError) as exc:
        logging.error("%s request failed: %s", args.command.capitalize(), exc)
        return 1

    print(json.dumps(result, indent=2))
    accepted = result.get("isValid") if args.command == "verify" else result.get("success")
    return 0 if accepted else 1


def _run_remote(command: str, config: FacilitatorConfig, body: Dict[str, Any]) -> Dict[str, Any]:
    client = create_facilitator_client(config=config)
    payload, requirements = parse_facilitator_request(body)
    if command == "verify":
        return client.verify(payload, requirements).to_dict()
    return client.settle(payload, requirements).to_dict()


async def _run_local(command: str, config: FacilitatorConfig, body: Dict[str, Any]) -> Dict[str, Any]:
    facilitator = create_facilitator(config=config)
    if command == "verify":
        result = await verify_request(facilitator, body)
        if result.is_valid:
            logging.info("Payment payload accepted for payer %s", result.payer)
        return result.to_dict()

    if config.private_key is None:
        raise ConfigError("X402_FACILITATOR_PRIVATE_KEY must be provided to settle")
    settlement = await settle_request(facilitator, body)
    if settlement.success:
        logging.info(
            "Payment settled on %s. Transaction hash: %s",
            settlement.network,
            settlement.transaction,
        )
    return settlement.to_dict()


def main() -> None:
    sys.exit(run_cli())
