from __future__ import annotations

import argparse
import asyncio
import json
import os
import sys
from pathlib import Path
from typing import Any, List, Optional

from pydantic import ValidationError

from backend.app.models import OrderLine
from backend.app.services.quote_engine import calculate_quote
from backend.app.services.vat_client import DEFAULT_REGISTRY_URL, BackoffPolicy, VatClient
from backend.app.utils import extract_json, format_eur
from backend.store import COLLECTIONS


class CLIError(Exception):
    """Raised when user input is invalid."""


def _read_text(path_value: str) -> str:
    path = Path(path_value)
    if not path.exists():
        raise CLIError(f"File not found: {path}")
    return path.read_text(encoding="utf-8")


def _dump(data: Any) -> None:
    print(json.dumps(data, ensure_ascii=False, indent=2))


def _load_order_lines(path_value: str) -> List[OrderLine]:
    try:
        payload = json.loads(_read_text(path_value))
    except json.JSONDecodeError as exc:
        raise CLIError(f"Invalid JSON in {path_value}: {exc.msg} (line {exc.lineno})") from exc
    if isinstance(payload, dict):
        payload = payload.get("lines")
    if not isinstance(payload, list):
        raise CLIError("Expected a JSON array of order lines or an object with a 'lines' array.")
    try:
        return [OrderLine.model_validate(item) for item in payload]
    except ValidationError as exc:
        raise CLIError(f"Invalid order line: {exc.errors()[0]['msg']}") from exc


def cmd_catalog(args: argparse.Namespace) -> None:
    if args.json:
        _dump([c.to_dict() for c in COLLECTIONS])
        return
    for c in COLLECTIONS:
        prices = ", ".join(f"{ct}={format_eur(p)}" for ct, p in zip(c.carats, c.prices))
        print(f"{c.id:<6} {c.label:<26} min {c.min_per_color}/color  {prices}")


def cmd_quote(args: argparse.Namespace) -> None:
    quote = calculate_quote(_load_order_lines(args.path))
    _dump(quote.model_dump(mode="json", by_alias=True))


def cmd_extract(args: argparse.Namespace) -> None:
    _dump(extract_json(_read_text(args.path)))


def cmd_vat(args: argparse.Namespace) -> None:
    client = VatClient(
        registry_url=os.getenv("VAT_REGISTRY_URL", DEFAULT_REGISTRY_URL),
        timeout=float(os.getenv("VAT_TIMEOUT_SECONDS", "10")),
        policy=BackoffPolicy(
            max_attempts=args.max_attempts,
            base_delay=float(os.getenv("VAT_BASE_DELAY", "1.5")),
            max_delay=float(os.getenv("VAT_MAX_DELAY", "30")),
        ),
    )
    verdict = asyncio.run(client.validate(args.number))
    _dump(verdict.model_dump(mode="json", by_alias=True))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="LoveLab quote tooling.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    catalog = subparsers.add_parser("catalog", help="List collections and B2B prices.")
    catalog.add_argument("--json", action="store_true", help="Print the full catalog as JSON.")
    catalog.set_defaults(func=cmd_catalog)

    quote = subparsers.add_parser("quote", help="Price a JSON file of order lines.")
    quote.add_argument("path")
    quote.set_defaults(func=cmd_quote)

    extract = subparsers.add_parser("extract", help="Run the response extractor on a saved AI reply.")
    extract.add_argument("path")
    extract.set_defaults(func=cmd_extract)

    vat = subparsers.add_parser("vat", help="Validate an EU VAT number against VIES.")
    vat.add_argument("number")
    vat.add_argument(
        "--max-attempts",
        type=int,
        default=int(os.getenv("VAT_MAX_ATTEMPTS", "3")),
    )
    vat.set_defaults(func=cmd_vat)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        args.func(args)
    except CLIError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
