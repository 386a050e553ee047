"""Insurance engine command line interface.

Offline tools over a JSON rate table file:
- Grade resolution for an amount
- Conflict check for a candidate effective window

The file holds a list of grade rows (or ``{"entries": [...]}``). Keys may
be snake_case or camelCase.

Usage:
    python -m insurance_engine.cli resolve-grade --table rates.json --amount 63000
    python -m insurance_engine.cli resolve-grade --table rates.json --amount 63000 --date 2024-05-01
    python -m insurance_engine.cli check-conflict --table rates.json --from 2024-04-01
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable

from insurance_engine.calculators import (
    RateTableValidationError,
    RateTableWindow,
    detect_conflict,
    filter_active,
    resolve_standard_reward,
)
from insurance_engine.calculators.rate_table_versions import group_by_window
from insurance_engine.models import InsuranceRateTable

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_CONFLICT = 2
EXIT_BAD_INPUT = 3


def parse_date(s: str) -> date:
    """Parse ISO date string."""
    return date.fromisoformat(s)


def parse_amount(s: str) -> Decimal:
    """Parse a non-negative monetary amount."""
    try:
        amount = Decimal(s)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"invalid amount: {s!r}")
    if amount < 0:
        raise argparse.ArgumentTypeError("amount must be >= 0")
    return amount


def _field(raw: dict[str, Any], name: str, camel: str, default: Any = None) -> Any:
    if name in raw:
        return raw[name]
    return raw.get(camel, default)


def _decimal(value: Any, label: str, *, required: bool = False) -> Decimal | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise RateTableValidationError(f"{label} is required")
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        raise RateTableValidationError(f"{label} is not a number: {value!r}") from None


def _date(value: Any) -> date | None:
    if not value:
        return None
    return date.fromisoformat(str(value)[:10])


def load_table(path: Path) -> list[InsuranceRateTable]:
    """Read rate table rows from a JSON file."""
    raw = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("entries", [])
    if not isinstance(raw, list):
        raise RateTableValidationError("rate table file must hold a list of entries")

    entries = []
    for i, row in enumerate(raw):
        if not isinstance(row, dict):
            raise RateTableValidationError(f"entry {i} is not an object")
        grade = row.get("grade")
        if grade is None:
            raise RateTableValidationError(f"entry {i} has no grade")
        pension_grade = _field(row, "pension_grade", "pensionGrade")
        entries.append(
            InsuranceRateTable(
                grade=int(grade),
                pension_grade=int(pension_grade) if pension_grade is not None else None,
                standard_reward_amount=_decimal(
                    _field(row, "standard_reward_amount", "standardRewardAmount"),
                    f"entry {i} standard_reward_amount",
                    required=True,
                ),
                min_amount=_decimal(
                    _field(row, "min_amount", "minAmount"), f"entry {i} min_amount", required=True
                ),
                max_amount=_decimal(_field(row, "max_amount", "maxAmount"), f"entry {i} max_amount"),
                effective_from=_date(_field(row, "effective_from", "effectiveFrom")) or date.min,
                effective_to=_date(_field(row, "effective_to", "effectiveTo")),
            )
        )
    return entries


def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else str(value)
    return value


class InsuranceCli:
    """Insurance engine command line interface."""

    def __init__(self) -> None:
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m insurance_engine.cli",
            description="Rate table tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        # resolve-grade command
        resolve = subparsers.add_parser(
            "resolve-grade",
            help="Resolve grade and standard reward for an amount",
        )
        resolve.add_argument(
            "--table",
            type=Path,
            required=True,
            help="Rate table JSON file",
        )
        resolve.add_argument(
            "--amount",
            type=parse_amount,
            required=True,
            help="Average monthly reward",
        )
        resolve.add_argument(
            "--date",
            type=parse_date,
            default=None,
            help="Target date (ISO format, default: today)",
        )

        # check-conflict command
        check = subparsers.add_parser(
            "check-conflict",
            help="Check a new effective window against the table's windows",
        )
        check.add_argument(
            "--table",
            type=Path,
            required=True,
            help="Rate table JSON file",
        )
        check.add_argument(
            "--from",
            dest="effective_from",
            type=parse_date,
            required=True,
            help="New effective_from (ISO format)",
        )
        check.add_argument(
            "--to",
            dest="effective_to",
            type=parse_date,
            default=None,
            help="New effective_to (ISO format, default: open-ended)",
        )

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return EXIT_BAD_INPUT

        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "resolve-grade": self._cmd_resolve_grade,
            "check-conflict": self._cmd_check_conflict,
        }
        try:
            return handlers[parsed.command](parsed)
        except (OSError, ValueError, RateTableValidationError) as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return EXIT_BAD_INPUT

    def _cmd_resolve_grade(self, args: argparse.Namespace) -> int:
        """Resolve a grade from the table."""
        as_of_date = args.date or date.today()
        entries = filter_active(load_table(args.table), as_of_date)
        resolution = resolve_standard_reward(args.amount, entries)

        output: dict[str, Any] = {
            "amount": _plain(args.amount),
            "as_of_date": as_of_date.isoformat(),
            "grade": None,
            "pension_grade": None,
            "standard_reward_amount": None,
        }
        if resolution is not None:
            output.update(
                grade=resolution.grade,
                pension_grade=resolution.pension_grade,
                standard_reward_amount=_plain(resolution.standard_reward_amount),
            )
        print(json.dumps(output, indent=2))
        return EXIT_OK if resolution is not None else EXIT_NOT_FOUND

    def _cmd_check_conflict(self, args: argparse.Namespace) -> int:
        """List the decisions needed to publish a new window."""
        new = RateTableWindow(args.effective_from, args.effective_to)
        windows = sorted(group_by_window(load_table(args.table)), key=lambda w: w.effective_from)

        conflicts = []
        for existing in windows:
            conflict = detect_conflict(existing, new)
            if conflict is not None:
                conflicts.append(conflict.to_dict())

        print(json.dumps({"new": new.to_dict(), "conflicts": conflicts}, indent=2))
        return EXIT_CONFLICT if conflicts else EXIT_OK


def main() -> int:
    """Main entry point."""
    return InsuranceCli().run()


if __name__ == "__main__":
    sys.exit(main())
