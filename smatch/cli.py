from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .errors import SmatchError
from .fuzzy import SCORERS, FuzzyMatchingOracle, MatchPolicy, NormalizeOptions
from .io import FileTableStore
from .oracle import OpenAIMatchingOracle
from .pipeline import (
    DEFAULT_BATCH_SIZE,
    DEFAULT_CONCURRENCY,
    DEFAULT_THRESHOLD,
    TransferOptions,
    preview_matching,
    transfer_data,
)
from .report import format_summary, write_json, write_unmatched_csv
from .transfer import ColumnMapping

LOGGER = logging.getLogger(__name__)


def _threshold(raw: str) -> float:
    value = float(raw)
    if not 0.0 <= value <= 1.0:
        raise argparse.ArgumentTypeError(f"threshold must be within 0-1, got {raw}")
    return value


def _positive(raw: str) -> int:
    value = int(raw)
    if value < 1:
        raise argparse.ArgumentTypeError(f"must be >= 1, got {raw}")
    return value


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("master_path", help="Master CSV/XLSX file (receives the values)")
    p.add_argument("source_path", help="Source CSV/XLSX file (provides the values)")
    p.add_argument(
        "--master-key",
        required=True,
        help="Key column in master: header name, column letter (D) or start cell (D4)",
    )
    p.add_argument(
        "--source-key",
        required=True,
        help="Key column in source: header name, column letter (D) or start cell (D4)",
    )
    p.add_argument("--sheet", help="XLSX sheet name (for both files if applicable)")
    p.add_argument(
        "--oracle",
        choices=["openai", "fuzzy"],
        default="openai",
        help="Matcher: openai (semantic, needs OPENAI_API_KEY) or fuzzy (offline rapidfuzz)",
    )
    p.add_argument("--model", help="OpenAI model override (default: $SMATCH_OPENAI_MODEL or gpt-4o-mini)")
    p.add_argument("--scorer", default="smart", choices=SCORERS, help="Scorer for --oracle fuzzy")
    p.add_argument("--top-n", type=int, default=3, help="Top-N candidates considered by --oracle fuzzy")
    p.add_argument("--margin", type=int, default=3, help="Tie-break margin over second best (--oracle fuzzy)")
    p.add_argument("--report", type=Path, help="Write a JSON report of the run to this path")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    p.add_argument("-q", "--quiet", action="store_true", help="Only log warnings and errors")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="smatch",
        description="Match rows between two spreadsheets by key meaning and transfer column values",
    )
    sub = p.add_subparsers(dest="command", required=True)

    t = sub.add_parser("transfer", help="Match keys and copy mapped columns into the master")
    _add_common(t)
    t.add_argument(
        "--map",
        dest="mappings",
        action="append",
        required=True,
        help=(
            "Column mapping 'src:dst[:operation]' with operation one of insert, update (default), "
            "sum, average. Repeat the flag or comma-separate several mappings."
        ),
    )
    t.add_argument("--threshold", type=_threshold, default=DEFAULT_THRESHOLD, help="Minimum confidence (0-1)")
    t.add_argument("--batch-size", type=_positive, default=DEFAULT_BATCH_SIZE, help="Source keys per oracle call")
    t.add_argument("--concurrency", type=_positive, default=DEFAULT_CONCURRENCY, help="Oracle calls in flight per wave")
    t.add_argument("--dry-run", action="store_true", help="Match and plan but write nothing")
    t.add_argument("--output", help="Output file path override (default: <master>.updated.<ext>)")
    t.add_argument("--in-place", action="store_true", help="Write updates into the master file itself")
    t.add_argument("--unmatched-csv", type=Path, help="Write unmatched source keys to this CSV")

    pv = sub.add_parser("preview", help="Show sample matches without writing anything")
    _add_common(pv)
    return p


def parse_mappings(raw: List[str]) -> List[ColumnMapping]:
    specs = [s.strip() for item in raw for s in item.split(",") if s.strip()]
    return [ColumnMapping.parse(s) for s in specs]


def _configure_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _build_oracle(args: argparse.Namespace):
    if args.oracle == "fuzzy":
        return FuzzyMatchingOracle(
            normalize=NormalizeOptions(),
            policy=MatchPolicy(top_n=args.top_n, tie_margin=args.margin, scorer=args.scorer),
        )
    return OpenAIMatchingOracle.from_env(model=args.model)


def _run_transfer(args: argparse.Namespace, parser: argparse.ArgumentParser) -> int:
    try:
        mappings = parse_mappings(args.mappings)
    except ValueError as exc:
        parser.error(str(exc))
    if args.in_place and args.output:
        parser.error("--in-place and --output are mutually exclusive")

    store = FileTableStore(sheet=args.sheet, output_path=args.output, in_place=args.in_place)
    options = TransferOptions(
        confidence_threshold=args.threshold,
        batch_size=args.batch_size,
        concurrency_limit=args.concurrency,
        dry_run=args.dry_run,
    )
    result = transfer_data(
        args.master_path,
        args.source_path,
        args.master_key,
        args.source_key,
        mappings,
        store,
        _build_oracle(args),
        options,
    )

    print(format_summary(result))
    for u in result.unmatched:
        hint = f" (closest: {u.best_candidate.value})" if u.best_candidate else ""
        print(f"  unmatched row {u.source_row}: {u.source_value!r}: {u.reason}{hint}")
    if result.updated_ref is not None:
        print(f"Wrote: {store.target_path(result.updated_ref)}")
    if args.report:
        write_json(args.report, result)
        print(f"Report: {args.report}")
    if args.unmatched_csv:
        write_unmatched_csv(args.unmatched_csv, result.unmatched)
        print(f"Unmatched: {args.unmatched_csv}")
    return 0


def _run_preview(args: argparse.Namespace) -> int:
    store = FileTableStore(sheet=args.sheet)
    result = preview_matching(
        args.master_path,
        args.source_path,
        args.master_key,
        args.source_key,
        store,
        _build_oracle(args),
    )
    print(f"Master values ({result.total_master_values}): {', '.join(result.master_values)}")
    print(f"Source values ({result.total_source_values}): {', '.join(result.source_values)}")
    print(f"Estimated matches: {result.estimated_matches}")
    for j in result.sample_matches:
        print(f"  {j.source_value!r} -> {j.proposed_master_value!r} ({j.confidence:.2f})")
    print(f"Estimated accuracy: {result.estimated_accuracy:.2f}")
    if args.report:
        write_json(args.report, result)
        print(f"Report: {args.report}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    _configure_logging(args)
    try:
        if args.command == "transfer":
            return _run_transfer(args, parser)
        return _run_preview(args)
    except SmatchError as exc:
        LOGGER.debug("Run failed", exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except ValueError as exc:
        # invalid option combinations only detectable once the tables are known
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
