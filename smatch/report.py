"""Machine-readable artefacts of a transfer or preview run."""
from __future__ import annotations

from pathlib import Path
from typing import Iterable, Union

from .pipeline import PreviewResult, TransferResult
from .reconcile import UnmatchedRecord

UNMATCHED_FIELDS = [
    "source_row",
    "source_value",
    "kind",
    "reason",
    "best_candidate",
    "best_confidence",
    "detail",
]


def unmatched_row(record: UnmatchedRecord) -> dict[str, str]:
    best = record.best_candidate
    return {
        "source_row": str(record.source_row),
        "source_value": record.source_value,
        "kind": record.kind.value,
        "reason": record.reason,
        "best_candidate": best.value if best else "",
        "best_confidence": f"{best.confidence:.2f}" if best else "",
        "detail": record.detail,
    }


def write_unmatched_csv(path: Path, records: Iterable[UnmatchedRecord]) -> None:
    import csv

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as handle:
        writer = csv.DictWriter(handle, fieldnames=UNMATCHED_FIELDS)
        writer.writeheader()
        for record in records:
            writer.writerow(unmatched_row(record))


def write_json(path: Path, result: Union[TransferResult, PreviewResult]) -> None:
    import json

    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as handle:
        json.dump(result.as_json(), handle, indent=2, ensure_ascii=False, default=str)


def format_summary(result: TransferResult) -> str:
    s = result.summary
    lines = [
        f"Master rows: {s.total_master_rows}, source rows: {s.total_source_rows}",
        f"Matched: {s.matched}, unmatched: {s.unmatched}, average confidence: {s.average_confidence:.2f}",
    ]
    if result.dry_run:
        lines.append(f"Dry run: {len(result.updates)} cell updates staged, nothing written")
    else:
        lines.append(f"Cell updates: {len(result.updates)}")
    return "\n".join(lines)
