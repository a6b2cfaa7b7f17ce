"""High-level orchestration of a key-matched column transfer."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .batching import chunk, run_in_waves
from .coords import RowAddress, index_to_column, is_coordinate, validate_column_exists
from .errors import OracleFailure
from .io import CellValue, Table, TableStore
from .oracle import Judgment, MatchingOracle
from .reconcile import KeyRecord, MasterIndex, UnmatchedRecord, key_records, reconcile
from .transfer import (
    CellUpdate,
    ColumnMapping,
    Operation,
    TransferEntry,
    TransferSummary,
    check_targets,
    plan_transfer,
    summarize,
)

LOGGER = logging.getLogger(__name__)

DEFAULT_THRESHOLD = 0.8
DEFAULT_BATCH_SIZE = 60
DEFAULT_CONCURRENCY = 3
PREVIEW_VALUES = 20


@dataclass(frozen=True)
class TransferOptions:
    confidence_threshold: float = DEFAULT_THRESHOLD
    batch_size: int = DEFAULT_BATCH_SIZE
    concurrency_limit: int = DEFAULT_CONCURRENCY
    dry_run: bool = False

    def validate(self) -> None:
        if isinstance(self.confidence_threshold, bool) or not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError(f"confidence_threshold must be within [0, 1], got {self.confidence_threshold}")
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {self.batch_size}")
        if self.concurrency_limit < 1:
            raise ValueError(f"concurrency_limit must be >= 1, got {self.concurrency_limit}")


@dataclass(frozen=True)
class ResolvedColumn:
    """A column token checked against a table's header row.

    ``coordinate`` is set when the token addressed the column by letters
    ("D", "D4") rather than by header name.
    """

    token: str
    header: str
    index: int
    coordinate: Optional[str] = None

    @property
    def letters(self) -> str:
        return index_to_column(self.index)


@dataclass
class TransferResult:
    success: bool
    dry_run: bool
    summary: TransferSummary
    mappings: List[TransferEntry] = field(default_factory=list)
    unmatched: List[UnmatchedRecord] = field(default_factory=list)
    updates: List[CellUpdate] = field(default_factory=list)
    updated_ref: Optional[str] = None

    def as_json(self) -> Dict[str, object]:
        return {
            "success": self.success,
            "dryRun": self.dry_run,
            "summary": {
                "totalMasterRows": self.summary.total_master_rows,
                "totalSourceRows": self.summary.total_source_rows,
                "matched": self.summary.matched,
                "unmatched": self.summary.unmatched,
                "averageConfidence": self.summary.average_confidence,
            },
            "mappings": [
                {
                    "masterValue": e.master_value,
                    "sourceValue": e.source_value,
                    "confidence": e.confidence,
                    "masterRow": e.master_row.number,
                    "sourceRow": e.source_row.number,
                    "valuesToTransfer": dict(e.values_to_transfer),
                }
                for e in self.mappings
            ],
            "unmatched": [unmatched_json(u) for u in self.unmatched],
            "updates": [
                {"row": u.row.number, "column": u.column, "value": u.value} for u in self.updates
            ],
            "updatedRef": self.updated_ref,
        }


def unmatched_json(u: UnmatchedRecord) -> Dict[str, object]:
    best = None
    if u.best_candidate is not None:
        best = {"value": u.best_candidate.value, "confidence": u.best_candidate.confidence}
    return {
        "sourceValue": u.source_value,
        "sourceRow": u.source_row.number,
        "kind": u.kind.value,
        "reason": u.reason,
        "bestCandidate": best,
        "detail": u.detail,
    }


@dataclass
class PreviewResult:
    master_values: List[str]
    source_values: List[str]
    total_master_values: int
    total_source_values: int
    estimated_matches: int
    sample_matches: List[Judgment] = field(default_factory=list)
    estimated_accuracy: float = 0.0
    # sample proposals naming a value absent from the master key column
    rejected_samples: int = 0

    def as_json(self) -> Dict[str, object]:
        return {
            "masterValues": self.master_values,
            "sourceValues": self.source_values,
            "totalMasterValues": self.total_master_values,
            "totalSourceValues": self.total_source_values,
            "estimatedMatches": self.estimated_matches,
            "sampleMatches": [
                {
                    "masterValue": j.proposed_master_value,
                    "sourceValue": j.source_value,
                    "confidence": j.confidence,
                    "reasoning": j.rationale,
                }
                for j in self.sample_matches
            ],
            "estimatedAccuracy": self.estimated_accuracy,
            "rejectedSamples": self.rejected_samples,
        }


def resolve(table: Table, token: str, context: str) -> ResolvedColumn:
    """Validate ``token`` against ``table`` (raises ColumnNotFound)."""
    found = validate_column_exists(token, table.headers, context, ref=table.ref)
    coordinate = token.strip().upper() if is_coordinate(token) else None
    return ResolvedColumn(token=token, header=found.header, index=found.index, coordinate=coordinate)


def column_values(store: TableStore, table: Table, column: ResolvedColumn) -> Dict[int, CellValue]:
    """Sheet row number -> cell value for one resolved column."""
    if column.coordinate is None:
        return table.column_values(column.header)
    values, start = store.read_column(table.ref, column.coordinate)
    return {
        RowAddress.from_offset(start, i).number: (v if v.strip() != "" else None)
        for i, v in enumerate(values)
    }


def read_keys(store: TableStore, table: Table, column: ResolvedColumn) -> List[KeyRecord]:
    values = column_values(store, table, column)
    return key_records((RowAddress(n), v) for n, v in sorted(values.items()))


def _unique(values: Sequence[str]) -> List[str]:
    return list(dict.fromkeys(values))


def transfer_data(
    master_ref: str,
    source_ref: str,
    master_key: str,
    source_key: str,
    mappings: Sequence[ColumnMapping],
    store: TableStore,
    oracle: MatchingOracle,
    options: Optional[TransferOptions] = None,
) -> TransferResult:
    """Match source keys to master keys and copy the mapped columns across.

    Every column token is resolved before the oracle is consulted. Proposals
    are verified against the master key column by exact text, so a value the
    oracle invents never reaches the master table. An oracle failure in any
    batch aborts the run before anything is written.
    """
    options = options or TransferOptions()
    options.validate()
    mappings = list(mappings)

    master = store.read_table(master_ref)
    source = store.read_table(source_ref)

    master_col = resolve(master, master_key, "Master key")
    source_col = resolve(source, source_key, "Source key")
    resolved = [
        (m, resolve(source, m.source_column, "Source"), resolve(master, m.master_column, "Target"))
        for m in mappings
    ]
    canonical = [
        ColumnMapping(src.token, dst.letters, m.operation) for m, src, dst in resolved
    ]
    check_targets(canonical)

    master_records = read_keys(store, master, master_col)
    source_records = read_keys(store, source, source_col)
    source_values = {src.token: column_values(store, source, src) for _, src, _ in resolved}
    master_values = {
        dst.letters: column_values(store, master, dst)
        for m, _, dst in resolved
        if m.operation is not Operation.UPDATE
    }
    LOGGER.info(
        "Matching %d source keys (%s) against %d master keys (%s)",
        len(source_records), source_col.header, len(master_records), master_col.header,
    )

    index = MasterIndex.build(master_records)
    master_keys = [r.value for r in master_records]
    chunks = chunk(source_records, options.batch_size)
    threshold = options.confidence_threshold

    def worker(i: int, batch: Sequence[KeyRecord]) -> List[Judgment]:
        LOGGER.debug("Batch %d: rows %s-%s", i + 1, batch[0].row, batch[-1].row)
        judgments = oracle.match_batch(master_keys, [r.value for r in batch], threshold)
        if not isinstance(judgments, list):
            raise OracleFailure(f"oracle returned {type(judgments).__name__}, expected a list")
        return judgments

    run = run_in_waves(chunks, worker, options.concurrency_limit)
    rec = reconcile(chunks, run.completed, index, threshold)

    plan = plan_transfer(rec.matches, canonical, source_values, master_values)
    summary = summarize(len(master.rows), len(source.rows), rec)

    updated_ref = None
    if options.dry_run:
        LOGGER.info("Dry run: %d cell updates staged, nothing written", len(plan.updates))
    elif plan.updates:
        store.write_cells(master_ref, plan.writes())
        updated_ref = master_ref

    LOGGER.info(
        "Matched %d of %d source keys (average confidence %.2f), %d unmatched",
        summary.matched, len(source_records), summary.average_confidence, summary.unmatched,
    )
    return TransferResult(
        success=True,
        dry_run=options.dry_run,
        summary=summary,
        mappings=plan.entries,
        unmatched=rec.unmatched,
        updates=plan.updates,
        updated_ref=updated_ref,
    )


def preview_matching(
    master_ref: str,
    source_ref: str,
    master_key: str,
    source_key: str,
    store: TableStore,
    oracle: MatchingOracle,
) -> PreviewResult:
    """Show what a transfer would match, without touching the master table."""
    master = store.read_table(master_ref)
    source = store.read_table(source_ref)
    master_col = resolve(master, master_key, "Master key")
    source_col = resolve(source, source_key, "Source key")

    master_records = read_keys(store, master, master_col)
    master_unique = _unique([r.value for r in master_records])
    source_unique = _unique([r.value for r in read_keys(store, source, source_col)])

    preview = oracle.preview(master_unique, source_unique)
    index = MasterIndex.build(master_records)
    verified = [j for j in preview.sample_matches if j.proposed_master_value in index]
    rejected = len(preview.sample_matches) - len(verified)
    if rejected:
        LOGGER.warning("Dropped %d preview matches naming values outside the master keys", rejected)

    return PreviewResult(
        master_values=master_unique[:PREVIEW_VALUES],
        source_values=source_unique[:PREVIEW_VALUES],
        total_master_values=len(master_unique),
        total_source_values=len(source_unique),
        estimated_matches=min(len(master_unique), len(source_unique)),
        sample_matches=verified,
        estimated_accuracy=preview.estimated_accuracy,
        rejected_samples=rejected,
    )
