"""Turn oracle judgments into verified, row-addressed match decisions.

The oracle is never trusted on its own: every proposal is re-checked against
the confidence threshold and looked up by exact string identity in the master
key universe.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .coords import RowAddress
from .oracle import Candidate, Judgment

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class KeyRecord:
    """A non-empty key cell and the sheet row it was read from."""

    value: str
    row: RowAddress


@dataclass(frozen=True)
class MatchDecision:
    master_value: str
    source_value: str
    confidence: float
    master_row: RowAddress
    source_row: RowAddress


class UnmatchedKind(str, Enum):
    NO_PROPOSAL = "no_proposal"
    BELOW_THRESHOLD = "below_threshold"
    OUT_OF_UNIVERSE = "out_of_universe"
    NOT_PROCESSED = "not_processed"


REASON_NO_PROPOSAL = "no matching master value"
REASON_OUT_OF_UNIVERSE = "oracle proposed an out-of-universe value"
REASON_NOT_PROCESSED = "not processed"


@dataclass(frozen=True)
class UnmatchedRecord:
    source_value: str
    source_row: RowAddress
    kind: UnmatchedKind
    reason: str
    best_candidate: Optional[Candidate] = None
    detail: str = ""  # oracle rationale, when it gave one


# Lookup outcomes against the master key universe
@dataclass(frozen=True)
class Found:
    row: RowAddress


@dataclass(frozen=True)
class NotFound:
    value: str


@dataclass(frozen=True)
class Ambiguous:
    value: str
    rows: Tuple[RowAddress, ...]


Lookup = Union[Found, NotFound, Ambiguous]


class MasterIndex:
    """Exact master key -> rows, built once per pass and read-only afterwards."""

    def __init__(self, rows_by_value: Dict[str, Tuple[RowAddress, ...]]) -> None:
        self._rows = rows_by_value

    @classmethod
    def build(cls, records: Iterable[KeyRecord]) -> "MasterIndex":
        rows: Dict[str, List[RowAddress]] = {}
        for rec in records:
            rows.setdefault(rec.value, []).append(rec.row)
        return cls({k: tuple(v) for k, v in rows.items()})

    def __contains__(self, value: object) -> bool:
        return value in self._rows

    def __len__(self) -> int:
        return len(self._rows)

    def lookup(self, value: str) -> Lookup:
        rows = self._rows.get(value)
        if not rows:
            return NotFound(value)
        if len(rows) > 1:
            return Ambiguous(value, rows)
        return Found(rows[0])

    def bind(self, value: str) -> Optional[RowAddress]:
        """Row a proposal binds to; duplicates bind to their first occurrence."""
        res = self.lookup(value)
        if isinstance(res, Found):
            return res.row
        if isinstance(res, Ambiguous):
            LOGGER.warning(
                "Master key %r appears on rows %s; binding to row %s",
                value, ", ".join(str(r) for r in res.rows), res.rows[0],
            )
            return res.rows[0]
        return None


@dataclass
class Reconciliation:
    matches: List[MatchDecision] = field(default_factory=list)
    unmatched: List[UnmatchedRecord] = field(default_factory=list)

    def extend(self, other: "Reconciliation") -> None:
        self.matches.extend(other.matches)
        self.unmatched.extend(other.unmatched)

    @property
    def average_confidence(self) -> float:
        if not self.matches:
            return 0.0
        return sum(m.confidence for m in self.matches) / len(self.matches)


def _index_judgments(chunk: Sequence[KeyRecord], judgments: Iterable[Judgment]) -> Dict[str, Judgment]:
    wanted = {rec.value for rec in chunk}
    by_value: Dict[str, Judgment] = {}
    for j in judgments:
        if j.source_value not in wanted:
            LOGGER.warning("Oracle judged %r, which is not in this batch; ignoring", j.source_value)
            continue
        if j.source_value in by_value:
            LOGGER.debug("Duplicate judgment for %r; keeping the first", j.source_value)
            continue
        by_value[j.source_value] = j
    return by_value


def judge_record(
    record: KeyRecord,
    judgment: Optional[Judgment],
    index: MasterIndex,
    threshold: float,
) -> Union[MatchDecision, UnmatchedRecord]:
    """Decide one source record. Exactly one outcome per record."""
    if judgment is None:
        return UnmatchedRecord(record.value, record.row, UnmatchedKind.NOT_PROCESSED, REASON_NOT_PROCESSED)

    proposal = judgment.proposed_master_value
    if proposal is None or proposal == "":
        return UnmatchedRecord(
            record.value,
            record.row,
            UnmatchedKind.NO_PROPOSAL,
            REASON_NO_PROPOSAL,
            best_candidate=judgment.best_candidate,
            detail=judgment.rationale,
        )

    if judgment.confidence < threshold:
        return UnmatchedRecord(
            record.value,
            record.row,
            UnmatchedKind.BELOW_THRESHOLD,
            f"confidence {judgment.confidence:.2f} below threshold {threshold:.2f}",
            best_candidate=Candidate(proposal, judgment.confidence),
            detail=judgment.rationale,
        )

    master_row = index.bind(proposal)
    if master_row is None:
        LOGGER.warning("Oracle proposed %r for %r, which is not a master key", proposal, record.value)
        return UnmatchedRecord(
            record.value,
            record.row,
            UnmatchedKind.OUT_OF_UNIVERSE,
            REASON_OUT_OF_UNIVERSE,
            best_candidate=Candidate(proposal, judgment.confidence),
            detail=judgment.rationale,
        )

    return MatchDecision(
        master_value=proposal,
        source_value=record.value,
        confidence=judgment.confidence,
        master_row=master_row,
        source_row=record.row,
    )


def reconcile_chunk(
    chunk: Sequence[KeyRecord],
    judgments: Iterable[Judgment],
    index: MasterIndex,
    threshold: float,
) -> Reconciliation:
    """Reconcile one batch; judgments are matched to records by exact text, not position."""
    by_value = _index_judgments(chunk, judgments)
    out = Reconciliation()
    for rec in chunk:
        outcome = judge_record(rec, by_value.get(rec.value), index, threshold)
        if isinstance(outcome, MatchDecision):
            out.matches.append(outcome)
        else:
            out.unmatched.append(outcome)
    return out


def reconcile(
    chunks: Sequence[Sequence[KeyRecord]],
    judgments_per_chunk: Sequence[Iterable[Judgment]],
    index: MasterIndex,
    threshold: float,
) -> Reconciliation:
    if len(chunks) != len(judgments_per_chunk):
        raise ValueError("one judgment list is required per chunk")
    total = Reconciliation()
    for chunk, judgments in zip(chunks, judgments_per_chunk):
        total.extend(reconcile_chunk(chunk, judgments, index, threshold))
    return total


def key_records(values: Iterable[Tuple[RowAddress, object]]) -> List[KeyRecord]:
    """Build key records from (row, cell) pairs, skipping blank cells."""
    out: List[KeyRecord] = []
    for row, value in values:
        text = "" if value is None else str(value)
        if text.strip() == "":
            continue
        out.append(KeyRecord(text, row))
    return out
