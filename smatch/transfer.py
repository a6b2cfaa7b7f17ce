from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from .coords import RowAddress
from .reconcile import MatchDecision, Reconciliation

LOGGER = logging.getLogger(__name__)

CellValue = Any
ColumnValues = Mapping[int, CellValue]  # sheet row number -> value


class Operation(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    SUM = "sum"
    AVERAGE = "average"


@dataclass(frozen=True)
class ColumnMapping:
    """Copy ``source_column`` of the source table into ``master_column`` of the master.

    Either side may be a header name, a bare column ("D") or a cell
    coordinate ("D4").
    """

    source_column: str
    master_column: str
    operation: Operation = Operation.UPDATE

    @classmethod
    def parse(cls, spec: str) -> "ColumnMapping":
        """Parse 'src:dst' or 'src:dst:operation'."""
        parts = [p.strip() for p in spec.split(":")]
        if len(parts) not in (2, 3) or not parts[0] or not parts[1]:
            raise ValueError(f"Invalid mapping '{spec}'. Use src:dst or src:dst:operation.")
        op = Operation.UPDATE
        if len(parts) == 3:
            try:
                op = Operation(parts[2].lower())
            except ValueError:
                choices = ", ".join(o.value for o in Operation)
                raise ValueError(f"Invalid operation '{parts[2]}' in '{spec}'. Choose from: {choices}") from None
        return cls(parts[0], parts[1], op)


@dataclass(frozen=True)
class CellUpdate:
    row: RowAddress
    column: str  # column letters or resolved header name
    value: CellValue


@dataclass
class TransferEntry:
    master_value: str
    source_value: str
    confidence: float
    master_row: RowAddress
    source_row: RowAddress
    values_to_transfer: Dict[str, CellValue] = field(default_factory=dict)


@dataclass
class TransferSummary:
    total_master_rows: int
    total_source_rows: int
    matched: int
    unmatched: int
    average_confidence: float


@dataclass
class TransferPlan:
    updates: List[CellUpdate] = field(default_factory=list)
    entries: List[TransferEntry] = field(default_factory=list)
    # (master row, column) -> confidences of the decisions competing for that cell
    conflicts: Dict[Tuple[int, str], List[float]] = field(default_factory=dict)
    _confidence: List[float] = field(default_factory=list, repr=False)

    def add(self, update: CellUpdate, confidence: float) -> None:
        self.updates.append(update)
        self._confidence.append(confidence)

    def writes(self) -> List[CellUpdate]:
        """One write per cell.

        When several decisions target the same master cell, the one with the
        highest confidence wins; ties go to the earlier decision.
        """
        best: Dict[Tuple[int, str], Tuple[float, int]] = {}
        for pos, (u, conf) in enumerate(zip(self.updates, self._confidence)):
            key = (u.row.number, u.column)
            if key not in best or conf > best[key][0]:
                best[key] = (conf, pos)
        keep = {pos for _, pos in best.values()}
        return [u for pos, u in enumerate(self.updates) if pos in keep]


def as_number(v: CellValue) -> Optional[float]:
    if isinstance(v, bool) or v is None:
        return None
    if isinstance(v, (int, float)):
        return v
    try:
        return float(str(v).strip())
    except ValueError:
        return None


def _is_empty(v: CellValue) -> bool:
    return v is None or str(v).strip() == ""


def apply_operation(op: Operation, source: CellValue, current: CellValue) -> CellValue:
    """Value to write given the incoming source value and the master's current value."""
    if op is Operation.UPDATE:
        return source
    if op is Operation.INSERT:
        return source if _is_empty(current) else current
    if _is_empty(current):
        return source
    if _is_empty(source):
        return current
    s, m = as_number(source), as_number(current)
    if s is None or m is None:
        LOGGER.debug("Non-numeric %s operands %r/%r; using source value", op.value, current, source)
        return source
    total = m + s
    if op is Operation.SUM:
        return total
    return total / 2


def check_targets(mappings: Sequence[ColumnMapping]) -> None:
    """Reject mappings that write the same master column twice."""
    targets = [m.master_column for m in mappings]
    dupes = sorted({t for t in targets if targets.count(t) > 1})
    if dupes:
        raise ValueError(f"Master column(s) mapped more than once: {', '.join(dupes)}")


def plan_transfer(
    decisions: Sequence[MatchDecision],
    mappings: Sequence[ColumnMapping],
    source_values: Mapping[str, ColumnValues],
    master_values: Optional[Mapping[str, ColumnValues]] = None,
) -> TransferPlan:
    """Stage one CellUpdate per (decision, mapping) pair.

    ``source_values`` maps each mapping's ``source_column`` to its values by
    sheet row; a missing value is staged as an explicit None. ``master_values``
    supplies current master cells for insert/sum/average.
    """
    check_targets(mappings)
    plan = TransferPlan()
    seen: Dict[Tuple[int, str], List[float]] = {}
    for d in decisions:
        entry = TransferEntry(
            master_value=d.master_value,
            source_value=d.source_value,
            confidence=d.confidence,
            master_row=d.master_row,
            source_row=d.source_row,
        )
        for m in mappings:
            value = source_values.get(m.source_column, {}).get(d.source_row.number)
            if m.operation is not Operation.UPDATE:
                current = (master_values or {}).get(m.master_column, {}).get(d.master_row.number)
                value = apply_operation(m.operation, value, current)
            entry.values_to_transfer[m.master_column] = value
            plan.add(CellUpdate(d.master_row, m.master_column, value), d.confidence)
            seen.setdefault((d.master_row.number, m.master_column), []).append(d.confidence)
        plan.entries.append(entry)

    plan.conflicts = {k: v for k, v in seen.items() if len(v) > 1}
    if plan.conflicts:
        rows = sorted({r for r, _ in plan.conflicts})
        LOGGER.warning(
            "%d master cells are targeted by more than one source row (master rows %s)",
            len(plan.conflicts), ", ".join(map(str, rows)),
        )
    return plan


def summarize(total_master_rows: int, total_source_rows: int, rec: Reconciliation) -> TransferSummary:
    return TransferSummary(
        total_master_rows=total_master_rows,
        total_source_rows=total_source_rows,
        matched=len(rec.matches),
        unmatched=len(rec.unmatched),
        average_confidence=round(rec.average_confidence, 2),
    )
