from __future__ import annotations

import csv
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, Union

import pandas as pd

from .coords import (
    RowAddress,
    column_to_index,
    index_to_column,
    parse_coordinate,
    validate_column_exists,
)
from .errors import SourceEmpty, SourceUnavailable, WriteRejected, WriteUnauthorized

LOGGER = logging.getLogger(__name__)

CellValue = Union[str, int, float, None]
Grid = List[List[CellValue]]

EXCEL_EXTENSIONS = {".xlsx", ".xlsm", ".xltx", ".xltm"}
# First cells of banner rows that sit above the real header row.
BANNER_MARKERS = ("MOHON", "ERROR", "PERBAIKAN")
HEADER_SCAN_LIMIT = 10


@dataclass
class Table:
    """A sheet loaded as header-keyed rows.

    Data row ``i`` sits at sheet row ``header_row + 1 + i``.
    """

    ref: str
    headers: List[str]
    rows: List[Dict[str, CellValue]]
    header_row: RowAddress = field(default_factory=lambda: RowAddress(1))
    sheet_name: Optional[str] = None

    @property
    def first_data_row(self) -> RowAddress:
        return self.header_row.next()

    def row_address(self, position: int) -> RowAddress:
        return RowAddress.from_offset(self.first_data_row, position)

    def row_at(self, address: RowAddress) -> Optional[Dict[str, CellValue]]:
        pos = address.offset_from(self.first_data_row)
        if 0 <= pos < len(self.rows):
            return self.rows[pos]
        return None

    def column_values(self, header: str) -> Dict[int, CellValue]:
        """Row number -> value for one column."""
        return {
            self.row_address(i).number: row.get(header)
            for i, row in enumerate(self.rows)
        }


class TableStore(Protocol):
    def read_table(self, ref: str) -> Table: ...

    def read_column(self, ref: str, coordinate: str) -> Tuple[List[str], RowAddress]: ...

    def write_cells(self, ref: str, updates: Sequence[Any]) -> None: ...


def cell_value(v: Any) -> CellValue:
    """Normalise a raw cell: blanks and NaN become None, integral floats become ints."""
    if v is None:
        return None
    if isinstance(v, float):
        if math.isnan(v):
            return None
        if v.is_integer():
            return int(v)
        return v
    if isinstance(v, (int, str)):
        if isinstance(v, str) and v.strip() == "":
            return None
        return v
    try:
        if pd.isna(v):
            return None
    except (TypeError, ValueError):
        pass
    return str(v)


def cell_text(v: CellValue) -> str:
    return "" if v is None else str(v)


def _row_is_blank(row: Sequence[CellValue]) -> bool:
    return all(cell_text(c).strip() == "" for c in row)


def detect_header_row(grid: Grid) -> int:
    """Return the 0-based grid position of the header row.

    Skips leading blank rows and banner rows whose first cell carries one of
    BANNER_MARKERS; falls back to the first row.
    """
    for i, row in enumerate(grid[:HEADER_SCAN_LIMIT]):
        if _row_is_blank(row):
            continue
        first = cell_text(row[0]).upper() if row else ""
        if not any(marker in first for marker in BANNER_MARKERS):
            return i
    return 0


def _unique_headers(raw: Sequence[CellValue]) -> List[str]:
    headers: List[str] = []
    seen: Dict[str, int] = {}
    for i, h in enumerate(raw):
        name = cell_text(h).strip() or index_to_column(i)
        if name in seen:
            seen[name] += 1
            LOGGER.warning("Duplicate header %r at column %s", name, index_to_column(i))
            name = f"{name}.{seen[name]}"
        else:
            seen[name] = 0
        headers.append(name)
    return headers


def grid_to_table(ref: str, grid: Grid, sheet_name: Optional[str] = None) -> Table:
    if not grid or all(_row_is_blank(r) for r in grid):
        raise SourceEmpty(ref)
    hpos = detect_header_row(grid)
    headers = _unique_headers(grid[hpos])
    rows: List[Dict[str, CellValue]] = []
    for raw in grid[hpos + 1:]:
        rows.append({h: (raw[j] if j < len(raw) else None) for j, h in enumerate(headers)})
    header_row = RowAddress(hpos + 1)
    LOGGER.info(
        "Read %s: header row %s, %d columns, %d data rows",
        ref, header_row, len(headers), len(rows),
    )
    return Table(ref=ref, headers=headers, rows=rows, header_row=header_row, sheet_name=sheet_name)


def frame_to_grid(df: pd.DataFrame) -> Grid:
    grid = [[cell_value(v) for v in row] for row in df.astype(object).values.tolist()]
    while grid and _row_is_blank(grid[-1]):
        grid.pop()
    return grid


def _column_index(table: Table, column: str) -> int:
    return validate_column_exists(column, table.headers, "Target", ref=table.ref).index


def _group_by_row(table: Table, updates: Iterable[Any]) -> Dict[int, Dict[int, CellValue]]:
    by_row: Dict[int, Dict[int, CellValue]] = {}
    for u in updates:
        col = _column_index(table, u.column)
        by_row.setdefault(int(u.row), {})[col] = u.value
    return by_row


class GridTableStore:
    """Shared read/write logic for stores backed by a 2-D cell grid."""

    def _load_grid(self, ref: str) -> Tuple[Grid, Optional[str]]:
        raise NotImplementedError

    def read_table(self, ref: str) -> Table:
        grid, sheet = self._load_grid(ref)
        return grid_to_table(ref, grid, sheet_name=sheet)

    def read_column(self, ref: str, coordinate: str) -> Tuple[List[str], RowAddress]:
        """Read one column by coordinate.

        "D4" reads column D from sheet row 4 downward; a bare "D" reads the
        data region below the detected header row. Returns the values as
        strings (blank cells kept as "" for alignment) and the start row.
        """
        cref = parse_coordinate(coordinate)
        if cref is None:
            raise ValueError(f"Invalid coordinate format: {coordinate}")
        grid, _ = self._load_grid(ref)
        if cref.row is not None:
            start = RowAddress(cref.row)
        else:
            if not grid:
                raise SourceEmpty(ref)
            start = RowAddress(detect_header_row(grid) + 2)
        col = column_to_index(cref.column)
        values = [
            cell_text(row[col]) if col < len(row) else ""
            for row in grid[start.number - 1:]
        ]
        while values and values[-1].strip() == "":
            values.pop()
        LOGGER.debug("Read column %s of %s from row %s: %d values", cref.column, ref, start, len(values))
        return values, start


class MemoryTableStore(GridTableStore):
    """In-memory grids keyed by ref; writes mutate the grid."""

    def __init__(self, grids: Optional[Dict[str, Grid]] = None) -> None:
        self.grids: Dict[str, Grid] = {k: [list(r) for r in v] for k, v in (grids or {}).items()}
        self.write_calls: List[Tuple[str, int]] = []

    def _load_grid(self, ref: str) -> Tuple[Grid, Optional[str]]:
        if ref not in self.grids:
            raise SourceUnavailable(ref, "no such table")
        return [[cell_value(v) for v in r] for r in self.grids[ref]], None

    def write_cells(self, ref: str, updates: Sequence[Any]) -> None:
        if not updates:
            return
        table = self.read_table(ref)
        grid = self.grids[ref]
        for row_no, cols in _group_by_row(table, updates).items():
            while len(grid) < row_no:
                grid.append([])
            row = grid[row_no - 1]
            for col, value in cols.items():
                while len(row) <= col:
                    row.append(None)
                row[col] = value
        self.write_calls.append((ref, len(updates)))


def default_output_path(base_input_path: Path) -> Path:
    """Return the default updated-copy path next to the input.

    e.g., master.csv -> master.updated.csv; book.xlsx -> book.updated.xlsx
    """
    return base_input_path.with_name(
        f"{base_input_path.stem}.updated{base_input_path.suffix}"
    )


def _csv_width(path: Path) -> int:
    """Field count of the widest line."""
    with path.open(newline="", encoding="utf-8") as handle:
        return max((len(row) for row in csv.reader(handle)), default=0)


def read_grid(path: Union[str, Path], sheet: Optional[str] = None) -> Tuple[Grid, Optional[str]]:
    """Read CSV or XLSX without header inference. Uses first sheet by default.

    Raises:
        SourceUnavailable: If the file is missing, unreadable or the extension unsupported.
    """
    p = Path(path)
    if not p.exists():
        raise SourceUnavailable(str(p), "file not found")
    ext = p.suffix.lower()
    try:
        if ext == ".csv":
            # Banner lines above the header may hold fewer fields than the table
            width = _csv_width(p)
            if width == 0:
                raise SourceEmpty(str(p))
            df = pd.read_csv(
                p,
                header=None,
                names=range(width),
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=False,
            )
            return frame_to_grid(df), None
        if ext in EXCEL_EXTENSIONS:
            with pd.ExcelFile(p) as xls:
                if not xls.sheet_names:
                    raise SourceEmpty(str(p), "workbook has no sheets")
                name = sheet if sheet is not None else xls.sheet_names[0]
                if name not in xls.sheet_names:
                    raise SourceUnavailable(
                        str(p), f"sheet '{name}' not found; sheets: {', '.join(map(str, xls.sheet_names))}"
                    )
                df = xls.parse(name, header=None)
            return frame_to_grid(df), str(name)
    except pd.errors.EmptyDataError:
        raise SourceEmpty(str(p))
    except (pd.errors.ParserError, OSError, ValueError) as exc:
        raise SourceUnavailable(str(p), str(exc)) from exc
    raise SourceUnavailable(str(p), f"unsupported file extension: {ext}")


class FileTableStore(GridTableStore):
    """CSV/XLSX files as tables.

    Writes go to ``output_path`` (or ``<stem>.updated<ext>``) unless
    ``in_place`` is set. Successive writes to the same ref accumulate in the
    output file.
    """

    def __init__(
        self,
        sheet: Optional[str] = None,
        output_path: Optional[Union[str, Path]] = None,
        in_place: bool = False,
    ) -> None:
        self.sheet = sheet
        self.output_path = Path(output_path) if output_path else None
        self.in_place = in_place
        self._written: Dict[str, Path] = {}

    def target_path(self, ref: str) -> Path:
        if self.in_place:
            return Path(ref)
        if self.output_path is not None:
            return self.output_path
        return default_output_path(Path(ref))

    def _load_grid(self, ref: str) -> Tuple[Grid, Optional[str]]:
        return read_grid(ref, sheet=self.sheet)

    def write_cells(self, ref: str, updates: Sequence[Any]) -> None:
        if not updates:
            LOGGER.info("No updates to apply to %s", ref)
            return
        table = self.read_table(ref)
        by_row = _group_by_row(table, updates)
        src = self._written.get(ref, Path(ref))
        dest = self.target_path(ref)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if Path(ref).suffix.lower() == ".csv":
                self._write_csv(src, dest, by_row)
            else:
                self._write_xlsx(src, dest, by_row)
        except PermissionError as exc:
            raise WriteUnauthorized(str(dest), str(exc), len(updates)) from exc
        except (OSError, ValueError, KeyError) as exc:
            raise WriteRejected(str(dest), str(exc), len(updates)) from exc
        self._written[ref] = dest
        LOGGER.info("Wrote %d cells across %d rows to %s", len(updates), len(by_row), dest)

    def _write_csv(self, src: Path, dest: Path, by_row: Dict[int, Dict[int, CellValue]]) -> None:
        grid, _ = read_grid(src)
        width = max([len(r) for r in grid] + [max(c) + 1 for c in by_row.values()])
        while len(grid) < max(by_row):
            grid.append([])
        for row_no, cols in by_row.items():
            row = grid[row_no - 1]
            for col, value in cols.items():
                while len(row) <= col:
                    row.append(None)
                row[col] = value
        rows = [[cell_text(c) for c in r] + [""] * (width - len(r)) for r in grid]
        pd.DataFrame(rows).to_csv(dest, header=False, index=False)

    def _write_xlsx(self, src: Path, dest: Path, by_row: Dict[int, Dict[int, CellValue]]) -> None:
        from openpyxl import load_workbook

        wb = load_workbook(src)
        ws = wb[self.sheet] if self.sheet is not None else wb.worksheets[0]
        for row_no, cols in by_row.items():
            for col, value in cols.items():
                ws.cell(row=row_no, column=col + 1).value = value
        wb.save(dest)
