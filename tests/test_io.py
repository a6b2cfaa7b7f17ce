from __future__ import annotations

import tempfile
import unittest
from pathlib import Path
from unittest import mock

import pandas as pd

from smatch.coords import RowAddress
from smatch.errors import ColumnNotFound, SourceEmpty, SourceUnavailable
from smatch.io import (
    FileTableStore,
    MemoryTableStore,
    cell_value,
    default_output_path,
    detect_header_row,
    grid_to_table,
    read_grid,
)
from smatch.transfer import CellUpdate


class TestGrid(unittest.TestCase):
    def test_default_output_path(self):
        self.assertEqual(default_output_path(Path("/tmp/master.csv")).name, "master.updated.csv")
        self.assertEqual(default_output_path(Path("/tmp/book.xlsx")).name, "book.updated.xlsx")

    def test_cell_value(self):
        self.assertIsNone(cell_value(float("nan")))
        self.assertIsNone(cell_value("  "))
        self.assertEqual(cell_value(3.0), 3)
        self.assertEqual(cell_value(2.5), 2.5)
        self.assertEqual(cell_value("x"), "x")

    def test_header_detection_skips_banners(self):
        grid = [
            [None, None],
            ["MOHON DIISI SESUAI FORMAT", None],
            ["Kota", "Total"],
            ["Surabaya", 5],
        ]
        self.assertEqual(detect_header_row(grid), 2)
        table = grid_to_table("m", grid)
        self.assertEqual(table.header_row, RowAddress(3))
        self.assertEqual(table.first_data_row, RowAddress(4))
        self.assertEqual(table.column_values("Total"), {4: 5})
        self.assertEqual(table.row_at(RowAddress(4)), {"Kota": "Surabaya", "Total": 5})
        self.assertIsNone(table.row_at(RowAddress(2)))

    def test_blank_and_duplicate_headers(self):
        with self.assertLogs("smatch.io", level="WARNING"):
            table = grid_to_table("m", [["Kota", None, "Kota"], ["a", "b", "c"]])
        self.assertEqual(table.headers, ["Kota", "B", "Kota.1"])

    def test_empty_grid(self):
        with self.assertRaises(SourceEmpty):
            grid_to_table("m", [])
        with self.assertRaises(SourceEmpty):
            grid_to_table("m", [[None, ""]])


class TestMemoryStore(unittest.TestCase):
    def setUp(self):
        self.store = MemoryTableStore(
            {
                "m": [
                    ["Kota", "Total"],
                    ["Surabaya", None],
                    ["Jakarta", 7],
                    [None, None],
                ]
            }
        )

    def test_unknown_ref(self):
        with self.assertRaises(SourceUnavailable):
            self.store.read_table("missing")

    def test_read_column_by_coordinate(self):
        values, start = self.store.read_column("m", "A")
        self.assertEqual((values, start), (["Surabaya", "Jakarta"], RowAddress(2)))
        values, start = self.store.read_column("m", "B3")
        self.assertEqual((values, start), (["7"], RowAddress(3)))
        with self.assertRaises(ValueError):
            self.store.read_column("m", "Kota")

    def test_write_cells_by_header_and_letter(self):
        self.store.write_cells(
            "m",
            [CellUpdate(RowAddress(2), "Total", 5), CellUpdate(RowAddress(3), "A", "DKI Jakarta")],
        )
        self.assertEqual(self.store.grids["m"][1], ["Surabaya", 5])
        self.assertEqual(self.store.grids["m"][2], ["DKI Jakarta", 7])
        self.assertEqual(self.store.write_calls, [("m", 2)])

    def test_write_to_unknown_column(self):
        with self.assertRaises(ColumnNotFound):
            self.store.write_cells("m", [CellUpdate(RowAddress(2), "Region", 1)])


class TestFileStore(unittest.TestCase):
    def test_missing_file(self):
        with self.assertRaises(SourceUnavailable):
            read_grid("/nonexistent/master.csv")

    def test_unsupported_extension(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "master.txt"
            p.write_text("a,b\n")
            with self.assertRaises(SourceUnavailable):
                read_grid(p)

    def test_csv_write_goes_to_updated_copy(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "master.csv"
            pd.DataFrame({"Kota": ["Surabaya", "Jakarta"], "Total": ["", "7"]}).to_csv(p, index=False)

            store = FileTableStore()
            table = store.read_table(str(p))
            self.assertEqual(table.headers, ["Kota", "Total"])
            self.assertEqual(table.column_values("Total"), {2: None, 3: "7"})

            store.write_cells(str(p), [CellUpdate(RowAddress(2), "Total", 5)])
            store.write_cells(str(p), [CellUpdate(RowAddress(3), "Total", 9)])
            out = store.target_path(str(p))
            self.assertEqual(out.name, "master.updated.csv")
            df = pd.read_csv(out, dtype=str)
            self.assertEqual(list(df["Total"]), ["5", "9"])
            # original untouched
            self.assertEqual(list(pd.read_csv(p, dtype=str, keep_default_na=False)["Total"]), ["", "7"])

    def test_csv_in_place(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "master.csv"
            pd.DataFrame({"Kota": ["Surabaya"], "Total": ["1"]}).to_csv(p, index=False)
            store = FileTableStore(in_place=True)
            store.write_cells(str(p), [CellUpdate(RowAddress(2), "B", 3)])
            self.assertEqual(pd.read_csv(p, dtype=str)["Total"][0], "3")

    def test_xlsx_round_trip_keeps_other_sheets(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "book.xlsx"
            with pd.ExcelWriter(p) as xw:
                pd.DataFrame({"Kota": ["Surabaya", "Jakarta"], "Total": [1, 2]}).to_excel(
                    xw, index=False, sheet_name="Data"
                )
                pd.DataFrame({"x": [1]}).to_excel(xw, index=False, sheet_name="Other")

            store = FileTableStore(sheet="Data")
            table = store.read_table(str(p))
            self.assertEqual(table.sheet_name, "Data")
            self.assertEqual(table.column_values("Total"), {2: 1, 3: 2})

            store.write_cells(str(p), [CellUpdate(RowAddress(3), "Total", 42)])
            out = store.target_path(str(p))
            xls = pd.ExcelFile(out)
            self.assertEqual(xls.sheet_names, ["Data", "Other"])
            self.assertEqual(list(xls.parse("Data")["Total"]), [1, 42])

    def test_xlsx_missing_sheet(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "book.xlsx"
            pd.DataFrame({"a": [1]}).to_excel(p, index=False, sheet_name="First")
            with self.assertRaises(SourceUnavailable):
                read_grid(p, sheet="Second")

    def test_workbook_closed_after_missing_sheet(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "book.xlsx"
            pd.DataFrame({"a": [1]}).to_excel(p, index=False, sheet_name="First")
            with mock.patch.object(pd.ExcelFile, "close", autospec=True) as close:
                with self.assertRaises(SourceUnavailable):
                    read_grid(p, sheet="Second")
            close.assert_called_once()

    def test_csv_banner_narrower_than_table(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "master.csv"
            p.write_text("MOHON DIISI SESUAI FORMAT\nKota,Total\nSurabaya,5\n", encoding="utf-8")

            store = FileTableStore()
            table = store.read_table(str(p))
            self.assertEqual(table.header_row, RowAddress(2))
            self.assertEqual(table.headers, ["Kota", "Total"])
            self.assertEqual(table.column_values("Total"), {3: "5"})

            store.write_cells(str(p), [CellUpdate(RowAddress(3), "B", 7)])
            grid, _ = read_grid(store.target_path(str(p)))
            self.assertEqual(grid[0][0], "MOHON DIISI SESUAI FORMAT")
            self.assertEqual(grid[1], ["Kota", "Total"])
            self.assertEqual(grid[2], ["Surabaya", "7"])

    def test_empty_csv(self):
        with tempfile.TemporaryDirectory() as td:
            p = Path(td) / "master.csv"
            p.write_text("", encoding="utf-8")
            with self.assertRaises(SourceEmpty):
                read_grid(p)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
