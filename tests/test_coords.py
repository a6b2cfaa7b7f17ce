from __future__ import annotations

import unittest

from smatch.coords import (
    Found,
    NotFound,
    RowAddress,
    column_to_index,
    coordinate_row,
    index_to_column,
    is_coordinate,
    parse_coordinate,
    resolve_column,
    resolve_column_identifier,
    validate_column_exists,
)
from smatch.errors import ColumnNotFound


class TestCoordinates(unittest.TestCase):
    def test_column_index_round_trip(self):
        previous = None
        for i in range(18278):
            letters = index_to_column(i)
            self.assertTrue(1 <= len(letters) <= 3, letters)
            self.assertEqual(column_to_index(letters), i)
            if previous is not None:
                self.assertLess((len(previous), previous), (len(letters), letters))
            previous = letters
        self.assertEqual(index_to_column(18277), "ZZZ")
        self.assertEqual(column_to_index("A"), 0)
        self.assertEqual(column_to_index("Z"), 25)
        self.assertEqual(column_to_index("aa"), 26)
        self.assertEqual(index_to_column(26), "AA")

    def test_negative_index_rejected(self):
        with self.assertRaises(ValueError):
            index_to_column(-1)

    def test_is_coordinate(self):
        self.assertTrue(is_coordinate("D"))
        self.assertTrue(is_coordinate("d4"))
        self.assertTrue(is_coordinate(" AB12 "))
        self.assertFalse(is_coordinate("D0"))
        self.assertFalse(is_coordinate("ABCD"))
        self.assertFalse(is_coordinate("Kota"))
        self.assertFalse(is_coordinate(""))

    def test_parse_coordinate(self):
        ref = parse_coordinate("c10")
        self.assertEqual((ref.column, ref.row), ("C", 10))
        self.assertIsNone(parse_coordinate("D").row)
        self.assertIsNone(parse_coordinate("Total"))
        self.assertEqual(coordinate_row("D4"), 4)
        self.assertIsNone(coordinate_row("D"))
        with self.assertRaises(ValueError):
            coordinate_row("Total")

    def test_row_address(self):
        start = RowAddress(2)
        self.assertEqual(RowAddress.from_offset(start, 0), RowAddress(2))
        self.assertEqual(RowAddress.from_offset(start, 3).number, 5)
        self.assertEqual(RowAddress(7).offset_from(start), 5)
        self.assertEqual(str(RowAddress(4)), "4")
        self.assertLess(RowAddress(1), RowAddress(2))
        with self.assertRaises(ValueError):
            RowAddress(0)


class TestResolveColumn(unittest.TestCase):
    headers = ["Kota", "Population", "Total"]

    def test_header_names_case_insensitive(self):
        self.assertEqual(resolve_column("kota", self.headers), Found("Kota", 0))
        self.assertEqual(resolve_column_identifier("TOTAL", self.headers), "Total")

    def test_coordinates_resolve_to_headers(self):
        self.assertEqual(resolve_column("B", self.headers), Found("Population", 1))
        self.assertEqual(resolve_column_identifier("C4", self.headers), "Total")

    def test_coordinate_shaped_token_is_always_a_coordinate(self):
        headers = ["B", "A"]
        self.assertEqual(resolve_column("A", headers), Found("B", 0))
        self.assertEqual(resolve_column("b", headers), Found("A", 1))

    def test_coordinate_shaped_header_reachable_by_letters_only(self):
        headers = ["Kota", "ID"]
        self.assertIsNone(resolve_column_identifier("ID", headers))
        self.assertEqual(resolve_column("B", headers), Found("ID", 1))
        with self.assertRaises(ColumnNotFound) as ctx:
            validate_column_exists("ID", headers, "Source")
        self.assertEqual(ctx.exception.index, 237)

    def test_not_found(self):
        self.assertEqual(resolve_column("Region", self.headers), NotFound("Region"))
        self.assertEqual(resolve_column("Z", self.headers), NotFound("Z", 25))
        self.assertIsNone(resolve_column_identifier("", self.headers))

    def test_validate_reports_headers(self):
        with self.assertRaises(ColumnNotFound) as ctx:
            validate_column_exists("Region", self.headers, "Source", ref="src.csv")
        msg = str(ctx.exception)
        self.assertIn("Source column 'Region' not found in src.csv", msg)
        self.assertIn("Kota, Population, Total", msg)

    def test_validate_reports_column_range_for_coordinates(self):
        with self.assertRaises(ColumnNotFound) as ctx:
            validate_column_exists("Z", self.headers, "Target")
        self.assertEqual(ctx.exception.index, 25)
        self.assertIn("Table only has 3 columns (A-C)", str(ctx.exception))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
