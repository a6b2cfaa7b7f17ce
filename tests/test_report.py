from __future__ import annotations

import csv
import json
import tempfile
import unittest
from pathlib import Path

from smatch.coords import RowAddress
from smatch.oracle import Candidate
from smatch.pipeline import TransferResult
from smatch.reconcile import UnmatchedKind, UnmatchedRecord
from smatch.report import format_summary, unmatched_row, write_json, write_unmatched_csv
from smatch.transfer import TransferSummary


def _result(dry_run: bool = False) -> TransferResult:
    miss = UnmatchedRecord("Bali", RowAddress(4), UnmatchedKind.NO_PROPOSAL, "no matching master value",
                           best_candidate=Candidate("Jakarta", 0.2))
    return TransferResult(
        success=True,
        dry_run=dry_run,
        summary=TransferSummary(3, 4, 2, 1, 0.93),
        unmatched=[miss],
    )


class TestReport(unittest.TestCase):
    def test_unmatched_row(self):
        row = unmatched_row(_result().unmatched[0])
        self.assertEqual(row["source_row"], "4")
        self.assertEqual(row["kind"], "no_proposal")
        self.assertEqual((row["best_candidate"], row["best_confidence"]), ("Jakarta", "0.20"))

    def test_writers(self):
        with tempfile.TemporaryDirectory() as td:
            td = Path(td)
            write_json(td / "r.json", _result())
            write_unmatched_csv(td / "u.csv", _result().unmatched)
            payload = json.loads((td / "r.json").read_text(encoding="utf-8"))
            self.assertEqual(payload["summary"]["averageConfidence"], 0.93)
            self.assertEqual(payload["unmatched"][0]["bestCandidate"], {"value": "Jakarta", "confidence": 0.2})
            with (td / "u.csv").open(newline="", encoding="utf-8") as handle:
                rows = list(csv.DictReader(handle))
            self.assertEqual(rows[0]["source_value"], "Bali")

    def test_format_summary(self):
        self.assertIn("Matched: 2, unmatched: 1, average confidence: 0.93", format_summary(_result()))
        self.assertIn("Dry run", format_summary(_result(dry_run=True)))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
