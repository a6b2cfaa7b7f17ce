from __future__ import annotations

import unittest

from smatch.fuzzy import (
    FuzzyMatchingOracle,
    MatchPolicy,
    NormalizeOptions,
    build_lookup_index,
    get_scorer,
    normalize_text,
    smart_score,
)

MASTERS = ["Surabaya", "Jakarta", "Bandung"]


class TestNormalize(unittest.TestCase):
    def test_normalize_basic(self):
        norm = NormalizeOptions()
        self.assertEqual(normalize_text("  Foo   Bar  ", norm), "foo bar")
        self.assertEqual(normalize_text("BAZ\tQux", norm), "baz qux")

    def test_alnum_only(self):
        self.assertEqual(normalize_text("A-C_M.E 1", NormalizeOptions(alnum_only=True)), "acme1")

    def test_lookup_index_keeps_originals(self):
        index = build_lookup_index(["Jakarta", "JAKARTA", "Jakarta", " "], NormalizeOptions())
        self.assertEqual(index, {"jakarta": ["Jakarta", "JAKARTA"]})


class TestScorers(unittest.TestCase):
    def test_acronym(self):
        self.assertGreaterEqual(smart_score("nyc", "new york city"), 92)

    def test_prefix_words_ignored(self):
        self.assertEqual(smart_score("kota surabaya", "surabaya"), 100)

    def test_unknown_scorer(self):
        with self.assertRaises(ValueError):
            get_scorer("nope")


class TestFuzzyOracle(unittest.TestCase):
    def setUp(self):
        self.oracle = FuzzyMatchingOracle()

    def test_proposes_exact_master_string(self):
        (j,) = self.oracle.match_batch(MASTERS, ["kota Surabaya"], 0.8)
        self.assertEqual(j.source_value, "kota Surabaya")
        self.assertEqual(j.proposed_master_value, "Surabaya")
        self.assertEqual(j.confidence, 1.0)

    def test_one_judgment_per_source_in_order(self):
        judged = self.oracle.match_batch(MASTERS, ["kota Surabaya", "Xyzzy Qqq", "kota Bandung"], 0.8)
        self.assertEqual([j.source_value for j in judged], ["kota Surabaya", "Xyzzy Qqq", "kota Bandung"])
        self.assertIsNone(judged[1].proposed_master_value)
        self.assertEqual(judged[2].proposed_master_value, "Bandung")

    def test_shared_normalized_key_is_not_proposed(self):
        (j,) = self.oracle.match_batch(["Jakarta", "JAKARTA"], ["jakarta"], 0.5)
        self.assertIsNone(j.proposed_master_value)
        self.assertEqual(j.best_candidate.value, "Jakarta")

    def test_tie_margin(self):
        oracle = FuzzyMatchingOracle(policy=MatchPolicy(tie_margin=3, scorer="ratio"))
        (j,) = oracle.match_batch(["abcd", "abce"], ["abcx"], 0.1)
        self.assertIsNone(j.proposed_master_value)
        self.assertIsNotNone(j.best_candidate)

    def test_empty_master(self):
        (j,) = self.oracle.match_batch([], ["Surabaya"], 0.8)
        self.assertIsNone(j.proposed_master_value)

    def test_preview(self):
        preview = self.oracle.preview(MASTERS, ["kota Surabaya"])
        self.assertEqual(len(preview.sample_matches), 1)
        self.assertEqual(preview.estimated_accuracy, 1.0)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
