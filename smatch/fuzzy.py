"""Offline matching oracle backed by rapidfuzz scorers.

Useful without network access or API credentials. It answers the same
contract as the LLM oracle: one judgment per source key, proposing an exact
master string or nothing.
"""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Sequence, Tuple

from rapidfuzz import fuzz, process

from .oracle import Candidate, Judgment, MatchPreview

_TOKEN_SPLIT = re.compile(r"[^0-9a-zA-Z]+")
_SEGMENT_SPLIT = re.compile(r"[-|]")

# Organisation suffixes and generic words ignored when checking token containment
STOPWORDS = {
    "inc", "inc.", "llc", "l.l.c", "co", "co.", "company", "corp", "corporation",
    "the", "pt", "pt.", "tbk", "kota", "kab", "kabupaten",
}

SCORERS = [
    "smart",
    "WRatio",
    "ratio",
    "token_set_ratio",
    "token_sort_ratio",
    "partial_ratio",
    "partial_token_set_ratio",
]


@dataclass
class NormalizeOptions:
    casefold: bool = True
    trim_space: bool = True
    collapse_space: bool = True
    alnum_only: bool = False


def normalize_text(s: str, opts: NormalizeOptions) -> str:
    t = s
    if opts.trim_space:
        t = t.strip()
    if opts.collapse_space:
        t = " ".join(t.split())
    if opts.casefold:
        t = t.casefold()
    if opts.alnum_only:
        t = "".join(ch for ch in t if ch.isalnum())
    return t


@dataclass
class MatchPolicy:
    top_n: int = 3
    tie_margin: int = 3  # minimum lead over second-best; set 0 to disable
    scorer: str = "smart"


def _tokens(text: str) -> List[str]:
    return [t for t in _TOKEN_SPLIT.split(text) if t]


def _initials(text: str) -> str:
    return "".join(t[0] for t in _tokens(text) if t[0].isalpha())


def smart_score(a: str, b: str, *, processor=None, score_cutoff=None, score_hint=None) -> float:
    """Acronym and segment aware score on the 0-100 scale.

    ``a`` is the source key, ``b`` a master candidate. Follows the RapidFuzz
    scorer protocol so it can be handed to ``process.extract``.
    """
    if processor is not None:
        a, b = processor(a), processor(b)

    base_best = max(fuzz.token_set_ratio(a, b), fuzz.partial_ratio(a, b))
    segments = [s.strip() for s in _SEGMENT_SPLIT.split(a) if s.strip()]
    for seg in segments:
        base_best = max(base_best, fuzz.token_set_ratio(seg, b))

    # A short all-letter token of a that spells b's initials ("NYC" / "New York City")
    b_inits = _initials(b).lower()
    a_acronyms = {t.lower() for t in _tokens(a) if t.isalpha() and 2 <= len(t) <= 6}
    if b_inits and b_inits in a_acronyms:
        base_best = max(base_best, 92.0)

    bonus = 0
    a_inits = _initials(a).lower()
    if a_inits and b_inits and a_inits[:3] == b_inits[:3]:
        bonus = 5

    if segments:
        left = [t.lower() for t in _tokens(segments[0]) if t.lower() not in STOPWORDS]
        b_tokens = {t.lower() for t in _tokens(b)}
        if left and set(left).issubset(b_tokens):
            base_best = max(base_best, 96.0)

    score = min(100.0, float(base_best + bonus))
    if score_cutoff is not None and score < score_cutoff:
        return 0.0
    return score


def get_scorer(name: str) -> Callable[..., float]:
    mapping = {
        "WRatio": fuzz.WRatio,
        "ratio": fuzz.ratio,
        "token_set_ratio": fuzz.token_set_ratio,
        "token_sort_ratio": fuzz.token_sort_ratio,
        "partial_ratio": fuzz.partial_ratio,
        "partial_token_set_ratio": fuzz.partial_token_set_ratio,
        "smart": smart_score,
    }
    if name not in mapping:
        raise ValueError(f"Unknown scorer '{name}'. Choose from: {', '.join(SCORERS)}")
    return mapping[name]


def build_lookup_index(master_keys: Sequence[str], opts: NormalizeOptions) -> Dict[str, List[str]]:
    """Map normalized key -> distinct original master strings, in first-seen order."""
    index: Dict[str, List[str]] = {}
    for key in master_keys:
        originals = index.setdefault(normalize_text(key, opts), [])
        if key not in originals:
            originals.append(key)
    index.pop("", None)
    return index


@dataclass
class FuzzyMatchingOracle:
    normalize: NormalizeOptions = field(default_factory=NormalizeOptions)
    policy: MatchPolicy = field(default_factory=MatchPolicy)

    def _ranked(self, key_norm: str, index: Dict[str, List[str]]) -> List[Tuple[str, float]]:
        limit = max(self.policy.top_n, 1)
        # Short or segmented keys get a wider candidate pool
        if "-" in key_norm or "|" in key_norm or len(_tokens(key_norm)) <= 3:
            limit = max(limit, 10)
        found = process.extract(key_norm, list(index), scorer=get_scorer(self.policy.scorer), limit=limit, score_cutoff=0)
        return sorted(((c, float(s)) for c, s, _ in found), key=lambda x: x[1], reverse=True)

    def judge(self, source_key: str, index: Dict[str, List[str]], threshold: float) -> Judgment:
        key_norm = normalize_text(source_key, self.normalize)
        if not key_norm or not index:
            return Judgment(source_key, None, rationale="nothing to compare")
        ranked = self._ranked(key_norm, index)
        if not ranked:
            return Judgment(source_key, None, rationale="no candidates")

        top_key, top_score = ranked[0]
        hint = Candidate(index[top_key][0], round(top_score / 100.0, 4))
        if len(index[top_key]) > 1:
            return Judgment(source_key, None, rationale="several master values share this key", best_candidate=hint)
        ties = [c for c, s in ranked if s == top_score]
        if len(ties) > 1:
            return Judgment(source_key, None, rationale="tie between master candidates", best_candidate=hint)
        if self.policy.tie_margin and len(ranked) > 1 and top_score - ranked[1][1] < self.policy.tie_margin:
            return Judgment(source_key, None, rationale="runner-up within tie margin", best_candidate=hint)
        if hint.confidence < threshold:
            return Judgment(source_key, None, rationale=f"best score {top_score:.1f}", best_candidate=hint)
        return Judgment(
            source_key,
            hint.value,
            confidence=hint.confidence,
            rationale=f"{self.policy.scorer} score {top_score:.1f}",
        )

    def match_batch(
        self, master_keys: Sequence[str], source_keys: Sequence[str], threshold: float
    ) -> List[Judgment]:
        index = build_lookup_index(master_keys, self.normalize)
        return [self.judge(k, index, threshold) for k in source_keys]

    def preview(self, master_keys: Sequence[str], source_keys: Sequence[str], sample: int = 10) -> MatchPreview:
        index = build_lookup_index(master_keys, self.normalize)
        judged = [self.judge(k, index, 0.0) for k in source_keys[:sample]]
        proposals = [j for j in judged if j.proposed_master_value is not None]
        accuracy = sum(j.confidence for j in proposals) / len(judged) if judged else 0.0
        return MatchPreview(sample_matches=proposals, estimated_accuracy=round(accuracy, 2))
