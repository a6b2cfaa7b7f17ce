"""LLM-backed semantic matching of key values."""
from __future__ import annotations

import json
import logging
import math
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .errors import OracleFailure

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a semantic matching assistant. Your task is to match values from a source list to a master list based on semantic similarity and meaning, not just string equality.

Rules:
1. Consider variations in formatting, prefixes, suffixes, abbreviations, and spelling differences
2. Examples of valid matches:
   - "kota Surabaya" ~ "Surabaya" (confidence: 0.95)
   - "DKI Jakarta" ~ "Jakarta" (confidence: 0.90)
   - "Product A-123" ~ "A123" (confidence: 0.85)
   - "John Smith Jr." ~ "Smith, John" (confidence: 0.88)
   - "PT. ABC Indonesia" ~ "ABC Indonesia" (confidence: 0.92)
   - "New York City" ~ "NYC" (confidence: 0.85)
3. Each match must have a confidence score between 0 and 1
4. Only return matches with confidence >= threshold
5. For unmatched items, provide the best candidate if one exists
6. Be precise - don't match completely different values
7. masterValue must be copied exactly, character for character, from the MASTER list

Return ONLY valid JSON in the specified format."""

PREVIEW_SYSTEM_PROMPT = (
    "You are a semantic matching preview assistant. "
    "Provide realistic estimates based on the data provided."
)


@dataclass(frozen=True)
class Candidate:
    value: str
    confidence: float


@dataclass(frozen=True)
class Judgment:
    """The oracle's verdict for one source key."""

    source_value: str
    proposed_master_value: Optional[str]
    confidence: float = 0.0
    rationale: str = ""
    best_candidate: Optional[Candidate] = None


@dataclass
class MatchPreview:
    sample_matches: List[Judgment] = field(default_factory=list)
    estimated_accuracy: float = 0.0


class MatchingOracle(Protocol):
    def match_batch(
        self, master_keys: Sequence[str], source_keys: Sequence[str], threshold: float
    ) -> List[Judgment]: ...

    def preview(self, master_keys: Sequence[str], source_keys: Sequence[str]) -> MatchPreview: ...


@dataclass(frozen=True)
class OracleConfig:
    """Runtime configuration for the OpenAI matcher."""

    model: str
    temperature: float
    timeout: float
    api_key: str | None

    @classmethod
    def from_env(cls, model: str | None = None) -> "OracleConfig":
        return cls(
            model=model or os.getenv("SMATCH_OPENAI_MODEL", "gpt-4o-mini"),
            temperature=float(os.getenv("SMATCH_OPENAI_TEMPERATURE", "0.1")),
            timeout=float(os.getenv("SMATCH_OPENAI_TIMEOUT", "120")),
            api_key=os.getenv("SMATCH_OPENAI_API_KEY") or os.getenv("OPENAI_API_KEY"),
        )


def build_matching_prompt(master_keys: Sequence[str], source_keys: Sequence[str], threshold: float) -> str:
    return f"""Match values from the SOURCE list to the MASTER list.

MASTER values ({len(master_keys)} items):
{json.dumps(list(master_keys), indent=2, ensure_ascii=False)}

SOURCE values ({len(source_keys)} items):
{json.dumps(list(source_keys), indent=2, ensure_ascii=False)}

Confidence threshold: {threshold}

Task:
1. For each SOURCE value, find the best matching MASTER value based on semantic meaning
2. Consider formatting differences, abbreviations, prefixes, suffixes
3. Assign a confidence score (0-1) to each match
4. Only include matches with confidence >= {threshold}
5. Source values that don't match any master value should be in "unmatched"

Return JSON in this exact format:
{{
  "matches": [
    {{
      "masterValue": "exact master value",
      "sourceValue": "exact source value",
      "confidence": 0.95,
      "reasoning": "brief explanation"
    }}
  ],
  "unmatched": [
    {{
      "sourceValue": "source value that didn't match",
      "reason": "why it didn't match",
      "bestCandidate": {{
        "value": "closest master value if any",
        "confidence": 0.45
      }}
    }}
  ]
}}"""


def build_preview_prompt(master_keys: Sequence[str], source_keys: Sequence[str], sample: int = 10) -> str:
    def _head(values: Sequence[str]) -> str:
        more = "..." if len(values) > sample else ""
        return json.dumps(list(values[:sample]), ensure_ascii=False) + more

    return f"""Preview semantic matching between these lists:

MASTER ({len(master_keys)} items): {_head(master_keys)}

SOURCE ({len(source_keys)} items): {_head(source_keys)}

Provide a preview of how these would match, including sample matches and estimated accuracy.

Return JSON:
{{
  "sampleMatches": [
    {{
      "masterValue": "...",
      "sourceValue": "...",
      "confidence": 0.95,
      "reasoning": "..."
    }}
  ],
  "estimatedAccuracy": 0.85
}}"""


def _confidence(raw: Any, where: str) -> float:
    if isinstance(raw, bool) or not isinstance(raw, (int, float)):
        raise OracleFailure(f"{where}: confidence must be a number, got {raw!r}")
    value = float(raw)
    if math.isnan(value) or not 0.0 <= value <= 1.0:
        raise OracleFailure(f"{where}: confidence {raw!r} outside [0, 1]")
    return value


def _text(item: Dict[str, Any], key: str, where: str, required: bool = True) -> Optional[str]:
    value = item.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, str):
        raise OracleFailure(f"{where}: '{key}' must be a string, got {value!r}")
    return value


def _best_candidate(raw: Any) -> Optional[Candidate]:
    if not isinstance(raw, dict):
        return None
    value = raw.get("value")
    if not isinstance(value, str) or not value:
        return None
    try:
        return Candidate(value=value, confidence=_confidence(raw.get("confidence", 0.0), "bestCandidate"))
    except OracleFailure:
        LOGGER.debug("Dropping malformed best-candidate hint %r", raw)
        return None


def parse_match_reply(payload: Any) -> List[Judgment]:
    """Normalise a ``{"matches": [...], "unmatched": [...]}`` reply into judgments."""
    if not isinstance(payload, dict):
        raise OracleFailure("reply is not a JSON object")
    matches = payload.get("matches", [])
    unmatched = payload.get("unmatched", [])
    if not isinstance(matches, list) or not isinstance(unmatched, list):
        raise OracleFailure("reply 'matches' and 'unmatched' must be arrays")

    judgments: List[Judgment] = []
    for n, item in enumerate(matches):
        where = f"matches[{n}]"
        if not isinstance(item, dict):
            raise OracleFailure(f"{where}: expected an object")
        judgments.append(
            Judgment(
                source_value=_text(item, "sourceValue", where),
                proposed_master_value=_text(item, "masterValue", where, required=False),
                confidence=_confidence(item.get("confidence"), where),
                rationale=str(item.get("reasoning") or ""),
            )
        )
    for n, item in enumerate(unmatched):
        where = f"unmatched[{n}]"
        if not isinstance(item, dict):
            raise OracleFailure(f"{where}: expected an object")
        judgments.append(
            Judgment(
                source_value=_text(item, "sourceValue", where),
                proposed_master_value=None,
                rationale=str(item.get("reason") or ""),
                best_candidate=_best_candidate(item.get("bestCandidate")),
            )
        )
    return judgments


def parse_preview_reply(payload: Any) -> MatchPreview:
    if not isinstance(payload, dict):
        raise OracleFailure("preview reply is not a JSON object")
    samples = payload.get("sampleMatches", [])
    if not isinstance(samples, list):
        raise OracleFailure("preview 'sampleMatches' must be an array")
    judgments = []
    for n, item in enumerate(samples):
        where = f"sampleMatches[{n}]"
        if not isinstance(item, dict):
            raise OracleFailure(f"{where}: expected an object")
        judgments.append(
            Judgment(
                source_value=_text(item, "sourceValue", where),
                proposed_master_value=_text(item, "masterValue", where, required=False),
                confidence=_confidence(item.get("confidence", 0.0), where),
                rationale=str(item.get("reasoning") or ""),
            )
        )
    accuracy = _confidence(payload.get("estimatedAccuracy", 0.0), "estimatedAccuracy")
    return MatchPreview(sample_matches=judgments, estimated_accuracy=accuracy)


def _extract_json_payload(response: Any) -> Any:
    """Pull the JSON body out of a chat-completions response."""
    choices = getattr(response, "choices", None)
    if not choices:
        raise OracleFailure("empty response from OpenAI")
    message = getattr(choices[0], "message", None)
    content = getattr(message, "content", None)
    if not content:
        raise OracleFailure("empty response from OpenAI")
    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        raise OracleFailure(f"response is not valid JSON: {exc}") from exc


def _load_openai_client(config: OracleConfig):
    if not config.api_key:
        raise OracleFailure(
            "No OpenAI API key configured. Set SMATCH_OPENAI_API_KEY or OPENAI_API_KEY."
        )
    from openai import OpenAI

    return OpenAI(api_key=config.api_key, timeout=config.timeout)


class OpenAIMatchingOracle:
    """Chat-completions matcher returning one judgment per answered source key.

    The client is created on first use so the oracle can be constructed (and
    injected) without credentials, e.g. for dry configuration checks.
    """

    def __init__(self, config: OracleConfig, client: Any | None = None) -> None:
        self._config = config
        self._client = client
        self._lock = threading.Lock()

    @classmethod
    def from_env(cls, model: str | None = None) -> "OpenAIMatchingOracle":
        return cls(OracleConfig.from_env(model=model))

    @property
    def client(self):
        # batch workers share one oracle
        if self._client is None:
            with self._lock:
                if self._client is None:
                    self._client = _load_openai_client(self._config)
        return self._client

    def _complete(self, system: str, user: str, temperature: float) -> Any:
        try:
            response = self.client.chat.completions.create(
                model=self._config.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                temperature=temperature,
                response_format={"type": "json_object"},
            )
        except OracleFailure:
            raise
        except Exception as exc:
            raise OracleFailure(f"OpenAI request failed: {exc}") from exc
        return _extract_json_payload(response)

    def match_batch(
        self, master_keys: Sequence[str], source_keys: Sequence[str], threshold: float
    ) -> List[Judgment]:
        prompt = build_matching_prompt(master_keys, source_keys, threshold)
        LOGGER.debug(
            "Matching %d source keys against %d master keys with %s",
            len(source_keys), len(master_keys), self._config.model,
        )
        payload = self._complete(SYSTEM_PROMPT, prompt, self._config.temperature)
        return parse_match_reply(payload)

    def preview(self, master_keys: Sequence[str], source_keys: Sequence[str]) -> MatchPreview:
        payload = self._complete(
            PREVIEW_SYSTEM_PROMPT,
            build_preview_prompt(master_keys, source_keys),
            max(self._config.temperature, 0.2),
        )
        return parse_preview_reply(payload)
