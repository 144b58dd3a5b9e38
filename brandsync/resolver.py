"""
Fuzzy resolution of free-text production names to partnership records.

Used when the caller only has a loosely typed title ("17 sundays") and
no record id. Resolutions are cached for a few hours; cached payloads are
validated on every read and repaired or dropped as needed.

Resolution order:
    cache -> exact match -> full-name token match -> per-word token match
    -> broad recent fetch filtered locally
Each search stage runs only when the previous one found nothing.
"""

import re
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from .config import PARTNERSHIP_OBJECT
from .errors import CorruptCacheEntry, NotFoundError
from .hubspot import RemoteClient
from .logger import StructuredLogger, get_logger
from .normalize import normalize_text, partnership_from_remote
from .schema import Verdict, validate_resolution_payload

RESOLUTION_TTL_SECONDS = 3 * 60 * 60
BROAD_FETCH_LIMIT = 100
STAGE_LIMIT = 30
MAX_FILTER_GROUPS = 5  # remote search caps OR-groups per request
EXACT_MATCH_SCORE = 100
MIN_WORD_OVERLAP = 0.5

STOPWORDS = {
    "a", "an", "the", "of", "and", "or", "in", "on", "at", "to", "for",
    "with", "by", "from", "is", "aka", "vs",
}

PARTNERSHIP_PROPERTIES = [
    "partnership_name",
    "production_name",
    "genre_production",
    "movie_rating",
    "tv_ratings",
    "rating",
    "sub_ratings_for_tv_content",
    "release__est__date",
    "release_est_date",
    "start_date",
    "production_start_date",
    "synopsis",
    "hs_pipeline_stage",
    "production_stage",
    "production_type",
    "distributor",
    "hs_lastmodifieddate",
]


def tokenize(text: str) -> List[str]:
    return re.findall(r"[\w'&]+", normalize_text(text or ""))


def significant_words(text: str) -> List[str]:
    """Tokens of length >= 2 that are not stopwords, in order, deduplicated."""
    seen = []
    for word in tokenize(text):
        if len(word) >= 2 and word not in STOPWORDS and word not in seen:
            seen.append(word)
    return seen


def cache_key(name: str) -> str:
    return f"resolve:{normalize_text(name)}"


def score_candidate(query: str, candidate_name: Optional[str]) -> int:
    """
    Deterministic name similarity.

    An exact (case and whitespace insensitive) match scores 100. Otherwise:
    +10 per query token present in the candidate, +5 per query token that
    only partially matches a candidate token, +20 when the first words are
    equal, +10 when the word counts differ by at most one. Non-exact scores
    are capped just below the exact score.
    """
    if not candidate_name:
        return 0
    if normalize_text(query) == normalize_text(candidate_name):
        return EXACT_MATCH_SCORE

    q_tokens = tokenize(query)
    c_tokens = tokenize(candidate_name)
    if not q_tokens or not c_tokens:
        return 0
    c_set = set(c_tokens)

    score = 0
    for token in q_tokens:
        if token in c_set:
            score += 10
        elif len(token) >= 2 and any(len(ct) >= 2 and (token in ct or ct in token) for ct in c_tokens):
            score += 5
    if q_tokens[0] == c_tokens[0]:
        score += 20
    if abs(len(q_tokens) - len(c_tokens)) <= 1:
        score += 10
    return min(score, EXACT_MATCH_SCORE - 1)


def word_overlap(query: str, candidate_name: Optional[str]) -> float:
    q_words = set(significant_words(query))
    if not q_words or not candidate_name:
        return 0.0
    c_words = set(significant_words(candidate_name))
    return len(q_words & c_words) / len(q_words)


class EntityResolver:
    """
    Resolve production names against the partnership object.

    Args:
        client: Remote client (shares its limiter and retry policy)
        store: Key/value store for resolution entries
        name_properties: Record properties holding the name, first wins
        ttl_seconds: Resolution cache lifetime
        clock: Wall clock in epoch seconds (injectable for tests)
    """

    def __init__(
        self,
        client: RemoteClient,
        store,
        object_type: str = PARTNERSHIP_OBJECT,
        name_properties: Sequence[str] = ("partnership_name", "production_name"),
        properties: Optional[Sequence[str]] = None,
        ttl_seconds: float = RESOLUTION_TTL_SECONDS,
        broad_limit: int = BROAD_FETCH_LIMIT,
        clock: Callable[[], float] = time.time,
        logger: Optional[StructuredLogger] = None,
    ):
        self.client = client
        self.store = store
        self.object_type = object_type
        self.name_properties = tuple(name_properties)
        self.properties = list(properties or PARTNERSHIP_PROPERTIES)
        self.ttl_seconds = ttl_seconds
        self.broad_limit = broad_limit
        self._clock = clock
        self.logger = logger or get_logger()

    @property
    def name_property(self) -> str:
        return self.name_properties[0]

    def record_name(self, record: Dict[str, Any]) -> Optional[str]:
        props = record.get("properties") or {}
        for key in self.name_properties:
            value = props.get(key)
            if isinstance(value, str) and value.strip():
                return value
        return None

    # Cache

    def _read_cache(self, key: str) -> Optional[Dict[str, Any]]:
        try:
            entry = self.store.get(key)
        except CorruptCacheEntry as e:
            self.logger.warning("Dropping unreadable resolution cache entry", key=key, error=str(e))
            self.logger.record_cache_repair(evicted=True)
            self.store.delete(key)
            return None
        if not isinstance(entry, dict):
            return None
        cached_at = entry.get("cachedAt")
        ttl = entry.get("ttl", self.ttl_seconds)
        if not isinstance(cached_at, (int, float)) or self._clock() - cached_at > ttl:
            self.logger.debug("Resolution cache entry stale", key=key)
            return None

        result = validate_resolution_payload(entry.get("payload"))
        if result.verdict is Verdict.INVALID:
            self.logger.warning("Dropping invalid resolution cache entry", key=key, errors=result.errors)
            self.logger.record_cache_repair(evicted=True)
            self.store.delete(key)
            return None
        if result.verdict is Verdict.REPAIRED:
            self.logger.warning(
                "Repaired corrupt resolution cache entry",
                key=key,
                outcome="repaired",
                fields=result.repaired_fields,
            )
            self.logger.record_cache_repair()
            remaining = max(1.0, ttl - (self._clock() - cached_at))
            self.store.set(key, {**entry, "payload": result.payload}, ttl_seconds=remaining)
        return result.payload

    def _write_cache(self, key: str, payload: Dict[str, Any]) -> None:
        entry = {
            "key": key,
            "payload": payload,
            "cachedAt": self._clock(),
            "ttl": self.ttl_seconds,
        }
        self.store.set(key, entry, ttl_seconds=self.ttl_seconds)

    def invalidate(self, name: str) -> None:
        self.store.delete(cache_key(name))

    # Cascade

    def _stage(self, filter_groups: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        page = self.client.search(
            self.object_type,
            filter_groups=filter_groups,
            properties=self.properties,
            limit=STAGE_LIMIT,
        )
        return page["results"]

    def _name_filter(self, operator: str, value: str) -> List[Dict[str, Any]]:
        return [{"filters": [{"propertyName": self.name_property, "operator": operator, "value": value}]}]

    def candidates(self, name: str) -> List[Dict[str, Any]]:
        """Run the search cascade; returns raw records in discovery order."""
        normalized = normalize_text(name)

        found = self._stage(self._name_filter("EQ", normalized))
        if found:
            return found

        found = self._stage(self._name_filter("CONTAINS_TOKEN", name.strip()))
        if found:
            return found

        words = significant_words(name)
        if len(tokenize(name)) > 1 and words:
            groups = [
                {"filters": [{"propertyName": self.name_property, "operator": "CONTAINS_TOKEN", "value": w}]}
                for w in words[:MAX_FILTER_GROUPS]
            ]
            found = self._stage(groups)
            if found:
                return found

        page = self.client.search(
            self.object_type,
            properties=self.properties,
            sorts=[{"propertyName": "hs_lastmodifieddate", "direction": "DESCENDING"}],
            limit=self.broad_limit,
        )
        recent = page["results"]
        contained = [r for r in recent if normalized in normalize_text(self.record_name(r) or "")]
        if contained:
            return contained
        return [r for r in recent if word_overlap(name, self.record_name(r)) >= MIN_WORD_OVERLAP]

    def rank(self, name: str, records: List[Dict[str, Any]]) -> List[Tuple[int, Dict[str, Any]]]:
        """
        Score and order candidates, best first.

        Ties keep discovery order (stable sort). Duplicate ids keep their
        first occurrence.
        """
        seen = set()
        unique = []
        for record in records:
            record_id = str(record.get("id"))
            if record_id not in seen:
                seen.add(record_id)
                unique.append(record)

        target = normalize_text(name)
        scored = []
        for record in unique:
            candidate = self.record_name(record)
            score = score_candidate(name, candidate)
            if candidate and normalize_text(candidate) == target:
                return [(score, record)]
            scored.append((score, record))
        return sorted(scored, key=lambda pair: -pair[0])

    def resolve(self, name: str) -> Optional[Dict[str, Any]]:
        """
        Resolve ``name`` to a canonical partnership dict, or None.

        The dict is ``PartnershipRecord`` fields plus ``matchScore``.
        """
        if not name or not name.strip():
            return None
        key = cache_key(name)

        cached = self._read_cache(key)
        self.logger.record_cache_lookup(cached is not None)
        if cached is not None:
            self.logger.debug("Resolution cache hit", key=key, outcome="cache_hit")
            return cached

        try:
            score, record = self._best(name)
        except NotFoundError as e:
            self.logger.info("Name not resolved", name=name, outcome="not_found", reason=str(e))
            return None

        payload = partnership_from_remote(record).to_dict()
        payload["matchScore"] = score
        self._write_cache(key, payload)
        self.logger.info("Name resolved", name=name, outcome="resolved", record_id=payload["id"], score=score)
        return payload

    def resolve_or_raise(self, name: str) -> Dict[str, Any]:
        payload = self.resolve(name)
        if payload is None:
            raise NotFoundError(f"No record matches '{name}'")
        return payload

    def _best(self, name: str) -> Tuple[int, Dict[str, Any]]:
        ranked = self.rank(name, self.candidates(name))
        if not ranked:
            raise NotFoundError("cascade exhausted")
        score, record = ranked[0]
        if score <= 0:
            raise NotFoundError(f"best candidate scored {score}")
        return score, record
