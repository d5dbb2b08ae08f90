# hmohunter/domain/matching.py
"""
Record matching: decide which stored/fetched record (if any) describes the
same real-world property as a target listing.

Two scoring strategies sit behind one Matcher:

points (default)
    Additive evidence: proximity band + bedroom equality + house-number
    equality + street-token overlap. Threshold 50 means one strong signal
    (within 15 m) or two corroborating weak ones (same house number and a
    shared street word) are needed. Favours precision: two flats in the same
    building with the same bedroom count and no coordinates will merge, while
    neighbours on one street (different numbers) never do.

similarity
    Normalized Levenshtein ratio on street-level addresses, containment
    short-circuits to 0.9, equal bedrooms multiply by 1.1. Threshold 0.6.
    More forgiving of spelling noise but happy to pair "12 Elm" with
    "14 Elm", so it is only suited to pairings already narrowed to a single
    building (e.g. a listing-id lookup returning a few results).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Generic, Iterable, Protocol, TypeVar

from rapidfuzz.distance import Levenshtein

from .address import extract_house_number, normalize_address, street_tokens
from .geo import haversine_m

T = TypeVar("T")


class Matchable(Protocol):
    address: str | None
    latitude: float | None
    longitude: float | None
    bedrooms: int | None


@dataclass(frozen=True)
class MatchConfig:
    strategy: str = "points"  # points|similarity
    threshold: float | None = None  # None => strategy default

    # points
    near_distance_m: float = 15.0
    near_points: float = 50.0
    far_distance_m: float = 30.0
    far_points: float = 40.0
    bedroom_points: float = 15.0
    house_number_points: float = 20.0
    token_overlap_points: float = 30.0
    min_token_length: int = 3
    min_shared_tokens_with_number: int = 1
    min_shared_tokens_without_number: int = 2

    # similarity
    containment_score: float = 0.9
    bedroom_multiplier: float = 1.1

    @classmethod
    def from_settings(cls, settings: Any) -> "MatchConfig":
        return cls(
            strategy=(getattr(settings, "MATCH_STRATEGY", None) or "points").strip().lower(),
            threshold=getattr(settings, "MATCH_THRESHOLD", None),
        )


@dataclass(frozen=True)
class MatchCandidate(Generic[T]):
    candidate: T
    score: float
    signals: dict[str, float] = field(default_factory=dict)


def _coords(obj: Any) -> tuple[float, float] | None:
    lat = getattr(obj, "latitude", None)
    lng = getattr(obj, "longitude", None)
    if lat is None or lng is None:
        return None
    return float(lat), float(lng)


def _same_bedrooms(a: Any, b: Any) -> bool:
    ba = getattr(a, "bedrooms", None)
    bb = getattr(b, "bedrooms", None)
    return ba is not None and bb is not None and int(ba) == int(bb)


class PointsScorer:
    name = "points"
    default_threshold = 50.0

    def __init__(self, config: MatchConfig) -> None:
        self.config = config

    def score(self, target: Any, candidate: Any) -> tuple[float, dict[str, float]]:
        cfg = self.config
        signals: dict[str, float] = {}

        a, b = _coords(target), _coords(candidate)
        if a and b:
            dist = haversine_m(a[0], a[1], b[0], b[1])
            if dist <= cfg.near_distance_m:
                signals["proximity"] = cfg.near_points
            elif dist <= cfg.far_distance_m:
                signals["proximity"] = cfg.far_points

        if _same_bedrooms(target, candidate):
            signals["bedrooms"] = cfg.bedroom_points

        num_a = extract_house_number(getattr(target, "address", None))
        num_b = extract_house_number(getattr(candidate, "address", None))
        same_number = bool(num_a and num_b and num_a == num_b)
        if same_number:
            signals["house_number"] = cfg.house_number_points

        if "proximity" not in signals:
            shared = street_tokens(getattr(target, "address", None), min_length=cfg.min_token_length) & street_tokens(
                getattr(candidate, "address", None), min_length=cfg.min_token_length
            )
            if same_number and len(shared) >= cfg.min_shared_tokens_with_number:
                signals["token_overlap"] = cfg.token_overlap_points
            elif not num_a and not num_b and len(shared) >= cfg.min_shared_tokens_without_number:
                signals["token_overlap"] = cfg.token_overlap_points

        return sum(signals.values()), signals


class SimilarityScorer:
    name = "similarity"
    default_threshold = 0.6

    def __init__(self, config: MatchConfig) -> None:
        self.config = config

    def similarity(self, addr1: str | None, addr2: str | None) -> float:
        s1 = normalize_address(addr1, strip_street_suffixes=True)
        s2 = normalize_address(addr2, strip_street_suffixes=True)
        if not s1 or not s2:
            return 0.0
        if s1 == s2:
            return 1.0
        if s1 in s2 or s2 in s1:
            return self.config.containment_score
        return Levenshtein.normalized_similarity(s1, s2)

    def score(self, target: Any, candidate: Any) -> tuple[float, dict[str, float]]:
        sim = self.similarity(getattr(target, "address", None), getattr(candidate, "address", None))
        signals = {"similarity": round(sim, 4)}
        if sim > 0 and _same_bedrooms(target, candidate):
            signals["bedroom_multiplier"] = self.config.bedroom_multiplier
            sim *= self.config.bedroom_multiplier
        return sim, signals


SCORERS: dict[str, type] = {
    PointsScorer.name: PointsScorer,
    SimilarityScorer.name: SimilarityScorer,
}


class Matcher:
    def __init__(self, config: MatchConfig | None = None) -> None:
        self.config = config or MatchConfig()
        scorer_cls = SCORERS.get(self.config.strategy)
        if scorer_cls is None:
            raise ValueError(f"Unknown match strategy {self.config.strategy!r}. Use one of {sorted(SCORERS)}.")
        self.scorer = scorer_cls(self.config)
        self.threshold = (
            float(self.config.threshold) if self.config.threshold is not None else float(scorer_cls.default_threshold)
        )

    def score(self, target: Matchable, candidate: T) -> MatchCandidate[T]:
        value, signals = self.scorer.score(target, candidate)
        return MatchCandidate(candidate=candidate, score=value, signals=signals)

    def best_match(self, target: Matchable, candidates: Iterable[T]) -> MatchCandidate[T] | None:
        """
        Highest-scoring candidate at or above the threshold; earliest wins ties.
        None means "no match" (treat the target as new), never an error.
        """
        best: MatchCandidate[T] | None = None
        for cand in candidates:
            scored = self.score(target, cand)
            if scored.score < self.threshold:
                continue
            if best is None or scored.score > best.score:
                best = scored
        return best
