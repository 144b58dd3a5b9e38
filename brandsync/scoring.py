"""
Partnership to brand compatibility scoring.

Pure functions over canonical records; no I/O. Scores are additive:

    genre -> category match     +30 per matching genre
    rating -> age bracket match +20 per matching bracket
    Active brand                +15
    partnership count           +10 if > 10, else +5 if > 5
"""

from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .models import BrandRecord, MatchResult, PartnershipRecord, ScoredBrand
from .normalize import normalize_text

TOP_K = 30

GENRE_CATEGORIES: Dict[str, List[str]] = {
    "action": ["Automotive", "Sports & Fitness", "Electronics & Appliances"],
    "comedy": ["Food & Beverage", "Entertainment"],
    "drama": ["Fashion & Apparel", "Health & Beauty"],
    "horror": ["Entertainment", "Gaming"],
    "romance": ["Fashion & Apparel", "Health & Beauty", "Floral"],
    "thriller": ["Automotive", "Security", "Electronics & Appliances"],
    "family": ["Food & Beverage", "Baby Care", "Entertainment"],
}

RATING_AGE_BRACKETS: Dict[str, List[str]] = {
    "g": ["Kids", "Family"],
    "tv-y": ["Kids", "Family"],
    "tv-y7": ["Kids", "Family"],
    "tv-g": ["Kids", "Family"],
    "pg": ["Kids", "Teens", "Family"],
    "tv-pg": ["Kids", "Teens", "Family"],
    "pg-13": ["Teens", "Young Adults"],
    "tv-14": ["Teens", "Young Adults"],
    "r": ["Young Adults", "Adults"],
    "tv-ma": ["Adults"],
    "nc-17": ["Adults"],
}

POOL_LIMITS: Dict[str, int] = {
    "Active": 150,
    "Inactive": 75,
    "Pending": 200,
}

GENRE_POINTS = 30
AGE_POINTS = 20
ACTIVE_POINTS = 15


def _categories_for(genre: str) -> List[str]:
    return GENRE_CATEGORIES.get(normalize_text(genre), [])


def _brackets_for(rating: Optional[str]) -> List[str]:
    if not rating:
        return []
    return RATING_AGE_BRACKETS.get(normalize_text(rating), [])


def score_pair(partnership: PartnershipRecord, brand: BrandRecord) -> Tuple[int, Dict[str, int]]:
    """
    Score one (partnership, brand) pair.

    Returns:
        (total, breakdown) where breakdown maps each rule to its points
    """
    breakdown = {"genre": 0, "age": 0, "status": 0, "experience": 0}

    if brand.category:
        category = normalize_text(brand.category)
        for genre in partnership.genres:
            if category in (normalize_text(c) for c in _categories_for(genre)):
                breakdown["genre"] += GENRE_POINTS

    brand_ages = {normalize_text(a) for a in brand.target_age_groups}
    for bracket in _brackets_for(partnership.rating):
        if normalize_text(bracket) in brand_ages:
            breakdown["age"] += AGE_POINTS

    if brand.client_status == "Active":
        breakdown["status"] = ACTIVE_POINTS

    if brand.partnership_count > 10:
        breakdown["experience"] = 10
    elif brand.partnership_count > 5:
        breakdown["experience"] = 5

    return sum(breakdown.values()), breakdown


def rank_brands(partnership: PartnershipRecord, brands: Iterable[BrandRecord], top_k: int = TOP_K) -> MatchResult:
    scored = []
    for brand in sorted(brands, key=lambda b: b.id):
        total, breakdown = score_pair(partnership, brand)
        scored.append(ScoredBrand(brand_id=brand.id, score=total, breakdown=breakdown, name=brand.name))
    # stable: equal scores stay in brand id order
    scored.sort(key=lambda s: -s.score)
    return MatchResult(partnership_id=partnership.id, brands=scored[:top_k])


def match_partnerships(
    partnerships: Sequence[PartnershipRecord],
    brands: Sequence[BrandRecord],
    top_k: int = TOP_K,
) -> List[MatchResult]:
    """One MatchResult per partnership, in input order."""
    if top_k < 0:
        raise ValueError("top_k must be >= 0")
    return [rank_brands(p, brands, top_k) for p in partnerships]


def _bucket(status: Optional[str]) -> Optional[str]:
    if not status:
        return None
    if status.startswith("Pending"):
        return "Pending"
    return status if status in POOL_LIMITS else None


def stratify_brand_pool(
    brands: Iterable[BrandRecord],
    limits: Optional[Dict[str, int]] = None,
) -> List[BrandRecord]:
    """
    Cap the candidate pool per status bucket, keeping input order.

    "Pending (Prospect)" counts toward the Pending bucket. Brands whose
    status has no bucket are left out.
    """
    limits = limits or POOL_LIMITS
    counts: Dict[str, int] = {}
    pool = []
    for brand in brands:
        bucket = _bucket(brand.client_status)
        if bucket is None or bucket not in limits:
            continue
        if counts.get(bucket, 0) >= limits[bucket]:
            continue
        counts[bucket] = counts.get(bucket, 0) + 1
        pool.append(brand)
    return pool
