"""Canonical record types used everywhere past the data boundary."""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class BrandRecord:
    id: str
    name: Optional[str] = None
    category: Optional[str] = None
    subcategories: List[str] = field(default_factory=list)
    client_status: Optional[str] = None
    client_type: Optional[str] = None
    relationship_type: Optional[str] = None
    partnership_count: int = 0
    deals_count: int = 0
    owner_assigned: bool = False
    last_modified_at: Optional[str] = None
    one_sheet_link: Optional[str] = None
    target_age_groups: List[str] = field(default_factory=list)
    target_generation: Optional[str] = None
    website_url: Optional[str] = None
    partner_agency_id: Optional[str] = None


@dataclass
class PartnershipRecord:
    id: str
    name: Optional[str] = None
    genres: List[str] = field(default_factory=list)
    rating: Optional[str] = None
    sub_ratings: Optional[str] = None
    release_date: Optional[str] = None
    start_date: Optional[str] = None
    synopsis: Optional[str] = None
    pipeline_stage: Optional[str] = None
    production_stage: Optional[str] = None
    production_type: Optional[str] = None
    distributor: Optional[str] = None
    priority: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ScoredBrand:
    brand_id: str
    score: int
    breakdown: Dict[str, int]
    name: Optional[str] = None


@dataclass
class MatchResult:
    partnership_id: str
    brands: List[ScoredBrand]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "partnershipId": self.partnership_id,
            "brands": [
                {"brandId": b.brand_id, "name": b.name, "score": b.score, "breakdown": b.breakdown}
                for b in self.brands
            ],
        }
