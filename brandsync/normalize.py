"""
Canonical normalization applied once at the data boundary.

Remote records carry several property names for the same concept. These
helpers pick the first populated alias in a fixed order and return the
canonical record types; nothing past this module reads raw properties.
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from bs4 import BeautifulSoup

from .models import BrandRecord, PartnershipRecord

PLACEHOLDER_TITLES = {
    "untitled",
    "untitled project",
    "tbd",
    "tba",
    "pending",
    "n/a",
    "na",
    "not specified",
    "unknown",
}

BRAND_ALIASES = {
    "name": ("brand_name", "name"),
    "category": ("main_category", "new_product_main_category"),
    "subcategories": ("product_sub_category__multi_",),
    "client_status": ("client_status",),
    "client_type": ("client_type",),
    "relationship_type": ("relationship_type",),
    "partnership_count": ("partnership_count",),
    "deals_count": ("deals_count",),
    "owner": ("hubspot_owner_id",),
    "last_modified_at": ("hs_lastmodifieddate",),
    "one_sheet_link": ("one_sheet_link",),
    "target_age_groups": ("target_age_group__multi_",),
    "target_generation": ("target_gen",),
    "website_url": ("brand_website_url", "domain"),
    "partner_agency_id": ("partner_agency_id",),
}

PARTNERSHIP_ALIASES = {
    "name": ("partnership_name", "production_name", "title"),
    "genres": ("genre_production", "genre"),
    "rating": ("movie_rating", "tv_ratings", "rating"),
    "sub_ratings": ("sub_ratings_for_tv_content",),
    "release_date": ("release__est__date", "release_est_date", "releaseDate"),
    "start_date": ("start_date", "production_start_date", "est__shooting_start_date"),
    "synopsis": ("synopsis",),
    "pipeline_stage": ("hs_pipeline_stage",),
    "production_stage": ("production_stage",),
    "production_type": ("production_type",),
    "distributor": ("distributor",),
    "priority": ("priority", "hs_priority"),
}


def normalize_text(s: str) -> str:
    return " ".join(s.strip().lower().split())


def _is_blank(v: Any) -> bool:
    return v is None or (isinstance(v, str) and v.strip() == "")


def first_present(props: Dict[str, Any], aliases: Iterable[str]) -> Optional[Any]:
    """Return the first non-blank value among ``aliases``."""
    for key in aliases:
        value = props.get(key)
        if not _is_blank(value):
            return value
    return None


def split_multi(value: Any) -> List[str]:
    """Split a multi-select property (``a;b;c``) into trimmed tags."""
    if _is_blank(value):
        return []
    if isinstance(value, (list, tuple)):
        parts = [str(v) for v in value]
    else:
        parts = re.split(r"[;,]", str(value))
    return [p.strip() for p in parts if p.strip()]


def parse_count(value: Any) -> int:
    if _is_blank(value):
        return 0
    try:
        return int(float(str(value).strip()))
    except (ValueError, OverflowError):
        return 0


def strip_html(text: Optional[str]) -> Optional[str]:
    """Flatten rich-text property values to plain text."""
    if _is_blank(text):
        return None
    if "<" not in text:
        return text.strip()
    plain = BeautifulSoup(text, "html.parser").get_text(" ", strip=True)
    return " ".join(plain.split()) or None


def normalize_title(title: Optional[str]) -> Optional[str]:
    """Map placeholder titles ("Untitled", "TBD", ...) to None."""
    if _is_blank(title):
        return None
    cleaned = " ".join(str(title).split())
    if normalize_text(cleaned) in PLACEHOLDER_TITLES:
        return None
    return cleaned


def _text(props: Dict[str, Any], aliases: Iterable[str]) -> Optional[str]:
    value = first_present(props, aliases)
    return None if value is None else str(value).strip()


def brand_from_remote(record: Dict[str, Any]) -> BrandRecord:
    """Build a ``BrandRecord`` from a raw ``{id, properties}`` record."""
    props = record.get("properties") or {}
    a = BRAND_ALIASES
    return BrandRecord(
        id=str(record.get("id") or props.get("hs_object_id")),
        name=_text(props, a["name"]),
        category=_text(props, a["category"]),
        subcategories=split_multi(first_present(props, a["subcategories"])),
        client_status=_text(props, a["client_status"]),
        client_type=_text(props, a["client_type"]),
        relationship_type=_text(props, a["relationship_type"]),
        partnership_count=parse_count(first_present(props, a["partnership_count"])),
        deals_count=parse_count(first_present(props, a["deals_count"])),
        owner_assigned=first_present(props, a["owner"]) is not None,
        last_modified_at=_text(props, a["last_modified_at"]),
        one_sheet_link=_text(props, a["one_sheet_link"]),
        target_age_groups=split_multi(first_present(props, a["target_age_groups"])),
        target_generation=_text(props, a["target_generation"]),
        website_url=_text(props, a["website_url"]),
        partner_agency_id=_text(props, a["partner_agency_id"]),
    )


def partnership_from_remote(record: Dict[str, Any]) -> PartnershipRecord:
    """Build a ``PartnershipRecord`` from a raw ``{id, properties}`` record."""
    props = record.get("properties") or {}
    a = PARTNERSHIP_ALIASES
    return PartnershipRecord(
        id=str(record.get("id") or props.get("hs_object_id")),
        name=normalize_title(_text(props, a["name"])),
        genres=split_multi(first_present(props, a["genres"])),
        rating=normalize_title(_text(props, a["rating"])),
        sub_ratings=_text(props, a["sub_ratings"]),
        release_date=_text(props, a["release_date"]),
        start_date=_text(props, a["start_date"]),
        synopsis=strip_html(_text(props, a["synopsis"])),
        pipeline_stage=_text(props, a["pipeline_stage"]),
        production_stage=_text(props, a["production_stage"]),
        production_type=_text(props, a["production_type"]),
        distributor=_text(props, a["distributor"]),
        priority=_text(props, a["priority"]),
    )
