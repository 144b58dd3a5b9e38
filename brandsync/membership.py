"""
Brand cache membership rule.

A brand belongs in the local cache when

    (status in MEMBER_STATUSES and has a category tag and has an owner)
    or relationship type is "Partner Agency Client".

``is_member`` evaluates the rule locally; ``member_filter_groups`` emits
the same rule as remote search filter groups. Both read the constants
below so the two can not drift apart.
"""

from typing import Any, Dict, List

STATUS_PROPERTY = "client_status"
CATEGORY_PROPERTY = "new_product_main_category"
OWNER_PROPERTY = "hubspot_owner_id"
RELATIONSHIP_PROPERTY = "relationship_type"

MEMBER_STATUSES = ("Active", "Pending (Prospect)", "Pending")
PARTNER_AGENCY_CLIENT = "Partner Agency Client"

BRAND_CACHE_PROPERTIES = [
    "brand_name",
    "brand_website_url",
    "main_category",
    CATEGORY_PROPERTY,
    RELATIONSHIP_PROPERTY,
    "partner_agency_id",
    "product_sub_category__multi_",
    STATUS_PROPERTY,
    "client_type",
    "partnership_count",
    "deals_count",
    OWNER_PROPERTY,
    "hs_lastmodifieddate",
    "one_sheet_link",
    "target_gen",
    "target_age_group__multi_",
]

WATCHED_PROPERTIES = [OWNER_PROPERTY, STATUS_PROPERTY, CATEGORY_PROPERTY, RELATIONSHIP_PROPERTY]


def _has_value(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def is_member(props: Dict[str, Any]) -> bool:
    core = (
        props.get(STATUS_PROPERTY) in MEMBER_STATUSES
        and _has_value(props.get(CATEGORY_PROPERTY))
        and _has_value(props.get(OWNER_PROPERTY))
    )
    return bool(core) or props.get(RELATIONSHIP_PROPERTY) == PARTNER_AGENCY_CLIENT


def member_filter_groups() -> List[Dict[str, Any]]:
    """Remote search filter groups (OR of AND-groups) for ``is_member``."""
    return [
        {
            "filters": [
                {"propertyName": STATUS_PROPERTY, "operator": "IN", "values": list(MEMBER_STATUSES)},
                {"propertyName": CATEGORY_PROPERTY, "operator": "HAS_PROPERTY"},
                {"propertyName": OWNER_PROPERTY, "operator": "HAS_PROPERTY"},
            ]
        },
        {
            "filters": [
                {"propertyName": RELATIONSHIP_PROPERTY, "operator": "EQ", "value": PARTNER_AGENCY_CLIENT},
            ]
        },
    ]
