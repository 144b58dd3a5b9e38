"""
Tests for the brand cache membership rule.
"""

import pytest

from brandsync.membership import MEMBER_STATUSES, PARTNER_AGENCY_CLIENT, is_member, member_filter_groups


def props(**overrides):
    base = {
        "client_status": "Active",
        "new_product_main_category": "Automotive",
        "hubspot_owner_id": "42",
    }
    base.update(overrides)
    return base


class TestIsMember:
    """Test local evaluation of the rule."""

    @pytest.mark.parametrize("status", MEMBER_STATUSES)
    def test_member_statuses(self, status):
        assert is_member(props(client_status=status))

    @pytest.mark.parametrize("status", ["Inactive", "Contract", "", None])
    def test_other_statuses(self, status):
        assert not is_member(props(client_status=status))

    def test_requires_category(self):
        assert not is_member(props(new_product_main_category=""))
        assert not is_member(props(new_product_main_category=None))

    def test_requires_owner(self):
        assert not is_member(props(hubspot_owner_id=None))
        assert not is_member(props(hubspot_owner_id="  "))

    def test_partner_agency_client_overrides(self):
        assert is_member({"relationship_type": PARTNER_AGENCY_CLIENT, "client_status": "Inactive"})

    def test_empty(self):
        assert not is_member({})


class TestFilterGroups:
    """Remote filter groups express the same rule."""

    def test_shape(self):
        groups = member_filter_groups()
        assert len(groups) == 2

        core = {f["propertyName"]: f for f in groups[0]["filters"]}
        assert core["client_status"]["operator"] == "IN"
        assert core["client_status"]["values"] == list(MEMBER_STATUSES)
        assert core["new_product_main_category"]["operator"] == "HAS_PROPERTY"
        assert core["hubspot_owner_id"]["operator"] == "HAS_PROPERTY"

        agency = groups[1]["filters"][0]
        assert agency == {"propertyName": "relationship_type", "operator": "EQ", "value": PARTNER_AGENCY_CLIENT}
