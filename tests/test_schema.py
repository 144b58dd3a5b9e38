"""
Tests for cached resolution payload validation.
"""

import pytest

from brandsync.schema import (
    Verdict,
    looks_like_prose,
    validate_partnership_payload,
    validate_resolution_payload,
)

SYNOPSIS = (
    "A burned-out pastor discovers his faith again when a family secret "
    "surfaces over seventeen Sundays in a small town."
)


@pytest.fixture
def good_payload():
    return {
        "id": "1001",
        "name": "17 Sundays",
        "genres": ["Drama", "Family"],
        "rating": "PG-13",
        "synopsis": SYNOPSIS,
        "matchScore": 100,
    }


class TestValidatePartnershipPayload:
    """Test structural validation."""

    def test_valid_payload(self, good_payload):
        assert validate_partnership_payload(good_payload) == []

    def test_not_a_mapping(self):
        assert validate_partnership_payload(["1001"]) == ["Payload must be a mapping"]

    def test_missing_id(self):
        errors = validate_partnership_payload({"name": "x"})
        assert any("id" in err for err in errors)

    def test_blank_id(self):
        assert validate_partnership_payload({"id": "   "})

    def test_placeholder_name_is_allowed(self):
        """A placeholder title normalized to None is still a valid payload."""
        assert validate_partnership_payload({"id": "1", "name": None}) == []

    def test_wrong_genres_type(self):
        errors = validate_partnership_payload({"id": "1", "genres": "Drama"})
        assert any("genres" in err for err in errors)


class TestLooksLikeProse:
    """Test narrative-prose detection."""

    @pytest.mark.parametrize("tag", ["Drama", "Romantic Comedy", "Sci-Fi", "Faith & Family"])
    def test_tags_are_not_prose(self, tag):
        assert not looks_like_prose(tag)

    def test_sentence_punctuation(self):
        assert looks_like_prose("Drama. A pastor")

    def test_too_many_words(self):
        assert looks_like_prose("a pastor in a small town")

    def test_narrative_marker(self):
        assert looks_like_prose("follows")

    def test_non_string(self):
        assert not looks_like_prose(None)


class TestValidateResolutionPayload:
    """Test Ok / Repaired / Invalid verdicts."""

    def test_ok(self, good_payload):
        result = validate_resolution_payload(good_payload)
        assert result.verdict is Verdict.OK
        assert result.payload == good_payload

    def test_prose_in_genres_is_repaired(self, good_payload):
        good_payload["genres"] = ["Drama", "A burned-out pastor discovers his faith again"]
        result = validate_resolution_payload(good_payload)

        assert result.verdict is Verdict.REPAIRED
        assert result.repaired_fields == ["genres"]
        assert result.payload["genres"] == []
        assert result.payload["name"] == "17 Sundays"

    def test_synopsis_fragment_in_genres_is_repaired(self, good_payload):
        good_payload["genres"] = ["small town"]  # two words: not flagged
        assert validate_resolution_payload(good_payload).verdict is Verdict.OK

        good_payload["genres"] = ["seventeen sundays in"]
        result = validate_resolution_payload(good_payload)
        assert result.verdict is Verdict.REPAIRED

    def test_prose_rating_is_repaired(self, good_payload):
        good_payload["rating"] = "Rated for thematic elements"
        result = validate_resolution_payload(good_payload)

        assert result.verdict is Verdict.REPAIRED
        assert result.payload["rating"] is None
        assert result.payload["genres"] == ["Drama", "Family"]

    def test_repair_does_not_mutate_input(self, good_payload):
        good_payload["genres"] = ["The story of a family."]
        validate_resolution_payload(good_payload)
        assert good_payload["genres"] == ["The story of a family."]

    def test_invalid(self):
        result = validate_resolution_payload({"name": "17 Sundays"})
        assert result.verdict is Verdict.INVALID
        assert result.payload is None
        assert result.errors
