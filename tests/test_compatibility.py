"""
Tests for the compatibility resolver.

Covers the rule order (current container, active, locks, tag, coverage),
asymmetric shift compatibility and coverage key normalization.
"""

import pytest

from factories import make_container, make_entity
from transit_reassign.domain.compatibility import (
    CONTAINER_INACTIVE,
    CONTAINER_LOCKED,
    COVERAGE_MISMATCH,
    ENTITY_LOCKED,
    SAME_CONTAINER,
    TAG_INCOMPATIBLE,
    covers,
    eligible_containers,
    ineligibility_reason,
    is_eligible,
    normalize_coverage_key,
    tag_compatible,
)
from transit_reassign.domain.constraints import ReassignmentPolicy


class TestTagCompatibility:
    """Shift tags are matched asymmetrically."""

    @pytest.mark.parametrize(
        "entity_tag, container_tag, expected",
        [
            ("morning", "morning", True),
            ("morning", "both", True),
            ("morning", "evening", False),
            ("evening", "both", True),
            ("evening", "evening", False),
            ("evening", "morning", False),
            ("both", "both", True),
            ("both", "morning", False),
            ("Morning ", "BOTH", True),
        ],
    )
    def test_default_table(self, entity_tag, container_tag, expected):
        assert tag_compatible(entity_tag, container_tag) is expected

    def test_missing_entity_tag_defaults_to_morning(self):
        assert tag_compatible(None, "morning") is True
        assert tag_compatible("", "evening") is False

    def test_missing_container_tag_is_wildcard(self):
        assert tag_compatible("evening", None) is True

    def test_unknown_tag_matches_itself_or_wildcard(self):
        assert tag_compatible("night", "night") is True
        assert tag_compatible("night", "both") is True
        assert tag_compatible("night", "morning") is False

    def test_custom_compatibility_table(self):
        policy = ReassignmentPolicy(tag_compatibility={"evening": frozenset({"evening", "both"})})
        assert tag_compatible("evening", "evening", policy) is True


class TestCoverage:
    """Stop keys compare case- and punctuation-insensitively."""

    @pytest.mark.parametrize("raw", ["ADTU_Campus", "adtu campus", " adtu-campus ", "AdTu.Campus"])
    def test_normalization(self, raw):
        assert normalize_coverage_key(raw) == "adtucampus"

    def test_empty_key_never_covered(self):
        container = make_container("bus_1", coverage=("",))
        assert normalize_coverage_key(None) == ""
        assert covers(container, "") is False

    def test_covers_uses_normalized_keys(self):
        container = make_container("bus_1", coverage=("Stop A", "Six Mile"))
        assert covers(container, "stop_a") is True
        assert covers(container, "SIX-MILE") is True
        assert covers(container, "stop_c") is False


class TestRuleOrder:
    """ineligibility_reason reports the first failing rule."""

    def test_eligible_pair(self):
        entity = make_entity("e1", "bus_1")
        assert ineligibility_reason(entity, make_container("bus_2")) is None
        assert is_eligible(entity, make_container("bus_2")) is True

    def test_current_container_excluded_by_default(self):
        entity = make_entity("e1", "bus_1")
        assert ineligibility_reason(entity, make_container("bus_1")) == SAME_CONTAINER

    def test_current_container_allowed_for_manual_staging(self):
        entity = make_entity("e1", "bus_1")
        assert is_eligible(entity, make_container("bus_1"), allow_current=True) is True

    def test_inactive_before_lock(self):
        entity = make_entity("e1", "bus_1", locked=True)
        container = make_container("bus_2", active=False, locked=True)
        assert ineligibility_reason(entity, container) == CONTAINER_INACTIVE

    def test_container_locked(self):
        entity = make_entity("e1", "bus_1")
        assert ineligibility_reason(entity, make_container("bus_2", locked=True)) == CONTAINER_LOCKED

    def test_entity_locked(self):
        entity = make_entity("e1", "bus_1", locked=True)
        assert ineligibility_reason(entity, make_container("bus_2")) == ENTITY_LOCKED

    def test_tag_before_coverage(self):
        entity = make_entity("e1", "bus_1", tag="evening", coverage_key="nowhere")
        assert ineligibility_reason(entity, make_container("bus_2", tag="morning")) == TAG_INCOMPATIBLE

    def test_coverage_mismatch(self):
        entity = make_entity("e1", "bus_1", coverage_key="stop_z")
        assert ineligibility_reason(entity, make_container("bus_2")) == COVERAGE_MISMATCH

    def test_reserved_entity_skips_coverage(self):
        entity = make_entity("d1", "bus_1", coverage_key="stop_z", reserved=True)
        assert is_eligible(entity, make_container("bus_2")) is True


class TestEligibleContainers:
    def test_filters_and_keeps_order(self):
        entity = make_entity("e1", "bus_1", tag="evening")
        containers = [
            make_container("bus_1"),
            make_container("bus_3"),
            make_container("bus_2", tag="morning"),
            make_container("bus_4", active=False),
            make_container("bus_5"),
        ]
        assert [c.container_id for c in eligible_containers(entity, containers)] == ["bus_3", "bus_5"]
