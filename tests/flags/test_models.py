"""Tests for the feature flag model and default table."""

import pytest

from gatekeeper.flags import DEFAULT_FLAGS, FeatureFlag, find_dependency_cycles


def test_rollout_percent_bounds() -> None:
    """Percentages outside 0-100 cannot be represented."""
    with pytest.raises(ValueError, match="0-100"):
        FeatureFlag("bad", rollout_percent=101)
    with pytest.raises(ValueError, match="0-100"):
        FeatureFlag("bad", rollout_percent=-1)


def test_default_flags_are_acyclic() -> None:
    """The shipped flag table has no dependency cycles."""
    adjacency = {flag.name: flag.dependencies for flag in DEFAULT_FLAGS}

    assert len(DEFAULT_FLAGS) == 11
    assert find_dependency_cycles(adjacency) == []


def test_dependencies_point_at_known_flags() -> None:
    """Every default dependency names a default flag."""
    names = {flag.name for flag in DEFAULT_FLAGS}

    for flag in DEFAULT_FLAGS:
        assert set(flag.dependencies) <= names


def test_find_cycles() -> None:
    """Cycles are reported as closed paths."""
    adjacency = {
        "a": ("b",),
        "b": ("c",),
        "c": ("a",),
        "d": ("d",),
        "e": ("missing",),
    }

    cycles = find_dependency_cycles(adjacency)

    assert ["a", "b", "c", "a"] in cycles
    assert ["d", "d"] in cycles
    assert len(cycles) == 2
