"""
Unit tests for the permission override diff.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_users.app.domain.models import OverrideEffect, PermissionOverride
from service_users.app.domain.overrides import OverrideDiff, compute_override_diff


def ov(permission_id, effect):
    return PermissionOverride(permission_id=permission_id, effect=effect)


class TestOverrideDiff:
    """Test cases for compute_override_diff."""

    def test_only_new_entry_upserted(self):
        """Test an unchanged entry is not resent when another is added."""
        diff = compute_override_diff([ov("p1", "ALLOW")], True, [ov("p1", "ALLOW"), ov("p2", "DENY")])

        assert diff.to_remove == []
        assert diff.to_upsert == [ov("p2", "DENY")]

    def test_disabled_with_empty_target(self):
        """Test disabling removes all stored ids in order."""
        diff = compute_override_diff([ov("p1", "ALLOW"), ov("p2", "DENY")], False, [])

        assert diff.to_remove == ["p1", "p2"]
        assert diff.to_upsert == []

    def test_change_effect_and_remove(self):
        """Test a changed effect is upserted and a dropped entry removed."""
        previous = [ov("A", "ALLOW"), ov("B", "DENY")]

        diff = compute_override_diff(previous, True, [ov("A", "DENY")])

        assert diff.to_remove == ["B"]
        assert diff.to_upsert == [ov("A", "DENY")]

    def test_disabled_removes_everything(self):
        """Test a disabled target removes every stored override."""
        diff = compute_override_diff([ov("A", "ALLOW")], False, [ov("A", "ALLOW")])

        assert diff.to_remove == ["A"]
        assert diff.to_upsert == []

    def test_add_to_empty(self):
        """Test new overrides on a clean user are all upserts."""
        diff = compute_override_diff([], True, [ov("C", "ALLOW")])

        assert diff.to_remove == []
        assert diff.to_upsert == [ov("C", "ALLOW")]

    def test_unchanged_entries_are_skipped(self):
        """Test identical entries produce an empty diff."""
        previous = [ov("A", "ALLOW"), ov("B", "DENY")]

        diff = compute_override_diff(previous, True, [ov("B", "DENY"), ov("A", "ALLOW")])

        assert diff.is_empty

    def test_duplicates_last_one_wins(self):
        """Test duplicate permission ids collapse to the last entry."""
        diff = compute_override_diff(
            [ov("A", "ALLOW")],
            True,
            [ov("A", "DENY"), ov("A", "ALLOW"), ov("B", "ALLOW"), ov("B", "DENY")],
        )

        assert diff.to_remove == []
        assert diff.to_upsert == [ov("B", "DENY")]

    def test_blank_ids_are_ignored(self):
        """Test entries without a permission id never reach the diff."""
        diff = compute_override_diff([ov("", "ALLOW")], True, [ov("", "DENY")])

        assert diff.is_empty

    def test_remove_and_upsert_are_disjoint(self):
        """Test no permission id appears in both lists."""
        previous = [ov("A", "ALLOW"), ov("B", "ALLOW"), ov("C", "DENY")]
        target = [ov("B", "DENY"), ov("D", "ALLOW")]

        diff = compute_override_diff(previous, True, target)

        upserted = {o.permission_id for o in diff.to_upsert}
        assert set(diff.to_remove) == {"A", "C"}
        assert upserted == {"B", "D"}
        assert not upserted & set(diff.to_remove)

    @pytest.mark.parametrize("enabled", [True, False])
    def test_empty_inputs(self, enabled):
        """Test nothing stored and nothing wanted is a no-op."""
        diff = compute_override_diff([], enabled, [])

        assert diff == OverrideDiff()
        assert diff.to_upsert == []

    def test_effect_values_are_enums(self):
        """Test upserted overrides carry enum effects."""
        diff = compute_override_diff([], True, [ov("A", "DENY")])

        assert diff.to_upsert[0].effect is OverrideEffect.DENY
