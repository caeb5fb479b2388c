"""
Minimal diff between stored and edited permission overrides.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List

from .models import OverrideEffect, PermissionOverride


@dataclass
class OverrideDiff:
    """Removals and upserts that reconcile server state with the edited set."""
    to_remove: List[str] = field(default_factory=list)
    to_upsert: List[PermissionOverride] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_remove and not self.to_upsert


def _effect_map(overrides: Iterable[PermissionOverride]) -> Dict[str, OverrideEffect]:
    effects: Dict[str, OverrideEffect] = {}
    for override in overrides or ():
        permission_id = str(override.permission_id or "")
        if not permission_id:
            continue
        # Duplicates: last one wins
        effects[permission_id] = OverrideEffect(override.effect)
    return effects


def compute_override_diff(
    previous: Iterable[PermissionOverride],
    next_enabled: bool,
    next_overrides: Iterable[PermissionOverride],
) -> OverrideDiff:
    """Compute the removals and upserts turning ``previous`` into the target set.

    A disabled override set is the same as an empty target. Entries present
    on both sides with the same effect appear in neither list.
    """
    previous_map = _effect_map(previous)
    target_map = _effect_map(next_overrides) if next_enabled else {}

    diff = OverrideDiff()
    for permission_id in previous_map:
        if permission_id not in target_map:
            diff.to_remove.append(permission_id)

    for permission_id, effect in target_map.items():
        if previous_map.get(permission_id) != effect:
            diff.to_upsert.append(PermissionOverride(permission_id=permission_id, effect=effect))

    return diff
