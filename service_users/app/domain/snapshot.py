"""
Edit-modal draft state and snapshot-based dirty checking.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from shared.logging import get_logger
from .models import DraftFile, PermissionOverride, ProfileUpdate, UserDetail


class EditMode(str, Enum):
    """Edit modal modes."""
    CREATE = "CREATE"
    EDIT = "EDIT"


PROFILE_FIELDS = (
    "phone_country",
    "phone_number",
    "document_type",
    "document_number",
    "street",
    "number",
    "city",
    "province",
    "postal_code",
    "country",
    "notes",
)


def canonical_dumps(obj: Any) -> str:
    """Deterministic JSON: sorted keys, compact separators, no NaN."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


@dataclass
class DraftState:
    """Every editable field of the user edit modal."""
    mode: EditMode = EditMode.EDIT
    email: str = ""
    name: str = ""
    password: str = ""

    phone_country: str = ""
    phone_number: str = ""
    document_type: str = ""
    document_number: str = ""
    street: str = ""
    number: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    country: str = ""
    notes: str = ""

    role_ids: List[str] = field(default_factory=list)
    favorite_warehouse_id: str = ""

    special_enabled: bool = False
    special_list: List[PermissionOverride] = field(default_factory=list)

    pin_new: str = ""
    pin_new2: str = ""
    pin_clear_overrides_on_save: bool = False

    attachments_draft: List[DraftFile] = field(default_factory=list)
    avatar_draft: Optional[DraftFile] = None

    @classmethod
    def from_detail(cls, detail: UserDetail) -> "DraftState":
        """Hydrate a draft from a loaded user record."""
        draft = cls(
            mode=EditMode.EDIT,
            email=detail.email or "",
            name=detail.name or "",
            role_ids=[role.id for role in detail.roles],
            favorite_warehouse_id=str(detail.favorite_warehouse_id or ""),
            special_list=list(detail.permission_overrides),
            special_enabled=bool(detail.permission_overrides),
        )
        for name in PROFILE_FIELDS:
            setattr(draft, name, getattr(detail, name) or "")
        return draft

    def profile_update(self) -> ProfileUpdate:
        values = {name: getattr(self, name) for name in PROFILE_FIELDS}
        return ProfileUpdate(name=self.name.strip(), **values)

    def to_snapshot(self) -> Dict[str, Any]:
        """Order-normalised view of the draft used for dirty checking."""
        creating = self.mode == EditMode.CREATE
        special_sorted = sorted(
            (
                {"permissionId": str(o.permission_id), "effect": o.effect.value}
                for o in self.special_list
            ),
            key=lambda item: item["permissionId"],
        )

        snapshot: Dict[str, Any] = {
            "mode": self.mode.value,
            "email": self.email,
            "name": self.name,
            "password": self.password,
            "role_ids": sorted(str(role_id) for role_id in self.role_ids),
            "favorite_warehouse_id": self.favorite_warehouse_id,
            "special_enabled": bool(self.special_enabled),
            "special_list": special_sorted if self.special_enabled else [],
            "pin_new": self.pin_new,
            "pin_new2": self.pin_new2,
            "pin_clear_overrides_on_save": bool(self.pin_clear_overrides_on_save),
            # In EDIT mode attachments and avatar upload immediately, so only CREATE holds drafts
            "attachments_draft": sorted(f.identity_key for f in self.attachments_draft) if creating else [],
            "avatar_draft": creating and self.avatar_draft is not None,
        }
        for name in PROFILE_FIELDS:
            snapshot[name] = getattr(self, name)
        return snapshot


class DirtySnapshotGuard:
    """Detects unsaved edits by comparing canonical draft snapshots.

    The baseline is captured once the form has settled: ``on_render`` must
    be called ``settle_passes`` times in a row with ``ready=True`` after the
    modal opens. Until then ``is_dirty`` is always ``False``.
    """

    def __init__(self, build_snapshot: Callable[[], Dict[str, Any]], settle_passes: int = 2):
        self._build_snapshot = build_snapshot
        self.settle_passes = max(1, settle_passes)
        self.logger = get_logger("users.dirty_guard")
        self._baseline: Optional[str] = None
        self._ready_passes = 0

    @property
    def armed(self) -> bool:
        return self._baseline is not None

    @property
    def baseline(self) -> Optional[str]:
        return self._baseline

    def mark_clean(self) -> None:
        """Capture the current draft as the clean baseline."""
        self._baseline = canonical_dumps(self._build_snapshot())

    def is_dirty(self) -> bool:
        if self._baseline is None:
            return False
        return canonical_dumps(self._build_snapshot()) != self._baseline

    def on_render(self, ready: bool = True) -> bool:
        """Count a render pass; arms the guard once the form has settled.

        ``ready`` is false while the modal is loading or not yet hydrated,
        which restarts the count.
        """
        if self._baseline is not None:
            return True
        if not ready:
            self._ready_passes = 0
            return False

        self._ready_passes += 1
        if self._ready_passes >= self.settle_passes:
            self.mark_clean()
            self.logger.debug("Dirty guard armed", passes=self._ready_passes)
            return True
        return False

    def reset(self) -> None:
        self._baseline = None
        self._ready_passes = 0
