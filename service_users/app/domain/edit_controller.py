"""
Controller for one session of the user edit modal.
"""

import asyncio
from enum import Enum
from typing import Callable, List, Optional, TYPE_CHECKING

from shared.errors import ConsoleError, ErrorResponse, HasSpecialPermissionsError, ValidationError
from shared.logging import clear_context, get_logger, set_request_id, set_user_context
from .models import CreateUserRequest, DraftFile, Permission, Role, UserDetail
from .overrides import compute_override_diff
from .snapshot import DirtySnapshotGuard, DraftState, EditMode
from .optimistic import OptimisticPatchEngine, normalize_pin

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..caching.cache_manager import UserCacheManager


class CloseDecision(str, Enum):
    """Outcome of a close attempt."""
    CLOSED = "closed"
    CONFIRM_REQUIRED = "confirm_required"
    BUSY = "busy"


class UserEditController:
    """Keeps the edit modal's draft, the cache and the remote API in step.

    Catalogs and the target record come from the shared caches; in-modal
    side effects (attachments, avatar, PIN) go through the patch engine;
    saving sends a minimal override diff; closing is gated by the dirty
    snapshot guard.
    """

    def __init__(
        self,
        cache: "UserCacheManager",
        mutations: OptimisticPatchEngine,
        *,
        actor_id: Optional[str] = None,
        settle_passes: int = 2,
        flash_seconds: float = 2.5,
        owner_role_code: Optional[str] = "OWNER",
        on_closed: Optional[Callable[[], None]] = None,
    ):
        self.cache = cache
        self.mutations = mutations
        self.actor_id = actor_id
        self.flash_seconds = flash_seconds
        self.owner_role_code = (owner_role_code or "").upper()
        self.on_closed = on_closed
        self.logger = get_logger("users.edit_controller")

        self.draft = DraftState()
        self.guard = DirtySnapshotGuard(lambda: self.draft.to_snapshot(), settle_passes)

        self.is_open = False
        self.mode = EditMode.EDIT
        self.target_id: Optional[str] = None
        self.detail: Optional[UserDetail] = None
        self.roles: List[Role] = []
        self.permissions: List[Permission] = []

        self.loading = False
        self.busy = False
        self.error: Optional[ErrorResponse] = None
        self.confirm_unsaved_open = False
        self.pin_confirmation_required: Optional[int] = None

        self.flash_message: Optional[str] = None
        self._flash_handle: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def is_self_editing(self) -> bool:
        return bool(self.actor_id) and self.actor_id == self.target_id

    @property
    def owner_role_id(self) -> Optional[str]:
        if not self.owner_role_code:
            return None
        for role in self.roles:
            if (role.code or "").upper() == self.owner_role_code or role.name.upper() == self.owner_role_code:
                return role.id
        return None

    def is_owner_in_draft(self) -> bool:
        owner_id = self.owner_role_id
        return bool(owner_id) and owner_id in self.draft.role_ids

    def is_dirty(self) -> bool:
        return self.is_open and self.guard.is_dirty()

    # ------------------------------------------------------------------
    # Opening
    # ------------------------------------------------------------------

    async def open_edit(self, user_id: str) -> bool:
        """Open the modal for an existing user and hydrate the draft."""
        self._reset()
        set_user_context(self.actor_id)
        self.is_open = True
        self.mode = EditMode.EDIT
        self.target_id = user_id
        self.loading = True

        try:
            roles, permissions, detail = await asyncio.gather(
                self.cache.get_roles(),
                self.cache.get_permissions(),
                self.cache.get_user_detail(user_id),
            )
        except ConsoleError as e:
            self.logger.error("Failed to open user", user_id=user_id, error=str(e))
            self.error = e.to_response()
            return False
        finally:
            self.loading = False

        if detail is None:
            self.error = ValidationError("User not found", details={"user_id": user_id}).to_response()
            return False

        self.roles = roles
        self.permissions = permissions
        self.detail = detail
        self.draft = DraftState.from_detail(detail)
        return True

    async def open_create(self) -> bool:
        """Open the modal with an empty draft for a new user."""
        self._reset()
        set_user_context(self.actor_id)
        self.is_open = True
        self.mode = EditMode.CREATE
        self.draft = DraftState(mode=EditMode.CREATE)
        self.loading = True

        try:
            self.roles, self.permissions = await asyncio.gather(
                self.cache.get_roles(),
                self.cache.get_permissions(),
            )
        except ConsoleError as e:
            self.error = e.to_response()
            return False
        finally:
            self.loading = False
        return True

    def on_render(self) -> bool:
        """Render-pass notification from the view; arms the dirty guard once settled."""
        if not self.is_open:
            return False
        hydrated = self.mode == EditMode.CREATE or (self.detail is not None and bool(self.detail.id))
        return self.guard.on_render(ready=not self.loading and hydrated)

    # ------------------------------------------------------------------
    # Closing
    # ------------------------------------------------------------------

    def request_close(self) -> CloseDecision:
        """Cancel button, backdrop click or route change."""
        if self.busy:
            return CloseDecision.BUSY
        if self.is_open and self.guard.is_dirty():
            self.confirm_unsaved_open = True
            return CloseDecision.CONFIRM_REQUIRED
        self.close()
        return CloseDecision.CLOSED

    def confirm_discard(self) -> None:
        self.close()

    def cancel_discard(self) -> None:
        self.confirm_unsaved_open = False

    async def save_and_close(self) -> bool:
        """Save from the unsaved-changes prompt and close without prompting again."""
        self.confirm_unsaved_open = False
        if not await self.save():
            return False
        self.close()
        return True

    def close(self) -> None:
        was_open = self.is_open
        self._reset()
        clear_context()
        if was_open and self.on_closed:
            self.on_closed()

    def _reset(self) -> None:
        self._cancel_flash()
        self.guard.reset()
        self.is_open = False
        self.target_id = None
        self.detail = None
        self.draft = DraftState()
        self.loading = False
        self.busy = False
        self.error = None
        self.confirm_unsaved_open = False
        self.pin_confirmation_required = None

    # ------------------------------------------------------------------
    # Saving
    # ------------------------------------------------------------------

    def _validate(self) -> Optional[ValidationError]:
        if not self.draft.email.strip():
            return ValidationError("Email is required", details={"field": "email"})
        if not self.draft.name.strip():
            return ValidationError("Name is required", details={"field": "name"})
        return None

    async def save(self) -> bool:
        """Persist the draft; re-arms the dirty guard on success."""
        if not self.is_open or self.busy:
            return False

        invalid = self._validate()
        if invalid is not None:
            self.error = invalid.to_response()
            return False

        self.error = None
        self.busy = True
        set_request_id()
        try:
            if self.mode == EditMode.CREATE:
                await self._save_create()
            else:
                await self._save_edit()
        except ConsoleError as e:
            self.logger.error("Saving user failed", user_id=self.target_id, error=str(e))
            self.error = e.to_response()
            return False
        finally:
            self.busy = False

        self.guard.mark_clean()
        self.logger.info("User saved", user_id=self.target_id, mode=self.mode.value)
        return True

    async def _save_edit(self) -> None:
        user_id = self.target_id
        draft = self.draft

        await self.mutations.update_profile(user_id, draft.profile_update())

        if not self.is_self_editing:
            await self.mutations.assign_roles(user_id, draft.role_ids)
            await self.mutations.update_favorite_warehouse(user_id, draft.favorite_warehouse_id or None)

        if draft.avatar_draft is not None:
            await self.mutations.update_avatar(user_id, draft.avatar_draft)
            draft.avatar_draft = None

        if draft.attachments_draft:
            result = await self.mutations.upload_attachments(user_id, draft.attachments_draft, self.actor_id)
            draft.attachments_draft = []
            if result.omitted:
                self.flash(f"Skipped oversized files: {', '.join(result.omitted)}")

        if not self.is_self_editing:
            previous = self.detail.permission_overrides if self.detail is not None else []
            enabled_next = (
                not self.is_owner_in_draft()
                and not draft.pin_clear_overrides_on_save
                and draft.special_enabled
            )
            diff = compute_override_diff(previous, enabled_next, draft.special_list if enabled_next else [])
            await self.mutations.apply_override_diff(user_id, diff)

        refreshed = await self.cache.refresh_user_detail(user_id)
        if refreshed is not None:
            self.detail = refreshed

    async def _save_create(self) -> None:
        draft = self.draft
        user_id = await self.mutations.create_user(CreateUserRequest(
            email=draft.email.strip(),
            name=draft.name.strip(),
            password=draft.password.strip() or None,
            role_ids=list(draft.role_ids),
        ))

        warnings: List[str] = []

        async def attempt(label: str, operation) -> None:
            try:
                await operation()
            except ConsoleError as e:
                warnings.append(f"{label}: {e.message}")

        await attempt("profile", lambda: self.mutations.update_profile(user_id, draft.profile_update()))

        if draft.favorite_warehouse_id:
            await attempt(
                "favorite warehouse",
                lambda: self.mutations.update_favorite_warehouse(user_id, draft.favorite_warehouse_id),
            )

        if draft.avatar_draft is not None:
            await attempt("avatar", lambda: self.mutations.update_avatar(user_id, draft.avatar_draft))

        if draft.attachments_draft:
            await attempt(
                "attachments",
                lambda: self.mutations.upload_attachments(user_id, draft.attachments_draft),
            )

        if draft.pin_new and draft.pin_new == draft.pin_new2:
            async def configure_pin() -> None:
                await self.mutations.set_pin(user_id, normalize_pin(draft.pin_new))
                await self.mutations.set_pin_enabled(user_id, True)

            await attempt("initial PIN", configure_pin)

        if not self.is_owner_in_draft() and draft.special_enabled and draft.special_list:
            await attempt(
                "special permissions",
                lambda: self.mutations.upsert_overrides(user_id, draft.special_list),
            )

        self.target_id = user_id
        self.mode = EditMode.EDIT
        detail = await self.cache.get_user_detail(user_id)
        if detail is not None:
            self.detail = detail
            self.draft = DraftState.from_detail(detail)

        if warnings:
            self.error = ErrorResponse(
                code="PARTIAL_SAVE",
                message="User created with warnings",
                details={"warnings": warnings},
            )

    # ------------------------------------------------------------------
    # In-modal side effects
    # ------------------------------------------------------------------

    async def delete_attachment(self, attachment_id: str) -> None:
        detail = await self.mutations.delete_attachment(self.target_id, attachment_id, self.actor_id)
        if detail is not None:
            self.detail = detail

    async def change_avatar(self, file: DraftFile) -> None:
        """Upload immediately when editing; keep as a draft when creating."""
        if self.mode == EditMode.CREATE:
            self.draft.avatar_draft = file
            return
        try:
            await self.mutations.update_avatar(self.target_id, file)
        except ConsoleError as e:
            self.error = e.to_response()
            return
        self._sync_detail()
        self.flash("Avatar updated")

    async def set_pin_enabled(self, enabled: bool, confirm_remove_overrides: bool = False) -> bool:
        return await self._pin_action(
            lambda: self.mutations.set_pin_enabled(self.target_id, enabled, confirm_remove_overrides),
            "PIN enabled" if enabled else "PIN disabled",
        )

    async def remove_pin(self, confirm_remove_overrides: bool = False) -> bool:
        return await self._pin_action(
            lambda: self.mutations.remove_pin(self.target_id, confirm_remove_overrides),
            "PIN removed",
        )

    async def _pin_action(self, operation, message: str) -> bool:
        try:
            state = await operation()
        except HasSpecialPermissionsError as e:
            self.pin_confirmation_required = e.overrides_count
            self.error = e.to_response()
            return False
        except ConsoleError as e:
            self.error = e.to_response()
            return False

        self.pin_confirmation_required = None
        self._sync_detail()
        if state.overrides_cleared:
            # Server already removed the overrides; keep the draft from re-adding them
            was_dirty = self.guard.is_dirty()
            self.draft.special_list = []
            self.draft.special_enabled = False
            if self.guard.armed and not was_dirty:
                self.guard.mark_clean()
        self.flash(message)
        return True

    def _sync_detail(self) -> None:
        detail = self.cache.peek_user_detail(self.target_id) if self.target_id else None
        if detail is not None:
            self.detail = detail

    # ------------------------------------------------------------------
    # Flash messages
    # ------------------------------------------------------------------

    def flash(self, message: str, seconds: Optional[float] = None) -> None:
        """Show ``message`` until a timeout clears it; replaces any previous one."""
        self._cancel_flash()
        self.flash_message = message
        loop = asyncio.get_running_loop()
        self._flash_handle = loop.call_later(
            self.flash_seconds if seconds is None else seconds,
            self._clear_flash,
        )

    def _clear_flash(self) -> None:
        self.flash_message = None
        self._flash_handle = None

    def _cancel_flash(self) -> None:
        if self._flash_handle is not None:
            self._flash_handle.cancel()
            self._flash_handle = None
        self.flash_message = None
