"""
Mutations that keep the user detail cache consistent with the remote API.

Two protocols are used:

- Optimistic: write the expected result into the cache first, call the
  API, and on failure invalidate and reload to get back to ground truth.
- Confirmed response: call the API and merge only what the response
  actually carries.
"""

import re
from typing import Iterable, Optional, Sequence, TYPE_CHECKING

from shared.errors import ExternalServiceError, ValidationError
from shared.logging import get_logger
from .models import (
    CreateUserRequest,
    DraftFile,
    FullRecord,
    NoRecord,
    PartialRecord,
    PartialUserRecord,
    PermissionOverride,
    ProfileUpdate,
    QuickPinState,
    UploadResult,
    UserDetail,
    UserResponse,
    UserStatus,
)
from .overrides import OverrideDiff
from ..events.bus import AvatarChanged, EventBus, PinStateChanged

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from ..adapters.users_client import UsersApiClient
    from ..caching.cache_manager import UserCacheManager
    from shared.metrics import MetricsCollector


DEFAULT_MAX_ATTACHMENT_BYTES = 20 * 1024 * 1024

_PIN_PATTERN = re.compile(r"^\d{4}$")


def normalize_pin(pin: str) -> str:
    """Keep the first four digits; raise unless exactly four remain."""
    digits = re.sub(r"\D", "", str(pin or ""))[:4]
    if not _PIN_PATTERN.match(digits):
        raise ValidationError("PIN must have 4 digits")
    return digits


def assert_image_file(file: DraftFile) -> None:
    if not (file.content_type or "").startswith("image/"):
        raise ValidationError(
            "Avatar must be an image",
            details={"filename": file.name, "content_type": file.content_type},
        )


class OptimisticPatchEngine:
    """User mutations routed through the shared user-detail cache."""

    def __init__(
        self,
        cache: "UserCacheManager",
        client: "UsersApiClient",
        events: EventBus,
        *,
        max_attachment_bytes: int = DEFAULT_MAX_ATTACHMENT_BYTES,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.cache = cache
        self.client = client
        self.events = events
        self.max_attachment_bytes = max_attachment_bytes
        self.metrics = metrics
        self.logger = get_logger("users.mutations")

    @property
    def details(self):
        return self.cache.user_details

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def delete_attachment(self, user_id: str, attachment_id: str,
                                actor_id: Optional[str] = None) -> Optional[UserDetail]:
        """Remove one attachment optimistically.

        On API failure the optimistic state is discarded and the record is
        reloaded; the reloaded record is returned instead of raising.
        """
        if not user_id or not attachment_id:
            return self.details.peek(user_id) if user_id else None

        previous = self.details.peek(user_id)
        self.details.begin_mutation(user_id)
        if previous is not None:
            remaining = [a for a in previous.attachments if str(a.id) != str(attachment_id)]
            self.details.merge_patch(user_id, {"attachments": remaining})

        try:
            await self.client.delete_attachment(
                user_id,
                attachment_id,
                self_service=bool(actor_id) and actor_id == user_id,
            )
        except Exception as e:
            self.logger.warning(
                "Attachment delete failed, reloading user",
                user_id=user_id,
                attachment_id=attachment_id,
                error=str(e),
            )
            self._record("delete_attachment", "error")
            if self.metrics:
                self.metrics.increment_counter("optimistic_rollbacks_total", operation="delete_attachment")
            return await self.cache.refresh_user_detail(user_id)

        self._record("delete_attachment", "ok")
        return self.details.peek(user_id)

    async def upload_attachments(self, user_id: str, files: Sequence[DraftFile],
                                 actor_id: Optional[str] = None) -> UploadResult:
        """Upload files, skipping those above the size limit."""
        files = list(files or [])
        if not user_id or not files:
            return UploadResult()

        accepted = [f for f in files if f.size <= self.max_attachment_bytes]
        rejected = [f for f in files if f.size > self.max_attachment_bytes]

        if not accepted:
            raise ValidationError(
                "No attachment could be uploaded",
                details={
                    "rejected": [f.name for f in rejected],
                    "max_bytes": self.max_attachment_bytes,
                },
            )

        self.details.begin_mutation(user_id)
        response = await self.client.upload_attachments(
            user_id,
            accepted,
            self_service=bool(actor_id) and actor_id == user_id,
        )
        self._record("upload_attachments", "ok")

        user: Optional[UserDetail] = None
        if isinstance(response, NoRecord):
            # Nothing to merge: let the next load fetch the new attachment list
            self.details.invalidate(user_id)
        else:
            self.apply_user_response(user_id, response)
            if isinstance(response, FullRecord):
                user = response.user

        return UploadResult(omitted=[f.name for f in rejected], user=user)

    # ------------------------------------------------------------------
    # Avatar
    # ------------------------------------------------------------------

    async def update_avatar(self, user_id: str, file: DraftFile) -> Optional[str]:
        assert_image_file(file)
        response = await self.client.update_avatar(user_id, file)
        return self._apply_avatar(user_id, response.avatar_url, "update_avatar")

    async def remove_avatar(self, user_id: str) -> Optional[str]:
        response = await self.client.remove_avatar(user_id)
        return self._apply_avatar(user_id, response.avatar_url, "remove_avatar")

    def _apply_avatar(self, user_id: str, avatar_url: Optional[str], operation: str) -> Optional[str]:
        self.details.merge_patch(user_id, PartialUserRecord(avatar_url=avatar_url))
        self._record(operation, "ok")
        self.events.publish(AvatarChanged(user_id=user_id, avatar_url=avatar_url or ""))
        return avatar_url

    # ------------------------------------------------------------------
    # Quick PIN
    # ------------------------------------------------------------------

    async def set_pin_enabled(self, user_id: str, enabled: bool,
                              confirm_remove_overrides: bool = False) -> QuickPinState:
        if not user_id:
            raise ValidationError("user_id is required")

        self.details.begin_mutation(user_id)
        state = await self.client.set_pin_enabled(user_id, enabled, confirm_remove_overrides)
        self._apply_pin_state(user_id, state, "set_pin_enabled")
        return state

    async def remove_pin(self, user_id: str, confirm_remove_overrides: bool = False) -> QuickPinState:
        if not user_id:
            raise ValidationError("user_id is required")

        self.details.begin_mutation(user_id)
        state = await self.client.remove_pin(user_id, confirm_remove_overrides)
        self._apply_pin_state(user_id, state, "remove_pin")
        return state

    async def set_pin(self, user_id: str, pin: str) -> QuickPinState:
        """Set a user's PIN, then reload the record from the server."""
        if not user_id:
            raise ValidationError("user_id is required")
        clean = normalize_pin(pin)

        self.details.begin_mutation(user_id)
        state = await self.client.set_pin(user_id, clean)
        if state.has_quick_pin is None:
            state = state.model_copy(update={"has_quick_pin": True})
        self.details.merge_patch(user_id, state.to_patch())
        self._record("set_pin", "ok")

        detail = await self.cache.refresh_user_detail(user_id)
        self._publish_pin_state(user_id, state, detail)
        return state

    def _apply_pin_state(self, user_id: str, state: QuickPinState, operation: str) -> None:
        detail = self.details.merge_patch(user_id, state.to_patch())
        self._record(operation, "ok")
        self._publish_pin_state(user_id, state, detail)

    def _publish_pin_state(self, user_id: str, state: QuickPinState, detail: Optional[UserDetail]) -> None:
        has_quick_pin = state.has_quick_pin
        pin_enabled = state.pin_enabled
        if detail is not None:
            has_quick_pin = detail.has_quick_pin if has_quick_pin is None else has_quick_pin
            pin_enabled = detail.pin_enabled if pin_enabled is None else pin_enabled
        self.events.publish(PinStateChanged(user_id=user_id, has_quick_pin=has_quick_pin, pin_enabled=pin_enabled))

    # ------------------------------------------------------------------
    # Confirmed-response mutations
    # ------------------------------------------------------------------

    async def create_user(self, request: CreateUserRequest) -> str:
        """Create a user and return its id."""
        response = await self.client.create_user(request)
        user_id = None
        if isinstance(response, FullRecord):
            user_id = response.user.id
        elif isinstance(response, PartialRecord):
            user_id = response.fields.id
        if not user_id:
            raise ExternalServiceError("users_api", "Create user response did not include an id")

        self._record("create_user", "ok")
        if isinstance(response, FullRecord):
            self.details.put(user_id, response.user)
        return user_id

    async def update_profile(self, user_id: str, update: ProfileUpdate) -> Optional[UserDetail]:
        response = await self.client.update_profile(user_id, update)
        self._record("update_profile", "ok")
        return self.apply_user_response(user_id, response)

    async def update_status(self, user_id: str, status: UserStatus) -> Optional[UserDetail]:
        response = await self.client.update_status(user_id, status)
        self._record("update_status", "ok")
        detail = self.apply_user_response(user_id, response)
        if isinstance(response, NoRecord):
            detail = self.details.merge_patch(user_id, PartialUserRecord(status=status))
        return detail

    async def assign_roles(self, user_id: str, role_ids: Sequence[str]) -> Optional[UserDetail]:
        self.details.begin_mutation(user_id)
        response = await self.client.assign_roles(user_id, role_ids)
        self._record("assign_roles", "ok")
        return self.apply_user_response(user_id, response)

    async def update_favorite_warehouse(self, user_id: str, warehouse_id: Optional[str]) -> Optional[UserDetail]:
        response = await self.client.update_favorite_warehouse(user_id, warehouse_id)
        self._record("update_favorite_warehouse", "ok")
        favorite = response.favorite_warehouse_id if "favorite_warehouse_id" in response.model_fields_set else warehouse_id
        return self.details.merge_patch(user_id, PartialUserRecord(favorite_warehouse_id=favorite))

    async def apply_override_diff(self, user_id: str, diff: OverrideDiff) -> None:
        """Send removals and upserts; the detail record is invalidated afterwards."""
        if diff.is_empty:
            return

        self.details.begin_mutation(user_id)
        try:
            for permission_id in diff.to_remove:
                await self.client.remove_override(user_id, permission_id)
            for override in diff.to_upsert:
                await self.client.set_override(user_id, override.permission_id, override.effect)
        finally:
            # Partially applied diffs leave server state unknown to us
            self.details.invalidate(user_id)

        self.logger.info(
            "Override diff applied",
            user_id=user_id,
            removed=len(diff.to_remove),
            upserted=len(diff.to_upsert),
        )

    async def upsert_overrides(self, user_id: str, overrides: Iterable[PermissionOverride]) -> None:
        for override in overrides:
            await self.client.set_override(user_id, override.permission_id, override.effect)
        self.details.invalidate(user_id)

    def apply_user_response(self, user_id: str, response: UserResponse) -> Optional[UserDetail]:
        """Merge a classified mutation response into the cache."""
        if isinstance(response, FullRecord):
            return self.details.merge_patch(user_id, response.user)
        if isinstance(response, PartialRecord):
            return self.details.merge_patch(user_id, response.fields)
        return self.details.peek(user_id)

    def _record(self, operation: str, status: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("mutations_total", operation=operation, status=status)
