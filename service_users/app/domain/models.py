"""
Data models for the users API and the console cache.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ApiModel(BaseModel):
    """Base for wire models: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="allow",
    )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class OverrideEffect(str, Enum):
    """Permission override effects."""
    ALLOW = "ALLOW"
    DENY = "DENY"


class UserStatus(str, Enum):
    """User account status."""
    ACTIVE = "ACTIVE"
    PENDING = "PENDING"
    BLOCKED = "BLOCKED"


class Role(ApiModel):
    """Role from the roles catalog."""
    id: str
    name: str
    code: Optional[str] = None
    display_name: Optional[str] = None
    is_system: Optional[bool] = None


class Permission(ApiModel):
    """Permission from the permissions catalog."""
    id: str
    module: str
    action: str


class PermissionOverride(ApiModel):
    """Per-user exception to role-derived grants."""
    permission_id: str = Field(..., description="Permission ID")
    effect: OverrideEffect = Field(..., description="ALLOW or DENY")


class UserAttachment(ApiModel):
    """File attached to a user record."""
    id: str
    url: Optional[str] = None
    filename: str = ""
    mime_type: Optional[str] = None
    size: int = 0
    created_at: Optional[str] = None


# Fields that hold collections; partial responses must never reset them
USER_COLLECTION_FIELDS = ("roles", "permission_overrides", "attachments")


class UserDetail(ApiModel):
    """Full user record as returned by GET /users/{id}."""
    id: str
    email: str
    name: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE
    avatar_url: Optional[str] = None
    favorite_warehouse_id: Optional[str] = None

    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    token_version: Optional[int] = None

    roles: List[Role] = Field(default_factory=list)
    permission_overrides: List[PermissionOverride] = Field(default_factory=list)
    attachments: List[UserAttachment] = Field(default_factory=list)

    phone_country: Optional[str] = None
    phone_number: Optional[str] = None
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None

    has_quick_pin: Optional[bool] = None
    quick_pin_updated_at: Optional[str] = None
    pin_enabled: Optional[bool] = None


class PartialUserRecord(ApiModel):
    """Subset of a user record echoed by a mutation.

    Only the fields the server actually sent are "set"; merging uses
    ``model_dump(exclude_unset=True)`` so absent fields never overwrite
    cached ones.
    """
    id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None
    status: Optional[UserStatus] = None
    avatar_url: Optional[str] = None
    favorite_warehouse_id: Optional[str] = None
    updated_at: Optional[str] = None

    roles: Optional[List[Role]] = None
    permission_overrides: Optional[List[PermissionOverride]] = None
    attachments: Optional[List[UserAttachment]] = None

    phone_country: Optional[str] = None
    phone_number: Optional[str] = None
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None

    has_quick_pin: Optional[bool] = None
    quick_pin_updated_at: Optional[str] = None
    pin_enabled: Optional[bool] = None


class ProfileUpdate(ApiModel):
    """Body of PATCH /users/{id}."""
    name: Optional[str] = None
    phone_country: Optional[str] = None
    phone_number: Optional[str] = None
    document_type: Optional[str] = None
    document_number: Optional[str] = None
    street: Optional[str] = None
    number: Optional[str] = None
    city: Optional[str] = None
    province: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    notes: Optional[str] = None


class CreateUserRequest(ApiModel):
    """Body of POST /users."""
    email: str
    name: Optional[str] = None
    password: Optional[str] = None
    role_ids: List[str] = Field(default_factory=list)


class QuickPinState(ApiModel):
    """PIN-related flags returned by the quick-pin endpoints.

    Every flag is optional: some endpoints omit ``has_quick_pin`` and a
    missing flag must not be read as ``False``.
    """
    has_quick_pin: Optional[bool] = None
    pin_enabled: Optional[bool] = None
    quick_pin_updated_at: Optional[str] = None
    overrides_cleared: Optional[bool] = None
    overrides_count: Optional[int] = None
    target_is_owner: Optional[bool] = None

    def to_patch(self) -> PartialUserRecord:
        """Build a patch carrying only the flags the server reported."""
        values: Dict[str, Any] = {}
        if self.has_quick_pin is not None:
            values["has_quick_pin"] = self.has_quick_pin
        if self.pin_enabled is not None:
            values["pin_enabled"] = self.pin_enabled
        if "quick_pin_updated_at" in self.model_fields_set:
            values["quick_pin_updated_at"] = self.quick_pin_updated_at
        if self.overrides_cleared:
            values["permission_overrides"] = []
        return PartialUserRecord(**values)


class AvatarResponse(ApiModel):
    """Response of the avatar endpoints."""
    ok: Optional[bool] = None
    avatar_url: Optional[str] = None


class FavoriteWarehouseResponse(ApiModel):
    """Response of the favorite-warehouse endpoints."""
    ok: Optional[bool] = None
    favorite_warehouse_id: Optional[str] = None


@dataclass(frozen=True)
class FullRecord:
    """Mutation response that carries a complete user record."""
    user: UserDetail


@dataclass(frozen=True)
class PartialRecord:
    """Mutation response that carries only some user fields."""
    fields: PartialUserRecord


@dataclass(frozen=True)
class NoRecord:
    """Mutation response without a user record (e.g. ``{ok: true}`` or empty)."""


UserResponse = Union[FullRecord, PartialRecord, NoRecord]

_FULL_RECORD_KEYS = ("id", "email", "roles", "permissionOverrides", "attachments")


def pick_user_payload(payload: Any) -> Optional[Dict[str, Any]]:
    """Extract the user object from the shapes the API is known to return."""
    if not isinstance(payload, dict):
        return None
    user = payload.get("user")
    if isinstance(user, dict):
        return user
    if "id" in payload and "email" in payload:
        return payload
    return None


def parse_user_response(payload: Any) -> UserResponse:
    """Classify a mutation response as full, partial or record-less."""
    user = pick_user_payload(payload)
    if not user:
        return NoRecord()
    if all(key in user for key in _FULL_RECORD_KEYS):
        return FullRecord(UserDetail.model_validate(user))
    return PartialRecord(PartialUserRecord.model_validate(user))


def parse_catalog(payload: Any, *wrapper_keys: str) -> List[Dict[str, Any]]:
    """Normalise a catalog payload: a bare list or a list under a wrapper key."""
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in wrapper_keys + ("data",):
            value = payload.get(key)
            if isinstance(value, list):
                return value
    return []


@dataclass(frozen=True)
class DraftFile:
    """A file picked in the UI but not uploaded yet."""
    name: str
    size: int
    last_modified: int
    content: bytes = b""
    content_type: str = "application/octet-stream"

    @property
    def identity_key(self) -> str:
        # Survives re-render; changes when a different file with the same name is picked
        return f"{self.name}-{self.size}-{self.last_modified}"


@dataclass
class UploadResult:
    """Outcome of an attachment upload."""
    omitted: List[str] = field(default_factory=list)
    user: Optional[UserDetail] = None
