"""
Users API client for the console data layer.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Sequence

import httpx
from pydantic import ValidationError as PydanticValidationError

from shared.logging import get_logger
from shared.errors import (
    AuthenticationError,
    ConflictError,
    ExternalServiceError,
    HasSpecialPermissionsError,
)
from ..domain.models import (
    AvatarResponse,
    CreateUserRequest,
    DraftFile,
    FavoriteWarehouseResponse,
    OverrideEffect,
    Permission,
    ProfileUpdate,
    QuickPinState,
    Role,
    UserDetail,
    UserResponse,
    UserStatus,
    parse_catalog,
    parse_user_response,
    pick_user_payload,
)

SERVICE_NAME = "users_api"


class UsersApiClient:
    """Client for the remote users/roles/permissions API.

    Retries and backoff are not handled here; transport failures and
    timeouts surface as ``ExternalServiceError`` and the cache layer treats
    them as ordinary failures.
    """

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 12.0,
        detail_timeout: float = 20.0,
        token_provider: Optional[Callable[[], Optional[str]]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.detail_timeout = detail_timeout
        self.token_provider = token_provider
        self.logger = get_logger("users.api_client")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "UsersApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def fetch_user(self, user_id: str) -> UserDetail:
        """Fetch the full detail record of a user."""
        # Cache-buster: the browser/proxy layer must not answer from its own cache
        payload = await self._request(
            "GET",
            f"/users/{user_id}",
            params={"_ts": int(time.time() * 1000)},
            timeout=self.detail_timeout,
        )
        user = pick_user_payload(payload)
        if user is None:
            raise ExternalServiceError(
                SERVICE_NAME,
                "User detail response did not contain a user",
                details={"user_id": user_id},
            )
        return self._parse(UserDetail.model_validate, user)

    async def fetch_roles(self) -> List[Role]:
        payload = await self._request("GET", "/roles")
        return self._parse(
            lambda items: [Role.model_validate(item) for item in items],
            parse_catalog(payload, "roles"),
        )

    async def fetch_permissions(self) -> List[Permission]:
        payload = await self._request("GET", "/permissions")
        return self._parse(
            lambda items: [Permission.model_validate(item) for item in items],
            parse_catalog(payload, "permissions"),
        )

    # ------------------------------------------------------------------
    # Overrides
    # ------------------------------------------------------------------

    async def set_override(self, user_id: str, permission_id: str, effect: OverrideEffect) -> None:
        """Create or update one permission override."""
        await self._request(
            "POST",
            f"/users/{user_id}/overrides",
            json={"permissionId": permission_id, "effect": OverrideEffect(effect).value},
        )

    async def remove_override(self, user_id: str, permission_id: str) -> None:
        await self._request("DELETE", f"/users/{user_id}/overrides/{permission_id}")

    # ------------------------------------------------------------------
    # Attachments
    # ------------------------------------------------------------------

    async def upload_attachments(self, user_id: str, files: Sequence[DraftFile],
                                 self_service: bool = False) -> UserResponse:
        """Upload files as multipart; the response may or may not echo the user."""
        path = "/users/me/attachments" if self_service else f"/users/{user_id}/attachments"
        multipart = [("attachments", (f.name, f.content, f.content_type)) for f in files]
        payload = await self._request("PUT", path, files=multipart)
        return self._parse(parse_user_response, payload)

    async def delete_attachment(self, user_id: str, attachment_id: str, self_service: bool = False) -> None:
        if self_service:
            path = f"/users/me/attachments/{attachment_id}"
        else:
            path = f"/users/{user_id}/attachments/{attachment_id}"
        await self._request("DELETE", path)

    # ------------------------------------------------------------------
    # Avatar
    # ------------------------------------------------------------------

    async def update_avatar(self, user_id: str, file: DraftFile) -> AvatarResponse:
        payload = await self._request(
            "PUT",
            f"/users/{user_id}/avatar",
            files=[("avatar", (file.name, file.content, file.content_type))],
        )
        return self._parse_avatar(payload)

    async def remove_avatar(self, user_id: str) -> AvatarResponse:
        payload = await self._request("DELETE", f"/users/{user_id}/avatar")
        return self._parse_avatar(payload)

    # ------------------------------------------------------------------
    # Quick PIN
    # ------------------------------------------------------------------

    async def set_pin(self, user_id: str, pin: str) -> QuickPinState:
        payload = await self._request(
            "PUT",
            f"/users/{user_id}/quick-pin",
            params={"_ts": int(time.time() * 1000)},
            json={"pin": pin},
        )
        return self._parse(QuickPinState.model_validate, payload or {})

    async def remove_pin(self, user_id: str, confirm_remove_overrides: bool = False) -> QuickPinState:
        body = {"confirmRemoveOverrides": True} if confirm_remove_overrides else None
        try:
            payload = await self._request("DELETE", f"/users/{user_id}/quick-pin", json=body)
        except ConflictError as exc:
            raise self._as_special_permissions_error(exc)
        return self._parse(QuickPinState.model_validate, payload or {})

    async def set_pin_enabled(self, user_id: str, enabled: bool,
                              confirm_remove_overrides: bool = False) -> QuickPinState:
        body: Dict[str, Any] = {"enabled": bool(enabled)}
        if confirm_remove_overrides:
            body["confirmRemoveOverrides"] = True
        try:
            payload = await self._request("PATCH", f"/users/{user_id}/quick-pin/enabled", json=body)
        except ConflictError as exc:
            raise self._as_special_permissions_error(exc)
        return self._parse(QuickPinState.model_validate, payload or {})

    # ------------------------------------------------------------------
    # Profile, status, roles, favorite warehouse
    # ------------------------------------------------------------------

    async def create_user(self, request: CreateUserRequest) -> UserResponse:
        payload = await self._request("POST", "/users", json=request.to_wire())
        return self._parse(parse_user_response, payload)

    async def update_profile(self, user_id: str, update: ProfileUpdate) -> UserResponse:
        payload = await self._request("PATCH", f"/users/{user_id}", json=update.to_wire())
        return self._parse(parse_user_response, payload)

    async def update_status(self, user_id: str, status: UserStatus) -> UserResponse:
        payload = await self._request(
            "PATCH",
            f"/users/{user_id}/status",
            json={"status": UserStatus(status).value},
        )
        return self._parse(parse_user_response, payload)

    async def assign_roles(self, user_id: str, role_ids: Sequence[str]) -> UserResponse:
        payload = await self._request("PUT", f"/users/{user_id}/roles", json={"roleIds": list(role_ids)})
        return self._parse(parse_user_response, payload)

    async def update_favorite_warehouse(self, user_id: str,
                                        warehouse_id: Optional[str]) -> FavoriteWarehouseResponse:
        payload = await self._request(
            "PATCH",
            f"/users/{user_id}/favorite-warehouse",
            json={"warehouseId": warehouse_id},
        )
        data = dict(payload or {})
        user = pick_user_payload(data)
        if "favoriteWarehouseId" not in data and user is not None and "favoriteWarehouseId" in user:
            data["favoriteWarehouseId"] = user["favoriteWarehouseId"]
        data.pop("user", None)
        return self._parse(FavoriteWarehouseResponse.model_validate, data)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        """Perform a request and map failures onto shared errors."""
        headers = kwargs.pop("headers", {})
        token = self.token_provider() if self.token_provider else None
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            self.logger.error("Users API timeout", method=method, path=path, error=str(e))
            raise ExternalServiceError(SERVICE_NAME, "Request timed out", details={"path": path})
        except httpx.HTTPError as e:
            self.logger.error("Users API HTTP error", method=method, path=path, error=str(e))
            raise ExternalServiceError(SERVICE_NAME, str(e), details={"path": path})

        if response.status_code >= 400:
            self._raise_for_status(method, path, response)

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            self.logger.warning("Users API returned a non-JSON body", method=method, path=path)
            return None

    def _raise_for_status(self, method: str, path: str, response: httpx.Response) -> None:
        data = self._error_body(response)
        message = str(data.get("message") or f"HTTP {response.status_code}")

        self.logger.warning(
            "Users API error response",
            method=method,
            path=path,
            status_code=response.status_code,
            code=data.get("code"),
        )

        if response.status_code == 401:
            raise AuthenticationError(message, details=data)
        if response.status_code == 409:
            raise ConflictError(message, details=data, code=str(data.get("code") or "CONFLICT"))
        raise ExternalServiceError(SERVICE_NAME, message, details=data, status=response.status_code)

    @staticmethod
    def _error_body(response: httpx.Response) -> Dict[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _as_special_permissions_error(exc: ConflictError) -> ConflictError:
        """Narrow a 409 to ``HasSpecialPermissionsError`` when it asks for confirmation.

        Owners never hold overrides, so a conflict flagged ``targetIsOwner``
        stays a plain conflict.
        """
        data = exc.details
        if (
            exc.code == "HAS_SPECIAL_PERMISSIONS"
            and bool(data.get("requireConfirmRemoveOverrides"))
            and not bool(data.get("targetIsOwner"))
        ):
            return HasSpecialPermissionsError(
                str(data.get("message") or exc.message),
                overrides_count=int(data.get("overridesCount") or 0),
                details=data,
            )
        return exc

    def _parse_avatar(self, payload: Any) -> AvatarResponse:
        data = dict(payload or {})
        user = pick_user_payload(data)
        if "avatarUrl" not in data and user is not None:
            data["avatarUrl"] = user.get("avatarUrl")
        data.pop("user", None)
        return self._parse(AvatarResponse.model_validate, data)

    def _parse(self, parser: Callable[[Any], Any], payload: Any) -> Any:
        """Apply ``parser``; a payload that does not fit the models is a remote failure."""
        try:
            return parser(payload)
        except PydanticValidationError as e:
            self.logger.error(
                "Users API returned a malformed payload",
                parser=getattr(parser, "__qualname__", repr(parser)),
                error_count=e.error_count(),
            )
            raise ExternalServiceError(
                SERVICE_NAME,
                "Malformed response",
                details={"error_count": e.error_count()},
            ) from e
