"""
Unit tests for the users API client.
"""

import json
import pytest
import httpx

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_users.app.adapters.users_client import UsersApiClient
from service_users.app.domain.models import (
    CreateUserRequest,
    DraftFile,
    FullRecord,
    NoRecord,
    OverrideEffect,
    PartialRecord,
    ProfileUpdate,
)
from shared.errors import (
    AuthenticationError,
    ConflictError,
    ExternalServiceError,
    HasSpecialPermissionsError,
)


USER_PAYLOAD = {
    "id": "u1",
    "email": "ana@example.com",
    "name": "Ana",
    "roles": [{"id": "r1", "name": "Sales"}],
    "permissionOverrides": [{"permissionId": "p1", "effect": "DENY"}],
    "attachments": [{"id": "a1", "filename": "id.pdf", "mimeType": "application/pdf", "size": 12}],
    "hasQuickPin": True,
}


class Recorder:
    """Mock transport handler answering from a route table."""

    def __init__(self, routes):
        self.routes = routes
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": "not found"})
        if callable(handler):
            return handler(request)
        status, body = handler
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]


def body_of(request: httpx.Request):
    return json.loads(request.content.decode()) if request.content else None


class TestUsersApiClient:
    """Test cases for UsersApiClient."""

    def make_client(self, routes, token=None):
        recorder = Recorder(routes)
        client = UsersApiClient(
            "http://api.test/api",
            token_provider=(lambda: token),
            transport=httpx.MockTransport(recorder),
        )
        return client, recorder

    @pytest.mark.asyncio
    async def test_fetch_user_wrapped(self):
        """Test fetching a user wrapped in a user key."""
        client, recorder = self.make_client({("GET", "/api/users/u1"): (200, {"user": USER_PAYLOAD})}, token="tok")

        async with client:
            user = await client.fetch_user("u1")

        assert user.id == "u1"
        assert user.permission_overrides[0].effect == OverrideEffect.DENY
        assert user.attachments[0].mime_type == "application/pdf"
        assert "_ts" in recorder.last.url.params
        assert recorder.last.headers["Authorization"] == "Bearer tok"

    @pytest.mark.asyncio
    async def test_fetch_user_without_user_fails(self):
        """Test a detail response without a user object is an error."""
        client, _ = self.make_client({("GET", "/api/users/u1"): (200, {"ok": True})})

        async with client:
            with pytest.raises(ExternalServiceError):
                await client.fetch_user("u1")

    @pytest.mark.asyncio
    async def test_malformed_user_is_external_error(self):
        """Test a user record that does not fit the model surfaces as ExternalServiceError."""
        client, _ = self.make_client({("GET", "/api/users/u1"): (200, {"user": {"id": "u1", "roles": "oops"}})})

        async with client:
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.fetch_user("u1")

        assert exc_info.value.details["error_count"] >= 1

    @pytest.mark.asyncio
    async def test_malformed_pin_state_is_external_error(self):
        """Test a PIN response with wrongly typed flags surfaces as ExternalServiceError."""
        client, _ = self.make_client({
            ("PATCH", "/api/users/u1/quick-pin/enabled"): (200, {"pinEnabled": "maybe"}),
        })

        async with client:
            with pytest.raises(ExternalServiceError):
                await client.set_pin_enabled("u1", True)

    @pytest.mark.asyncio
    async def test_catalog_shapes(self):
        """Test catalogs accept bare lists and wrapped lists."""
        client, recorder = self.make_client({
            ("GET", "/api/roles"): (200, [{"id": "r1", "name": "Sales"}]),
            ("GET", "/api/permissions"): (200, {"permissions": [{"id": "p1", "module": "users", "action": "read"}]}),
        })

        async with client:
            roles = await client.fetch_roles()
            permissions = await client.fetch_permissions()

        assert [r.id for r in roles] == ["r1"]
        assert [p.id for p in permissions] == ["p1"]
        assert "Authorization" not in recorder.last.headers

    @pytest.mark.asyncio
    async def test_override_endpoints(self):
        """Test override upsert and removal requests."""
        client, recorder = self.make_client({
            ("POST", "/api/users/u1/overrides"): (200, {"ok": True}),
            ("DELETE", "/api/users/u1/overrides/p1"): (204, None),
        })

        async with client:
            await client.set_override("u1", "p2", OverrideEffect.ALLOW)
            assert body_of(recorder.last) == {"permissionId": "p2", "effect": "ALLOW"}

            await client.remove_override("u1", "p1")
            assert recorder.last.method == "DELETE"

    @pytest.mark.asyncio
    async def test_upload_attachments_classifies_response(self):
        """Test upload responses are classified by what they carry."""
        client, recorder = self.make_client({
            ("PUT", "/api/users/u1/attachments"): (200, {"ok": True}),
            ("PUT", "/api/users/me/attachments"): (200, {"user": USER_PAYLOAD}),
        })
        files = [DraftFile(name="id.pdf", size=3, last_modified=1, content=b"pdf", content_type="application/pdf")]

        async with client:
            bare = await client.upload_attachments("u1", files)
            assert b'name="attachments"' in recorder.last.content

            own = await client.upload_attachments("u1", files, self_service=True)

        assert isinstance(bare, NoRecord)
        assert isinstance(own, FullRecord)

    @pytest.mark.asyncio
    async def test_delete_attachment_paths(self):
        """Test admin and self-service attachment deletion paths."""
        client, recorder = self.make_client({
            ("DELETE", "/api/users/u1/attachments/a1"): (200, {"ok": True}),
            ("DELETE", "/api/users/me/attachments/a1"): (200, {"ok": True}),
        })

        async with client:
            await client.delete_attachment("u1", "a1")
            await client.delete_attachment("u1", "a1", self_service=True)

        assert [r.url.path for r in recorder.requests] == [
            "/api/users/u1/attachments/a1",
            "/api/users/me/attachments/a1",
        ]

    @pytest.mark.asyncio
    async def test_update_avatar_reads_nested_url(self):
        """Test the avatar URL is taken from a nested user when absent at top level."""
        client, _ = self.make_client({
            ("PUT", "/api/users/u1/avatar"): (200, {"user": dict(USER_PAYLOAD, avatarUrl="/a/u1.png")}),
        })

        async with client:
            response = await client.update_avatar("u1", DraftFile(name="me.png", size=1, last_modified=1, content=b"x", content_type="image/png"))

        assert response.avatar_url == "/a/u1.png"

    @pytest.mark.asyncio
    async def test_remove_pin_conflict_narrows(self):
        """Test a confirmation-required conflict becomes HasSpecialPermissionsError."""
        client, _ = self.make_client({
            ("DELETE", "/api/users/u1/quick-pin"): (409, {
                "code": "HAS_SPECIAL_PERMISSIONS",
                "message": "User has special permissions",
                "requireConfirmRemoveOverrides": True,
                "overridesCount": 3,
            }),
        })

        async with client:
            with pytest.raises(HasSpecialPermissionsError) as exc_info:
                await client.remove_pin("u1")

        assert exc_info.value.overrides_count == 3
        assert exc_info.value.status == 409

    @pytest.mark.asyncio
    async def test_owner_conflict_stays_plain(self):
        """Test a conflict flagged for an owner target is not narrowed."""
        client, _ = self.make_client({
            ("PATCH", "/api/users/u1/quick-pin/enabled"): (409, {
                "code": "HAS_SPECIAL_PERMISSIONS",
                "requireConfirmRemoveOverrides": True,
                "targetIsOwner": True,
            }),
        })

        async with client:
            with pytest.raises(ConflictError) as exc_info:
                await client.set_pin_enabled("u1", False)

        assert not isinstance(exc_info.value, HasSpecialPermissionsError)

    @pytest.mark.asyncio
    async def test_confirmed_pin_removal_sends_flag(self):
        """Test the confirmation flag is sent in the body."""
        client, recorder = self.make_client({
            ("DELETE", "/api/users/u1/quick-pin"): (200, {"ok": True, "hasQuickPin": False, "overridesCleared": True}),
        })

        async with client:
            state = await client.remove_pin("u1", confirm_remove_overrides=True)

        assert body_of(recorder.last) == {"confirmRemoveOverrides": True}
        assert state.overrides_cleared is True
        assert state.pin_enabled is None

    @pytest.mark.asyncio
    async def test_profile_update_partial_response(self):
        """Test a profile echo without collections is a partial record."""
        client, recorder = self.make_client({
            ("PATCH", "/api/users/u1"): (200, {"user": {"id": "u1", "email": "ana@example.com", "name": "Ana B"}}),
        })

        async with client:
            response = await client.update_profile("u1", ProfileUpdate(name="Ana B", postal_code="2000"))

        assert body_of(recorder.last) == {"name": "Ana B", "postalCode": "2000"}
        assert isinstance(response, PartialRecord)
        assert response.fields.name == "Ana B"

    @pytest.mark.asyncio
    async def test_create_user_body(self):
        """Test the create body uses wire names."""
        client, recorder = self.make_client({
            ("POST", "/api/users"): (201, {"user": dict(USER_PAYLOAD, id="u9")}),
        })

        async with client:
            response = await client.create_user(CreateUserRequest(email="n@example.com", name="N", role_ids=["r1"]))

        assert body_of(recorder.last) == {"email": "n@example.com", "name": "N", "roleIds": ["r1"]}
        assert response.user.id == "u9"

    @pytest.mark.asyncio
    async def test_error_mapping(self):
        """Test status codes map onto shared errors."""
        client, _ = self.make_client({
            ("GET", "/api/roles"): (401, {"message": "expired"}),
            ("GET", "/api/permissions"): (500, {"message": "boom"}),
        })

        async with client:
            with pytest.raises(AuthenticationError):
                await client.fetch_roles()
            with pytest.raises(ExternalServiceError) as exc_info:
                await client.fetch_permissions()

        assert exc_info.value.status == 500

    @pytest.mark.asyncio
    async def test_transport_error_mapping(self):
        """Test transport failures become ExternalServiceError."""
        def explode(request):
            raise httpx.ConnectError("refused", request=request)

        client, _ = self.make_client({("GET", "/api/roles"): explode})

        async with client:
            with pytest.raises(ExternalServiceError):
                await client.fetch_roles()

    @pytest.mark.asyncio
    async def test_favorite_warehouse_from_nested_user(self):
        """Test the favorite warehouse is read from a nested user."""
        client, recorder = self.make_client({
            ("PATCH", "/api/users/u1/favorite-warehouse"): (200, {"user": dict(USER_PAYLOAD, favoriteWarehouseId="w3")}),
        })

        async with client:
            response = await client.update_favorite_warehouse("u1", "w3")

        assert body_of(recorder.last) == {"warehouseId": "w3"}
        assert response.favorite_warehouse_id == "w3"
