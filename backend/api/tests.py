import uuid
from unittest.mock import MagicMock, patch

import jwt
from django.db import DatabaseError
from django.test import RequestFactory, SimpleTestCase, TestCase, override_settings
from rest_framework.test import APIClient

from api import rbac
from api.auth_admin import AuthAdminClient, AuthAdminError
from api.authentication import Principal
from api.models import UserProfile

JWT_SECRET = "test-secret-with-enough-length-for-hs256"

ADMIN_SETTINGS = dict(
    AUTH_ENABLED=False,
    DEV_AUTH_ENABLED=True,
    DEV_AUTH_USER_ID="dev-admin",
    DEV_AUTH_ROLES=["ADMIN"],
    DEV_AUTH_PERMISSIONS=[],
    AUTH_USE_DB_RBAC=False,
    AUTH_ADMIN_URL="https://auth.example/auth/v1",
    AUTH_SERVICE_KEY="service-key",
    ADMIN_USER_EMAIL_DOMAIN="ramexpo.com",
)


class HealthEndpointTests(TestCase):
    def test_health(self) -> None:
        client = APIClient()
        response = client.get("/api/health/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})


class AuthWhoAmITests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_JWT_SECRET=JWT_SECRET,
        AUTH_ALGORITHMS=["HS256"],
        AUTH_ISSUER="",
        AUTH_AUDIENCE="",
        AUTH_USER_ID_CLAIM="sub",
        AUTH_ROLES_CLAIM="roles",
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_requires_auth(self) -> None:
        response = self.client.get("/api/auth/whoami/")

        self.assertEqual(response.status_code, 401)

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_JWT_SECRET=JWT_SECRET,
        AUTH_ALGORITHMS=["HS256"],
        AUTH_ISSUER="",
        AUTH_AUDIENCE="",
        AUTH_USER_ID_CLAIM="sub",
        AUTH_EMAIL_CLAIM="email",
        AUTH_ROLES_CLAIM="roles",
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_accepts_bearer_token(self) -> None:
        token = jwt.encode(
            {"sub": "user-1", "email": "ravi@ramexpo.com", "roles": ["user"]},
            JWT_SECRET,
            algorithm="HS256",
        )

        response = self.client.get("/api/auth/whoami/", HTTP_AUTHORIZATION=f"Bearer {token}")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["user_id"], "user-1")
        self.assertEqual(body["email"], "ravi@ramexpo.com")
        self.assertEqual(body["roles"], ["USER"])
        self.assertIn(rbac.PERM_PO_EDIT, body["permissions"])
        self.assertNotIn(rbac.PERM_PO_CLOSE, body["permissions"])

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_JWT_SECRET=JWT_SECRET,
        AUTH_ALGORITHMS=["HS256"],
        AUTH_ISSUER="",
        AUTH_AUDIENCE="",
        AUTH_USER_ID_CLAIM="sub",
        AUTH_COOKIE_NAME="sb-access-token",
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_reads_session_cookie(self) -> None:
        token = jwt.encode({"sub": "user-2"}, JWT_SECRET, algorithm="HS256")
        self.client.cookies["sb-access-token"] = token

        response = self.client.get("/api/auth/whoami/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user_id"], "user-2")

    @override_settings(
        AUTH_ENABLED=True,
        DEV_AUTH_ENABLED=False,
        AUTH_JWT_SECRET=JWT_SECRET,
        AUTH_ALGORITHMS=["HS256"],
        AUTH_ISSUER="",
        AUTH_AUDIENCE="",
        AUTH_USER_ID_CLAIM="sub",
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_rejects_bad_signature(self) -> None:
        token = jwt.encode({"sub": "user-1"}, "another-secret-of-sufficient-length", algorithm="HS256")

        response = self.client.get("/api/auth/whoami/", HTTP_AUTHORIZATION=f"Bearer {token}")

        self.assertEqual(response.status_code, 401)

    @override_settings(
        AUTH_ENABLED=False,
        DEV_AUTH_ENABLED=True,
        DEV_AUTH_USER_ID="dev-user",
        DEV_AUTH_ROLES=["VIEWER"],
        DEV_AUTH_PERMISSIONS=[],
        AUTH_USE_DB_RBAC=False,
    )
    def test_whoami_unknown_role_has_no_permissions(self) -> None:
        response = self.client.get("/api/auth/whoami/")

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["user_id"], "dev-user")
        self.assertEqual(body["roles"], ["VIEWER"])
        self.assertEqual(body["permissions"], [])


class RbacTests(TestCase):
    def setUp(self) -> None:
        self.factory = RequestFactory()

    @override_settings(AUTH_USE_DB_RBAC=False)
    def test_admin_role_adds_admin_permissions(self) -> None:
        request = self.factory.get("/")
        principal = Principal(user_id="u1", username="u1", roles=["admin"])

        roles, permissions = rbac.resolve_roles_and_permissions(request, principal)

        self.assertEqual(roles, ["ADMIN"])
        for perm in (
            rbac.PERM_PO_CLOSE,
            rbac.PERM_PRE_GR_APPROVE,
            rbac.PERM_GQR_FINALIZE,
            rbac.PERM_USERS_MANAGE,
            rbac.PERM_TALLY_POST,
        ):
            self.assertIn(perm, permissions)

    @override_settings(AUTH_USE_DB_RBAC=True)
    def test_profile_role_is_merged(self) -> None:
        user_id = uuid.uuid4()
        UserProfile.objects.create(id=user_id, full_name="Asha", role=UserProfile.ROLE_ADMIN)
        request = self.factory.get("/")
        principal = Principal(user_id=str(user_id), username="asha", roles=[])

        roles, permissions = rbac.resolve_roles_and_permissions(request, principal)

        self.assertEqual(roles, ["ADMIN"])
        self.assertTrue(rbac.is_admin(request, principal))
        self.assertIn(rbac.PERM_USERS_MANAGE, permissions)

    @override_settings(AUTH_USE_DB_RBAC=True)
    def test_non_uuid_user_skips_profile_lookup(self) -> None:
        request = self.factory.get("/")
        principal = Principal(user_id="dev-user", username="dev-user", roles=["USER"])

        roles, _ = rbac.resolve_roles_and_permissions(request, principal)

        self.assertEqual(roles, ["USER"])

    @override_settings(AUTH_USE_DB_RBAC=True)
    def test_profile_lookup_failure_falls_back_to_token_roles(self) -> None:
        request = self.factory.get("/")
        principal = Principal(user_id=str(uuid.uuid4()), username="x", roles=["USER"])

        with patch("api.rbac._fetch_profile_role", side_effect=DatabaseError("down")):
            roles, permissions = rbac.resolve_roles_and_permissions(request, principal)

        self.assertEqual(roles, ["USER"])
        self.assertNotIn(rbac.PERM_USERS_MANAGE, permissions)

    @override_settings(AUTH_USE_DB_RBAC=False)
    def test_result_is_cached_per_request(self) -> None:
        request = self.factory.get("/")
        principal = Principal(user_id="u1", username="u1", roles=["USER"])

        first = rbac.resolve_roles_and_permissions(request, principal)
        principal.roles = ["ADMIN"]
        second = rbac.resolve_roles_and_permissions(request, principal)

        self.assertEqual(first, second)


@override_settings(**ADMIN_SETTINGS)
class AdminUserTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    def _client_mock(self, client_cls):
        instance = client_cls.return_value
        instance.__enter__.return_value = instance
        instance.__exit__.return_value = False
        return instance

    def test_list_users(self) -> None:
        UserProfile.objects.create(id=uuid.uuid4(), full_name="Asha", email="asha@ramexpo.com")

        response = self.client.get("/api/admin/users/")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["users"]), 1)

    @override_settings(DEV_AUTH_ROLES=["USER"])
    def test_user_role_is_forbidden(self) -> None:
        response = self.client.get("/api/admin/users/")

        self.assertEqual(response.status_code, 403)

    @patch("api.views.AuthAdminClient")
    def test_create_user_writes_profile(self, client_cls) -> None:
        user_id = uuid.uuid4()
        instance = self._client_mock(client_cls)
        instance.create_user.return_value = {"id": str(user_id)}

        response = self.client.post(
            "/api/admin/users/",
            {"full_name": "Ravi Kumar", "username": "Ravi", "password": "s3cret!", "role": "user"},
            format="json",
        )

        self.assertEqual(response.status_code, 201)
        instance.create_user.assert_called_once_with("ravi@ramexpo.com", "s3cret!", "Ravi Kumar")
        profile = UserProfile.objects.get(id=user_id)
        self.assertEqual(profile.email, "ravi@ramexpo.com")
        self.assertEqual(profile.role, "user")

    def test_create_user_requires_fields(self) -> None:
        response = self.client.post("/api/admin/users/", {"full_name": "Ravi"}, format="json")

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Missing required fields")

    def test_create_user_rejects_unknown_role(self) -> None:
        response = self.client.post(
            "/api/admin/users/",
            {"full_name": "Ravi", "username": "ravi", "password": "x", "role": "owner"},
            format="json",
        )

        self.assertEqual(response.status_code, 400)

    @patch("api.views.AuthAdminClient")
    def test_create_user_provider_rejection_is_passed_through(self, client_cls) -> None:
        instance = self._client_mock(client_cls)
        instance.create_user.side_effect = AuthAdminError("User already registered", status_code=422)

        response = self.client.post(
            "/api/admin/users/",
            {"full_name": "Ravi", "username": "ravi", "password": "x", "role": "user"},
            format="json",
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["error"], "User already registered")

    @patch("api.views.AuthAdminClient")
    def test_profile_failure_removes_auth_user(self, client_cls) -> None:
        instance = self._client_mock(client_cls)
        instance.create_user.return_value = {"id": "not-a-uuid"}

        response = self.client.post(
            "/api/admin/users/",
            {"full_name": "Ravi", "username": "ravi", "password": "x", "role": "user"},
            format="json",
        )

        self.assertEqual(response.status_code, 500)
        instance.delete_user.assert_called_once_with("not-a-uuid")
        self.assertFalse(UserProfile.objects.exists())

    @override_settings(AUTH_SERVICE_KEY="")
    def test_missing_service_key_is_server_error(self) -> None:
        response = self.client.post(
            "/api/admin/users/",
            {"full_name": "Ravi", "username": "ravi", "password": "x", "role": "user"},
            format="json",
        )

        self.assertEqual(response.status_code, 500)
        self.assertIn("service key", response.json()["error"])

    def test_update_user(self) -> None:
        user_id = uuid.uuid4()
        UserProfile.objects.create(id=user_id, full_name="Asha", email="a@ramexpo.com")

        response = self.client.put(
            f"/api/admin/users/{user_id}/",
            {"full_name": "Asha R", "email": "asha@ramexpo.com", "role": "admin"},
            format="json",
        )

        self.assertEqual(response.status_code, 200)
        profile = UserProfile.objects.get(id=user_id)
        self.assertEqual(profile.full_name, "Asha R")
        self.assertEqual(profile.role, "admin")

    def test_update_unknown_user_is_404(self) -> None:
        response = self.client.put(
            f"/api/admin/users/{uuid.uuid4()}/",
            {"full_name": "Asha", "email": "asha@ramexpo.com", "role": "user"},
            format="json",
        )

        self.assertEqual(response.status_code, 404)

    @patch("api.views.AuthAdminClient")
    def test_delete_user(self, client_cls) -> None:
        instance = self._client_mock(client_cls)
        user_id = uuid.uuid4()
        UserProfile.objects.create(id=user_id, full_name="Asha")

        response = self.client.delete(f"/api/admin/users/{user_id}/")

        self.assertEqual(response.status_code, 200)
        instance.delete_user.assert_called_once_with(str(user_id))
        self.assertFalse(UserProfile.objects.filter(id=user_id).exists())


class AuthAdminClientTests(SimpleTestCase):
    @override_settings(AUTH_ADMIN_URL="https://auth.example/auth/v1", AUTH_SERVICE_KEY="key")
    @patch("api.auth_admin.requests.Session.request")
    def test_error_message_is_extracted(self, request_mock) -> None:
        response = MagicMock()
        response.ok = False
        response.status_code = 422
        response.json.return_value = {"msg": "Email address already registered"}
        request_mock.return_value = response

        with AuthAdminClient() as client:
            with self.assertRaises(AuthAdminError) as ctx:
                client.create_user("a@ramexpo.com", "x", "A")

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertEqual(ctx.exception.message, "Email address already registered")


class CronPingTests(TestCase):
    def setUp(self) -> None:
        self.client = APIClient()

    @override_settings(CRON_SECRET="")
    def test_ping_without_secret(self) -> None:
        response = self.client.get("/api/cron/ping/")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertEqual(response.json()["message"], "Ping successful")

    @override_settings(CRON_SECRET="cron-secret")
    def test_ping_rejects_wrong_secret(self) -> None:
        response = self.client.get("/api/cron/ping/", HTTP_AUTHORIZATION="Bearer wrong")

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json(), {"success": False, "error": "Unauthorized"})

    @override_settings(CRON_SECRET="cron-secret")
    def test_ping_accepts_secret(self) -> None:
        response = self.client.get("/api/cron/ping/", HTTP_AUTHORIZATION="Bearer cron-secret")

        self.assertEqual(response.status_code, 200)

    @override_settings(CRON_SECRET="cron-secret")
    def test_ping_requires_bearer_scheme(self) -> None:
        response = self.client.get("/api/cron/ping/", HTTP_AUTHORIZATION="cron-secret")

        self.assertEqual(response.status_code, 401)

    @override_settings(CRON_SECRET="cron-secret")
    def test_ping_compares_secret_in_constant_time(self) -> None:
        with patch("api.views.hmac.compare_digest", return_value=False) as compare_mock:
            response = self.client.get("/api/cron/ping/", HTTP_AUTHORIZATION="Bearer cron-secret")

        self.assertEqual(response.status_code, 401)
        compare_mock.assert_called_once_with(b"cron-secret", b"cron-secret")


@override_settings(LOGIN_URL="/login", AUTH_COOKIE_NAME="sb-access-token")
class SessionRedirectMiddlewareTests(TestCase):
    def test_page_without_session_redirects_to_login(self) -> None:
        response = self.client.get("/dashboard")

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response["Location"], "/login")

    def test_login_page_with_session_redirects_home(self) -> None:
        self.client.cookies["sb-access-token"] = "token"

        response = self.client.get("/login")

        self.assertEqual(response.status_code, 302)
        self.assertEqual(response["Location"], "/")

    def test_logout_keeps_login_page(self) -> None:
        self.client.cookies["sb-access-token"] = "token"

        response = self.client.get("/login?logout=true")

        self.assertNotEqual(response.status_code, 302)

    def test_api_routes_are_not_redirected(self) -> None:
        response = self.client.get("/api/health/")

        self.assertEqual(response.status_code, 200)
