"""
Tests for API endpoints
"""

import uuid
from unittest.mock import patch

import pytest

from app.core.config import settings
from app.models.user_preferences import UserPreferences


class TestHealthEndpoint:
    """Test health check endpoint"""

    def test_health_check(self, client):
        """Test health check returns 200"""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}


class TestAccountEndpoint:
    def test_reactivate_deleted_user(self, client, make_user, db_session):
        user = make_user(is_deleted=True)

        response = client.post("/api/v1/user/account", json={"action": "reactivate", "user_id": str(user.id)})

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Account reactivated successfully"}
        db_session.refresh(user)
        assert user.is_deleted is False
        assert user.deleted_at is None

    def test_soft_delete(self, client, make_user, db_session):
        user = make_user(firebase_uid="firebase-owner")

        with patch("app.api.v1.routes.user.verify_firebase_token", return_value={"uid": "firebase-owner"}):
            response = client.post(
                "/api/v1/user/account",
                json={"action": "delete", "user_id": str(user.id)},
                headers={"Authorization": "Bearer owner-token"},
            )

        assert response.status_code == 200
        assert response.json()["message"] == "Account deleted successfully"
        db_session.refresh(user)
        assert user.is_deleted is True

    def test_delete_requires_token(self, client, make_user, db_session):
        user = make_user()

        response = client.post("/api/v1/user/account", json={"action": "delete", "user_id": str(user.id)})

        assert response.status_code == 401
        db_session.refresh(user)
        assert user.is_deleted is False

    def test_delete_rejects_other_users_token(self, client, make_user, db_session):
        user = make_user(firebase_uid="firebase-victim")

        with patch("app.api.v1.routes.user.verify_firebase_token", return_value={"uid": "firebase-other"}):
            response = client.post(
                "/api/v1/user/account",
                json={"action": "delete", "user_id": str(user.id)},
                headers={"Authorization": "Bearer other-token"},
            )

        assert response.status_code == 403
        db_session.refresh(user)
        assert user.is_deleted is False

    def test_delete_rejects_invalid_token(self, client, make_user):
        user = make_user()

        with patch("app.api.v1.routes.user.verify_firebase_token", side_effect=ValueError("Invalid token")):
            response = client.post(
                "/api/v1/user/account",
                json={"action": "delete", "user_id": str(user.id)},
                headers={"Authorization": "Bearer bad"},
            )

        assert response.status_code == 401

    def test_unknown_action(self, client, make_user):
        response = client.post("/api/v1/user/account", json={"action": "suspend", "user_id": str(make_user().id)})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid action"

    def test_malformed_user_id(self, client):
        response = client.post("/api/v1/user/account", json={"action": "reactivate", "user_id": "abc"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid user ID"

    def test_unknown_user_id(self, client):
        response = client.post(
            "/api/v1/user/account", json={"action": "reactivate", "user_id": str(uuid.uuid4())})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid user ID"

    def test_missing_body_fields(self, client):
        response = client.post("/api/v1/user/account", json={"action": "reactivate"})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid data"


class TestAuthDataEndpoint:
    def test_creates_preferences_on_first_read(self, client, make_user, db_session):
        user = make_user()

        response = client.get("/api/v1/user/auth-data", params={"user_id": str(user.id)})

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["isSubscriber"] is False
        assert body["data"]["hasCompletedOnboarding"] is False
        assert body["data"]["onboardingStep"] == 1
        assert body["data"]["shouldRedirectToOnboarding"] is True
        assert db_session.query(UserPreferences).filter_by(user_id=user.id).count() == 1

    def test_subscriber(self, client, make_user, make_subscription):
        user = make_user()
        make_subscription(user, status="trialing")

        data = client.get("/api/v1/user/auth-data", params={"user_id": str(user.id)}).json()["data"]

        assert data["isSubscriber"] is True
        assert data["subscription"]["status"] == "trialing"
        assert data["shouldRedirectToDashboard"] is True

    def test_missing_user_id(self, client):
        response = client.get("/api/v1/user/auth-data")

        assert response.status_code == 400
        assert response.json()["detail"] == "user_id is required"


class TestPreferencesEndpoint:
    def test_get_without_row_returns_defaults_and_does_not_write(self, client, make_user, db_session):
        user = make_user()

        response = client.get("/api/v1/user/preferences", params={"user_id": str(user.id)})

        assert response.status_code == 200
        body = response.json()
        assert body["has_completed_onboarding"] is False
        assert body["onboarding_step"] == 1
        assert body["selected_plan_id"] is None
        assert db_session.query(UserPreferences).filter_by(user_id=user.id).count() == 0

    def test_post_updates_subset(self, client, make_user):
        user = make_user()

        response = client.post(
            "/api/v1/user/preferences",
            json={"user_id": str(user.id), "onboarding_step": 3, "selected_plan_id": "pro"},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["onboarding_step"] == 3
        assert data["selected_plan_id"] == "pro"
        assert data["has_completed_onboarding"] is False

    def test_post_null_clears_field(self, client, make_user):
        user = make_user()
        client.post("/api/v1/user/preferences", json={"user_id": str(user.id), "selected_plan_id": "pro"})

        response = client.post("/api/v1/user/preferences", json={"user_id": str(user.id), "selected_plan_id": None})

        assert response.json()["data"]["selected_plan_id"] is None

    @pytest.mark.parametrize("step", [0, 11])
    def test_post_step_out_of_range(self, client, make_user, step):
        user = make_user()

        response = client.post("/api/v1/user/preferences", json={"user_id": str(user.id), "onboarding_step": step})

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid data"
        assert response.json()["details"]

    def test_post_complete_onboarding(self, client, make_user):
        user = make_user()

        response = client.post(
            "/api/v1/user/preferences",
            json={
                "user_id": str(user.id),
                "has_completed_onboarding": True,
                "selected_plan_id": "enterprise",
                "onboarding_completed_at": "2030-01-01T10:00:00",
            },
        )

        data = response.json()["data"]
        assert data["has_completed_onboarding"] is True
        assert data["onboarding_completed_at"].startswith("2030-01-01T10:00:00")


class TestSubscriptionAndTrialEndpoints:
    def test_subscription_status(self, client, make_user, make_subscription):
        user = make_user()
        make_subscription(user)

        body = client.get("/api/v1/user/subscription", params={"user_id": str(user.id)}).json()

        assert body["isValid"] is True
        assert body["subscription"]["status"] == "active"

    def test_no_subscription(self, client, make_user):
        body = client.get("/api/v1/user/subscription", params={"user_id": str(make_user().id)}).json()

        assert body == {"subscription": None, "isSubscriber": False, "isValid": False}

    def test_trial_status(self, client, make_user):
        response = client.get("/api/v1/user/trial", params={"user_id": str(make_user().id)})

        assert response.status_code == 200
        assert response.json()["trial"] is None
        assert response.json()["hasActiveSubscription"] is False


class TestPlansEndpoint:
    def test_list_plans(self, client):
        response = client.get("/api/v1/plans")

        assert response.status_code == 200
        plan_ids = [plan["id"] for plan in response.json()["plans"]]
        assert plan_ids == ["pro", "enterprise", "custom"]

    def test_upgrade_view_only_lists_purchasable_tiers(self, client, monkeypatch):
        monkeypatch.setattr(settings, "stripe_pro_price_id", "price_pro")
        monkeypatch.setattr(settings, "stripe_enterprise_price_id", "price_ent")

        plans = client.get("/api/v1/plans", params={"current_plan": "pro"}).json()["plans"]

        assert [(plan["id"], plan["current"]) for plan in plans] == [("pro", True), ("enterprise", False)]
        assert plans[0]["price_id"] == "price_pro"

    def test_single_plan(self, client):
        response = client.get("/api/v1/plans/enterprise")

        assert response.status_code == 200
        assert response.json()["popular"] is True

    def test_unknown_plan(self, client):
        assert client.get("/api/v1/plans/gold").status_code == 404


class TestAuthCallback:
    def test_no_token_redirects_to_login(self, client):
        response = client.get("/api/v1/auth/callback", follow_redirects=False)

        assert response.status_code in (302, 307)
        assert response.headers["location"] == "http://app.test/login"

    def test_rejected_token(self, client):
        with patch("app.api.v1.routes.auth.verify_firebase_token", side_effect=ValueError("Invalid token")):
            response = client.get("/api/v1/auth/callback", params={"id_token": "bad"}, follow_redirects=False)

        assert response.headers["location"] == "http://app.test/login?error=auth-failed"

    def test_token_without_uid(self, client):
        with patch("app.api.v1.routes.auth.verify_firebase_token", return_value={"email": "x@example.com"}):
            response = client.get("/api/v1/auth/callback", params={"id_token": "ok"}, follow_redirects=False)

        assert response.headers["location"] == "http://app.test/login?error=auth-failed"

    def test_new_user_goes_to_onboarding(self, client, db_session):
        from app.models.user import User

        claims = {"uid": "firebase-new", "email": "new@example.com", "name": "New User"}
        with patch("app.api.v1.routes.auth.verify_firebase_token", return_value=claims), \
             patch("app.api.v1.routes.auth.warm_auth_data_cache"):
            response = client.get("/api/v1/auth/callback", params={"id_token": "ok"}, follow_redirects=False)

        assert response.headers["location"] == "http://app.test/onboarding"
        user = db_session.query(User).filter_by(firebase_uid="firebase-new").one()
        assert user.email == "new@example.com"
        assert db_session.query(UserPreferences).filter_by(user_id=user.id).count() == 1

    def test_onboarded_user_goes_to_dashboard(self, client, make_user, db_session):
        user = make_user(firebase_uid="firebase-done")
        db_session.add(UserPreferences(user_id=user.id, has_completed_onboarding=True, onboarding_step=4))
        db_session.commit()

        with patch("app.api.v1.routes.auth.verify_firebase_token", return_value={"uid": "firebase-done"}), \
             patch("app.api.v1.routes.auth.warm_auth_data_cache"):
            response = client.get(
                "/api/v1/auth/callback", headers={"Authorization": "Bearer ok"}, follow_redirects=False)

        assert response.headers["location"] == "http://app.test/dashboard"

    @pytest.mark.parametrize("next_path,expected", [
        ("/charts", "http://app.test/charts"),
        ("//evil.example", "http://app.test/onboarding"),
        ("https://evil.example", "http://app.test/onboarding"),
    ])
    def test_next_must_be_relative(self, client, next_path, expected):
        with patch("app.api.v1.routes.auth.verify_firebase_token", return_value={"uid": "firebase-next"}), \
             patch("app.api.v1.routes.auth.warm_auth_data_cache"):
            response = client.get(
                "/api/v1/auth/callback",
                params={"id_token": "ok", "next": next_path},
                follow_redirects=False,
            )

        assert response.headers["location"] == expected
