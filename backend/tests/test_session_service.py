"""Bearer session lifetimes, idle revocation and account deactivation."""

from datetime import timedelta

import pytest

from herbtrace.services import auth_service, session_service
from herbtrace.time_utils import utcnow


class TestSessionLifetime:

    def test_token_is_stored_hashed(self, users):
        session, token = session_service.create_session(users["farmer"].id)
        assert len(token) == 64
        assert session.token_hash == session_service.hash_token(token)
        assert session.token_hash != token

    def test_context_carries_actor(self, users):
        _, token = session_service.create_session(users["laboratory"].id)
        ctx = session_service.validate_session(token)
        assert ctx.actor_id == "lab001"
        assert ctx.actor_role == "laboratory"
        assert "add_quality_test" in ctx.permissions

    def test_absolute_timeout_from_config(self, app, users, monkeypatch):
        monkeypatch.setitem(app.config, "SESSION_ABSOLUTE_TIMEOUT_HOURS", 1)
        session, _ = session_service.create_session(users["farmer"].id)
        assert session.expires_at - session.created_at == timedelta(hours=1)

    def test_expired_session_is_rejected(self, users, db_session):
        session, token = session_service.create_session(users["farmer"].id)
        session.expires_at = utcnow() - timedelta(minutes=1)
        db_session.commit()
        assert session_service.validate_session(token) is None

    def test_idle_session_is_revoked(self, app, users, db_session, monkeypatch):
        monkeypatch.setitem(app.config, "SESSION_IDLE_TIMEOUT_MINUTES", 5)
        session, token = session_service.create_session(users["farmer"].id)
        session.last_used_at = utcnow() - timedelta(minutes=6)
        db_session.commit()

        assert session_service.validate_session(token) is None
        assert session.is_revoked is True
        assert session.revoked_reason == "Idle timeout"

    def test_validation_refreshes_last_used(self, users, db_session):
        session, token = session_service.create_session(users["farmer"].id)
        session.last_used_at = utcnow() - timedelta(minutes=30)
        db_session.commit()
        stale = session.last_used_at

        assert session_service.validate_session(token) is not None
        assert session.last_used_at > stale


class TestDeactivation:

    def test_deactivate_revokes_every_session(self, users):
        _, first = session_service.create_session(users["processor"].id)
        _, second = session_service.create_session(users["processor"].id)

        assert auth_service.deactivate_user("processor001") == 2
        assert session_service.validate_session(first) is None
        assert session_service.validate_session(second) is None
        assert auth_service.authenticate("processor", "Password123!") is None

    def test_deactivate_twice(self, users):
        auth_service.deactivate_user("processor001")
        with pytest.raises(ValueError, match="already deactivated"):
            auth_service.deactivate_user("processor001")

    def test_cannot_open_session_for_deactivated_user(self, users):
        auth_service.deactivate_user("retailer001")
        with pytest.raises(ValueError, match="deactivated"):
            session_service.create_session(users["retailer"].id)
