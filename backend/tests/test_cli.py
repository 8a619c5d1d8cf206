"""Flask CLI command groups (users, compliance, ledger)."""

import json

from conftest import auth_headers, get_auth_token, make_batch
from herbtrace.extensions import db
from herbtrace.models import User


def invoke(app, *args):
    return app.test_cli_runner().invoke(args=list(args))


class TestUsersCommands:

    def test_create_user_with_grant(self, app, db_session):
        result = invoke(
            app, "users", "create",
            "--user-id", "lab002",
            "--username", "lab2",
            "--email", "lab2@herbtrace.test",
            "--password", "Password123!",
            "--role", "laboratory",
            "--organization", "Second Lab",
            "--grant", "audit",
        )
        assert result.exit_code == 0, result.output
        assert "PASS Created user: lab2 (lab002)" in result.output

        user = db.session.query(User).filter_by(user_id="lab002").one()
        assert user.extra_permissions == ["audit"]

    def test_weak_password_is_reported(self, app, db_session):
        result = invoke(
            app, "users", "create",
            "--user-id", "lab002",
            "--username", "lab2",
            "--email", "lab2@herbtrace.test",
            "--password", "weak",
            "--role", "laboratory",
            "--organization", "Second Lab",
        )
        assert "FAIL Password validation failed" in result.output
        assert db.session.query(User).count() == 0

    def test_list_by_role(self, app, users):
        result = invoke(app, "users", "list", "--role", "farmer")
        assert "farmer001" in result.output
        assert "farmer002" in result.output
        assert "regulator001" not in result.output


class TestComplianceCommands:

    def test_recheck_requires_target(self, app, db_session):
        result = invoke(app, "compliance", "recheck")
        assert result.exit_code != 0
        assert "Pass a BATCH_ID or --all" in result.output

    def test_recheck_all(self, app, users):
        make_batch(users["farmer"], "BATCH001")
        make_batch(users["farmer"], "BATCH002", species="Sandalwood")

        result = invoke(app, "compliance", "recheck", "--all")
        assert result.exit_code == 0, result.output
        assert "FAIL BATCH002" in result.output
        assert "Rechecked 2 batch(es), 0 verdict(s) changed." in result.output

    def test_recheck_unknown_batch(self, app, db_session):
        result = invoke(app, "compliance", "recheck", "NOPE")
        assert "FAIL Batch 'NOPE' not found" in result.output


class TestLedgerCommands:

    def test_status_warns_when_offline(self, app, db_session):
        result = invoke(app, "ledger", "status")
        assert result.exit_code == 0
        assert "offline" in result.output
        assert "WARN  Ledger offline" in result.output

    def test_query_prints_json(self, app, db_session):
        result = invoke(app, "ledger", "query", "BATCH001")
        assert result.exit_code == 0
        assert json.loads(result.output)["args"] == ["BATCH001"]

    def test_deactivate_revokes_sessions(self, app, client, users):
        token = get_auth_token(client, "retailer")

        result = invoke(app, "users", "deactivate", "retailer001")
        assert result.exit_code == 0, result.output
        assert "PASS Deactivated retailer001 (1 session(s) revoked)" in result.output
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401

    def test_deactivate_unknown_user(self, app, db_session):
        result = invoke(app, "users", "deactivate", "ghost001")
        assert result.exit_code != 0
        assert "User 'ghost001' not found" in result.output
