# Overview: Pytest coverage for the Flask CLI bootstrap commands.

from bazaar.models import Event, Organization, User


class TestTenantAndUserCommands:

    def test_create_tenant_and_user(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            "tenants", "create",
            "--org-code", "UNI", "--org-name", "Uni Club",
            "--event-code", "FAIR26", "--event-name", "Spring Fair",
        ])
        assert "PASS" in result.output
        event = db_session.query(Event).filter_by(code="FAIR26").one()
        assert db_session.query(Organization).filter_by(code="UNI").one().id == event.org_id

        result = runner.invoke(args=[
            "users", "create",
            "--event-id", str(event.id), "--auth-uid", "u-1", "--phone", "0123",
            "--name", "Aina", "--role", "sellerManager", "--manages", "CS",
        ])
        assert "PASS" in result.output
        user = db_session.query(User).filter_by(auth_uid="u-1").one()
        assert user.roles == frozenset({"sellerManager"})

        result = runner.invoke(args=["users", "issue-token", "--event-id", str(event.id), "--auth-uid", "u-1"])
        assert len(result.output.strip()) == 64

        result = runner.invoke(args=["stats", "recompute", "--event-id", str(event.id)])
        assert "Recomputed 1 departments and 1 seller managers" in result.output

    def test_duplicate_event_rejected(self, app, db_session, event, org):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "tenants", "create",
            "--org-code", org.code, "--event-code", event.code, "--event-name", "Again",
        ])
        assert "FAIL" in result.output

    def test_unknown_role_rejected(self, app, db_session, event):
        runner = app.test_cli_runner()
        result = runner.invoke(args=[
            "users", "create",
            "--event-id", str(event.id), "--auth-uid", "u-9", "--phone", "0999",
            "--name", "Bad", "--role", "wizard",
        ])
        assert result.exit_code != 0
