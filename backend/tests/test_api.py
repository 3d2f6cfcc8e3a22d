# Overview: Pytest coverage for the HTTP layer: auth, JSON envelope and end-to-end flows.

from datetime import timedelta

from bazaar.models import User
from bazaar.services import identity_service
from conftest import TEST_PIN, WRONG_PIN


def _error_code(response):
    body = response.get_json()
    assert body["success"] is False
    return body["error"]["code"]


class TestAuthentication:

    def test_missing_credential(self, client, db_session):
        response = client.get("/api/me")
        assert response.status_code == 401
        assert _error_code(response) == "unauthenticated"

    def test_malformed_header(self, client, db_session):
        response = client.get("/api/me", headers={"Authorization": "Token abc"})
        assert response.status_code == 401

    def test_revoked_credential(self, client, db_session, customer):
        token = identity_service.issue_credential(
            db_session, org_id=customer.org_id, event_id=customer.event_id, auth_uid=customer.auth_uid,
        )
        assert identity_service.revoke_credential(db_session, token)
        response = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401

    def test_expired_credential(self, client, db_session, customer):
        token = identity_service.issue_credential(
            db_session,
            org_id=customer.org_id,
            event_id=customer.event_id,
            auth_uid=customer.auth_uid,
            ttl=timedelta(minutes=-5),
        )
        response = client.get("/api/me", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        assert "expired" in response.get_json()["error"]["message"]

    def test_deactivated_user(self, client, db_session, customer, headers_for):
        headers = headers_for(customer)
        db_session.get(User, customer.id).is_active = False
        db_session.commit()

        response = client.get("/api/me", headers=headers)
        assert response.status_code == 403
        assert _error_code(response) == "permission-denied"

    def test_me(self, client, seller, headers_for):
        response = client.get("/api/me", headers=headers_for(seller))
        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["roles"] == ["seller"]
        assert data["accounts"]["seller"]["available_points"] == 0
        assert data["point_value_cents"] == 100


class TestEnvelope:

    def test_unknown_route(self, client, db_session):
        response = client.get("/api/does-not-exist")
        assert response.status_code == 404
        assert _error_code(response) == "not-found"

    def test_health(self, client, db_session):
        response = client.get("/api/system/health")
        assert response.status_code == 200
        body = response.get_json()
        assert body["success"] is True
        assert body["data"]["checks"]["database"]["status"] == "healthy"

    def test_invalid_amount(self, client, manager, seller, headers_for):
        response = client.post(
            "/api/points/allocate",
            json={"recipient_id": seller.id, "amount": "lots", "pin": TEST_PIN},
            headers=headers_for(manager),
        )
        assert response.status_code == 400
        assert _error_code(response) == "invalid-argument"

    def test_insufficient_balance_is_conflict(self, client, customer, merchant, headers_for):
        response = client.post(
            "/api/payments",
            json={"merchant_id": merchant.id, "amount": 5, "pin": TEST_PIN},
            headers=headers_for(customer),
        )
        assert response.status_code == 409
        body = response.get_json()
        assert body["error"]["code"] == "failed-precondition"
        assert body["error"]["details"] == {"available": 0, "required": 5}

    def test_role_payload_ignored(self, client, customer, seller, headers_for):
        response = client.post(
            "/api/points/allocate",
            json={"recipient_id": seller.id, "amount": 5, "pin": TEST_PIN, "roles": ["sellerManager"]},
            headers=headers_for(customer),
        )
        assert response.status_code == 403


class TestFlows:

    def test_allocate_sell_and_submit(self, client, manager, seller, customer, headers_for):
        manager_headers = headers_for(manager)
        seller_headers = headers_for(seller)

        response = client.post(
            "/api/points/allocate",
            json={"recipient_id": seller.id, "amount": 50, "pin": TEST_PIN},
            headers=manager_headers,
        )
        assert response.status_code == 201
        assert response.get_json()["data"]["balances"]["to_after"] == 50

        response = client.post(
            "/api/points/seller-sale",
            json={"customer_id": customer.id, "amount": 30, "pin": TEST_PIN},
            headers=seller_headers,
        )
        assert response.status_code == 201
        sale_id = response.get_json()["data"]["id"]

        response = client.post(
            "/api/cash-submissions",
            json={
                "amount_cents": 3000,
                "sources": [{"type": "direct_sale", "id": sale_id}],
                "receiver_id": manager.id,
                "pin": TEST_PIN,
            },
            headers=seller_headers,
        )
        assert response.status_code == 201
        submission_id = response.get_json()["data"]["id"]

        response = client.get("/api/cash-submissions/incoming", headers=manager_headers)
        assert [row["id"] for row in response.get_json()["data"]] == [submission_id]

        response = client.post(
            f"/api/cash-submissions/{submission_id}/confirm", json={"pin": TEST_PIN}, headers=manager_headers,
        )
        assert response.status_code == 200
        assert response.get_json()["data"]["status"] == "confirmed"

        response = client.get("/api/me", headers=manager_headers)
        assert response.get_json()["data"]["accounts"]["seller_manager"]["cash_stats"]["cash_on_hand"] == "80.00"

    def test_payment_history(self, client, manager, customer, owner, merchant, headers_for):
        client.post(
            "/api/points/direct-sale",
            json={"customer_id": customer.id, "amount": 20, "pin": TEST_PIN},
            headers=headers_for(manager),
        )
        response = client.post(
            "/api/payments",
            json={"merchant_id": merchant.id, "amount": 12, "pin": TEST_PIN},
            headers=headers_for(customer),
        )
        payment_id = response.get_json()["data"]["id"]

        owner_headers = headers_for(owner)
        assert client.post(f"/api/payments/{payment_id}/confirm", headers=owner_headers).status_code == 200

        response = client.get(f"/api/payments/{payment_id}", headers=owner_headers)
        statuses = [entry["to_status"] for entry in response.get_json()["data"]["history"]]
        assert statuses == ["pending", "completed"]

    def test_pin_verify_reports_remaining_attempts(self, client, customer, headers_for):
        response = client.post("/api/pin/verify", json={"pin": WRONG_PIN}, headers=headers_for(customer))
        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["verified"] is False
        assert data["remaining_attempts"] == 4
