"""
Tests for request logging, the error envelope and ownership checks.
"""

import pytest

from waitlist_reassignment.middleware.logging import mask_headers
from waitlist_reassignment.models import User
from waitlist_reassignment.utils.dependencies import ensure_self_or_admin
from waitlist_reassignment.utils.exceptions import (
    AlreadyOnWaitlistError,
    AuthorizationError,
    ConcurrencyError,
    ReservationExpiredError,
    TicketTypeNotFoundError,
)


class TestRequestLogging:

    def test_mask_headers_hides_credentials(self):
        headers = {"Authorization": "Bearer abc.def.ghij", "Cookie": "session=1", "Accept": "*/*"}

        masked = mask_headers(headers, ["authorization", "cookie"])

        assert masked == {"Authorization": "Bearer ***ghij", "Cookie": "***", "Accept": "*/*"}

    async def test_incoming_request_id_is_echoed(self, client):
        response = await client.get("/health", headers={"X-Request-ID": "req-123"})

        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers


class TestErrorEnvelope:

    def test_exceptions_carry_their_status(self):
        assert TicketTypeNotFoundError(3).status_code == 404
        assert AlreadyOnWaitlistError(1, 2).status_code == 409
        assert ReservationExpiredError(9, 30).status_code == 410
        assert AuthorizationError().status_code == 403

    def test_not_found_message_names_the_resource(self):
        error = TicketTypeNotFoundError(3)

        assert error.message == "Ticket type 3 not found"
        assert error.to_dict()["details"] == {"resource_type": "ticket_type", "resource_id": 3}

    def test_concurrency_error_sends_retry_after(self):
        body = ConcurrencyError("Offer 4 is being processed, please retry").to_dict()

        assert body["error_code"] == "CONCURRENCY_CONFLICT"
        assert body["retry_after"] == 1

    async def test_envelope_on_unknown_offer(self, client, seed, auth_headers):
        user = await seed.user()

        response = await client.post("/api/v1/waitlist/accept-ticket/999", headers=auth_headers(user))

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["error_code"] == "NOT_FOUND"
        assert body["error_id"]
        assert body["timestamp"]


class TestOwnership:

    def test_self_and_admin_pass(self):
        user = User(id=1, email="a@example.com", first_name="A", last_name="B", is_admin=False)
        admin = User(id=2, email="b@example.com", first_name="C", last_name="D", is_admin=True)

        ensure_self_or_admin(user, 1, "nope")
        ensure_self_or_admin(admin, 1, "nope")

    def test_other_user_is_rejected(self):
        user = User(id=1, email="a@example.com", first_name="A", last_name="B", is_admin=False)

        with pytest.raises(AuthorizationError) as exc_info:
            ensure_self_or_admin(user, 5, "You can only view your own waitlist entries")
        assert exc_info.value.message == "You can only view your own waitlist entries"
