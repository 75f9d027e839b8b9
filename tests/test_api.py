"""
HTTP tests for the waitlist, ticket and ticket-type endpoints.
"""

from datetime import timedelta
from decimal import Decimal

from waitlist_reassignment.models import User, WaitlistEntry


class TestHealth:

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["service"] == "waitlist-reassignment"
        assert "X-Request-ID" in response.headers


class TestWaitlistEndpoints:

    async def test_join_and_check_position(self, client, seed, auth_headers):
        # Given
        _, event, _, _ = await seed.sold_out_event()
        waiter = await seed.user()
        headers = auth_headers(waiter)

        # When
        joined = await client.post("/api/v1/waitlist", json={"event_id": event.id}, headers=headers)
        position = await client.get(f"/api/v1/waitlist/position/{event.id}", headers=headers)

        # Then
        assert joined.status_code == 201
        assert joined.json()["position"] == 1
        assert joined.json()["offered_immediately"] is False
        assert position.status_code == 200
        assert position.json()["position"] == 1

    async def test_join_requires_authentication(self, client, seed):
        _, event, _, _ = await seed.sold_out_event()

        response = await client.post("/api/v1/waitlist", json={"event_id": event.id})

        assert response.status_code in (401, 403)

    async def test_join_event_with_capacity(self, client, seed, auth_headers):
        organizer = await seed.user()
        event = await seed.event(organizer)
        await seed.ticket_type(event, total=5)
        waiter = await seed.user()
        event_id = event.id

        response = await client.post(
            "/api/v1/waitlist", json={"event_id": event_id}, headers=auth_headers(waiter)
        )

        assert response.status_code == 400
        assert response.json()["error"]["error_code"] == "NOT_SOLD_OUT"

    async def test_join_twice_conflicts(self, client, seed, auth_headers):
        _, event, _, _ = await seed.sold_out_event()
        waiter = await seed.user()
        headers = auth_headers(waiter)
        payload = {"event_id": event.id}

        await client.post("/api/v1/waitlist", json=payload, headers=headers)
        response = await client.post("/api/v1/waitlist", json=payload, headers=headers)

        assert response.status_code == 409
        assert response.json()["error"]["error_code"] == "DUPLICATE_ENTRY"

    async def test_position_when_not_queued(self, client, seed, auth_headers):
        _, event, _, _ = await seed.sold_out_event()
        stranger = await seed.user()

        response = await client.get(f"/api/v1/waitlist/position/{event.id}", headers=auth_headers(stranger))

        assert response.status_code == 404
        assert response.json()["error"]["error_code"] == "NOT_FOUND"

    async def test_leave_by_entry_id(self, client, seed, auth_headers):
        _, event, _, _ = await seed.sold_out_event()
        waiter = await seed.user()
        entry = await seed.waitlist(waiter, event)

        response = await client.delete(f"/api/v1/waitlist/{entry.id}", headers=auth_headers(waiter))

        assert response.status_code == 200
        assert response.json()["deleted"]["id"] == entry.id

    async def test_cannot_leave_for_someone_else(self, client, seed, auth_headers):
        _, event, _, _ = await seed.sold_out_event()
        waiter, stranger = await seed.user(), await seed.user()
        await seed.waitlist(waiter, event)

        response = await client.delete(
            f"/api/v1/waitlist/event/{event.id}/user/{waiter.id}", headers=auth_headers(stranger)
        )

        assert response.status_code == 403

    async def test_event_waitlist_listing(self, client, seed, auth_headers):
        _, event, _, _ = await seed.sold_out_event()
        first, second = await seed.user(), await seed.user()
        await seed.waitlist(first, event, joined_ago=timedelta(minutes=2))
        await seed.waitlist(second, event, joined_ago=timedelta(minutes=1))

        response = await client.get(f"/api/v1/waitlist/event/{event.id}", headers=auth_headers(first))

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 2
        assert [e["user_id"] for e in body["entries"]] == [first.id, second.id]
        assert [e["position"] for e in body["entries"]] == [1, 2]


class TestOfferFlow:

    async def test_return_accept_round_trip(self, client, seed, auth_headers, reload):
        # Given: a waiter queued for a sold-out 50.00 event
        _, event, _, tickets = await seed.sold_out_event(price=Decimal("50.00"))
        owner_id, ticket_id = tickets[0].user_id, tickets[0].id
        owner = await seed.session.get(User, owner_id)
        waiter = await seed.user()
        await client.post("/api/v1/waitlist", json={"event_id": event.id}, headers=auth_headers(waiter))

        # When: the owner returns the ticket
        returned = await client.put(f"/api/v1/tickets/{ticket_id}/refund", headers=auth_headers(owner))

        # Then: the waiter holds an offer
        assert returned.status_code == 200
        assert returned.json()["ticket"]["status"] == "pending_return"
        assert returned.json()["waitlist_assigned"] is True
        offer_id = returned.json()["offer_transaction_id"]

        # When: the waiter accepts
        accepted = await client.post(
            f"/api/v1/waitlist/accept-ticket/{offer_id}", headers=auth_headers(waiter)
        )

        # Then: the owner is refunded 49.00 and the waiter left the queue
        assert accepted.status_code == 200
        body = accepted.json()
        assert body["ticket"]["status"] == "active"
        assert body["ticket"]["user_id"] == waiter.id
        assert body["ticket"]["event_id"] == event.id
        assert body["refunded_ticket_id"] == ticket_id
        assert Decimal(str(body["refund_amount"])) == Decimal("49.00")
        assert Decimal(str(body["platform_fee"])) == Decimal("1.00")

        position = await client.get(f"/api/v1/waitlist/position/{event.id}", headers=auth_headers(waiter))
        assert position.status_code == 404

    async def test_accept_someone_elses_offer(self, client, seed, auth_headers):
        _, event, _, tickets = await seed.sold_out_event()
        waiter, stranger = await seed.user(), await seed.user()
        await seed.waitlist(waiter, event)
        owner_headers = auth_headers(await seed.session.get(User, tickets[0].user_id))
        returned = await client.put(f"/api/v1/tickets/{tickets[0].id}/refund", headers=owner_headers)
        offer_id = returned.json()["offer_transaction_id"]

        response = await client.post(
            f"/api/v1/waitlist/accept-ticket/{offer_id}", headers=auth_headers(stranger)
        )

        assert response.status_code == 403

    async def test_decline_passes_offer_on(self, client, seed, auth_headers, reload):
        _, event, _, tickets = await seed.sold_out_event()
        first, second = await seed.user(), await seed.user()
        await seed.waitlist(first, event, joined_ago=timedelta(minutes=2))
        second_entry = await seed.waitlist(second, event, joined_ago=timedelta(minutes=1))
        second_entry_id = second_entry.id
        owner_headers = auth_headers(await seed.session.get(User, tickets[0].user_id))
        returned = await client.put(f"/api/v1/tickets/{tickets[0].id}/refund", headers=owner_headers)
        offer_id = returned.json()["offer_transaction_id"]

        response = await client.post(
            f"/api/v1/waitlist/decline-ticket/{offer_id}", headers=auth_headers(first)
        )

        assert response.status_code == 200
        assert response.json()["assigned_to_next"] is True
        assert (await reload(WaitlistEntry, second_entry_id)).offered_at is not None

    async def test_self_return_for_event_with_capacity(self, client, seed, auth_headers):
        organizer = await seed.user()
        event = await seed.event(organizer)
        ticket_type = await seed.ticket_type(event, total=3)
        buyer = await seed.user()
        ticket = await seed.purchase(buyer, ticket_type)
        headers = auth_headers(buyer)

        response = await client.put(f"/api/v1/tickets/{ticket.id}/refund", headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["message"] == "Tickets can only be returned for sold-out events"

    async def test_organizer_refund(self, client, seed, auth_headers):
        organizer, event, _, tickets = await seed.sold_out_event()
        headers = auth_headers(organizer)

        response = await client.put(f"/api/v1/tickets/{tickets[0].id}/organizer-refund", headers=headers)

        assert response.status_code == 200
        assert response.json()["tickets_available"] == 1
        assert response.json()["waitlist_assigned"] is False


class TestAdminEndpoints:

    async def test_sweep_requires_admin(self, client, seed, auth_headers):
        user = await seed.user()

        response = await client.post("/api/v1/waitlist/admin/sweep", headers=auth_headers(user))

        assert response.status_code == 403

    async def test_sweep_as_admin(self, client, seed, auth_headers):
        admin = await seed.user(is_admin=True)

        response = await client.post("/api/v1/waitlist/admin/sweep", headers=auth_headers(admin))

        assert response.status_code == 200
        assert response.json() == {"cleaned_count": 0, "reassigned_count": 0, "failed_count": 0}

    async def test_audit_for_organizer(self, client, seed, auth_headers):
        organizer, event, ticket_type, _ = await seed.sold_out_event()

        response = await client.get(f"/api/v1/ticket-types/audit/{event.id}", headers=auth_headers(organizer))

        assert response.status_code == 200
        body = response.json()
        assert body["in_sync"] is True
        assert body["ticket_types"][0]["ticket_type_id"] == ticket_type.id
