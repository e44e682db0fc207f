from datetime import timedelta

import pytest


def iso(value):
    return value.isoformat()


@pytest.fixture
def create(client, clock, users, auth):
    def _create(hours=1, **overrides):
        payload = {
            "providerId": users.provider,
            "serviceRef": "gel-manicure",
            "scheduledAt": iso(clock() + timedelta(hours=hours)),
        }
        payload.update(overrides)
        return client.post("/bookings", json=payload, headers=auth(users.requester))

    return _create


class TestBookingEndpoints:
    def test_create_booking(self, create, clock, users):
        response = create(durationMinutes=60, notes="Almond shape")

        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "pending"
        assert body["requesterId"] == users.requester
        assert body["providerId"] == users.provider
        assert body["durationMinutes"] == 60
        assert body["isAutoRejected"] is False
        assert body["responseDeadline"] == iso(clock() + timedelta(minutes=5))

    def test_aware_timestamps_are_normalized_to_utc(self, create, clock):
        local = (clock() + timedelta(hours=3)).isoformat() + "+02:00"

        response = create(scheduledAt=local)

        assert response.status_code == 201
        assert response.json()["scheduledAt"] == iso(clock() + timedelta(hours=1))

    def test_create_requires_authentication(self, client, users, clock):
        response = client.post(
            "/bookings",
            json={"providerId": users.provider, "serviceRef": "gel-manicure", "scheduledAt": iso(clock())},
        )
        assert response.status_code in (401, 403)

    def test_past_time_maps_to_validation_error(self, create):
        response = create(hours=-1)

        assert response.status_code == 400
        assert response.json()["kind"] == "validation_error"

    def test_malformed_body_maps_to_validation_error(self, create):
        response = create(durationMinutes=0)

        assert response.status_code == 422
        assert response.json()["kind"] == "validation_error"

    def test_unknown_provider_maps_to_not_found(self, create):
        response = create(providerId=9999)

        assert response.status_code == 404
        assert response.json() == {"detail": "Provider not found", "kind": "not_found"}

    def test_unavailable_service_maps_to_conflict(self, create):
        response = create(serviceRef="brow-lamination")

        assert response.status_code == 409
        assert response.json()["kind"] == "conflict"

    def test_full_lifecycle(self, client, create, users, auth):
        booking_id = create().json()["id"]

        confirmed = client.post(f"/bookings/{booking_id}/confirm", headers=auth(users.provider))
        assert confirmed.status_code == 200
        assert confirmed.json()["status"] == "confirmed"

        completed = client.post(f"/bookings/{booking_id}/complete", headers=auth(users.provider))
        assert completed.status_code == 200
        assert completed.json()["status"] == "completed"
        assert completed.json()["completedAt"] is not None

    def test_confirm_by_wrong_user_is_forbidden(self, client, create, users, auth):
        booking_id = create().json()["id"]

        response = client.post(f"/bookings/{booking_id}/confirm", headers=auth(users.other_provider))

        assert response.status_code == 403
        assert response.json()["kind"] == "forbidden"
        stored = client.get(f"/bookings/{booking_id}", headers=auth(users.requester)).json()
        assert stored["status"] == "pending"

    def test_complete_pending_is_invalid_state(self, client, create, users, auth):
        booking_id = create().json()["id"]

        response = client.post(f"/bookings/{booking_id}/complete", headers=auth(users.provider))

        assert response.status_code == 409
        assert response.json()["kind"] == "invalid_state"

    def test_reject_without_body(self, client, create, users, auth):
        booking_id = create().json()["id"]

        response = client.post(f"/bookings/{booking_id}/reject", headers=auth(users.provider))

        assert response.status_code == 200
        assert response.json()["status"] == "rejected"

    def test_propose_alternative_time(self, client, create, clock, users, auth):
        booking_id = create().json()["id"]
        alternative = iso(clock() + timedelta(days=1))

        response = client.post(
            f"/bookings/{booking_id}/reject",
            json={"alternativeTime": alternative, "reason": "Fully booked tomorrow morning"},
            headers=auth(users.provider),
        )

        assert response.status_code == 200
        assert response.json()["status"] == "pending"
        assert response.json()["alternativeTimeProposed"] == alternative

    def test_cancel_with_reason(self, client, create, users, auth):
        booking_id = create().json()["id"]

        response = client.post(
            f"/bookings/{booking_id}/cancel", json={"reason": "Flu"}, headers=auth(users.requester)
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["cancellationReason"] == "Flu"

    def test_get_booking_hidden_from_strangers(self, client, create, users, auth):
        booking_id = create().json()["id"]

        assert client.get(f"/bookings/{booking_id}", headers=auth(users.stranger)).status_code == 403
        assert client.get(f"/bookings/{booking_id}", headers=auth(users.operator)).status_code == 200
        assert client.get("/bookings/missing", headers=auth(users.requester)).status_code == 404


class TestMyBookings:
    def test_pagination_newest_appointment_first(self, client, create, users, auth):
        for hours in (1, 4, 2, 3):
            create(hours=hours)

        first = client.get("/bookings/me?page=1&limit=3", headers=auth(users.requester)).json()
        second = client.get("/bookings/me?page=2&limit=3", headers=auth(users.requester)).json()

        assert first["pagination"] == {"page": 1, "limit": 3, "total": 4, "pages": 2}
        scheduled = [b["scheduledAt"] for b in first["bookings"] + second["bookings"]]
        assert scheduled == sorted(scheduled, reverse=True)
        assert len(second["bookings"]) == 1

    def test_provider_sees_incoming_requests(self, client, create, users, auth):
        create()

        provider_view = client.get("/bookings/me", headers=auth(users.provider)).json()
        other_view = client.get("/bookings/me", headers=auth(users.other_provider)).json()

        assert provider_view["pagination"]["total"] == 1
        assert other_view == {
            "bookings": [],
            "pagination": {"page": 1, "limit": 20, "total": 0, "pages": 0},
        }

    def test_status_filter(self, client, create, users, auth):
        keep = create().json()["id"]
        drop = create().json()["id"]
        client.post(f"/bookings/{drop}/cancel", headers=auth(users.requester))

        body = client.get("/bookings/me?status=pending", headers=auth(users.requester)).json()

        assert [b["id"] for b in body["bookings"]] == [keep]

    def test_unknown_status_filter(self, client, users, auth):
        response = client.get("/bookings/me?status=archived", headers=auth(users.requester))
        assert response.status_code == 400


class TestOperatorEndpoints:
    def test_manual_watchdog_run(self, client, create, clock, users, auth):
        booking_id = create().json()["id"]
        clock.advance(minutes=6)

        response = client.post("/bookings/watchdog/run", headers=auth(users.operator))

        assert response.status_code == 200
        assert response.json() == {"scanned": 1, "expired": 1, "skipped": 0, "failed": 0}
        booking = client.get(f"/bookings/{booking_id}", headers=auth(users.requester)).json()
        assert booking["status"] == "rejected"
        assert booking["isAutoRejected"] is True

    def test_watchdog_run_is_operator_only(self, client, users, auth):
        response = client.post("/bookings/watchdog/run", headers=auth(users.provider))
        assert response.status_code == 403

    def test_reputation_bonus(self, client, users, auth):
        response = client.post(
            f"/providers/{users.provider}/reputation/bonus",
            json={"points": 60, "reason": "Top provider of the month"},
            headers=auth(users.operator),
        )

        assert response.status_code == 200
        assert response.json()["rating"] == 100.0

    def test_reputation_bonus_is_operator_only(self, client, users, auth):
        response = client.post(
            f"/providers/{users.provider}/reputation/bonus",
            json={"points": 5, "reason": "Self-promotion"},
            headers=auth(users.provider),
        )
        assert response.status_code == 403


class TestReputationEndpoint:
    def test_stats(self, client, create, users, auth):
        create()

        response = client.get(f"/providers/{users.provider}/reputation", headers=auth(users.requester))

        assert response.status_code == 200
        body = response.json()
        assert body["providerId"] == users.provider
        assert body["currentRating"] == 50.0
        assert body["totalBookings"] == 1
        assert body["responseRate"] == 100.0

    def test_unknown_provider(self, client, users, auth):
        response = client.get("/providers/4242/reputation", headers=auth(users.requester))
        assert response.status_code == 404


class TestNotificationInbox:
    def test_inbox_and_mark_read(self, client, create, users, auth):
        booking_id = create().json()["id"]
        client.post(f"/bookings/{booking_id}/confirm", headers=auth(users.provider))

        inbox = client.get("/notifications", headers=auth(users.requester)).json()
        assert [n["type"] for n in inbox] == ["booking_confirmed"]
        assert inbox[0]["data"]["bookingId"] == booking_id
        assert inbox[0]["isRead"] is False

        marked = client.post(f"/notifications/{inbox[0]['id']}/read", headers=auth(users.requester))
        assert marked.status_code == 200
        assert marked.json()["isRead"] is True

        unread = client.get("/notifications?unreadOnly=true", headers=auth(users.requester)).json()
        assert unread == []

    def test_cannot_read_someone_elses_notification(self, client, create, users, auth):
        create()
        provider_inbox = client.get("/notifications", headers=auth(users.provider)).json()

        response = client.post(
            f"/notifications/{provider_inbox[0]['id']}/read", headers=auth(users.requester)
        )
        assert response.status_code == 404


class TestAuthentication:
    def test_garbage_token(self, client):
        response = client.get("/bookings/me", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401

    def test_token_for_unknown_user(self, client, auth):
        response = client.get("/bookings/me", headers=auth(9999))
        assert response.status_code == 401

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "healthy", "watchdog_running": False}
