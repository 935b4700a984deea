"""Tests for the HTTP layer."""

import pytest
from fastapi.testclient import TestClient

from preventive_care.config.config import Settings
from preventive_care.database import row_store as tables
from preventive_care.main import create_app

USER = {"X-User-Id": "u1"}


@pytest.fixture
def settings():
    return Settings(store_backend="memory", environment="development", default_upcoming_years=5)


@pytest.fixture
def client(settings, store):
    with TestClient(create_app(settings, store)) as test_client:
        yield test_client


class TestHealthAndIdentity:
    """Health check and identity handling."""

    def test_health(self, client):
        """Test the health endpoint needs no identity."""
        response = client.get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["checks"] == {"api": True, "store": True}

    def test_missing_identity_is_unauthorized(self, client):
        """Test API routes require the X-User-Id header."""
        response = client.get("/api/v1/guidelines")
        assert response.status_code == 401
        assert response.json()["error"] == "HTTP_401"

    def test_request_id_header(self, client):
        """Test responses carry a request ID."""
        response = client.get("/health")
        assert response.headers["X-Request-ID"]


class TestGuidelineRoutes:
    """Guideline catalog, personalization and completion routes."""

    def test_list_and_get(self, client, seed_guideline):
        """Test listing and fetching a guideline."""
        gid = seed_guideline("Colonoscopy", resources=["USPSTF"])

        listed = client.get("/api/v1/guidelines", headers=USER).json()
        assert [g["id"] for g in listed] == [gid]

        detail = client.get(f"/api/v1/guidelines/{gid}", headers=USER).json()
        assert detail["resources"][0]["name"] == "USPSTF"

    def test_get_unknown_is_404(self, client):
        """Test NotFound maps to 404 with the error envelope."""
        response = client.get("/api/v1/guidelines/nope", headers=USER)
        assert response.status_code == 404
        body = response.json()
        assert body["error"] == "NOT_FOUND"
        assert body["message"] == "Guideline not found: nope"

    def test_personalize(self, client, seed_guideline):
        """Test creating a private copy."""
        gid = seed_guideline("Colonoscopy")
        response = client.post(
            f"/api/v1/guidelines/{gid}/personalize",
            json={"customizations": {"frequency_months": 24}},
            headers=USER,
        )
        assert response.status_code == 201
        body = response.json()
        assert body["guideline"]["name"] == "Colonoscopy (Personalized)"
        assert body["guideline"]["visibility"] == "private"
        assert body["guideline"]["frequency_months"] == 24
        assert body["warnings"] == []

    def test_personalize_unknown_field_is_400(self, client, seed_guideline):
        """Test ValidationError maps to 400."""
        gid = seed_guideline()
        response = client.post(
            f"/api/v1/guidelines/{gid}/personalize",
            json={"customizations": {"colour": "blue"}},
            headers=USER,
        )
        assert response.status_code == 400
        assert response.json()["error"] == "VALIDATION_ERROR"

    def test_complete(self, client, seed_guideline):
        """Test completion computes the next due date."""
        gid = seed_guideline(frequency_months=1)
        response = client.post(
            f"/api/v1/guidelines/{gid}/complete",
            json={"completion_date": "2024-01-31", "notes": "done"},
            headers=USER,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["screening"]["next_due_date"] == "2024-03-02"
        assert body["event"]["notes"] == "done"

    def test_completion_history(self, client, seed_guideline):
        """Test completions are listed per guideline, most recent first."""
        gid = seed_guideline()
        other = seed_guideline("Flu shot")
        for when in ("2023-01-10", "2024-02-20"):
            client.post(f"/api/v1/guidelines/{gid}/complete", json={"completion_date": when}, headers=USER)
        client.post(
            f"/api/v1/guidelines/{other}/complete", json={"completion_date": "2024-03-01"}, headers=USER
        )

        response = client.get(f"/api/v1/guidelines/{gid}/completions", headers=USER)

        assert response.status_code == 200
        assert [e["completion_date"] for e in response.json()] == ["2024-02-20", "2023-01-10"]
        assert client.get(f"/api/v1/guidelines/{gid}/completions", headers={"X-User-Id": "u2"}).json() == []

    def test_admin_guideline_lifecycle(self, client, seed_admin):
        """Test an admin creates, edits and deletes a public guideline."""
        admin = {"X-User-Id": seed_admin()}
        created = client.post(
            "/api/v1/guidelines",
            json={"name": "Lung Cancer Screening", "age_ranges": [{"min_age": 50, "max_age": 80}]},
            headers=admin,
        )
        assert created.status_code == 201
        gid = created.json()["guideline"]["id"]
        assert created.json()["guideline"]["visibility"] == "public"

        updated = client.patch(
            f"/api/v1/guidelines/{gid}",
            json={"guideline": {"frequency_months": 24}, "resources": [{"name": "USPSTF"}]},
            headers=admin,
        )
        assert updated.status_code == 200
        assert updated.json()["guideline"]["frequency_months"] == 24
        assert [r["name"] for r in updated.json()["guideline"]["resources"]] == ["USPSTF"]

        forbidden = client.patch(f"/api/v1/guidelines/{gid}", json={"guideline": {"name": "x"}}, headers=USER)
        assert forbidden.status_code == 403
        assert client.delete(f"/api/v1/guidelines/{gid}", headers=USER).json()["error"] == "PERMISSION_DENIED"

        deleted = client.delete(f"/api/v1/guidelines/{gid}", headers=admin)
        assert deleted.json() == {"message": "Guideline deleted successfully"}
        assert client.get(f"/api/v1/guidelines/{gid}", headers=admin).status_code == 404

    def test_regular_user_creates_private(self, client):
        """Test a non-admin's new guideline is private to them."""
        created = client.post(
            "/api/v1/guidelines", json={"name": "My plan", "visibility": "public"}, headers=USER
        )
        assert created.status_code == 201
        gid = created.json()["guideline"]["id"]
        assert created.json()["guideline"]["visibility"] == "private"
        assert client.get(f"/api/v1/guidelines/{gid}", headers={"X-User-Id": "u2"}).status_code == 404


class TestRecommendationAndSelectionRoutes:
    """Recommendation and selection routes."""

    def test_recommendations(self, client, seed_guideline, seed_profile):
        """Test current and upcoming buckets over HTTP."""
        seed_profile("u1", age=43, gender="female")
        seed_guideline("Colonoscopy", ranges=[(45, 75)])
        seed_guideline("Cervical", ranges=[(21, 65)], genders=["female"])

        plain = client.get("/api/v1/recommendations", headers=USER).json()
        assert [g["name"] for g in plain["recommendations"]["current"]] == ["Cervical"]
        assert plain["recommendations"]["upcoming"] == []

        ahead = client.get("/api/v1/recommendations?upcoming=true", headers=USER).json()
        assert [g["name"] for g in ahead["recommendations"]["upcoming"]] == ["Colonoscopy"]
        assert ahead["profile"]["age"] == 43

    def test_recommendations_without_profile(self, client):
        """Test a missing profile is 404."""
        assert client.get("/api/v1/recommendations", headers=USER).status_code == 404

    def test_select_list_deselect(self, client, seed_guideline):
        """Test the selection lifecycle."""
        gid = seed_guideline()

        selected = client.post("/api/v1/selections", json={"guideline_id": gid}, headers=USER)
        assert selected.status_code == 200
        assert selected.json()["selection"]["guideline_id"] == gid

        listed = client.get("/api/v1/selections", headers=USER).json()
        assert [s["guideline_id"] for s in listed["selections"]] == [gid]

        removed = client.request("DELETE", "/api/v1/selections", json={"guideline_id": gid}, headers=USER)
        assert removed.status_code == 200
        assert client.get("/api/v1/selections", headers=USER).json()["selections"] == []

    def test_select_without_id_is_400(self, client):
        """Test an empty selection request."""
        response = client.post("/api/v1/selections", json={}, headers=USER)
        assert response.status_code == 400
        assert response.json()["message"] == "Guideline ID is required"

    def test_cannot_select_other_users_private_guideline(self, client, seed_guideline):
        """Test a private copy is invisible to other users' selections."""
        gid = seed_guideline("Secret", visibility="private", created_by="owner")

        response = client.post("/api/v1/selections", json={"guideline_id": gid}, headers=USER)

        assert response.status_code == 404
        assert client.get("/api/v1/selections", headers=USER).json()["selections"] == []


class TestScreeningRoutes:
    """Screening and appointment routes."""

    def test_screening_lifecycle(self, client, seed_guideline):
        """Test create, attach appointments, fetch, archive and delete."""
        gid = seed_guideline()
        created = client.post("/api/v1/screenings", json={"guideline_id": gid}, headers=USER)
        assert created.status_code == 201
        sid = created.json()["id"]

        for ref, when in ((sid, "2024-05-01T09:00:00"), (gid, "2024-06-01T09:00:00"), ("", "2024-07-01T09:00:00")):
            response = client.post(
                "/api/v1/appointments",
                json={"date": when, "screening_id": ref, "provider": "Dr. Chen"},
                headers=USER,
            )
            assert response.status_code == 201

        listing = client.get("/api/v1/screenings", headers=USER).json()
        assert len(listing["screenings"][0]["appointments"]) == 2
        assert len(listing["unlinked"]) == 1

        by_guideline = client.get(f"/api/v1/screenings/{gid}", headers=USER).json()
        assert by_guideline["id"] == sid
        assert [a["date"][:10] for a in by_guideline["appointments"]] == ["2024-06-01", "2024-05-01"]

        archived = client.post(f"/api/v1/screenings/{sid}/archive", headers=USER)
        assert archived.json()["archived"] is True
        assert client.get("/api/v1/screenings", headers=USER).json()["screenings"] == []

        assert client.delete(f"/api/v1/screenings/{sid}", headers=USER).json() == {"success": True}
        assert client.delete(f"/api/v1/screenings/{sid}", headers=USER).status_code == 404

    def test_appointments_listing(self, client):
        """Test appointments are listed newest first."""
        for when in ("2024-01-01T09:00:00", "2024-03-01T09:00:00"):
            client.post("/api/v1/appointments", json={"date": when, "screening_id": "s1"}, headers=USER)
        dates = [a["date"][:10] for a in client.get("/api/v1/appointments", headers=USER).json()]
        assert dates == ["2024-03-01", "2024-01-01"]

    def test_screenings_of_other_user_hidden(self, client, seed_guideline):
        """Test screenings are scoped to the caller."""
        gid = seed_guideline()
        sid = client.post("/api/v1/screenings", json={"guideline_id": gid}, headers=USER).json()["id"]
        other = {"X-User-Id": "u2"}
        assert client.get("/api/v1/screenings", headers=other).json()["screenings"] == []
        assert client.post(f"/api/v1/screenings/{sid}/archive", headers=other).status_code == 404


class TestStoreFailures:
    """Store failures surfaced through the HTTP layer."""

    def test_rollback_failure_is_500(self, settings, seed_guideline, failing_store):
        """Test an orphaned copy is reported as a consistency failure."""
        gid = seed_guideline()
        broken = failing_store(insert_many={tables.AGE_RANGES}, delete={tables.GUIDELINES})

        with TestClient(create_app(settings, broken)) as client:
            response = client.post(f"/api/v1/guidelines/{gid}/personalize", headers=USER)

        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "CONSISTENCY_ROLLBACK_FAILED"
        assert body["details"]["orphan_id"]

    def test_store_error_is_500(self, settings, seed_guideline, failing_store):
        """Test a plain store failure keeps its message."""
        gid = seed_guideline()
        broken = failing_store(insert={tables.SCREENINGS})

        with TestClient(create_app(settings, broken)) as client:
            response = client.post("/api/v1/screenings", json={"guideline_id": gid}, headers=USER)

        assert response.status_code == 500
        assert response.json()["error"] == "STORE_ERROR"
        assert "simulated insert failure" in response.json()["message"]


class TestAppointmentRoutes:
    """Single-appointment routes."""

    def _create(self, client, **fields):
        body = {"date": "2024-05-01T09:00:00", "screening_id": "s1", **fields}
        response = client.post("/api/v1/appointments", json=body, headers=USER)
        assert response.status_code == 201
        return response.json()["id"]

    def test_get_patch_delete(self, client):
        """Test fetching, recording a result and deleting an appointment."""
        aid = self._create(client, provider="Dr. Chen")

        assert client.get(f"/api/v1/appointments/{aid}", headers=USER).json()["provider"] == "Dr. Chen"

        patched = client.patch(
            f"/api/v1/appointments/{aid}",
            json={"completed": True, "result": {"status": "normal", "notes": "No findings"}},
            headers=USER,
        )
        assert patched.status_code == 200
        body = patched.json()
        assert body["completed"] is True
        assert body["result"]["status"] == "normal"
        assert body["provider"] == "Dr. Chen"

        deleted = client.delete(f"/api/v1/appointments/{aid}", headers=USER)
        assert deleted.json() == {"message": "Appointment deleted successfully"}
        assert client.get(f"/api/v1/appointments/{aid}", headers=USER).status_code == 404

    def test_other_user_gets_404(self, client):
        """Test appointments are scoped to their owner."""
        aid = self._create(client)
        other = {"X-User-Id": "u2"}
        assert client.get(f"/api/v1/appointments/{aid}", headers=other).status_code == 404
        patched = client.patch(f"/api/v1/appointments/{aid}", json={"completed": True}, headers=other)
        assert patched.status_code == 404
        assert client.delete(f"/api/v1/appointments/{aid}", headers=other).status_code == 404

    def test_mixed_offsets_on_one_screening(self, client, seed_guideline):
        """Test a screening with UTC-suffixed and naive appointment dates."""
        gid = seed_guideline()
        sid = client.post("/api/v1/screenings", json={"guideline_id": gid}, headers=USER).json()["id"]
        self._create(client, date="2024-05-01T10:00:00Z", screening_id=sid)
        self._create(client, date="2024-06-01T10:00:00", screening_id=sid)

        response = client.get(f"/api/v1/screenings/{sid}", headers=USER)

        assert response.status_code == 200
        assert [a["date"][:10] for a in response.json()["appointments"]] == ["2024-06-01", "2024-05-01"]


class TestUserRoutes:
    """Profile routes."""

    def test_me_round_trip(self, client):
        """Test creating and reading the caller's profile."""
        assert client.get("/api/v1/users/me", headers=USER).status_code == 404

        created = client.patch("/api/v1/users/me", json={"age": 44, "gender": "female"}, headers=USER)
        assert created.status_code == 200
        assert created.json()["user_id"] == "u1"

        updated = client.patch("/api/v1/users/me", json={"age": 45}, headers=USER).json()
        assert (updated["age"], updated["gender"]) == (45, "female")
        assert client.get("/api/v1/users/me", headers=USER).json()["age"] == 45

    def test_profile_feeds_recommendations(self, client, seed_guideline):
        """Test recommendations use the profile written through the API."""
        seed_guideline("Colonoscopy", ranges=[(45, 75)])
        client.patch("/api/v1/users/me", json={"age": 50}, headers=USER)
        body = client.get("/api/v1/recommendations", headers=USER).json()
        assert [g["name"] for g in body["recommendations"]["current"]] == ["Colonoscopy"]

    def test_other_users_profile_forbidden(self, client, seed_profile):
        """Test profiles by ID are only available to their owner."""
        seed_profile("u2", age=60)
        assert client.get("/api/v1/users/u1", headers=USER).status_code == 404
        response = client.get("/api/v1/users/u2", headers=USER)
        assert response.status_code == 403
        assert response.json()["error"] == "PERMISSION_DENIED"
        assert client.patch("/api/v1/users/u2", json={"age": 61}, headers=USER).status_code == 403
        assert client.get("/api/v1/users/u2", headers={"X-User-Id": "u2"}).json()["age"] == 60

    def test_invalid_age_is_422(self, client):
        """Test request validation rejects out-of-range ages."""
        assert client.patch("/api/v1/users/me", json={"age": -1}, headers=USER).status_code == 422
