"""
HTTP endpoint integration tests for pick-integrity-api.

These tests verify that FastAPI endpoints:
- Return correct HTTP status codes
- Map domain errors to stable error codes
- Enforce actor identity and the admin role
- Enforce the lock boundary end to end

Uses FastAPI TestClient for in-memory HTTP testing.
"""
import json
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import CREATOR_ID, OTHER_CREATOR_ID, ADMIN_ID, STOREFRONT_ID

CREATOR = {"X-Actor-Id": CREATOR_ID}
OTHER_CREATOR = {"X-Actor-Id": OTHER_CREATOR_ID}
ADMIN = {"X-Actor-Id": ADMIN_ID, "X-Actor-Role": "admin"}


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def pick_body(clock):
    def make(**overrides):
        body = {
            "storefront_id": STOREFRONT_ID,
            "sport": "basketball",
            "league": "NBA",
            "game_id": "g1",
            "bet_type": "moneyline",
            "selection": "Lakers ML",
            "odds_american": -110,
            "units_risked": 1.0,
            "game_start_time": (clock.now + timedelta(hours=2)).isoformat(),
        }
        body.update(overrides)
        return body
    return make


@pytest.fixture
def posted_pick(test_client: TestClient, creator_profile, pick_body):
    response = test_client.post("/api/v1/picks", json=pick_body(), headers=CREATOR)
    assert response.status_code == 201
    return response.json()


# =============================================================================
# ROOT AND HEALTH
# =============================================================================

class TestRootAndHealthEndpoints:
    """Tests for root and health check endpoints."""

    def test_root_endpoint(self, test_client: TestClient):
        """Test root endpoint returns API information."""
        response = test_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "running"
        assert "picks" in data["endpoints"]

    def test_health_endpoint(self, test_client: TestClient):
        """Test basic health check endpoint."""
        response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_api_health_endpoint(self, test_client: TestClient):
        """Test detailed health check reports scheduler and breaker state."""
        response = test_client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["components"]["scheduler"]["status"] == "stopped"
        assert "sports_api" in data["components"]["circuit_breakers"]


# =============================================================================
# PICKS
# =============================================================================

class TestCreatePickEndpoint:
    """Tests for POST /api/v1/picks."""

    def test_create_pick(self, test_client: TestClient, creator_profile, pick_body):
        response = test_client.post("/api/v1/picks", json=pick_body(units_risked=2.0), headers=CREATOR)

        assert response.status_code == 201
        data = response.json()
        assert data["creator_id"] == CREATOR_ID
        assert data["amount_risked"] == 2000
        assert data["odds_decimal"] == 1.9091
        assert data["is_locked"] is False
        assert data["is_verified"] is True
        assert data["status"] == "pending"

    def test_create_parlay(self, test_client: TestClient, creator_profile, pick_body, clock):
        start = (clock.now + timedelta(hours=2)).isoformat()
        legs = [
            {"sport": "basketball", "game_id": "g1", "bet_type": "moneyline", "selection": "Lakers ML",
             "odds_american": -110, "game_start_time": start},
            {"sport": "basketball", "game_id": "g2", "bet_type": "total", "selection": "Over 210.5",
             "odds_american": -110, "game_start_time": start},
        ]
        body = {"storefront_id": STOREFRONT_ID, "bet_type": "parlay", "units_risked": 1.0, "legs": legs}

        response = test_client.post("/api/v1/picks", json=body, headers=CREATOR)

        assert response.status_code == 201
        assert response.json()["odds_american"] == 264
        assert len(response.json()["legs"]) == 2

    def test_market_captured_at_post(self, test_client: TestClient, creator_profile, pick_body, provider):
        """Should store the provider's lines and teams so the posted price can be checked later."""
        lines = {
            "moneyline": {"home": -110, "away": -110},
            "spread": {"home": -110, "away": -110, "line": -1.5},
        }
        provider.lines["g1"] = lines
        provider.add_game("g1", None, None, status="scheduled")

        response = test_client.post("/api/v1/picks", json=pick_body(odds_american=500), headers=CREATOR)

        assert response.status_code == 201
        data = response.json()
        assert data["market_odds_at_post"] == lines
        assert data["home_team"] == "Lakers"
        assert data["away_team"] == "Celtics"

        report = test_client.get(f"/api/v1/picks/{data['id']}/fraud", headers=CREATOR).json()
        assert report["checks"]["odds_mismatch"]["is_mismatch"] is True

    def test_provider_down_still_posts(self, test_client: TestClient, creator_profile, pick_body, provider):
        provider.failing["g1"] = RuntimeError("upstream timeout")

        response = test_client.post("/api/v1/picks", json=pick_body(), headers=CREATOR)

        assert response.status_code == 201
        assert response.json()["market_odds_at_post"] is None

    def test_non_finite_units(self, test_client: TestClient, creator_profile, pick_body):
        body = json.dumps(pick_body()).replace('"units_risked": 1.0', '"units_risked": Infinity')

        response = test_client.post("/api/v1/picks", content=body, headers={**CREATOR, "Content-Type": "application/json"})

        assert response.status_code == 422
        assert response.json()["details"]["value"] == "inf"

    def test_missing_actor(self, test_client: TestClient, pick_body):
        response = test_client.post("/api/v1/picks", json=pick_body())
        assert response.status_code == 401

    def test_unknown_role(self, test_client: TestClient, pick_body):
        response = test_client.post("/api/v1/picks", json=pick_body(),
                                    headers={"X-Actor-Id": CREATOR_ID, "X-Actor-Role": "owner"})

        assert response.status_code == 403
        assert response.json()["error"] == "access_denied"

    def test_invalid_odds(self, test_client: TestClient, creator_profile, pick_body):
        response = test_client.post("/api/v1/picks", json=pick_body(odds_american=0), headers=CREATOR)

        assert response.status_code == 422
        data = response.json()
        assert data["error"] == "invalid_odds"
        assert data["details"]["value"] == 0

    def test_missing_unit_value(self, test_client: TestClient, pick_body):
        response = test_client.post("/api/v1/picks", json=pick_body(), headers=CREATOR)

        assert response.status_code == 422
        assert response.json()["error"] == "missing_unit_value"

    def test_start_in_past(self, test_client: TestClient, creator_profile, pick_body, clock):
        response = test_client.post(
            "/api/v1/picks",
            json=pick_body(game_start_time=(clock.now - timedelta(minutes=1)).isoformat()),
            headers=CREATOR,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "validation_error"


class TestPickEndpoints:
    """Tests for reading, editing and deleting a pick."""

    def test_get_pick(self, test_client: TestClient, posted_pick):
        response = test_client.get(f"/api/v1/picks/{posted_pick['id']}", headers=CREATOR)

        assert response.status_code == 200
        assert response.json()["selection"] == "Lakers ML"

    def test_get_unknown_pick(self, test_client: TestClient):
        response = test_client.get("/api/v1/picks/missing", headers=CREATOR)

        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_owner_edit_before_start(self, test_client: TestClient, posted_pick):
        response = test_client.patch(
            f"/api/v1/picks/{posted_pick['id']}",
            json={"changes": {"units_risked": 3.0}},
            headers=CREATOR,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["units_risked"] == 3.0
        assert data["amount_risked"] == 3000
        assert data["edits"][0]["new_value"] == {"amount_risked": 3000, "units_risked": 3.0}

    def test_owner_edit_after_start_locked(self, test_client: TestClient, posted_pick, clock):
        """Should reject with 423 and name the locked fields."""
        clock.advance(hours=2)

        response = test_client.patch(
            f"/api/v1/picks/{posted_pick['id']}",
            json={"changes": {"odds_american": 150}},
            headers=CREATOR,
        )

        assert response.status_code == 423
        data = response.json()
        assert data["error"] == "locked"
        assert data["details"]["locked_fields"] == ["odds_american"]

    def test_admin_edit_after_start(self, test_client: TestClient, posted_pick, clock):
        clock.advance(hours=3)

        response = test_client.patch(
            f"/api/v1/picks/{posted_pick['id']}",
            json={"changes": {"odds_american": -105}, "reason": "Sportsbook confirmed -105"},
            headers=ADMIN,
        )

        assert response.status_code == 200
        data = response.json()
        assert data["is_locked"] is True
        assert data["is_verified"] is False
        assert len(data["flags"]) == 1
        assert data["edits"][0]["is_admin_edit"] is True

    def test_admin_edit_after_start_without_reason(self, test_client: TestClient, posted_pick, clock):
        clock.advance(hours=3)

        response = test_client.patch(
            f"/api/v1/picks/{posted_pick['id']}",
            json={"changes": {"odds_american": -105}},
            headers=ADMIN,
        )

        assert response.status_code == 422
        assert response.json()["error"] == "reason_required"

    def test_other_creator_cannot_edit(self, test_client: TestClient, posted_pick):
        response = test_client.patch(
            f"/api/v1/picks/{posted_pick['id']}",
            json={"changes": {"units_risked": 3.0}},
            headers=OTHER_CREATOR,
        )

        assert response.status_code == 403

    def test_delete_keeps_ledger(self, test_client: TestClient, posted_pick):
        """Should delete the pick but keep its ledger proof available."""
        pick_id = posted_pick["id"]

        response = test_client.delete(f"/api/v1/picks/{pick_id}", headers=CREATOR)
        assert response.status_code == 200
        assert response.json() == {"pick_id": pick_id, "deleted": True, "ledger_sequence": 2}

        assert test_client.get(f"/api/v1/picks/{pick_id}", headers=CREATOR).status_code == 404

        proof = test_client.get(f"/api/v1/picks/{pick_id}/ledger", headers=CREATOR).json()
        assert proof["chain_valid"] is True
        assert [e["action"] for e in proof["entries"]] == ["create", "delete"]

    def test_other_creator_cannot_delete(self, test_client: TestClient, posted_pick):
        response = test_client.delete(f"/api/v1/picks/{posted_pick['id']}", headers=OTHER_CREATOR)
        assert response.status_code == 403


class TestAdminPickEndpoints:
    """Tests for flag and dispute."""

    def test_flag_requires_admin(self, test_client: TestClient, posted_pick):
        response = test_client.post(f"/api/v1/picks/{posted_pick['id']}/flag",
                                    json={"reason": "Copied pick"}, headers=CREATOR)
        assert response.status_code == 403

    def test_flag(self, test_client: TestClient, posted_pick):
        response = test_client.post(f"/api/v1/picks/{posted_pick['id']}/flag",
                                    json={"reason": "Copied pick"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["flags"][0]["reason"] == "Copied pick"

    def test_dispute(self, test_client: TestClient, posted_pick):
        response = test_client.post(f"/api/v1/picks/{posted_pick['id']}/dispute",
                                    json={"reason": "Stat correction"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["status"] == "disputed"


class TestLedgerAndFraudEndpoints:

    def test_ledger_proof(self, test_client: TestClient, posted_pick):
        test_client.patch(f"/api/v1/picks/{posted_pick['id']}", json={"changes": {"units_risked": 2.0}},
                          headers=CREATOR)

        response = test_client.get(f"/api/v1/picks/{posted_pick['id']}/ledger", headers=CREATOR)

        assert response.status_code == 200
        data = response.json()
        assert data["chain_valid"] is True
        assert [e["sequence"] for e in data["entries"]] == [1, 2]
        assert data["entries"][1]["previous_hash"] == data["entries"][0]["hash"]

    def test_ledger_unknown_pick(self, test_client: TestClient):
        response = test_client.get("/api/v1/picks/missing/ledger", headers=CREATOR)
        assert response.status_code == 404

    def test_fraud_report_for_owner(self, test_client: TestClient, posted_pick):
        response = test_client.get(f"/api/v1/picks/{posted_pick['id']}/fraud", headers=CREATOR)

        assert response.status_code == 200
        data = response.json()
        assert data["score"] == 0
        assert set(data["checks"]) == {"outlier_units", "suspicious_timing", "odds_mismatch", "edit_after_lock"}

    def test_fraud_report_hidden_from_others(self, test_client: TestClient, posted_pick):
        response = test_client.get(f"/api/v1/picks/{posted_pick['id']}/fraud", headers=OTHER_CREATOR)
        assert response.status_code == 403


# =============================================================================
# ODDS
# =============================================================================

class TestOddsEndpoints:

    def test_price_parlay(self, test_client: TestClient):
        response = test_client.post("/api/v1/odds/parlay", json={"legs": [-110, -110]})

        assert response.status_code == 200
        assert response.json() == {"legs": [-110, -110], "decimal": 3.6446, "american": 264}

    def test_parlay_needs_two_legs(self, test_client: TestClient):
        response = test_client.post("/api/v1/odds/parlay", json={"legs": [-110]})

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_parlay"

    def test_convert(self, test_client: TestClient):
        response = test_client.get("/api/v1/odds/convert", params={"american": 150})

        assert response.json() == {"american": 150, "decimal": 2.5, "round_trip_american": 150}

    def test_convert_invalid(self, test_client: TestClient):
        response = test_client.get("/api/v1/odds/convert", params={"american": 0})
        assert response.status_code == 422


# =============================================================================
# CREATORS
# =============================================================================

class TestCreatorEndpoints:

    def test_creator_stats(self, test_client: TestClient, posted_pick):
        response = test_client.get(f"/api/v1/creators/{CREATOR_ID}/stats", headers=CREATOR)

        assert response.status_code == 200
        data = response.json()
        assert data["total_picks"] == 1
        assert data["graded_picks"] == 0

    def test_transparency_cached_then_forced(self, test_client: TestClient, posted_pick):
        first = test_client.get(f"/api/v1/creators/{CREATOR_ID}/transparency", headers=CREATOR).json()
        second = test_client.get(f"/api/v1/creators/{CREATOR_ID}/transparency", headers=CREATOR).json()
        forced = test_client.get(f"/api/v1/creators/{CREATOR_ID}/transparency",
                                 params={"force_recalc": True}, headers=CREATOR).json()

        assert first["score"] == 60
        assert first["cached"] is False
        assert second["cached"] is True
        assert forced["cached"] is False


# =============================================================================
# ADMIN GRADING
# =============================================================================

class TestGradingEndpoints:

    def test_grade_game(self, test_client: TestClient, posted_pick, provider, clock):
        clock.advance(hours=5)
        provider.add_game("g1", 110, 104)

        response = test_client.post("/api/admin/grading/game/g1", headers=ADMIN)

        assert response.status_code == 200
        data = response.json()
        assert data["graded"] == 1
        assert data["results"][0]["result"] == "win"

        pick = test_client.get(f"/api/v1/picks/{posted_pick['id']}", headers=CREATOR).json()
        assert pick["status"] == "graded"
        assert pick["profit_amount"] == 909
        assert pick["fraud"]["score"] == 0

    def test_grading_run(self, test_client: TestClient, posted_pick, provider, clock):
        clock.advance(hours=5)
        provider.add_game("g1", 100, 110)

        response = test_client.post("/api/admin/grading/run", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["results"][0]["result"] == "loss"

    def test_grading_requires_admin(self, test_client: TestClient):
        response = test_client.post("/api/admin/grading/run", headers=CREATOR)
        assert response.status_code == 403

    def test_manual_grade(self, test_client: TestClient, creator_profile, pick_body, clock):
        prop = test_client.post(
            "/api/v1/picks",
            json=pick_body(bet_type="prop", selection="LeBron over 25.5 points"),
            headers=CREATOR,
        ).json()
        clock.advance(hours=5)

        response = test_client.post(f"/api/admin/grading/picks/{prop['id']}",
                                    json={"result": "win", "reason": "Box score: 31 points"}, headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["outcome"] == "graded"

        pick = test_client.get(f"/api/v1/picks/{prop['id']}", headers=CREATOR).json()
        assert pick["verification_source"] == "manual"

    def test_manual_grade_needs_reason(self, test_client: TestClient, posted_pick, clock):
        clock.advance(hours=5)

        response = test_client.post(f"/api/admin/grading/picks/{posted_pick['id']}",
                                    json={"result": "win"}, headers=ADMIN)

        assert response.status_code == 422
        assert response.json()["error"] == "reason_required"

    def test_manual_grade_requires_admin(self, test_client: TestClient, posted_pick):
        response = test_client.post(f"/api/admin/grading/picks/{posted_pick['id']}",
                                    json={"result": "win", "reason": "mine"}, headers=CREATOR)
        assert response.status_code == 403
