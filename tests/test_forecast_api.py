from __future__ import annotations

import pytest


@pytest.mark.parametrize(
    "path",
    [
        "/api/v1/forecast/zone-summary",
        "/api/v1/forecast/monthly-breakdown",
        "/api/v1/forecast/user-monthly-breakdown",
        "/api/v1/forecast/po-expected-month",
        "/api/v1/forecast/product-user-zone",
        "/api/v1/forecast/product-wise",
        "/api/v1/forecast/analytics",
    ],
)
def test_forecast_reports_use_envelope(client, path):
    response = client.get(path, params={"year": "2024"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["data"]["year"] == 2024
    assert payload["pagination"] is None
    assert payload["meta"]["source"] == "supabase"
    assert payload["meta"]["timeWindow"] == "2024"
    assert payload["meta"]["calculationVersion"] == "v1"


def test_zone_summary_payload_is_camel_case(client):
    response = client.get("/api/v1/forecast/zone-summary", params={"year": "2024", "minProbability": "50"})
    assert response.status_code == 200
    data = response.json()["data"]
    assert data["filters"]["minProbability"] == 50
    assert data["overallTotals"]["uForBooking"] == 1000.0
    assert data["zones"][0]["balanceBu"] == 3600.0
    assert data["zones"][0]["hitRatePercent"] == 67
    assert data["zones"][0]["quarters"][0]["deviation"] == -38
    assert data["zones"][0]["quarters"][1]["deviation"] == -50


def test_zone_filter_narrows_report(client):
    response = client.get("/api/v1/forecast/monthly-breakdown", params={"year": "2024", "zoneId": "2"})
    assert response.status_code == 200
    zones = response.json()["data"]["zones"]
    assert [zone["zoneName"] for zone in zones] == ["South"]
    assert zones[0]["yearlyTarget"] == 9000.0


def test_malformed_params_fall_back_to_defaults(client):
    response = client.get(
        "/api/v1/forecast/zone-summary",
        params={
            "year": "2024",
            "minProbability": "abc",
            "maxProbability": "500",
            "zoneId": "-4",
            "productType": "unknown",
            "includeProducts": "maybe",
        },
    )
    assert response.status_code == 200
    filters = response.json()["data"]["filters"]
    assert filters["minProbability"] == 0
    assert filters["maxProbability"] == 100
    assert filters["zoneId"] is None
    assert filters["productType"] == "ALL"
    assert filters["includeProducts"] is True


def test_include_products_false_skips_breakdown(client):
    response = client.get(
        "/api/v1/forecast/monthly-breakdown",
        params={"year": "2024", "includeProducts": "false"},
    )
    assert response.status_code == 200
    assert all(zone["productBreakdown"] is None for zone in response.json()["data"]["zones"])


def test_fetch_failure_returns_error_envelope(client, failing_repository):
    response = client.get("/api/v1/forecast/zone-summary", params={"year": "2024"})
    assert response.status_code == 500
    assert response.json() == {
        "error": {
            "code": "report_failed",
            "message": "Failed to fetch forecast summary",
            "details": None,
        }
    }
