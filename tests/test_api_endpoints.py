"""
Tests for the HTTP API.

Uses the Flask test client over an engine wired to in-memory fakes.
The test client connects from a trusted proxy address, so client
identities are varied with X-Forwarded-For.
"""

import os
import sys
from datetime import date

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from aggregation import AggregateCache
from api import create_app
from api.utils import TOKEN_COOKIE_MAX_AGE, TOKEN_COOKIE_NAME, UPDATE_TOKEN_HEADER
from capacity import CapacityConfig, CapacityMonitor
from errors import ErrorCode
from prediction_engine import PredictionEngine
from rate_limiter import RateLimitConfig, RateLimiter
from scaling.cache import LocalCache


def _as(ip):
    return {"X-Forwarded-For": ip}


def _submit(client, predicted_date, ip="203.0.113.7", **extra):
    return client.post(
        "/api/predict",
        json={"predicted_date": predicted_date, **extra},
        headers=_as(ip),
    )


class TestSubmitEndpoint:
    def test_submit(self, flask_client):
        response = _submit(flask_client, "2027-01-01")

        assert response.status_code == 201
        body = response.get_json()
        assert body["success"] is True
        data = body["data"]
        assert data["prediction"]["predicted_date"] == "2027-01-01"
        assert data["stats"]["total_count"] == 1
        assert data["comparison"] == "aligned"
        assert data["update_token"]
        assert "identity_token" not in data["prediction"]

    def test_sets_update_token_cookie(self, flask_client):
        response = _submit(flask_client, "2027-01-01")
        token = response.get_json()["data"]["update_token"]

        cookie = response.headers["Set-Cookie"]
        assert f"{TOKEN_COOKIE_NAME}={token}" in cookie
        assert f"Max-Age={TOKEN_COOKIE_MAX_AGE}" in cookie
        assert "HttpOnly" in cookie
        assert "SameSite=Strict" in cookie

    def test_duplicate(self, flask_client):
        _submit(flask_client, "2027-01-01")
        response = _submit(flask_client, "2028-01-01")

        assert response.status_code == 409
        body = response.get_json()
        assert body["success"] is False
        assert body["error"]["code"] == ErrorCode.DUPLICATE_IDENTITY.value

    @pytest.mark.parametrize(
        "payload,field",
        [
            ({}, "predicted_date"),
            ({"predicted_date": 20270101}, "predicted_date"),
            ({"predicted_date": "2027-02-30"}, "predicted_date"),
            ({"predicted_date": "x" * 100}, "predicted_date"),
        ],
    )
    def test_validation_errors(self, flask_client, payload, field):
        response = flask_client.post("/api/predict", json=payload, headers=_as("203.0.113.7"))

        assert response.status_code == 400
        error = response.get_json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert error["field"] == field

    def test_forwarding_headers_ignored_from_untrusted_peer(self, flask_client, ledger):
        peer = {"REMOTE_ADDR": "9.9.9.9"}
        spoofed = [
            {"CF-Connecting-IP": "1.1.1.1"},
            {"CF-Connecting-IP": "2.2.2.2"},
            {"X-Forwarded-For": "3.3.3.3"},
        ]
        statuses = [
            flask_client.post(
                "/api/predict",
                json={"predicted_date": "2027-01-01"},
                headers=headers,
                environ_base=peer,
            ).status_code
            for headers in spoofed
        ]

        assert statuses == [201, 409, 409]
        assert ledger.count() == 1

    def test_non_json_body(self, flask_client):
        response = flask_client.post("/api/predict", data="nope", content_type="text/plain")
        assert response.status_code == 400
        assert response.get_json()["success"] is False


class TestReviseEndpoint:
    def test_revise_with_body_token(self, flask_client):
        token = _submit(flask_client, "2027-01-01").get_json()["data"]["update_token"]

        response = flask_client.put(
            "/api/predict",
            json={"predicted_date": "2099-01-01", "update_token": token},
        )

        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["previous_date"] == "2027-01-01"
        assert data["prediction"]["predicted_date"] == "2099-01-01"
        assert data["prediction"]["weight"] == 0.1

    def test_revise_with_header_token(self, flask_client):
        token = _submit(flask_client, "2027-01-01").get_json()["data"]["update_token"]

        response = flask_client.put(
            "/api/predict",
            json={"predicted_date": "2027-02-01"},
            headers={UPDATE_TOKEN_HEADER: token},
        )
        assert response.status_code == 200

    def test_revise_with_cookie(self, flask_client):
        # The submit response set the cookie on the client
        _submit(flask_client, "2027-01-01")

        response = flask_client.put("/api/predict", json={"predicted_date": "2027-03-01"})
        assert response.status_code == 200
        assert response.get_json()["data"]["stats"]["median_date"] == "2027-03-01"

    def test_unknown_token(self, flask_client):
        response = flask_client.put(
            "/api/predict",
            json={"predicted_date": "2027-01-01", "update_token": "not-a-real-token"},
        )
        assert response.status_code == 404
        assert response.get_json()["error"]["code"] == "TOKEN_NOT_FOUND"

    def test_missing_token(self, flask_client):
        response = flask_client.put("/api/predict", json={"predicted_date": "2027-01-01"})
        assert response.status_code == 400


class TestMyPredictionEndpoint:
    def test_lookup(self, flask_client):
        _submit(flask_client, "2027-01-01", ip="198.51.100.1")
        token = _submit(flask_client, "2027-03-01", ip="198.51.100.2").get_json()["data"]["update_token"]

        response = flask_client.get("/api/predict", headers={UPDATE_TOKEN_HEADER: token})
        assert response.status_code == 200
        data = response.get_json()["data"]
        assert data["prediction"]["predicted_date"] == "2027-03-01"
        assert data["median_date"] == "2027-01-01"
        assert data["delta_days"] == 59
        assert data["comparison"] == "pessimistic"


class TestStatsEndpoints:
    def test_stats_cache_headers(self, flask_client, engine):
        first = flask_client.get("/api/stats")
        second = flask_client.get("/api/stats")

        assert first.headers["X-Cache"] == "MISS"
        assert second.headers["X-Cache"] == "HIT"
        ttl = int(engine.config.cache_ttl_seconds)
        assert second.headers["Cache-Control"] == f"public, max-age={ttl}"

    def test_stats_fresh_after_submit(self, flask_client):
        flask_client.get("/api/stats")
        _submit(flask_client, "2027-01-01")

        data = flask_client.get("/api/stats").get_json()["data"]
        assert data["total_count"] == 1
        assert data["median_date"] == "2027-01-01"

    def test_empty_stats(self, flask_client):
        data = flask_client.get("/api/stats").get_json()["data"]
        assert data["total_count"] == 0
        assert data["median_date"] == "2026-11-19"
        assert data["min_date"] is None

    def test_status_gathering_data(self, flask_client):
        _submit(flask_client, "2027-01-01")
        data = flask_client.get("/api/status").get_json()["data"]

        assert data["status"] == "Gathering Data"
        assert data["status_color"] == "blue"
        assert data["total_count"] == 1
        assert data["reference_date"] == "2026-11-19"

    def test_status_overrides(self, flask_client):
        _submit(flask_client, "2027-01-20")
        response = flask_client.get(
            "/api/status?reference_date=2027-01-01&minimum_sample_size=1"
        )
        data = response.get_json()["data"]

        assert data["status"] == "On Track"
        assert data["days_difference"] == 19

    @pytest.mark.parametrize(
        "query", ["reference_date=soon", "minimum_sample_size=abc", "minimum_sample_size=-1"]
    )
    def test_status_bad_query(self, flask_client, query):
        response = flask_client.get(f"/api/status?{query}")
        assert response.status_code == 400

    def test_sentiment(self, flask_client):
        _submit(flask_client, "2026-06-01", ip="198.51.100.1")
        _submit(flask_client, "2027-06-01", ip="198.51.100.2")
        _submit(flask_client, "2028-06-01", ip="198.51.100.3")

        data = flask_client.get("/api/sentiment").get_json()["data"]
        assert data["optimism_score"] == 33.3
        assert data["optimistic_count"] == 1
        assert data["pessimistic_count"] == 2

    def test_distribution_withheld_below_floor(self, flask_client):
        _submit(flask_client, "2027-01-01")
        data = flask_client.get("/api/predictions").get_json()["data"]

        assert data["data"] == []
        assert data["total_predictions"] == 1
        assert data["minimum_sample_size"] == 50

    def test_distribution_published_at_floor(self, engine, rate_limiter):
        engine.config.minimum_sample_size = 2
        client = create_app(engine=engine, rate_limiter=rate_limiter).test_client()
        _submit(client, "2027-01-01", ip="198.51.100.1")
        _submit(client, "2027-01-01", ip="198.51.100.2")

        data = client.get("/api/predictions").get_json()["data"]
        assert data["data"] == [{"predicted_date": "2027-01-01", "count": 2}]


class TestRateLimiting:
    def test_submit_limit(self, engine):
        limiter = RateLimiter(RateLimitConfig(scope_limits={"submit": 1, "update": 5, "read": 5}))
        client = create_app(engine=engine, rate_limiter=limiter).test_client()

        assert _submit(client, "2027-01-01").status_code == 201
        response = _submit(client, "2027-01-01")

        assert response.status_code == 429
        assert response.get_json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
        assert "Retry-After" in response.headers

    def test_headers_on_allowed_request(self, flask_client):
        response = flask_client.get("/api/stats")
        assert response.headers["X-RateLimit-Limit"] == "1000"


class TestMonitoringEndpoints:
    def test_health(self, flask_client):
        body = flask_client.get("/health").get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["ledger"]["backend_type"] == "MemoryLedger"
        assert body["checks"]["bot_verification"] == "AllowAllVerifier"

    def test_health_checks(self, flask_client):
        assert flask_client.get("/health/live").status_code == 200
        assert flask_client.get("/health/ready").status_code == 200

    def test_not_ready_when_ledger_down(self, flask_client, ledger, monkeypatch):
        monkeypatch.setattr(ledger, "is_available", lambda: False)
        assert flask_client.get("/health/ready").status_code == 503

    def test_prometheus_metrics(self, flask_client):
        _submit(flask_client, "2027-01-01")
        text = flask_client.get("/metrics").get_data(as_text=True)

        assert "dateconsensus_submissions_total 1" in text
        assert "dateconsensus_observations_current 1" in text

    def test_request_id_echoed(self, flask_client):
        response = flask_client.get("/health/live", headers={"X-Request-ID": "abc123"})
        assert response.headers["X-Request-ID"] == "abc123"

    def test_unknown_route_uses_envelope(self, flask_client):
        response = flask_client.get("/api/nothing-here")
        assert response.status_code == 404
        assert response.get_json()["success"] is False


def test_cookie_secure_by_default(engine, rate_limiter, monkeypatch):
    monkeypatch.delenv("COOKIE_SECURE", raising=False)
    app = create_app(engine=engine, rate_limiter=rate_limiter)
    assert app.config["COOKIE_SECURE"] is True


def test_reference_date_default(engine):
    assert engine.config.reference_date == date(2026, 11, 19)


class TestStatusConsistency:
    def test_status_reads_aggregate_once(self, flask_client, engine, monkeypatch):
        _submit(flask_client, "2027-01-20")
        calls = []
        original = engine.aggregate_cache.get_aggregate

        def counting_get_aggregate():
            calls.append(1)
            return original()

        monkeypatch.setattr(engine.aggregate_cache, "get_aggregate", counting_get_aggregate)

        data = flask_client.get(
            "/api/status?reference_date=2027-01-01&minimum_sample_size=1"
        ).get_json()["data"]

        assert len(calls) == 1
        assert data["median_date"] == "2027-01-20"
        assert data["days_difference"] == 19


def test_response_keys_keep_insertion_order(flask_app, flask_client):
    assert flask_app.json.sort_keys is False
    body = flask_client.get("/api/stats").get_data(as_text=True)
    assert body.index('"success"') < body.index('"data"')


class TestDegradation:
    @pytest.fixture
    def capacity(self):
        clock = lambda: 1_800_000_000.0  # noqa: E731
        return CapacityMonitor(LocalCache(clock=clock), CapacityConfig(daily_limit=10), clock=clock)

    @pytest.fixture
    def client(self, ledger, engine_config, capacity, rate_limiter):
        aggregate_cache = AggregateCache(
            ledger, LocalCache(), ttl_seconds=300,
            default_date=engine_config.reference_date, capacity=capacity,
        )
        engine = PredictionEngine(ledger, aggregate_cache, engine_config, capacity=capacity)
        return create_app(engine=engine, rate_limiter=rate_limiter).test_client()

    def test_requests_are_counted(self, client, capacity):
        client.get("/api/stats")
        client.get("/api/sentiment")
        client.get("/health")
        client.get("/metrics")

        assert capacity.get_state().requests_today == 2

    def test_degradation_endpoint(self, client):
        data = client.get("/api/degradation").get_json()["data"]

        assert data["level"] == "normal"
        assert data["requests_today"] == 1
        assert data["limit_today"] == 10
        assert data["features"]["submissions_enabled"] is True
        assert data["message"] is None

    def test_extended_cache_header_under_high_load(self, client):
        for _ in range(8):
            client.get("/api/sentiment")
        response = client.get("/api/stats")

        assert response.headers["Cache-Control"] == "public, max-age=900"

    def test_read_only_when_exceeded(self, client, ledger):
        for _ in range(10):
            client.get("/api/stats")

        response = _submit(client, "2027-01-01")

        assert response.status_code == 503
        error = response.get_json()["error"]
        assert error["code"] == "CAPACITY_EXCEEDED"
        assert error["retry_after_hours"] >= 1
        assert ledger.count() == 0
        assert client.get("/api/stats").status_code == 200

    def test_degradation_without_capacity_tracking(self, flask_client):
        data = flask_client.get("/api/degradation").get_json()["data"]
        assert data["level"] == "normal"
        assert data["features"]["cache_extended"] is False
