"""
Tests for the HTTP layer: response caching middleware and the cache admin API.
"""
import base64
import gzip
import json
import logging

import pytest
from unittest.mock import AsyncMock, patch

from fastapi import FastAPI, HTTPException
from fastapi.testclient import TestClient

from cms_cache.api.app import create_app
from cms_cache.api.middleware import CacheMiddleware
from cms_cache.caching.cache_warming import CacheWarmer, create_warming_jobs
from cms_cache.caching.errors import ConfigurationError
from cms_cache.config import MonitoringSettings, Settings
from cms_cache.logging_config import CorrelationFilter, get_correlation_id


@pytest.fixture
def settings():
    """Settings with background reporting off."""
    return Settings(monitoring=MonitoringSettings(report_enabled=False))


@pytest.fixture
def calls():
    return []


@pytest.fixture
def app(cache_manager, settings, calls):
    """Create FastAPI app with a small content API behind the cache."""
    async def load_posts():
        return [{"id": 1, "title": "Cached"}]

    warmer = CacheWarmer(cache_manager)
    for job in create_warming_jobs(posts_loader=load_posts):
        warmer.register_job(job)

    app = create_app(cache_manager=cache_manager, settings=settings, warmer=warmer)

    @app.get("/api/posts")
    async def list_posts(page: int = 1):
        calls.append(("list", page))
        return [{"id": 1, "title": "Hello", "page": page}]

    @app.post("/api/posts")
    async def create_post():
        calls.append(("create", None))
        return {"id": 2}

    @app.get("/api/posts/{post_id}")
    async def get_post(post_id: int):
        calls.append(("get", post_id))
        raise HTTPException(status_code=404, detail="Post not found")

    @app.get("/api/admin/dashboard")
    async def dashboard():
        calls.append(("admin", None))
        return {"ok": True}

    @app.get("/cached-feed")
    async def cached_feed():
        calls.append(("feed", None))
        return {"items": []}

    @app.get("/api/whoami")
    async def whoami():
        calls.append(("whoami", None))
        return {"correlation_id": get_correlation_id()}

    return app


@pytest.fixture
def client(app):
    """Create test client."""
    return TestClient(app)


class TestCacheMiddleware:
    """Test response caching."""

    def test_miss_then_hit(self, client, calls):
        """The first request reaches the handler; the second is served from cache."""
        first = client.get("/api/posts")
        second = client.get("/api/posts")

        assert first.status_code == 200
        assert first.headers["X-Cache"] == "MISS"
        assert second.status_code == 200
        assert second.headers["X-Cache"] == "HIT"
        assert second.headers["X-Cache-Type"] == "standard"
        assert second.headers["X-Cache-Key"] == "GET:/api/posts"
        assert second.headers["X-Response-Time"].endswith("ms")
        assert second.json() == first.json()
        assert calls == [("list", 1)]

    def test_query_string_is_part_of_key(self, client, calls):
        client.get("/api/posts?page=1")
        response = client.get("/api/posts?page=2")

        assert response.headers["X-Cache"] == "MISS"
        assert response.headers["X-Cache-Key"] == "GET:/api/posts?page=2"
        assert len(calls) == 2

    def test_prefix_lookalikes_are_cached(self, client, calls):
        """Skipping the /cache admin prefix does not skip /cached-feed."""
        client.get("/cached-feed")
        response = client.get("/cached-feed")

        assert response.headers["X-Cache"] == "HIT"
        assert calls == [("feed", None)]
        assert "X-Cache" not in client.get("/cache/stats").headers

    def test_request_id_reaches_handler(self, client):
        """The X-Request-ID header becomes the correlation id and is echoed back."""
        response = client.get("/api/whoami", headers={"X-Request-ID": "req-42"})

        assert response.json() == {"correlation_id": "req-42"}
        assert response.headers["X-Request-ID"] == "req-42"

    def test_request_id_generated_when_missing(self, client):
        response = client.get("/api/admin/dashboard")
        assert response.headers["X-Request-ID"]

    def test_cache_logs_carry_request_id(self, client, caplog):
        """Cache manager records emitted during a request are stamped with its ids."""
        caplog.handler.addFilter(CorrelationFilter())

        with caplog.at_level(logging.DEBUG, logger="cms_cache"):
            client.get("/api/posts", headers={"X-Request-ID": "req-7"})

        misses = [record for record in caplog.records if record.getMessage().startswith("MISS")]
        assert misses
        assert all(record.correlation_id == "req-7" for record in misses)
        assert all(record.request_id == "req-7" for record in misses)

    def test_mutating_methods_bypass(self, client, calls):
        """POST requests are never cached."""
        client.post("/api/posts")
        response = client.post("/api/posts")

        assert "X-Cache" not in response.headers
        assert calls == [("create", None), ("create", None)]

    def test_errors_are_not_cached(self, client, cache_manager, calls):
        """Non-2xx responses pass through uncached."""
        first = client.get("/api/posts/9")
        second = client.get("/api/posts/9")

        assert first.status_code == second.status_code == 404
        assert second.headers["X-Cache"] == "MISS"
        assert calls == [("get", 9), ("get", 9)]
        assert cache_manager.get_stats()["total_keys"] == 0

    def test_admin_paths_are_skipped(self, client, calls):
        client.get("/api/admin/dashboard")
        response = client.get("/api/admin/dashboard")

        assert "X-Cache" not in response.headers
        assert len(calls) == 2

    def test_cache_failure_passes_through(self, client, cache_manager, calls):
        """A broken cache never breaks the request."""
        with patch.object(cache_manager, "get", new=AsyncMock(side_effect=RuntimeError("cache down"))):
            response = client.get("/api/posts")

        assert response.status_code == 200
        assert "X-Cache" not in response.headers
        assert calls == [("list", 1)]

    def test_invalidation_forces_refresh(self, client, cache_manager, calls):
        client.get("/api/posts")
        cache_manager.smart_invalidate("post_created")
        response = client.get("/api/posts")

        assert response.headers["X-Cache"] == "MISS"
        assert len(calls) == 2

    def test_custom_key_generator(self, cache_manager):
        app = FastAPI()
        app.add_middleware(
            CacheMiddleware,
            cache_manager=cache_manager,
            cache_type="frequent",
            ttl=30,
            key_generator=lambda request: f"posts:{request.method}:{request.url.path}",
        )

        @app.get("/api/posts")
        async def list_posts():
            return {"posts": []}

        client = TestClient(app)
        client.get("/api/posts")
        response = client.get("/api/posts")

        assert response.headers["X-Cache"] == "HIT"
        assert response.headers["X-Cache-Key"] == "posts:GET:/api/posts"
        assert cache_manager.caches["frequent"].get("posts:GET:/api/posts").ttl_override == 30

    def test_unknown_tier_rejected(self, cache_manager):
        with pytest.raises(ConfigurationError):
            CacheMiddleware(FastAPI(), cache_manager=cache_manager, cache_type="nonexistent")


class TestCacheAdminAPI:
    """Test the cache admin endpoints."""

    def test_stats(self, client):
        client.get("/api/posts")
        client.get("/api/posts")

        stats = client.get("/cache/stats").json()

        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == "50.0%"
        assert stats["cache_types"] == 6

    def test_admin_responses_are_not_cached(self, client):
        client.get("/cache/stats")
        assert "X-Cache" not in client.get("/cache/stats").headers

    def test_health(self, client):
        response = client.get("/cache/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert "timestamp" in body
        assert set(body["caches"]) == {
            "critical", "frequent", "standard", "longterm", "database", "ai_providers"
        }

    def test_degraded_health(self, client, cache_manager):
        with patch.object(cache_manager.caches["database"], "get", return_value=None):
            response = client.get("/cache/health")

        assert response.status_code == 207
        assert response.json()["caches"]["database"]["status"] == "degraded"

    def test_invalidate_substring(self, client, calls):
        client.get("/api/posts")

        response = client.post("/cache/invalidate", json={"pattern": "/api/posts"})

        assert response.status_code == 200
        assert response.json() == {"invalidated": 1}

    def test_invalidate_regex(self, client, cache_manager):
        cache_manager.caches["standard"].set("post:1", {"data": 1, "compressed": False})
        cache_manager.caches["standard"].set("post:2", {"data": 2, "compressed": False})
        cache_manager.caches["standard"].set("user:1", {"data": 3, "compressed": False})

        response = client.post("/cache/invalidate", json={"pattern": "^post:", "regex": True})

        assert response.json() == {"invalidated": 2}

    def test_invalidate_bad_requests(self, client):
        assert client.post("/cache/invalidate", json={"pattern": "(", "regex": True}).status_code == 400
        assert client.post(
            "/cache/invalidate", json={"pattern": "x", "cache_types": ["nonexistent"]}
        ).status_code == 400
        assert client.post("/cache/invalidate", json={"pattern": ""}).status_code == 422

    def test_event(self, client, cache_manager):
        cache_manager.caches["standard"].set("post:42", {"data": 1, "compressed": False})

        response = client.post("/cache/events/post_updated", json={"payload": 42})

        assert response.json() == {"invalidated": 1}

    def test_cache_full_event_unknown_tier(self, client):
        response = client.post("/cache/events/cache_full", json={"payload": "nonexistent"})
        assert response.status_code == 400

    def test_clear(self, client, cache_manager):
        client.get("/api/posts")

        response = client.delete("/cache")

        assert response.json() == {"cleared": True}
        assert cache_manager.get_stats()["total_keys"] == 0

    def test_export_encodes_compressed_bytes(self, client, cache_manager):
        big = {"body": "x" * 5000}
        cache_manager.caches["longterm"].set("big", {"data": gzip.compress(json.dumps(big).encode()), "compressed": True})
        cache_manager.caches["standard"].set("small", {"data": 1, "compressed": False})

        exported = client.get("/cache/export").json()

        encoded = exported["longterm"]["big"]["data"]
        assert json.loads(gzip.decompress(base64.b64decode(encoded))) == big
        assert exported["standard"]["small"] == {"data": 1, "compressed": False}

    def test_metrics(self, client):
        client.get("/api/posts")

        response = client.get("/cache/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "cache_misses_total" in response.text

    def test_warm(self, client, cache_manager):
        response = client.post("/cache/warm/posts")

        assert response.status_code == 200
        body = response.json()
        assert body["job"] == "posts"
        assert body["success"] is True
        assert body["stats"]["run_count"] == 1
        assert cache_manager.caches["standard"].get("posts:GET:/api/posts") is not None

    def test_warm_unknown_job(self, client):
        assert client.post("/cache/warm/missing").status_code == 404

    def test_warm_without_warmer(self, cache_manager, settings):
        client = TestClient(create_app(cache_manager=cache_manager, settings=settings))
        assert client.post("/cache/warm/posts").status_code == 503


class TestLifespan:
    """Test startup and shutdown wiring."""

    def test_background_tasks_follow_app_lifetime(self, app, cache_manager):
        with TestClient(app) as client:
            assert cache_manager.running
            assert client.app.state.cache_warmer.running
            # Immediate warming jobs run at startup
            assert cache_manager.caches["standard"].get("posts:GET:/api/posts") is not None

        assert not cache_manager.running
        assert not app.state.cache_warmer.running

    def test_default_manager(self, settings):
        app = create_app(settings=settings)
        assert app.state.cache_manager.settings is settings.cache
