"""Unit tests for the app factory: error mapping, middleware and lazy app."""

import pytest
from httpx import ASGITransport, AsyncClient

import rethink.api.main as api_main
from rethink.api.main import create_app, status_code_for
from rethink.api.rate_limit import MAX_REQUEST_BODY_BYTES
from rethink.exceptions import (
    AuthFailure,
    CircuitOpenError,
    ConfigurationError,
    DispatchError,
    KeyNotFoundError,
    LLMError,
    RethinkError,
    ScopeDeniedError,
    ThinkingTimeoutError,
    TransientProviderError,
    ValidationError,
)
from tests.helpers.api import api_client
from tests.helpers.auth import bearer, make_test_settings
from tests.helpers.providers import ScriptedProvider


@pytest.mark.parametrize(
    ("exc", "status"),
    [
        (AuthFailure(), 401),
        (ScopeDeniedError("admin"), 403),
        (KeyNotFoundError("key_x"), 404),
        (ValidationError("bad"), 400),
        (ConfigurationError("broken"), 500),
        (CircuitOpenError(), 503),
        (ThinkingTimeoutError("slow", budget_seconds=1.0), 504),
        (DispatchError("all failed", last_error=None), 502),
        (TransientProviderError("busy"), 502),
        (LLMError("generic"), 502),
        (RethinkError("other"), 500),
    ],
)
def test_status_code_for(exc, status):
    assert status_code_for(exc) == status


@pytest.mark.asyncio
class TestMiddleware:
    async def test_correlation_id_is_generated(self, make_runtime):
        async with api_client(make_runtime([ScriptedProvider("openai:a")])) as client:
            response = await client.get("/api/v1/health")
        assert response.headers["X-Correlation-ID"]

    async def test_correlation_id_is_propagated(self, make_runtime):
        async with api_client(make_runtime([ScriptedProvider("openai:a")])) as client:
            response = await client.get("/api/v1/health", headers={"X-Correlation-ID": "trace-123"})
        assert response.headers["X-Correlation-ID"] == "trace-123"

    async def test_error_body_carries_correlation_id(self, make_runtime):
        async with api_client(make_runtime([ScriptedProvider("openai:a")])) as client:
            response = await client.get("/api/v1/metrics", headers={"X-Correlation-ID": "trace-456"})

        error = response.json()["error"]
        assert error["code"] == 401
        assert error["correlation_id"] == "trace-456"

    async def test_security_headers(self, make_runtime):
        async with api_client(make_runtime([ScriptedProvider("openai:a")])) as client:
            response = await client.get("/api/v1/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"
        assert "Strict-Transport-Security" not in response.headers

    async def test_oversized_body_is_413(self, make_runtime):
        async with api_client(make_runtime([ScriptedProvider("openai:a")])) as client:
            response = await client.post(
                "/api/v1/chat",
                content=b"x" * (MAX_REQUEST_BODY_BYTES + 1),
                headers={**bearer(), "Content-Type": "application/json"},
            )
        assert response.status_code == 413
        assert response.json()["error"]["type"] == "request_too_large"


@pytest.mark.asyncio
class TestErrorHandling:
    async def test_server_errors_are_sanitized_outside_debug(self, make_runtime):
        settings = make_test_settings(debug=False, circuit_failure_threshold=1)
        runtime = make_runtime([ScriptedProvider("openai:a")], settings)
        runtime.breakers.record("openai:a", False)

        async with api_client(runtime) as client:
            response = await client.post(
                "/api/v1/chat",
                json={"prompt": "q"},
                headers={**bearer(), "X-Correlation-ID": "trace-789"},
            )

        assert response.status_code == 503
        assert response.json()["error"]["message"] == "An error occurred. Correlation ID: trace-789"

    async def test_client_errors_keep_their_message(self, make_runtime):
        settings = make_test_settings(debug=False)
        runtime = make_runtime([ScriptedProvider("openai:a")], settings)
        async with api_client(runtime) as client:
            response = await client.delete("/api/v1/keys/key_missing", headers=bearer())
        assert response.json()["error"]["message"] == "API key not found: key_missing"

    async def test_unhandled_exception_is_500(self, make_runtime):
        runtime = make_runtime([ScriptedProvider("openai:a")], make_test_settings(debug=False))
        app = create_app(runtime=runtime)

        async def boom():
            raise RuntimeError("secret detail")

        app.add_api_route("/boom", boom)
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            response = await client.get("/boom")

        assert response.status_code == 500
        error = response.json()["error"]
        assert error["type"] == "internal_error"
        assert "secret detail" not in error["message"]

        errors = runtime.metrics.get_metrics()["errors"]
        assert errors == {"total": 1, "by_type": {"RuntimeError": 1}}
        assert runtime.metrics.get_metrics()["requests"]["by_status"] == {"500": 1}


class TestAppFactory:
    def test_docs_follow_debug(self, make_runtime):
        debug_app = create_app(runtime=make_runtime([ScriptedProvider("openai:a")]))
        prod_app = create_app(
            runtime=make_runtime([ScriptedProvider("openai:a")], make_test_settings(debug=False))
        )
        assert debug_app.docs_url == "/api/docs"
        assert prod_app.docs_url is None

    def test_state_holds_runtime(self, make_runtime):
        runtime = make_runtime([ScriptedProvider("openai:a")])
        app = create_app(runtime=runtime)
        assert app.state.runtime is runtime
        assert app.state.settings is runtime.settings

    def test_unknown_module_attribute(self):
        with pytest.raises(AttributeError):
            _ = api_main.not_an_attribute
