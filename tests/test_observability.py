from __future__ import annotations

from types import SimpleNamespace

import structlog

from woozy.core import observability
from woozy.core.logger import bind_request_context, bind_workspace, clear_request_context
from woozy.core.metrics import (
    record_approval_transition,
    record_publish_outcome,
    record_rate_limit_block,
    record_stripe_event,
    render_prometheus_metrics,
    reset_metrics_for_tests,
)


def _settings(dsn: str) -> SimpleNamespace:
    return SimpleNamespace(
        sentry_dsn=dsn,
        env="production",
        app_name="woozy_social",
        app_version="0.1.0",
        sentry_traces_sample_rate=0.2,
    )


def test_init_sentry_skips_when_dsn_missing(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    called = {"count": 0}

    def fake_init(**kwargs):  # noqa: ARG001
        called["count"] += 1

    monkeypatch.setattr(observability, "_call_sentry_init", fake_init)
    monkeypatch.setattr(observability, "get_settings", lambda: _settings(""))

    assert observability.init_sentry() is False
    assert called["count"] == 0


def test_init_sentry_initializes_once(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    calls = []

    monkeypatch.setattr(observability, "FastApiIntegration", lambda: object())
    monkeypatch.setattr(observability, "_call_sentry_init", lambda **kwargs: calls.append(kwargs))
    monkeypatch.setattr(observability, "get_settings", lambda: _settings("https://abc@example.ingest.sentry.io/1"))

    assert observability.init_sentry() is True
    assert observability.init_sentry() is True
    assert len(calls) == 1
    assert calls[0]["environment"] == "production"
    assert calls[0]["release"] == "woozy_social@0.1.0"
    assert calls[0]["send_default_pii"] is False
    observability.reset_observability_for_tests()


def test_capture_exception_is_noop_until_initialized(monkeypatch) -> None:
    observability.reset_observability_for_tests()
    captured = []
    monkeypatch.setattr(observability.sentry_sdk, "capture_exception", captured.append)

    observability.capture_exception(RuntimeError("ignored"))
    assert captured == []

    monkeypatch.setattr(observability, "_SENTRY_INITIALIZED", True)
    error = RuntimeError("reported")
    observability.capture_exception(error)
    assert captured == [error]
    observability.reset_observability_for_tests()


def test_request_context_is_bound_and_cleared() -> None:
    clear_request_context()
    bind_request_context(request_id="req-1", user_id="user-1")
    bind_workspace("ws-1")

    context = structlog.contextvars.get_contextvars()
    assert context == {"request_id": "req-1", "workspace_id": "ws-1", "user_id": "user-1"}

    clear_request_context()
    assert structlog.contextvars.get_contextvars() == {}


def test_domain_counters_are_rendered() -> None:
    reset_metrics_for_tests()
    record_approval_transition(action="approve")
    record_approval_transition(action="approve")
    record_publish_outcome(status="failed")
    record_rate_limit_block(action="post")
    record_stripe_event(event_type="invoice.paid", status="processed")

    body = render_prometheus_metrics(app_name="woozy_social", app_version="0.1.0", env="test")

    assert 'woozy_build_info{app_name="woozy_social",version="0.1.0",env="test"} 1' in body
    assert 'woozy_approval_transitions_total{action="approve"} 2' in body
    assert 'woozy_publish_outcomes_total{status="failed"} 1' in body
    assert 'woozy_rate_limit_block_total{action="post"} 1' in body
    assert 'woozy_stripe_events_total{event_type="invoice.paid",status="processed"} 1' in body
