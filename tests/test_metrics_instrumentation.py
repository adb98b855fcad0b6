import logging

from prometheus_client import REGISTRY

from ocrpdf.models.job import Attempt, Verdict
from ocrpdf.services.backoff import BackoffPolicy
from ocrpdf.services.batch_monitor import BatchJobMonitor
from ocrpdf.services.diagnostics import DiagnosticEvent, LoggingDiagnostics, RecordingDiagnostics
from ocrpdf.services.gemini_client import GeminiClient
from ocrpdf.services.invoker import ResilientInvoker
from ocrpdf.services.metrics import NullMetrics, PrometheusMetrics
from ocrpdf.services.orchestrator import JobOrchestrator
from ocrpdf.services.strategy import StrategySelector
from tests.stubs.gemini_stub import (
    FakeClock,
    ScriptedGemini,
    build_config,
    candidate_body,
    json_response,
)


def _sample(metric: str, **labels: str) -> float:
    return REGISTRY.get_sample_value(metric, labels) or 0.0


def test_prometheus_metrics_record_counters_and_latency():
    metrics = PrometheusMetrics.default()
    assert PrometheusMetrics.default() is metrics

    before = _sample("ocrpdf_events_total", stage="unit", name="probe", outcome="none")
    metrics.increment("probe", stage="unit")
    metrics.increment("probe", amount=2, stage="unit")
    assert _sample("ocrpdf_events_total", stage="unit", name="probe", outcome="none") == before + 3

    count_before = _sample("ocrpdf_latency_seconds_count", stage="unit", name="timed")
    metrics.observe_latency("timed", 0.25, stage="unit")
    assert _sample("ocrpdf_latency_seconds_count", stage="unit", name="timed") == count_before + 1


def test_invoker_and_orchestrator_report_to_metrics(make_job):
    metrics = PrometheusMetrics.default()
    config = build_config()
    service = ScriptedGemini().queue(
        "generate", json_response(503, {}), json_response(200, candidate_body("ok"))
    )
    clock = FakeClock()
    diagnostics = RecordingDiagnostics()
    invoker = ResilientInvoker(
        service.client(), observer=diagnostics, metrics=metrics, sleep=clock.sleep
    )
    client = GeminiClient(config, invoker, BackoffPolicy.from_config(config))
    monitor = BatchJobMonitor(client, config, observer=diagnostics, sleep=clock.sleep, clock=clock)
    orchestrator = JobOrchestrator(config, client, monitor, observer=diagnostics, metrics=metrics)

    retryable = dict(stage="generate_content", name="request_attempts", outcome="retryable")
    success = dict(stage="generate_content", name="request_attempts", outcome="success")
    documents = dict(stage="FAST", name="documents", outcome="succeeded")
    before = {
        key: _sample("ocrpdf_events_total", **labels)
        for key, labels in (("retryable", retryable), ("success", success), ("documents", documents))
    }

    outcome = orchestrator.process(make_job(500))

    assert outcome.succeeded
    assert clock.sleeps == [1.0]
    assert _sample("ocrpdf_events_total", **retryable) == before["retryable"] + 1
    assert _sample("ocrpdf_events_total", **success) == before["success"] + 1
    assert _sample("ocrpdf_events_total", **documents) == before["documents"] + 1


def test_null_metrics_accept_calls():
    metrics = NullMetrics()
    metrics.observe_latency("ignored", 0.1, stage="test")
    metrics.increment("ignored", stage="test")


def test_logging_diagnostics_flattens_attempts(caplog):
    sink = LoggingDiagnostics()
    attempt = Attempt(
        operation="batch_poll",
        number=2,
        waited_seconds=1.5,
        verdict=Verdict.RETRYABLE,
        status_code=503,
        detail="HTTP 503",
    )
    with caplog.at_level(logging.INFO, logger="diagnostics"):
        sink.emit(DiagnosticEvent.create("invoker", "request_attempt", attempt=attempt))
        sink.emit(DiagnosticEvent.create("batch_monitor", "batch_poll_failed", consecutive_failures=1))

    first, second = caplog.records
    assert first.levelno == logging.WARNING
    assert first.operation == "batch_poll"
    assert first.attempt == 2
    assert first.verdict == "retryable"
    assert second.levelno == logging.WARNING
    assert second.consecutive_failures == 1


def test_invoker_logs_each_attempt_once(caplog):
    service = ScriptedGemini().queue(
        "generate", json_response(503, {}), json_response(200, candidate_body("ok"))
    )
    clock = FakeClock()
    invoker = ResilientInvoker(service.client(), sleep=clock.sleep)
    config = build_config()
    client = GeminiClient(config, invoker, BackoffPolicy.from_config(config))

    with caplog.at_level(logging.INFO):
        client.generate_content({"contents": []}, plan=StrategySelector(config).select(10))

    attempts = [r for r in caplog.records if getattr(r, "event", None) == "request_attempt"]
    assert [r.attempt for r in attempts] == [1, 2]
    assert [r.levelno for r in attempts] == [logging.WARNING, logging.INFO]
    assert attempts[0].max_attempts == config.request_max_attempts


def test_logging_diagnostics_scrubs_credentials(caplog):
    key = "AIza" + "k" * 35
    with caplog.at_level(logging.INFO, logger="diagnostics"):
        LoggingDiagnostics().emit(
            DiagnosticEvent.create(
                "batch_monitor", "batch_poll_failed", error=f"GET /v1beta/batches/1?key={key}"
            )
        )

    (record,) = caplog.records
    assert key not in record.error
    assert "[REDACTED]" in record.error


def test_recording_diagnostics_filters_by_operation():
    sink = RecordingDiagnostics()
    for operation in ("upload_file", "batch_poll", "batch_poll"):
        sink.emit(
            DiagnosticEvent.create(
                "invoker",
                "request_attempt",
                attempt=Attempt(operation=operation, number=1, waited_seconds=0.0, verdict=Verdict.SUCCESS),
            )
        )
    sink.emit(DiagnosticEvent.create("orchestrator", "tier_escalated"))

    assert len(sink.attempts()) == 3
    assert len(sink.attempts("batch_poll")) == 2
    assert len(sink.events_named("tier_escalated")) == 1
