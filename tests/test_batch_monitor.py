import pytest

from ocrpdf.errors import (
    MonitoringFailure,
    MonitoringTimeout,
    RemoteJobCancelled,
    RemoteJobFailed,
)
from ocrpdf.models.job import JobState, Tier
from ocrpdf.services.batch_monitor import read_state
from ocrpdf.services.strategy import StrategySelector
from tests.stubs.gemini_stub import (
    BATCH_NAME,
    FakeClock,
    ScriptedGemini,
    batch_result,
    batch_state,
    build_config,
    build_stack,
    json_response,
    submit_ok,
)

REQUEST = {"contents": [{"parts": [{"text": "prompt"}]}]}


def _run(service, **config_overrides):
    config = build_config(**config_overrides)
    stack = build_stack(config, service, clock=FakeClock())
    plan = StrategySelector(config).plan_for(Tier.HEAVY, 5000)
    return stack, lambda: stack.monitor.run(REQUEST, plan=plan, display_name="pdf-ocr-job-1")


def test_pending_running_succeeded_then_result():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue(
            "batch_get",
            batch_state("BATCH_STATE_PENDING"),
            batch_state("BATCH_STATE_RUNNING"),
            batch_state("BATCH_STATE_SUCCEEDED"),
            batch_result("# Page 1", {"promptTokenCount": 50, "totalTokenCount": 80}),
        )
    )
    stack, run = _run(service)

    result = run()

    assert result.text == "# Page 1"
    assert result.usage.output == 30
    assert stack.clock.sleeps == [10, 10]
    transitions = [
        (e.fields["from_state"], e.fields["to_state"])
        for e in stack.diagnostics.events_named("job_state_changed")
    ]
    assert transitions == [
        ("SUBMITTED", "PENDING"),
        ("PENDING", "RUNNING"),
        ("RUNNING", "SUCCEEDED"),
    ]
    # three polls plus one result retrieval
    assert len(service.calls("batch_get")) == 4
    assert stack.diagnostics.events_named("batch_result_retrieved")


def test_first_poll_happens_without_waiting():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue("batch_get", batch_result("done"))
    )
    stack, run = _run(service)

    assert run().text == "done"
    assert stack.clock.sleeps == []


def test_submission_envelope_carries_display_name_and_key():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue("batch_get", batch_result("done"))
    )
    _, run = _run(service)
    run()

    submitted = service.calls("batch_submit")[0]
    body = submitted.content.decode("utf-8")
    assert "pdf-ocr-job-1" in body
    assert "request-1" in body
    assert submitted.headers["x-goog-api-key"] == "paid-test-key"


def test_failed_job_raises_without_fetching_result():
    failed = json_response(
        200,
        {"name": BATCH_NAME, "metadata": {"state": "BATCH_STATE_FAILED"}, "error": {"message": "quota"}},
    )
    service = ScriptedGemini().queue("batch_submit", submit_ok()).queue("batch_get", failed)
    _, run = _run(service)

    with pytest.raises(RemoteJobFailed) as excinfo:
        run()

    assert "quota" in excinfo.value.message
    assert len(service.calls("batch_get")) == 1


def test_failed_job_with_rpc_error_code_is_remote_failure():
    failed = json_response(
        200,
        {
            "name": BATCH_NAME,
            "metadata": {"state": "BATCH_STATE_FAILED"},
            "error": {"code": 13, "message": "internal failure"},
        },
    )
    service = ScriptedGemini().queue("batch_submit", submit_ok()).queue("batch_get", failed)
    stack, run = _run(service)

    with pytest.raises(RemoteJobFailed) as excinfo:
        run()

    assert "internal failure" in excinfo.value.message
    assert len(service.calls("batch_get")) == 1
    assert stack.clock.sleeps == []
    assert stack.diagnostics.events_named("batch_poll_failed") == []


def test_cancelled_job_raises_cancelled():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue("batch_get", batch_state("BATCH_STATE_PENDING"), batch_state("JOB_STATE_CANCELLED"))
    )
    _, run = _run(service)

    with pytest.raises(RemoteJobCancelled):
        run()
    assert len(service.calls("batch_get")) == 2


def test_wait_budget_is_capped_then_times_out():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue("batch_get", batch_state("BATCH_STATE_PENDING"))
    )
    stack, run = _run(service, BATCH_MAX_WAIT=25)

    with pytest.raises(MonitoringTimeout) as excinfo:
        run()

    assert stack.clock.sleeps == [10, 10, 5]
    assert sum(stack.clock.sleeps) == 25
    assert len(service.calls("batch_get")) == 3
    assert excinfo.value.detail["state"] == "PENDING"
    assert stack.diagnostics.events_named("batch_wait_timeout")


def test_unrecognised_state_keeps_polling():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue(
            "batch_get",
            batch_state("BATCH_STATE_SOMETHING_NEW"),
            json_response(200, {"name": BATCH_NAME}),
            batch_result("eventually"),
        )
    )
    stack, run = _run(service)

    assert run().text == "eventually"
    assert stack.clock.sleeps == [10, 10]
    to_states = [e.fields["to_state"] for e in stack.diagnostics.events_named("job_state_changed")]
    assert to_states == ["UNKNOWN", "SUCCEEDED"]


def test_consecutive_poll_failures_abandon_monitoring():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue("batch_get", json_response(503, {"error": {"code": 503}}))
    )
    stack, run = _run(service, BATCH_POLL_ATTEMPTS=1)

    with pytest.raises(MonitoringFailure):
        run()

    assert len(service.calls("batch_get")) == 3
    failures = stack.diagnostics.events_named("batch_poll_failed")
    assert [e.fields["consecutive_failures"] for e in failures] == [1, 2, 3]


def test_permanent_poll_errors_count_as_poll_failures():
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue("batch_get", json_response(404, {"error": {"code": 404}}))
    )
    _, run = _run(service)

    with pytest.raises(MonitoringFailure):
        run()
    # a permanent status is never retried inside a single poll
    assert len(service.calls("batch_get")) == 3


def test_successful_poll_resets_failure_count():
    unavailable = json_response(503, {"error": {"code": 503}})
    service = (
        ScriptedGemini()
        .queue("batch_submit", submit_ok())
        .queue(
            "batch_get",
            unavailable,
            unavailable,
            batch_state("BATCH_STATE_RUNNING"),
            unavailable,
            unavailable,
            batch_result("survived"),
        )
    )
    stack, run = _run(service, BATCH_POLL_ATTEMPTS=1)

    assert run().text == "survived"
    failures = stack.diagnostics.events_named("batch_poll_failed")
    assert [e.fields["consecutive_failures"] for e in failures] == [1, 2, 1, 2]


def test_submission_without_job_name_is_failure():
    service = ScriptedGemini().queue("batch_submit", json_response(200, {"metadata": {}}))
    _, run = _run(service)

    with pytest.raises(RemoteJobFailed):
        run()
    assert service.calls("batch_get") == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("BATCH_STATE_RUNNING", JobState.RUNNING),
        ("JOB_STATE_SUCCEEDED", JobState.SUCCEEDED),
        ("PROCESSING", JobState.PROCESSING),
        ("batch_state_cancelled", JobState.CANCELLED),
        ("CANCELED", JobState.CANCELLED),
        ("SUBMITTED", JobState.UNKNOWN),
        ("", JobState.UNKNOWN),
        (None, JobState.UNKNOWN),
        ("WEIRD", JobState.UNKNOWN),
    ],
)
def test_state_parsing(raw, expected):
    assert JobState.from_wire(raw) is expected


def test_read_state_falls_back_to_top_level():
    assert read_state({"state": "JOB_STATE_FAILED"})[0] is JobState.FAILED
    assert read_state({"metadata": {"state": "BATCH_STATE_PENDING"}, "state": "FAILED"})[0] is JobState.PENDING
    assert JobState.SUCCEEDED.is_terminal and not JobState.UNKNOWN.is_terminal
