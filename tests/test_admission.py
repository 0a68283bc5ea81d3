from __future__ import annotations

import threading
import time

import allure
import pytest
from conftest import wait_until

from portfolio_report.orchestrator.admission import (
    AdmissionController,
    PriorityPolicy,
    compute_priority,
)
from portfolio_report.orchestrator.errors import QueueTimeoutError, SchedulerStoppedError
from portfolio_report.orchestrator.models import (
    GenerationRequest,
    InvestmentProfile,
    ReportPreferences,
    ReportType,
    utc_now,
)

pytestmark = [
    allure.epic("Report Generation"),
    allure.feature("Admission Control"),
]


def _request(
    request_id: str,
    report_type: ReportType = ReportType.BASIC,
    *,
    premium: bool = False,
    retry: bool = False,
) -> GenerationRequest:
    return GenerationRequest(
        request_id=request_id,
        investment_data=InvestmentProfile(goals="g", risk_tolerance="r", time_horizon="t"),
        report_type=report_type,
        preferences=ReportPreferences(is_premium=premium, is_retry=retry),
        submitted_at=utc_now(),
    )


class _GatedProcess:
    """Records start order and blocks each request until released."""

    def __init__(self) -> None:
        self.started: list[str] = []
        self._gates: dict[str, threading.Event] = {}
        self._lock = threading.Lock()

    def gate(self, request_id: str) -> threading.Event:
        with self._lock:
            return self._gates.setdefault(request_id, threading.Event())

    def release(self, request_id: str) -> None:
        self.gate(request_id).set()

    def release_all(self) -> None:
        with self._lock:
            gates = list(self._gates.values())
        for gate in gates:
            gate.set()

    def __call__(self, request: GenerationRequest) -> str:
        with self._lock:
            self.started.append(request.request_id)
        self.gate(request.request_id).wait(5)
        return request.request_id


@pytest.mark.parametrize("premium", [False, True])
@pytest.mark.parametrize("retry", [False, True])
def test_cheaper_report_types_get_higher_priority(premium: bool, retry: bool) -> None:
    priorities = [
        compute_priority(_request("x", report_type, premium=premium, retry=retry))
        for report_type in (ReportType.BASIC, ReportType.INTERMEDIATE, ReportType.ADVANCED)
    ]
    assert priorities[0] > priorities[1] > priorities[2]


@pytest.mark.parametrize("report_type", list(ReportType))
def test_premium_bonus_is_exactly_additive(report_type: ReportType) -> None:
    regular = compute_priority(_request("x", report_type))
    premium = compute_priority(_request("x", report_type, premium=True))
    retried = compute_priority(_request("x", report_type, retry=True))
    assert premium == regular + 2
    assert retried == regular + 1


def test_priority_policy_bonuses_are_configurable() -> None:
    policy = PriorityPolicy(premium_bonus=5, retry_bonus=0)
    assert compute_priority(_request("x", premium=True, retry=True), policy) == 3 + 5


def test_five_requests_with_cap_three_drain_in_priority_order() -> None:
    process = _GatedProcess()
    controller = AdmissionController(process=process, max_concurrent=3, drain_interval_seconds=0.05)
    controller.start()
    try:
        futures = [controller.submit(_request(f"req-{index}")) for index in range(3)]
        futures.append(controller.submit(_request("req-low", ReportType.ADVANCED)))
        futures.append(controller.submit(_request("req-high", premium=True)))

        stats = controller.stats()
        assert stats.active_count == 3
        assert stats.queued_count == 2
        assert stats.total_queued == 2

        process.release("req-0")
        assert wait_until(lambda: len(process.started) == 4)
        assert process.started[3] == "req-high"

        process.release("req-1")
        assert wait_until(lambda: len(process.started) == 5)
        assert process.started[4] == "req-low"

        process.release_all()
        assert [future.result(timeout=5) for future in futures] == [
            "req-0",
            "req-1",
            "req-2",
            "req-low",
            "req-high",
        ]
        final = controller.stats()
        assert final.total_processed == 2
        assert final.queued_count == 0
        assert final.max_queue_depth_seen == 2
    finally:
        process.release_all()
        controller.stop()


def test_equal_priority_requests_drain_first_in_first_out() -> None:
    process = _GatedProcess()
    controller = AdmissionController(process=process, max_concurrent=1)
    controller.start()
    try:
        first = controller.submit(_request("first"))
        queued = [controller.submit(_request(f"queued-{index}")) for index in range(3)]
        process.release("first")
        for name in ("queued-0", "queued-1", "queued-2"):
            assert wait_until(lambda name=name: name in process.started)
            process.release(name)
        for future in [first, *queued]:
            future.result(timeout=5)
        assert process.started == ["first", "queued-0", "queued-1", "queued-2"]
    finally:
        process.release_all()
        controller.stop()


def test_active_count_never_exceeds_cap() -> None:
    lock = threading.Lock()
    state = {"active": 0, "peak": 0}

    def _process(request: GenerationRequest) -> str:
        with lock:
            state["active"] += 1
            state["peak"] = max(state["peak"], state["active"])
        time.sleep(0.02)
        with lock:
            state["active"] -= 1
        return request.request_id

    controller = AdmissionController(process=_process, max_concurrent=3)
    controller.start()
    observed: list[int] = []
    try:
        futures = [controller.submit(_request(f"req-{index}")) for index in range(12)]
        deadline = time.monotonic() + 10
        while not all(future.done() for future in futures) and time.monotonic() < deadline:
            observed.append(controller.active_count)
            time.sleep(0.005)
        results = [future.result(timeout=10) for future in futures]
    finally:
        controller.stop()

    assert len(results) == 12
    assert state["peak"] <= 3
    assert observed
    assert max(observed) <= 3
    assert 3 in observed
    stats = controller.stats()
    assert stats.active_count == 0
    assert stats.total_processed == stats.total_queued
    assert stats.total_evicted == 0


def test_request_queued_past_timeout_is_evicted() -> None:
    process = _GatedProcess()
    controller = AdmissionController(
        process=process,
        max_concurrent=1,
        queue_timeout_seconds=0.05,
    )
    controller.start()
    try:
        running = controller.submit(_request("running"))
        waiting = controller.submit(_request("waiting"))
        assert controller.stats().queued_count == 1

        error = waiting.exception(timeout=5)
        assert isinstance(error, QueueTimeoutError)
        assert error.code == "QUEUE_TIMEOUT"
        assert error.retry_after_seconds == 60

        stats = controller.stats()
        assert stats.queued_count == 0
        assert stats.total_evicted == 1
        assert stats.total_processed == 0
        assert "waiting" not in process.started

        process.release("running")
        assert running.result(timeout=5) == "running"
    finally:
        process.release_all()
        controller.stop()


def test_cancelled_queued_request_leaves_queue_without_eviction() -> None:
    process = _GatedProcess()
    controller = AdmissionController(
        process=process,
        max_concurrent=1,
        queue_timeout_seconds=0.2,
    )
    controller.start()
    try:
        running = controller.submit(_request("running"))
        waiting = controller.submit(_request("waiting"))
        assert controller.queued_count == 1

        assert waiting.cancel() is True
        assert controller.queued_count == 0

        time.sleep(0.3)
        stats = controller.stats()
        assert stats.total_evicted == 0
        assert stats.total_queued == 1

        process.release("running")
        assert running.result(timeout=5) == "running"
        assert controller.stats().total_processed == 0
        assert "waiting" not in process.started
    finally:
        process.release_all()
        controller.stop()


def test_stop_rejects_queued_requests() -> None:
    process = _GatedProcess()
    controller = AdmissionController(process=process, max_concurrent=1)
    controller.start()
    running = controller.submit(_request("running"))
    waiting = controller.submit(_request("waiting"))

    controller.stop(wait=False)
    process.release("running")

    assert running.result(timeout=5) == "running"
    assert isinstance(waiting.exception(timeout=5), SchedulerStoppedError)
    with pytest.raises(SchedulerStoppedError):
        controller.submit(_request("late"))


def test_process_exception_is_delivered_and_slot_released() -> None:
    def _process(request: GenerationRequest) -> str:
        if request.request_id == "bad":
            raise RuntimeError("boom")
        return request.request_id

    controller = AdmissionController(process=_process, max_concurrent=1)
    controller.start()
    try:
        bad = controller.submit(_request("bad"))
        good = controller.submit(_request("good"))
        assert isinstance(bad.exception(timeout=5), RuntimeError)
        assert good.result(timeout=5) == "good"
        assert controller.stats().active_count == 0
    finally:
        controller.stop()


def test_invalid_limits_are_rejected() -> None:
    with pytest.raises(ValueError, match="max_concurrent"):
        AdmissionController(process=lambda request: None, max_concurrent=0)
