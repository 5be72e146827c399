from __future__ import annotations

import threading

import pytest

from ecsguard.analysis.engine import analyze_source
from ecsguard.analysis.timeout_context import (
    CancellationToken,
    Deadline,
    TimeoutExceeded,
    cancellation_scope,
    check_deadline,
    deadline_clock_scope,
    deadline_loop_iter,
    deadline_scope,
    get_deadline,
)
from ecsguard.deadline_clock import GasMeter
from ecsguard.exceptions import NeverThrown

from tests.ecs_helpers import job_source

BODY = """
class ApplyPoison(JobEntity):
    def execute(self, index: In[int], entity: In[Entity], poisoned: In[Poisoned]):
        self.ecb.remove_component[Poisoned](index, entity)
"""


def test_unbounded_deadline_never_expires() -> None:
    deadline = Deadline.unbounded()
    assert not deadline.expired()
    with deadline_scope(deadline):
        assert get_deadline() is deadline
        check_deadline()


def test_zero_timeout_expires_immediately() -> None:
    with deadline_scope(Deadline.from_timeout_ms(0)):
        with pytest.raises(TimeoutExceeded, match="deadline expired"):
            check_deadline()


def test_invalid_timeouts_are_rejected() -> None:
    with pytest.raises(NeverThrown):
        Deadline.from_timeout_ticks(-1, 1)
    with pytest.raises(NeverThrown):
        Deadline.from_timeout_ticks(1, 0)


def test_missing_deadline_carrier_is_never() -> None:
    result: list[BaseException] = []

    def _read_deadline() -> None:
        # New threads start with an empty context.
        try:
            get_deadline()
        except NeverThrown as exc:
            result.append(exc)

    thread = threading.Thread(target=_read_deadline)
    thread.start()
    thread.join()
    assert len(result) == 1


def test_cancellation_token_stops_check_deadline() -> None:
    token = CancellationToken()
    with cancellation_scope(token):
        check_deadline()
        token.cancel()
        assert token.cancelled
        with pytest.raises(TimeoutExceeded) as excinfo:
            check_deadline()
    assert excinfo.value.reason == "cancellation requested"
    check_deadline()


def test_deadline_loop_iter_consumes_gas() -> None:
    meter = GasMeter(limit=3)
    with deadline_clock_scope(meter):
        with pytest.raises(TimeoutExceeded, match="Gas exhausted"):
            list(deadline_loop_iter(range(10)))
    assert meter.current == 3


def test_exhausted_gas_aborts_analysis() -> None:
    with deadline_clock_scope(GasMeter(limit=5)):
        with pytest.raises(TimeoutExceeded):
            analyze_source(job_source(BODY), "jobs.py")


def test_cancelled_analysis_raises_instead_of_reporting() -> None:
    token = CancellationToken()
    token.cancel()
    with cancellation_scope(token):
        with pytest.raises(TimeoutExceeded):
            analyze_source(job_source(BODY), "jobs.py")


def test_analysis_completes_within_budget() -> None:
    result = analyze_source(job_source(BODY), "jobs.py")
    assert result.ok
    assert result.units_analyzed == 1
