from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


import pytest

from ecsguard.analysis.timeout_context import Deadline, deadline_clock_scope, deadline_scope
from ecsguard.deadline_clock import GasMeter
from tests.ecs_helpers import analyze, build_units


@pytest.fixture(autouse=True)
def _deadline_scope_fixture():
    with deadline_scope(Deadline.from_timeout_ms(120_000)):
        with deadline_clock_scope(GasMeter(limit=100_000_000)):
            yield


@pytest.fixture
def run_rules():
    return analyze


@pytest.fixture
def units_of():
    return build_units
