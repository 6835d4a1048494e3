"""
Pytest fixtures for the squash test suite.
"""

import pytest

from squash.comparator import ResponseComparator
from squash.config import MinimizationConfig
from squash.minimizer import TrialRunner, baseline_spec
from squash.transport import TransportWrapper

from fakes import FakeTransport


@pytest.fixture
def config():
    """Config with pacing and the timeout race disabled."""
    return MinimizationConfig(min_delay_ms=0, timeout_ms=0)


@pytest.fixture
def make_runner(config):
    """Build a TrialRunner whose baseline is the descriptor's own response."""

    def factory(descriptor, responder, minimization=None):
        transport = FakeTransport(responder)
        wrapper = TransportWrapper(transport, minimization or config, sleep=lambda seconds: None)
        comparator = ResponseComparator()
        baseline = comparator.signature(responder(baseline_spec(descriptor)))
        return TrialRunner(wrapper, comparator, baseline), transport

    return factory
