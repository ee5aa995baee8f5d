"""Shared fixtures."""

import pytest

from ayo_offline.core.metrics import metrics


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
