"""Pytest configuration and fixtures"""
import pytest
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from imgproxy.core.validator import AllowedHostSet  # noqa: E402
from imgproxy.infra.metrics import get_metrics_collector  # noqa: E402

from fakes import ALLOWED  # noqa: E402


@pytest.fixture
def allowed_hosts():
    """Default allowlist for tests"""
    return AllowedHostSet(ALLOWED)


@pytest.fixture(autouse=True)
def reset_metrics():
    """Metrics are process-global; start every test from zero"""
    get_metrics_collector().reset()
    yield
