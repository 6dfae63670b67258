"""
Shared fixtures for backend tests.
Uses a temp directory for DATA_DIR so tests never touch real data.
"""
from __future__ import annotations

import os
import tempfile
import threading

import pytest
from fastapi.testclient import TestClient

# Config is read at import time, and test modules import agentmarket during
# collection, so the environment has to be in place before that.
_DATA_DIR = tempfile.mkdtemp(prefix="agentmarket_test_")
os.environ["DATA_DIR"] = _DATA_DIR
os.environ["STORE_BACKEND"] = "memory"
os.environ["ECONOMY_EPOCH_SECRET"] = "test-epoch-secret"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["LLM_BASE_URL"] = ""
os.environ["NARRATIVE_INLINE"] = "1"
os.environ.pop("ECONOMY_SEED", None)

from agentmarket.errors import UpstreamGenerationError  # noqa: E402
from agentmarket.rate_limit import FixedWindowRateLimiter  # noqa: E402
from agentmarket.state import build_services, get_services  # noqa: E402
from agentmarket.store import MemoryStore  # noqa: E402
from agentmarket.tasks import NarrativeTaskQueue  # noqa: E402


class FakeGenerator:
    """Scripted text generator. Fails for any prompt mentioning a name in ``fail_for``."""

    def __init__(self, fail_for=(), diary=None, post=None):
        self.fail_for = set(fail_for)
        self.diary = diary or {"diary": "Another epoch survived; I watched the others make mistakes.", "mood": "strategic"}
        self.post = post or {"content": "Markets are wild today, watch me climb the board.", "post_type": "post"}
        self.calls = []
        self._lock = threading.Lock()

    def generate_json(self, system, prompt, max_tokens=400):
        with self._lock:
            self.calls.append(prompt)
        for name in self.fail_for:
            if name in prompt:
                raise UpstreamGenerationError(f"scripted failure for {name}")
        return dict(self.diary if "diary" in system else self.post)


@pytest.fixture(scope="session", autouse=True)
def _isolate_data_dir():
    yield _DATA_DIR


@pytest.fixture
def make_generator():
    return FakeGenerator


@pytest.fixture
def generator():
    return FakeGenerator()


@pytest.fixture
def services(generator):
    svc = build_services(
        store=MemoryStore(),
        generator=generator,
        tasks=NarrativeTaskQueue(inline=True),
        bet_limiter=FixedWindowRateLimiter(1000, 60),
    )
    yield svc
    svc.tasks.shutdown()


@pytest.fixture(scope="session")
def app(_isolate_data_dir):
    from agentmarket.main import app
    return app


@pytest.fixture
def client(app, services) -> TestClient:
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.pop(get_services, None)


@pytest.fixture(scope="session")
def admin_headers() -> dict:
    return {"Authorization": "Bearer test-epoch-secret"}


@pytest.fixture(scope="session")
def cron_headers() -> dict:
    return {"Authorization": "Bearer test-cron-secret"}
