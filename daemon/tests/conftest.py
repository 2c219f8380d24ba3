"""Shared test fixtures for all tests."""

import shutil
import tempfile
from pathlib import Path
from typing import Callable, List, Optional, Union

import pytest

from letterbox_daemon import circuit_breaker, database, observability
from letterbox_daemon.errors import ProviderFailure
from letterbox_daemon.providers import LLMProvider
from letterbox_daemon.storage import Storage


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path: Path):
    """Keep every test away from the user's real config, data and event logs."""
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "xdg-data"))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path / "xdg-config"))
    monkeypatch.setattr(observability, "_event_log", None)
    circuit_breaker.reset_circuit_breakers()
    yield
    circuit_breaker.reset_circuit_breakers()


@pytest.fixture
def test_db(monkeypatch) -> Path:
    """Create a temporary test database for each test."""
    temp_dir = tempfile.mkdtemp()

    # Set XDG_DATA_HOME so Storage() uses our test directory
    data_dir = Path(temp_dir) / "data"
    data_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("XDG_DATA_HOME", str(data_dir))

    db_path = data_dir / "letterbox" / "letterbox.db"
    database.init_db(db_path)

    yield db_path

    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def storage(test_db: Path) -> Storage:
    store = Storage(test_db)
    yield store
    store.close()


Response = Union[str, Exception]


class FakeProvider(LLMProvider):
    """Provider that replays canned responses instead of calling an API.

    Each response is either text to return or an exception to raise; the
    last one repeats once the list is exhausted.
    """

    def __init__(
        self,
        name: str,
        responses: List[Response],
        model: Optional[str] = None,
        on_call: Optional[Callable[[], None]] = None,
    ):
        super().__init__(name=name, model=model or f"{name}-model", timeout=5)
        self.responses = list(responses)
        self.calls: List[str] = []
        self.on_call = on_call

    def complete(self, system_prompt: str, user_prompt: str, action: str = "complete") -> str:
        self.calls.append(user_prompt)
        if self.on_call is not None:
            self.on_call()
        response = self.responses[min(len(self.calls), len(self.responses)) - 1]
        if isinstance(response, ProviderFailure):
            raise response
        if isinstance(response, Exception):
            raise ProviderFailure(self.name, str(response)) from response
        if not response.strip():
            raise ProviderFailure(self.name, "empty response")
        return response


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.messages: List[dict] = []

    def format_summary(self, record, summary) -> dict:
        return {"text": f"{record.subject}: {summary.summary_text}"}

    def post(self, message: dict) -> bool:
        if self.fail:
            raise RuntimeError("slack is down")
        self.messages.append(message)
        return True


@pytest.fixture
def make_provider() -> Callable[..., FakeProvider]:
    return FakeProvider


@pytest.fixture
def fake_notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def failing_notifier() -> FakeNotifier:
    return FakeNotifier(fail=True)


SAMPLE_MIME_EMAIL = """From: Morning Brew <crew@morningbrew.com>
To: reader@example.com
Subject: Your Weekly Tech Roundup
Date: Tue, 14 May 2024 08:30:00 +0000
Message-ID: <abc123@morningbrew.com>
Content-Type: text/plain; charset=utf-8

Good morning! Here is what happened in tech this week.

Chips are back in fashion and everyone is talking about inference costs.

Unsubscribe here: https://morningbrew.com/unsubscribe
"""


@pytest.fixture
def sample_email() -> str:
    return SAMPLE_MIME_EMAIL


SUMMARY_JSON = (
    '{"summary": "Chips and inference costs dominate the week.", '
    '"keyPoints": ["Chips are back", "Inference is pricey"], '
    '"topics": ["ai", "hardware"], "sentiment": "positive", "readTimeMinutes": 4}'
)


@pytest.fixture
def summary_json() -> str:
    return SUMMARY_JSON
