import asyncio
import inspect
import os
import sys
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Create temp directory for tests before any imports that might initialize runtime
_test_tmp_dir = tempfile.mkdtemp(prefix="projectdesk_test_")
os.environ.setdefault("SHARED_FS_ROOT", _test_tmp_dir)
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("USE_MEMORY_STORE", "true")
os.environ.setdefault("ALLOW_REDIS_FALLBACK_DEV", "true")
os.environ.setdefault("ACCESS_TOKEN_SECRET", "test-access-secret-for-testing-only-do-not-use")
os.environ.setdefault("REFRESH_TOKEN_SECRET", "test-refresh-secret-for-testing-only-do-not-use")
os.environ.setdefault("COOKIE_SECURE", "false")
# Rate limits use the in-process window; no Redis in unit tests
os.environ.setdefault("REDIS_URL", "")

import pytest  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from projectdesk.config import get_settings  # noqa: E402
from projectdesk.service.auth import AuthService  # noqa: E402
from projectdesk.service.runtime import get_runtime, reset_runtime_for_tests  # noqa: E402
from projectdesk.storage.memory import MemoryStore  # noqa: E402

STRONG_PASSWORD = "Aa1!aaaa"


class FakeClock:
    """Settable clock for code that takes a ``clock`` callable."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingEmail:
    """Stands in for EmailService and keeps every token it was asked to send."""

    def __init__(self, ok: bool = True):
        self.ok = ok
        self.sent = []

    def send_email_verification(self, to_email, username, token):
        self.sent.append(("verify", to_email, token))
        return self.ok

    def send_password_reset(self, to_email, username, token):
        self.sent.append(("reset", to_email, token))
        return self.ok

    def last_token(self, kind, to_email=None):
        for sent_kind, recipient, token in reversed(self.sent):
            if sent_kind == kind and (to_email is None or recipient == to_email):
                return token
        return None


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def recording_email():
    return RecordingEmail()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def auth_service(memory_store, recording_email, clock):
    return AuthService(memory_store, get_settings(), email=recording_email, clock=clock)


@pytest.fixture
def outbox(monkeypatch):
    """Capture mail sent by the live runtime used by the HTTP tests."""
    box = RecordingEmail()
    runtime = get_runtime()
    monkeypatch.setattr(runtime.email, "send_email_verification", box.send_email_verification)
    monkeypatch.setattr(runtime.email, "send_password_reset", box.send_password_reset)
    return box


@pytest.fixture
def client():
    from fastapi.testclient import TestClient

    from projectdesk.app import app

    return TestClient(app)


@pytest.fixture
def signup(client, outbox):
    """Register, verify and log in a user over HTTP; returns its bearer headers and ids.

    The cookie jar is cleared so later requests only carry what the test sends.
    """

    def _signup(email, username, *, password=STRONG_PASSWORD, role=None):
        resp = client.post(
            "/api/v1/auth/register",
            json={"email": email, "username": username, "password": password},
        )
        assert resp.status_code == 201, resp.text
        user_id = resp.json()["data"]["user"]["id"]
        client.post("/api/v1/auth/verify-email", json={"token": outbox.last_token("verify", email)})
        if role:
            get_runtime().auth.set_user_role(user_id, role)
        resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
        assert resp.status_code == 200, resp.text
        data = resp.json()["data"]
        client.cookies.clear()
        return {
            "id": user_id,
            "headers": {"Authorization": f"Bearer {data['access_token']}"},
            "refresh_token": data["refresh_token"],
        }

    return _signup


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
