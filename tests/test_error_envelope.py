import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel, ValidationError

from projectdesk.api.error_handling import register_exception_handlers
from projectdesk.api.schemas import Envelope, ErrorBody
from projectdesk.service.errors import (
    DependencyFailureError,
    ForbiddenError,
    RateLimitedError,
    TokenExpiredError,
    TooManySessionsError,
)
from projectdesk.storage.errors import ConstraintViolation, StoreUnavailable


class _Payload(BaseModel):
    name: str


@pytest.fixture
def client():
    app = FastAPI()
    register_exception_handlers(app)

    raisers = {
        "forbidden": ForbiddenError("no"),
        "expired": TokenExpiredError("token expired"),
        "sessions": TooManySessionsError("too many"),
        "limited": RateLimitedError("slow down", detail={"retry_after": 42}),
        "mailer": DependencyFailureError("failed to send verification email"),
        "conflict": ConstraintViolation("email already exists", {"field": "email"}),
        "store": StoreUnavailable("postgres at 10.0.0.5 refused"),
        "boom": RuntimeError("secret internals"),
    }

    @app.get("/raise/{name}")
    async def raise_named(name: str):
        raise raisers[name]

    @app.post("/payload")
    async def payload(body: _Payload):
        return Envelope(message="ok", data=body.model_dump())

    return TestClient(app, raise_server_exceptions=False)


@pytest.mark.parametrize(
    "name,status,code",
    [
        ("forbidden", 403, "forbidden"),
        ("expired", 401, "token_expired"),
        ("sessions", 409, "too_many_sessions"),
        ("limited", 429, "rate_limited"),
        ("mailer", 500, "dependency_failure"),
        ("conflict", 409, "conflict"),
        ("store", 500, "server_error"),
        ("boom", 500, "server_error"),
    ],
)
def test_errors_render_as_failure_envelope(client, name, status, code):
    resp = client.get(f"/raise/{name}")
    assert resp.status_code == status
    body = resp.json()
    assert body["success"] is False
    assert body["statusCode"] == status
    assert body["data"] is None
    assert body["error"]["code"] == code
    assert body["request_id"]


def test_internal_details_are_not_leaked(client):
    for name in ("store", "boom"):
        body = client.get(f"/raise/{name}").json()
        assert body["message"] == "internal server error"
        assert "10.0.0.5" not in str(body)
        assert "secret internals" not in str(body)


def test_rate_limited_sets_retry_after(client):
    resp = client.get("/raise/limited")
    assert resp.headers["Retry-After"] == "42"
    assert resp.json()["error"]["details"] == {"retry_after": 42}


def test_constraint_names_the_field(client):
    body = client.get("/raise/conflict").json()
    assert body["error"]["details"] == {"field": "email"}


def test_validation_errors_list_fields(client):
    resp = client.post("/payload", json={})
    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["code"] == "validation_error"
    assert body["error"]["details"][0]["field"] == "name"


def test_unknown_route_uses_envelope(client):
    resp = client.get("/nowhere")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_success_envelope_has_no_error_key(client):
    resp = client.post("/payload", json={"name": "x"})
    body = resp.json()
    assert body["success"] is True
    assert body["statusCode"] == 200
    assert body["data"] == {"name": "x"}
    assert "error" not in body


def test_error_codes_are_a_closed_set():
    with pytest.raises(ValidationError):
        ErrorBody(code="teapot", message="nope")
