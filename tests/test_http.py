from __future__ import annotations

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from stratus.infra.http import HttpClient, HttpError, Response, TokenAuth, is_transient, request_id_of

pytestmark = [pytest.mark.unit]


class RefreshingAuth:
    """Hands out a stale token until told to refresh."""

    def __init__(self) -> None:
        self.token = "stale-token"
        self.refreshes = 0

    async def headers(self) -> dict[str, str]:
        return {"X-Auth-Token": self.token}

    async def on_401(self) -> None:
        self.refreshes += 1
        self.token = "valid-token"


def make_app(*, token: str = "valid-token") -> web.Application:
    app = web.Application()
    calls: dict[str, int] = {"flaky": 0}

    async def json_echo(request: web.Request) -> web.Response:
        if request.headers.get("X-Auth-Token") != token:
            return web.Response(status=401, text="unauthorized")
        body = await request.json() if request.can_read_body else {}
        return web.json_response({"echo": body, "params": dict(request.query)})

    async def accepted_no_body(_: web.Request) -> web.Response:
        return web.Response(status=204, body=b"")

    async def not_found(_: web.Request) -> web.Response:
        return web.json_response({"itemNotFound": {"code": 404}}, status=404)

    async def server_error(_: web.Request) -> web.Response:
        return web.Response(status=500, text="internal server error")

    async def flaky(_: web.Request) -> web.Response:
        calls["flaky"] += 1
        if calls["flaky"] < 3:
            return web.Response(status=503, text="busy")
        return web.json_response({"attempts": calls["flaky"]})

    async def always_busy(_: web.Request) -> web.Response:
        return web.Response(status=503, text="busy")

    async def nova_fault(_: web.Request) -> web.Response:
        return web.json_response(
            {"itemNotFound": {"message": "Instance uuid-9 could not be found.", "code": 404}},
            status=404,
            headers={"X-OpenStack-Request-ID": "req-abc"},
        )

    async def public(_: web.Request) -> web.Response:
        return web.json_response({"public": True})

    app.router.add_route("*", "/echo", json_echo)
    app.router.add_delete("/gone", accepted_no_body)
    app.router.add_get("/not-found", not_found)
    app.router.add_get("/server-error", server_error)
    app.router.add_get("/flaky", flaky)
    app.router.add_get("/busy", always_busy)
    app.router.add_get("/public", public)
    app.router.add_get("/nova-fault", nova_fault)
    return app


@pytest.fixture
async def server():
    srv = TestServer(make_app())
    await srv.start_server()
    yield srv
    await srv.close()


@pytest.fixture
def base_url(server: TestServer) -> str:
    return f"http://{server.host}:{server.port}"


# ─── TokenAuth ───────────────────────────────────────────────────────


async def test_token_auth_headers():
    h = await TokenAuth("abc").headers()
    assert h["X-Auth-Token"] == "abc"
    assert h["Accept"] == "application/json"


async def test_token_auth_on_401_is_noop():
    await TokenAuth("abc").on_401()


# ─── Requests ────────────────────────────────────────────────────────


async def test_get_json(base_url: str):
    async with HttpClient(base_url, TokenAuth("valid-token")) as http:
        result = await http.request("GET", "/echo", params={"name": "a$"})
    assert result["params"]["name"] == "a$"


async def test_post_json(base_url: str):
    async with HttpClient(base_url, TokenAuth("valid-token")) as http:
        result = await http.request("POST", "/echo", json={"server": {"name": "x"}})
    assert result["echo"]["server"]["name"] == "x"


async def test_empty_body_returns_none(base_url: str):
    async with HttpClient(base_url) as http:
        assert await http.request("DELETE", "/gone") is None


async def test_send_returns_response(base_url: str):
    async with HttpClient(base_url) as http:
        resp = await http.send("GET", "/public")
    assert isinstance(resp, Response)
    assert resp.status == 200
    assert resp.data == {"public": True}
    assert "Content-Type" in resp.headers


async def test_default_headers_are_sent(base_url: str):
    async with HttpClient(base_url, default_headers={"X-Auth-Token": "valid-token"}) as http:
        result = await http.request("GET", "/echo")
    assert result["echo"] == {}


# ─── Errors ──────────────────────────────────────────────────────────


async def test_http_error_on_4xx(base_url: str):
    async with HttpClient(base_url) as http:
        with pytest.raises(HttpError) as exc_info:
            await http.request("GET", "/not-found")
    assert exc_info.value.status == 404
    assert "itemNotFound" in exc_info.value.body


async def test_5xx_is_not_retried(base_url: str):
    async with HttpClient(base_url) as http:
        with pytest.raises(HttpError) as exc_info:
            await http.request("GET", "/server-error")
    assert exc_info.value.status == 500


def test_http_error_str():
    assert str(HttpError(status=429, body="rate limited")) == "HTTP 429: rate limited"


@pytest.mark.parametrize(
    ("status", "expected"),
    [(0, True), (429, True), (503, True), (400, False), (404, False), (500, False)],
)
def test_is_transient(status: int, expected: bool):
    assert is_transient(HttpError(status=status, body="")) is expected


def test_other_exceptions_are_not_transient():
    assert not is_transient(ValueError("boom"))


# ─── Retries ─────────────────────────────────────────────────────────


async def test_transient_errors_are_retried(base_url: str):
    async with HttpClient(base_url, max_attempts=3) as http:
        result = await http.request("GET", "/flaky")
    assert result["attempts"] == 3


async def test_retries_give_up_after_max_attempts(base_url: str):
    async with HttpClient(base_url, max_attempts=2) as http:
        with pytest.raises(HttpError) as exc_info:
            await http.request("GET", "/busy")
    assert exc_info.value.status == 503


@pytest.fixture
async def gateway_timeouts():
    """POST /servers answers 504 once the backend has already created the server."""
    created: list[dict] = []

    async def create(request: web.Request) -> web.Response:
        created.append(await request.json())
        if len(created) == 1:
            return web.Response(status=504, text="gateway timeout")
        return web.json_response({"server": {"id": f"srv-{len(created)}"}}, status=202)

    app = web.Application()
    app.router.add_post("/servers", create)
    srv = TestServer(app)
    await srv.start_server()
    yield f"http://{srv.host}:{srv.port}", created
    await srv.close()


async def test_post_is_sent_once_on_transient_error(gateway_timeouts):
    base_url, created = gateway_timeouts
    async with HttpClient(base_url, max_attempts=3) as http:
        with pytest.raises(HttpError) as exc_info:
            await http.request("POST", "/servers", json={"server": {"name": "stratus-a"}})
    assert exc_info.value.status == 504
    assert len(created) == 1


async def test_post_retries_when_asked(gateway_timeouts):
    base_url, created = gateway_timeouts
    async with HttpClient(base_url, max_attempts=3) as http:
        result = await http.request("POST", "/servers", json={"server": {}}, retry=True)
    assert result["server"]["id"] == "srv-2"
    assert len(created) == 2


async def test_401_refreshes_auth_once(base_url: str):
    auth = RefreshingAuth()
    async with HttpClient(base_url, auth) as http:
        result = await http.request("GET", "/echo")
    assert result is not None
    assert auth.refreshes == 1


async def test_connection_error_is_status_zero():
    async with HttpClient("http://127.0.0.1:9", max_attempts=1, timeout=2) as http:
        with pytest.raises(HttpError) as exc_info:
            await http.request("GET", "/")
    assert exc_info.value.status == 0


# ─── Lifecycle ───────────────────────────────────────────────────────


async def test_close_idempotent(base_url: str):
    http = HttpClient(base_url)
    await http.close()
    await http.close()


async def test_session_created_lazily(base_url: str):
    http = HttpClient(base_url)
    assert http._session is None
    await http.request("GET", "/public")
    assert http._session is not None
    await http.close()


async def test_base_url_trailing_slash_stripped():
    http = HttpClient("http://example.com/v2.1/")
    assert http.base_url == "http://example.com/v2.1"
    await http.close()


# ─── OpenStack faults ────────────────────────────────────────────────


async def test_nova_fault_and_request_id(base_url: str):
    async with HttpClient(base_url) as http:
        with pytest.raises(HttpError) as exc_info:
            await http.request("GET", "/nova-fault")
    err = exc_info.value
    assert err.request_id == "req-abc"
    assert err.fault == "Instance uuid-9 could not be found."
    assert str(err) == "HTTP 404: Instance uuid-9 could not be found. (request req-abc)"


def test_fault_falls_back_to_raw_body():
    assert HttpError(status=500, body='{"a": 1, "b": 2}').fault == '{"a": 1, "b": 2}'
    assert HttpError(status=500, body="<html>oops</html>").fault == "<html>oops</html>"


def test_request_id_of_prefers_openstack_header():
    headers = {"X-Compute-Request-ID": "req-old", "X-OpenStack-Request-ID": "req-new"}
    assert request_id_of(headers) == "req-new"
    assert request_id_of({"X-Compute-Request-ID": "req-old"}) == "req-old"
    assert request_id_of({}) is None
