from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from obsidian_pm.core.logging import get_request_id
from obsidian_pm.core.middleware.request_id import RequestIdMiddleware, resolve_request_id


def _make_app():
    app = FastAPI()
    app.add_middleware(RequestIdMiddleware)

    @app.get("/echo")
    async def echo(request: Request):
        return {"state": request.state.request_id, "context": get_request_id()}

    return app


def test_mints_id_and_binds_it_for_the_request():
    resp = TestClient(_make_app()).get("/echo")

    rid = resp.headers["x-request-id"]
    assert resp.json() == {"state": rid, "context": rid}
    # Unbound again once the request is done
    assert get_request_id() is None


def test_keeps_well_formed_caller_id():
    resp = TestClient(_make_app()).get("/echo", headers={"X-Request-Id": "checkout-return.42"})
    assert resp.headers["x-request-id"] == "checkout-return.42"


def test_replaces_malformed_caller_id():
    assert resolve_request_id("bad id\nwith newline") != "bad id\nwith newline"
    assert resolve_request_id("x" * 200) != "x" * 200
    assert resolve_request_id(None)
