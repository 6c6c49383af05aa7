import json

from fastapi.testclient import TestClient

from orders.api import build_app
from orders.cache import MirrorCache
from orders.errors import OrderNotFound
from orders.query import QueryService


class DictStore:
    def __init__(self, rows=None):
        self.rows = dict(rows or {})

    async def upsert(self, identifier, track_number, document, sequence=""):
        self.rows[identifier] = document

    async def get(self, identifier):
        if identifier not in self.rows:
            raise OrderNotFound(identifier)
        return self.rows[identifier]

    async def load_all(self):
        return dict(self.rows)

    async def close(self):
        pass


def make_client(rows=None, cached=None, readiness=None):
    cache = MirrorCache()
    for k, v in (cached or {}).items():
        cache.set(k, v)
    app = build_app(QueryService(cache, DictStore(rows)), readiness=readiness)
    return TestClient(app), cache


def test_get_order_from_cache():
    client, _ = make_client(cached={"A1": b'{"order_uid":"A1"}'})
    r = client.get("/order/A1")
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("application/json")
    assert r.content == b'{"order_uid":"A1"}'


def test_get_order_falls_back_to_store():
    client, cache = make_client(rows={"A1": {"order_uid": "A1", "track_number": "T"}})
    r = client.get("/order/A1")
    assert r.status_code == 200
    assert r.json() == {"order_uid": "A1", "track_number": "T"}
    assert json.loads(cache.get("A1")[0])["track_number"] == "T"


def test_missing_order_is_404():
    client, _ = make_client()
    r = client.get("/order/missing-id")
    assert r.status_code == 404


def test_missing_id_is_400():
    client, _ = make_client()
    assert client.get("/order/").status_code == 400


def test_whitespace_id_is_looked_up_like_any_other():
    client, _ = make_client(rows={" ": {"order_uid": " "}})
    assert client.get("/order/%20").status_code == 200
    assert client.get("/order/%20%20").status_code == 404


def test_index_page_and_health():
    client, _ = make_client(cached={"A1": b"{}"})
    r = client.get("/")
    assert r.status_code == 200
    assert "Order viewer" in r.text
    h = client.get("/healthz").json()
    assert h["ok"] is True and h["cached"] == 1


def test_readyz_reports_store_state():
    async def down():
        return False

    client, _ = make_client(readiness=down)
    assert client.get("/readyz").status_code == 503
    client, _ = make_client()
    assert client.get("/readyz").json() == {"ok": True}
