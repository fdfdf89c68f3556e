from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient

from catalog_sync.api import deps
from catalog_sync.domain.models.catalog import Category
from catalog_sync.domain.models.currency import CurrencyMatrix
from catalog_sync.domain.models.pipeline import DeadLetter
from catalog_sync.domain.services.currency_svc import CurrencyTable
from catalog_sync.main import app

from fakes import FakeDeadLetters


class _CurrencyRepo:
    async def insert(self, rates):
        return CurrencyMatrix(id="put-1", created_at=datetime.now(timezone.utc), rates=rates)


class _CategoryRepo:
    def __init__(self, categories):
        self.categories = categories
        self.updates = []
        self.moves = []

    async def list_all(self):
        return list(self.categories)

    async def update_levels(self, levels):
        self.updates.append(levels)
        return len(levels)

    async def move(self, category_id, parent_id, levels):
        self.moves.append((category_id, parent_id, levels))


class _Db:
    async def command(self, name):
        return {"ok": 1}


class _Conn:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    async def execute(self, statement):
        return None


class _Engine:
    def connect(self):
        return _Conn()


@pytest.fixture
def overrides(currency_table):
    state = {
        "table": currency_table,
        "coordinator": None,
        "dead_letters": FakeDeadLetters(),
        "categories": _CategoryRepo([
            Category(id=1, level=1), Category(id=2, parent_id=1, level=7),
        ]),
    }
    app.dependency_overrides.update({
        deps.currency_table: lambda: state["table"],
        deps.currency_repo: lambda: _CurrencyRepo(),
        deps.coordinator_dep: lambda: state["coordinator"],
        deps.dead_letter_repo: lambda: state["dead_letters"],
        deps.category_repo: lambda: state["categories"],
        deps.mongo_db: lambda: _Db(),
        deps.redis_dep: lambda: None,
        deps.engine_dep: lambda: _Engine(),
    })
    yield state
    app.dependency_overrides.clear()


@pytest.fixture
def client(overrides):
    return TestClient(app)


# ---------- Currency ---------------------------------------------------------

def test_get_rates(client):
    res = client.get("/currency/rates")
    assert res.status_code == 200
    body = res.json()
    assert body["id"] == "m1"
    assert body["currencies"] == ["EUR", "RUB", "USD"]
    assert body["rates"]["USD"]["EUR"] == 0.9


def test_get_rates_before_any_load(client, overrides):
    overrides["table"] = CurrencyTable()
    assert client.get("/currency/rates").status_code == 503


def test_convert(client):
    res = client.get("/currency/convert", params={"amount": 100, "from": "usd", "to": "EUR"})
    assert res.status_code == 200
    assert res.json() == {"amount": 100.0, "src": "USD", "dst": "EUR", "converted": 100.0 * 0.9, "matrix_id": "m1"}


def test_convert_unknown_currency_fails_closed(client):
    res = client.get("/currency/convert", params={"amount": 100, "from": "GBP", "to": "USD"})
    assert res.status_code == 404
    assert "GBP" in res.json()["detail"]


def test_convert_without_matrix(client, overrides):
    overrides["table"] = CurrencyTable()
    same = client.get("/currency/convert", params={"amount": 5, "from": "USD", "to": "USD"})
    assert same.status_code == 200
    assert same.json()["converted"] == 5.0
    assert client.get("/currency/convert", params={"amount": 5, "from": "USD", "to": "EUR"}).status_code == 503


def test_put_rates_installs_new_version(client, overrides):
    res = client.put("/currency/rates", json={"rates": {"USD": {"USD": 1, "EUR": 0.5}, "EUR": {"EUR": 1, "USD": 2}}})
    assert res.status_code == 200
    assert res.json()["id"] == "put-1"
    assert overrides["table"].current.id == "put-1"
    assert client.get("/currency/convert", params={"amount": 10, "from": "USD", "to": "EUR"}).json()["converted"] == 5.0


def test_rates_history_lists_loaded_versions_newest_first(client, overrides):
    client.put("/currency/rates", json={"rates": {"USD": {"EUR": 0.5}, "EUR": {"USD": 2}}})
    body = client.get("/currency/rates/history").json()
    assert body["count"] == 2
    assert [v["id"] for v in body["items"]] == ["put-1", "m1"]
    assert body["items"][0]["currencies"] == ["EUR", "USD"]


@pytest.mark.parametrize("payload", [{"rates": {"USD": {"EUR": -2}}}, {"rates": "nope"}, {}])
def test_put_rates_rejects_invalid_matrix(client, overrides, payload):
    assert client.put("/currency/rates", json=payload).status_code == 422
    assert overrides["table"].current.id == "m1"


# ---------- Pipeline ---------------------------------------------------------

def test_pipeline_status_when_not_running(client):
    assert client.get("/pipeline/status").status_code == 404


def test_pipeline_status(client, overrides, make_pipeline):
    overrides["coordinator"] = make_pipeline().coordinator
    body = client.get("/pipeline/status").json()
    assert body["state"] == "idle"
    assert body["stats"]["dead_lettered"] == 0
    assert body["in_flight"] == 0


def test_dead_letters_newest_first(client, overrides):
    for offset in ("1-0", "2-0"):
        overrides["dead_letters"].letters.append(
            DeadLetter(table="stores", key=1, reason="boom", stream="s", offset=offset, attempts=1)
        )
    body = client.get("/pipeline/dead-letters", params={"limit": 1}).json()
    assert body["count"] == 1
    assert body["items"][0]["offset"] == "2-0"


# ---------- Catalog ----------------------------------------------------------

def test_category_levels_dry_run(client, overrides):
    body = client.post("/catalog/categories/levels", params={"dry_run": True}).json()
    assert body == {"changed": {"2": 2}, "count": 1, "applied": False}
    assert overrides["categories"].updates == []


def test_category_levels_are_fixed(client, overrides):
    body = client.post("/catalog/categories/levels").json()
    assert body["applied"] is True
    assert overrides["categories"].updates == [{2: 2}]


def test_category_cycle_is_a_conflict(client, overrides):
    overrides["categories"] = _CategoryRepo([Category(id=1, parent_id=2), Category(id=2, parent_id=1)])
    assert client.post("/catalog/categories/levels").status_code == 409


def _tree():
    return _CategoryRepo([
        Category(id=1, level=1), Category(id=2, parent_id=1, level=2),
        Category(id=3, parent_id=2, level=3), Category(id=4, level=1),
    ])


def test_category_move_preview(client, overrides):
    overrides["categories"] = _tree()
    body = client.put("/catalog/categories/2/parent", params={"parent_id": 4, "dry_run": True}).json()
    assert body == {"category_id": 2, "parent_id": 4, "changed": {}, "count": 0, "applied": False}
    assert overrides["categories"].moves == []


def test_category_move_to_root_relevels_subtree(client, overrides):
    overrides["categories"] = _tree()
    body = client.put("/catalog/categories/2/parent").json()
    assert body["changed"] == {"2": 1, "3": 2}
    assert body["applied"] is True
    assert overrides["categories"].moves == [(2, None, {2: 1, 3: 2})]


def test_category_move_into_own_subtree_is_a_conflict(client, overrides):
    overrides["categories"] = _tree()
    assert client.put("/catalog/categories/1/parent", params={"parent_id": 3}).status_code == 409
    assert overrides["categories"].moves == []


def test_category_move_unknown_category(client, overrides):
    overrides["categories"] = _tree()
    assert client.put("/catalog/categories/99/parent", params={"parent_id": 1}).status_code == 404


# ---------- Health -----------------------------------------------------------

def test_health(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["checks"]["mongodb"] == "ok"
    assert body["checks"]["redis"] == "skipped"
    assert body["checks"]["postgres"] == "ok"
    assert body["checks"]["pipeline"] == "disabled"
    assert body["checks"]["currency_matrix"] == "m1"
