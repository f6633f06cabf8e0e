"""HTTP surface tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

from nlcube.core import duckdb_store
from nlcube.deps import SUBJECT_COOKIE
from nlcube.main import STATUS_BY_KIND, create_app
from nlcube.routers.query import ARROW_STREAM_MEDIA_TYPE

from conftest import FixedTranslator, SALES_SETUP, seed_subject

TOTALS_SQL = "SELECT region, SUM(amount) AS total\nFROM orders\nGROUP BY region\nORDER BY region;"


@pytest.fixture
def translator():
    return FixedTranslator(TOTALS_SQL)


@pytest.fixture
def client(data_dir, make_service, translator):
    seed_subject(data_dir, "sales", *SALES_SETUP)
    app = create_app(service=make_service(translator))
    with TestClient(app) as c:
        yield c


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_status(client):
    r = client.get("/status")
    assert r.status_code == 200
    body = r.json()
    assert body["subject_count"] == 1
    assert "sales" in body["pools"]
    assert body["version"]


class TestSubjectsApi:
    def test_list_discovered(self, client):
        assert client.get("/subjects").json() == ["sales"]

    def test_create_and_conflicts(self, client):
        r = client.post("/subjects/hr")
        assert r.status_code == 201
        assert r.json()["name"] == "hr"

        r = client.post("/subjects/hr")
        assert r.status_code == 409
        assert r.json()["kind"] == "AlreadyExists"

        r = client.post("/subjects/bad-name")
        assert r.status_code == 400
        assert r.json()["kind"] == "InvalidName"

        assert client.get("/subjects").json() == ["hr", "sales"]

    def test_delete(self, client, data_dir):
        assert client.delete("/subjects/sales").status_code == 204
        assert not (data_dir / "sales").exists()
        assert client.get("/subjects").json() == []

        r = client.delete("/subjects/sales")
        assert r.status_code == 404
        assert r.json()["kind"] == "UnknownSubject"

    def test_select_sets_cookie(self, client):
        r = client.post("/subjects/sales/select")
        assert r.status_code == 200
        assert r.json() == {"current_subject": "sales"}
        assert client.cookies.get(SUBJECT_COOKIE) == "sales"

        # subsequent requests fall back to the selected subject
        r = client.post("/query", json={"query": "SELECT COUNT(*) AS n FROM orders", "format": "json"})
        assert r.status_code == 200
        assert r.json()["subject"] == "sales"

    def test_select_unknown(self, client):
        r = client.post("/subjects/nope/select")
        assert r.status_code == 404


class TestQueryApi:
    def test_arrow_body(self, client):
        r = client.post("/query", json={"subject": "sales", "query": "SELECT id FROM orders ORDER BY id"})
        assert r.status_code == 200
        assert r.headers["content-type"].startswith(ARROW_STREAM_MEDIA_TYPE)
        assert r.headers["x-row-count"] == "3"
        table = duckdb_store.decode_columnar(r.content)
        assert table.column("id").to_pylist() == [1, 2, 3]

    def test_json_metadata(self, client):
        r = client.post("/query", json={"subject": "sales", "query": "SELECT id FROM orders", "format": "json"})
        assert r.status_code == 200
        body = r.json()
        assert body["columns"] == ["id"]
        assert body["row_count"] == 3
        assert body["sql"] == "SELECT id FROM orders"

    def test_subject_header(self, client):
        r = client.post("/query", headers={"X-NLCube-Subject": "sales"},
                        json={"query": "SELECT 1 AS one", "format": "json"})
        assert r.status_code == 200
        assert r.json()["subject"] == "sales"

    def test_no_subject_selected(self, client):
        r = client.post("/query", json={"query": "SELECT 1"})
        assert r.status_code == 404
        assert r.json()["kind"] == "UnknownSubject"

    def test_unsafe_query(self, client):
        r = client.post("/query", json={"subject": "sales", "query": "DROP TABLE orders"})
        assert r.status_code == 422
        body = r.json()
        assert body["kind"] == "UnsafeQuery"
        assert body["sql"] == "DROP TABLE orders"

    def test_execution_error(self, client):
        r = client.post("/query", json={"subject": "sales", "query": "SELECT nope FROM orders"})
        assert r.status_code == 400
        assert r.json()["kind"] == "ExecutionError"

    def test_nl_query(self, client, translator):
        r = client.post("/nl-query", json={"subject": "sales", "question": "total by region?"})
        assert r.status_code == 200
        assert r.headers["x-generated-sql"] == " ".join(TOTALS_SQL.split())
        table = duckdb_store.decode_columnar(r.content)
        assert table.column("total").to_pylist() == [15.5, 7.0]
        assert translator.calls[0][0] == "total by region?"

    def test_nl_query_json(self, client):
        r = client.post("/nl-query", json={"subject": "sales", "question": "total by region?", "format": "json"})
        assert r.status_code == 200
        body = r.json()
        assert body["sql"] == TOTALS_SQL
        assert body["raw_model_output"] == TOTALS_SQL

    def test_empty_question(self, client):
        r = client.post("/nl-query", json={"subject": "sales", "question": " "})
        assert r.status_code == 400
        assert r.json()["kind"] == "InvalidQuestion"

    def test_schema(self, client):
        r = client.get("/schema", params={"subject": "sales"})
        assert r.status_code == 200
        assert r.json()["subject"] == "sales"
        assert 'CREATE TABLE "orders"' in r.json()["schema_text"]

        r = client.get("/schema", params={"subject": "sales", "refresh": "true"})
        assert r.status_code == 200


class TestErrorMapping:
    @pytest.mark.parametrize("translator", [FixedTranslator("no sql here")])
    def test_malformed_response(self, client):
        r = client.post("/nl-query", json={"subject": "sales", "question": "total?"})
        assert r.status_code == 422
        assert r.json()["kind"] == "MalformedResponse"
        assert r.json()["raw_model_output"] == "no sql here"

    @pytest.mark.parametrize("translator", [FixedTranslator(RuntimeError("provider down"))])
    def test_translation_unavailable(self, client):
        r = client.post("/nl-query", json={"subject": "sales", "question": "total?"})
        assert r.status_code == 503
        assert r.json()["kind"] == "TranslationUnavailable"

    def test_error_body_documented(self, client):
        spec = client.get("/openapi.json").json()
        assert "ErrorBody" in spec["components"]["schemas"]
        responses = spec["paths"]["/query"]["post"]["responses"]
        assert responses["504"]["content"]["application/json"]["schema"]["$ref"].endswith("/ErrorBody")

    def test_every_kind_has_a_status(self):
        assert STATUS_BY_KIND["ExecutionTimeout"] == 504
        assert STATUS_BY_KIND["PoolExhausted"] == 503
        assert STATUS_BY_KIND["Busy"] == 409
