"""Tests for the knowledge graph rebuild API."""

import json
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("ANTHROPIC_API_KEY", "test")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.api.v1.graph import router as graph_router
from app.api.v1.graph import set_dependencies
from app.middleware.auth import DEV_OWNER_HEADER, OwnerAuthMiddleware
from conftest import OWNER, add_note, utc

HEADERS = {DEV_OWNER_HEADER: OWNER}
URL = "/api/v1/knowledge/graph/rebuild"

REPLY = json.dumps({
    "entities": [{"name": "SpaceX", "type": "ORG"}, {"name": "Starship", "type": "TECH"}],
    "relationships": [{"source_name": "SpaceX", "target_name": "Starship", "relation": "builds"}],
})


@pytest.fixture
def client(topics):
    set_dependencies(topics.ingestion)
    test_app = FastAPI()
    test_app.add_middleware(OwnerAuthMiddleware)
    test_app.include_router(graph_router)
    return TestClient(test_app)


def test_rebuild_reports_per_note_results(client, engine, topic, mock_llm):
    good = add_note(engine, title="Starship flight", updated_at=utc(2024, 1, 2))
    bad = add_note(engine, title="Garbled", updated_at=utc(2024, 1, 1))
    mock_llm.responses["haiku:raw"] = [REPLY, "no json"]

    resp = client.post(URL, json={"limit": 5}, headers=HEADERS)

    assert resp.status_code == 200
    data = resp.json()
    assert data["processed"] == 2
    assert data["failed"] == 1
    by_id = {r["note_id"]: r for r in data["results"]}
    assert by_id[good.id]["entity_count"] == 2
    assert by_id[good.id]["relationship_count"] == 1
    assert by_id[good.id]["topic_ids"] == [topic.id]
    assert by_id[bad.id]["error"]


def test_rebuild_without_body_uses_default_limit(client, engine, mock_llm):
    add_note(engine, title="One")
    mock_llm.responses["haiku:raw"] = REPLY
    resp = client.post(URL, headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["processed"] == 1


def test_rebuild_limit_validation(client):
    assert client.post(URL, json={"limit": 0}, headers=HEADERS).status_code == 422
    assert client.post(URL, json={"limit": 101}, headers=HEADERS).status_code == 422


def test_rebuild_requires_owner(client):
    assert client.post(URL).status_code == 401
