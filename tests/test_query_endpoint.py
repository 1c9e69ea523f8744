"""Integration tests for the HTTP endpoints."""
from dataclasses import replace

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock

from conftest import ScriptedLLM
from ragask import main
from ragask.services.indexer import Capabilities, Indexer
from ragask.services.llm_client import LLMClientError, LLMError


@pytest.fixture
def client(settings, capabilities, corpus):
    """Test client wired to in-memory services; startup is not triggered."""
    main.settings = replace(settings, corpus_root=str(corpus))
    main.capabilities = capabilities
    main.indexer = Indexer(main.settings, capabilities)
    yield TestClient(app=main.app)
    main.settings = main.capabilities = main.indexer = None


def _use_llm(llm):
    caps = main.capabilities
    main.capabilities = Capabilities(llm, caps.embedder, caps.store, caps.cache)
    main.indexer = Indexer(main.settings, main.capabilities)


def test_health(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_index_reports_counts(client, corpus):
    response = client.post("/index", json={"root_path": str(corpus)})

    assert response.status_code == 200
    data = response.json()
    assert data["namespace"] == main.indexer.namespace_for(str(corpus))
    assert (data["loaded"], data["skipped"], data["errored"], data["stored"]) == (2, 0, 0, 2)

    again = client.post("/index", json={"root_path": str(corpus)}).json()
    assert (again["skipped"], again["stored"]) == (2, 0)


def test_index_empty_root(client):
    response = client.post("/index", json={"root_path": "  "})

    assert response.status_code == 400


def test_index_missing_root(client, tmp_path):
    response = client.post("/index", json={"root_path": str(tmp_path / "missing")})

    assert response.status_code == 400
    assert response.json()["detail"]["error"]["code"] == "LoadError"


def test_query_answers_from_default_root(client, corpus):
    client.post("/index", json={"root_path": str(corpus)})

    response = client.post("/query", json={"question": "What does the add function return?"})

    assert response.status_code == 200
    data = response.json()
    assert "b.rs" in data["answer"]
    assert data["questions"][0] == "What does the add function return?"
    assert "b.rs" in {source["path"] for source in data["sources"]}
    assert data["compressed"] is False


def test_query_unindexed_root_has_no_sources(client, tmp_path):
    response = client.post("/query", json={"question": "Anything?", "root_path": str(tmp_path / "empty")})

    assert response.status_code == 200
    assert response.json()["sources"] == []


def test_query_empty_question(client):
    response = client.post("/query", json={"question": ""})

    assert response.status_code == 400


def test_query_generation_failure(client, corpus):
    client.post("/index", json={"root_path": str(corpus)})
    _use_llm(ScriptedLLM(fail_on="Answer:"))

    response = client.post("/query", json={"question": "What does add do?"})

    assert response.status_code == 503
    assert response.json()["detail"]["error"]["code"] == "GenerationError"


def test_query_llm_client_error_is_reported(client, corpus):
    client.post("/index", json={"root_path": str(corpus)})
    llm = AsyncMock()
    llm.complete.side_effect = LLMClientError(LLMError("RATE_LIMIT_ERROR", "Rate limit exceeded", {}))
    _use_llm(llm)

    response = client.post("/query", json={"question": "What does add do?"})

    assert response.status_code == 503
    assert response.json()["detail"]["error"]["code"] == "RATE_LIMIT_ERROR"


def test_query_unexpected_error_is_server_error(client, corpus):
    client.post("/index", json={"root_path": str(corpus)})
    llm = AsyncMock()
    llm.complete.side_effect = RuntimeError("backend down")
    _use_llm(llm)

    response = client.post("/query", json={"question": "What does add do?"})

    assert response.status_code == 500
    assert response.json()["detail"]["error"]["code"] == "RuntimeError"
