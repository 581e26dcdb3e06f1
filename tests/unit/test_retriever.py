import pytest

from support_agent.config import RetrievalConfig
from support_agent.errors import ConfigurationError
from support_agent.retrieval.retriever import ContextRetriever

QUERY = "how do I reset my password"


def _retriever(store, embedder, **config) -> ContextRetriever:
    return ContextRetriever(store, lambda _key: embedder, RetrievalConfig(**config))


def test_weak_matches_are_dropped_and_survivors_ranked(chunk_store, add_chunk, fake_embedder) -> None:
    add_chunk("tenant-a", "weak", [0.3, 0.9539392014169456])
    add_chunk("tenant-a", "good", [0.8, 0.6])
    add_chunk("tenant-a", "best", [1.0, 0.0])
    embedder = fake_embedder({QUERY: [1.0, 0.0]})

    result = _retriever(chunk_store, embedder).retrieve("tenant-a", QUERY, "sk")

    assert [s.content for s in result.snippets] == ["best", "good"]
    assert result.snippets[0].similarity == pytest.approx(1.0)
    assert result.snippets[1].similarity == pytest.approx(0.8)
    assert not result.degraded


def test_similarity_exactly_at_floor_is_kept(chunk_store, add_chunk, fake_embedder) -> None:
    add_chunk("tenant-a", "borderline", [1.0, 1.0, 1.0, 1.0])
    embedder = fake_embedder({QUERY: [1.0, 0.0, 0.0, 0.0]})

    result = _retriever(chunk_store, embedder).retrieve("tenant-a", QUERY, "sk")

    assert [s.content for s in result.snippets] == ["borderline"]


def test_results_capped_at_top_k(chunk_store, add_chunk, fake_embedder) -> None:
    for index in range(5):
        add_chunk("tenant-a", f"chunk {index}", [1.0, 0.0])
    embedder = fake_embedder({QUERY: [1.0, 0.0]})
    retriever = _retriever(chunk_store, embedder, top_k=3)

    assert len(retriever.retrieve("tenant-a", QUERY, "sk")) == 3
    assert len(retriever.retrieve("tenant-a", QUERY, "sk", top_k=1)) == 1


@pytest.mark.parametrize("query", ["", "   \n"])
def test_blank_query_short_circuits_without_embedding(chunk_store, add_chunk, fake_embedder, query) -> None:
    add_chunk("tenant-a", "anything", [1.0, 0.0])
    embedder = fake_embedder({})

    result = _retriever(chunk_store, embedder).retrieve("tenant-a", query, "sk")

    assert result.is_empty
    assert not result.degraded
    assert embedder.calls == 0


def test_other_tenants_chunks_never_returned(chunk_store, add_chunk, fake_embedder) -> None:
    add_chunk("tenant-b", "tenant b secret", [1.0, 0.0])
    embedder = fake_embedder({QUERY: [1.0, 0.0]})

    result = _retriever(chunk_store, embedder).retrieve("tenant-a", QUERY, "sk")

    assert result.is_empty


def test_store_failure_degrades_to_empty_context(fake_embedder) -> None:
    class BrokenStore:
        def add(self, chunks) -> None:
            raise NotImplementedError

        def similarity_search(self, tenant_id, query_embedding, k):
            raise RuntimeError("index unavailable")

    result = _retriever(BrokenStore(), fake_embedder({})).retrieve("tenant-a", QUERY, "sk")

    assert result.is_empty
    assert result.degraded


def test_missing_credential_is_not_swallowed(chunk_store) -> None:
    def _factory(_key: str):
        raise ConfigurationError("No embedding credential configured.", provider="openai")

    retriever = ContextRetriever(chunk_store, _factory)

    with pytest.raises(ConfigurationError):
        retriever.retrieve("tenant-a", QUERY, "")


@pytest.mark.parametrize("top_k", [0, -1])
def test_non_positive_top_k_is_rejected(chunk_store, fake_embedder, top_k) -> None:
    embedder = fake_embedder({QUERY: [1.0, 0.0]})

    with pytest.raises(ValueError):
        _retriever(chunk_store, embedder).retrieve("tenant-a", QUERY, "sk", top_k=top_k)

    assert embedder.calls == 0
