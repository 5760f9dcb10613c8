"""Rules retrieval: FAISS index, keyword fallback and the shared retriever."""
from types import SimpleNamespace

import pytest

from crosswind.rag import retriever
from crosswind.rag.retriever import KeywordRulesRAG, RulesRAG, get_rules_retriever, retrieve_rules
from crosswind.models import RulesDoc

DOCS = [{"id": "doc_minimums", "chunks": [
    {"chunk_id": "doc_minimums#chunk1", "text": "Student pilots need 5 miles visibility."},
    {"chunk_id": "doc_minimums#chunk2", "text": "Crosswind limits depend on the wind component."},
    {"chunk_id": "doc_minimums#chunk3", "text": "Ceiling must be at least 3000 ft for students."},
]}]


class FakeEmbeddings:
    """One dimension per topic word, so nearest neighbours are predictable."""

    TOPICS = ("visibility", "wind", "ceiling")

    def create(self, model, input):
        return SimpleNamespace(data=[
            SimpleNamespace(embedding=[float(t in text.lower()) for t in self.TOPICS])
            for text in input
        ])


@pytest.fixture(autouse=True)
def fresh_retriever(monkeypatch):
    monkeypatch.setattr(retriever, "_retriever", None)
    monkeypatch.setattr(retriever, "_indexed_hash", None)


def test_vector_index_returns_closest_chunk():
    rag = RulesRAG(client=SimpleNamespace(embeddings=FakeEmbeddings()))
    rag.index_documents(DOCS)

    results = rag.query("low visibility today", top_k=1)

    assert [chunk_id for chunk_id, _, _ in results] == ["doc_minimums#chunk1"]
    assert results[0][2] == 0.0


def test_vector_index_requires_documents():
    rag = RulesRAG(client=SimpleNamespace(embeddings=FakeEmbeddings()))
    with pytest.raises(RuntimeError):
        rag.query("wind")
    with pytest.raises(ValueError):
        rag.index_documents([{"id": "empty", "chunks": []}])


def test_keyword_scoring():
    rag = KeywordRulesRAG()
    rag.index_documents(DOCS)

    results = rag.query("student-pilot minimums: Ceiling: 800 ft", top_k=3)

    assert results[0][0] == "doc_minimums#chunk3"
    assert {chunk_id for chunk_id, _, _ in results} == {"doc_minimums#chunk1", "doc_minimums#chunk3"}
    assert rag.query("thunderstorm") == []


def test_shared_retriever_is_reused_until_corpus_changes(db):
    assert get_rules_retriever(db) is None

    db.add(RulesDoc(id="doc_minimums", title="Minimums", content="...", chunks=DOCS[0]["chunks"]))
    db.commit()
    first = get_rules_retriever(db)
    assert isinstance(first, KeywordRulesRAG)
    assert get_rules_retriever(db) is first

    db.get(RulesDoc, "doc_minimums").chunks = DOCS[0]["chunks"][:1]
    db.commit()
    assert get_rules_retriever(db) is not first


def test_retrieve_rules_formats_citations(db):
    db.add(RulesDoc(id="doc_minimums", title="Minimums", content="...", chunks=DOCS[0]["chunks"]))
    db.commit()

    rules = retrieve_rules(db, ["Wind Speed: 25.0 kts (max: 10 kts)"], "student-pilot", top_k=2)

    assert rules[0] == "[doc_minimums#chunk2] Crosswind limits depend on the wind component."
    assert len(rules) == 2
