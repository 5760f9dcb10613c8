"""
RAG over rules documents.

Uses OpenAI embeddings + FAISS for vector search.
Once initialized, you can query for relevant rule chunks and get citations.

Usage:
    rag = RulesRAG(api_key)
    rag.index_documents(rules_docs)  # list of {"id", "chunks": [{"chunk_id", "text"}]}
    results = rag.query("visibility minimums for student pilots", top_k=3)
    # returns [(chunk_id, text, score), ...]

Without an OpenAI key, KeywordRulesRAG gives deterministic keyword scoring.
"""
import hashlib
import json
import logging
from typing import Optional

import faiss
import numpy as np
from openai import OpenAI
from sqlalchemy.orm import Session

from crosswind.config import config
from crosswind.models import RulesDoc

logger = logging.getLogger(__name__)

EMBEDDING_DIMENSION = 1536      # text-embedding-3-small


class RulesRAG:
    def __init__(self, api_key: Optional[str] = None, client: Optional[OpenAI] = None):
        if client is None:
            api_key = api_key or config.openai.api_key
            if not api_key:
                raise ValueError("OPENAI_API_KEY not set")
            client = OpenAI(api_key=api_key)
        self.client = client
        self.index = None
        self.chunks = []  # [(chunk_id, text), ...]
        self.dimension = EMBEDDING_DIMENSION

    def index_documents(self, rules_docs: list):
        all_chunks = [
            (chunk["chunk_id"], chunk["text"])
            for doc in rules_docs for chunk in doc.get("chunks") or []
        ]
        if not all_chunks:
            raise ValueError("No chunks to index")

        self.chunks = all_chunks
        embeddings = np.array(self._embed_batch([text for _, text in all_chunks])).astype("float32")
        self.dimension = embeddings.shape[1]

        self.index = faiss.IndexFlatL2(self.dimension)
        self.index.add(embeddings)
        logger.info("Indexed %d rule chunks", len(all_chunks))

    def query(self, query_text: str, top_k: int = 3) -> list[tuple]:
        """Returns [(chunk_id, text, distance), ...], closest first."""
        if self.index is None:
            raise RuntimeError("Index not built, call index_documents() first")

        query_np = np.array([self._embed_batch([query_text])[0]]).astype("float32")
        distances, indices = self.index.search(query_np, min(top_k, len(self.chunks)))

        results = []
        for i, idx in enumerate(indices[0]):
            if 0 <= idx < len(self.chunks):
                chunk_id, text = self.chunks[idx]
                results.append((chunk_id, text, float(distances[0][i])))
        return results

    def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        response = self.client.embeddings.create(
            model=config.openai.embedding_model,
            input=texts,
        )
        return [item.embedding for item in response.data]


# ── Keyword RAG (no OpenAI key needed) ────────────────────────────────────────

KEYWORDS = {
    "visibility": 10, "ceiling": 10, "crosswind": 10, "wind": 8,
    "student": 5, "private": 5, "instrument": 5, "vfr": 3, "unavailable": 3,
}


class KeywordRulesRAG:
    """Deterministic keyword scoring. Same interface as RulesRAG."""

    def __init__(self):
        self.chunks = []

    def index_documents(self, rules_docs: list):
        self.chunks = [
            (chunk["chunk_id"], chunk["text"])
            for doc in rules_docs for chunk in doc.get("chunks") or []
        ]
        logger.debug("Keyword index holds %d chunks", len(self.chunks))

    def query(self, query_text: str, top_k: int = 3) -> list[tuple]:
        query_lower = query_text.lower()
        scored = []
        for chunk_id, text in self.chunks:
            text_lower = text.lower()
            score = sum(
                weight for word, weight in KEYWORDS.items()
                if word in query_lower and word in text_lower
            )
            if score > 0:
                scored.append((chunk_id, text, 100 - score))  # lower = better
        scored.sort(key=lambda x: (x[2], x[0]))
        return scored[:top_k]


# ── Shared retriever ──────────────────────────────────────────────────────────

_retriever = None
_indexed_hash: Optional[str] = None


def _docs_from_db(db: Session) -> list[dict]:
    return [
        {"id": d.id, "chunks": d.chunks or []}
        for d in db.query(RulesDoc).order_by(RulesDoc.id).all()
    ]


def get_rules_retriever(db: Session):
    """Index built once per distinct rules corpus. None when no rules are ingested."""
    global _retriever, _indexed_hash

    docs = _docs_from_db(db)
    if not any(d["chunks"] for d in docs):
        return None

    corpus_hash = hashlib.md5(json.dumps(docs, sort_keys=True).encode()).hexdigest()
    if _retriever is not None and corpus_hash == _indexed_hash:
        return _retriever

    retriever = None
    if config.openai.is_configured:
        try:
            retriever = RulesRAG()
            retriever.index_documents(docs)
        except Exception as e:
            logger.warning("Vector index unavailable (%s), using keyword retrieval", e)
            retriever = None
    if retriever is None:
        retriever = KeywordRulesRAG()
        retriever.index_documents(docs)

    _retriever, _indexed_hash = retriever, corpus_hash
    return retriever


def retrieve_rules(db: Session, violations: list[str], training_level: str,
                   top_k: int = 3) -> list[str]:
    """Rule chunks most relevant to the violated minimums, as '[chunk_id] text'."""
    retriever = get_rules_retriever(db)
    if retriever is None:
        return []
    query = f"{training_level} minimums: " + "; ".join(violations)
    try:
        results = retriever.query(query, top_k=top_k)
    except Exception as e:
        logger.warning("Rules retrieval failed: %s", e)
        return []
    return [f"[{chunk_id}] {text}" for chunk_id, text, _ in results]
