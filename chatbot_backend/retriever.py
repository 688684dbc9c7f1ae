"""Vector retriever over a class's trained material.

Embeds the question with the provider and scores cosine similarity against
the stored chunk embeddings of a single class. Also splits and embeds new
training sources.
"""

from dataclasses import dataclass
from typing import List, Optional
import logging

import numpy as np
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import RagVector
from .llm_client import LLMClient

logger = logging.getLogger(__name__)

DEFAULT_MATCH_THRESHOLD = 0.7
DEFAULT_MATCH_COUNT = 5
DEFAULT_SOURCE_LABEL = "Class material"
CHUNK_SIZE = 800
CHUNK_OVERLAP = 120


class RetrievalError(Exception):
    """Raised when the vector search cannot be performed."""
    pass


@dataclass(frozen=True)
class RetrievedChunk:
    content: str
    source: str
    similarity: float


def _cosine(a: np.ndarray, b: np.ndarray) -> float:
    """Cosine similarity of two equal-length vectors, 0.0 for zero vectors."""
    denom = np.linalg.norm(a) * np.linalg.norm(b)
    if denom == 0:
        return 0.0
    return float(a.dot(b) / denom)


def search_vectors(
    db: Session,
    class_id: str,
    query_embedding: List[float],
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    match_count: int = DEFAULT_MATCH_COUNT,
) -> List[RetrievedChunk]:
    """
    Return at most match_count chunks of the class with similarity >= match_threshold,
    highest similarity first.

    Raises:
        RetrievalError: If the stored vectors cannot be read.
    """
    try:
        rows = db.query(RagVector).filter(RagVector.class_id == class_id).all()
    except SQLAlchemyError as e:
        db.rollback()
        raise RetrievalError(f"Vector search failed for class {class_id}: {e}")

    query = np.asarray(query_embedding, dtype=float)
    scored = []
    for row in rows:
        try:
            vector = np.asarray(row.embedding or [], dtype=float)
        except (TypeError, ValueError):
            logger.warning("Skipping vector %s with unreadable embedding", row.id)
            continue
        if vector.shape != query.shape:
            logger.warning("Skipping vector %s with dimension %s (expected %s)", row.id, vector.shape, query.shape)
            continue
        similarity = _cosine(query, vector)
        if similarity >= match_threshold:
            scored.append(RetrievedChunk(
                content=row.content_chunk,
                source=row.source_name or DEFAULT_SOURCE_LABEL,
                similarity=similarity,
            ))

    scored.sort(key=lambda c: c.similarity, reverse=True)
    return scored[:match_count]


def retrieve(
    db: Session,
    class_id: str,
    question: str,
    client: LLMClient,
    match_threshold: float = DEFAULT_MATCH_THRESHOLD,
    match_count: int = DEFAULT_MATCH_COUNT,
) -> List[RetrievedChunk]:
    """Embed the question and search the class corpus. Errors propagate to the caller."""
    embedding = client.embed(question)
    chunks = search_vectors(db, class_id, embedding, match_threshold, match_count)
    logger.info("Retrieved %d chunks for class %s", len(chunks), class_id)
    return chunks


def split_text(text: str, chunk_size: int = CHUNK_SIZE, chunk_overlap: int = CHUNK_OVERLAP) -> List[str]:
    """Split text into overlapping character windows."""
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")
    text = text.strip()
    chunks = []
    start = 0
    while start < len(text):
        end = min(len(text), start + chunk_size)
        chunk = text[start:end].strip()
        if chunk:
            chunks.append(chunk)
        if end == len(text):
            break
        start = end - chunk_overlap
    return chunks


def ingest_training_source(
    db: Session,
    class_id: str,
    source_name: str,
    text: str,
    client: LLMClient,
    activity_id: Optional[str] = None,
) -> int:
    """
    Chunk, embed and store a training source for a class.

    Returns:
        int: Number of stored chunks.
    """
    chunks = split_text(text)
    # Embed everything first so a provider failure leaves nothing half-written
    vectors = [client.embed(chunk) for chunk in chunks]
    for index, (chunk, vector) in enumerate(zip(chunks, vectors)):
        db.add(RagVector(
            class_id=class_id,
            activity_id=activity_id,
            source_name=source_name,
            chunk_index=index,
            content_chunk=chunk,
            embedding=vector,
        ))
    db.commit()
    logger.info("Ingested %d chunks from '%s' for class %s", len(chunks), source_name, class_id)
    return len(chunks)


def remove_training_source(db: Session, class_id: str, source_name: str) -> int:
    """Delete every stored chunk of a source. Returns the number of deleted chunks."""
    deleted = (
        db.query(RagVector)
        .filter(RagVector.class_id == class_id, RagVector.source_name == source_name)
        .delete(synchronize_session=False)
    )
    db.commit()
    return deleted
