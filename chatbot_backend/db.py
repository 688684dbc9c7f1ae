from sqlalchemy import (
    create_engine, Column, Integer, String, Text, Boolean, Date, DateTime, JSON,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.orm import sessionmaker
from datetime import datetime, UTC
from .config import get_settings


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        # Writers wait on each other instead of failing with "database is locked"
        return {"check_same_thread": False, "timeout": 30}
    return {}


DATABASE_URL = get_settings().database_url
engine = create_engine(DATABASE_URL, connect_args=_connect_args(DATABASE_URL))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


class Activity(Base):
    """Learning activity owned by the class management screens (read only here)."""
    __tablename__ = "activities"

    id = Column(String, primary_key=True)
    class_id = Column(String, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    content = Column(Text, nullable=True)
    type = Column(String, nullable=True)


class RagVector(Base):
    __tablename__ = "rag_vectors"

    id = Column(Integer, primary_key=True)
    class_id = Column(String, nullable=False, index=True)
    activity_id = Column(String, nullable=True)
    source_name = Column(String, nullable=True)
    chunk_index = Column(Integer, default=0)
    content_chunk = Column(Text, nullable=False)
    embedding = Column(JSON, nullable=False)  # list of floats
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))


class ChatbotConversation(Base):
    __tablename__ = "chatbot_conversations"

    id = Column(String, primary_key=True)
    class_id = Column(String, nullable=False)
    activity_id = Column(String, nullable=True)
    user_id = Column(String, nullable=False)
    started_at = Column(DateTime, default=lambda: datetime.now(UTC))
    ended_at = Column(DateTime, nullable=True)
    message_count = Column(Integer, default=0)


class ChatbotMessage(Base):
    __tablename__ = "chatbot_messages"

    id = Column(Integer, primary_key=True)
    conversation_id = Column(String, nullable=True, index=True)
    class_id = Column(String, nullable=False, index=True)
    activity_id = Column(String, nullable=True)
    user_id = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    response = Column(Text, nullable=False)
    sources_used = Column(JSON, default=list)
    context_retrieved = Column(Integer, default=0)
    is_out_of_scope = Column(Boolean, default=False)
    response_time_ms = Column(Integer, default=0)
    # "metadata" is reserved on declarative classes
    meta = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=lambda: datetime.now(UTC))


class ChatbotAnalytics(Base):
    """Daily usage aggregate per (class, activity, date).

    scope_key mirrors activity_id with "" for class-wide traffic so the
    unique constraint also holds when there is no activity.
    """
    __tablename__ = "chatbot_analytics"
    __table_args__ = (
        UniqueConstraint("class_id", "scope_key", "date", name="uq_chatbot_analytics_key"),
    )

    id = Column(Integer, primary_key=True)
    class_id = Column(String, nullable=False)
    activity_id = Column(String, nullable=True)
    scope_key = Column(String, nullable=False, default="")
    date = Column(Date, nullable=False)
    total_messages = Column(Integer, nullable=False, default=0)
    out_of_scope_messages = Column(Integer, nullable=False, default=0)
    fallback_messages = Column(Integer, nullable=False, default=0)
    total_response_time_ms = Column(Integer, nullable=False, default=0)
    total_conversations = Column(Integer, nullable=False, default=0)
    unique_students = Column(Integer, nullable=False, default=0)


class ChatbotParticipant(Base):
    __tablename__ = "chatbot_participants"
    __table_args__ = (
        UniqueConstraint("class_id", "scope_key", "date", "user_id", name="uq_chatbot_participant"),
        Index("ix_chatbot_participant_key", "class_id", "scope_key", "date"),
    )

    id = Column(Integer, primary_key=True)
    class_id = Column(String, nullable=False)
    scope_key = Column(String, nullable=False, default="")
    date = Column(Date, nullable=False)
    user_id = Column(String, nullable=False)


def configure_engine(url: str) -> None:
    """Point the module engine and session factory at another database."""
    global engine, DATABASE_URL
    DATABASE_URL = url
    engine = create_engine(url, connect_args=_connect_args(url))
    SessionLocal.configure(bind=engine)


# Database dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


# Create all tables
def init_db():
    Base.metadata.create_all(bind=engine)
