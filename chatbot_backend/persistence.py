from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, UTC
from typing import Any, Dict, List, Optional
import logging
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .db import ChatbotAnalytics, ChatbotConversation, ChatbotMessage, ChatbotParticipant

logger = logging.getLogger(__name__)

ANALYTICS_KEY = ["class_id", "scope_key", "date"]
PARTICIPANT_KEY = ["class_id", "scope_key", "date", "user_id"]


@dataclass
class MessageRecord:
    class_id: str
    user_id: str
    message: str
    response: str
    activity_id: Optional[str] = None
    conversation_id: Optional[str] = None
    sources_used: List[str] = field(default_factory=list)
    context_retrieved: int = 0
    is_out_of_scope: bool = False
    is_fallback: bool = False
    response_time_ms: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


def _scope_key(activity_id: Optional[str]) -> str:
    return activity_id or ""


def _dialect_insert(db: Session):
    """INSERT construct supporting ON CONFLICT for the bound dialect, or None."""
    name = db.get_bind().dialect.name
    if name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
        return insert
    if name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
        return insert
    return None


class ConversationRecorder:
    """Writes chatbot messages, conversations and daily usage counters.

    Counters are only ever changed with single UPDATE/UPSERT statements that
    add to the stored value, so concurrent requests never overwrite each other.
    """

    def record(self, db: Session, record: MessageRecord, today: Optional[date] = None) -> Optional[int]:
        """
        Persist one message and update the daily aggregate and participant count.

        Failures are logged and swallowed; the student already has an answer.

        Returns:
            Optional[int]: The new message id, or None if the insert failed.
        """
        day = today or datetime.now(UTC).date()
        message_id = None

        try:
            message_id = self.add_message(db, record)
        except Exception:
            db.rollback()
            logger.exception("Failed to save chatbot message for class %s", record.class_id)

        try:
            self.increment_daily(
                db, record.class_id, record.activity_id, day,
                total_messages=1,
                out_of_scope_messages=1 if record.is_out_of_scope else 0,
                fallback_messages=1 if record.is_fallback else 0,
                total_response_time_ms=record.response_time_ms,
            )
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to update chatbot analytics for class %s", record.class_id)

        try:
            if self.register_participant(db, record.class_id, record.activity_id, day, record.user_id):
                self.increment_daily(db, record.class_id, record.activity_id, day, unique_students=1)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("Failed to update unique students for class %s", record.class_id)

        return message_id

    def add_message(self, db: Session, record: MessageRecord) -> int:
        message = ChatbotMessage(
            conversation_id=record.conversation_id,
            class_id=record.class_id,
            activity_id=record.activity_id,
            user_id=record.user_id,
            message=record.message,
            response=record.response,
            sources_used=list(record.sources_used),
            context_retrieved=record.context_retrieved,
            is_out_of_scope=record.is_out_of_scope,
            response_time_ms=record.response_time_ms,
            meta=dict(record.metadata),
        )
        db.add(message)
        db.commit()
        return message.id

    def increment_daily(
        self,
        db: Session,
        class_id: str,
        activity_id: Optional[str],
        day: date,
        **deltas: int,
    ) -> None:
        """Add deltas to the counters of the (class, activity, day) row, creating it if needed."""
        deltas = {name: amount for name, amount in deltas.items() if amount}
        if not deltas:
            return
        key = {"class_id": class_id, "scope_key": _scope_key(activity_id), "date": day}
        increments = {name: getattr(ChatbotAnalytics, name) + amount for name, amount in deltas.items()}

        insert = _dialect_insert(db)
        if insert is not None:
            stmt = insert(ChatbotAnalytics).values(activity_id=activity_id, **key, **deltas)
            stmt = stmt.on_conflict_do_update(index_elements=ANALYTICS_KEY, set_=increments)
            db.execute(stmt)
            return

        query = db.query(ChatbotAnalytics).filter_by(**key)
        if query.update(increments, synchronize_session=False):
            return
        try:
            with db.begin_nested():
                db.add(ChatbotAnalytics(activity_id=activity_id, **key, **deltas))
        except IntegrityError:
            # Another request created the row first
            query.update(increments, synchronize_session=False)

    def register_participant(
        self,
        db: Session,
        class_id: str,
        activity_id: Optional[str],
        day: date,
        user_id: str,
    ) -> bool:
        """Remember that user_id used the chatbot for this key. True on first sight."""
        values = {"class_id": class_id, "scope_key": _scope_key(activity_id), "date": day, "user_id": user_id}

        insert = _dialect_insert(db)
        if insert is not None:
            stmt = insert(ChatbotParticipant).values(**values).on_conflict_do_nothing(
                index_elements=PARTICIPANT_KEY
            )
            return db.execute(stmt).rowcount == 1

        try:
            with db.begin_nested():
                db.add(ChatbotParticipant(**values))
            return True
        except IntegrityError:
            return False

    def start_conversation(
        self,
        db: Session,
        conversation_id: str,
        class_id: str,
        user_id: str,
        activity_id: Optional[str] = None,
        today: Optional[date] = None,
    ) -> ChatbotConversation:
        conversation = ChatbotConversation(
            id=conversation_id,
            class_id=class_id,
            activity_id=activity_id,
            user_id=user_id,
        )
        db.add(conversation)
        self.increment_daily(db, class_id, activity_id, today or datetime.now(UTC).date(), total_conversations=1)
        db.commit()
        return conversation

    def end_conversation(self, db: Session, conversation_id: str) -> Optional[ChatbotConversation]:
        """Close a conversation and store how many messages were exchanged in it."""
        conversation = db.get(ChatbotConversation, conversation_id)
        if conversation is None:
            return None
        count = (
            db.query(func.count(ChatbotMessage.id))
            .filter(ChatbotMessage.conversation_id == conversation_id)
            .scalar()
        )
        conversation.ended_at = datetime.now(UTC)
        conversation.message_count = count or 0
        db.commit()
        return conversation

    def daily_analytics(self, db: Session, class_id: str, days: int = 7, today: Optional[date] = None) -> List[ChatbotAnalytics]:
        since = (today or datetime.now(UTC).date()) - timedelta(days=days - 1)
        return (
            db.query(ChatbotAnalytics)
            .filter(ChatbotAnalytics.class_id == class_id, ChatbotAnalytics.date >= since)
            .order_by(ChatbotAnalytics.date.desc(), ChatbotAnalytics.scope_key)
            .all()
        )
