from dataclasses import dataclass
from typing import Optional
import logging
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .db import Activity

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActivityContext:
    id: str
    title: str
    description: Optional[str] = None
    content: Optional[str] = None
    type: Optional[str] = None


def load_activity_context(db: Session, activity_id: Optional[str]) -> Optional[ActivityContext]:
    """
    Fetch the activity used to scope and ground the conversation.

    A missing id, an unknown activity or a failed lookup all yield None;
    the request then continues without activity grounding.
    """
    if not activity_id:
        return None
    try:
        activity = db.get(Activity, activity_id)
    except SQLAlchemyError:
        logger.exception("Failed to load activity %s", activity_id)
        db.rollback()
        return None
    if activity is None:
        logger.info("Activity %s not found, continuing without activity context", activity_id)
        return None
    return ActivityContext(
        id=activity.id,
        title=activity.title,
        description=activity.description,
        content=activity.content,
        type=activity.type,
    )
