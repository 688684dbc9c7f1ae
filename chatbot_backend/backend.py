# chatbot_backend/backend.py

# 1️⃣ Imports
from fastapi import FastAPI, HTTPException, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, field_validator
from starlette.exceptions import HTTPException as StarletteHTTPException
from contextlib import asynccontextmanager
import datetime as dt
from typing import List, Literal, Optional
import logging
import time
import uuid
from sqlalchemy.orm import Session

# 2️⃣ Local imports
from .config import ConfigurationError, Settings, configure_logging, get_settings
from .context import ActivityContext, load_activity_context
from .db import ChatbotMessage, get_db, init_db
from .fallback import fallback_response
from .generator import generate_answer
from .llm_client import LLMClient, LLMError
from .llm_parsing import Rejected
from .persistence import ConversationRecorder, MessageRecord
from .retriever import RetrievalError, ingest_training_source, remove_training_source, retrieve
from .scope_gate import check_scope

logger = logging.getLogger(__name__)

recorder = ConversationRecorder()


# 3️⃣ Lifespan: tables and startup checks
@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    configure_logging(settings.log_level)
    try:
        settings.require_provider()
    except ConfigurationError:
        logger.critical("OPENAI_API_KEY is not set; refusing to start")
        raise
    init_db()
    yield


app = FastAPI(title="Class Chatbot Query Service", lifespan=lifespan)

# 4️⃣ CORS - configured from environment
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_settings().allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# 5️⃣ Error responses use {"error": "..."}
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err.get("loc", ()) if p != "body")
        problems.append(f"{field}: {err.get('msg')}" if field else str(err.get("msg")))
    return JSONResponse(status_code=400, content={"error": "Invalid request: " + "; ".join(problems)})


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})


@app.exception_handler(ConfigurationError)
async def configuration_error_handler(request: Request, exc: ConfigurationError):
    logger.error("Refusing request: %s", exc)
    return JSONResponse(status_code=500, content={"error": str(exc)})


# 6️⃣ Models
class ConversationTurn(BaseModel):
    role: Literal["user", "assistant"]
    content: str


def _required(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("must not be empty")
    return value


def _optional(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


class ChatbotQueryRequest(BaseModel):
    class_id: str
    user_id: str
    message: str
    activity_id: Optional[str] = None
    conversation_id: Optional[str] = None
    conversation_history: Optional[List[ConversationTurn]] = []

    @field_validator("class_id", "user_id", "message")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _required(value)

    @field_validator("activity_id", "conversation_id")
    @classmethod
    def check_optional(cls, value: Optional[str]) -> Optional[str]:
        return _optional(value)

    @field_validator("conversation_history", mode="before")
    @classmethod
    def default_history(cls, value):
        return [] if value is None else value


class ActivitySummary(BaseModel):
    id: str
    title: str


class ChatbotQueryResponse(BaseModel):
    response: str
    sources: List[str] = []
    context_used: int = 0
    out_of_scope: bool = False
    response_time_ms: int = 0
    activity_context: Optional[ActivitySummary] = None


class TrainingSourceRequest(BaseModel):
    class_id: str
    source_name: str
    content: str
    activity_id: Optional[str] = None

    @field_validator("class_id", "source_name", "content")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _required(value)

    @field_validator("activity_id")
    @classmethod
    def check_optional(cls, value: Optional[str]) -> Optional[str]:
        return _optional(value)


class TrainingSourceResponse(BaseModel):
    class_id: str
    source_name: str
    chunks: int


class ConversationStartRequest(BaseModel):
    class_id: str
    user_id: str
    activity_id: Optional[str] = None

    @field_validator("class_id", "user_id")
    @classmethod
    def check_required(cls, value: str) -> str:
        return _required(value)

    @field_validator("activity_id")
    @classmethod
    def check_optional(cls, value: Optional[str]) -> Optional[str]:
        return _optional(value)


class ConversationResponse(BaseModel):
    conversation_id: str
    message_count: int = 0
    ended: bool = False


class DailyAnalyticsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    class_id: str
    activity_id: Optional[str] = None
    date: dt.date
    total_messages: int
    out_of_scope_messages: int
    fallback_messages: int
    total_conversations: int
    unique_students: int
    avg_response_time_ms: float = 0


# 7️⃣ Dependencies
def get_llm_client() -> LLMClient:
    return LLMClient.from_settings(get_settings())


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _summary(activity: Optional[ActivityContext]) -> Optional[ActivitySummary]:
    if activity is None:
        return None
    return ActivitySummary(id=activity.id, title=activity.title)


# 8️⃣ Orchestration
def answer_query(
    req: ChatbotQueryRequest,
    db: Session,
    client: LLMClient,
    settings: Settings,
) -> ChatbotQueryResponse:
    """
    Run the tutoring pipeline for one question.

    Steps: load activity -> scope gate -> (redirect if out of scope) ->
    retrieve -> generate -> record. Retrieval or generation failures are
    answered from the fallback rule table. The message is recorded exactly
    once on every path that returns a response.
    """
    start = time.perf_counter()
    activity = load_activity_context(db, req.activity_id)

    decision = check_scope(req.message, activity, client, enabled=settings.scope_gate_enabled)
    metadata = {
        "activity_title": activity.title if activity else None,
        "scope_reason": decision.reason,
    }

    if isinstance(decision, Rejected):
        elapsed = _elapsed_ms(start)
        recorder.record(db, MessageRecord(
            class_id=req.class_id,
            activity_id=req.activity_id,
            user_id=req.user_id,
            conversation_id=req.conversation_id,
            message=req.message,
            response=decision.redirect_message,
            is_out_of_scope=True,
            response_time_ms=elapsed,
            metadata=metadata,
        ))
        return ChatbotQueryResponse(
            response=decision.redirect_message,
            out_of_scope=True,
            response_time_ms=elapsed,
            activity_context=_summary(activity),
        )

    is_fallback = False
    try:
        chunks = retrieve(
            db, req.class_id, req.message, client,
            match_threshold=settings.match_threshold,
            match_count=settings.match_count,
        )
        history = [turn.model_dump() for turn in req.conversation_history]
        answer = generate_answer(req.message, chunks, history, activity, client)
        response_text, sources, context_used = answer.response, answer.sources, len(chunks)
    except (LLMError, RetrievalError) as e:
        logger.warning("Answer pipeline failed for class %s, using fallback: %s", req.class_id, e)
        is_fallback = True
        response_text, sources, context_used = fallback_response(req.message), [], 0
        metadata["fallback"] = True
        metadata["error"] = str(e)

    elapsed = _elapsed_ms(start)
    recorder.record(db, MessageRecord(
        class_id=req.class_id,
        activity_id=req.activity_id,
        user_id=req.user_id,
        conversation_id=req.conversation_id,
        message=req.message,
        response=response_text,
        sources_used=sources,
        context_retrieved=context_used,
        is_fallback=is_fallback,
        response_time_ms=elapsed,
        metadata=metadata,
    ))
    return ChatbotQueryResponse(
        response=response_text,
        sources=sources,
        context_used=context_used,
        response_time_ms=elapsed,
        activity_context=_summary(activity),
    )


# 9️⃣ Chatbot query endpoint
@app.post("/chatbot/query", response_model=ChatbotQueryResponse)
def chatbot_query(
    req: ChatbotQueryRequest,
    db: Session = Depends(get_db),
    client: LLMClient = Depends(get_llm_client),
    settings: Settings = Depends(get_settings),
):
    logger.info("Processing chatbot query for class %s, activity %s", req.class_id, req.activity_id or "none")
    try:
        return answer_query(req, db, client, settings)
    except Exception as e:
        logger.exception("Fatal error while answering chatbot query")
        return JSONResponse(status_code=500, content={"error": str(e)})


# 🔟 Training material
@app.post("/training-sources", response_model=TrainingSourceResponse)
def add_training_source(
    req: TrainingSourceRequest,
    db: Session = Depends(get_db),
    client: LLMClient = Depends(get_llm_client),
):
    try:
        chunks = ingest_training_source(
            db, req.class_id, req.source_name, req.content, client, activity_id=req.activity_id
        )
    except LLMError as e:
        logger.error("Embedding failed for source '%s': %s", req.source_name, e)
        raise HTTPException(status_code=502, detail=f"Embedding provider error: {e}")
    return TrainingSourceResponse(class_id=req.class_id, source_name=req.source_name, chunks=chunks)


@app.delete("/training-sources")
def delete_training_source(class_id: str, source_name: str, db: Session = Depends(get_db)):
    deleted = remove_training_source(db, class_id, source_name)
    if not deleted:
        raise HTTPException(status_code=404, detail="Training source not found")
    return {"class_id": class_id, "source_name": source_name, "deleted": deleted}


# 1️⃣1️⃣ Conversations
@app.post("/conversations", response_model=ConversationResponse)
def start_conversation(req: ConversationStartRequest, db: Session = Depends(get_db)):
    conversation_id = str(uuid.uuid4())
    recorder.start_conversation(db, conversation_id, req.class_id, req.user_id, activity_id=req.activity_id)
    return ConversationResponse(conversation_id=conversation_id)


@app.post("/conversations/{conversation_id}/end", response_model=ConversationResponse)
def end_conversation(conversation_id: str, db: Session = Depends(get_db)):
    conversation = recorder.end_conversation(db, conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return ConversationResponse(
        conversation_id=conversation.id,
        message_count=conversation.message_count,
        ended=True,
    )


# 1️⃣2️⃣ Analytics
@app.get("/analytics/{class_id}", response_model=List[DailyAnalyticsResponse])
def get_analytics(class_id: str, days: int = 7, db: Session = Depends(get_db)):
    if days < 1:
        raise HTTPException(status_code=400, detail="days must be at least 1")
    rows = recorder.daily_analytics(db, class_id, days=days)
    result = []
    for row in rows:
        item = DailyAnalyticsResponse.model_validate(row)
        if row.total_messages:
            item.avg_response_time_ms = round(row.total_response_time_ms / row.total_messages, 1)
        result.append(item)
    return result


# 1️⃣3️⃣ Health
@app.get("/health")
def health(db: Session = Depends(get_db)):
    return {"status": "ok", "messages": db.query(ChatbotMessage).count()}
