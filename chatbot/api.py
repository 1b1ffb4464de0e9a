"""FastAPI entry point for the chat service."""

from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import Dict, Iterable, Iterator, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.responses import FileResponse, StreamingResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, Field, validator
import uvicorn

from .config import ChatConfig, ChatLLMConfig, MemoryConfig
from .service import ChatService
from .sessions import SessionManager
from .utils import setup_logging

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).resolve().parent / "static"


class ChatRequest(BaseModel):
    message: str = Field(..., description="User message to send to the model.")
    conversation_id: str = Field(..., alias="conversationId", description="Conversation the message belongs to.")

    @validator("message", "conversation_id")
    def _not_empty(cls, value: str) -> str:
        if not value or not value.strip():
            raise ValueError("field must not be empty")
        return value


class ChatResponse(BaseModel):
    content: str


def format_sse(fragment: str) -> bytes:
    """Frame one fragment as a single Server-Sent Event.

    Newlines inside the fragment become separate ``data:`` lines of the same
    event, which ``EventSource`` joins back with ``\\n``.
    """
    lines = fragment.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    return ("".join(f"data: {line}\n" for line in lines) + "\n").encode("utf-8")


def sse_events(fragments: Iterable[str]) -> Iterator[bytes]:
    iterator = iter(fragments)
    try:
        for fragment in iterator:
            yield format_sse(fragment)
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()


def _require(value: str, name: str) -> str:
    if not value or not value.strip():
        raise HTTPException(status_code=400, detail=f"{name} must not be empty")
    return value


def _note_foreign_id(conversation_id: str) -> None:
    if conversation_id.strip() and not SessionManager.is_valid(conversation_id):
        logger.debug("Conversation id %r was not issued by /api/session", conversation_id)


def create_app(
    chat_config: Optional[ChatConfig] = None,
    *,
    service: Optional[ChatService] = None,
    log_dir: Optional[str] = None,
) -> FastAPI:
    chat_config = chat_config or (service.config if service is not None else ChatConfig.from_env())
    log_dir = log_dir or chat_config.log_dir
    if log_dir:
        setup_logging(log_dir, logging.INFO)

    app = FastAPI(title="Chatbot", version="0.1.0")
    app.state.service = service if service is not None else ChatService(chat_config)
    app.state.sessions = SessionManager()

    if STATIC_DIR.exists():
        app.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")

    @app.get("/", include_in_schema=False)
    async def index():
        index_path = STATIC_DIR / "index.html"
        if not index_path.exists():
            raise HTTPException(status_code=404, detail="Frontend not found")
        return FileResponse(index_path)

    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/chat")
    def stream_chat(
        message: str = Query(..., description="User message to send to the model."),
        conversation_id: str = Query(..., alias="conversationId"),
    ):
        logger.info("Streaming chat for session %s", conversation_id)
        _note_foreign_id(conversation_id)
        try:
            stream = app.state.service.stream_chat(conversation_id, message)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except Exception as exc:
            logger.exception("Chat request failed (session_id=%s)", conversation_id)
            raise HTTPException(status_code=500, detail="Chat request failed") from exc

        return StreamingResponse(
            sse_events(stream),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )

    @app.post("/api/chat", response_model=ChatResponse)
    def chat(request: ChatRequest) -> ChatResponse:
        logger.info("Blocking chat for session %s", request.conversation_id)
        _note_foreign_id(request.conversation_id)
        try:
            content = app.state.service.chat(request.conversation_id, request.message)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return ChatResponse(content=content)

    @app.post("/api/clear")
    async def clear(conversation_id: str = Query(..., alias="conversationId")) -> Dict[str, str]:
        app.state.service.clear_conversation(_require(conversation_id, "conversationId"))
        return {"status": "cleared"}

    @app.get("/api/session")
    async def new_session() -> Dict[str, str]:
        conversation_id = app.state.sessions.new_session()
        logger.debug("Issued conversation id %s", conversation_id)
        return {"conversationId": conversation_id}

    @app.get("/api/history")
    async def history(conversation_id: str = Query(..., alias="conversationId")):
        logger.info("Fetching history for session %s", conversation_id)
        return app.state.service.get_history(_require(conversation_id, "conversationId"))

    return app


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    defaults = ChatConfig.from_env()
    parser = argparse.ArgumentParser(description="Run the chat service with streaming responses.")
    parser.add_argument("--host", default="0.0.0.0", help="Host interface to bind.")
    parser.add_argument("--port", type=int, default=8080, help="Port to bind.")
    parser.add_argument("--log_dir", default=defaults.log_dir, help="Directory for application logs.")
    parser.add_argument("--region", default=defaults.llm.region, help="AWS region hosting the model.")
    parser.add_argument("--llm_endpoint", default=os.getenv("BEDROCK_ENDPOINT", ""), help="Chat-completions endpoint; Bedrock converse is used when unset.")
    parser.add_argument("--llm_model", default=defaults.llm.model, help="Model identifier for completions.")
    parser.add_argument("--request_timeout", type=int, default=defaults.llm.request_timeout, help="Timeout for model calls (seconds).")
    parser.add_argument("--max_history_messages", type=int, default=defaults.memory.window_size, help="Max messages kept in rolling memory.")
    parser.add_argument("--idle_expiry_minutes", type=int, default=defaults.memory.idle_expiry_minutes, help="Forget conversations idle for this long.")
    parser.add_argument("--max_sessions", type=int, default=defaults.memory.max_sessions, help="Max conversations tracked at once.")
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> None:
    args = parse_args(argv)
    setup_logging(args.log_dir, logging.INFO)
    chat_cfg = ChatConfig(
        llm=ChatLLMConfig(
            region=args.region,
            endpoint=args.llm_endpoint,
            model=args.llm_model,
            api_key=os.getenv("AWS_BEARER_TOKEN_BEDROCK") or None,
            request_timeout=args.request_timeout,
        ),
        memory=MemoryConfig(
            window_size=args.max_history_messages,
            idle_expiry_minutes=args.idle_expiry_minutes,
            max_sessions=args.max_sessions,
        ),
        log_dir=args.log_dir,
    )

    app = create_app(chat_cfg)
    logger.info("Starting chat service on %s:%d", args.host, args.port)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
