from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.analytics.fallback import FallbackResponder
from app.analytics.narrator import Narrator
from app.analytics.pipeline import ChatPipeline
from app.analytics.router import Router
from app.analytics.sql_agent import SQLAgent
from app.analytics.sql_safety import SQLSafetyConfig
from app.db.engine import ConnectionPool
from app.llm.openai_client import OpenAIClient
from app.utils.config import AppConfig, get_app_config
from app.utils.prompt_loader import load_schema_description

from .schemas import ChatRequest, ChatResponse, HealthResponse
from app.utils.logging import setup_logging
setup_logging()
logger = logging.getLogger(__name__)


def build_pipeline(cfg: AppConfig, pool: ConnectionPool, llm: Optional[OpenAIClient] = None) -> ChatPipeline:
    """Wire the chat pipeline from its collaborators."""
    llm = llm or OpenAIClient()
    schema = load_schema_description(cfg.schema_description_path)
    return ChatPipeline(
        router=Router(llm, schema, history_window=cfg.history_window),
        executor=SQLAgent(pool),
        narrator=Narrator(llm),
        fallback=FallbackResponder(llm, history_window=cfg.history_window),
        safety_cfg=SQLSafetyConfig(parse_check=cfg.sql_parse_check),
        history_window=cfg.history_window,
    )


def create_app(
    pipeline: Optional[ChatPipeline] = None,
    pool: Optional[ConnectionPool] = None,
    cfg: Optional[AppConfig] = None,
) -> FastAPI:
    cfg = cfg or get_app_config()
    setup_logging(cfg.log_level)

    # Nothing connects here: the store and the LLM are reached on first request.
    pool = pool or ConnectionPool()
    pipeline = pipeline or build_pipeline(cfg, pool)
    executor = pipeline.executor

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        pool.reset()

    app = FastAPI(title="Sales Analytics Chat API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(cfg.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(RequestValidationError)
    async def invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        if request.url.path in ("/chat", "/api/chat"):
            logger.info("Unreadable chat request body")
            return JSONResponse(pipeline.fallback.invalid_input().to_wire())
        return JSONResponse(status_code=422, content={"detail": exc.errors()})

    @app.get("/", response_model=HealthResponse)
    def index() -> HealthResponse:
        return HealthResponse(
            status="ok",
            message="Sales & Operations Chat Analytics API",
            endpoints={"health": "/health", "chat": "/chat"},
        )

    @app.get("/health", response_model=HealthResponse)
    def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/health/db", response_model=HealthResponse)
    def health_db() -> HealthResponse:
        return HealthResponse(status="ok" if executor.ping() else "unavailable")

    def chat(req: ChatRequest) -> ChatResponse:
        logger.info("Chat request received")
        return pipeline.handle(req.question, req.history)

    for path in ("/chat", "/api/chat"):
        app.add_api_route(path, chat, methods=["POST"], response_model=ChatResponse)

    return app


app = create_app()
