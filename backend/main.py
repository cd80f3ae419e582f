# main.py
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware

BASE_DIR = Path(__file__).resolve().parent

# Load .env before reading any configuration below
load_dotenv(BASE_DIR / ".env")

from backend.app import vat_api
from backend.app.llm import RECOMMENDATION_MAX_TOKENS, create_chat_llm
from backend.app.models import (
    ChatMessage,
    ChatReply,
    ChatRequest,
    FillOrderRequest,
    Quote,
    QuoteRequest,
    RecommendationRequest,
)
from backend.app.services.quote_service import (
    QuoteServiceContext,
    ServiceError,
    build_fill_order_message,
    chat_turn,
    housing_for,
    missing_for_lines,
    price_lines,
    recommend_for_budget,
)
from backend.app.services.vat_client import DEFAULT_REGISTRY_URL, BackoffPolicy, VatCache, VatClient
from backend.store import COLLECTIONS, CORD_COLORS, HOUSING


# ---------- Logging ----------
logger = logging.getLogger("lovelab")
if not logger.handlers:
    logging.basicConfig(level=logging.INFO)

# ---------- ENV ----------
DEBUG = os.getenv("DEBUG", "0") == "1"
SKIP_LLM_SETUP = os.getenv("SKIP_LLM_SETUP", "0") == "1"
MODEL_PROVIDER = os.getenv("MODEL_PROVIDER", "anthropic").lower()
MODEL_CHAT = os.getenv("MODEL_CHAT", "claude-sonnet-4-5")
ANTHROPIC_API_KEY = (os.getenv("ANTHROPIC_API_KEY") or "").strip() or None
OPENAI_API_KEY = (os.getenv("OPENAI_API_KEY") or "").strip() or None
AI_MAX_TOKENS = min(4096, max(1, int(os.getenv("AI_MAX_TOKENS", "2048"))))
AI_TIMEOUT_SECONDS = float(os.getenv("AI_TIMEOUT_SECONDS", "60"))

VAT_REGISTRY_URL = os.getenv("VAT_REGISTRY_URL", DEFAULT_REGISTRY_URL)
VAT_TIMEOUT_SECONDS = float(os.getenv("VAT_TIMEOUT_SECONDS", "10"))
VAT_MAX_ATTEMPTS = max(1, int(os.getenv("VAT_MAX_ATTEMPTS", "3")))
VAT_BASE_DELAY = float(os.getenv("VAT_BASE_DELAY", "1.5"))
VAT_MAX_DELAY = float(os.getenv("VAT_MAX_DELAY", "30"))
VAT_CACHE_TTL_DEFINITIVE = float(os.getenv("VAT_CACHE_TTL_DEFINITIVE", "86400"))
VAT_CACHE_TTL_UNVERIFIED = float(os.getenv("VAT_CACHE_TTL_UNVERIFIED", "300"))

_DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "http://127.0.0.1:3000",
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]
_origins_env = os.getenv("FRONTEND_ORIGINS", "")
ALLOWED_ORIGINS = (
    [origin.strip() for origin in _origins_env.split(",") if origin.strip()]
    if _origins_env.strip()
    else _DEFAULT_ALLOWED_ORIGINS
)

# ---------- LLMs ----------
llm = recommendation_llm = None
if not SKIP_LLM_SETUP:
    _api_key = ANTHROPIC_API_KEY if MODEL_PROVIDER == "anthropic" else OPENAI_API_KEY
    llm = create_chat_llm(
        provider=MODEL_PROVIDER,
        model=MODEL_CHAT,
        max_tokens=AI_MAX_TOKENS,
        api_key=_api_key,
        timeout=AI_TIMEOUT_SECONDS,
    )
    recommendation_llm = create_chat_llm(
        provider=MODEL_PROVIDER,
        model=MODEL_CHAT,
        max_tokens=min(AI_MAX_TOKENS, RECOMMENDATION_MAX_TOKENS),
        api_key=_api_key,
        timeout=AI_TIMEOUT_SECONDS,
    )

# ---------- VAT ----------
VAT_CLIENT = VatClient(
    registry_url=VAT_REGISTRY_URL,
    timeout=VAT_TIMEOUT_SECONDS,
    policy=BackoffPolicy(max_attempts=VAT_MAX_ATTEMPTS, base_delay=VAT_BASE_DELAY, max_delay=VAT_MAX_DELAY),
    cache=VatCache(ttl_definitive=VAT_CACHE_TTL_DEFINITIVE, ttl_unverified=VAT_CACHE_TTL_UNVERIFIED),
)

SERVICE_CONTEXT = QuoteServiceContext(
    llm=llm,
    vat_client=VAT_CLIENT,
    logger=logging.getLogger("lovelab.chat"),
    recommendation_llm=recommendation_llm,
    timeout_seconds=AI_TIMEOUT_SECONDS,
    skip_llm_setup=SKIP_LLM_SETUP,
    debug=DEBUG,
)
vat_api.configure(SERVICE_CONTEXT)


def _get_service_context() -> QuoteServiceContext:
    return SERVICE_CONTEXT


# ---------- FastAPI ----------


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    logger.info("Startup")
    logger.info(
        "MODEL_PROVIDER=%s MODEL_CHAT=%s AI_MAX_TOKENS=%d AI_ENABLED=%s",
        MODEL_PROVIDER,
        MODEL_CHAT,
        AI_MAX_TOKENS,
        not SKIP_LLM_SETUP,
    )
    logger.info("VAT registry=%s attempts=%d", VAT_REGISTRY_URL, VAT_MAX_ATTEMPTS)
    logger.info("ALLOWED_ORIGINS=%s", ALLOWED_ORIGINS)
    yield


app = FastAPI(title="LoveLab Quote Backend", lifespan=_lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(vat_api.router)


# Root (Health)
@app.get("/")
def root():
    return {"ok": True, "service": "lovelab-backend", "health": "/api/health", "docs": "/docs"}


@app.get("/api/health")
def api_health():
    return {"ok": True, "time": datetime.now(timezone.utc).isoformat(), "ai": not SKIP_LLM_SETUP}


@app.get("/api/catalog")
def api_catalog():
    return {
        "collections": [c.to_dict() for c in COLLECTIONS],
        "palettes": {
            cord: [{"name": e.name, "hex": e.hex} for e in palette] for cord, palette in CORD_COLORS.items()
        },
        "housing": HOUSING,
    }


@app.get("/api/catalog/{collection_id}/housing")
def api_catalog_housing(
    collection_id: str,
    housing_type: Optional[str] = Query(None, alias="housingType"),
    multi_attached: Optional[bool] = Query(None, alias="multiAttached"),
    carat: Optional[List[str]] = Query(None),
):
    try:
        return housing_for(
            collection_id=collection_id,
            housing_type=housing_type,
            multi_attached=multi_attached,
            carats=carat,
        )
    except ServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc



# ---- API: Quote ----
@app.post("/api/quote", response_model=Quote)
def api_quote(payload: QuoteRequest):
    return price_lines(lines=payload.lines)


@app.post("/api/quote/missing")
def api_quote_missing(payload: QuoteRequest):
    return {"lines": missing_for_lines(lines=payload.lines)}


# ---- API: Chat ----
@app.post("/api/chat", response_model=ChatReply)
async def api_chat(payload: ChatRequest):
    try:
        return await chat_turn(messages=payload.messages, ctx=_get_service_context(), context=payload.context)
    except ServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


@app.post("/api/chat/fill-order")
async def api_chat_fill_order(payload: FillOrderRequest):
    prompt = build_fill_order_message(price_lines(lines=payload.lines))
    messages = [*payload.messages, ChatMessage(role="user", content=prompt)]
    try:
        reply = await chat_turn(messages=messages, ctx=_get_service_context())
    except ServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc
    return {"prompt": prompt, "reply": reply.model_dump(mode="json", by_alias=True)}


@app.post("/api/chat/recommendations")
async def api_chat_recommendations(payload: RecommendationRequest):
    try:
        return await recommend_for_budget(budget=payload.budget, lines=payload.lines, ctx=_get_service_context())
    except ServiceError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.message) from exc


# ---------- Local start ----------
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("backend.main:app", host="0.0.0.0", port=port, reload=False)
