"""Quote service layer shared by the FastAPI handlers and the CLI.

Pricing, missing-field checks, housing choices and VAT lookups are thin
wrappers over the core modules. The chat functions own the AI round trip:
they build the prompt, bound the call with a timeout, push the reply through
the response extractor and re-price whatever order the model proposed.
``ServiceError`` is the only exception raised here; the HTTP layer maps it to
a status code.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage

from backend.app.error_messages import ai_error_message, unknown_products_notice
from backend.app.llm import (
    BUDGET_PROMPT,
    COMPLEMENT_ORDER_PROMPT,
    FILL_ORDER_PROMPT,
    build_recommendation_prompt,
    build_system_prompt,
)
from backend.app.models import ChatContext, ChatMessage, ChatReply, OrderLine, Quote, VatVerdict
from backend.app.services.quote_engine import calculate_quote
from backend.app.services.vat_client import VatClient
from backend.app.utils import extract_json, format_eur, parse_assistant_payload, strip_markdown
from backend.retriever import expand_suggestion_lines, unresolved_products
from backend.store.collections import MINIMUM_ORDER_EUR, find_collection, housing_options, line_missing_fields

class ServiceError(Exception):
    """Domain specific error that can be translated to HTTP responses."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass
class QuoteServiceContext:
    llm: Any | None
    vat_client: VatClient
    logger: Any
    recommendation_llm: Any | None = None
    timeout_seconds: float = 60.0
    skip_llm_setup: bool = False
    debug: bool = False


# ---------- Pricing ----------

def price_lines(*, lines: Iterable[OrderLine]) -> Quote:
    return calculate_quote(lines)


def missing_for_lines(*, lines: Sequence[OrderLine]) -> List[Dict[str, Any]]:
    out: List[Dict[str, Any]] = []
    for line in lines:
        missing = line_missing_fields(line)
        if missing:
            out.append({"uid": line.uid, "collectionId": line.collection_id, "missing": missing})
    return out


def housing_for(
    *,
    collection_id: str,
    housing_type: Optional[str] = None,
    multi_attached: Optional[bool] = None,
    carats: Optional[Sequence[str]] = None,
) -> Dict[str, Any]:
    """Housing choices the builder offers for one collection and its current selections."""
    collection = find_collection(collection_id)
    if collection is None:
        raise ServiceError(f"Unknown collection: {collection_id}", status_code=404)
    opts = housing_options(collection, housing_type=housing_type, multi_attached=multi_attached, carats=carats)
    return {
        "collectionId": collection.id,
        "typeChoices": list(opts.type_choices),
        "options": list(opts.options),
        "needsType": opts.needs_type,
        "needsAttached": opts.needs_attached,
        "bezelOnly": opts.bezel_only,
    }



# ---------- Prompt helpers ----------

def build_filter_context(
    budget: Optional[float] = None,
    collection_ids: Optional[Sequence[str]] = None,
    colors: Optional[Sequence[str]] = None,
) -> str:
    """Prefix for the user's message carrying the builder's filter chips."""
    parts: List[str] = []
    if budget:
        parts.append(f"Budget: {format_eur(budget)}.")
    if collection_ids:
        names = []
        for cid in collection_ids:
            collection = find_collection(cid)
            names.append(collection.label if collection else cid)
        parts.append(f"Collections: {', '.join(names)}.")
    if colors:
        parts.append(f"Colors: {', '.join(colors)}.")
    return f"[Context: {' '.join(parts)}]\n" if parts else ""


def _describe_lines(quote: Quote, with_shape: bool = False) -> str:
    items = []
    for ln in quote.lines:
        text = f"{ln.product} {ln.carat}ct {ln.color_name or ''}"
        if ln.housing:
            text += f" ({ln.housing})"
        if with_shape and ln.shape:
            text += f" {ln.shape}"
        items.append(f"{text} ×{ln.qty}")
    return "; ".join(items)


def build_fill_order_message(quote: Quote) -> str:
    """User turn asking the assistant how to reach the minimum order (or to complement it)."""
    items = _describe_lines(quote) or "empty"
    gap = MINIMUM_ORDER_EUR - quote.subtotal
    if gap > 0:
        return FILL_ORDER_PROMPT.format(
            items=items,
            subtotal=format_eur(quote.subtotal),
            gap=format_eur(gap),
            minimum=format_eur(MINIMUM_ORDER_EUR),
        )
    return COMPLEMENT_ORDER_PROMPT.format(items=items, subtotal=format_eur(quote.subtotal))


# ---------- AI round trip ----------

def _to_chat_message(raw: Any) -> ChatMessage:
    return raw if isinstance(raw, ChatMessage) else ChatMessage.model_validate(raw)


def _history_messages(history: Sequence[ChatMessage]) -> List[BaseMessage]:
    out: List[BaseMessage] = []
    for msg in history:
        if msg.role == "assistant":
            # the model sees its own earlier turns in the JSON shape it is asked to produce
            out.append(AIMessage(content=json.dumps({"message": msg.content, "quote": msg.quote}, ensure_ascii=False)))
        else:
            out.append(HumanMessage(content=msg.content))
    return out


def _reply_text(response: Any) -> str:
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict):
                parts.append(str(block.get("text") or ""))
        return "".join(parts)
    return ""


async def _invoke(llm: Any, messages: List[BaseMessage], ctx: QuoteServiceContext) -> str:
    try:
        response = await asyncio.wait_for(llm.ainvoke(messages), timeout=ctx.timeout_seconds)
    except asyncio.TimeoutError as exc:
        ctx.logger.error("AI call timed out after %.0fs", ctx.timeout_seconds)
        raise ServiceError(ai_error_message("The AI request timed out."), status_code=504) from exc
    except Exception as exc:
        ctx.logger.error("AI call failed: %s", exc)
        raise ServiceError(ai_error_message(str(exc) or exc.__class__.__name__), status_code=502) from exc
    raw = _reply_text(response)
    if not raw.strip():
        ctx.logger.error("AI returned an empty reply")
        raise ServiceError(ai_error_message("Empty response from AI"), status_code=502)
    return raw


async def chat_turn(
    *,
    messages: Sequence[Any],
    ctx: QuoteServiceContext,
    context: Optional[ChatContext] = None,
) -> ChatReply:
    if ctx.skip_llm_setup or ctx.llm is None:
        raise ServiceError("AI chat is currently disabled.", status_code=503)
    history = [_to_chat_message(m) for m in messages or []]
    if not history or history[-1].role != "user" or not history[-1].content.strip():
        raise ServiceError("message required", status_code=400)

    if context is not None:
        prefix = build_filter_context(context.budget, context.collections, context.colors)
        if prefix:
            last = history[-1]
            history[-1] = last.model_copy(update={"content": prefix + last.content})

    prompt = [SystemMessage(content=build_system_prompt()), *_history_messages(history)]
    raw = await _invoke(ctx.llm, prompt, ctx)
    if ctx.debug:
        ctx.logger.info("AI raw reply: %s", raw)

    payload = parse_assistant_payload(extract_json(raw))
    message = strip_markdown(payload.message or "Done.")

    suggested = payload.suggested_lines
    lines = expand_suggestion_lines(suggested) if suggested else []
    unresolved = unresolved_products(suggested)
    if suggested and not lines:
        message = f"{message}\n\n{unknown_products_notice(unresolved)}"
    if unresolved:
        ctx.logger.info("Dropped unknown products from AI quote: %s", ", ".join(unresolved))

    return ChatReply(
        message=message,
        lines=lines or None,
        quote=calculate_quote(lines) if lines else None,
        options=payload.options,
        unresolved=unresolved,
    )


async def recommend_for_budget(
    *,
    budget: float,
    lines: Sequence[OrderLine],
    ctx: QuoteServiceContext,
) -> Dict[str, Any]:
    llm = ctx.recommendation_llm or ctx.llm
    if ctx.skip_llm_setup or llm is None:
        raise ServiceError("AI recommendations are currently disabled.", status_code=503)
    if not budget or budget <= 0:
        raise ServiceError("budget must be positive", status_code=400)

    quote = calculate_quote(lines)
    remaining = budget - quote.total
    if remaining <= 0:
        return {
            "message": f"The order already uses the full budget of {format_eur(budget)}.",
            "spent": quote.total,
            "remaining": 0,
        }

    prompt = BUDGET_PROMPT.format(
        budget=format_eur(budget),
        spent=format_eur(quote.total),
        remaining=format_eur(remaining),
        items=_describe_lines(quote, with_shape=True) or "empty",
    )
    raw = await _invoke(
        llm,
        [SystemMessage(content=build_recommendation_prompt()), HumanMessage(content=prompt)],
        ctx,
    )
    data = extract_json(raw)
    return {
        "message": strip_markdown(data["message"] or "No recommendations available."),
        "spent": quote.total,
        "remaining": remaining,
    }


# ---------- VAT ----------

async def validate_vat(*, vat: str, ctx: QuoteServiceContext) -> VatVerdict:
    return await ctx.vat_client.validate(vat)
