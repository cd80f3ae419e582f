"""Pydantic models shared by the quote engine, chat flow and HTTP layer.

Field names are snake_case in Python and camelCase on the wire so the builder
UI's JSON (``collectionId``, ``colorConfigs``, ``caratIdx`` ...) round-trips
unchanged.
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_WIRE = ConfigDict(alias_generator=to_camel, populate_by_name=True)
_WIRE_FROZEN = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# --- Order lines (owned by the builder, mutable) ---

class ColorConfig(BaseModel):
    model_config = _WIRE

    id: Optional[Union[int, float, str]] = None
    color_name: Optional[str] = None
    carat_idx: Optional[int] = None
    housing: Optional[str] = None
    housing_type: Optional[str] = None
    multi_attached: Optional[bool] = None
    shape: Optional[str] = None
    size: Optional[str] = None
    qty: Optional[float] = None


class OrderLine(BaseModel):
    model_config = _WIRE

    uid: Optional[Union[int, float, str]] = None
    collection_id: Optional[str] = None
    color_configs: List[ColorConfig] = Field(default_factory=list)


# --- Priced output (derived, immutable) ---

class PricedQuoteLine(BaseModel):
    model_config = _WIRE_FROZEN

    product: str
    carat: str
    housing: Optional[str] = None
    shape: Optional[str] = None
    size: Optional[str] = None
    color_name: Optional[str] = None
    qty: int
    unit_b2b: int = Field(alias="unitB2B")
    line_total: int
    retail_unit: int
    retail_total: int


class Quote(BaseModel):
    model_config = _WIRE_FROZEN

    lines: Tuple[PricedQuoteLine, ...] = ()
    subtotal: int = 0
    discount_percent: int = 0
    discount_amount: int = 0
    total: int = 0
    total_pieces: int = 0
    total_retail: int = 0
    minimum_met: bool = False
    warnings: Tuple[str, ...] = ()


# --- AI payload (validated field-by-field, never trusted as-is) ---

class QuoteOption(BaseModel):
    model_config = _WIRE

    label: str
    key: str
    choices: List[str]
    multi: int = 1


class AssistantPayload(BaseModel):
    model_config = _WIRE

    message: str = ""
    quote: Optional[Dict[str, Any]] = None
    options: Optional[List[QuoteOption]] = None

    @property
    def suggested_lines(self) -> List[Dict[str, Any]]:
        if not self.quote:
            return []
        return [line for line in self.quote.get("lines") or [] if isinstance(line, dict)]


# --- HTTP request bodies ---

class QuoteRequest(BaseModel):
    model_config = _WIRE

    lines: List[OrderLine] = Field(default_factory=list)


class ChatMessage(BaseModel):
    model_config = _WIRE

    role: Literal["user", "assistant"]
    content: str = ""
    quote: Optional[Dict[str, Any]] = None


class ChatContext(BaseModel):
    model_config = _WIRE

    budget: Optional[float] = None
    collections: List[str] = Field(default_factory=list)
    colors: List[str] = Field(default_factory=list)


class ChatRequest(BaseModel):
    model_config = _WIRE

    messages: List[ChatMessage]
    context: Optional[ChatContext] = None


class ChatReply(BaseModel):
    model_config = _WIRE

    message: str
    lines: Optional[List[OrderLine]] = None
    quote: Optional[Quote] = None
    options: Optional[List[QuoteOption]] = None
    unresolved: List[str] = Field(default_factory=list)


class RecommendationRequest(BaseModel):
    model_config = _WIRE

    budget: float = Field(..., gt=0)
    lines: List[OrderLine] = Field(default_factory=list)


# --- VAT verdicts ---

class VatVerdict(BaseModel):
    model_config = _WIRE_FROZEN

    valid: Optional[bool] = None
    status: Literal["VALID", "INVALID", "UNVERIFIED"]
    error_code: Optional[str] = None
    message_key: Optional[str] = None
    name: str = ""
    address: str = ""
    country_code: str = ""
    vat_number: str = ""
    attempts: int = 0
    cached: bool = False


class FillOrderRequest(BaseModel):
    model_config = _WIRE

    messages: List[ChatMessage] = Field(default_factory=list)
    lines: List[OrderLine] = Field(default_factory=list)
