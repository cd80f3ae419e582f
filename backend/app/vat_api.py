# vat_api.py
"""
EU VAT number validation endpoints.

The builder validates the client's VAT number while the salesperson keeps
working, so these endpoints always answer 200 with a typed verdict: registry
outages come back as ``UNVERIFIED`` and the UI offers a manual retry.

The service context (which carries the VAT client with its registry URL,
timeout, retry policy and cache) is set by the application entrypoint
through ``configure``.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from backend.app.models import VatVerdict
from backend.app.services.quote_service import QuoteServiceContext, validate_vat
from backend.app.services.vat_client import EU_COUNTRIES, guess_country_code

logger = logging.getLogger("lovelab.vat")

router = APIRouter(prefix="/api/vat", tags=["vat"])

_context: dict = {"instance": None}


class CountryGuessResponse(BaseModel):
    """Response model for the country lookup endpoint."""
    query: str
    country_code: Optional[str]
    country_name: Optional[str]


def configure(ctx: QuoteServiceContext) -> None:
    _context["instance"] = ctx


def get_service_context() -> QuoteServiceContext:
    ctx = _context["instance"]
    if ctx is None:
        raise HTTPException(status_code=503, detail="VAT validation is not configured.")
    return ctx


@router.get("/validate", response_model=VatVerdict)
async def validate(
    vat: str = Query(..., min_length=1, description="VAT number with country prefix, e.g. BE0123456789"),
    ctx: QuoteServiceContext = Depends(get_service_context),
):
    """
    Validate a VAT number against VIES.

    Results are cached per ``CC:NUMBER``; ``cached`` is true on a cache hit.
    """
    verdict = await validate_vat(vat=vat, ctx=ctx)
    logger.info("VAT %s -> %s (attempts=%d cached=%s)", vat, verdict.status, verdict.attempts, verdict.cached)
    return verdict


@router.get("/country", response_model=CountryGuessResponse)
async def country(q: str = Query(..., min_length=1, description="Country code, name or VAT number")):
    code = guess_country_code(q)
    return CountryGuessResponse(query=q, country_code=code, country_name=EU_COUNTRIES.get(code) if code else None)
