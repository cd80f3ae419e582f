"""EU VAT number validation against the VIES registry.

Every lookup ends in a typed ``VatVerdict``: ``VALID`` and ``INVALID`` only
when the registry answered unambiguously, ``UNVERIFIED`` for everything else
(network trouble, busy member states, odd payloads). Callers never need to
handle exceptions from this module.
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import math
import random
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import httpx

from backend.app.models import VatVerdict

logger = logging.getLogger("lovelab.vat")

DEFAULT_REGISTRY_URL = "https://ec.europa.eu/taxation_customs/vies/rest-api/ms/{country}/vat/{number}"

EU_COUNTRIES: Dict[str, str] = {
    "AT": "Austria",
    "BE": "Belgium",
    "BG": "Bulgaria",
    "CY": "Cyprus",
    "CZ": "Czech Republic",
    "DE": "Germany",
    "DK": "Denmark",
    "EE": "Estonia",
    "EL": "Greece",
    "ES": "Spain",
    "FI": "Finland",
    "FR": "France",
    "HR": "Croatia",
    "HU": "Hungary",
    "IE": "Ireland",
    "IT": "Italy",
    "LT": "Lithuania",
    "LU": "Luxembourg",
    "LV": "Latvia",
    "MT": "Malta",
    "NL": "Netherlands",
    "PL": "Poland",
    "PT": "Portugal",
    "RO": "Romania",
    "SE": "Sweden",
    "SI": "Slovenia",
    "SK": "Slovakia",
    "XI": "Northern Ireland",
}

# ISO code users type -> code VIES expects
COUNTRY_CODE_ALIASES = {"GR": "EL"}

COUNTRY_NAME_ALIASES = {
    "CZECHIA": "CZ",
    "CZECH REPUBLIC": "CZ",
    "GREECE": "EL",
    "NORTHERN IRELAND": "XI",
}

RETRYABLE_CODES = frozenset(
    {
        "MS_MAX_CONCURRENT_REQ",
        "MS_MAX_CONCURRENT_REQ_TIME",
        "MS_UNAVAILABLE",
        "SERVICE_UNAVAILABLE",
        "TIMEOUT",
        "GLOBAL_MAX_CONCURRENT_REQ",
        "GLOBAL_MAX_CONCURRENT_REQ_TIME",
        "HTTP_429",
        "HTTP_503",
        "HTTP_504",
        "NETWORK_ERROR",
        "UNEXPECTED_RESPONSE",
    }
)

_TRANSIENT_STATUSES = (429, 503, 504)
_PLACEHOLDER = "---"


def parse_vat(text: Any) -> Optional[Tuple[str, str]]:
    """Split ``"BE 0123.456.789"`` into ``("BE", "0123456789")``; None if no EU prefix."""

    if not text or not isinstance(text, str):
        return None
    cleaned = "".join(ch for ch in text if not ch.isspace() and ch not in ".-").upper()
    if len(cleaned) < 4:
        return None
    country = COUNTRY_CODE_ALIASES.get(cleaned[:2], cleaned[:2])
    if country not in EU_COUNTRIES:
        return None
    return country, cleaned[2:]


def guess_country_code(text: Any) -> Optional[str]:
    """Country code from a code, a VAT number or a country name."""

    if not text or not isinstance(text, str):
        return None
    upper = text.strip().upper()
    if upper in EU_COUNTRIES:
        return upper
    if upper in COUNTRY_CODE_ALIASES:
        return COUNTRY_CODE_ALIASES[upper]
    parsed = parse_vat(text)
    if parsed:
        return parsed[0]
    if upper in COUNTRY_NAME_ALIASES:
        return COUNTRY_NAME_ALIASES[upper]
    for code, name in EU_COUNTRIES.items():
        if name.upper() == upper:
            return code
    return None


def is_retryable(error_code: Optional[str]) -> bool:
    return bool(error_code) and error_code in RETRYABLE_CODES


def message_key_for(status: str, error_code: Optional[str]) -> Optional[str]:
    """UI message key for a verdict; None for a confirmed valid number."""

    if status == "VALID":
        return None
    if status == "INVALID":
        return "vat.invalidFormat" if error_code == "INVALID_FORMAT" else "vat.numberNotFound"
    code = str(error_code or "")
    if code in ("TIMEOUT", "HTTP_504"):
        return "vat.unverified.timeout"
    if code in ("MS_UNAVAILABLE", "SERVICE_UNAVAILABLE", "HTTP_503"):
        return "vat.unverified.unavailable"
    if "MAX_CONCURRENT_REQ" in code or code == "HTTP_429":
        return "vat.unverified.busy"
    return "vat.unverified.generic"


@dataclass(frozen=True)
class RegistryResult:
    result: str
    error_code: Optional[str] = None
    name: str = ""
    address: str = ""
    vat_number: str = ""


def _clean(value: Any) -> str:
    if value is None:
        return ""
    text = str(value).strip()
    return "" if text == _PLACEHOLDER else text


def _registry_error(data: Dict[str, Any]) -> Optional[str]:
    wrappers = data.get("errorWrappers")
    if isinstance(wrappers, list):
        for wrapper in wrappers:
            if isinstance(wrapper, dict) and wrapper.get("error"):
                return str(wrapper["error"])
    user_error = data.get("userError")
    if isinstance(user_error, str) and user_error and user_error not in ("VALID", "INVALID"):
        return user_error
    return None


def classify_registry_response(status_code: int, body: Any) -> RegistryResult:
    """Turn one registry HTTP response into a ``RegistryResult``.

    An explicit registry error code always beats the ``isValid`` flag, and a
    payload whose status and flag disagree is never reported as a verdict.
    """

    if status_code in _TRANSIENT_STATUSES:
        return RegistryResult("UNVERIFIED", f"HTTP_{status_code}")

    data = body
    if isinstance(body, (bytes, str)):
        try:
            data = json.loads(body)
        except ValueError:
            data = None
    if not isinstance(data, dict):
        code = f"HTTP_{status_code}" if status_code >= 400 else "UNEXPECTED_RESPONSE"
        return RegistryResult("UNVERIFIED", code)

    error_code = _registry_error(data)
    if error_code:
        return RegistryResult("UNVERIFIED", error_code)

    details = {
        "name": _clean(data.get("name")),
        "address": _clean(data.get("address")),
        "vat_number": _clean(data.get("vatNumber")),
    }

    is_valid = data.get("isValid", data.get("valid"))
    result = data.get("result")
    if isinstance(result, str) and status_code < 400:
        envelope_code = _clean(data.get("errorCode"))
        if envelope_code:
            return RegistryResult("UNVERIFIED", envelope_code)
        if result not in ("VALID", "INVALID"):
            return RegistryResult("UNVERIFIED", "UNVERIFIED")
        if isinstance(is_valid, bool) and is_valid != (result == "VALID"):
            return RegistryResult("UNVERIFIED", "AMBIGUOUS_RESPONSE")
        return RegistryResult(result, None, **details)

    if status_code >= 400:
        return RegistryResult("UNVERIFIED", f"HTTP_{status_code}")

    if not isinstance(is_valid, bool):
        return RegistryResult("UNVERIFIED", "UNEXPECTED_RESPONSE")
    user_error = data.get("userError")
    if (user_error == "VALID" and not is_valid) or (user_error == "INVALID" and is_valid):
        return RegistryResult("UNVERIFIED", "AMBIGUOUS_RESPONSE")
    return RegistryResult("VALID" if is_valid else "INVALID", None, **details)


# --- Retry policy ---

@dataclass(frozen=True)
class BackoffPolicy:
    max_attempts: int = 3
    base_delay: float = 1.5
    jitter: float = 0.2
    max_delay: float = 30.0

    def delay_for(
        self,
        retry_index: int,
        rng: Callable[[], float] = random.random,
        retry_after: Optional[float] = None,
    ) -> float:
        """Delay before retry number *retry_index* (0-based) in seconds."""
        delay = self.base_delay * (2 ** retry_index)
        if retry_after is not None and retry_after > delay:
            delay = retry_after
        factor = 1 - self.jitter + rng() * 2 * self.jitter
        return min(delay * factor, self.max_delay)


class RetryPhase(enum.Enum):
    ATTEMPTING = "attempting"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    GAVE_UP = "gave_up"


@dataclass
class RetryMachine:
    """Attempt bookkeeping for one VAT lookup.

    ``record`` is fed the outcome of each attempt and answers with the delay
    before the next one, or None once the lookup is settled.
    """

    policy: BackoffPolicy = field(default_factory=BackoffPolicy)
    rng: Callable[[], float] = random.random
    phase: RetryPhase = RetryPhase.ATTEMPTING
    attempts: int = 0
    delays: List[float] = field(default_factory=list)
    last: Optional[RegistryResult] = None

    @property
    def done(self) -> bool:
        return self.phase in (RetryPhase.SUCCEEDED, RetryPhase.GAVE_UP)

    def record(self, result: RegistryResult, retry_after: Optional[float] = None) -> Optional[float]:
        if self.done:
            raise RuntimeError("retry machine already finished")
        self.attempts += 1
        self.last = result
        if result.result in ("VALID", "INVALID"):
            self.phase = RetryPhase.SUCCEEDED
            return None
        if not is_retryable(result.error_code) or self.attempts >= self.policy.max_attempts:
            self.phase = RetryPhase.GAVE_UP
            return None
        # Retry-After beyond max_delay ends the lookup
        if retry_after is not None and retry_after > self.policy.max_delay:
            self.phase = RetryPhase.GAVE_UP
            return None
        delay = self.policy.delay_for(self.attempts - 1, self.rng, retry_after)
        self.delays.append(delay)
        self.phase = RetryPhase.RETRYING
        return delay

    def resume(self) -> None:
        if self.phase is RetryPhase.RETRYING:
            self.phase = RetryPhase.ATTEMPTING


# --- Cache ---

class VatCache:
    """In-process verdict cache keyed ``"CC:NUMBER"`` with per-status TTLs."""

    def __init__(
        self,
        ttl_definitive: float = 86400.0,
        ttl_unverified: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_definitive = ttl_definitive
        self.ttl_unverified = ttl_unverified
        self._clock = clock
        self._entries: Dict[str, Tuple[float, VatVerdict]] = {}

    def get(self, key: str) -> Optional[VatVerdict]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, verdict = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return verdict

    def put(self, key: str, verdict: VatVerdict) -> None:
        ttl = self.ttl_unverified if verdict.status == "UNVERIFIED" else self.ttl_definitive
        self._entries[key] = (self._clock() + ttl, verdict)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _retry_after_seconds(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        seconds = float(value)
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


class VatClient:
    def __init__(
        self,
        registry_url: str = DEFAULT_REGISTRY_URL,
        timeout: float = 10.0,
        policy: Optional[BackoffPolicy] = None,
        cache: Optional[VatCache] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: Callable[[], float] = random.random,
    ) -> None:
        self.registry_url = registry_url
        self.timeout = timeout
        self.policy = policy or BackoffPolicy()
        self.cache = cache if cache is not None else VatCache()
        self._transport = transport
        self._sleep = sleep
        self._rng = rng

    async def _lookup(
        self, client: httpx.AsyncClient, country: str, number: str
    ) -> Tuple[RegistryResult, Optional[float]]:
        url = self.registry_url.format(country=quote(country, safe=""), number=quote(number, safe=""))
        try:
            response = await client.get(url, headers={"Accept": "application/json"})
        except httpx.TimeoutException:
            return RegistryResult("UNVERIFIED", "TIMEOUT"), None
        except httpx.RequestError as exc:
            logger.warning("VIES connection error for %s%s: %s", country, number, exc)
            return RegistryResult("UNVERIFIED", "NETWORK_ERROR"), None
        retry_after = _retry_after_seconds(response.headers.get("Retry-After"))
        return classify_registry_response(response.status_code, response.text), retry_after

    async def validate(self, vat: Any) -> VatVerdict:
        parsed = parse_vat(vat)
        if parsed is None:
            return VatVerdict(
                valid=False,
                status="INVALID",
                error_code="INVALID_FORMAT",
                message_key=message_key_for("INVALID", "INVALID_FORMAT"),
                vat_number=vat if isinstance(vat, str) else "",
            )

        country, number = parsed
        key = f"{country}:{number}"
        hit = self.cache.get(key)
        if hit is not None:
            logger.debug("VAT cache hit for %s (%s)", key, hit.status)
            return hit.model_copy(update={"cached": True})

        machine = RetryMachine(self.policy, self._rng)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            while True:
                result, retry_after = await self._lookup(client, country, number)
                delay = machine.record(result, retry_after)
                if delay is None:
                    break
                logger.warning(
                    "VIES %s for %s, retrying in %.2fs (attempt %d/%d)",
                    result.error_code,
                    key,
                    delay,
                    machine.attempts,
                    self.policy.max_attempts,
                )
                await self._sleep(delay)
                machine.resume()

        verdict = self._verdict(machine, country, number)
        if verdict.status == "UNVERIFIED":
            logger.warning(
                "VIES lookup for %s unverified after %d attempt(s) (%s)",
                key,
                machine.attempts,
                verdict.error_code,
            )
        self.cache.put(key, verdict)
        return verdict

    @staticmethod
    def _verdict(machine: RetryMachine, country: str, number: str) -> VatVerdict:
        result = machine.last or RegistryResult("UNVERIFIED", "UNVERIFIED")
        if result.result == "VALID":
            return VatVerdict(
                valid=True,
                status="VALID",
                name=result.name,
                address=result.address,
                country_code=country,
                vat_number=result.vat_number or number,
                attempts=machine.attempts,
            )
        if result.result == "INVALID":
            return VatVerdict(
                valid=False,
                status="INVALID",
                message_key=message_key_for("INVALID", None),
                name=result.name,
                address=result.address,
                country_code=country,
                vat_number=result.vat_number or number,
                attempts=machine.attempts,
            )
        error_code = result.error_code or "UNVERIFIED"
        return VatVerdict(
            valid=None,
            status="UNVERIFIED",
            error_code=error_code,
            message_key=message_key_for("UNVERIFIED", error_code),
            country_code=country,
            vat_number=number,
            attempts=machine.attempts,
        )
