import json, re
from typing import Any, Dict, List, Optional

from backend.app.models import AssistantPayload, QuoteOption

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*\n?([\s\S]*?)```")
_TRAILING_FENCES = re.compile(r"```(?:json)?[\s\S]*```")


def clean_json_string(s: str) -> str:
    s = re.sub(r"```json\s*", "", s)
    s = re.sub(r"```\s*", "", s)
    return s.strip()


def _loads_object(s: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(s)
    except (ValueError, RecursionError):
        return None
    return data if isinstance(data, dict) else None


def _outer_object(s: str) -> Optional[str]:
    """Substring from the first ``{`` to its matching ``}``, ignoring braces inside strings."""
    start = s.find("{")
    if start == -1:
        return None
    depth = 0
    in_string = False
    escape = False
    for i in range(start, len(s)):
        ch = s[i]
        if escape:
            escape = False
            continue
        if ch == "\\" and in_string:
            escape = True
            continue
        if ch == '"':
            in_string = not in_string
            continue
        if in_string:
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return s[start:i + 1]
    return None


def _fallback_message(trimmed: str) -> str:
    msg = _TRAILING_FENCES.sub("", trimmed).strip()
    cut = msg.find("\n{")
    if cut != -1:
        msg = msg[:cut].strip()
    return msg or trimmed


def _with_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(data)
    if not isinstance(out.get("message"), str):
        out["message"] = ""
    out.setdefault("quote", None)
    return out


def extract_json(raw: Any) -> Dict[str, Any]:
    """Pull the JSON object out of a model reply.

    Tries, in order: the whole text, the first fenced block, the first
    balanced ``{...}``, the text with every fence marker removed. When all
    fail the reply text itself becomes the message and ``quote`` is None.
    Never raises.
    """
    trimmed = raw.strip() if isinstance(raw, str) else ""

    data = _loads_object(trimmed)
    if data is None:
        match = _FENCED_BLOCK.search(trimmed)
        if match:
            data = _loads_object(match.group(1).strip())
    if data is None:
        candidate = _outer_object(trimmed)
        if candidate is not None:
            data = _loads_object(candidate)
    if data is None:
        data = _loads_object(clean_json_string(trimmed))
    if data is None:
        return {"message": _fallback_message(trimmed), "quote": None}
    return _with_defaults(data)


def strip_markdown(text: str) -> str:
    text = re.sub(r"\*\*(.+?)\*\*", r"\1", text, flags=re.S)
    text = re.sub(r"\*(.+?)\*", r"\1", text, flags=re.S)
    text = re.sub(r"^#+\s*", "", text, flags=re.M)
    text = re.sub(r"^[-•]\s*", "· ", text, flags=re.M)
    return re.sub(r"`(.+?)`", r"\1", text)


def _parse_options(raw: Any) -> Optional[List[QuoteOption]]:
    if not isinstance(raw, list):
        return None
    out: List[QuoteOption] = []
    for opt in raw:
        if not isinstance(opt, dict):
            continue
        label, key, choices = opt.get("label"), opt.get("key"), opt.get("choices")
        if not isinstance(label, str) or not isinstance(key, str):
            continue
        if not isinstance(choices, list) or not all(isinstance(c, str) for c in choices):
            continue
        multi = opt.get("multi")
        if not isinstance(multi, int) or isinstance(multi, bool) or multi < 1:
            multi = 1
        out.append(QuoteOption(label=label, key=key, choices=choices, multi=multi))
    return out or None


def parse_assistant_payload(data: Any) -> AssistantPayload:
    """Validate an extracted reply field by field; anything malformed is dropped."""
    if not isinstance(data, dict):
        return AssistantPayload()
    message = data.get("message") if isinstance(data.get("message"), str) else ""
    quote = data.get("quote")
    if not (
        isinstance(quote, dict)
        and isinstance(quote.get("lines"), list)
        and all(isinstance(line, dict) for line in quote["lines"])
    ):
        quote = None
    return AssistantPayload(message=message, quote=quote, options=_parse_options(data.get("options")))


def format_eur(amount: float) -> str:
    """German-style euro amount: ``€1.600``, ``€12,50``."""
    if float(amount).is_integer():
        body = f"{int(amount):,}".replace(",", ".")
    else:
        body = f"{amount:,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"€{body}"
