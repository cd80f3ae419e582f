from textwrap import dedent
from typing import Dict, List

from langchain_core.prompts import PromptTemplate

from backend.store.collections import (
    COLLECTIONS,
    CORD_COLORS,
    DISCOUNT_PERCENT,
    DISCOUNT_THRESHOLD_EUR,
    HOUSING,
    MINIMUM_ORDER_EUR,
    color_names,
)

MAX_TOKENS_CAP = 4096
RECOMMENDATION_MAX_TOKENS = 1024


def create_chat_llm(
    provider: str,
    model: str,
    temperature: float = 0.2,
    max_tokens: int = 2048,
    api_key: str | None = None,
    timeout: float | None = None,
):
    provider = provider.lower()
    max_tokens = max(1, min(int(max_tokens), MAX_TOKENS_CAP))
    if provider == "anthropic":
        if not api_key:
            raise ValueError("ANTHROPIC_API_KEY is missing, set it as an environment variable.")
        from langchain_anthropic import ChatAnthropic
        return ChatAnthropic(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=timeout,
        )
    elif provider == "openai":
        if not api_key:
            raise ValueError("OPENAI_API_KEY is missing, set it as an environment variable.")
        from langchain_openai import ChatOpenAI
        return ChatOpenAI(
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            api_key=api_key,
            timeout=timeout,
        )
    else:
        raise ValueError(f"Unsupported MODEL_PROVIDER: {provider}")


# ---------- Catalog sections (rendered from backend.store.collections) ----------

_CORD_TITLES = {"nylon": "NYLON", "shine": "SHAPY SHINE", "silk": "SILK", "holy": "HOLY"}


def _price_lines(with_retail: bool = True) -> str:
    rows = []
    for c in COLLECTIONS:
        if with_retail:
            cells = [f"{ct}=€{b2b}/€{retail}" for ct, b2b, retail in zip(c.carats, c.prices, c.retail)]
        else:
            cells = [f"{ct}=€{b2b}" for ct, b2b in zip(c.carats, c.prices)]
        rows.append(f"{c.label}: {', '.join(cells)}")
    return "\n".join(rows)


def _color_lines() -> str:
    rows = []
    for cord, palette in CORD_COLORS.items():
        users = ",".join(c.label for c in COLLECTIONS if c.cord == cord)
        rows.append(f"{_CORD_TITLES.get(cord, cord.upper())} ({users}): {','.join(e.name for e in palette)}")
    return "\n".join(rows)


def _housing_text(tag: str) -> str:
    table = HOUSING[tag]
    if tag == "multiThree":
        return f"Attached ({', '.join(table['attached'])}) or Not Attached ({', '.join(table['notAttached'])})"
    if tag == "matchy":
        return f"Bezel ({', '.join(table['bezel'])}) OR Prong ({', '.join(table['prong'])})"
    if tag == "shapyShine":
        return (
            f"At 0.10ct only Bezel ({', '.join(table['bezel'])}). "
            f"At 0.30ct+ both Bezel and Prong ({', '.join(table['prong'])})"
        )
    return ", ".join(table)


def _housing_lines() -> str:
    rows = []
    for c in COLLECTIONS:
        rows.append(f"- {c.label}: {_housing_text(c.housing) if c.housing else 'no housing options'}")
    return "\n".join(rows)


def _grouped_lines(attr: str) -> str:
    groups: Dict[tuple, List[str]] = {}
    for c in COLLECTIONS:
        values = getattr(c, attr)
        if values:
            groups.setdefault(tuple(values), []).append(c.label)
    return "\n".join(f"- {', '.join(labels)}: {', '.join(values)}" for values, labels in groups.items())


def build_system_prompt() -> str:
    """System prompt for the quote-builder chat, rendered from the live catalog."""
    labels = ", ".join(c.label for c in COLLECTIONS)
    example_colors = ",".join(f'"{name}"' for name in color_names(COLLECTIONS[0]))
    return dedent(
        """\
        You are a B2B order advisor chatbot for LoveLab Antwerp at a trade fair.

        You are talking to a salesperson who has a client in front of them. They describe the client's needs in natural language. Build the best quote quickly.

        OUTPUT: A single raw JSON object. No markdown, no backticks, no text outside the JSON.

        LANGUAGE:
        - Reply in the language the user writes in.
        - Product names, housing labels and color names stay in English.

        RULES:
        - B2B prices only.
        - Min order: €{minimum}. Orders under €{minimum} are not accepted.
        - {discount}% discount ONLY if subtotal >= €{threshold}. Otherwise discountPercent = 0.
        - Recommended min pcs/color: CUTY/CUBIX = 3, others = 2. Allow 1 if asked.
        - Maximize carat size within budget.

        MISSING INFORMATION:
        If the user has not specified housing, size, cord colors, shape (when the collection has shapes) or carat, do NOT guess.
        Set "quote" to null, write a short intro in "message" and add an "options" array listing every missing category with all its choices, in ONE message.
        For carat choices include the B2B price, e.g. "0.10 (€34)". For colors set "multi" to the number of colors the user asked for.
        Example options: [{{"label":"Housing","key":"housing","choices":["Yellow","White","Rose"]}},{{"label":"Colors (nylon)","key":"colors","choices":[{example_colors}],"multi":3}}]

        PRODUCT NAMES:
        Each quote line's "product" MUST be exactly one of: {labels}
        Do not invent product names or variants.

        MESSAGE STYLE:
        - When building a quote: 2-3 short sentences. Mention colors, housing and size used.
        - If the quote is below €{minimum}, say how much more is needed and give 2-3 quick suggestions.
        - If the user gave a budget and the total is below it, mention the remaining budget and 2-3 next actions.

        FOLLOW-UP:
        When the user asks to add or change items, include ALL previous lines plus the new or changed ones in the quote.
        When giving advice on an existing order, never modify it: set "quote" to null and list 2-3 suggestions.

        PRICES (B2B / retail):
        {prices}

        COLORS:
        {colors}

        HOUSING:
        {housing}

        SIZES:
        {sizes}

        SHAPES:
        {shapes}

        Every quote line includes housing, housingType ("bezel"/"prong") for MATCHY FANCY and SHAPY SHINE FANCY,
        multiAttached (true/false) for MULTI THREE, shape when the collection has shapes, and size.

        JSON format when building a quote:
        {{"message":"2-3 sentences max.","quote":{{"lines":[{{"product":"CUTY","carat":"0.10","housing":"Yellow","size":"M","colors":["Black","Red","Navy Blue"],"qtyPerColor":3}}]}}}}

        JSON format when asking for missing info:
        {{"message":"Short intro.","quote":null,"options":[{{"label":"Size","key":"size","choices":["XS","S","M","L","XL"]}}]}}

        Set "quote" to null and omit "options" if just chatting or giving suggestions."""
    ).format(
        minimum=MINIMUM_ORDER_EUR,
        discount=DISCOUNT_PERCENT,
        threshold=DISCOUNT_THRESHOLD_EUR,
        example_colors=example_colors,
        labels=labels,
        prices=_price_lines(),
        colors=_color_lines(),
        housing=_housing_lines(),
        sizes=_grouped_lines("sizes"),
        shapes=_grouped_lines("shapes"),
    )


def build_recommendation_prompt() -> str:
    return dedent(
        """\
        You are a concise B2B sales advisor for LoveLab Antwerp jewellery bracelets.
        The salesperson is at a trade fair and wants quick, actionable ideas for how to spend a client's remaining budget.

        RULES:
        - Output ONLY a JSON object: {{"message":"...","quote":null}}
        - The "message" field contains 3-5 numbered suggestions, each on its own line.
        - Each suggestion: product name, carat, approximate qty and cost, under 120 characters.
        - End with a one-line total summary.
        - Plain text only: no markdown, no bold, no bullets. Use "·" as separator within a line.
        - Name real LoveLab products with the B2B prices below.

        PRICES (B2B):
        {prices}"""
    ).format(prices=_price_lines(with_retail=False))


# ---------- User-turn templates ----------

FILL_ORDER_PROMPT = PromptTemplate(
    input_variables=["items", "subtotal", "gap", "minimum"],
    template=(
        "My current order is: {items}. Total is {subtotal}. I need {gap} more to reach the "
        "{minimum} minimum. Give me 2-3 suggestions to fill the gap. Don't change my existing order."
    ),
)

COMPLEMENT_ORDER_PROMPT = PromptTemplate(
    input_variables=["items", "subtotal"],
    template=(
        "My current order is: {items}. Total is {subtotal}. Suggest 2-3 additions to complement "
        "what I have. Don't change my existing order."
    ),
)

BUDGET_PROMPT = PromptTemplate(
    input_variables=["budget", "spent", "remaining", "items"],
    template=dedent(
        """\
        The client has a budget of {budget}. They have already built an order worth {spent} (after any discounts). They have {remaining} remaining.

        Current order: {items}

        IMPORTANT: Do NOT change or remove anything from the current order. Only suggest what to ADD on top of it.
        Based on what they already like (their chosen collections, colors, carat sizes), suggest 3-5 smart additions they could make with the remaining {remaining}. Consider:
        - Adding more pieces of collections they already chose
        - Trying a new complementary collection
        - Upgrading carat size on an existing line
        - Adding new colors of something they already have

        For each suggestion, give a short one-line description and the approximate cost.
        Keep it very concise, this is for a salesperson at a trade fair."""
    ),
)
