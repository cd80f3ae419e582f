from __future__ import annotations

import asyncio
import json
import logging
from types import SimpleNamespace

import httpx
import pytest
from langchain_core.messages import AIMessage, HumanMessage, SystemMessage

from backend.app.models import ChatContext, ChatMessage, ColorConfig, OrderLine
from backend.app.services.quote_service import (
    QuoteServiceContext,
    ServiceError,
    build_fill_order_message,
    build_filter_context,
    chat_turn,
    housing_for,
    missing_for_lines,
    price_lines,
    recommend_for_budget,
    validate_vat,
)
from backend.app.services.vat_client import VatCache, VatClient


class FakeLLM:
    def __init__(self, response):
        self.response = response
        self.invocations: list = []

    async def ainvoke(self, messages):
        self.invocations.append(messages)
        return SimpleNamespace(content=self.response)


class SlowLLM(FakeLLM):
    async def ainvoke(self, messages):
        await asyncio.sleep(1)
        return SimpleNamespace(content=self.response)


class BrokenLLM(FakeLLM):
    async def ainvoke(self, messages):
        raise RuntimeError("upstream 529 overloaded")


def _make_ctx(llm=None, **overrides) -> QuoteServiceContext:
    base = dict(
        llm=llm,
        vat_client=VatClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"isValid": True})),
            cache=VatCache(),
        ),
        logger=logging.getLogger("lovelab-test"),
    )
    base.update(overrides)
    return QuoteServiceContext(**base)


def _trade_fair_lines():
    return [
        OrderLine(
            uid=1,
            collection_id="CUTY",
            color_configs=[
                ColorConfig(id=1, color_name="Black", carat_idx=2, housing="White", qty=3),
                ColorConfig(id=2, color_name="Red", carat_idx=2, housing="White", qty=2),
            ],
        ),
        OrderLine(
            uid=2,
            collection_id="CUBIX",
            color_configs=[ColorConfig(id=3, color_name="Navy", carat_idx=1, housing="White Gold", qty=4)],
        ),
    ]


def _user(text: str) -> dict:
    return {"role": "user", "content": text}


AI_QUOTE_REPLY = """Great picks! Here is the order:
```json
{"message": "**CUTY** in two colors.", "quote": {"lines": [
  {"product": "CUTY", "carat": "0.20", "housing": "White", "colors": ["Black", "Red"], "qtyPerColor": 3, "lineTotal": 1, "unitB2B": 1},
  {"product": "Tennis necklace", "colors": ["Gold"], "qty": 2}
], "subtotal": 5, "total": 5}}
```"""


def test_chat_turn_reprices_the_suggested_order():
    llm = FakeLLM(AI_QUOTE_REPLY)
    reply = asyncio.run(chat_turn(messages=[_user("2 colors of CUTY please")], ctx=_make_ctx(llm)))
    assert reply.message == "CUTY in two colors."
    assert [ln.collection_id for ln in reply.lines] == ["CUTY"]
    assert reply.quote.subtotal == 390
    assert [pl.unit_b2b for pl in reply.quote.lines] == [65, 65]
    assert reply.unresolved == ["Tennis necklace"]


def test_chat_turn_sends_system_prompt_and_history():
    llm = FakeLLM('{"message": "Sure", "quote": null}')
    history = [
        _user("Hi"),
        {"role": "assistant", "content": "Hello!", "quote": {"lines": []}},
        _user("Show me CUTY"),
    ]
    asyncio.run(chat_turn(messages=history, ctx=_make_ctx(llm)))
    sent = llm.invocations[0]
    assert isinstance(sent[0], SystemMessage)
    assert "CUTY" in sent[0].content
    assert [type(m) for m in sent[1:]] == [HumanMessage, AIMessage, HumanMessage]
    assert json.loads(sent[2].content) == {"message": "Hello!", "quote": {"lines": []}}
    assert sent[-1].content == "Show me CUTY"


def test_chat_turn_prefixes_filter_context():
    llm = FakeLLM('{"message": "ok"}')
    context = ChatContext(budget=2000, collections=["CUTY"], colors=["Black"])
    asyncio.run(chat_turn(messages=[_user("ideas?")], ctx=_make_ctx(llm), context=context))
    assert llm.invocations[0][-1].content == (
        "[Context: Budget: €2.000. Collections: CUTY. Colors: Black.]\nideas?"
    )


def test_build_filter_context_uses_labels_and_skips_empty():
    assert build_filter_context() == ""
    assert build_filter_context(collection_ids=["M3", "custom"]) == "[Context: Collections: MULTI THREE, custom.]\n"


def test_chat_turn_accepts_content_blocks():
    llm = FakeLLM([{"type": "text", "text": '{"message": "Hel'}, {"type": "text", "text": 'lo"}'}])
    reply = asyncio.run(chat_turn(messages=[ChatMessage(role="user", content="hi")], ctx=_make_ctx(llm)))
    assert reply.message == "Hello"
    assert reply.quote is None
    assert reply.lines is None


def test_chat_turn_plain_text_reply():
    llm = FakeLLM("Our bestseller is CUTY.")
    reply = asyncio.run(chat_turn(messages=[_user("bestseller?")], ctx=_make_ctx(llm)))
    assert reply.message == "Our bestseller is CUTY."
    assert reply.quote is None


def test_chat_turn_passes_options_through():
    llm = FakeLLM(
        json.dumps(
            {
                "message": "Which housing?",
                "quote": None,
                "options": [{"label": "Housing", "key": "housing", "choices": ["Yellow", "White", "Rose"]}],
            }
        )
    )
    reply = asyncio.run(chat_turn(messages=[_user("CUTY")], ctx=_make_ctx(llm)))
    assert reply.options[0].choices == ["Yellow", "White", "Rose"]


def test_chat_turn_only_unknown_products_appends_notice():
    raw = json.dumps({"message": "Here you go", "quote": {"lines": [{"product": "Tennis necklace", "qty": 2}]}})
    reply = asyncio.run(chat_turn(messages=[_user("tennis?")], ctx=_make_ctx(FakeLLM(raw))))
    assert reply.quote is None
    assert reply.lines is None
    assert reply.message.startswith("Here you go\n\nThese suggested products are not in the LoveLab catalog:")
    assert "- Tennis necklace" in reply.message


def test_chat_turn_without_llm_is_unavailable():
    with pytest.raises(ServiceError) as exc:
        asyncio.run(chat_turn(messages=[_user("hi")], ctx=_make_ctx(None)))
    assert exc.value.status_code == 503


def test_skip_llm_setup_disables_the_configured_model():
    llm = FakeLLM(AI_QUOTE_REPLY)
    ctx = _make_ctx(llm, skip_llm_setup=True)
    with pytest.raises(ServiceError) as exc:
        asyncio.run(chat_turn(messages=[_user("hi")], ctx=ctx))
    assert exc.value.status_code == 503
    with pytest.raises(ServiceError) as exc:
        asyncio.run(recommend_for_budget(budget=1000, lines=[], ctx=ctx))
    assert exc.value.status_code == 503
    assert llm.invocations == []


@pytest.mark.parametrize(
    "messages",
    [[], [_user("   ")], [{"role": "assistant", "content": "hi"}]],
)
def test_chat_turn_requires_a_user_message(messages):
    with pytest.raises(ServiceError) as exc:
        asyncio.run(chat_turn(messages=messages, ctx=_make_ctx(FakeLLM("x"))))
    assert exc.value.status_code == 400
    assert exc.value.message == "message required"


def test_chat_turn_timeout_maps_to_504():
    ctx = _make_ctx(SlowLLM("x"), timeout_seconds=0.01)
    with pytest.raises(ServiceError) as exc:
        asyncio.run(chat_turn(messages=[_user("hi")], ctx=ctx))
    assert exc.value.status_code == 504
    assert "timed out" in exc.value.message


def test_chat_turn_provider_error_maps_to_502():
    with pytest.raises(ServiceError) as exc:
        asyncio.run(chat_turn(messages=[_user("hi")], ctx=_make_ctx(BrokenLLM("x"))))
    assert exc.value.status_code == 502
    assert exc.value.message.startswith("Sorry, the assistant could not answer right now.")
    assert "upstream 529 overloaded" in exc.value.message


def test_chat_turn_empty_reply_maps_to_502():
    with pytest.raises(ServiceError) as exc:
        asyncio.run(chat_turn(messages=[_user("hi")], ctx=_make_ctx(FakeLLM("   "))))
    assert exc.value.status_code == 502
    assert "Empty response from AI" in exc.value.message


def test_fill_order_message_names_the_gap():
    message = build_fill_order_message(price_lines(lines=_trade_fair_lines()))
    assert "CUTY 0.20ct Black (White) ×3" in message
    assert "Total is €461." in message
    assert "I need €339 more to reach the €800 minimum" in message


def test_fill_order_message_above_minimum_asks_for_complements():
    lines = [OrderLine(collection_id="CUTY", color_configs=[ColorConfig(color_name="Black", carat_idx=0, qty=40)])]
    message = build_fill_order_message(price_lines(lines=lines))
    assert "I need" not in message
    assert "complement" in message


def test_recommend_for_budget_reports_remaining():
    llm = FakeLLM('{"message": "- Add **3 CUTY** in Red (€195)"}')
    result = asyncio.run(recommend_for_budget(budget=2000, lines=_trade_fair_lines(), ctx=_make_ctx(llm)))
    assert result == {"message": "· Add 3 CUTY in Red (€195)", "spent": 461, "remaining": 1539}
    prompt = llm.invocations[0][-1].content
    assert "€1.539" in prompt
    assert "budget of €2.000" in prompt


def test_recommend_for_budget_prefers_dedicated_llm():
    chat_llm, rec_llm = FakeLLM("chat"), FakeLLM("Try M3 in Navy.")
    ctx = _make_ctx(chat_llm, recommendation_llm=rec_llm)
    result = asyncio.run(recommend_for_budget(budget=1000, lines=[], ctx=ctx))
    assert result["message"] == "Try M3 in Navy."
    assert chat_llm.invocations == []


def test_recommend_for_budget_exhausted_skips_the_model():
    llm = FakeLLM("unused")
    result = asyncio.run(recommend_for_budget(budget=400, lines=_trade_fair_lines(), ctx=_make_ctx(llm)))
    assert result["remaining"] == 0
    assert result["spent"] == 461
    assert llm.invocations == []


def test_recommend_for_budget_validation():
    with pytest.raises(ServiceError) as exc:
        asyncio.run(recommend_for_budget(budget=0, lines=[], ctx=_make_ctx(FakeLLM("x"))))
    assert exc.value.status_code == 400
    with pytest.raises(ServiceError) as exc:
        asyncio.run(recommend_for_budget(budget=100, lines=[], ctx=_make_ctx(None)))
    assert exc.value.status_code == 503


def test_missing_for_lines_lists_only_incomplete_lines():
    lines = [
        OrderLine(uid=1, collection_id="CUTY", color_configs=[ColorConfig(color_name="Black", carat_idx=0)]),
        OrderLine(
            uid=2,
            collection_id="CUTY",
            color_configs=[ColorConfig(color_name="Black", carat_idx=0, housing="White", size="M")],
        ),
    ]
    assert missing_for_lines(lines=lines) == [
        {"uid": 1, "collectionId": "CUTY", "missing": ["housing (1 color)", "size (1 color)"]}
    ]


def test_validate_vat_delegates_to_client():
    verdict = asyncio.run(validate_vat(vat="BE0123456789", ctx=_make_ctx()))
    assert verdict.status == "VALID"
    assert verdict.country_code == "BE"


def test_housing_for_standard_collection():
    assert housing_for(collection_id="CUTY") == {
        "collectionId": "CUTY",
        "typeChoices": [],
        "options": ["Yellow", "White", "Rose"],
        "needsType": False,
        "needsAttached": False,
        "bezelOnly": False,
    }


def test_housing_for_follows_selections():
    shine = housing_for(collection_id="SSF", carats=["0.10"])
    assert shine["bezelOnly"] is True
    assert shine["typeChoices"] == ["bezel"]
    matchy = housing_for(collection_id="MF", housing_type="prong")
    assert matchy["options"] == ["White", "Yellow"]
    assert housing_for(collection_id="M3")["needsAttached"] is True
    assert "WYP" not in housing_for(collection_id="M3", multi_attached=True)["options"]


def test_housing_for_unknown_collection():
    with pytest.raises(ServiceError) as exc:
        housing_for(collection_id="NOPE")
    assert exc.value.status_code == 404
