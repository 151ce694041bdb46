from __future__ import annotations

import pytest

from conftest import StubCompletion
from omnicart_assistant.composer import (
    AnswerComposer,
    build_actions,
    build_system_prompt,
    compose_product_reply,
    sanitize_reply,
    truncate_words,
)
from omnicart_assistant.config import CONTEXT_PLACEHOLDER, SYSTEM_PROMPT_TEMPLATE, AssistantPolicy
from omnicart_assistant.errors import CompletionError, ModelUnavailableError
from omnicart_assistant.knowledge import EmbeddingRecord
from omnicart_assistant.query import parse_query
from omnicart_assistant.retrieval import ProductSuggestion, RetrievalResult, ShopSuggestion


def _speaker(**overrides) -> ProductSuggestion:
    fields = {
        "id": "p-speaker",
        "name": "Portable Speaker",
        "url": "/products/p-speaker",
        "price": 79.5,
        "currency": "USD",
        "in_stock": True,
        "rating": 4.5,
        "shop_id": "s-audio",
        "shop_name": "Audio Hub",
        "shop_url": "/shops/s-audio",
    }
    fields.update(overrides)
    return ProductSuggestion(**fields)


def _record(entry_id: str, text: str, kind: str = "shop") -> EmbeddingRecord:
    return EmbeddingRecord(id=entry_id, type=kind, metadata={}, text=text, hash="h", embedding=[1.0])


def test_truncate_words_caps_word_count():
    text = " ".join(f"w{i}" for i in range(80))
    assert len(truncate_words(text, 60).split()) == 60
    assert truncate_words("short reply", 60) == "short reply"


def test_sanitize_reply_strips_markup_links_and_sources():
    raw = (
        "**Portable Speaker** is great. See [the page](/products/p1) or https://omnicart.example/p1 [1]\n\n"
        "Sources: product:p1"
    )
    assert sanitize_reply(raw) == "Portable Speaker is great. See or"


def test_sanitize_reply_enforces_word_cap():
    raw = " ".join(["word"] * 100)
    assert len(sanitize_reply(raw).split()) == 60
    assert sanitize_reply("") == ""


def test_compose_product_reply_describes_primary_and_companions():
    products = [
        _speaker(),
        _speaker(id="p-phones", name="Wireless Headphones", price=129.99),
        _speaker(id="p-watch", name="Smartwatch Pro", price=199.0),
        _speaker(id="p-cam", name="4K Action Cam", price=249.0),
    ]
    reply = compose_product_reply(products, "audio hub")

    assert reply == (
        "Portable Speaker from Audio Hub is priced at USD 79.5 and is currently in stock. "
        "It carries an average rating of 4.5. "
        "You can also consider Wireless Headphones (USD 129.99) or Smartwatch Pro (USD 199)."
    )


def test_compose_product_reply_handles_missing_fields():
    reply = compose_product_reply(
        [_speaker(shop_name=None, price=None, rating=0, in_stock=False)],
        "audio hub",
    )
    assert reply == (
        "Portable Speaker is priced at a listed price and is currently unavailable. "
        "This result matches your requested shop search."
    )


def test_compose_product_reply_respects_word_cap():
    long_name = " ".join(["Deluxe"] * 40)
    products = [_speaker(name=long_name), _speaker(id="p2", name=long_name)]
    assert len(compose_product_reply(products, None).split()) <= 60


def test_compose_product_reply_keeps_stored_price_precision():
    reply = compose_product_reply([_speaker(price=19.999), _speaker(id="p2", name="Smartwatch Pro", price=199.0)], None)

    assert reply.startswith("Portable Speaker from Audio Hub is priced at USD 19.999 ")
    assert "Smartwatch Pro (USD 199)" in reply


def test_product_suggestion_serialises_client_keys():
    assert _speaker().to_dict() == {
        "id": "p-speaker",
        "name": "Portable Speaker",
        "url": "/products/p-speaker",
        "price": 79.5,
        "currency": "USD",
        "image": None,
        "inStock": True,
        "rating": 4.5,
        "shopId": "s-audio",
        "shopName": "Audio Hub",
        "shopUrl": "/shops/s-audio",
    }


def test_build_system_prompt_inserts_context_and_options():
    prompt = build_system_prompt(
        SYSTEM_PROMPT_TEMPLATE,
        [_record("shop:s-audio", "Shop Name: Audio Hub")],
        [_speaker()],
    )
    assert CONTEXT_PLACEHOLDER not in prompt
    assert "Shop Insight:\nShop Name: Audio Hub" in prompt
    assert "Product 1: Portable Speaker (USD 79.5)" in prompt


def test_build_system_prompt_without_context():
    prompt = build_system_prompt(SYSTEM_PROMPT_TEMPLATE, [])
    assert "No relevant context was retrieved from the knowledge base." in prompt
    assert "Candidate options" not in prompt


def test_build_actions_links_products_and_shops_without_duplicates():
    products = [_speaker(), _speaker(id="p-phones", name="Wireless Headphones", url="/products/p-phones")]
    shops = [ShopSuggestion(id="s-audio", name="Audio Hub", url="/shops/s-audio")]

    actions = build_actions("list_products_by_shop", products, shops)
    labels = [action["label"] for action in actions]

    assert labels == [
        "View Portable Speaker",
        "Visit Audio Hub for Portable Speaker",
        "View Wireless Headphones",
        "Visit Audio Hub for Wireless Headphones",
        "Visit Audio Hub",
    ]
    assert actions[0] == {
        "type": "navigate",
        "label": "View Portable Speaker",
        "href": "/products/p-speaker",
        "data": {"productId": "p-speaker"},
    }
    assert actions[1]["data"] == {"shopId": "s-audio"}
    assert actions[-1]["data"] == {"shopId": "s-audio"}


@pytest.mark.parametrize(
    ("intent", "label", "href"),
    [
        ("find_products", "Browse all products", "/products"),
        ("find_shops", "Browse featured shops", "/shop"),
        ("order_status", "View my orders", "/orders"),
        ("update_profile", "Update profile", "/profile"),
        ("contact_support", "Contact support", "/support"),
        ("return_policy", "Return & refund policy", "/support/returns"),
    ],
)
def test_build_actions_intent_defaults(intent, label, href):
    assert build_actions(intent, [], []) == [{"type": "navigate", "label": label, "href": href}]


def test_build_actions_general_without_results_is_empty():
    assert build_actions("general", [], []) == []


def test_fallback_chain_skips_unavailable_models():
    completion = StubCompletion(reply="ok")
    completion.failures["command-r-08-2024"] = ModelUnavailableError("gone", code="model_not_found")
    composer = AnswerComposer(completion, AssistantPolicy())

    raw, model = composer.complete_with_fallback("system", "hello")

    assert (raw, model) == ("ok", "command-r-plus-08-2024")
    assert [call["model"] for call in completion.calls] == ["command-r-08-2024", "command-r-plus-08-2024"]


def test_fallback_chain_stops_on_other_errors():
    completion = StubCompletion()
    completion.failures["command-r-08-2024"] = CompletionError("rate limited", provider_message="Too many requests")
    composer = AnswerComposer(completion, AssistantPolicy())

    with pytest.raises(CompletionError) as excinfo:
        composer.complete_with_fallback("system", "hello")

    assert excinfo.value.provider_message == "Too many requests"
    assert len(completion.calls) == 1


def test_fallback_chain_exhaustion_raises_completion_error():
    completion = StubCompletion()
    policy = AssistantPolicy(chat_model="custom-model", fallback_models=("custom-model", "backup-model"))
    for model in policy.model_chain():
        completion.failures[model] = ModelUnavailableError("gone")
    composer = AnswerComposer(completion, policy)

    with pytest.raises(CompletionError, match="No available chat model"):
        composer.complete_with_fallback("system", "hello")
    assert [call["model"] for call in completion.calls] == ["custom-model", "backup-model"]


def test_compose_uses_deterministic_reply_when_products_exist():
    completion = StubCompletion()
    composer = AnswerComposer(completion, AssistantPolicy())
    message = "show me speakers from Audio Hub shop"
    retrieval = RetrievalResult(
        products=[_speaker()],
        shops=[ShopSuggestion(id="s-audio", name="Audio Hub", url="/shops/s-audio")],
    )

    answer = composer.compose(message, parse_query(message), retrieval, "list_products_by_shop")

    assert completion.calls == []
    assert answer.sources == []
    assert answer.reply.startswith("Portable Speaker from Audio Hub is priced at USD 79.5")


def test_compose_calls_model_and_sanitizes_reply():
    completion = StubCompletion(reply="**Audio Hub** is run by Ava Carter. " + " ".join(["more"] * 80))
    composer = AnswerComposer(completion, AssistantPolicy())
    message = "who runs the audio hub shop"
    record = _record("shop:s-audio", "Shop Name: Audio Hub\nOwner: Ava Carter")
    retrieval = RetrievalResult(context_entries=[record])

    answer = composer.compose(message, parse_query(message), retrieval, "find_shops")

    assert answer.reply.startswith("Audio Hub is run by Ava Carter.")
    assert len(answer.reply.split()) == 60
    assert answer.sources == ["shop:s-audio"]
    assert answer.model == "command-r-08-2024"
    assert answer.actions == [{"type": "navigate", "label": "Browse featured shops", "href": "/shop"}]
    assert "Owner: Ava Carter" in completion.calls[0]["system_prompt"]
    assert completion.calls[0]["user_message"] == message
