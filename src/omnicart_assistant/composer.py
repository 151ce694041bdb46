"""Turns retrieval results into the shopper-facing reply and navigation actions."""

from __future__ import annotations

from dataclasses import dataclass, field
import logging
import re
from typing import Any, Sequence

from omnicart_assistant.cohere_utils import CompletionProvider
from omnicart_assistant.config import CONTEXT_PLACEHOLDER, AssistantPolicy
from omnicart_assistant.corpus import format_amount
from omnicart_assistant.errors import CompletionError, ModelUnavailableError
from omnicart_assistant.knowledge import PRODUCT_KIND, EmbeddingRecord
from omnicart_assistant.query import (
    INTENT_CONTACT_SUPPORT,
    INTENT_FIND_PRODUCTS,
    INTENT_FIND_SHOPS,
    INTENT_ORDER_STATUS,
    INTENT_RETURN_POLICY,
    INTENT_UPDATE_PROFILE,
    QueryContext,
)
from omnicart_assistant.retrieval import ProductSuggestion, RetrievalResult, ShopSuggestion


_LOGGER = logging.getLogger(__name__)

NO_CONTEXT_TEXT = "No relevant context was retrieved from the knowledge base."
EMPTY_COMPLETION_REPLY = "I could not find enough information to answer that. Please try the product page."
FALLBACK_PRODUCT_REPLY = "Here are the closest matches I found for your request."

_INTENT_DEFAULT_ACTIONS: dict[str, tuple[str, str]] = {
    INTENT_ORDER_STATUS: ("View my orders", "/orders"),
    INTENT_UPDATE_PROFILE: ("Update profile", "/profile"),
    INTENT_CONTACT_SUPPORT: ("Contact support", "/support"),
    INTENT_RETURN_POLICY: ("Return & refund policy", "/support/returns"),
}

_EMPHASIS = re.compile(r"\*\*|__")
_INLINE_LINK = re.compile(r"\[[^\]]*\]\([^)]*\)")
_CITATION = re.compile(r"\[[^\]]*\]")
_RAW_URL = re.compile(r"https?://\S+")
_WHITESPACE = re.compile(r"\s+")
_SOURCES_SECTION = re.compile(r"Sources?:[\s\S]*$", re.IGNORECASE)


@dataclass
class ComposedAnswer:
    reply: str
    intent: str
    products: list[ProductSuggestion] = field(default_factory=list)
    shops: list[ShopSuggestion] = field(default_factory=list)
    actions: list[dict[str, Any]] = field(default_factory=list)
    sources: list[str] = field(default_factory=list)
    model: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "reply": self.reply,
            "sources": list(self.sources),
            "products": [product.to_dict() for product in self.products],
            "shops": [shop.to_dict() for shop in self.shops],
            "actions": list(self.actions),
            "intent": self.intent,
        }


def truncate_words(text: str, max_words: int) -> str:
    words = text.split(" ")
    if len(words) > max_words:
        return " ".join(words[:max_words])
    return text


def sanitize_reply(answer: str, max_words: int = 60) -> str:
    if not answer:
        return ""
    text = _EMPHASIS.sub("", answer)
    text = _INLINE_LINK.sub("", text)
    text = _CITATION.sub("", text)
    text = _RAW_URL.sub("", text)
    text = _WHITESPACE.sub(" ", text).strip()
    text = _SOURCES_SECTION.sub("", text).strip()
    return truncate_words(text, max_words).strip()


def _price_label(product: ProductSuggestion, missing: str) -> str:
    if isinstance(product.price, (int, float)) and not isinstance(product.price, bool):
        return f"{product.currency or 'USD'} {format_amount(product.price)}"
    return missing


def compose_product_reply(
    products: Sequence[ProductSuggestion],
    shop_query: str | None,
    *,
    max_words: int = 60,
    companion_limit: int = 2,
) -> str:
    if not products:
        return ""

    primary, rest = products[0], products[1:]
    stock_label = "currently in stock" if primary.in_stock else "currently unavailable"
    shop_label = f"from {primary.shop_name}" if primary.shop_name else ""
    rating_label = ""
    if isinstance(primary.rating, (int, float)) and primary.rating > 0:
        rating_label = f"It carries an average rating of {primary.rating:.1f}."

    intro = (
        f"{primary.name} {shop_label} is priced at {_price_label(primary, 'a listed price')} "
        f"and is {stock_label}. {rating_label}"
    )

    companions = [f"{product.name} ({_price_label(product, 'a listed price')})" for product in rest[:companion_limit]]
    suggestion = f"You can also consider {' or '.join(companions)}." if companions else ""
    if shop_query and not primary.shop_name:
        suggestion += " This result matches your requested shop search."

    combined = _WHITESPACE.sub(" ", f"{intro} {suggestion}").strip()
    return truncate_words(combined, max_words)


def build_context_section(entries: Sequence[EmbeddingRecord]) -> str:
    if not entries:
        return NO_CONTEXT_TEXT
    blocks = []
    for entry in entries:
        header = "Product" if entry.type == PRODUCT_KIND else "Shop"
        blocks.append(f"{header} Insight:\n{entry.text}")
    return "\n\n".join(blocks)


def build_system_prompt(
    template: str,
    entries: Sequence[EmbeddingRecord],
    products: Sequence[ProductSuggestion] = (),
    *,
    option_limit: int = 3,
) -> str:
    prompt = template.replace(CONTEXT_PLACEHOLDER, build_context_section(entries))
    option_lines = [
        f"Product {position}: {product.name} ({_price_label(product, 'Price unavailable')})"
        for position, product in enumerate(products[:option_limit], start=1)
    ]
    if option_lines:
        prompt += (
            "\n\nCandidate options available to assist the shopper:\n"
            + "\n".join(option_lines)
            + "\nWhen relevant, describe these options and encourage the shopper to use the provided buttons."
        )
    return prompt


def build_actions(
    intent: str,
    products: Sequence[ProductSuggestion],
    shops: Sequence[ShopSuggestion],
) -> list[dict[str, Any]]:
    actions: list[dict[str, Any]] = []
    seen: set[tuple[str, str, str]] = set()

    def add(label: str, href: str, data: dict[str, Any] | None = None) -> None:
        key = ("navigate", href or "", label)
        if key in seen:
            return
        seen.add(key)
        action: dict[str, Any] = {"type": "navigate", "label": label, "href": href}
        if data:
            action["data"] = data
        actions.append(action)

    for product in products:
        if product.url:
            add(f"View {product.name}", product.url, {"productId": product.id})
        if product.shop_url:
            add(
                f"Visit {product.shop_name or 'shop'} for {product.name}",
                product.shop_url,
                {"shopId": product.shop_id},
            )

    for shop in shops:
        if shop.url:
            add(f"Visit {shop.name}", shop.url, {"shopId": shop.id})

    if intent == INTENT_FIND_PRODUCTS and not products:
        add("Browse all products", "/products")
    elif intent == INTENT_FIND_SHOPS and not shops:
        add("Browse featured shops", "/shop")
    elif intent in _INTENT_DEFAULT_ACTIONS:
        label, href = _INTENT_DEFAULT_ACTIONS[intent]
        add(label, href)

    return actions


class AnswerComposer:
    def __init__(self, completion: CompletionProvider, policy: AssistantPolicy | None = None) -> None:
        self.completion = completion
        self.policy = policy or AssistantPolicy()

    def complete_with_fallback(self, system_prompt: str, message: str) -> tuple[str, str]:
        primary = self.policy.chat_model
        for candidate in self.policy.model_chain():
            try:
                raw = self.completion.complete(
                    model=candidate,
                    system_prompt=system_prompt,
                    user_message=message,
                    temperature=self.policy.temperature,
                )
            except ModelUnavailableError as exc:
                _LOGGER.warning("Chat model %s unavailable: %s", candidate, exc.provider_message or exc)
                continue
            if candidate != primary:
                _LOGGER.warning("Switched chat model from %s to %s due to availability.", primary, candidate)
            return raw, candidate
        raise CompletionError("No available chat model could satisfy the request.")

    def compose(
        self,
        message: str,
        context: QueryContext,
        retrieval: RetrievalResult,
        intent: str,
    ) -> ComposedAnswer:
        actions = build_actions(intent, retrieval.products, retrieval.shops)

        if retrieval.products:
            reply = compose_product_reply(
                retrieval.products,
                context.shop_query,
                max_words=self.policy.max_reply_words,
                companion_limit=self.policy.companion_limit,
            )
            return ComposedAnswer(
                reply=reply or FALLBACK_PRODUCT_REPLY,
                intent=intent,
                products=list(retrieval.products),
                shops=list(retrieval.shops),
                actions=actions,
            )

        system_prompt = build_system_prompt(
            self.policy.system_prompt_template,
            retrieval.context_entries,
            retrieval.products,
            option_limit=self.policy.candidate_option_limit,
        )
        raw, model = self.complete_with_fallback(system_prompt, message)
        reply = sanitize_reply((raw or "").strip() or EMPTY_COMPLETION_REPLY, self.policy.max_reply_words)
        return ComposedAnswer(
            reply=reply or EMPTY_COMPLETION_REPLY,
            intent=intent,
            products=list(retrieval.products),
            shops=list(retrieval.shops),
            actions=actions,
            sources=[entry.id for entry in retrieval.context_entries],
            model=model,
        )
