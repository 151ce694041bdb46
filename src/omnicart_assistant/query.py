"""Lexical query understanding: keywords, shop filter, listing requests and intent."""

from __future__ import annotations

from dataclasses import dataclass, field
import re
from typing import Any, Sequence


_STOP_WORDS = {
    "the",
    "a",
    "an",
    "and",
    "or",
    "for",
    "from",
    "shop",
    "store",
    "me",
    "my",
    "show",
    "list",
    "give",
    "need",
    "want",
    "please",
    "product",
    "products",
    "some",
    "options",
    "with",
}

_WORD_PATTERN = re.compile(r"\b[a-z0-9]+\b")
_SHOP_PATTERN = re.compile(r"from\s+([^.,!?]+?)\s+(?:shop|store)")
_LISTING_PATTERN = re.compile(r"(list|show|give|recommend|options|suggest|display|find)")

INTENT_LIST_PRODUCTS_BY_SHOP = "list_products_by_shop"
INTENT_LIST_PRODUCTS = "list_products"
INTENT_RECOMMEND_SIMILAR = "recommend_similar"
INTENT_FIND_PRODUCTS = "find_products"
INTENT_FIND_SHOPS = "find_shops"
INTENT_ORDER_STATUS = "order_status"
INTENT_RETURN_POLICY = "return_policy"
INTENT_UPDATE_PROFILE = "update_profile"
INTENT_CONTACT_SUPPORT = "contact_support"
INTENT_GENERAL = "general"

# Evaluated top to bottom; the first matching rule decides the intent.
_INTENT_RULES: tuple[tuple[str, re.Pattern[str], bool], ...] = (
    (INTENT_RECOMMEND_SIMILAR, re.compile(r"compare|similar"), True),
    (INTENT_FIND_PRODUCTS, re.compile(r"(buy|purchase|shop for|need a|looking for|recommend)"), False),
    (INTENT_FIND_SHOPS, re.compile(r"(shop|store|seller|owner)"), False),
    (INTENT_ORDER_STATUS, re.compile(r"(order|track|status)"), False),
    (INTENT_RETURN_POLICY, re.compile(r"(return|refund)"), False),
    (INTENT_UPDATE_PROFILE, re.compile(r"(profile|account|address|update info)"), False),
    (INTENT_CONTACT_SUPPORT, re.compile(r"(support|help|contact|agent)"), False),
)


@dataclass(frozen=True)
class QueryContext:
    message: str
    keywords: tuple[str, ...] = field(default_factory=tuple)
    shop_query: str | None = None
    wants_list: bool = False

    @property
    def lowered(self) -> str:
        return (self.message or "").lower()


def extract_keywords(message: str) -> tuple[str, ...]:
    if not message:
        return ()
    out: list[str] = []
    for word in _WORD_PATTERN.findall(message.lower()):
        if len(word) <= 2 or word in _STOP_WORDS or word in out:
            continue
        out.append(word)
    return tuple(out)


def extract_shop_query(message: str) -> str | None:
    if not message:
        return None
    match = _SHOP_PATTERN.search(message.lower())
    if match and match.group(1).strip():
        return match.group(1).strip()
    return None


def wants_listing(message: str) -> bool:
    return bool(_LISTING_PATTERN.search((message or "").lower()))


def parse_query(message: str) -> QueryContext:
    return QueryContext(
        message=message,
        keywords=extract_keywords(message),
        shop_query=extract_shop_query(message),
        wants_list=wants_listing(message),
    )


def classify_intent(message: str, products: Sequence[Any] = ()) -> str:
    text = (message or "").lower()
    for intent, pattern, needs_products in _INTENT_RULES:
        if needs_products and not products:
            continue
        if pattern.search(text):
            return intent
    return INTENT_GENERAL


def resolve_intent(context: QueryContext, products: Sequence[Any] = ()) -> str:
    if context.shop_query:
        return INTENT_LIST_PRODUCTS_BY_SHOP
    if context.wants_list and context.keywords:
        return INTENT_LIST_PRODUCTS
    return classify_intent(context.message, products)
