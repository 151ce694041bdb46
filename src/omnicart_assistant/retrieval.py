"""Keyword/shop matching and cosine ranking over the knowledge index."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import logging
from typing import Any, Sequence

import numpy as np

from omnicart_assistant.cohere_utils import EmbeddingProvider
from omnicart_assistant.corpus import product_path, shop_path
from omnicart_assistant.errors import EmbeddingError
from omnicart_assistant.knowledge import PRODUCT_KIND, EmbeddingRecord, KnowledgeIndex
from omnicart_assistant.query import QueryContext


_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetrievalPolicy:
    keyword_match_limit: int = 3
    semantic_top_k: int = 5
    relevance_threshold: float = 0.2
    display_limit: int = 5


@dataclass
class ProductSuggestion:
    id: str
    name: str
    url: str
    price: float | None = None
    currency: str | None = None
    image: str | None = None
    in_stock: bool = True
    rating: float | None = None
    shop_id: str | None = None
    shop_name: str | None = None
    shop_url: str | None = None

    @classmethod
    def from_record(cls, record: EmbeddingRecord) -> "ProductSuggestion":
        meta = record.metadata or {}
        product_id = str(meta.get("id") or record.id.replace(f"{PRODUCT_KIND}:", "", 1))
        in_stock = meta.get("in_stock")
        return cls(
            id=product_id,
            name=meta.get("name") or "Product",
            url=meta.get("url") or product_path(product_id),
            price=meta.get("price"),
            currency=meta.get("currency"),
            image=meta.get("image"),
            in_stock=in_stock if isinstance(in_stock, bool) else True,
            rating=meta.get("rating"),
            shop_id=meta.get("shop_id"),
            shop_name=meta.get("shop_name"),
            shop_url=meta.get("shop_url"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "url": self.url,
            "price": self.price,
            "currency": self.currency,
            "image": self.image,
            "inStock": self.in_stock,
            "rating": self.rating,
            "shopId": self.shop_id,
            "shopName": self.shop_name,
            "shopUrl": self.shop_url,
        }


@dataclass
class ShopSuggestion:
    id: str
    name: str
    url: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ScoredEntry:
    record: EmbeddingRecord
    score: float


@dataclass
class RetrievalResult:
    products: list[ProductSuggestion] = field(default_factory=list)
    shops: list[ShopSuggestion] = field(default_factory=list)
    context_entries: list[EmbeddingRecord] = field(default_factory=list)
    scored: list[ScoredEntry] = field(default_factory=list)
    keyword_hit: bool = False


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    left = np.asarray(a, dtype=np.float64)
    right = np.asarray(b, dtype=np.float64)
    if left.size == 0 or left.shape != right.shape:
        return 0.0
    norm_left = float(np.linalg.norm(left))
    norm_right = float(np.linalg.norm(right))
    if norm_left == 0.0 or norm_right == 0.0:
        return 0.0
    value = float(np.dot(left, right) / (norm_left * norm_right))
    return max(-1.0, min(1.0, value))


def top_k_cosine(
    query_embedding: np.ndarray,
    embeddings: np.ndarray,
    norms: np.ndarray,
    k: int,
) -> tuple[np.ndarray, np.ndarray]:
    """Indices and scores of the ``k`` rows closest to the query, best first."""
    if embeddings.size == 0 or k <= 0:
        return np.zeros(0, dtype=np.int64), np.zeros(0, dtype=np.float64)
    query = np.asarray(query_embedding, dtype=np.float64)
    query_norm = float(np.linalg.norm(query))
    if query_norm == 0.0:
        scores = np.zeros(embeddings.shape[0], dtype=np.float64)
    else:
        denom = norms.astype(np.float64) * query_norm
        dots = embeddings.astype(np.float64) @ query
        scores = np.divide(dots, denom, out=np.zeros_like(dots), where=denom > 0)
        scores = np.clip(scores, -1.0, 1.0)
    # stable sort on the negated scores keeps index order for ties
    order = np.argsort(-scores, kind="stable")[: min(k, scores.shape[0])]
    return order, scores[order]


def product_matches_keywords(metadata: dict[str, Any], keywords: Sequence[str]) -> bool:
    if not keywords:
        return True
    parts = [metadata.get("name"), *(metadata.get("tags") or []), metadata.get("category")]
    haystack = " ".join(str(value).lower() for value in parts if value)
    return any(keyword in haystack for keyword in keywords)


def find_products_by_shop(
    entries: Sequence[EmbeddingRecord],
    shop_query: str,
    keywords: Sequence[str],
) -> list[EmbeddingRecord]:
    if not shop_query:
        return []
    needle = shop_query.lower()
    matches: list[EmbeddingRecord] = []
    for entry in entries:
        if entry.type != PRODUCT_KIND:
            continue
        meta = entry.metadata or {}
        if needle not in str(meta.get("shop_name") or "").lower():
            continue
        if product_matches_keywords(meta, keywords):
            matches.append(entry)
    return matches


def find_products_by_keywords(entries: Sequence[EmbeddingRecord], keywords: Sequence[str]) -> list[EmbeddingRecord]:
    return [
        entry
        for entry in entries
        if entry.type == PRODUCT_KIND and product_matches_keywords(entry.metadata or {}, keywords)
    ]


class Retriever:
    def __init__(self, embedder: EmbeddingProvider, policy: RetrievalPolicy | None = None) -> None:
        self.embedder = embedder
        self.policy = policy or RetrievalPolicy()

    def _embed_query(self, message: str) -> list[float]:
        embed = getattr(self.embedder, "embed_query", None) or self.embedder.embed
        try:
            vector = embed(message)
        except EmbeddingError:
            raise
        except Exception as exc:
            raise EmbeddingError(f"Query embedding failed: {exc}") from exc
        if not vector:
            raise EmbeddingError("Query embedding came back empty.")
        return vector

    def rank(self, query_vector: Sequence[float], index: KnowledgeIndex) -> list[ScoredEntry]:
        candidates = [
            entry
            for entry in index.entries
            if entry.has_vector and len(entry.embedding) == len(query_vector)
        ]
        if not candidates:
            return []
        matrix = np.asarray([entry.embedding for entry in candidates], dtype=np.float64)
        norms = np.linalg.norm(matrix, axis=1)
        idx, scores = top_k_cosine(np.asarray(query_vector, dtype=np.float64), matrix, norms, self.policy.semantic_top_k)
        return [ScoredEntry(record=candidates[int(i)], score=float(s)) for i, s in zip(idx, scores)]

    def keyword_matches(self, context: QueryContext, index: KnowledgeIndex) -> list[EmbeddingRecord]:
        limit = self.policy.keyword_match_limit
        if context.shop_query:
            return find_products_by_shop(index.entries, context.shop_query, context.keywords)[:limit]
        if context.wants_list and context.keywords:
            return find_products_by_keywords(index.entries, context.keywords)[:limit]
        return []

    def retrieve(self, message: str, context: QueryContext, index: KnowledgeIndex) -> RetrievalResult:
        query_vector = self._embed_query(message)
        scored = self.rank(query_vector, index)
        relevant = [item.record for item in scored if item.score > self.policy.relevance_threshold]

        picked = self.keyword_matches(context, index)
        keyword_hit = bool(picked)
        if not picked:
            top_product = next((item.record for item in scored if item.record.type == PRODUCT_KIND), None)
            if top_product is not None:
                picked = [top_product]

        products: list[ProductSuggestion] = []
        seen_products: set[str] = set()
        for record in picked:
            suggestion = ProductSuggestion.from_record(record)
            if suggestion.id in seen_products:
                continue
            seen_products.add(suggestion.id)
            products.append(suggestion)
        products = products[: self.policy.display_limit]

        shops: list[ShopSuggestion] = []
        seen_shops: set[str] = set()
        for product in products:
            if product.shop_id and product.shop_id not in seen_shops:
                seen_shops.add(product.shop_id)
                shops.append(
                    ShopSuggestion(
                        id=product.shop_id,
                        name=product.shop_name or "Shop",
                        url=product.shop_url or shop_path(product.shop_id),
                    )
                )
        shops = shops[: self.policy.display_limit]

        context_entries: dict[str, EmbeddingRecord] = {record.id: record for record in relevant}
        for record in picked:
            context_entries.setdefault(record.id, record)

        _LOGGER.debug(
            "Retrieved %d products (%s path), %d context entries.",
            len(products),
            "keyword" if keyword_hit else "semantic",
            len(context_entries),
        )
        return RetrievalResult(
            products=products,
            shops=shops,
            context_entries=list(context_entries.values()),
            scored=scored,
            keyword_hit=keyword_hit,
        )
