"""Knowledge entries and the hash-keyed embedding index built from the corpus."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
import hashlib
import json
import logging
import threading
from typing import Any, Callable, Generic, TypeVar

from omnicart_assistant.cohere_utils import EmbeddingProvider
from omnicart_assistant.corpus import format_amount
from omnicart_assistant.errors import EmbeddingError
from omnicart_assistant.storage import KNOWLEDGE_DOCUMENT, PRODUCTS_DOCUMENT, SHOPS_DOCUMENT, JsonDocumentStore


_LOGGER = logging.getLogger(__name__)

PRODUCT_KIND = "product"
SHOP_KIND = "shop"

T = TypeVar("T")


def content_hash(snapshot: dict[str, Any]) -> str:
    canonical = json.dumps(snapshot, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


@dataclass
class KnowledgeEntry:
    id: str
    type: str
    metadata: dict[str, Any]
    text: str
    hash: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "metadata": self.metadata,
            "text": self.text,
            "hash": self.hash,
        }


@dataclass
class EmbeddingRecord(KnowledgeEntry):
    embedding: list[float] = field(default_factory=list)

    @property
    def has_vector(self) -> bool:
        return bool(self.embedding)

    @classmethod
    def from_entry(cls, entry: KnowledgeEntry, embedding: list[float]) -> "EmbeddingRecord":
        return cls(
            id=entry.id,
            type=entry.type,
            metadata=entry.metadata,
            text=entry.text,
            hash=entry.hash,
            embedding=[float(value) for value in embedding],
        )

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "EmbeddingRecord":
        raw_embedding = payload.get("embedding")
        embedding: list[float] = []
        if isinstance(raw_embedding, list):
            try:
                embedding = [float(value) for value in raw_embedding]
            except (TypeError, ValueError):
                embedding = []
        metadata = payload.get("metadata")
        return cls(
            id=str(payload.get("id") or ""),
            type=str(payload.get("type") or ""),
            metadata=metadata if isinstance(metadata, dict) else {},
            text=str(payload.get("text") or ""),
            hash=str(payload.get("hash") or ""),
            embedding=embedding,
        )

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "embedding": self.embedding}


@dataclass
class KnowledgeIndex:
    generated_at: str | None
    embedding_model: str | None
    entries: list[EmbeddingRecord]

    @classmethod
    def empty(cls) -> "KnowledgeIndex":
        return cls(generated_at=None, embedding_model=None, entries=[])

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "KnowledgeIndex":
        rows = payload.get("entries")
        entries = [EmbeddingRecord.from_dict(row) for row in rows if isinstance(row, dict)] if isinstance(rows, list) else []
        return cls(
            generated_at=payload.get("generated_at"),
            embedding_model=payload.get("embedding_model"),
            entries=[entry for entry in entries if entry.id],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "generated_at": self.generated_at,
            "embedding_model": self.embedding_model,
            "entries": [entry.to_dict() for entry in self.entries],
        }

    def get(self, entry_id: str) -> EmbeddingRecord | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def __len__(self) -> int:
        return len(self.entries)


def _join_or(values: list[str], fallback: str) -> str:
    joined = ", ".join(value for value in values if value)
    return joined or fallback


def build_product_entry(product: dict[str, Any]) -> KnowledgeEntry:
    details = product.get("similar_product_details") or []
    similar = ", ".join(
        f"{item.get('name') or item.get('product_id')} ({item.get('url') or item.get('product_id')})"
        for item in details
    )
    lines = [
        f"Product Name: {product['name']}",
        f"Product ID: {product['product_id']}",
        f"Description: {product.get('description') or ''}",
        f"Category: {product.get('category')}",
        f"Price: {format_amount(product.get('price'))} {product.get('currency')}",
        f"Tags: {', '.join(product.get('tags') or [])}",
        f"Shop: {product.get('shop_name') or 'Unknown'} ({product.get('shop_id') or 'N/A'})",
        f"Owner: {product.get('owner_name') or 'Unknown'}",
        f"Location: {product.get('location') or 'Unknown'}",
        f"Average Rating: {format_amount(product.get('avg_rating') or 0)}",
        f"Reviews: {' | '.join(product.get('reviews') or []) or 'No reviews available.'}",
        f"Similar Products: {similar or 'None listed.'}",
        f"URL: {product.get('url')}",
        f"In Stock: {'Yes' if product.get('in_stock', True) else 'No'}",
        f"Last Updated: {product.get('last_updated')}",
    ]
    return KnowledgeEntry(
        id=f"{PRODUCT_KIND}:{product['product_id']}",
        type=PRODUCT_KIND,
        metadata={
            "id": product["product_id"],
            "name": product["name"],
            "url": product.get("url"),
            "price": product.get("price"),
            "currency": product.get("currency"),
            "image": product.get("image"),
            "in_stock": product.get("in_stock", True),
            "rating": product.get("avg_rating", 0),
            "category": product.get("category"),
            "tags": list(product.get("tags") or []),
            "shop_id": product.get("shop_id"),
            "shop_name": product.get("shop_name"),
            "shop_url": product.get("shop_url"),
            "similar_products": details,
        },
        text="\n".join(lines),
        hash=content_hash(product),
    )


def build_shop_entry(shop: dict[str, Any]) -> KnowledgeEntry:
    lines = [
        f"Shop Name: {shop['name']}",
        f"Shop ID: {shop['shop_id']}",
        f"Owner: {shop.get('owner')}",
        f"Description: {shop.get('description')}",
        f"Location: {shop.get('location')}",
        f"Rating: {format_amount(shop.get('rating') or 0)}",
        f"Total Products: {shop.get('total_products', 0)}",
        f"Top Products: {_join_or(shop.get('top_products') or [], 'No products listed.')}",
        f"URL: {shop.get('url')}",
    ]
    return KnowledgeEntry(
        id=f"{SHOP_KIND}:{shop['shop_id']}",
        type=SHOP_KIND,
        metadata={
            "id": shop["shop_id"],
            "name": shop["name"],
            "url": shop.get("url"),
            "owner": shop.get("owner"),
            "location": shop.get("location"),
            "rating": shop.get("rating", 0),
            "top_products": list(shop.get("top_products") or []),
        },
        text="\n".join(lines),
        hash=content_hash(shop),
    )


def build_knowledge_entries(product_corpus: dict[str, Any], shop_corpus: dict[str, Any]) -> list[KnowledgeEntry]:
    products = [build_product_entry(product) for product in product_corpus.get("products", []) if product.get("product_id")]
    shops = [build_shop_entry(shop) for shop in shop_corpus.get("shops", []) if shop.get("shop_id")]
    return products + shops


class Coalescer(Generic[T]):
    """Runs an expensive full-replace job at most once at a time.

    A caller whose request was issued before the in-flight run started is
    satisfied by that run's result. A caller arriving mid-run waits, then
    triggers one more run that covers everyone who queued behind it.
    """

    def __init__(self, job: Callable[[], T]) -> None:
        self._job = job
        self._run_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._requested = 0
        self._completed = 0
        self._last_result: T | None = None
        self.runs = 0

    def run(self) -> T:
        with self._state_lock:
            self._requested += 1
            ticket = self._requested

        with self._run_lock:
            if self._completed >= ticket and self._last_result is not None:
                return self._last_result
            with self._state_lock:
                covers = self._requested
            result = self._job()
            self.runs += 1
            self._last_result = result
            self._completed = covers
            return result


class KnowledgeIndexer:
    def __init__(self, store: JsonDocumentStore, embedder: EmbeddingProvider) -> None:
        self.store = store
        self.embedder = embedder
        self._index: KnowledgeIndex | None = None
        self._index_lock = threading.Lock()
        self._refresher: Coalescer[KnowledgeIndex] = Coalescer(self._refresh_once)

    def load(self) -> KnowledgeIndex:
        return KnowledgeIndex.from_dict(self.store.read(KNOWLEDGE_DOCUMENT, {"entries": []}))

    def current(self) -> KnowledgeIndex:
        with self._index_lock:
            if self._index is None:
                self._index = self.load()
            return self._index

    def refresh(self) -> KnowledgeIndex:
        """Re-embed changed entries and persist the full index; serialised across threads."""
        return self._refresher.run()

    def _refresh_once(self) -> KnowledgeIndex:
        product_corpus = self.store.read(PRODUCTS_DOCUMENT, {"products": []})
        shop_corpus = self.store.read(SHOPS_DOCUMENT, {"shops": []})
        entries = build_knowledge_entries(product_corpus, shop_corpus)

        previous = self.load()
        reusable: dict[str, EmbeddingRecord] = {}
        if previous.embedding_model in (None, self.embedder.model):
            reusable = {record.id: record for record in previous.entries}

        records: list[EmbeddingRecord] = []
        embedded = 0
        for entry in entries:
            existing = reusable.get(entry.id)
            if existing is not None and existing.hash == entry.hash and existing.has_vector:
                records.append(existing)
                continue
            try:
                vector = self.embedder.embed(entry.text)
            except EmbeddingError:
                raise
            except Exception as exc:
                raise EmbeddingError(f"Failed to embed {entry.id}: {exc}") from exc
            if not vector:
                raise EmbeddingError(f"Embedding provider returned an empty vector for {entry.id}.")
            records.append(EmbeddingRecord.from_entry(entry, vector))
            embedded += 1

        index = KnowledgeIndex(
            generated_at=datetime.now(timezone.utc).isoformat(),
            embedding_model=self.embedder.model,
            entries=records,
        )
        self.store.write(KNOWLEDGE_DOCUMENT, index.to_dict())
        with self._index_lock:
            self._index = index
        _LOGGER.info(
            "Knowledge index refreshed: %d entries, %d embedded, %d reused.",
            len(records),
            embedded,
            len(records) - embedded,
        )
        return index
