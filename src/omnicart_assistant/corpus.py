"""Builds the denormalised product and shop corpus documents from the catalog."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
import logging
from typing import Any

from omnicart_assistant.db import MarketplaceDB
from omnicart_assistant.errors import CorpusBuildError
from omnicart_assistant.storage import PRODUCTS_DOCUMENT, SHOPS_DOCUMENT, JsonDocumentStore


_LOGGER = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"
DEFAULT_CURRENCY = "USD"


@dataclass(frozen=True)
class CorpusPolicy:
    shared_tag_weight: int = 2
    same_shop_bonus: int = 1
    similar_limit: int = 5
    top_products_limit: int = 5


def product_path(product_id: str) -> str:
    return f"/products/{product_id}"


def shop_path(shop_id: str) -> str:
    return f"/shops/{shop_id}"


def format_amount(value: Any) -> str:
    """Render a stored price or rating as-is, dropping a trailing ``.0`` (79.5, 199, 19.999)."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value)
    if number.is_integer():
        return str(int(number))
    return repr(number)


@dataclass
class ProductEntry:
    product_id: str
    name: str
    description: str
    category: str
    price: float
    currency: str
    tags: list[str]
    shop_id: str | None
    shop_name: str | None
    owner_name: str | None
    location: str | None
    avg_rating: float
    reviews: list[str]
    similar_products: list[str] = field(default_factory=list)
    similar_product_details: list[dict[str, Any]] = field(default_factory=list)
    url: str = ""
    shop_url: str | None = None
    image: str | None = None
    in_stock: bool = True
    last_updated: str = ""

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "ProductEntry":
        product_id = str(record["id"])
        shop = record.get("shop") or None
        tags: list[str] = []
        for tag in record.get("tags") or []:
            cleaned = str(tag).strip()
            if cleaned and cleaned not in tags:
                tags.append(cleaned)
        shop_id = str(shop["id"]) if shop else None
        rating = record.get("rating")
        return cls(
            product_id=product_id,
            name=str(record.get("title") or "").strip(),
            description=str(record.get("description") or ""),
            category=tags[0] if tags else DEFAULT_CATEGORY,
            price=float(record.get("price") or 0.0),
            currency=DEFAULT_CURRENCY,
            tags=tags,
            shop_id=shop_id,
            shop_name=shop.get("name") if shop else None,
            owner_name=shop.get("owner_name") if shop else None,
            location=shop.get("address") if shop else None,
            avg_rating=float(rating) if isinstance(rating, (int, float)) else 0.0,
            reviews=[str(value) for value in record.get("reviews") or []],
            url=product_path(product_id),
            shop_url=shop_path(shop_id) if shop_id else None,
            image=record.get("image") or None,
            in_stock=bool(record.get("in_stock", True)),
            last_updated=str(record.get("updated_at") or record.get("created_at") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ShopEntry:
    shop_id: str
    name: str
    owner: str
    description: str
    location: str
    rating: float
    total_products: int
    url: str
    top_products: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _generated_at() -> str:
    return datetime.now(timezone.utc).isoformat()


def similarity_score(entry: ProductEntry, candidate: ProductEntry, policy: CorpusPolicy) -> int:
    shared = sum(1 for tag in candidate.tags if tag in entry.tags)
    same_shop = entry.shop_id is not None and candidate.shop_id == entry.shop_id
    return shared * policy.shared_tag_weight + (policy.same_shop_bonus if same_shop else 0)


def attach_similar_products(entries: list[ProductEntry], policy: CorpusPolicy | None = None) -> None:
    rules = policy or CorpusPolicy()
    by_id = {entry.product_id: entry for entry in entries}

    for entry in entries:
        scored: list[tuple[str, int]] = []
        for candidate in entries:
            if candidate.product_id == entry.product_id:
                continue
            score = similarity_score(entry, candidate, rules)
            if score > 0:
                scored.append((candidate.product_id, score))
        # sorted() is stable, so equal scores keep catalog order
        scored = sorted(scored, key=lambda item: item[1], reverse=True)[: rules.similar_limit]

        entry.similar_products = [product_id for product_id, _ in scored]
        entry.similar_product_details = [
            {
                "product_id": match.product_id,
                "name": match.name,
                "url": match.url,
                "price": match.price,
                "currency": match.currency,
            }
            for match in (by_id[product_id] for product_id, _ in scored)
        ]


def build_shop_entry(shop: dict[str, Any], shop_products: list[dict[str, Any]], policy: CorpusPolicy | None = None) -> ShopEntry:
    rules = policy or CorpusPolicy()
    shop_id = str(shop["id"])
    total = len(shop_products)
    average = sum(float(product.get("avg_rating") or 0.0) for product in shop_products) / total if total else 0.0
    ranked = sorted(shop_products, key=lambda product: float(product.get("avg_rating") or 0.0), reverse=True)
    owner = str(shop.get("owner_name") or "")
    location = str(shop.get("address") or "")
    description = str(shop.get("description") or "").strip()
    if not description:
        description = f"Trusted retailer operated by {owner} located at {location}."

    return ShopEntry(
        shop_id=shop_id,
        name=str(shop.get("name") or ""),
        owner=owner,
        description=description,
        location=location,
        rating=round(average, 2),
        total_products=total,
        url=shop_path(shop_id),
        top_products=[str(product["product_id"]) for product in ranked[: rules.top_products_limit]],
    )


def product_corpus_payload(db: MarketplaceDB, policy: CorpusPolicy | None = None) -> dict[str, Any]:
    try:
        records = db.list_products_with_shops()
    except Exception as exc:
        raise CorpusBuildError(f"Could not read products from the catalog: {exc}") from exc

    entries = [ProductEntry.from_record(record) for record in records]
    attach_similar_products(entries, policy)
    return {
        "generated_at": _generated_at(),
        "products": [entry.to_dict() for entry in entries],
    }


def shop_corpus_payload(
    db: MarketplaceDB,
    product_corpus: dict[str, Any],
    policy: CorpusPolicy | None = None,
) -> dict[str, Any]:
    try:
        shops = db.list_shops()
    except Exception as exc:
        raise CorpusBuildError(f"Could not read shops from the catalog: {exc}") from exc

    products_by_shop: dict[str, list[dict[str, Any]]] = {}
    for product in product_corpus.get("products", []):
        shop_id = product.get("shop_id")
        if shop_id:
            products_by_shop.setdefault(str(shop_id), []).append(product)

    return {
        "generated_at": _generated_at(),
        "shops": [
            build_shop_entry(shop, products_by_shop.get(str(shop["id"]), []), policy).to_dict()
            for shop in shops
        ],
    }


def build_product_corpus(
    db: MarketplaceDB,
    store: JsonDocumentStore,
    policy: CorpusPolicy | None = None,
) -> dict[str, Any]:
    payload = product_corpus_payload(db, policy)
    store.write(PRODUCTS_DOCUMENT, payload)
    return payload


def build_shop_corpus(
    db: MarketplaceDB,
    store: JsonDocumentStore,
    product_corpus: dict[str, Any],
    policy: CorpusPolicy | None = None,
) -> dict[str, Any]:
    payload = shop_corpus_payload(db, product_corpus, policy)
    store.write(SHOPS_DOCUMENT, payload)
    return payload


def build_all(
    db: MarketplaceDB,
    store: JsonDocumentStore,
    policy: CorpusPolicy | None = None,
) -> tuple[dict[str, Any], dict[str, Any]]:
    """Rebuild both documents; products first because shop ratings read them.

    Nothing is written until both payloads are built, so a catalog read
    failure leaves the previous pair of documents in place.
    """
    product_corpus = product_corpus_payload(db, policy)
    shop_corpus = shop_corpus_payload(db, product_corpus, policy)
    store.write(PRODUCTS_DOCUMENT, product_corpus)
    store.write(SHOPS_DOCUMENT, shop_corpus)
    _LOGGER.info(
        "Corpus rebuilt: %d products, %d shops.",
        len(product_corpus["products"]),
        len(shop_corpus["shops"]),
    )
    return product_corpus, shop_corpus
