"""SQLite access layer for marketplace shops and products."""

from __future__ import annotations

import json
import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex[:24]


def _clean_tags(values: Any) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return []
    out: list[str] = []
    for value in values:
        cleaned = str(value or "").strip()
        if cleaned and cleaned not in out:
            out.append(cleaned)
    return out


def _clean_reviews(values: Any) -> list[str]:
    if not isinstance(values, (list, tuple)):
        return []
    return [str(value).strip() for value in values if str(value or "").strip()]


def _loads_list(raw: Any) -> list[Any]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


_PRODUCT_FIELDS = {"title", "description", "price", "image", "rating", "tags", "reviews", "in_stock", "shop_id"}


class MarketplaceDB:
    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path))
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        return conn

    def _init_schema(self) -> None:
        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS shops (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    owner_name TEXT NOT NULL,
                    email TEXT,
                    phone TEXT,
                    address TEXT NOT NULL,
                    description TEXT,
                    status TEXT NOT NULL DEFAULT 'approved',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS products (
                    id TEXT PRIMARY KEY,
                    shop_id TEXT,
                    title TEXT NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    price REAL NOT NULL,
                    image TEXT,
                    rating REAL NOT NULL DEFAULT 0,
                    tags_json TEXT NOT NULL DEFAULT '[]',
                    reviews_json TEXT NOT NULL DEFAULT '[]',
                    in_stock INTEGER NOT NULL DEFAULT 1,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    FOREIGN KEY (shop_id) REFERENCES shops(id) ON DELETE SET NULL
                );

                CREATE INDEX IF NOT EXISTS idx_products_shop ON products(shop_id);
                """
            )

    @staticmethod
    def _product_row(row: sqlite3.Row) -> dict[str, Any]:
        record = dict(row)
        record["tags"] = _loads_list(record.pop("tags_json", "[]"))
        record["reviews"] = _loads_list(record.pop("reviews_json", "[]"))
        record["in_stock"] = bool(record.get("in_stock", 1))
        return record

    def create_shop(
        self,
        *,
        name: str,
        owner_name: str,
        address: str,
        email: str | None = None,
        phone: str | None = None,
        description: str | None = None,
        shop_id: str | None = None,
    ) -> dict[str, Any]:
        safe_name = name.strip()
        if not safe_name:
            raise ValueError("Please provide a shop name.")
        record = {
            "id": shop_id or _new_id(),
            "name": safe_name,
            "owner_name": owner_name.strip(),
            "email": email,
            "phone": phone,
            "address": address.strip(),
            "description": (description or "").strip() or None,
            "created_at": _utc_now(),
        }
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO shops (id, name, owner_name, email, phone, address, description, created_at)
                VALUES (:id, :name, :owner_name, :email, :phone, :address, :description, :created_at)
                """,
                record,
            )
        return self.get_shop(record["id"]) or record

    def get_shop(self, shop_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, name, owner_name, email, phone, address, description, status, created_at
                FROM shops
                WHERE id = ?
                """,
                (shop_id,),
            ).fetchone()
        return dict(row) if row else None

    def list_shops(self) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT id, name, owner_name, email, phone, address, description, status, created_at
                FROM shops
                ORDER BY created_at ASC, id ASC
                """
            ).fetchall()
        return [dict(row) for row in rows]

    def create_product(
        self,
        *,
        title: str,
        price: float,
        shop_id: str | None,
        description: str = "",
        image: str | None = None,
        rating: float = 0.0,
        tags: list[str] | None = None,
        reviews: list[str] | None = None,
        in_stock: bool = True,
        product_id: str | None = None,
    ) -> dict[str, Any]:
        safe_title = title.strip()
        if not safe_title:
            raise ValueError("Please provide a product title.")
        if float(price) < 0:
            raise ValueError("Price cannot be negative.")
        if shop_id is not None and self.get_shop(shop_id) is None:
            raise KeyError("Shop not found.")

        timestamp = _utc_now()
        record = {
            "id": product_id or _new_id(),
            "shop_id": shop_id,
            "title": safe_title,
            "description": description or "",
            "price": float(price),
            "image": image,
            "rating": max(0.0, min(5.0, float(rating or 0.0))),
            "tags_json": json.dumps(_clean_tags(tags)),
            "reviews_json": json.dumps(_clean_reviews(reviews)),
            "in_stock": 1 if in_stock else 0,
            "created_at": timestamp,
            "updated_at": timestamp,
        }
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO products (
                    id, shop_id, title, description, price, image, rating,
                    tags_json, reviews_json, in_stock, created_at, updated_at
                ) VALUES (
                    :id, :shop_id, :title, :description, :price, :image, :rating,
                    :tags_json, :reviews_json, :in_stock, :created_at, :updated_at
                )
                """,
                record,
            )
        return self.get_product(record["id"]) or {}

    def get_product(self, product_id: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute(
                """
                SELECT id, shop_id, title, description, price, image, rating,
                       tags_json, reviews_json, in_stock, created_at, updated_at
                FROM products
                WHERE id = ?
                """,
                (product_id,),
            ).fetchone()
        return self._product_row(row) if row else None

    def update_product(self, product_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        current = self.get_product(product_id)
        if current is None:
            raise KeyError("Product not found.")

        unknown = set(changes) - _PRODUCT_FIELDS
        if unknown:
            raise ValueError(f"Unsupported product fields: {', '.join(sorted(unknown))}")

        merged = {**current, **changes}
        if not str(merged.get("title") or "").strip():
            raise ValueError("Please provide a product title.")
        if float(merged["price"]) < 0:
            raise ValueError("Price cannot be negative.")
        if "shop_id" in changes and changes["shop_id"] is not None and self.get_shop(changes["shop_id"]) is None:
            raise KeyError("Shop not found.")

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE products
                SET shop_id = ?, title = ?, description = ?, price = ?, image = ?, rating = ?,
                    tags_json = ?, reviews_json = ?, in_stock = ?, updated_at = ?
                WHERE id = ?
                """,
                (
                    merged.get("shop_id"),
                    str(merged["title"]).strip(),
                    merged.get("description") or "",
                    float(merged["price"]),
                    merged.get("image"),
                    max(0.0, min(5.0, float(merged.get("rating") or 0.0))),
                    json.dumps(_clean_tags(merged.get("tags"))),
                    json.dumps(_clean_reviews(merged.get("reviews"))),
                    1 if merged.get("in_stock", True) else 0,
                    _utc_now(),
                    product_id,
                ),
            )
        return self.get_product(product_id) or {}

    def delete_product(self, product_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
        if cursor.rowcount == 0:
            raise KeyError("Product not found.")

    def delete_shop(self, shop_id: str) -> None:
        """Remove a shop; its products stay listed without an owner."""
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM shops WHERE id = ?", (shop_id,))
        if cursor.rowcount == 0:
            raise KeyError("Shop not found.")

    def delete_all(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM products")
            conn.execute("DELETE FROM shops")

    def list_products_with_shops(self) -> list[dict[str, Any]]:
        """Every product in insertion order, with its owning shop joined as ``shop`` (or None)."""
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT p.id, p.shop_id, p.title, p.description, p.price, p.image, p.rating,
                       p.tags_json, p.reviews_json, p.in_stock, p.created_at, p.updated_at,
                       s.name AS shop_name,
                       s.owner_name AS shop_owner_name,
                       s.address AS shop_address
                FROM products p
                LEFT JOIN shops s ON s.id = p.shop_id
                ORDER BY p.created_at ASC, p.rowid ASC
                """
            ).fetchall()

        out: list[dict[str, Any]] = []
        for row in rows:
            record = self._product_row(row)
            shop_name = record.pop("shop_name", None)
            owner_name = record.pop("shop_owner_name", None)
            address = record.pop("shop_address", None)
            record["shop"] = (
                {"id": record["shop_id"], "name": shop_name, "owner_name": owner_name, "address": address}
                if record.get("shop_id") and shop_name is not None
                else None
            )
            out.append(record)
        return out

    def stats(self) -> dict[str, Any]:
        with self._connect() as conn:
            counts = conn.execute(
                """
                SELECT
                  (SELECT COUNT(*) FROM products) AS product_count,
                  (SELECT COUNT(*) FROM shops) AS shop_count
                """
            ).fetchone()
        return dict(counts) if counts else {"product_count": 0, "shop_count": 0}
