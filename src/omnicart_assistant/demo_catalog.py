"""Demo marketplace used by the seed script and the test suite."""

from __future__ import annotations

from typing import Any

from omnicart_assistant.db import MarketplaceDB


DEMO_SHOPS: list[dict[str, Any]] = [
    {
        "key": "audio-hub",
        "name": "Audio Hub",
        "owner_name": "Ava Carter",
        "email": "ava@audiohub.com",
        "phone": "+1 (555) 123-4567",
        "address": "123 Sound Street, Music City, MC 12345",
    },
    {
        "key": "wearables-co",
        "name": "Wearables Co.",
        "owner_name": "Liam Patel",
        "email": "liam@wearablesco.com",
        "phone": "+1 (555) 234-5678",
        "address": "456 Tech Avenue, Innovation District, ID 67890",
    },
    {
        "key": "adventure-cams",
        "name": "Adventure Cams",
        "owner_name": "Noah Kim",
        "email": "noah@adventurecams.com",
        "phone": "+1 (555) 345-6789",
        "address": "789 Adventure Lane, Outdoor City, OC 13579",
    },
]

DEMO_PRODUCTS: list[dict[str, Any]] = [
    {
        "shop": "audio-hub",
        "title": "Wireless Headphones",
        "description": "Noise-cancelling over-ear headphones with 30h battery.",
        "price": 129.99,
        "image": "/wireless-headphones.png",
        "rating": 4.6,
        "tags": ["audio", "wireless"],
    },
    {
        "shop": "wearables-co",
        "title": "Smartwatch Pro",
        "description": "Track fitness, sleep, and notifications with style.",
        "price": 199.0,
        "image": "/smartwatch-wearable-product.jpg",
        "rating": 4.4,
        "tags": ["wearable", "fitness"],
    },
    {
        "shop": "audio-hub",
        "title": "Portable Speaker",
        "description": "Rich sound in a compact, water-resistant design.",
        "price": 79.5,
        "image": "/portable-speaker.png",
        "rating": 4.5,
        "tags": ["audio", "portable"],
    },
    {
        "shop": "adventure-cams",
        "title": "4K Action Cam",
        "description": "Capture every adventure in stunning detail.",
        "price": 249.0,
        "image": "/4k-action-camera-product.jpg",
        "rating": 4.2,
        "tags": ["camera", "outdoor"],
    },
]


def seed_demo_catalog(db: MarketplaceDB, *, reset: bool = True) -> dict[str, Any]:
    """Insert the demo shops and products; returns the created records keyed by kind."""
    if reset:
        db.delete_all()

    shop_ids: dict[str, str] = {}
    shops: list[dict[str, Any]] = []
    for row in DEMO_SHOPS:
        fields = {key: value for key, value in row.items() if key != "key"}
        shop = db.create_shop(**fields)
        shop_ids[row["key"]] = shop["id"]
        shops.append(shop)

    products: list[dict[str, Any]] = []
    for row in DEMO_PRODUCTS:
        fields = {key: value for key, value in row.items() if key != "shop"}
        products.append(db.create_product(shop_id=shop_ids[row["shop"]], **fields))

    return {"shops": shops, "products": products}
