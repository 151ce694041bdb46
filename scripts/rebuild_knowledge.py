#!/usr/bin/env python3
"""Rebuilds the product/shop corpus documents and refreshes the embedding index."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys
import time

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from dotenv import load_dotenv
from omnicart_assistant.corpus import build_all
from omnicart_assistant.errors import AssistantError
from omnicart_assistant.service import ShoppingAssistantService


def main() -> int:
    load_dotenv(ROOT_DIR / ".env")

    parser = argparse.ArgumentParser(description="Rebuild the OmniCart knowledge base.")
    parser.add_argument(
        "--corpus-only",
        action="store_true",
        help="Write products.json and shops.json without calling the embedding API.",
    )
    parser.add_argument("--verbose", action="store_true", help="Log at DEBUG level.")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )
    service = ShoppingAssistantService.from_settings()

    start = time.perf_counter()
    try:
        if args.corpus_only:
            product_corpus, shop_corpus = build_all(service.db, service.store, service.corpus_policy)
            print(f"products: {len(product_corpus['products'])}")
            print(f"shops: {len(shop_corpus['shops'])}")
        else:
            service.sync_knowledge()
            print(json.dumps(service.stats(), indent=2))
    except AssistantError as exc:
        print(f"rebuild failed: {exc}", file=sys.stderr)
        return 1

    print(f"elapsed: {(time.perf_counter() - start) * 1000.0:.0f} ms")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
