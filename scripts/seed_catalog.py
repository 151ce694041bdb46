#!/usr/bin/env python3
"""Seeds the demo marketplace and rebuilds the knowledge base from it."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from dotenv import load_dotenv
from omnicart_assistant.demo_catalog import seed_demo_catalog
from omnicart_assistant.errors import AssistantError
from omnicart_assistant.service import ShoppingAssistantService


def main() -> int:
    load_dotenv(ROOT_DIR / ".env")

    parser = argparse.ArgumentParser(description="Load the OmniCart demo shops and products.")
    parser.add_argument(
        "--keep-existing",
        action="store_true",
        help="Append the demo records instead of clearing the catalog first.",
    )
    parser.add_argument(
        "--skip-sync",
        action="store_true",
        help="Only write the catalog; do not rebuild the corpus or the embeddings.",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    service = ShoppingAssistantService.from_settings()

    created = seed_demo_catalog(service.db, reset=not args.keep_existing)
    print(f"shops created: {len(created['shops'])}")
    print(f"products created: {len(created['products'])}")

    if args.skip_sync:
        return 0

    try:
        index = service.sync_knowledge()
    except AssistantError as exc:
        print(f"knowledge sync failed: {exc}", file=sys.stderr)
        return 1

    print(json.dumps(service.stats(), indent=2))
    print(f"knowledge entries: {len(index)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
