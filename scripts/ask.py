#!/usr/bin/env python3
"""Sends one or more questions to the assistant and prints the structured replies."""

from __future__ import annotations

import argparse
import json
from pathlib import Path
import sys

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from dotenv import load_dotenv
from omnicart_assistant.service import ShoppingAssistantService


DEFAULT_QUESTIONS = [
    "show me speakers from Audio Hub shop",
    "list audio products",
    "what camera is good for hiking?",
    "how do I track my order?",
]


def main() -> int:
    load_dotenv(ROOT_DIR / ".env")

    parser = argparse.ArgumentParser(description="Ask the OmniCart assistant a question.")
    parser.add_argument(
        "question",
        nargs="*",
        help="Question to ask (defaults to a small demo set).",
    )
    parser.add_argument("--json", action="store_true", help="Print the full response payload as JSON.")
    args = parser.parse_args()

    service = ShoppingAssistantService.from_settings()
    questions = [" ".join(args.question)] if args.question else DEFAULT_QUESTIONS

    for question in questions:
        response = service.chat(question)
        if args.json:
            print(json.dumps({"question": question, **response}, indent=2))
            continue
        print(f"Q: {question}")
        print(f"A: {response['reply']}")
        print(f"   intent: {response['intent']}")
        for product in response["products"]:
            print(f"   - {product['name']} ({product['url']})")
        print()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
