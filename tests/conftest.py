from __future__ import annotations

import hashlib
from pathlib import Path
import re
import sys
import time

import pytest

ROOT_DIR = Path(__file__).resolve().parents[1]
SRC_DIR = ROOT_DIR / "src"
if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from omnicart_assistant.config import AssistantPolicy
from omnicart_assistant.db import MarketplaceDB
from omnicart_assistant.demo_catalog import seed_demo_catalog
from omnicart_assistant.errors import EmbeddingError
from omnicart_assistant.service import ShoppingAssistantService
from omnicart_assistant.storage import JsonDocumentStore


_TOKEN = re.compile(r"[a-z0-9]+")


class BagOfWordsEmbedder:
    """Deterministic hashed bag-of-words vectors with call counters."""

    def __init__(self, model: str = "stub-embed", dim: int = 4096) -> None:
        self.model = model
        self.dim = dim
        self.calls = 0
        self.query_calls = 0
        self.fail = False

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dim
        for token in _TOKEN.findall(text.lower()):
            slot = int(hashlib.md5(token.encode("utf-8")).hexdigest(), 16) % self.dim
            vector[slot] += 1.0
        return vector

    def embed(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingError("stub embedder is down")
        self.calls += 1
        return self._vector(text)

    def embed_query(self, text: str) -> list[float]:
        if self.fail:
            raise EmbeddingError("stub embedder is down")
        self.query_calls += 1
        return self._vector(text)


class StubCompletion:
    def __init__(self, reply: str = "Audio Hub is run by Ava Carter in Music City.", configured: bool = True) -> None:
        self.reply = reply
        self._configured = configured
        self.failures: dict[str, Exception] = {}
        self.delay_seconds = 0.0
        self.calls: list[dict[str, object]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    def complete(self, *, model: str, system_prompt: str, user_message: str, temperature: float) -> str:
        self.calls.append(
            {
                "model": model,
                "system_prompt": system_prompt,
                "user_message": user_message,
                "temperature": temperature,
            }
        )
        if self.delay_seconds:
            time.sleep(self.delay_seconds)
        failure = self.failures.get(model)
        if failure is not None:
            raise failure
        return self.reply


@pytest.fixture
def db(tmp_path: Path) -> MarketplaceDB:
    return MarketplaceDB(tmp_path / "omnicart.db")


@pytest.fixture
def store(tmp_path: Path) -> JsonDocumentStore:
    return JsonDocumentStore(tmp_path / "data")


@pytest.fixture
def embedder() -> BagOfWordsEmbedder:
    return BagOfWordsEmbedder()


@pytest.fixture
def completion() -> StubCompletion:
    return StubCompletion()


@pytest.fixture
def demo(db: MarketplaceDB) -> dict:
    return seed_demo_catalog(db)


@pytest.fixture
def policy() -> AssistantPolicy:
    return AssistantPolicy(
        chat_model="command-r-08-2024",
        fallback_models=("command-r-08-2024", "command-r-plus-08-2024", "command-a-03-2025"),
    )


@pytest.fixture
def make_service(db, store, embedder, completion, policy):
    def factory(**overrides) -> ShoppingAssistantService:
        kwargs = {
            "db": db,
            "store": store,
            "embedder": embedder,
            "completion": completion,
            "policy": policy,
            "request_timeout_seconds": 10.0,
        }
        kwargs.update(overrides)
        return ShoppingAssistantService(**kwargs)

    return factory


def product_id_by_title(products: list[dict], title: str) -> str:
    return next(product["id"] for product in products if product["title"] == title)


def shop_id_by_name(shops: list[dict], name: str) -> str:
    return next(shop["id"] for shop in shops if shop["name"] == name)
