"""Assistant service orchestrating corpus sync, retrieval and answer composition."""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
import logging
import threading
from typing import Any

from omnicart_assistant.cohere_utils import (
    CohereCompletionProvider,
    CohereEmbeddingProvider,
    CompletionProvider,
    EmbeddingProvider,
    make_client,
)
from omnicart_assistant.composer import AnswerComposer
from omnicart_assistant.config import AssistantPolicy, Settings
from omnicart_assistant.corpus import CorpusPolicy, build_all
from omnicart_assistant.db import MarketplaceDB
from omnicart_assistant.errors import (
    CompletionError,
    ConfigurationError,
    DataUnavailableError,
    EmbeddingError,
)
from omnicart_assistant.knowledge import Coalescer, KnowledgeIndex, KnowledgeIndexer
from omnicart_assistant.query import parse_query, resolve_intent
from omnicart_assistant.retrieval import RetrievalPolicy, Retriever
from omnicart_assistant.storage import JsonDocumentStore


_LOGGER = logging.getLogger(__name__)
_CHAT_EXECUTOR = ThreadPoolExecutor(max_workers=8, thread_name_prefix="chat-request")
_SYNC_EXECUTOR = ThreadPoolExecutor(max_workers=1, thread_name_prefix="knowledge-sync")

INTENT_CONFIGURATION_ERROR = "configuration_error"
INTENT_NO_DATA = "no_data"
INTENT_EMBEDDING_ERROR = "embedding_error"
INTENT_ERROR = "error"
INTENT_TIMEOUT = "timeout"

_FALLBACK_REPLIES = {
    INTENT_CONFIGURATION_ERROR: "The AI assistant is not configured yet. Please contact support to enable it.",
    INTENT_NO_DATA: "I do not have enough data to answer that right now. Please try again later.",
    INTENT_EMBEDDING_ERROR: "I ran into an issue understanding that question. Please try rephrasing it.",
    INTENT_ERROR: "The AI assistant is temporarily unavailable. Please try again later.",
    INTENT_TIMEOUT: "That took longer than expected. Please try again in a moment.",
}


def fallback_response(intent: str, reply: str | None = None) -> dict[str, Any]:
    return {
        "reply": reply or _FALLBACK_REPLIES.get(intent, _FALLBACK_REPLIES[INTENT_ERROR]),
        "sources": [],
        "products": [],
        "shops": [],
        "actions": [],
        "intent": intent,
    }


class ShoppingAssistantService:
    def __init__(
        self,
        *,
        db: MarketplaceDB,
        store: JsonDocumentStore,
        embedder: EmbeddingProvider,
        completion: CompletionProvider,
        policy: AssistantPolicy | None = None,
        retrieval_policy: RetrievalPolicy | None = None,
        corpus_policy: CorpusPolicy | None = None,
        request_timeout_seconds: float = 25.0,
    ) -> None:
        self.db = db
        self.store = store
        self.completion = completion
        self.policy = policy or AssistantPolicy()
        self.corpus_policy = corpus_policy or CorpusPolicy()
        self.request_timeout_seconds = request_timeout_seconds

        self.indexer = KnowledgeIndexer(store, embedder)
        self.retriever = Retriever(embedder, retrieval_policy)
        self.composer = AnswerComposer(completion, self.policy)

        self._syncer: Coalescer[KnowledgeIndex] = Coalescer(self._sync_once)
        self._config_warning_logged = False
        self._state_lock = threading.Lock()
        self.last_sync: Future | None = None
        self.last_sync_error: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ShoppingAssistantService":
        """Wire the Cohere-backed providers once for the whole process."""
        settings = settings or Settings.from_env()
        try:
            client = make_client()
        except ConfigurationError as exc:
            _LOGGER.warning("%s Chat replies will report a configuration error.", exc)
            client = None

        return cls(
            db=MarketplaceDB(settings.db_path),
            store=JsonDocumentStore(settings.data_dir),
            embedder=CohereEmbeddingProvider(client, model=settings.cohere.embed_model),
            completion=CohereCompletionProvider(client),
            policy=AssistantPolicy.from_cohere_config(settings.cohere),
            request_timeout_seconds=settings.request_timeout_seconds,
        )

    @property
    def ai_enabled(self) -> bool:
        return bool(self.completion.configured)

    # Knowledge sync

    def _sync_once(self) -> KnowledgeIndex:
        build_all(self.db, self.store, self.corpus_policy)
        return self.indexer.refresh()

    def sync_knowledge(self) -> KnowledgeIndex:
        """Rebuild the corpus documents, then refresh the embedding index."""
        return self._syncer.run()

    def schedule_sync(self, reason: str) -> Future:
        future = _SYNC_EXECUTOR.submit(self.sync_knowledge)

        def _log_outcome(done: Future) -> None:
            if done.cancelled():
                return
            exc = done.exception()
            with self._state_lock:
                self.last_sync_error = str(exc) if exc is not None else None
            if exc is not None:
                _LOGGER.error("Knowledge sync after %s failed: %s", reason, exc, exc_info=exc)
            else:
                _LOGGER.info("Knowledge sync after %s completed.", reason)

        future.add_done_callback(_log_outcome)
        with self._state_lock:
            self.last_sync = future
        return future

    # Catalog mutations

    def create_shop(self, **fields: Any) -> dict[str, Any]:
        shop = self.db.create_shop(**fields)
        self.schedule_sync("shop-created")
        return shop

    def create_product(self, **fields: Any) -> dict[str, Any]:
        product = self.db.create_product(**fields)
        self.schedule_sync("product-created")
        return product

    def update_product(self, product_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        product = self.db.update_product(product_id, changes)
        self.schedule_sync("product-updated")
        return product

    def delete_product(self, product_id: str) -> None:
        self.db.delete_product(product_id)
        self.schedule_sync("product-deleted")

    # Chat

    def _require_index(self) -> KnowledgeIndex:
        index = self.indexer.current()
        if index.entries:
            return index

        try:
            index = self.sync_knowledge()
        except Exception:
            _LOGGER.exception("Knowledge sync before answering failed.")
            index = self.indexer.current()
        if not index.entries:
            raise DataUnavailableError("Knowledge base is empty.")
        return index

    def _answer(self, message: str) -> dict[str, Any]:
        if not self.completion.configured:
            if not self._config_warning_logged:
                self._config_warning_logged = True
                _LOGGER.warning("Chat requested but no Cohere credential is configured.")
            return fallback_response(INTENT_CONFIGURATION_ERROR)

        try:
            index = self._require_index()
        except DataUnavailableError:
            return fallback_response(INTENT_NO_DATA)

        context = parse_query(message)
        try:
            retrieval = self.retriever.retrieve(message, context, index)
        except EmbeddingError as exc:
            _LOGGER.warning("Query embedding failed: %s", exc)
            return fallback_response(INTENT_EMBEDDING_ERROR)

        intent = resolve_intent(context, retrieval.products)
        try:
            answer = self.composer.compose(message, context, retrieval, intent)
        except CompletionError as exc:
            _LOGGER.error("Completion failed: %s", exc)
            return fallback_response(INTENT_ERROR, exc.provider_message)

        if answer.model:
            _LOGGER.debug("Answered with %s (intent=%s).", answer.model, answer.intent)
        return answer.to_dict()

    def chat(self, message: str) -> dict[str, Any]:
        """Answer one shopper message; failures come back as fallback replies."""
        if not isinstance(message, str) or not message.strip():
            raise ValueError("Message is required.")

        future = _CHAT_EXECUTOR.submit(self._answer, message.strip())
        try:
            return future.result(timeout=self.request_timeout_seconds)
        except FutureTimeoutError:
            future.cancel()
            _LOGGER.warning("Chat request timed out after %.1fs.", self.request_timeout_seconds)
            return fallback_response(INTENT_TIMEOUT)
        except Exception:
            _LOGGER.exception("Chat request failed.")
            return fallback_response(INTENT_ERROR)

    # Ops

    def stats(self) -> dict[str, Any]:
        index = self.indexer.current()
        counts = self.db.stats()
        with self._state_lock:
            last_sync_error = self.last_sync_error
        return {
            "products": int(counts.get("product_count", 0)),
            "shops": int(counts.get("shop_count", 0)),
            "knowledge_entries": len(index),
            "knowledge_generated_at": index.generated_at,
            "embedding_model": index.embedding_model,
            "ai_enabled": self.ai_enabled,
            "sync_runs": self._syncer.runs,
            "last_sync_error": last_sync_error,
        }
