"""Cohere API helpers for chat/embed plus the provider seams used by the assistant."""

from __future__ import annotations

import json
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol
import urllib.error
import urllib.request

from omnicart_assistant.errors import CompletionError, ConfigurationError, EmbeddingError, ModelUnavailableError


DEFAULT_CHAT_MODEL = "command-r-08-2024"
DEFAULT_EMBED_MODEL = "embed-v4.0"
DEFAULT_FALLBACK_CHAT_MODELS = (
    "command-r-08-2024",
    "command-r-plus-08-2024",
    "command-a-03-2025",
)
DEFAULT_BASE_URL = "https://api.cohere.com/v2"

_RETRYABLE_STATUS = {408, 409, 429, 500, 502, 503, 504}
_MODEL_GONE_MARKERS = ("not found", "decommissioned", "deprecated", "removed", "no longer supported")


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except Exception:
        return default
    return value if value > 0 else default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except Exception:
        return default
    return value if value >= 0 else default


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    values = tuple(part.strip() for part in raw.split(",") if part.strip())
    return values or default


@dataclass(frozen=True)
class CohereConfig:
    chat_model: str
    embed_model: str
    fallback_chat_models: tuple[str, ...]

    @classmethod
    def from_env(cls) -> "CohereConfig":
        return cls(
            chat_model=os.getenv("OMNI_CHAT_MODEL", DEFAULT_CHAT_MODEL),
            embed_model=os.getenv("OMNI_EMBED_MODEL", DEFAULT_EMBED_MODEL),
            fallback_chat_models=_env_list("OMNI_FALLBACK_CHAT_MODELS", DEFAULT_FALLBACK_CHAT_MODELS),
        )


class CohereRequestError(RuntimeError):
    def __init__(self, message: str, *, status_code: int | None = None, provider_message: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.provider_message = provider_message


def _provider_message(body: str) -> str:
    try:
        parsed = json.loads(body)
    except Exception:
        return body.strip()
    if isinstance(parsed, dict):
        for key in ("message", "error", "detail"):
            value = parsed.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"].strip()
    return body.strip()


class CohereClient:
    def __init__(self, *, api_key: str, base_url: str, timeout_seconds: float, max_retries: int) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = max(1.0, float(timeout_seconds))
        self.max_retries = max(0, int(max_retries))

    def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        body = json.dumps(payload).encode("utf-8")
        endpoint = f"{self.base_url}{path}"
        request = urllib.request.Request(
            endpoint,
            data=body,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Accept": "application/json",
                "Content-Type": "application/json",
            },
            method="POST",
        )

        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                with urllib.request.urlopen(request, timeout=self.timeout_seconds) as response:
                    return json.loads(response.read().decode("utf-8"))
            except urllib.error.HTTPError as exc:
                response_body = exc.read().decode("utf-8", errors="ignore")
                if exc.code in _RETRYABLE_STATUS and attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                raise CohereRequestError(
                    f"Cohere request failed ({exc.code}) at {path}: {response_body or exc.reason}",
                    status_code=exc.code,
                    provider_message=_provider_message(response_body) or str(exc.reason),
                ) from exc
            except urllib.error.URLError as exc:
                last_error = exc
                if attempt < self.max_retries:
                    time.sleep(0.4 * (2**attempt))
                    continue
                raise CohereRequestError(
                    f"Cohere request failed at {path}: {exc.reason}",
                    provider_message=str(exc.reason),
                ) from exc

        raise CohereRequestError(f"Cohere request failed at {path}: {last_error}")

    @staticmethod
    def _extract_chat_text(payload: dict[str, Any]) -> str:
        message = payload.get("message")
        if not isinstance(message, dict):
            return ""

        content = message.get("content")
        if isinstance(content, str):
            return content.strip()
        if isinstance(content, list):
            parts: list[str] = []
            for chunk in content:
                if isinstance(chunk, dict):
                    text = chunk.get("text")
                    if isinstance(text, str):
                        parts.append(text)
            return "\n".join(parts).strip()
        return ""

    @staticmethod
    def _extract_embeddings(payload: dict[str, Any]) -> list[list[float]]:
        embeddings = payload.get("embeddings")
        if isinstance(embeddings, list):
            rows = embeddings
        elif isinstance(embeddings, dict) and isinstance(embeddings.get("float"), list):
            rows = embeddings["float"]
        else:
            return []

        out: list[list[float]] = []
        for row in rows:
            if isinstance(row, list):
                try:
                    out.append([float(value) for value in row])
                except Exception:
                    continue
        return out

    def chat_text(self, *, system_prompt: str, prompt: str, model: str, temperature: float = 0.2) -> str:
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": prompt},
            ],
            "temperature": temperature,
        }
        response = self._post_json("/chat", payload)
        return self._extract_chat_text(response)

    def embed_texts(
        self,
        *,
        texts: list[str],
        model: str,
        input_type: str,
    ) -> list[list[float]]:
        cleaned = [str(text).strip() for text in texts if str(text).strip()]
        if not cleaned:
            return []

        payload = {
            "model": model,
            "texts": cleaned,
            "input_type": input_type,
            "embedding_types": ["float"],
        }
        response = self._post_json("/embed", payload)
        vectors = self._extract_embeddings(response)
        if len(vectors) != len(cleaned):
            raise CohereRequestError("Cohere embedding response shape mismatch.")
        return vectors


def _load_private_endpoint_overrides() -> dict[str, Any]:
    config_path = os.getenv("OMNI_COHERE_CONFIG_PATH", "").strip()
    if not config_path:
        return {}

    path = Path(config_path)
    if not path.exists() or not path.is_file():
        return {}

    try:
        parsed = json.loads(path.read_text(encoding="utf-8"))
    except Exception:
        return {}

    if not isinstance(parsed, dict):
        return {}
    return parsed


def resolve_api_key() -> str:
    api_key = os.getenv("COHERE_API_KEY", "").strip()
    if api_key:
        return api_key
    return str(_load_private_endpoint_overrides().get("api_key", "")).strip()


def make_client() -> CohereClient:
    overrides = _load_private_endpoint_overrides()

    api_key = resolve_api_key()
    if not api_key:
        raise ConfigurationError("COHERE_API_KEY is not set.")

    timeout_seconds = _env_float("OMNI_COHERE_TIMEOUT_SECONDS", float(overrides.get("timeout_seconds", 20.0) or 20.0))
    max_retries = _env_int("OMNI_COHERE_MAX_RETRIES", int(overrides.get("max_retries", 1) or 1))
    base_url = os.getenv("COHERE_API_BASE_URL", "").strip() or str(overrides.get("base_url", DEFAULT_BASE_URL)).strip()

    return CohereClient(
        api_key=api_key,
        base_url=base_url or DEFAULT_BASE_URL,
        timeout_seconds=timeout_seconds,
        max_retries=max_retries,
    )


class EmbeddingProvider(Protocol):
    model: str

    def embed(self, text: str) -> list[float]: ...


class CompletionProvider(Protocol):
    @property
    def configured(self) -> bool: ...

    def complete(self, *, model: str, system_prompt: str, user_message: str, temperature: float) -> str: ...


class CohereEmbeddingProvider:
    """Embeds corpus text as ``search_document`` and shopper text as ``search_query``."""

    def __init__(self, client: CohereClient | None, *, model: str = DEFAULT_EMBED_MODEL) -> None:
        self.client = client
        self.model = model

    def _embed_one(self, text: str, input_type: str) -> list[float]:
        if self.client is None:
            raise EmbeddingError("COHERE_API_KEY is not set.")
        try:
            vectors = self.client.embed_texts(texts=[text], model=self.model, input_type=input_type)
        except CohereRequestError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc
        if not vectors:
            raise EmbeddingError("Embedding request returned no vector.")
        return vectors[0]

    def embed(self, text: str) -> list[float]:
        return self._embed_one(text, "search_document")

    def embed_query(self, text: str) -> list[float]:
        return self._embed_one(text, "search_query")


def is_model_unavailable(status_code: int | None, provider_message: str) -> bool:
    if status_code == 404:
        return True
    lowered = (provider_message or "").lower()
    return "model" in lowered and any(marker in lowered for marker in _MODEL_GONE_MARKERS)


class CohereCompletionProvider:
    def __init__(self, client: CohereClient | None) -> None:
        self.client = client

    @property
    def configured(self) -> bool:
        return self.client is not None

    def complete(self, *, model: str, system_prompt: str, user_message: str, temperature: float) -> str:
        if self.client is None:
            raise ConfigurationError("COHERE_API_KEY is not set.")
        try:
            return self.client.chat_text(
                system_prompt=system_prompt,
                prompt=user_message,
                model=model,
                temperature=temperature,
            )
        except CohereRequestError as exc:
            if is_model_unavailable(exc.status_code, exc.provider_message):
                raise ModelUnavailableError(
                    f"Chat model {model} is unavailable.",
                    provider_message=exc.provider_message,
                    code="model_not_found",
                ) from exc
            raise CompletionError(
                str(exc),
                provider_message=exc.provider_message or None,
                code=str(exc.status_code) if exc.status_code else None,
            ) from exc
