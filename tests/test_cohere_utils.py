from __future__ import annotations

import io
import json
from typing import Any
import urllib.error

import pytest

from omnicart_assistant import cohere_utils
from omnicart_assistant.cohere_utils import (
    CohereClient,
    CohereCompletionProvider,
    CohereEmbeddingProvider,
    CohereRequestError,
    _provider_message,
    is_model_unavailable,
)
from omnicart_assistant.config import Settings
from omnicart_assistant.errors import CompletionError, ConfigurationError, EmbeddingError, ModelUnavailableError


class ScriptedClient(CohereClient):
    """Client whose HTTP layer returns queued payloads or raises queued errors."""

    def __init__(self, *responses: Any) -> None:
        super().__init__(api_key="test-key", base_url="https://cohere.test/v2", timeout_seconds=5, max_retries=0)
        self.responses = list(responses)
        self.requests: list[tuple[str, dict[str, Any]]] = []

    def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.requests.append((path, payload))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


def _http_error(status: int, body: str) -> urllib.error.HTTPError:
    return urllib.error.HTTPError("https://cohere.test/v2/chat", status, "error", {}, io.BytesIO(body.encode("utf-8")))


def _complete(provider: CohereCompletionProvider) -> str:
    return provider.complete(model="command-r-08-2024", system_prompt="sys", user_message="hi", temperature=0.2)


@pytest.mark.parametrize(
    ("status", "message", "expected"),
    [
        (404, "", True),
        (400, "model 'command-r' was decommissioned on 2025-09-15", True),
        (400, "The model command-light is deprecated.", True),
        (422, "model not found: command-x", True),
        (429, "You are using a Trial key, which is limited to 10 API calls / minute.", False),
        (500, "internal server error", False),
        (400, "invalid request: removed field 'stream'", False),
    ],
)
def test_is_model_unavailable(status, message, expected):
    assert is_model_unavailable(status, message) is expected


def test_provider_message_reads_json_and_plain_text_bodies():
    assert _provider_message(json.dumps({"message": " Quota exceeded. "})) == "Quota exceeded."
    assert _provider_message(json.dumps({"error": {"message": "bad model"}})) == "bad model"
    assert _provider_message(json.dumps({"detail": "nope"})) == "nope"
    assert _provider_message("upstream timed out\n") == "upstream timed out"
    assert _provider_message(json.dumps(["unexpected"])) == '["unexpected"]'


def test_completion_returns_chat_text():
    client = ScriptedClient({"message": {"content": [{"type": "text", "text": "Audio Hub sells speakers."}]}})

    assert _complete(CohereCompletionProvider(client)) == "Audio Hub sells speakers."
    path, payload = client.requests[0]
    assert path == "/chat"
    assert payload["model"] == "command-r-08-2024"
    assert [message["role"] for message in payload["messages"]] == ["system", "user"]


def test_completion_404_is_model_unavailable():
    client = ScriptedClient(CohereRequestError("gone", status_code=404, provider_message="not here"))

    with pytest.raises(ModelUnavailableError) as excinfo:
        _complete(CohereCompletionProvider(client))

    assert excinfo.value.code == "model_not_found"
    assert excinfo.value.provider_message == "not here"


def test_completion_decommissioned_model_is_model_unavailable():
    client = ScriptedClient(
        CohereRequestError("bad", status_code=400, provider_message="model 'command-r' was decommissioned")
    )

    with pytest.raises(ModelUnavailableError):
        _complete(CohereCompletionProvider(client))


def test_completion_rate_limit_stays_a_completion_error():
    client = ScriptedClient(CohereRequestError("slow down", status_code=429, provider_message="Too many requests."))

    with pytest.raises(CompletionError) as excinfo:
        _complete(CohereCompletionProvider(client))

    assert not isinstance(excinfo.value, ModelUnavailableError)
    assert excinfo.value.provider_message == "Too many requests."
    assert excinfo.value.code == "429"


def test_completion_without_client_is_a_configuration_error():
    provider = CohereCompletionProvider(None)

    assert provider.configured is False
    with pytest.raises(ConfigurationError):
        _complete(provider)


def test_http_error_body_reaches_the_completion_error(monkeypatch):
    def fail(request, timeout):
        raise _http_error(400, json.dumps({"message": "model 'command-r' was removed"}))

    monkeypatch.setattr(cohere_utils.urllib.request, "urlopen", fail)
    client = CohereClient(api_key="k", base_url="https://cohere.test/v2", timeout_seconds=5, max_retries=0)

    with pytest.raises(ModelUnavailableError) as excinfo:
        _complete(CohereCompletionProvider(client))

    assert excinfo.value.provider_message == "model 'command-r' was removed"


def test_transient_status_is_retried_before_failing(monkeypatch):
    attempts: list[int] = []

    def fail(request, timeout):
        attempts.append(1)
        raise _http_error(429, "Too many requests")

    monkeypatch.setattr(cohere_utils.urllib.request, "urlopen", fail)
    monkeypatch.setattr(cohere_utils.time, "sleep", lambda seconds: None)
    client = CohereClient(api_key="k", base_url="https://cohere.test/v2", timeout_seconds=5, max_retries=2)

    with pytest.raises(CohereRequestError) as excinfo:
        client.chat_text(system_prompt="sys", prompt="hi", model="command-r-08-2024")

    assert len(attempts) == 3
    assert excinfo.value.status_code == 429
    assert excinfo.value.provider_message == "Too many requests"


def test_embedding_uses_document_and_query_input_types():
    client = ScriptedClient({"embeddings": {"float": [[0.1, 0.2]]}}, {"embeddings": [[0.3, 0.4]]})
    provider = CohereEmbeddingProvider(client, model="embed-v4.0")

    assert provider.embed("Portable Speaker") == [0.1, 0.2]
    assert provider.embed_query("speakers") == [0.3, 0.4]
    assert [payload["input_type"] for _, payload in client.requests] == ["search_document", "search_query"]
    assert client.requests[0][1]["model"] == "embed-v4.0"


def test_embedding_shape_mismatch_becomes_embedding_error():
    client = ScriptedClient({"embeddings": {"float": []}})

    with pytest.raises(EmbeddingError):
        CohereEmbeddingProvider(client).embed("Portable Speaker")


def test_embedding_request_failure_becomes_embedding_error():
    client = ScriptedClient(CohereRequestError("boom", status_code=500, provider_message="internal"))

    with pytest.raises(EmbeddingError) as excinfo:
        CohereEmbeddingProvider(client).embed_query("speakers")

    assert isinstance(excinfo.value.__cause__, CohereRequestError)


def test_embedding_without_client_is_an_embedding_error():
    with pytest.raises(EmbeddingError):
        CohereEmbeddingProvider(None).embed("Portable Speaker")


def test_extract_embeddings_skips_malformed_rows():
    rows = CohereClient._extract_embeddings({"embeddings": [[1, 2], "junk", [3, "x"], [4.5]]})
    assert rows == [[1.0, 2.0], [4.5]]
    assert CohereClient._extract_embeddings({"embeddings": None}) == []


@pytest.mark.parametrize(("raw", "expected"), [("12.5", 12.5), ("junk", 25.0), ("-3", 25.0), ("", 25.0)])
def test_settings_request_timeout_from_env(monkeypatch, tmp_path, raw, expected):
    monkeypatch.setenv("OMNI_CHAT_TIMEOUT_SECONDS", raw)

    settings = Settings.from_env(tmp_path)

    assert settings.request_timeout_seconds == expected
