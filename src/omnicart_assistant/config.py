"""Runtime settings and the answer policy injected into the composer."""

from __future__ import annotations

from dataclasses import dataclass, field
import os
from pathlib import Path

from omnicart_assistant.cohere_utils import DEFAULT_CHAT_MODEL, DEFAULT_FALLBACK_CHAT_MODELS, CohereConfig, _env_float


CONTEXT_PLACEHOLDER = "{{ retrieved_chunks }}"

SYSTEM_PROMPT_TEMPLATE = """You are OmniCart Assistant, a friendly shopping guide.
Use the provided context to answer questions about products, shops, owners, or reviews.
Rules:
- Keep every answer concise, between 50 and 60 words.
- Avoid markdown emphasis and do not mention raw URLs or link syntax.
- Describe the most relevant product first, including name, price, stock, rating, and seller when available.
- Never mention or list sources, citations, or raw paths (such as /products/...).
- Do not ask the shopper if they want to continue; simply offer a clear recommendation.
- Mention similar options briefly only when helpful, without listing more than two.
- If information is missing, say: "I don't have that info right now. Please check the product page."
- Do NOT invent details that are not in the context.
Context:
{{ retrieved_chunks }}"""


@dataclass(frozen=True)
class AssistantPolicy:
    chat_model: str = DEFAULT_CHAT_MODEL
    fallback_models: tuple[str, ...] = DEFAULT_FALLBACK_CHAT_MODELS
    system_prompt_template: str = SYSTEM_PROMPT_TEMPLATE
    temperature: float = 0.2
    max_reply_words: int = 60
    companion_limit: int = 2
    candidate_option_limit: int = 3

    @classmethod
    def from_cohere_config(cls, cfg: CohereConfig) -> "AssistantPolicy":
        return cls(chat_model=cfg.chat_model, fallback_models=cfg.fallback_chat_models)

    def model_chain(self) -> list[str]:
        chain = [self.chat_model]
        chain.extend(model for model in self.fallback_models if model not in chain)
        return chain


@dataclass(frozen=True)
class Settings:
    root_dir: Path
    data_dir: Path
    request_timeout_seconds: float = 25.0
    cohere: CohereConfig = field(default_factory=CohereConfig.from_env)

    @property
    def db_path(self) -> Path:
        return self.data_dir / "omnicart.db"

    @classmethod
    def from_env(cls, root_dir: Path | None = None) -> "Settings":
        root = root_dir or Path(__file__).resolve().parents[2]
        raw_data_dir = os.getenv("OMNI_DATA_DIR", "").strip()
        return cls(
            root_dir=root,
            data_dir=Path(raw_data_dir) if raw_data_dir else root / "data",
            request_timeout_seconds=_env_float("OMNI_CHAT_TIMEOUT_SECONDS", 25.0),
            cohere=CohereConfig.from_env(),
        )
