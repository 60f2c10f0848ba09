from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from dotenv import load_dotenv


@dataclass(slots=True)
class EmbeddingSettings:
    """Model configuration for the optional neural scoring path."""

    neural_backend: str = "local"
    local_model: str = "all-MiniLM-L6-v2"
    openai_model: str = "text-embedding-3-small"
    neural_char_limit: int = 400
    neural_weight: float = 0.6


@dataclass(slots=True)
class RetrievalConfig:
    """Per-query retrieval options.

    Attributes:
        top_k: Maximum number of evidence chunks returned.
        use_neural: Blend neural embedding similarity into TF-IDF scores.
        min_score: Chunks scoring below this are discarded.
    """

    top_k: int = 4
    use_neural: bool = False
    min_score: float = 0.05

    @classmethod
    def from_material(cls, material: Any) -> RetrievalConfig:
        """Read the optional `index.aiChat.retrieval` block of a material object.

        Missing or malformed values keep their defaults.
        """
        config = cls()
        if not isinstance(material, dict):
            return config
        index = material.get("index")
        chat = index.get("aiChat") if isinstance(index, dict) else None
        block = chat.get("retrieval") if isinstance(chat, dict) else None
        if not isinstance(block, dict):
            return config

        if isinstance(block.get("topK"), int) and not isinstance(block.get("topK"), bool):
            config.top_k = block["topK"]
        if isinstance(block.get("useEmbeddings"), bool):
            config.use_neural = block["useEmbeddings"]
        if isinstance(block.get("minKeywordScore"), (int, float)) and not isinstance(
            block.get("minKeywordScore"), bool
        ):
            config.min_score = float(block["minKeywordScore"])
        return config


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def load_settings() -> tuple[EmbeddingSettings, RetrievalConfig]:
    """Load environment-backed settings and return typed config objects.

    Returns:
        Tuple containing embedding model settings and default retrieval options.
    """
    load_dotenv()
    return (
        EmbeddingSettings(
            neural_backend=os.getenv("ENERGY_RAG_NEURAL_BACKEND", "local"),
            local_model=os.getenv("ENERGY_RAG_LOCAL_MODEL", "all-MiniLM-L6-v2"),
            openai_model=os.getenv("OPENAI_EMBEDDING_MODEL", "text-embedding-3-small"),
        ),
        RetrievalConfig(
            top_k=int(os.getenv("ENERGY_RAG_TOP_K", "4")),
            use_neural=_env_flag("ENERGY_RAG_USE_NEURAL", False),
            min_score=float(os.getenv("ENERGY_RAG_MIN_SCORE", "0.05")),
        ),
    )
