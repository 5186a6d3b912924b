from __future__ import annotations

from typing import Any, Protocol

from wc_dispatch.clients import build_openai_client
from wc_dispatch.config import EXTRACTOR_VALUES, AppConfig
from wc_dispatch.logger import JsonlLogger
from wc_dispatch.parsing.contracts import Extraction, MessageHeaders
from wc_dispatch.parsing.email_parser import RegexExtractor
from wc_dispatch.parsing.llm_extractor import LlmExtractor


class Extractor(Protocol):
    name: str

    def extract(self, body: str | None, headers: MessageHeaders | None = None) -> Extraction: ...


def build_extractor(
    cfg: AppConfig,
    *,
    logger: JsonlLogger | None = None,
    strategy: str | None = None,
    llm_client: Any | None = None,
) -> Extractor:
    """Pick the extraction strategy; ``strategy`` overrides ``cfg.extractor``."""
    chosen = (strategy or cfg.extractor).strip().lower()
    if chosen not in EXTRACTOR_VALUES:
        raise ValueError(f"Unknown extractor strategy: {chosen!r}")

    if chosen == "regex":
        return RegexExtractor()

    client = llm_client if llm_client is not None else build_openai_client(cfg)
    return LlmExtractor(
        client,
        model=cfg.openai.model,
        logger=logger.child("llm_extractor") if logger else None,
    )
