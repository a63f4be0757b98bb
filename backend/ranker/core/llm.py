# backend/ranker/core/llm.py
"""
Gemini LLM handle (LangChain wrapper).
- Uses ChatGoogleGenerativeAI with the configured model, temperature=0
- Built from Settings at startup; returns None when no key is configured so
  grading runs on the heuristic path instead of failing
"""

from __future__ import annotations

import logging
from typing import Optional

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_google_genai import ChatGoogleGenerativeAI

from .config import Settings

logger = logging.getLogger(__name__)


def build_llm(settings: Settings) -> Optional[BaseChatModel]:
    if not settings.llm_enabled:
        logger.warning("GEMINI_API_KEY not set; grading will use the heuristic scorer")
        return None
    logger.info("Gemini LLM ready (%s)", settings.llm_model)
    return ChatGoogleGenerativeAI(
        model=settings.llm_model,
        temperature=0,
        api_key=settings.gemini_api_key,
    )


__all__ = ["build_llm"]
