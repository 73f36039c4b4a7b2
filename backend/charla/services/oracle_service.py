# Overview: Boundary to the language model; builds prompts, calls the chat API and parses extraction replies.

"""
Oracle Adapter

The language model is an unreliable external function:

    extract(utterance, snapshot) -> dict | OracleParseFailure

Anything that is not a JSON object with a boolean hasSaleData is a
parse failure and is never partially trusted. Oracle calls are not
retried; a failed extraction is the final answer for that turn.
"""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Callable

from openai import OpenAI, OpenAIError

from ..errors import OracleParseFailure, OracleUnavailable
from .catalog_service import CatalogSnapshot
from .prompts import build_extraction_prompt

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^```[a-zA-Z]*\s*(.*?)\s*```$", re.DOTALL)

CompleteFn = Callable[[str], str]


class OracleClient:
    """
    Thin wrapper around the OpenAI chat completions API.

    max_retries=0: a slow or failing oracle ends the turn instead of
    blocking it behind SDK retries.
    """

    def __init__(
        self,
        api_key: str | None,
        model: str = "gpt-4o-mini",
        temperature: float = 0.5,
        max_tokens: int = 1000,
        timeout: float = 30.0,
        extraction_temperature: float = 0.1,
        extraction_max_tokens: int = 800,
    ):
        if not api_key:
            raise OracleUnavailable("OPENAI_API_KEY is not configured")
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.extraction_temperature = extraction_temperature
        self.extraction_max_tokens = extraction_max_tokens
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=0)

    @classmethod
    def from_config(cls, config) -> "OracleClient":
        return cls(
            api_key=config.get("OPENAI_API_KEY"),
            model=config.get("OPENAI_MODEL", "gpt-4o-mini"),
            temperature=config.get("OPENAI_TEMPERATURE", 0.5),
            max_tokens=config.get("OPENAI_MAX_TOKENS", 1000),
            timeout=config.get("OPENAI_TIMEOUT_SECONDS", 30),
            extraction_temperature=config.get("EXTRACTION_TEMPERATURE", 0.1),
            extraction_max_tokens=config.get("EXTRACTION_MAX_TOKENS", 800),
        )

    def _create(self, messages: list[dict], temperature: float, max_tokens: int) -> str:
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=messages,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise OracleUnavailable(
                "Language model request failed",
                details={"error": type(exc).__name__},
            ) from exc

        if not response.choices:
            raise OracleUnavailable("Language model returned no choices")
        return response.choices[0].message.content or ""

    def complete(self, prompt: str) -> str:
        """Single user-message completion at extraction settings."""
        return self._create(
            [{"role": "user", "content": prompt}],
            temperature=self.extraction_temperature,
            max_tokens=self.extraction_max_tokens,
        )

    def chat(self, messages: list[dict]) -> str:
        """Conversational completion at reply settings."""
        return self._create(messages, temperature=self.temperature, max_tokens=self.max_tokens)


def strip_code_fences(text: str) -> str:
    content = (text or "").strip()
    match = _FENCE.match(content)
    if match:
        return match.group(1).strip()
    return content


def parse_extraction(text: str) -> dict:
    """
    Oracle reply text -> extraction dict.

    Raises:
        OracleParseFailure: not JSON, not an object, or hasSaleData is
            missing or not a boolean.
    """
    content = strip_code_fences(text)
    if not content:
        raise OracleParseFailure("Empty reply from language model")

    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise OracleParseFailure(
            "Reply is not valid JSON",
            details={"position": exc.pos},
        ) from exc

    if not isinstance(data, dict):
        raise OracleParseFailure("Reply is not a JSON object")
    if not isinstance(data.get("hasSaleData"), bool):
        raise OracleParseFailure("Reply has no boolean hasSaleData")
    if data["hasSaleData"] and not isinstance(data.get("sale"), dict):
        raise OracleParseFailure("Reply declares sale data without a sale object")
    return data


def extract(utterance: str, snapshot: CatalogSnapshot, complete: CompleteFn) -> dict:
    """Build the extraction prompt, call the oracle once and parse its reply."""
    prompt = build_extraction_prompt(utterance, snapshot)
    started = time.monotonic()
    text = complete(prompt)
    elapsed_ms = int((time.monotonic() - started) * 1000)

    try:
        data = parse_extraction(text)
    except OracleParseFailure:
        logger.warning(
            "Unparseable extraction reply (%d chars, %d ms)", len(text or ""), elapsed_ms,
        )
        raise

    logger.info(
        "Extraction for %d-char utterance: hasSaleData=%s hasExpenseData=%s (%d ms)",
        len(utterance), data.get("hasSaleData"), data.get("hasExpenseData"), elapsed_ms,
    )
    return data
