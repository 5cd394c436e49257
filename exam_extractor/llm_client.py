"""
Extraction Service Client
=========================
Boundary to the external LLM: submit one unit plus instructions,
receive free text. ``AnthropicExtractionService`` is the production
implementation; tests substitute any object with an ``extract`` method.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional, Protocol

import anthropic

from .exceptions import ConfigurationError, ExtractionServiceError
from .models import ExtractionContext

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


@dataclass(frozen=True)
class ExtractionRequest:
    """One service call: instructions plus a base64-encoded PDF unit."""
    system_prompt: str
    user_prompt: str
    document_b64: str
    context: Optional[ExtractionContext] = None
    media_type: str = "application/pdf"


class ExtractionService(Protocol):
    def extract(self, request: ExtractionRequest) -> str:
        ...


class AnthropicExtractionService:
    """Sends PDF units to the Anthropic Messages API."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 16000,
        temperature: float = 0.1,
        timeout: float = 300.0,
    ) -> None:
        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            raise ConfigurationError(
                "ANTHROPIC_API_KEY is not configured in the environment."
            )
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        # Retries are handled per unit by the pipeline, not by the SDK.
        self.client = anthropic.Anthropic(
            api_key=api_key, timeout=timeout, max_retries=0
        )

    def extract(self, request: ExtractionRequest) -> str:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                system=request.system_prompt,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": request.user_prompt},
                            {
                                "type": "document",
                                "source": {
                                    "type": "base64",
                                    "media_type": request.media_type,
                                    "data": request.document_b64,
                                },
                            },
                        ],
                    }
                ],
            )
        except anthropic.APITimeoutError as e:
            raise ExtractionServiceError(f"Request timed out: {e}") from e
        except anthropic.APIError as e:
            raise ExtractionServiceError(f"Service call failed: {e}") from e

        usage = getattr(response, "usage", None)
        if usage is not None:
            logger.debug(
                f"Tokens used: in={usage.input_tokens} out={usage.output_tokens}"
            )
        return self._extract_text(response)

    @staticmethod
    def _extract_text(response) -> str:
        parts: list[str] = []
        for block in response.content or []:
            if getattr(block, "type", None) == "text" and block.text:
                parts.append(block.text)
        return "\n".join(parts).strip()
