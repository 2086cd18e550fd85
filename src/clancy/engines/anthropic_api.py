"""Anthropic API note extractor — one request per finished task, no tools."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

import anthropic

from clancy.config import ExtractionConfig
from clancy.errors import ExtractionUnavailable
from clancy.memory.extraction import (
    ExtractionResult,
    build_extraction_prompt,
    cap_transcript,
    parse_extraction_response,
)
from clancy.memory.store import NoteCategory, NoteDocument
from clancy.transcript import Transcript

logger = logging.getLogger(__name__)

_STATUS_HINTS = {
    401: " (check your API key)",
    429: " (rate limited, try again later)",
}


def _status_hint(status: int) -> str:
    if status in _STATUS_HINTS:
        return _STATUS_HINTS[status]
    if 500 <= status < 600:
        return " (API server error, try again later)"
    return ""


@dataclass
class AnthropicExtractor:
    """Note extraction via the `anthropic` SDK."""

    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048
    timeout: int = 60
    api_key_env: str = "ANTHROPIC_API_KEY"
    max_transcript_tokens: int = 100_000
    include_tool_outputs: bool = True
    client: Any = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: ExtractionConfig) -> AnthropicExtractor:
        return cls(
            model=config.model,
            max_tokens=config.max_tokens,
            timeout=config.timeout,
            api_key_env=config.api_key_env,
            max_transcript_tokens=config.max_transcript_tokens,
            include_tool_outputs=config.include_tool_outputs,
        )

    @property
    def name(self) -> str:
        return "anthropic_api"

    def _get_client(self) -> Any:
        if self.client is None:
            api_key = os.getenv(self.api_key_env)
            if not api_key:
                raise ExtractionUnavailable(
                    f"API key not found. Set {self.api_key_env} environment variable."
                )
            self.client = anthropic.Anthropic(api_key=api_key, timeout=self.timeout)
        return self.client

    def extract(
        self,
        notes: dict[NoteCategory, NoteDocument],
        task_prompt: str,
        task_output: str,
    ) -> ExtractionResult:
        transcript_text = Transcript.parse(task_output).format_for_extraction(
            task_prompt, include_tool_outputs=self.include_tool_outputs
        )
        prompt = build_extraction_prompt(
            notes, cap_transcript(transcript_text, self.max_transcript_tokens)
        )
        response_text = self._call(prompt)
        result = parse_extraction_response(response_text)
        logger.info("Extracted notes: %s", result.summary())
        return result

    def _call(self, prompt: str) -> str:
        client = self._get_client()
        try:
            response = client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            raise ExtractionUnavailable(
                f"Anthropic API error ({e.status_code}){_status_hint(e.status_code)}: {e.message}"
            ) from e
        except anthropic.APITimeoutError as e:
            raise ExtractionUnavailable(f"Anthropic API timed out after {self.timeout}s") from e
        except anthropic.APIConnectionError as e:
            raise ExtractionUnavailable(
                "Failed to connect to Anthropic API (check network connection)"
            ) from e
        except anthropic.APIError as e:
            raise ExtractionUnavailable(f"Anthropic API error: {e.message}") from e

        text = "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )
        if not text:
            raise ExtractionUnavailable("Anthropic API returned empty response")
        return text
