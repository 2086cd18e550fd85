"""Task transcript parsing — stream-json event lines into typed messages (no I/O).

The task executor emits one JSON object per line:
- type=system, subtype=init   -> TranscriptInit
- type=assistant              -> TextMessage / ToolUse per content block
- type=user                   -> ToolResult per tool_result block
- type=result                 -> TaskResult
Anything else, including non-JSON lines, is skipped.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any

SUMMARY_MAX_CHARS = 200
NO_SUMMARY = "(no summary available)"


# ── Message types ──────────────────────────────────────────────


@dataclass
class TranscriptInit:
    """type=system, subtype=init — first line of a run."""

    model: str | None = None
    session_id: str | None = None
    version: str | None = None
    cwd: str | None = None


@dataclass
class TextMessage:
    text: str


@dataclass
class ToolUse:
    tool_name: str
    tool_id: str = ""
    input: Any = None


@dataclass
class ToolResult:
    tool_id: str
    output: str
    is_error: bool = False


@dataclass
class TokenUsage:
    input_tokens: int = 0
    output_tokens: int = 0
    cache_read_tokens: int | None = None
    cache_creation_tokens: int | None = None


@dataclass
class TaskResult:
    """type=result — marks the end of the run."""

    success: bool
    result_text: str | None = None
    duration_ms: int | None = None
    total_cost_usd: float | None = None
    usage: TokenUsage | None = None


Message = TextMessage | ToolUse | ToolResult


def truncate(text: str, max_len: int) -> str:
    """Cut to ``max_len`` characters, marking the cut with '...'."""
    if len(text) <= max_len:
        return text
    return text[: max(max_len - 3, 0)] + "..."


@dataclass
class Transcript:
    init: TranscriptInit | None = None
    messages: list[Message] = field(default_factory=list)
    result: TaskResult | None = None
    raw: str = ""

    # ── Parsing ───────────────────────────────────────────────

    @classmethod
    def parse(cls, output: str) -> Transcript:
        transcript = cls(raw=output)
        for line in output.splitlines():
            line = line.strip()
            if not line:
                continue
            try:
                data = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict):
                transcript._consume(data)
        return transcript

    def _consume(self, data: dict) -> None:
        msg_type = data.get("type", "")

        if msg_type == "system" and data.get("subtype") == "init":
            self.init = TranscriptInit(
                model=data.get("model"),
                session_id=data.get("session_id"),
                version=data.get("claude_code_version"),
                cwd=data.get("cwd"),
            )

        elif msg_type == "assistant":
            for block in _content_blocks(data):
                if block.get("type") == "text" and isinstance(block.get("text"), str):
                    self.messages.append(TextMessage(text=block["text"]))
                elif block.get("type") == "tool_use":
                    self.messages.append(
                        ToolUse(
                            tool_name=block.get("name") or "unknown",
                            tool_id=block.get("id", ""),
                            input=block.get("input"),
                        )
                    )

        elif msg_type == "user":
            for block in _content_blocks(data):
                if block.get("type") == "tool_result":
                    content = block.get("content")
                    self.messages.append(
                        ToolResult(
                            tool_id=block.get("tool_use_id", ""),
                            output=content if isinstance(content, str) else "",
                            is_error=bool(block.get("is_error", False)),
                        )
                    )

        elif msg_type == "result":
            usage = data.get("usage")
            self.result = TaskResult(
                success=data.get("subtype") == "success",
                result_text=data.get("result"),
                duration_ms=data.get("duration_ms"),
                total_cost_usd=data.get("total_cost_usd"),
                usage=TokenUsage(
                    input_tokens=usage.get("input_tokens", 0),
                    output_tokens=usage.get("output_tokens", 0),
                    cache_read_tokens=usage.get("cache_read_input_tokens"),
                    cache_creation_tokens=usage.get("cache_creation_input_tokens"),
                )
                if isinstance(usage, dict)
                else None,
            )

    # ── Queries ───────────────────────────────────────────────

    @property
    def is_structured(self) -> bool:
        return self.init is not None or bool(self.messages) or self.result is not None

    def succeeded(self) -> bool:
        return self.result is not None and self.result.success

    def tools_used(self) -> list[str]:
        return [m.tool_name for m in self.messages if isinstance(m, ToolUse)]

    def total_cost(self) -> float | None:
        return self.result.total_cost_usd if self.result else None

    def duration_ms(self) -> int | None:
        return self.result.duration_ms if self.result else None

    def generate_summary(self) -> str:
        """Result text, else the first assistant text, else a placeholder."""
        if self.result and self.result.result_text:
            return truncate_summary(self.result.result_text)
        for message in self.messages:
            if isinstance(message, TextMessage) and message.text:
                return truncate_summary(message.text)
        return NO_SUMMARY

    # ── Rendering ─────────────────────────────────────────────

    def render_conversation(self) -> str:
        """Assistant text and tool markers, for full-history context."""
        if not self.is_structured:
            return self.raw.strip()
        parts = []
        for message in self.messages:
            if isinstance(message, TextMessage):
                parts.append(message.text.strip())
            elif isinstance(message, ToolUse):
                parts.append(f"[Used tool: {message.tool_name}]")
        return "\n\n".join(p for p in parts if p)

    def format_for_extraction(self, task_prompt: str, include_tool_outputs: bool = True) -> str:
        """Condensed transcript fed to the note extractor."""
        lines = [f"Task: {task_prompt}", ""]
        if self.init and self.init.model:
            lines.append(f"Model: {self.init.model}")
        lines.extend(["---", ""])

        if not self.is_structured:
            lines.extend([self.raw.strip(), ""])
            return "\n".join(lines)

        for message in self.messages:
            if isinstance(message, TextMessage):
                lines.extend(["Assistant:", message.text, ""])
            elif isinstance(message, ToolUse):
                lines.append(f"Tool: {message.tool_name}")
                input_str = json.dumps(message.input, indent=2, ensure_ascii=False)
                if len(input_str) < 500:
                    lines.append(f"Input: {input_str}")
                lines.append("")
            elif isinstance(message, ToolResult) and include_tool_outputs:
                if message.is_error:
                    lines.extend([f"Error: {message.output[:500]}", ""])
                elif len(message.output) < 200:
                    lines.extend([f"Result: {message.output}", ""])

        if self.result:
            if self.result.result_text:
                lines.extend(["---", "", f"Final result: {self.result.result_text}"])
            if not self.result.success:
                lines.append("(Task failed)")
        return "\n".join(lines)


def truncate_summary(text: str) -> str:
    return text if len(text) <= SUMMARY_MAX_CHARS else text[:SUMMARY_MAX_CHARS] + "..."


def _content_blocks(data: dict) -> list[dict]:
    content = (data.get("message") or {}).get("content")
    if not isinstance(content, list):
        return []
    return [block for block in content if isinstance(block, dict)]
