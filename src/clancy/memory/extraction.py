"""Note extraction prompt building, response parsing and merge into the store.

After each task the transcript goes to an external note extractor, which
answers with one section per category. The merge applies each category
independently: append categories get one entry per item, the plan is
replaced wholesale, and a failure in one category never rolls back another.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

from clancy.errors import ExtractionUnavailable
from clancy.memory.store import MergePolicy, NoteCategory, NoteDocument, split_entries
from clancy.tokens import chars_for_tokens

if TYPE_CHECKING:
    from clancy.engines.base import NoteExtractor
    from clancy.memory.store import NoteStore

logger = logging.getLogger(__name__)

NO_UPDATES = "NO_UPDATES"

EXTRACTION_PROMPT_TEMPLATE = """\
You are extracting structured notes from a coding task transcript.
The developer will use these notes to maintain context across tasks and sessions.

Analyze the transcript and produce updates to four note categories.
For each category, output ONLY new information not already present in existing notes.
If nothing new was learned for a category, output "NO_UPDATES".

## Categories

### ARCHITECTURE
Patterns, conventions, and structural knowledge about the codebase.
Examples: "Uses repository pattern", "Handlers follow extract-validate-execute",
"Tests use TestDb harness from tests/common/".

### DECISIONS
Choices made during this task with rationale.
Format: "- [YYYY-MM-DD] Chose X over Y because Z"
Include rejected alternatives when discussed.

### FAILURES
Things that didn't work, error messages encountered, dead ends.
Format: "- Don't try X — causes Y because Z"
This is critical for avoiding repeated mistakes.

### PLAN
Current state of the work, immediate next steps, open questions.
This REPLACES (not appends to) the previous plan.
Format as a brief status + bullet list of TODOs.

---

## Existing Notes

<architecture>
{architecture}
</architecture>

<decisions>
{decisions}
</decisions>

<failures>
{failures}
</failures>

<plan>
{plan}
</plan>

---

## Task Transcript

<transcript>
{transcript}
</transcript>

---

Output format (use exactly these headers):

### ARCHITECTURE
[new items only, or NO_UPDATES]

### DECISIONS
[new items only, or NO_UPDATES]

### FAILURES
[new items only, or NO_UPDATES]

### PLAN
[full replacement content]"""

_HEADERS = {
    NoteCategory.ARCHITECTURE: "### ARCHITECTURE",
    NoteCategory.DECISIONS: "### DECISIONS",
    NoteCategory.FAILURES: "### FAILURES",
    NoteCategory.PLAN: "### PLAN",
}


# ── Extraction result ─────────────────────────────────────────


@dataclass
class ExtractionResult:
    """Per-category update: None means NoUpdate.

    Append categories take either raw text (split into items on merge) or a
    list of items; the plan takes its full replacement text.
    """

    architecture: str | list[str] | None = None
    decisions: str | list[str] | None = None
    failures: str | list[str] | None = None
    plan: str | None = None

    def update_for(self, category: NoteCategory) -> str | list[str] | None:
        value = getattr(self, category.value)
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, list) and not any(item.strip() for item in value):
            return None
        return value

    def updated_categories(self) -> list[NoteCategory]:
        return [c for c in NoteCategory if self.update_for(c) is not None]

    def has_updates(self) -> bool:
        return bool(self.updated_categories())

    def summary(self) -> str:
        names = [c.value for c in self.updated_categories()]
        return ", ".join(names) if names else "no updates"


# ── Prompt building / response parsing ───────────────────────


def cap_transcript(transcript_text: str, max_tokens: int) -> str:
    """Keep the tail of an oversized transcript; the end holds the outcome."""
    max_chars = chars_for_tokens(max_tokens)
    if len(transcript_text) <= max_chars:
        return transcript_text
    logger.info("Transcript capped from %d to %d chars", len(transcript_text), max_chars)
    return "[... earlier transcript omitted ...]\n" + transcript_text[-max_chars:]


def build_extraction_prompt(notes: dict[NoteCategory, NoteDocument], transcript_text: str) -> str:
    """Build the extractor prompt from current notes and the formatted transcript."""

    def existing(category: NoteCategory) -> str:
        document = notes.get(category)
        if document is None or document.is_empty:
            return "(empty)"
        return document.text

    return EXTRACTION_PROMPT_TEMPLATE.format(
        architecture=existing(NoteCategory.ARCHITECTURE),
        decisions=existing(NoteCategory.DECISIONS),
        failures=existing(NoteCategory.FAILURES),
        plan=existing(NoteCategory.PLAN),
        transcript=transcript_text,
    )


def parse_extraction_response(response_text: str) -> ExtractionResult:
    """Split the extractor's answer by category header; NO_UPDATES means no change."""
    result = ExtractionResult()
    order = list(_HEADERS.items())
    for i, (category, header) in enumerate(order):
        start = response_text.find(header)
        if start < 0:
            continue
        content_start = start + len(header)
        end = len(response_text)
        for _, later in order[i + 1 :]:
            pos = response_text.find(later, content_start)
            if pos >= 0:
                end = pos
                break
        content = response_text[content_start:end].strip()
        if not content or content.upper().startswith(NO_UPDATES):
            continue
        setattr(result, category.value, content)
    return result


# ── Merge ─────────────────────────────────────────────────────


class MergeStatus(str, Enum):
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    FAILED = "failed"


@dataclass
class CategoryOutcome:
    category: NoteCategory
    status: MergeStatus
    entries_written: int = 0
    error: str | None = None


@dataclass
class MergeReport:
    """What an extraction merge did, per category."""

    outcomes: dict[NoteCategory, CategoryOutcome] = field(default_factory=dict)
    unavailable: str | None = None

    @property
    def updated(self) -> list[NoteCategory]:
        return [c for c, o in self.outcomes.items() if o.status is MergeStatus.UPDATED]

    @property
    def unchanged(self) -> list[NoteCategory]:
        return [c for c, o in self.outcomes.items() if o.status is MergeStatus.UNCHANGED]

    @property
    def failed(self) -> list[NoteCategory]:
        return [c for c, o in self.outcomes.items() if o.status is MergeStatus.FAILED]

    def summary(self) -> str:
        if self.unavailable:
            return f"notes not updated: {self.unavailable}"
        parts = []
        if self.updated:
            parts.append("updated: " + ", ".join(c.value for c in self.updated))
        if self.failed:
            parts.append("failed: " + ", ".join(c.value for c in self.failed))
        return "; ".join(parts) if parts else "no updates"


def apply_extraction(store: NoteStore, project: str, result: ExtractionResult) -> MergeReport:
    """Apply an extraction result category by category."""
    report = MergeReport()
    for category in NoteCategory:
        update = result.update_for(category)
        if update is None:
            report.outcomes[category] = CategoryOutcome(category, MergeStatus.UNCHANGED)
            continue
        try:
            with store.atomic(project, category):
                written = _merge_category(store, project, category, update)
            report.outcomes[category] = CategoryOutcome(
                category, MergeStatus.UPDATED, entries_written=written
            )
        except Exception as e:
            logger.error("Failed to merge %s notes for %s: %s", category.value, project, e)
            report.outcomes[category] = CategoryOutcome(category, MergeStatus.FAILED, error=str(e))
    logger.info("Extraction merge for %s: %s", project, report.summary())
    return report


def _merge_category(
    store: NoteStore, project: str, category: NoteCategory, update: str | list[str]
) -> int:
    if category.policy is MergePolicy.REPLACE:
        content = update if isinstance(update, str) else "\n".join(update)
        store.replace(project, category, content)
        return 1
    items = split_entries(update) if isinstance(update, str) else [i for i in update if i.strip()]
    for item in items:
        store.append(project, category, item)
    return len(items)


def merge_task_notes(
    store: NoteStore,
    extractor: NoteExtractor,
    project: str,
    task_prompt: str,
    transcript_text: str,
) -> MergeReport:
    """Ask the extractor for updates and merge them; extractor failure leaves notes untouched."""
    notes = store.read_all(project)
    try:
        result = extractor.extract(notes, task_prompt, transcript_text)
    except ExtractionUnavailable as e:
        logger.warning("Note extraction unavailable for %s: %s", project, e)
        return MergeReport(unavailable=str(e))
    return apply_extraction(store, project, result)
