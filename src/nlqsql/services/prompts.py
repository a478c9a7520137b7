import logging
from pathlib import Path
from typing import Dict, Mapping

logger = logging.getLogger(__name__)

PACKAGE_PROMPTS_DIR = Path(__file__).resolve().parents[1] / "prompts"

RELEVANT_SCHEMA = "relevant_schema"
NLQ_TO_SQL = "nlq_to_sql"
RETRY = "retry"

TEMPLATE_FILES: Dict[str, str] = {
    RELEVANT_SCHEMA: "RelevantSchema.txt",
    NLQ_TO_SQL: "NLQtoSQL.txt",
    RETRY: "RetryPrompt.txt",
}

BASE_MARKERS = ("SCHEMA", "CONVERSATION", "RECENT", "USER")
RETRY_MARKERS = ("FAILED_SQL", "ERROR")


def markers_for(template_name: str) -> tuple[str, ...]:
    """Placeholders substituted in the given template."""
    if template_name == RETRY:
        return BASE_MARKERS + RETRY_MARKERS
    return BASE_MARKERS


class PromptComposer:
    """Fills ``{{MARKER}}`` placeholders in the stage templates.

    Substitution is plain string replacement with no escaping: a question or
    schema that itself contains ``{{USER}}``-style text is inserted verbatim.
    Markers a template does not recognize are left as they are.
    """

    def __init__(self, prompts_dir: Path | None = None) -> None:
        self._dir = Path(prompts_dir) if prompts_dir else PACKAGE_PROMPTS_DIR

    def load(self, template_name: str) -> str:
        """Read the template text from disk (not cached, edits apply immediately)."""
        try:
            filename = TEMPLATE_FILES[template_name]
        except KeyError:
            raise ValueError(f"Unknown prompt template: {template_name}") from None
        return (self._dir / filename).read_text(encoding="utf-8")

    def compose(self, template_name: str, bindings: Mapping[str, str]) -> str:
        text = self.load(template_name)
        recognized = markers_for(template_name)
        for marker in recognized:
            if marker in bindings:
                text = text.replace("{{" + marker + "}}", bindings[marker])
        ignored = sorted(set(bindings) - set(recognized))
        if ignored:
            logger.debug("Template %s ignores bindings: %s", template_name, ignored)
        return text
