"""
Checklist compressor: send only the editorial rules that matter for this text.

=== THE PROBLEM ===

The editorial checklist is a ~220-line document (~8000 tokens). Sending all of
it with every generation batch is the single largest cost in the prompt, yet
any one source text only touches a handful of its sections.

=== THE APPROACH ===

1. PARSE the checklist once into numbered sections ("1.6 Единая терминология"
   starts section "1.6", everything up to the next numbered line belongs to it).
2. DETECT which sections are relevant: a fixed baseline (terminology, interface
   wording) plus every section whose trigger pattern matches the source text.
3. EXTRACT header + those sections, in that order.

This is lossy on purpose: a rule whose trigger did not fire is left out. The
guarantee is "baseline + every triggered section", not "every rule that could
possibly apply". Typical savings are 60-75% of the checklist.

Triggers are independent (OR), so adding a row to TRIGGERS can only add
sections, never hide one another.
"""

import logging
import re
from pathlib import Path
from typing import Dict, Iterable, List, NamedTuple, Optional, Sequence, Union

from faq_assistant.core.errors import DataUnavailable
from faq_assistant.models.faq import ChecklistSection
from faq_assistant.services.prompt_builder import estimate_tokens

logger = logging.getLogger(__name__)

HEADER_ID = "header"
SECTION_BOUNDARY = re.compile(r"^(\d+\.\d+\.?)\s+(.+)")

# Always sent: terminology and interface naming apply to every answer
BASELINE_SECTIONS = ["1.6", "1.7"]


class Trigger(NamedTuple):
    section_id: str
    name: str
    pattern: re.Pattern


TRIGGERS: List[Trigger] = [
    Trigger("1.9", "logical sequence", re.compile(
        r"шаг|сначала|затем|далее|после этого|следующий шаг|\d+\.|во-первых|во-вторых"
        r"|порядок действий|\bstep\b|\bfirst\b|\bthen\b|\bnext\b|\bafter that\b",
        re.IGNORECASE,
    )),
    Trigger("1.8", "closed question", re.compile(
        r"можно ли|нужна ли|нужен ли|нужно ли|доступно ли|есть ли|могу ли|возможно ли"
        r"|\bcan i\b|\bis it possible\b|\bdo i need\b|\bis there\b",
        re.IGNORECASE,
    )),
    Trigger("1.1", "customer inquiries", re.compile(
        r"обращени|жалоб|вопрос|проблем|не работает|ошибк"
        r"|complain|\bissue|problem|not working|\berror",
        re.IGNORECASE,
    )),
    Trigger("1.4", "basic questions", re.compile(
        r"новый|новая|новое|запуск|что такое|как работает"
        r"|\bnew\b|\blaunch|what is|how does .+ work",
        re.IGNORECASE,
    )),
    Trigger("1.10", "full answer with recommendations", re.compile(
        r"нельзя|не могу|недоступно|ограничени"
        r"|cannot|can't|unavailable|not available|restrict|limit",
        re.IGNORECASE,
    )),
]

SEO_SECTION = "1.5"


def parse_sections(document: str) -> Dict[str, ChecklistSection]:
    """
    Split a checklist document into sections keyed by id.

    A line opens a new section iff it matches ^(\\d+\\.\\d+\\.?)\\s+(.+); the
    numeric prefix (trailing dot stripped) is the id and the line itself is the
    first body line. Lines before the first boundary go into a "header"
    section, which is absent when there are no such lines.

    The dict keeps document order, so joining every body with "\\n" gives back
    the document (minus one trailing newline). Only "\\n" separates lines;
    form feeds and other Unicode line breaks stay inside their line.
    """
    sections: Dict[str, ChecklistSection] = {}
    header_lines: List[str] = []
    current_id: Optional[str] = None
    current_title = ""
    current_lines: List[str] = []

    def _close_current():
        if current_id is None:
            return
        if current_id in sections:
            logger.warning(f"Duplicate checklist section {current_id}, keeping the later one")
        sections[current_id] = ChecklistSection(
            id=current_id, title=current_title, body="\n".join(current_lines)
        )

    lines = document.split("\n")
    if lines and lines[-1] == "":
        lines.pop()

    for line in lines:
        match = SECTION_BOUNDARY.match(line)
        if match:
            _close_current()
            current_id = match.group(1).rstrip(".")
            current_title = match.group(2).strip()
            current_lines = [line]
        elif current_id is not None:
            current_lines.append(line)
        else:
            header_lines.append(line)
            if HEADER_ID not in sections:
                # reserve the first slot so the header stays in front
                sections[HEADER_ID] = ChecklistSection(id=HEADER_ID, title="Header", body="")

    _close_current()

    if header_lines:
        sections[HEADER_ID] = ChecklistSection(
            id=HEADER_ID, title="Header", body="\n".join(header_lines)
        )

    return sections


def detect_relevant_sections(
    text: str,
    brand_terms: Sequence[str] = ("kaspi", "каспи"),
) -> List[str]:
    """
    Section ids relevant to a source text.

    Always starts with BASELINE_SECTIONS; each trigger that matches adds its
    section. The result has no duplicates and keeps first-seen order.
    """
    relevant = list(BASELINE_SECTIONS)

    if brand_terms:
        brand_pattern = re.compile("|".join(re.escape(t) for t in brand_terms), re.IGNORECASE)
        if brand_pattern.search(text):
            relevant.append(SEO_SECTION)

    for trigger in TRIGGERS:
        if trigger.pattern.search(text):
            relevant.append(trigger.section_id)

    return list(dict.fromkeys(relevant))


def extract_sections(sections: Dict[str, ChecklistSection], section_ids: Iterable[str]) -> str:
    """
    Header (when not blank) followed by each requested section, in the order
    given, separated by blank lines. Unknown ids are logged and skipped.
    """
    parts = []

    header = sections.get(HEADER_ID)
    if header and header.body.strip():
        parts.append(header.body.strip())

    for section_id in section_ids:
        if section_id == HEADER_ID:
            continue
        section = sections.get(section_id)
        if section is None:
            logger.warning(f"Section {section_id} not found in checklist")
            continue
        parts.append(section.body.strip())

    return "\n\n".join(parts)


class ChecklistCompressor:
    """
    Owns one checklist document and its parsed sections.

    Parsing happens once, on first use; clear_cache() forces a re-parse.
    """

    def __init__(self, document: str, brand_terms: Sequence[str] = ("kaspi", "каспи")):
        self.document = document
        self.brand_terms = tuple(brand_terms)
        self._sections: Optional[Dict[str, ChecklistSection]] = None

    @classmethod
    def from_file(cls, path: Union[str, Path], **kwargs) -> "ChecklistCompressor":
        try:
            document = Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            raise DataUnavailable(f"Could not read checklist {path}: {exc}") from exc
        if not any(SECTION_BOUNDARY.match(line) for line in document.split("\n")):
            raise DataUnavailable(f"Checklist {path} has no numbered sections")
        return cls(document, **kwargs)

    def sections(self) -> Dict[str, ChecklistSection]:
        if self._sections is None:
            self._sections = parse_sections(self.document)
            logger.info(f"Parsed {len(self._sections)} checklist sections")
        return self._sections

    def clear_cache(self):
        self._sections = None
        logger.info("Checklist cache cleared")

    def relevant_sections(self, source_text: str) -> List[str]:
        return detect_relevant_sections(source_text, self.brand_terms)

    def compress(self, source_text: str) -> str:
        """Checklist reduced to the sections relevant to source_text."""
        section_ids = self.relevant_sections(source_text)
        compressed = extract_sections(self.sections(), section_ids)

        original_length = len(self.document)
        if original_length:
            savings = (1 - len(compressed) / original_length) * 100
            logger.info(
                f"Compressed checklist to sections {', '.join(section_ids)}: "
                f"{original_length} -> {len(compressed)} chars ({savings:.1f}% saved)"
            )
        return compressed

    def compressed_prompt(self, source_text: str) -> str:
        return f"Редакторский чек-лист (релевантные секции):\n{self.compress(source_text)}\n"

    def all_section_ids(self) -> List[str]:
        return [sid for sid in self.sections() if sid != HEADER_ID]

    def stats(self) -> dict:
        return {
            "total_sections": len(self.all_section_ids()),
            "total_lines": len(self.document.splitlines()),
            "total_chars": len(self.document),
            "estimated_tokens": estimate_tokens(self.document),
        }
