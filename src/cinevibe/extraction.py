"""
Title/year extraction from free-form completion text.

Completion output is loosely structured prose, so candidates are pulled out
with an ordered set of regex patterns. Patterns are tried in priority order
and matches are deduplicated on (lowercased title, year).
"""
import logging
import re
from dataclasses import dataclass
from .config import MIN_TITLE_LENGTH

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Candidate:
    title: str
    year: int

    @property
    def key(self) -> str:
        return f"{self.title.lower()}|{self.year}"


@dataclass(frozen=True)
class TitlePattern:
    """A named regex whose groups 1 and 2 capture title and year."""
    name: str
    regex: re.Pattern


DEFAULT_PATTERNS = (
    # 1. **Title** (2023)  /  1. Title (2023)
    TitlePattern("numbered_paren", re.compile(
        r"\d+\.\s+\*?\*?([A-Z][^(\n]*?)\*?\*?\s+\((\d{4})\)", re.IGNORECASE)),
    # 1. Title - 2023
    TitlePattern("numbered_dash", re.compile(
        r"\d+\.\s+\*?\*?([A-Z][^(\n]*?)\*?\*?\s+-\s+(\d{4})", re.IGNORECASE)),
    # **Title** (2023)
    TitlePattern("bold_paren", re.compile(
        r"\*\*([A-Z][^*]+)\*\*\s+\((\d{4})\)", re.IGNORECASE)),
    # Title (2023) at the start of a line
    TitlePattern("line_paren", re.compile(
        r"^([A-Z][^\n(]{2,50})\s+\((\d{4})\)", re.IGNORECASE | re.MULTILINE)),
)


def clean_title(raw: str) -> str:
    return raw.replace('**', '').strip()


class TitleYearExtractor:
    """Extract (title, year) candidates using patterns tried in a fixed order."""

    def __init__(self, patterns: tuple[TitlePattern, ...] = DEFAULT_PATTERNS):
        self.patterns = tuple(patterns)

    def extract(self, text: str) -> list[Candidate]:
        if not text:
            return []

        seen: set[str] = set()
        candidates: list[Candidate] = []
        for pattern in self.patterns:
            for match in pattern.regex.finditer(text):
                title = clean_title(match.group(1))
                if len(title) < MIN_TITLE_LENGTH:
                    continue
                candidate = Candidate(title=title, year=int(match.group(2)))
                if candidate.key in seen:
                    continue
                seen.add(candidate.key)
                candidates.append(candidate)
                logger.debug(f"Extracted '{title}' ({candidate.year}) via {pattern.name}")

        logger.info(f"Extracted {len(candidates)} candidates from completion text")
        return candidates


_default_extractor = TitleYearExtractor()


def extract_candidates(text: str) -> list[Candidate]:
    return _default_extractor.extract(text)
