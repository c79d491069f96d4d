"""
Fuzzy title matching used to keep already-seen movies out of recommendations.

A title is reduced to a set of normalized variants; two titles match when any
pair of their variants is equal, contains the other, or shares an 80% prefix.
This catches sequels ("Drishyam 2" vs "Drishyam"), leading articles and
year-suffixed titles that differ only cosmetically from the stored title.
"""
import logging
import re
from dataclasses import dataclass
from .config import SUBSTRING_MIN_LENGTH, PREFIX_MIN_LENGTH, PREFIX_RATIO

logger = logging.getLogger(__name__)

_NON_ALNUM = re.compile(r'[^a-z0-9]')
_NON_ALPHA = re.compile(r'[^a-z]')
_NON_ALPHA_SPACE = re.compile(r'[^a-z\s]')
_YEAR_SUFFIX = re.compile(r'\s*\(\d{4}\)\s*$')
_LEADING_THE = re.compile(r'^the\s+')


def _alnum(text: str) -> str:
    return _NON_ALNUM.sub('', text.lower())


def normalize_title(title: str) -> frozenset[str]:
    """Return the normalized variants of ``title``; variants of 2 chars or fewer are dropped."""
    if not title:
        return frozenset()

    lowered = title.lower()
    variants = [
        _alnum(title),
        _alnum(_YEAR_SUFFIX.sub('', title)),
    ]

    letters_only = _NON_ALPHA.sub('', lowered)
    if len(letters_only) > 3:
        variants.append(letters_only)

    words = [w for w in _NON_ALPHA_SPACE.sub('', lowered).split() if len(w) > 2]
    if len(words) >= 2:
        variants.append(''.join(words[:2]))
        variants.append(''.join(words))

    variants.append(_alnum(_LEADING_THE.sub('', lowered)))

    return frozenset(v for v in variants if len(v) > 2)


def _prefix_contained(shorter: str, longer: str) -> bool:
    prefix = shorter[:int(len(shorter) * PREFIX_RATIO)]
    return prefix in longer


def variants_match(a: str, b: str) -> bool:
    """Match two normalized variants. Symmetric in its arguments."""
    if a == b:
        return True

    if len(a) >= SUBSTRING_MIN_LENGTH and len(b) >= SUBSTRING_MIN_LENGTH:
        if a in b or b in a:
            return True

    if len(a) >= PREFIX_MIN_LENGTH and len(b) >= PREFIX_MIN_LENGTH:
        if len(a) == len(b):
            return _prefix_contained(a, b) or _prefix_contained(b, a)
        shorter, longer = (a, b) if len(a) < len(b) else (b, a)
        return _prefix_contained(shorter, longer)

    return False


def is_match(title_a: str, title_b: str) -> bool:
    variants_b = normalize_title(title_b)
    return any(
        variants_match(va, vb)
        for va in normalize_title(title_a)
        for vb in variants_b
    )


@dataclass(frozen=True)
class ExclusionMatch:
    matched_title: str
    reason: str


class ExclusionIndex:
    """
    Rated and watchlisted movies of one user, indexed by ID and title variant.

    ``check`` answers whether a title fuzzily matches anything the user has
    already interacted with; ``is_excluded`` also checks ID and original title.
    """

    def __init__(self, ids=(), titles=()):
        self.ids: set[int] = set(ids)
        self._variants: dict[str, str] = {}
        for title in titles:
            for variant in normalize_title(title):
                self._variants[variant] = title

    @classmethod
    def from_profile(cls, profile) -> 'ExclusionIndex':
        index = cls(ids=profile.excluded_ids, titles=profile.excluded_titles)
        logger.info(f"Exclusion index built: {len(index.ids)} IDs, {len(index._variants)} title variants")
        return index

    def __len__(self):
        return len(self._variants)

    def check(self, title: str | None) -> ExclusionMatch | None:
        if not title or not self._variants:
            return None

        variants = normalize_title(title)
        for variant in variants:
            if variant in self._variants:
                return ExclusionMatch(self._variants[variant], f'Direct match: "{variant}"')

        for variant in variants:
            for excluded, original in self._variants.items():
                if variants_match(variant, excluded):
                    return ExclusionMatch(original, f'Fuzzy match: "{variant}" ~ "{excluded}"')
        return None

    def is_excluded(self, movie: dict) -> bool:
        return self.explain(movie) is not None

    def explain(self, movie: dict) -> str | None:
        """Human-readable reason ``movie`` is excluded, or None."""
        if movie.get('id') in self.ids:
            return f"ID {movie['id']} already rated or watchlisted"
        for key in ('title', 'original_title'):
            match = self.check(movie.get(key))
            if match:
                return f"{key} matched '{match.matched_title}' ({match.reason})"
        return None


def filter_excluded(movies: list[dict], exclusions: ExclusionIndex) -> list[dict]:
    """Drop every movie the user has already rated or watchlisted (by ID or fuzzy title)."""
    kept = []
    for movie in movies:
        if exclusions.is_excluded(movie):
            logger.warning(f"Filtered out '{movie.get('title')}' (ID: {movie.get('id')}): {exclusions.explain(movie)}")
            continue
        kept.append(movie)

    if len(kept) != len(movies):
        logger.info(f"Exclusion filter kept {len(kept)}/{len(movies)} movies")
    return kept
