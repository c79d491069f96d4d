import logging
from .catalog import CatalogError, details_to_fields
from .database import find_movies_by_title_year, find_movies_by_preference, upsert_movie
from .extraction import Candidate
from .matching import ExclusionIndex
from .profile import UserProfile
from .config import (
    CANDIDATE_WALK_MULTIPLIER,
    FUZZY_YEAR_WINDOW,
    NO_MIN_YEAR_SENTINEL,
    DEFAULT_MIN_SCORE,
    LANGUAGE_CODES,
)

logger = logging.getLogger(__name__)


def preference_language_codes(profile: UserProfile) -> list[str]:
    """Catalog language codes for the user's preferred languages; unmapped names are dropped."""
    return [LANGUAGE_CODES[lang] for lang in profile.preferences.languages if lang in LANGUAGE_CODES]


def preference_filters(profile: UserProfile) -> dict:
    """Translate stored preferences into catalog query thresholds."""
    prefs = profile.preferences
    year_from = prefs.year_from
    # 1900 is stored when the user picked "any year"
    if year_from is not None and year_from <= NO_MIN_YEAR_SENTINEL:
        year_from = None
    return {
        # Compared against COALESCE(imdb_rating, vote_average), so unenriched records use vote_average
        'min_score': prefs.min_score if prefs.min_score is not None else DEFAULT_MIN_SCORE,
        'year_from': year_from,
        'year_to': prefs.year_to,
        'min_box_office': prefs.min_box_office,
        'max_budget': prefs.max_budget,
    }


def _covers(movie: dict, candidate: Candidate) -> bool:
    """True when a catalog record plausibly is the candidate (title contains it, year within window)."""
    year = movie.get('year')
    return (
        bool(year)
        and candidate.title.lower() in (movie.get('title') or '').lower()
        and abs(year - candidate.year) <= FUZZY_YEAR_WINDOW
    )


class CandidateResolver:
    """
    Turn extracted (title, year) candidates into catalog records.

    Local catalog tiers run first (exact year, fuzzy year, preference
    fallback); candidates the catalog doesn't know are looked up in TMDB and
    cached locally. ``catalog`` may be None, in which case no external
    lookups happen.
    """

    def __init__(self, catalog=None):
        self.catalog = catalog

    def find_local(self, candidates: list[Candidate], desired_count: int,
                   profile: UserProfile, exclusions: ExclusionIndex) -> list[dict]:
        """Run the three local tiers and return their concatenated results."""
        local: list[dict] = []

        if candidates:
            local = find_movies_by_title_year(candidates, exclude_ids=exclusions.ids)
            logger.info(f"Exact tier: {len(local)} matches")

        if candidates and len(local) < desired_count:
            taken = exclusions.ids | {m['id'] for m in local}
            fuzzy = find_movies_by_title_year(
                candidates,
                exclude_ids=taken,
                year_window=FUZZY_YEAR_WINDOW,
                limit=desired_count - len(local),
            )
            local.extend(fuzzy)
            logger.info(f"Fuzzy tier (±{FUZZY_YEAR_WINDOW} years): {len(fuzzy)} matches, {len(local)} total")

        if len(local) < desired_count:
            local.extend(self._preference_tier(profile, exclusions, local, desired_count - len(local)))

        return local

    def _preference_tier(self, profile: UserProfile, exclusions: ExclusionIndex,
                         local: list[dict], needed: int) -> list[dict]:
        codes = preference_language_codes(profile)
        if not codes:
            logger.info("Preference tier skipped: no mappable preferred languages")
            return []

        filters = preference_filters(profile)
        results = find_movies_by_preference(
            codes,
            exclude_ids=exclusions.ids | {m['id'] for m in local},
            limit=needed,
            **filters,
        )
        logger.info(f"Preference tier ({', '.join(codes)}; {filters}): {len(results)} matches")
        return results

    def _fetch_external(self, candidate: Candidate) -> dict | None:
        """Search TMDB, fetch details and upsert. Returns the stored record or None."""
        hit = self.catalog.search_by_title_year(candidate.title, candidate.year)
        if not hit:
            logger.info(f"No catalog hit for '{candidate.title}' ({candidate.year})")
            return None

        details = self.catalog.fetch_details(hit['id'])
        return upsert_movie(hit['id'], details_to_fields(details, fallback_year=candidate.year))

    def resolve(self, candidates: list[Candidate], desired_count: int,
                profile: UserProfile, exclusions: ExclusionIndex) -> list[dict]:
        """
        Return up to ``desired_count`` distinct, non-excluded catalog records.

        Candidates are walked in order (at most ``2 × desired_count`` of them):
        an excluded title is skipped, a locally resolved record is accepted,
        otherwise the external catalog is consulted. Unused local records
        backfill any remaining slots. Under-fill is not an error.
        """
        if desired_count <= 0:
            return []

        local = self.find_local(candidates, desired_count, profile, exclusions)
        accepted: list[dict] = []
        accepted_ids: set[int] = set()

        def accept(movie: dict, source: str) -> bool:
            if movie['id'] in accepted_ids:
                return False
            reason = exclusions.explain(movie)
            if reason:
                logger.warning(f"Skipping {source} movie '{movie['title']}' (ID: {movie['id']}): {reason}")
                return False
            accepted.append(movie)
            accepted_ids.add(movie['id'])
            logger.info(f"Added from {source}: '{movie['title']}' (ID: {movie['id']})")
            return True

        for candidate in candidates[:desired_count * CANDIDATE_WALK_MULTIPLIER]:
            if len(accepted) >= desired_count:
                break

            early = exclusions.check(candidate.title)
            if early:
                logger.warning(
                    f"Skipping recommended '{candidate.title}' - matched '{early.matched_title}' ({early.reason})"
                )
                continue

            covering = [m for m in local if _covers(m, candidate)]
            if covering:
                unused = next((m for m in covering if m['id'] not in accepted_ids), None)
                if unused is not None:
                    accept(unused, "catalog")
                continue

            if self.catalog is None:
                logger.debug(f"No external catalog configured; dropping '{candidate.title}'")
                continue

            try:
                movie = self._fetch_external(candidate)
            except (CatalogError, KeyError) as e:
                logger.error(f"Failed to fetch '{candidate.title}' ({candidate.year}) from TMDB: {e}")
                continue
            if movie is not None:
                accept(movie, "TMDB")

        if len(accepted) < desired_count:
            for movie in local:
                if len(accepted) >= desired_count:
                    break
                accept(movie, "backfill")

        logger.info(f"Resolved {len(accepted)}/{desired_count} movies from {len(candidates)} candidates")
        return accepted
