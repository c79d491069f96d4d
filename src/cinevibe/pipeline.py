import logging
import time
from dataclasses import dataclass, field
from typing import Callable
from .catalog import TMDBClient
from .completion import CompletionClient
from .database import load_movies_by_ids
from .enrichment import enrich_movies_sync
from .extraction import TitleYearExtractor
from .matching import ExclusionIndex, filter_excluded
from .profile import load_user_profile, UserNotFoundError
from .prompts import MOVIE_RECOMMENDATIONS_SYSTEM_PROMPT, build_recommendation_prompt
from .resolver import CandidateResolver
from .scoring import MatchScorer, ScoredRecommendation
from .config import (
    DEFAULT_REQUESTED_COUNT,
    MAX_REQUESTED_COUNT,
    ENRICH_METADATA,
    ConfigurationError,
)

logger = logging.getLogger(__name__)

Enricher = Callable[[list[dict]], object]


def clamp_count(count: int | None) -> int:
    """Requested count defaults to 10 and is clamped to [1, 10]."""
    if count is None:
        return DEFAULT_REQUESTED_COUNT
    return max(1, min(int(count), MAX_REQUESTED_COUNT))


@dataclass
class SmartPicksResult:
    recommendations: list[ScoredRecommendation] = field(default_factory=list)
    raw_completion_text: str = ""
    user_ratings_count: int = 0
    duration_ms: int = 0

    def to_dict(self) -> dict:
        return {
            'success': True,
            'movies': [r.to_dict() for r in self.recommendations],
            'rawCompletionText': self.raw_completion_text,
            'metadata': {
                'userRatingsCount': self.user_ratings_count,
                'moviesFound': len(self.recommendations),
                'durationMs': self.duration_ms,
            },
        }


def generate_smart_picks(
    user_id: str,
    count: int,
    completion,
    catalog=None,
    user_query: str | None = None,
    enrich: Enricher | None = None,
    extractor: TitleYearExtractor | None = None,
    scorer: MatchScorer | None = None,
) -> SmartPicksResult:
    """
    Run the smart picks pipeline for one user.

    Profile → prompt → completion → extraction/resolution → (enrichment) →
    exclusion filter → scoring. Errors from any stage propagate.
    """
    start = time.monotonic()
    extractor = extractor or TitleYearExtractor()
    scorer = scorer or MatchScorer()

    profile = load_user_profile(user_id)
    exclusions = ExclusionIndex.from_profile(profile)

    prompt = build_recommendation_prompt(profile, count, user_query)
    logger.debug(f"Recommendation prompt for {user_id}:\n{prompt}")
    raw_text = completion.complete(MOVIE_RECOMMENDATIONS_SYSTEM_PROMPT, prompt)

    candidates = extractor.extract(raw_text)
    if len(candidates) < count:
        logger.info(f"Only {len(candidates)} candidates extracted for {count} requested; falling back to catalog")

    movies = CandidateResolver(catalog).resolve(candidates, count, profile, exclusions)

    if enrich is not None and movies:
        logger.info(f"Enriching {len(movies)} movies with IMDB metadata")
        enrich(movies)
        movies = load_movies_by_ids([m['id'] for m in movies])

    movies = filter_excluded(movies, exclusions)
    recommendations = scorer.score_all(movies, profile)

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.info(f"Smart picks for {user_id}: {len(recommendations)}/{count} movies in {duration_ms}ms")
    return SmartPicksResult(
        recommendations=recommendations,
        raw_completion_text=raw_text,
        user_ratings_count=len(profile.ratings),
        duration_ms=duration_ms,
    )


def _default_enricher() -> Enricher | None:
    return enrich_movies_sync if ENRICH_METADATA else None


def handle_smart_picks_request(
    user_id: str,
    count: int | None = None,
    user_query: str | None = None,
    completion_factory: Callable = CompletionClient,
    catalog_factory: Callable | None = TMDBClient,
    enrich: Enricher | None = None,
    use_default_enricher: bool = True,
) -> tuple[int, dict]:
    """
    Request boundary: run the pipeline and map failures to (status, body).

    The completion client is built first so missing credentials fail before
    any stage runs.
    """
    count = clamp_count(count)
    if enrich is None and use_default_enricher:
        enrich = _default_enricher()

    completion = catalog = None
    try:
        completion = completion_factory()
        catalog = catalog_factory() if catalog_factory is not None else None
        result = generate_smart_picks(
            user_id,
            count,
            completion,
            catalog=catalog,
            user_query=user_query,
            enrich=enrich,
        )
        return 200, result.to_dict()

    except ConfigurationError as e:
        logger.error(f"Smart picks not configured: {e}")
        return 500, {'error': 'Smart picks are not configured', 'details': str(e)}

    except UserNotFoundError as e:
        logger.warning(str(e))
        return 404, {'error': 'User not found', 'details': str(e)}

    except Exception as e:
        logger.error(f"Smart picks failed for {user_id}: {e}", exc_info=True)
        return 500, {'error': 'Failed to generate smart picks', 'details': str(e)}

    finally:
        for client in (completion, catalog):
            close = getattr(client, 'close', None)
            if close is not None:
                close()
