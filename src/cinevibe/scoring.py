import logging
from dataclasses import dataclass, field
from typing import Callable
from .profile import UserProfile
from .config import (
    MATCH_BASE,
    MATCH_CAP,
    SCORE_LANGUAGE,
    SCORE_RATING_HIGH,
    SCORE_RATING_MED,
    RATING_HIGH_THRESHOLD,
    RATING_MED_THRESHOLD,
    SCORE_PER_GENRE,
    SCORE_GENRE_CAP,
    SCORE_RECENT_NEW,
    SCORE_RECENT,
    RECENT_NEW_YEAR,
    RECENT_YEAR,
    SCORE_POPULARITY_HIGH,
    SCORE_POPULARITY_MED,
    POPULARITY_HIGH_THRESHOLD,
    POPULARITY_MED_THRESHOLD,
    SCORE_PERSONALIZED,
    LANGUAGE_NAMES,
)

logger = logging.getLogger(__name__)


@dataclass
class MatchReason:
    factor: str
    score: int
    description: str
    icon: str

    def to_dict(self) -> dict:
        return {
            'factor': self.factor,
            'score': self.score,
            'description': self.description,
            'icon': self.icon,
        }


# Catalog column -> API field
_API_FIELDS = {
    'id': 'id',
    'title': 'title',
    'original_title': 'originalTitle',
    'overview': 'overview',
    'poster_path': 'posterPath',
    'backdrop_path': 'backdropPath',
    'release_date': 'releaseDate',
    'year': 'year',
    'vote_average': 'voteAverage',
    'vote_count': 'voteCount',
    'popularity': 'popularity',
    'language': 'language',
    'genres': 'genres',
    'runtime': 'runtime',
    'tagline': 'tagline',
    'imdb_rating': 'imdbRating',
    'imdb_voter_count': 'imdbVoterCount',
    'user_review_summary': 'userReviewSummary',
    'budget': 'budget',
    'box_office': 'boxOffice',
}


@dataclass
class ScoredRecommendation:
    movie: dict
    match_percent: int
    match_reasons: list[MatchReason] = field(default_factory=list)

    @property
    def id(self) -> int:
        return self.movie['id']

    @property
    def title(self) -> str:
        return self.movie['title']

    def to_dict(self) -> dict:
        data = {api: self.movie.get(col) for col, api in _API_FIELDS.items()}
        data['matchPercent'] = self.match_percent
        data['matchReasons'] = [r.to_dict() for r in self.match_reasons]
        return data


RuleFunc = Callable[[dict, UserProfile], "MatchReason | None"]


def _language_rule(movie: dict, profile: UserProfile) -> MatchReason | None:
    code = movie.get('language')
    if not code:
        return None
    language = LANGUAGE_NAMES.get(code, code)
    if language not in profile.preferences.languages:
        return None
    return MatchReason(
        "Language Match", SCORE_LANGUAGE,
        f"Available in your preferred language ({language})", "globe",
    )


def _rating_rule(movie: dict, profile: UserProfile) -> MatchReason | None:
    imdb = movie.get('imdb_rating') or 0
    votes = movie.get('vote_average') or 0
    shown = imdb or votes
    if imdb >= RATING_HIGH_THRESHOLD or votes >= RATING_HIGH_THRESHOLD:
        return MatchReason(
            "Highly Rated", SCORE_RATING_HIGH,
            f"Excellent rating ({shown:.1f}/10 IMDB) like your favorite movies", "star",
        )
    if imdb >= RATING_MED_THRESHOLD or votes >= RATING_MED_THRESHOLD:
        return MatchReason(
            "Good Rating", SCORE_RATING_MED,
            f"Well-rated movie ({shown:.1f}/10 IMDB)", "star",
        )
    return None


def _genre_rule(movie: dict, profile: UserProfile) -> MatchReason | None:
    preferred = {g.lower() for g in profile.preferences.genres}
    matching = [g for g in movie.get('genres') or [] if g.lower() in preferred]
    if not matching:
        return None
    return MatchReason(
        "Genre Match", min(SCORE_GENRE_CAP, len(matching) * SCORE_PER_GENRE),
        f"Matches your taste in {', '.join(matching)}", "heart",
    )


def _recency_rule(movie: dict, profile: UserProfile) -> MatchReason | None:
    year = movie.get('year')
    if not year:
        return None
    if year >= RECENT_NEW_YEAR:
        return MatchReason("Recently Released", SCORE_RECENT_NEW, f"Fresh content from {year}", "calendar")
    if year >= RECENT_YEAR:
        return MatchReason("Recent Release", SCORE_RECENT, f"Released in {year}, matches your preference", "calendar")
    return None


def _popularity_rule(movie: dict, profile: UserProfile) -> MatchReason | None:
    count = movie.get('vote_count') or 0
    if count >= POPULARITY_HIGH_THRESHOLD:
        return MatchReason(
            "Widely Acclaimed", SCORE_POPULARITY_HIGH,
            f"Loved by {count / 1000:.0f}K+ viewers worldwide", "trending",
        )
    if count >= POPULARITY_MED_THRESHOLD:
        return MatchReason(
            "Popular Choice", SCORE_POPULARITY_MED,
            f"Watched by {count / 1000:.0f}K+ viewers", "trending",
        )
    return None


def _personalized_rule(movie: dict, profile: UserProfile) -> MatchReason | None:
    _ = movie  # depends only on the profile
    positive = len(profile.positive_ratings)
    if not positive:
        return None
    return MatchReason(
        "AI Personalized", SCORE_PERSONALIZED,
        f"Selected based on your {positive} rated movies", "sparkles",
    )


DEFAULT_MATCH_RULES: list[RuleFunc] = [
    _language_rule,
    _rating_rule,
    _genre_rule,
    _recency_rule,
    _popularity_rule,
    _personalized_rule,
]


class MatchScorer:
    """Additive match percentage: base plus independent rule bonuses, capped."""

    def __init__(self, rules: list[RuleFunc] | None = None, base: int = MATCH_BASE, cap: int = MATCH_CAP):
        self.rules = DEFAULT_MATCH_RULES if rules is None else rules
        self.base = base
        self.cap = cap

    def score(self, movie: dict, profile: UserProfile) -> ScoredRecommendation:
        reasons = []
        for rule in self.rules:
            reason = rule(movie, profile)
            if reason is not None:
                reasons.append(reason)

        total = self.base + sum(r.score for r in reasons)
        return ScoredRecommendation(movie=movie, match_percent=min(self.cap, total), match_reasons=reasons)

    def score_all(self, movies: list[dict], profile: UserProfile) -> list[ScoredRecommendation]:
        scored = [self.score(m, profile) for m in movies]
        for s in scored:
            logger.debug(f"{s.title}: {s.match_percent}% ({', '.join(r.factor for r in s.match_reasons)})")
        return scored
