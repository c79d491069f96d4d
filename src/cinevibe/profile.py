import logging
from dataclasses import dataclass, field
from .database import load_user, load_user_ratings, load_user_watchlist, load_recent_feedback
from .config import (
    RATING_CATEGORIES,
    POSITIVE_CATEGORIES,
    RECENT_FEEDBACK_LIMIT,
)

logger = logging.getLogger(__name__)


class UserNotFoundError(LookupError):
    """Raised when a smart picks request names a user that does not exist."""

    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


@dataclass
class RatingRecord:
    movie_id: int
    title: str
    year: int | None
    category: str


@dataclass
class WatchlistEntry:
    movie_id: int
    title: str
    year: int | None


@dataclass
class Preferences:
    """Stored recommendation preferences. ``None`` means "not set"."""
    languages: list[str] = field(default_factory=list)
    genres: list[str] = field(default_factory=list)
    year_from: int | None = None
    year_to: int | None = None
    min_score: float | None = None
    min_box_office: int | None = None
    max_budget: int | None = None
    ai_instructions: str | None = None


@dataclass
class UserProfile:
    """Everything the pipeline knows about a user for one request."""
    user_id: str
    ratings: list[RatingRecord] = field(default_factory=list)
    watchlist: list[WatchlistEntry] = field(default_factory=list)
    preferences: Preferences = field(default_factory=Preferences)
    recent_feedback: list[str] = field(default_factory=list)

    def ratings_by_category(self) -> dict[str, list[RatingRecord]]:
        grouped: dict[str, list[RatingRecord]] = {c: [] for c in RATING_CATEGORIES}
        for r in self.ratings:
            grouped.setdefault(r.category, []).append(r)
        return grouped

    @property
    def positive_ratings(self) -> list[RatingRecord]:
        return [r for r in self.ratings if r.category in POSITIVE_CATEGORIES]

    @property
    def excluded_ids(self) -> set[int]:
        """IDs of every rated (any category) or watchlisted movie."""
        return {r.movie_id for r in self.ratings} | {w.movie_id for w in self.watchlist}

    @property
    def excluded_titles(self) -> list[str]:
        return [r.title for r in self.ratings] + [w.title for w in self.watchlist]


def _row_to_preferences(user: dict) -> Preferences:
    return Preferences(
        languages=list(user.get('languages') or []),
        genres=list(user.get('genres') or []),
        year_from=user.get('rec_year_from'),
        year_to=user.get('rec_year_to'),
        min_score=user.get('rec_min_score'),
        min_box_office=user.get('rec_min_box_office'),
        max_budget=user.get('rec_max_budget'),
        ai_instructions=user.get('ai_instructions'),
    )


def load_user_profile(user_id: str, feedback_limit: int = RECENT_FEEDBACK_LIMIT) -> UserProfile:
    """
    Build a UserProfile from the data store.

    The full rating history is loaded so exclusion covers every movie the
    user has ever rated, whatever the category. Raises UserNotFoundError
    for unknown users; data-store errors propagate.
    """
    user = load_user(user_id)
    if user is None:
        raise UserNotFoundError(user_id)

    unknown_categories = set()
    ratings = []
    for row in load_user_ratings(user_id):
        if row['rating'] not in RATING_CATEGORIES:
            unknown_categories.add(row['rating'])
        ratings.append(RatingRecord(
            movie_id=row['movie_id'],
            title=row['movie_title'],
            year=row['movie_year'],
            category=row['rating'],
        ))
    if unknown_categories:
        logger.warning(f"User {user_id} has ratings in unknown categories: {sorted(unknown_categories)}")

    watchlist = [
        WatchlistEntry(movie_id=row['movie_id'], title=row['movie_title'], year=row['movie_year'])
        for row in load_user_watchlist(user_id)
    ]

    profile = UserProfile(
        user_id=user_id,
        ratings=ratings,
        watchlist=watchlist,
        preferences=_row_to_preferences(user),
        recent_feedback=load_recent_feedback(user_id, limit=feedback_limit),
    )

    logger.info(
        f"Loaded profile for {user_id}: {len(ratings)} ratings, {len(watchlist)} watchlisted, "
        f"{len(profile.recent_feedback)} feedback entries"
    )
    return profile
