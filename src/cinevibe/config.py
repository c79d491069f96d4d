"""
Configuration constants for the CineVibe smart picks pipeline.

This module centralizes credentials, endpoints and the product-tuning numbers.
Values can be overridden via environment variables.
"""
import os
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def _get_float_env(key: str, default: float, min_val: float = 0) -> float:
    """
    Safely parse float from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated float value
    """
    try:
        val = float(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_int_env(key: str, default: int, min_val: int = 1) -> int:
    """
    Safely parse integer from environment variable with validation.

    Args:
        key: Environment variable name
        default: Default value if not set or invalid
        min_val: Minimum allowed value

    Returns:
        Validated integer value
    """
    try:
        val = int(os.environ.get(key, default))
        if val < min_val:
            logger.warning(f"{key}={val} is below minimum {min_val}, using {min_val}")
            return min_val
        return val
    except ValueError:
        logger.warning(f"Invalid {key}='{os.environ.get(key)}', using default {default}")
        return default


def _get_bool_env(key: str, default: bool) -> bool:
    """Parse a boolean flag such as 1/0, true/false, yes/no."""
    raw = os.environ.get(key)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    logger.warning(f"Invalid {key}='{raw}', using default {default}")
    return default


# Database Configuration
DB_PATH = Path(os.environ.get("CINEVIBE_DB", "data/cinevibe.db"))

# Completion service (OpenAI-compatible chat completions, Perplexity by default)
PERPLEXITY_API_KEY = os.environ.get("PERPLEXITY_API_KEY", "")
COMPLETION_BASE_URL = os.environ.get("CINEVIBE_COMPLETION_BASE_URL", "https://api.perplexity.ai")
COMPLETION_MODEL = os.environ.get("CINEVIBE_COMPLETION_MODEL", "sonar-pro")

# Catalog service
TMDB_API_KEY = os.environ.get("TMDB_API_KEY", "")
TMDB_BASE_URL = os.environ.get("TMDB_BASE_URL", "https://api.themoviedb.org/3")

HTTP_TIMEOUT = _get_float_env("CINEVIBE_HTTP_TIMEOUT", 30.0, min_val=1.0)

# Metadata enrichment
ENRICH_METADATA = _get_bool_env("CINEVIBE_ENRICH_METADATA", True)
ENRICHMENT_BATCH_SIZE = _get_int_env("CINEVIBE_ENRICHMENT_BATCH_SIZE", 3, min_val=1)
ENRICHMENT_TEMPERATURE = 0.7
ENRICHMENT_MAX_TOKENS = 1000

# Profile
RECENT_FEEDBACK_LIMIT = _get_int_env("CINEVIBE_RECENT_FEEDBACK_LIMIT", 5, min_val=0)
RATING_CATEGORIES = ("amazing", "good", "meh", "awful", "not-interested", "skipped")
POSITIVE_CATEGORIES = ("amazing", "good")

# Request shaping
DEFAULT_REQUESTED_COUNT = 10
MAX_REQUESTED_COUNT = 10
CANDIDATE_WALK_MULTIPLIER = 2  # Candidates examined per requested slot during backfill

# Resolver
FUZZY_YEAR_WINDOW = 2
NO_MIN_YEAR_SENTINEL = 1900  # Stored year_from of 1900 means "any year"
DEFAULT_MIN_SCORE = 7.0
MIN_TITLE_LENGTH = 3

# Fuzzy title matching
SUBSTRING_MIN_LENGTH = 5
PREFIX_MIN_LENGTH = 6
PREFIX_RATIO = 0.8

# Match scoring
MATCH_BASE = 70
MATCH_CAP = 95
SCORE_LANGUAGE = 15
SCORE_RATING_HIGH = 10
SCORE_RATING_MED = 5
RATING_HIGH_THRESHOLD = 8.0
RATING_MED_THRESHOLD = 7.0
SCORE_PER_GENRE = 10
SCORE_GENRE_CAP = 20
SCORE_RECENT_NEW = 8
SCORE_RECENT = 5
RECENT_NEW_YEAR = 2023
RECENT_YEAR = 2020
SCORE_POPULARITY_HIGH = 12
SCORE_POPULARITY_MED = 7
POPULARITY_HIGH_THRESHOLD = 10000
POPULARITY_MED_THRESHOLD = 5000
SCORE_PERSONALIZED = 10

# Preferred language display name -> ISO 639-1 code used by the catalog
LANGUAGE_CODES = {
    'English': 'en',
    'Hindi': 'hi',
    'Tamil': 'ta',
    'Telugu': 'te',
    'Kannada': 'kn',
    'Malayalam': 'ml',
    'Korean': 'ko',
    'Japanese': 'ja',
    'Italian': 'it',
}
LANGUAGE_NAMES = {code: name for name, code in LANGUAGE_CODES.items()}

# Display name -> phrasing used in prompts
LANGUAGE_DESCRIPTIONS = {
    'English': 'Hollywood/English',
    'Hindi': 'Bollywood/Hindi',
    'Kannada': 'Sandalwood/Kannada',
    'Tamil': 'Kollywood/Tamil',
    'Telugu': 'Tollywood/Telugu',
    'Malayalam': 'Mollywood/Malayalam',
    'Korean': 'K-Drama/Korean',
    'Japanese': 'J-Drama/Japanese',
    'Italian': 'Italian Cinema',
}

# Bulk import/export
IMPORT_CHUNK_SIZE = 500


class ConfigurationError(RuntimeError):
    """Raised when a required credential or setting is missing."""
