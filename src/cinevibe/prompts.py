"""
LLM prompts for smart picks.

The user prompt embeds the taste profile and the complete list of movies the
user has already interacted with. Output is deterministic for a given profile.
"""
from .config import LANGUAGE_DESCRIPTIONS
from .profile import UserProfile

MOVIE_RECOMMENDATIONS_SYSTEM_PROMPT = (
    "You are a movie recommendation expert. Provide personalized movie suggestions "
    "based on the user's rating history and preferences.\n\n"
    "CRITICAL: NEVER recommend movies the user has already rated, marked as \"not interested\", "
    "OR added to their watchlist. The user has provided complete lists of ALL movies they've "
    "already interacted with - you MUST recommend ONLY new movies not on any of those lists.\n\n"
    "WATCHLIST EXCLUSION: Movies in the user's watchlist are saved to watch later. Do NOT "
    "recommend them again - they already know about these movies.\n\n"
    "Format your response as a numbered list with movie title and year in parentheses."
)

# (category, heading); every heading is a "do not recommend" section
_RATING_SECTIONS = (
    ('amazing', "MOVIES THEY LOVED (already seen, never recommend):"),
    ('good', "MOVIES THEY ENJOYED (already seen, never recommend):"),
    ('meh', "MOVIES THEY FOUND MEH (already seen, never recommend):"),
    ('awful', "MOVIES THEY DISLIKED (avoid similar, never recommend):"),
    ('not-interested', "MOVIES THEY'RE NOT INTERESTED IN (NEVER recommend these or similar):"),
    ('skipped', "MOVIES THEY SKIPPED (NEVER recommend):"),
)
_WATCHLIST_HEADING = "MOVIES IN THEIR WATCHLIST (NEVER recommend - already saved to watch):"

_RESPONSE_FIELDS = (
    "Movie title (original and English if different)",
    "Release year",
    "IMDb rating",
    "Genre(s)",
    "Language",
    "Brief reason why it matches their taste",
)


def format_title_year(title: str, year: int | None) -> str:
    return f"{title} ({year})" if year else title


def describe_languages(languages: list[str]) -> str:
    """Translate display names ('Hindi') to prompt phrasing ('Bollywood/Hindi')."""
    return ', '.join(LANGUAGE_DESCRIPTIONS.get(lang, lang) for lang in languages)


def _section(heading: str, items) -> str:
    lines = '\n'.join(f"- {format_title_year(title, year)}" for title, year in items)
    return f"{heading}\n{lines}\n\n"


def _critical_rules(count: int) -> str:
    rules = [
        "DO NOT recommend ANY movies listed above (movies they loved, enjoyed, found meh, "
        "disliked, were not interested in, skipped, OR have in their watchlist)",
        "The user has ALREADY SEEN/RATED all movies in the ratings lists - recommend ONLY NEW "
        "movies they haven't seen",
        "NEVER recommend movies from the \"NOT INTERESTED\", \"SKIPPED\" or \"WATCHLIST\" sections "
        "- these are already known to the user",
        "Movies in the WATCHLIST are saved to watch later - don't recommend them again",
        "Focus on newer movies and highly rated films unless the request specifies otherwise",
        "Every recommendation MUST be a movie the user has NOT already rated, marked as not "
        "interested, or added to watchlist",
        f"Limit recommendations to EXACTLY {count} movies",
    ]
    text = "CRITICAL RULES - YOU MUST FOLLOW THESE:\n"
    text += ''.join(f"{i}. {rule}\n" for i, rule in enumerate(rules, 1))
    text += (
        "\nTRIPLE CHECK: Before recommending any movie, verify it's NOT in ANY of the lists above "
        "(ratings, not interested, skipped, watchlist)."
    )
    return text


def build_recommendation_prompt(profile: UserProfile, count: int, user_query: str | None = None) -> str:
    """
    Render the user prompt for a smart picks request.

    With a free-text ``user_query`` the query leads and the profile follows as
    refinement context; otherwise the profile itself is the request.
    """
    prefs = profile.preferences
    by_category = profile.ratings_by_category()
    query = user_query.strip() if user_query else ''

    if query:
        prompt = f"{query}\n\nUSER'S TASTE PROFILE (use this to refine recommendations):\n\n"
    else:
        prompt = f"Find {count} highly recommended movies based on this user's taste:\n\n"

    for category, heading in _RATING_SECTIONS:
        records = by_category.get(category) or []
        if records:
            prompt += _section(heading, ((r.title, r.year) for r in records))

    if profile.watchlist:
        prompt += _section(_WATCHLIST_HEADING, ((w.title, w.year) for w in profile.watchlist))

    if prefs.languages:
        prompt += f"Language Preferences: {describe_languages(prefs.languages)}\n\n"

    if prefs.genres:
        prompt += f"Preferred Genres: {', '.join(prefs.genres)}\n\n"

    if prefs.ai_instructions and prefs.ai_instructions.strip():
        prompt += f"SPECIAL INSTRUCTIONS FROM USER:\n{prefs.ai_instructions.strip()}\n\n"

    if profile.recent_feedback:
        feedback = '\n'.join(f"- {f}" for f in profile.recent_feedback)
        prompt += f"RECENT FEEDBACK ON PAST RECOMMENDATIONS:\n{feedback}\n\n"

    if query:
        prompt += f"Based on the user's query and their taste profile, provide {count} movie recommendations. Include:\n"
    else:
        prompt += f"Based on their taste, recommend {count} NEW movies they would love. Include:\n"

    prompt += ''.join(f"- {f}\n" for f in _RESPONSE_FIELDS)
    prompt += "\n" + _critical_rules(count)
    return prompt
