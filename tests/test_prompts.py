from cinevibe.profile import UserProfile, RatingRecord, WatchlistEntry, Preferences
from cinevibe.prompts import (
    MOVIE_RECOMMENDATIONS_SYSTEM_PROMPT,
    build_recommendation_prompt,
    describe_languages,
    format_title_year,
)


def _profile(**prefs):
    return UserProfile(
        user_id="alice",
        ratings=[
            RatingRecord(1, "Drishyam", 2013, "amazing"),
            RatingRecord(2, "Jersey", 2019, "good"),
            RatingRecord(3, "Average Film", 2015, "meh"),
            RatingRecord(4, "Bad Film", 2011, "awful"),
            RatingRecord(5, "Not For Me", 2018, "not-interested"),
            RatingRecord(6, "Skipped Film", None, "skipped"),
        ],
        watchlist=[WatchlistEntry(7, "Saved Film", 2022)],
        preferences=Preferences(**prefs),
        recent_feedback=["Too many sequels", "Loved the thriller picks"],
    )


def test_prompt_lists_every_interacted_title():
    prompt = build_recommendation_prompt(_profile(), 5)

    for expected in ("Drishyam (2013)", "Jersey (2019)", "Average Film (2015)", "Bad Film (2011)",
                     "Not For Me (2018)", "Saved Film (2022)"):
        assert f"- {expected}" in prompt
    # Missing year renders as the bare title
    assert "- Skipped Film\n" in prompt
    assert "NEVER recommend" in prompt
    assert "WATCHLIST" in prompt


def test_prompt_includes_preferences_feedback_and_count():
    prompt = build_recommendation_prompt(
        _profile(languages=["Hindi", "Klingon"], genres=["Drama", "Thriller"], ai_instructions="  No horror  "),
        7,
    )

    assert prompt.startswith("Find 7 highly recommended movies")
    assert "Language Preferences: Bollywood/Hindi, Klingon" in prompt
    assert "Preferred Genres: Drama, Thriller" in prompt
    assert "SPECIAL INSTRUCTIONS FROM USER:\nNo horror" in prompt
    assert "- Too many sequels" in prompt
    assert "Limit recommendations to EXACTLY 7 movies" in prompt


def test_user_query_leads_the_prompt():
    prompt = build_recommendation_prompt(_profile(), 3, user_query="  feel-good heist movies ")

    assert prompt.startswith("feel-good heist movies\n\nUSER'S TASTE PROFILE")
    assert "provide 3 movie recommendations" in prompt
    assert "- Drishyam (2013)" in prompt


def test_prompt_is_deterministic():
    assert build_recommendation_prompt(_profile(), 5) == build_recommendation_prompt(_profile(), 5)


def test_empty_profile_prompt_has_no_sections():
    prompt = build_recommendation_prompt(UserProfile(user_id="new"), 10)

    assert "MOVIES THEY LOVED" not in prompt
    assert "Language Preferences" not in prompt
    assert "EXACTLY 10 movies" in prompt


def test_helpers():
    assert format_title_year("Film", None) == "Film"
    assert format_title_year("Film", 2020) == "Film (2020)"
    assert describe_languages(["English", "Tamil"]) == "Hollywood/English, Kollywood/Tamil"
    assert "numbered list" in MOVIE_RECOMMENDATIONS_SYSTEM_PROMPT
