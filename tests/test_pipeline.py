import pytest

from conftest import (
    FakeCatalog,
    FakeCompletion,
    add_movie,
    add_rating,
    add_user,
    add_watchlist,
    tmdb_details,
)


def _run(user_id="alice", count=None, text="", catalog=None, **kwargs):
    from cinevibe import pipeline

    fake = FakeCompletion(text)
    status, body = pipeline.handle_smart_picks_request(
        user_id,
        count=count,
        completion_factory=lambda: fake,
        catalog_factory=lambda: catalog or FakeCatalog(),
        use_default_enricher=False,
        **kwargs,
    )
    return status, body, fake


def test_sequel_of_rated_movie_is_excluded(fresh_db):
    db = fresh_db
    add_user(db, "alice")
    add_rating(db, "alice", 1, "Drishyam", 2013, "amazing")
    add_watchlist(db, "alice", 2, "Jersey", 2019)
    add_movie(db, 100, "Drishyam 2", 2021, vote_average=8.4, language='ml')
    add_movie(db, 200, "Oppenheimer", 2023, vote_average=8.3)

    status, body, fake = _run(text="1. Drishyam 2 (2021)\n2. Oppenheimer (2023)\n3. Jersey (2022)", count=5)

    assert status == 200
    assert [m['id'] for m in body['movies']] == [200]
    # Both excluded titles were put in front of the completion service
    assert "- Drishyam (2013)" in fake.calls[0][1]
    assert "- Jersey (2019)" in fake.calls[0][1]


def test_success_body_shape(fresh_db):
    db = fresh_db
    add_user(db, "alice", languages=["English"], genres=["Drama"])
    add_rating(db, "alice", 1, "Whiplash", 2014, "good")
    add_movie(db, 200, "Oppenheimer", 2023, vote_average=8.3, vote_count=9000, genres=["Drama", "History"])

    status, body, _ = _run(text="1. **Oppenheimer** (2023)", count=3)

    assert status == 200
    assert body['success'] is True
    assert body['rawCompletionText'] == "1. **Oppenheimer** (2023)"
    assert body['metadata']['userRatingsCount'] == 1
    assert body['metadata']['moviesFound'] == 1
    assert isinstance(body['metadata']['durationMs'], int)

    movie = body['movies'][0]
    assert movie['title'] == "Oppenheimer"
    assert movie['genres'] == ["Drama", "History"]
    # 70 + language 15 + rating 10 + genre 10 + recency 8 + popularity 7 + personalized 10, capped
    assert movie['matchPercent'] == 95
    assert {r['factor'] for r in movie['matchReasons']} == {
        "Language Match", "Highly Rated", "Genre Match", "Recently Released", "Popular Choice", "AI Personalized",
    }


def test_empty_history_user(fresh_db):
    db = fresh_db
    add_user(db, "newbie")
    add_movie(db, 1, "Oppenheimer", 2023, vote_average=8.3, vote_count=12000)

    status, body, _ = _run("newbie", text="1. Oppenheimer (2023)")

    assert status == 200
    movie = body['movies'][0]
    factors = {r['factor']: r['score'] for r in movie['matchReasons']}
    assert factors == {"Highly Rated": 10, "Recently Released": 8, "Widely Acclaimed": 12}
    assert movie['matchPercent'] == 100 - 5


def test_count_is_capped_at_ten(fresh_db):
    db = fresh_db
    add_user(db, "alice")
    lines = []
    for i in range(15):
        add_movie(db, i + 1, f"Film Number {i:02d}", 2020)
        lines.append(f"{i + 1}. Film Number {i:02d} (2020)")

    status, body, fake = _run(count=50, text="\n".join(lines))

    assert status == 200
    assert len(body['movies']) == 10
    assert "EXACTLY 10 movies" in fake.calls[0][1]


def test_count_floor_and_default():
    from cinevibe.pipeline import clamp_count

    assert clamp_count(None) == 10
    assert clamp_count(0) == 1
    assert clamp_count(-4) == 1
    assert clamp_count(3) == 3
    assert clamp_count(11) == 10


def test_exclusion_completeness_across_sources(fresh_db):
    db = fresh_db
    add_user(db, "alice", languages=["Hindi"])
    rated = [
        (1, "The Lunchbox", 2013, "amazing"),
        (2, "Andhadhun", 2018, "meh"),
        (3, "Tumbbad", 2018, "not-interested"),
        (4, "Masaan", 2015, "skipped"),
    ]
    for movie_id, title, year, rating in rated:
        add_rating(db, "alice", movie_id, title, year, rating)
        add_movie(db, movie_id, title, year, language='hi', vote_average=8.5)
    add_watchlist(db, "alice", 5, "Gully Boy", 2019)
    add_movie(db, 5, "Gully Boy", 2019, language='hi', vote_average=8.0)
    # Same titles under different IDs, plus an original-title collision
    add_movie(db, 11, "Lunchbox", 2013, language='hi', vote_average=8.0)
    add_movie(db, 12, "Andhadhun", 2019, language='hi', vote_average=8.1)
    add_movie(db, 13, "Kahaani", 2012, language='hi', vote_average=8.1, original_title="Masaan")
    add_movie(db, 14, "Queen", 2014, language='hi', vote_average=8.2)
    catalog = FakeCatalog({"Tumbbad 2": tmdb_details(15, "Tumbbad 2", "2020-01-01", original_language='hi')})

    status, body, _ = _run(
        text="1. Lunchbox (2013)\n2. Andhadhun (2019)\n3. Tumbbad 2 (2020)\n4. Gully Boy (2019)\n5. Kahaani (2012)",
        count=10,
        catalog=catalog,
    )

    assert status == 200
    ids = [m['id'] for m in body['movies']]
    assert ids == [14]

    from cinevibe import profile, matching
    p = profile.load_user_profile("alice")
    for movie in body['movies']:
        assert movie['id'] not in p.excluded_ids
        for title in p.excluded_titles:
            assert not (matching.normalize_title(movie['title']) & matching.normalize_title(title))


def test_enrichment_results_are_scored(fresh_db):
    db = fresh_db
    add_user(db, "alice")
    add_movie(db, 1, "Quiet Film", 2010, vote_average=6.0, vote_count=10)
    enriched = []

    def fake_enrich(movies):
        enriched.extend(m['id'] for m in movies)
        db.update_movie_fields(1, {'imdb_rating': 8.6, 'genres': ['Drama']})

    status, body, _ = _run(text="1. Quiet Film (2010)", enrich=fake_enrich)

    assert status == 200
    assert enriched == [1]
    movie = body['movies'][0]
    assert movie['imdbRating'] == 8.6
    assert movie['genres'] == ['Drama']
    assert [r['factor'] for r in movie['matchReasons']] == ["Highly Rated"]


def test_unknown_user_is_404(fresh_db):
    status, body, _ = _run("ghost", text="1. Oppenheimer (2023)")

    assert status == 404
    assert body['error'] == "User not found"


def test_missing_completion_key_fails_before_any_stage(fresh_db):
    from cinevibe import pipeline

    # Unknown user would be a 404 if the profile stage had run
    status, body = pipeline.handle_smart_picks_request("ghost", use_default_enricher=False)

    assert status == 500
    assert body['error'] == "Smart picks are not configured"


def test_completion_failure_is_500(fresh_db):
    db = fresh_db
    from cinevibe import completion, pipeline

    add_user(db, "alice")
    fake = FakeCompletion(error=completion.CompletionError("Completion service returned 502", status_code=502))

    status, body = pipeline.handle_smart_picks_request(
        "alice",
        completion_factory=lambda: fake,
        catalog_factory=None,
        use_default_enricher=False,
    )

    assert status == 500
    assert body['error'] == "Failed to generate smart picks"
    assert "502" in body['details']
    assert fake.closed


def test_underfill_is_not_an_error(fresh_db):
    db = fresh_db
    add_user(db, "alice")

    status, body, _ = _run(text="I don't have any suggestions right now.", count=5)

    assert status == 200
    assert body['movies'] == []
    assert body['metadata']['moviesFound'] == 0


def test_generate_smart_picks_uses_custom_extractor(fresh_db):
    import re

    db = fresh_db
    from cinevibe import pipeline
    from cinevibe.extraction import TitlePattern, TitleYearExtractor

    add_user(db, "alice")
    add_movie(db, 1, "Heat", 1995)
    extractor = TitleYearExtractor((TitlePattern("pipe", re.compile(r"^(\w+) \| (\d{4})$", re.MULTILINE)),))

    result = pipeline.generate_smart_picks("alice", 3, FakeCompletion("Heat | 1995"), extractor=extractor)

    assert [r.id for r in result.recommendations] == [1]
    assert result.to_dict()['metadata']['moviesFound'] == 1


def test_user_query_reaches_prompt(fresh_db):
    db = fresh_db
    add_user(db, "alice")

    _, _, fake = _run(text="", user_query="slow-burn Korean thrillers")

    assert fake.calls[0][1].startswith("slow-burn Korean thrillers")


@pytest.mark.parametrize("enabled,expected", [("1", True), ("0", False)])
def test_default_enricher_follows_config(monkeypatch, enabled, expected):
    import importlib
    from cinevibe import config, pipeline

    monkeypatch.setenv("CINEVIBE_ENRICH_METADATA", enabled)
    importlib.reload(config)
    importlib.reload(pipeline)
    try:
        assert (pipeline._default_enricher() is not None) is expected
    finally:
        monkeypatch.undo()
        importlib.reload(config)
        importlib.reload(pipeline)
