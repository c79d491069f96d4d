import importlib
import sys
from pathlib import Path

import pytest

# Ensure the package under test is importable without installation
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))

# Reload order follows the import graph so every module sees the reloaded config
RELOAD_ORDER = (
    "cinevibe.config",
    "cinevibe.database",
    "cinevibe.profile",
    "cinevibe.prompts",
    "cinevibe.completion",
    "cinevibe.extraction",
    "cinevibe.catalog",
    "cinevibe.matching",
    "cinevibe.resolver",
    "cinevibe.scoring",
    "cinevibe.enrichment",
    "cinevibe.pipeline",
    "cinevibe.api",
    "cinevibe.cli",
)


def _reload_all():
    modules = {}
    for name in RELOAD_ORDER:
        module = importlib.import_module(name)
        modules[name.split(".")[-1]] = importlib.reload(module)
    return modules


@pytest.fixture
def fresh_config(monkeypatch, tmp_path):
    """
    Reload config with a temporary database path to keep tests isolated.
    """
    db_path = tmp_path / "test.db"
    monkeypatch.setenv("CINEVIBE_DB", str(db_path))
    import cinevibe.config as config

    importlib.reload(config)
    return config


@pytest.fixture
def fresh_db(monkeypatch, tmp_path):
    """
    Reload the package against a temp DB with an initialized schema; close the pool after use.
    """
    monkeypatch.setenv("CINEVIBE_DB", str(tmp_path / "test.db"))
    monkeypatch.setenv("CINEVIBE_ENRICH_METADATA", "0")
    monkeypatch.delenv("PERPLEXITY_API_KEY", raising=False)
    monkeypatch.delenv("TMDB_API_KEY", raising=False)

    modules = _reload_all()
    database = modules["database"]
    database.init_db()

    yield database
    database.close_pool()


# --- Seed helpers ---

def add_movie(database, movie_id, title, year, **fields):
    defaults = {
        'original_title': title,
        'overview': '',
        'vote_average': 6.0,
        'vote_count': 100,
        'popularity': 1.0,
        'language': 'en',
        'genres': [],
    }
    defaults.update(fields)
    return database.upsert_movie(movie_id, {'title': title, 'year': year, **defaults})


def add_user(database, user_id="u1", **prefs):
    row = {'id': user_id, 'email': f"{user_id}@example.com"}
    row.update(prefs)
    with database.get_db() as conn:
        database.import_users(conn, [row])
    return user_id


def add_rating(database, user_id, movie_id, title, year, rating="good", created_at=None):
    with database.get_db() as conn:
        database.import_ratings(conn, [{
            'user_id': user_id, 'movie_id': movie_id, 'movie_title': title,
            'movie_year': year, 'rating': rating, 'created_at': created_at,
        }])


def add_watchlist(database, user_id, movie_id, title, year):
    with database.get_db() as conn:
        database.import_watchlist(conn, [{
            'user_id': user_id, 'movie_id': movie_id, 'movie_title': title, 'movie_year': year,
        }])


def add_feedback(database, user_id, feedback, created_at, **extra):
    with database.get_db() as conn:
        database.import_feedback(conn, [{
            'user_id': user_id, 'feedback': feedback, 'created_at': created_at, **extra,
        }])


class FakeCompletion:
    """Stands in for CompletionClient; records prompts and returns canned text."""

    def __init__(self, text="", error=None):
        self.text = text
        self.error = error
        self.calls = []
        self.closed = False

    def complete(self, system_prompt, user_prompt, model=None):
        self.calls.append((system_prompt, user_prompt))
        if self.error:
            raise self.error
        return self.text

    def close(self):
        self.closed = True


class FakeCatalog:
    """Stands in for TMDBClient. ``entries`` maps lowercased title to a TMDB details dict."""

    def __init__(self, entries=None, error=None):
        self.entries = {k.lower(): v for k, v in (entries or {}).items()}
        self.error = error
        self.searches = []

    def search_by_title_year(self, title, year):
        self.searches.append((title, year))
        if self.error:
            raise self.error
        details = self.entries.get(title.lower())
        return {'id': details['id']} if details else None

    def fetch_details(self, tmdb_id):
        for details in self.entries.values():
            if details['id'] == tmdb_id:
                return details
        raise KeyError(tmdb_id)

    def close(self):
        pass


def tmdb_details(movie_id, title, release_date, **extra):
    details = {
        'id': movie_id,
        'title': title,
        'original_title': title,
        'overview': f"{title} overview",
        'release_date': release_date,
        'vote_average': 7.5,
        'vote_count': 2000,
        'popularity': 50.0,
        'original_language': 'en',
        'genres': [{'id': 18, 'name': 'Drama'}],
        'runtime': 120,
        'tagline': '',
    }
    details.update(extra)
    return details


@pytest.fixture(autouse=True)
def _rebind_reloaded_names(request, monkeypatch):
    """
    Point names a test module imported from cinevibe at collection time to the
    current objects, since other tests' fixtures reload the package modules.
    """
    module = getattr(request, "module", None)
    if module is None:
        return
    for name, value in list(vars(module).items()):
        source = getattr(value, "__module__", None)
        if not isinstance(source, str) or not source.startswith("cinevibe."):
            continue
        current = getattr(sys.modules.get(source), name, value)
        if current is not value:
            monkeypatch.setattr(module, name, current)
