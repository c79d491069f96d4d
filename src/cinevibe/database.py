import sqlite3
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime
from .config import DB_PATH

logger = logging.getLogger(__name__)

# Columns of the movies table in insertion order (id first)
MOVIE_COLUMNS = (
    'id', 'title', 'original_title', 'overview', 'poster_path', 'backdrop_path',
    'release_date', 'year', 'vote_average', 'vote_count', 'popularity', 'language',
    'genres', 'runtime', 'tagline', 'imdb_rating', 'imdb_voter_count',
    'user_review_summary', 'budget', 'box_office',
)
JSON_MOVIE_COLUMNS = {'genres'}


def _py_lower(value):
    """Unicode-aware lower() for SQL; SQLite's built-in only folds ASCII."""
    return value.lower() if isinstance(value, str) else value


class ConnectionPool:
    """
    Thread-local SQLite connections with transaction nesting tracking.

    SQLite connections must not be shared across threads, so each thread
    (request worker, asyncio.to_thread worker, CLI main thread) gets its own.
    """

    def __init__(self, db_path):
        self._db_path = db_path
        self._lock = threading.Lock()
        self._connections: dict[int, sqlite3.Connection] = {}
        self._transaction_depth: dict[int, int] = {}

    def _create_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.create_function("py_lower", 1, _py_lower, deterministic=True)

        conn.execute("PRAGMA busy_timeout = 5000")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    def get_connection(self) -> sqlite3.Connection:
        """Get a connection for the current thread, creating if necessary."""
        thread_id = threading.get_ident()
        with self._lock:
            conn = self._connections.get(thread_id)
            if conn is None:
                conn = self._create_connection()
                self._connections[thread_id] = conn
                self._transaction_depth[thread_id] = 0
                logger.debug(f"Created connection for thread {thread_id} (pool size: {len(self._connections)})")
            return conn

    def get_transaction_depth(self) -> int:
        return self._transaction_depth.get(threading.get_ident(), 0)

    def increment_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            self._transaction_depth[thread_id] = self._transaction_depth.get(thread_id, 0) + 1

    def decrement_transaction_depth(self):
        thread_id = threading.get_ident()
        with self._lock:
            depth = self._transaction_depth.get(thread_id, 1)
            self._transaction_depth[thread_id] = max(0, depth - 1)

    def close_all(self):
        """Close all connections (call on application shutdown)."""
        with self._lock:
            for thread_id, conn in list(self._connections.items()):
                try:
                    conn.close()
                except sqlite3.Error as e:
                    logger.warning(f"Error closing connection for thread {thread_id}: {e}")
            self._connections.clear()
            self._transaction_depth.clear()
            logger.debug("Connection pool closed")


# Global pool instance
_pool: ConnectionPool | None = None
_pool_lock = threading.Lock()


def init_db() -> None:
    DB_PATH.parent.mkdir(exist_ok=True, parents=True)
    with get_db() as conn:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS movies (
                id INTEGER PRIMARY KEY,     -- TMDB movie id
                title TEXT NOT NULL,
                original_title TEXT,
                overview TEXT,
                poster_path TEXT,
                backdrop_path TEXT,
                release_date TEXT,
                year INTEGER,
                vote_average REAL DEFAULT 0,
                vote_count INTEGER DEFAULT 0,
                popularity REAL DEFAULT 0,
                language TEXT,              -- ISO 639-1 code
                genres TEXT,                -- JSON list
                runtime INTEGER,
                tagline TEXT,
                imdb_rating REAL,
                imdb_voter_count INTEGER,
                user_review_summary TEXT,
                budget INTEGER,
                box_office INTEGER
            );

            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT,
                languages TEXT,             -- JSON list of display names
                genres TEXT,                -- JSON list
                ai_instructions TEXT,
                rec_year_from INTEGER,
                rec_year_to INTEGER,
                rec_min_score REAL,
                rec_min_box_office INTEGER,
                rec_max_budget INTEGER
            );

            CREATE TABLE IF NOT EXISTS movie_ratings (
                user_id TEXT NOT NULL,
                movie_id INTEGER NOT NULL,
                movie_title TEXT NOT NULL,
                movie_year INTEGER,
                rating TEXT NOT NULL,       -- amazing/good/meh/awful/not-interested/skipped
                created_at TEXT,
                PRIMARY KEY (user_id, movie_id)
            );

            CREATE TABLE IF NOT EXISTS watchlist (
                user_id TEXT NOT NULL,
                movie_id INTEGER NOT NULL,
                movie_title TEXT NOT NULL,
                movie_year INTEGER,
                added_at TEXT,
                PRIMARY KEY (user_id, movie_id)
            );

            CREATE TABLE IF NOT EXISTS ai_feedback (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id TEXT NOT NULL,
                feedback TEXT NOT NULL,
                feedback_type TEXT DEFAULT 'movie',
                is_active INTEGER DEFAULT 1,
                created_at TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_movies_year ON movies(year);
            CREATE INDEX IF NOT EXISTS idx_movies_language ON movies(language);
            CREATE INDEX IF NOT EXISTS idx_movies_votes ON movies(vote_average DESC, vote_count DESC);
            CREATE INDEX IF NOT EXISTS idx_ratings_user ON movie_ratings(user_id);
            CREATE INDEX IF NOT EXISTS idx_watchlist_user ON watchlist(user_id);
            CREATE INDEX IF NOT EXISTS idx_feedback_user ON ai_feedback(user_id, feedback_type, is_active);
        """)

        _migrate_movies_table(conn)


def _migrate_movies_table(conn):
    """Add enrichment columns to movies tables created before they existed."""
    existing_columns = {row[1] for row in conn.execute("PRAGMA table_info(movies)").fetchall()}

    new_columns = {
        'imdb_rating': 'REAL',
        'imdb_voter_count': 'INTEGER',
        'user_review_summary': 'TEXT',
        'budget': 'INTEGER',
        'box_office': 'INTEGER',
    }

    for col_name, col_type in new_columns.items():
        if col_name not in existing_columns:
            try:
                conn.execute(f"ALTER TABLE movies ADD COLUMN {col_name} {col_type}")
                logger.info(f"Added column '{col_name}' to movies table")
            except sqlite3.Error as e:
                logger.warning(f"Could not add column '{col_name}': {e}")


def _get_pool() -> ConnectionPool:
    """Get or create the global connection pool."""
    global _pool
    if _pool is None:
        with _pool_lock:
            if _pool is None:
                DB_PATH.parent.mkdir(exist_ok=True, parents=True)
                _pool = ConnectionPool(DB_PATH)
    return _pool


@contextmanager
def get_db(read_only: bool = False):
    """
    Get database connection with proper transaction handling.

    Args:
        read_only: If True, skip commit on exit (optimization for read operations)

    Handles nested calls correctly:
    - Only the outermost context commits/rollbacks
    - Inner contexts are no-ops for transaction control
    """
    pool = _get_pool()
    conn = pool.get_connection()

    is_outermost = pool.get_transaction_depth() == 0
    pool.increment_transaction_depth()

    try:
        yield conn

        if is_outermost and not read_only:
            conn.commit()

    except Exception:
        if is_outermost:
            conn.rollback()
        raise

    finally:
        pool.decrement_transaction_depth()


def close_pool():
    """Close the connection pool. Call on application shutdown."""
    global _pool
    if _pool is not None:
        _pool.close_all()
        _pool = None


def load_json(val):
    """Safely load JSON from db field."""
    if not val:
        return []
    if isinstance(val, list):
        return val
    try:
        return json.loads(val)
    except (json.JSONDecodeError, TypeError) as e:
        logger.warning(f"Failed to parse JSON '{str(val)[:50]}...': {e}")
        return []


def row_to_movie(row) -> dict:
    """Convert a movies row into a plain dict with decoded list columns."""
    movie = dict(row)
    for col in JSON_MOVIE_COLUMNS:
        movie[col] = load_json(movie.get(col))
    return movie


def _encode_movie_value(column: str, value):
    if column in JSON_MOVIE_COLUMNS and not isinstance(value, str):
        return json.dumps(list(value or []))
    return value


# --- Catalog queries ---

def find_movies_by_title_year(
    candidates: list,
    exclude_ids=(),
    year_window: int = 0,
    limit: int | None = None,
) -> list[dict]:
    """
    Find catalog records whose title contains a candidate title (case-insensitive)
    and whose year is within ``year_window`` of the candidate year.

    ``year_window=0`` is the exact tier; the fuzzy tier passes the ±N window.
    Results are ordered by (vote_average desc, vote_count desc).
    """
    if not candidates:
        return []
    if limit is not None and limit <= 0:
        return []

    clauses = []
    params: list = []
    for c in candidates:
        if year_window:
            clauses.append("(instr(py_lower(title), ?) > 0 AND year BETWEEN ? AND ?)")
            params.extend([c.title.lower(), c.year - year_window, c.year + year_window])
        else:
            clauses.append("(instr(py_lower(title), ?) > 0 AND year = ?)")
            params.extend([c.title.lower(), c.year])

    query = f"""
        SELECT * FROM movies
        WHERE ({' OR '.join(clauses)})
          AND id NOT IN (SELECT value FROM json_each(?))
        ORDER BY vote_average DESC, vote_count DESC
    """
    params.append(json.dumps(sorted(set(exclude_ids))))
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)

    with get_db(read_only=True) as conn:
        rows = conn.execute(query, params).fetchall()
    return [row_to_movie(r) for r in rows]


def find_movies_by_preference(
    language_codes: list[str],
    exclude_ids=(),
    limit: int = 10,
    min_score: float | None = None,
    year_from: int | None = None,
    year_to: int | None = None,
    min_box_office: int | None = None,
    max_budget: int | None = None,
) -> list[dict]:
    """
    Top-rated catalog records in the given languages that satisfy the user's
    recommendation thresholds. ``None`` thresholds are not applied.
    """
    if not language_codes or limit <= 0:
        return []

    placeholders = ','.join('?' * len(language_codes))
    where_clauses = [
        f"language IN ({placeholders})",
        "id NOT IN (SELECT value FROM json_each(?))",
    ]
    params: list = [*language_codes, json.dumps(sorted(set(exclude_ids)))]

    if min_score is not None:
        where_clauses.append("COALESCE(imdb_rating, vote_average) >= ?")
        params.append(min_score)
    if year_from is not None:
        where_clauses.append("year >= ?")
        params.append(year_from)
    if year_to is not None:
        where_clauses.append("year <= ?")
        params.append(year_to)
    if min_box_office is not None:
        where_clauses.append("box_office >= ?")
        params.append(min_box_office)
    if max_budget is not None:
        where_clauses.append("budget <= ?")
        params.append(max_budget)

    params.append(limit)
    with get_db(read_only=True) as conn:
        rows = conn.execute(f"""
            SELECT * FROM movies
            WHERE {' AND '.join(where_clauses)}
            ORDER BY vote_average DESC, vote_count DESC
            LIMIT ?
        """, params).fetchall()
    return [row_to_movie(r) for r in rows]


def get_movie(movie_id: int) -> dict | None:
    with get_db(read_only=True) as conn:
        row = conn.execute("SELECT * FROM movies WHERE id = ?", (movie_id,)).fetchone()
    return row_to_movie(row) if row else None


def load_movies_by_ids(movie_ids: list[int]) -> list[dict]:
    """Load catalog records, preserving the order of ``movie_ids``; unknown IDs are skipped."""
    if not movie_ids:
        return []

    with get_db(read_only=True) as conn:
        rows = conn.execute(
            "SELECT * FROM movies WHERE id IN (SELECT value FROM json_each(?))",
            (json.dumps(list(movie_ids)),),
        ).fetchall()

    by_id = {r['id']: row_to_movie(r) for r in rows}
    return [by_id[mid] for mid in dict.fromkeys(movie_ids) if mid in by_id]


def upsert_movie(movie_id: int, fields: dict) -> dict:
    """
    Create or update a catalog record keyed by its external (TMDB) id.

    Every column present in ``fields`` is written; columns not present keep
    their stored value. Repeating the call with new fields overwrites them.
    """
    columns = [c for c in MOVIE_COLUMNS if c != 'id' and c in fields]
    unknown = set(fields) - set(MOVIE_COLUMNS)
    if unknown:
        logger.debug(f"Ignoring unknown movie fields for {movie_id}: {sorted(unknown)}")

    values = [_encode_movie_value(c, fields[c]) for c in columns]
    insert_cols = ', '.join(['id', *columns])
    placeholders = ', '.join('?' * (len(columns) + 1))
    if columns:
        updates = ', '.join(f"{c} = excluded.{c}" for c in columns)
        conflict = f"DO UPDATE SET {updates}"
    else:
        conflict = "DO NOTHING"

    with get_db() as conn:
        conn.execute(f"""
            INSERT INTO movies ({insert_cols}) VALUES ({placeholders})
            ON CONFLICT(id) {conflict}
        """, [movie_id, *values])
        row = conn.execute("SELECT * FROM movies WHERE id = ?", (movie_id,)).fetchone()

    return row_to_movie(row)


def update_movie_fields(movie_id: int, fields: dict) -> None:
    """Update selected columns of an existing catalog record."""
    columns = [c for c in MOVIE_COLUMNS if c != 'id' and c in fields]
    if not columns:
        return
    assignments = ', '.join(f"{c} = ?" for c in columns)
    with get_db() as conn:
        conn.execute(
            f"UPDATE movies SET {assignments} WHERE id = ?",
            [*(_encode_movie_value(c, fields[c]) for c in columns), movie_id],
        )


def find_movies_missing_metadata(limit: int = 100) -> list[dict]:
    """Catalog records lacking IMDB rating, voter count, review summary or genres."""
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT * FROM movies
            WHERE imdb_rating IS NULL
               OR imdb_voter_count IS NULL
               OR user_review_summary IS NULL
               OR genres IS NULL OR genres = '[]'
            ORDER BY popularity DESC
            LIMIT ?
        """, (limit,)).fetchall()
    return [row_to_movie(r) for r in rows]


# --- User data ---

def load_user(user_id: str) -> dict | None:
    with get_db(read_only=True) as conn:
        row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    if not row:
        return None
    user = dict(row)
    user['languages'] = load_json(user.get('languages'))
    user['genres'] = load_json(user.get('genres'))
    return user


def load_user_ratings(user_id: str) -> list[dict]:
    """Load the user's complete rating history (every category, no limit)."""
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT movie_id, movie_title, movie_year, rating, created_at
            FROM movie_ratings
            WHERE user_id = ?
            ORDER BY created_at DESC
        """, (user_id,)).fetchall()
    return [dict(r) for r in rows]


def load_user_watchlist(user_id: str) -> list[dict]:
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT movie_id, movie_title, movie_year, added_at
            FROM watchlist
            WHERE user_id = ?
            ORDER BY added_at DESC
        """, (user_id,)).fetchall()
    return [dict(r) for r in rows]


def load_recent_feedback(user_id: str, limit: int = 5, feedback_type: str = 'movie') -> list[str]:
    """Most recent active AI feedback strings, newest first."""
    if limit <= 0:
        return []
    with get_db(read_only=True) as conn:
        rows = conn.execute("""
            SELECT feedback FROM ai_feedback
            WHERE user_id = ? AND feedback_type = ? AND is_active = 1
            ORDER BY created_at DESC, id DESC
            LIMIT ?
        """, (user_id, feedback_type, limit)).fetchall()
    return [r['feedback'] for r in rows]


# --- Bulk import ---

def import_movies(conn, movies: list[dict]) -> int:
    """Upsert raw movie dicts (snake_case columns) inside the caller's transaction."""
    count = 0
    for movie in movies:
        if movie.get('id') is None or not movie.get('title'):
            logger.warning(f"Skipping movie without id/title: {movie}")
            continue
        columns = [c for c in MOVIE_COLUMNS if c in movie]
        updates = ', '.join(f"{c} = excluded.{c}" for c in columns if c != 'id')
        conn.execute(f"""
            INSERT INTO movies ({', '.join(columns)}) VALUES ({', '.join('?' * len(columns))})
            ON CONFLICT(id) DO UPDATE SET {updates}
        """, [_encode_movie_value(c, movie[c]) for c in columns])
        count += 1
    return count


def import_users(conn, users: list[dict]) -> int:
    conn.executemany("""
        INSERT OR REPLACE INTO users
        (id, email, languages, genres, ai_instructions, rec_year_from, rec_year_to,
         rec_min_score, rec_min_box_office, rec_max_budget)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    """, [(
        u['id'], u.get('email'),
        json.dumps(u.get('languages') or []), json.dumps(u.get('genres') or []),
        u.get('ai_instructions'), u.get('rec_year_from'), u.get('rec_year_to'),
        u.get('rec_min_score'), u.get('rec_min_box_office'), u.get('rec_max_budget'),
    ) for u in users])
    return len(users)


def import_ratings(conn, ratings: list[dict]) -> int:
    now = datetime.now().isoformat()
    conn.executemany("""
        INSERT OR REPLACE INTO movie_ratings
        (user_id, movie_id, movie_title, movie_year, rating, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
    """, [(
        r['user_id'], r['movie_id'], r['movie_title'], r.get('movie_year'),
        r['rating'], r.get('created_at') or now,
    ) for r in ratings])
    return len(ratings)


def import_watchlist(conn, entries: list[dict]) -> int:
    now = datetime.now().isoformat()
    conn.executemany("""
        INSERT OR REPLACE INTO watchlist (user_id, movie_id, movie_title, movie_year, added_at)
        VALUES (?, ?, ?, ?, ?)
    """, [(
        w['user_id'], w['movie_id'], w['movie_title'], w.get('movie_year'), w.get('added_at') or now,
    ) for w in entries])
    return len(entries)


def import_feedback(conn, feedback: list[dict]) -> int:
    now = datetime.now().isoformat()
    conn.executemany("""
        INSERT INTO ai_feedback (user_id, feedback, feedback_type, is_active, created_at)
        VALUES (?, ?, ?, ?, ?)
    """, [(
        f['user_id'], f['feedback'], f.get('feedback_type', 'movie'),
        1 if f.get('is_active', True) else 0, f.get('created_at') or now,
    ) for f in feedback])
    return len(feedback)


def table_counts() -> dict[str, int]:
    with get_db(read_only=True) as conn:
        return {
            table: conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]
            for table in ('movies', 'users', 'movie_ratings', 'watchlist', 'ai_feedback')
        }
