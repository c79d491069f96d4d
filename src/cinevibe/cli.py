import argparse
import atexit
import json
import logging

from tqdm import tqdm

from .database import (
    init_db, get_db, close_pool, table_counts, find_movies_missing_metadata,
    import_movies, import_users, import_ratings, import_watchlist, import_feedback,
)
from .config import (
    IMPORT_CHUNK_SIZE,
    DEFAULT_REQUESTED_COUNT,
    ENRICHMENT_BATCH_SIZE,
)
from .enrichment import enrich_movies_sync
from .pipeline import handle_smart_picks_request

logger = logging.getLogger(__name__)

# Register cleanup on exit
atexit.register(close_pool)

# Seed file key -> importer, in dependency order
IMPORTERS = (
    ('movies', import_movies),
    ('users', import_users),
    ('ratings', import_ratings),
    ('watchlist', import_watchlist),
    ('feedback', import_feedback),
)


def cmd_init_db(args: argparse.Namespace) -> None:
    """Create the database schema."""
    init_db()
    logger.info("Database initialized")


def cmd_import(args: argparse.Namespace) -> None:
    """Import movies, users, ratings, watchlist and feedback from a JSON seed file."""
    with open(args.file, 'r') as f:
        data = json.load(f)

    init_db()

    def _batched(items, size=IMPORT_CHUNK_SIZE):
        for i in range(0, len(items), size):
            yield items[i:i + size]

    with get_db() as conn:
        for key, importer in IMPORTERS:
            if key not in data:
                continue
            imported = sum(importer(conn, chunk) for chunk in _batched(data[key]))
            logger.info(f"Imported {imported} {key}")

    logger.info(f"Import completed from {args.file}")


def _print_recommendations(body: dict) -> None:
    movies = body['movies']
    meta = body['metadata']
    logger.info(f"\nSmart picks ({meta['moviesFound']} found, {meta['userRatingsCount']} ratings, {meta['durationMs']}ms):\n")
    for i, movie in enumerate(movies, 1):
        year = f" ({movie['year']})" if movie.get('year') else ""
        logger.info(f"{i:2}. {movie['title']}{year}  {movie['matchPercent']}% match")
        for reason in movie['matchReasons']:
            logger.info(f"      +{reason['score']:<2} {reason['factor']}: {reason['description']}")


def cmd_smart_picks(args: argparse.Namespace) -> None:
    """Generate smart picks for a user."""
    init_db()
    options = {}
    if args.no_enrich:
        options['use_default_enricher'] = False

    status, body = handle_smart_picks_request(
        args.user_id,
        count=args.count,
        user_query=args.query,
        **options,
    )

    if args.format == 'json':
        print(json.dumps(body, indent=2))
    elif status == 200:
        _print_recommendations(body)
    else:
        logger.error(f"{body['error']}: {body.get('details', '')}")

    if status != 200:
        raise SystemExit(1)


def cmd_enrich(args: argparse.Namespace) -> None:
    """Fill missing IMDB metadata for catalog records."""
    init_db()
    movies = find_movies_missing_metadata(limit=args.limit)
    if not movies:
        logger.info("All movies already have metadata")
        return

    logger.info(f"Enriching {len(movies)} movies (batch size {args.batch_size})")
    with tqdm(total=len(movies), desc="Enriching") as pbar:
        processed = enrich_movies_sync(movies, batch_size=args.batch_size, progress=pbar)
    logger.info(f"Processed {processed}/{len(movies)} movies")


def cmd_stats(args: argparse.Namespace) -> None:
    """Show database statistics."""
    init_db()
    counts = table_counts()
    logger.info("\nDatabase Statistics:")
    logger.info(f"  Movies: {counts['movies']}")
    logger.info(f"  Users: {counts['users']}")
    logger.info(f"  Ratings: {counts['movie_ratings']}")
    logger.info(f"  Watchlist entries: {counts['watchlist']}")
    logger.info(f"  AI feedback entries: {counts['ai_feedback']}")

    if getattr(args, 'verbose', False):
        missing = len(find_movies_missing_metadata(limit=counts['movies'] or 1))
        logger.info(f"\n  Movies without IMDB metadata: {missing}")


def cmd_serve(args: argparse.Namespace) -> None:
    """Run the HTTP API."""
    import uvicorn

    init_db()
    uvicorn.run("cinevibe.api:app", host=args.host, port=args.port, log_level="debug" if args.verbose else "info")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CineVibe smart picks")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    init_parser.set_defaults(func=cmd_init_db)

    import_parser = subparsers.add_parser("import", help="Import seed data from JSON")
    import_parser.add_argument("file", help="JSON file with movies/users/ratings/watchlist/feedback arrays")
    import_parser.set_defaults(func=cmd_import)

    picks_parser = subparsers.add_parser("smart-picks", help="Generate AI smart picks for a user")
    picks_parser.add_argument("user_id", help="User ID")
    picks_parser.add_argument("--count", type=int, default=DEFAULT_REQUESTED_COUNT, help="Number of picks (max 10)")
    picks_parser.add_argument("--query", help="Free-text request, e.g. 'feel-good heist movies'")
    picks_parser.add_argument("--format", choices=["text", "json"], default="text", help="Output format")
    picks_parser.add_argument("--no-enrich", action="store_true", help="Skip IMDB metadata enrichment")
    picks_parser.set_defaults(func=cmd_smart_picks)

    enrich_parser = subparsers.add_parser("enrich", help="Fill missing IMDB metadata")
    enrich_parser.add_argument("--limit", type=int, default=100, help="Max movies to enrich")
    enrich_parser.add_argument("--batch-size", type=int, default=ENRICHMENT_BATCH_SIZE, help="Concurrent requests per batch")
    enrich_parser.set_defaults(func=cmd_enrich)

    stats_parser = subparsers.add_parser("stats", help="Show database statistics")
    stats_parser.set_defaults(func=cmd_stats)

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default="127.0.0.1")
    serve_parser.add_argument("--port", type=int, default=8000)
    serve_parser.set_defaults(func=cmd_serve)

    return parser


def main():
    parser = build_parser()
    args = parser.parse_args()

    # Configure logging based on verbosity
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    args.func(args)


if __name__ == "__main__":
    main()
