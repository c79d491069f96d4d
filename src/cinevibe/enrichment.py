"""
IMDB metadata enrichment through the completion service.

Fills imdb_rating, imdb_voter_count, user_review_summary, genres, budget and
box_office on catalog records that lack them. Only missing fields are written;
existing values are never overwritten. Failures are logged and leave the
record unchanged.
"""
import asyncio
import json
import logging
from .completion import AsyncCompletionClient, CompletionError
from .database import get_movie, update_movie_fields
from .config import (
    ENRICHMENT_BATCH_SIZE,
    ENRICHMENT_TEMPERATURE,
    ENRICHMENT_MAX_TOKENS,
)

logger = logging.getLogger(__name__)

METADATA_SYSTEM_PROMPT = "You are a precise fact-retrieval assistant that returns only valid JSON."

_METADATA_PROMPT_TEMPLATE = """Retrieve authoritative information for the movie {query} ONLY from IMDB.

What to extract:
1. IMDB rating (decimal number, e.g., 8.1)
2. IMDB rating count (total number of votes)
3. AI-generated summary of IMDB user reviews (2 lines, capturing overall sentiment and key themes)
4. Genre list (all genres assigned by IMDB)
5. Production budget (in USD)
6. Worldwide box office collection (in USD)

RULES:
- All values must be real and grounded in IMDB or other authoritative financial sources (Box Office Mojo, Wikipedia, The Numbers).
- If a value cannot be confirmed through browsing, return null.
- Do NOT include Rotten Tomatoes.
- Do NOT hallucinate or estimate.
- For budget and box office, return raw numbers without currency symbols or formatting.

RETURN STRICT JSON IN THIS EXACT FORMAT:
{{
  "imdb": {{
    "rating": number or null,
    "rating_count": number or null,
    "genres": ["Genre1", "Genre2"],
    "user_reviews_ai_summary": "2-line summary based on IMDB user review sentiment"
  }},
  "financials": {{
    "budget": number or null,
    "box_office_worldwide": number or null
  }}
}}

REQUIREMENTS:
- Output ONLY valid JSON.
- No commentary, no extra text.
- Keep summaries factual and based strictly on IMDB user review sentiment."""


def build_metadata_prompt(title: str, year: int | None = None) -> str:
    query = f"{title} ({year})" if year else title
    return _METADATA_PROMPT_TEMPLATE.format(query=query)


def parse_metadata_response(raw: str) -> dict | None:
    """Parse the JSON payload, tolerating markdown code fences. Returns None if unparseable."""
    text = (raw or '').strip()
    if text.startswith('```'):
        text = text.removeprefix('```json').removeprefix('```')
        text = text.removesuffix('```').strip()
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse metadata JSON: {e} (response: {text[:200]!r})")
        return None
    if not isinstance(data, dict):
        logger.warning(f"Metadata response is not a JSON object: {text[:200]!r}")
        return None
    return data


def needs_metadata(movie: dict) -> bool:
    return (
        not movie.get('imdb_rating')
        or not movie.get('imdb_voter_count')
        or not movie.get('user_review_summary')
        or not movie.get('genres')
    )


def metadata_updates(movie: dict, metadata: dict) -> dict:
    """Fields from ``metadata`` that ``movie`` is missing."""
    imdb = metadata.get('imdb') or {}
    financials = metadata.get('financials') or {}
    candidates = {
        'imdb_rating': imdb.get('rating'),
        'imdb_voter_count': imdb.get('rating_count'),
        'user_review_summary': imdb.get('user_reviews_ai_summary'),
        'genres': imdb.get('genres'),
        'budget': financials.get('budget'),
        'box_office': financials.get('box_office_worldwide'),
    }

    updates = {}
    for column, value in candidates.items():
        if value and not movie.get(column):
            updates[column] = int(value) if column in ('imdb_voter_count', 'budget', 'box_office') else value
    return updates


class MetadataEnricher:
    """Enrich single catalog records using an open AsyncCompletionClient."""

    def __init__(self, client: AsyncCompletionClient):
        self.client = client

    async def fetch_metadata(self, title: str, year: int | None) -> dict | None:
        try:
            raw = await self.client.complete(
                METADATA_SYSTEM_PROMPT,
                build_metadata_prompt(title, year),
                temperature=ENRICHMENT_TEMPERATURE,
                max_tokens=ENRICHMENT_MAX_TOKENS,
            )
        except CompletionError as e:
            logger.warning(f"Metadata request failed for '{title}': {e}")
            return None
        return parse_metadata_response(raw)

    async def enrich(self, movie_id: int, title: str, year: int | None = None) -> dict | None:
        """Fill missing metadata for one record. Returns the stored record, or None if unknown."""
        movie = await asyncio.to_thread(get_movie, movie_id)
        if movie is None:
            logger.warning(f"Movie {movie_id} ('{title}') not found for enrichment")
            return None

        if not needs_metadata(movie):
            logger.debug(f"'{title}' already has complete metadata")
            return movie

        metadata = await self.fetch_metadata(title, year)
        if metadata is None:
            return movie

        try:
            updates = metadata_updates(movie, metadata)
        except (TypeError, ValueError) as e:
            logger.warning(f"Unusable metadata for '{title}': {e}")
            return movie

        if not updates:
            return movie

        await asyncio.to_thread(update_movie_fields, movie_id, updates)
        logger.info(f"Enriched '{title}' (ID: {movie_id}) with {sorted(updates)}")
        return {**movie, **updates}


async def enrich_movies(movies: list[dict], client: AsyncCompletionClient,
                        batch_size: int = ENRICHMENT_BATCH_SIZE, progress=None) -> int:
    """
    Enrich ``movies`` in concurrent batches; each batch completes before the next starts.

    Returns the number of records that were processed without error.
    """
    succeeded = 0
    async with client:
        enricher = MetadataEnricher(client)
        for i in range(0, len(movies), batch_size):
            batch = movies[i:i + batch_size]
            results = await asyncio.gather(
                *(enricher.enrich(m['id'], m['title'], m.get('year')) for m in batch),
                return_exceptions=True,
            )
            for movie, result in zip(batch, results):
                if isinstance(result, Exception):
                    logger.warning(f"Enrichment failed for '{movie['title']}': {result}")
                elif result is not None:
                    succeeded += 1
            if progress is not None:
                progress.update(len(batch))
    return succeeded


def enrich_movies_sync(movies: list[dict], client: AsyncCompletionClient | None = None,
                       batch_size: int = ENRICHMENT_BATCH_SIZE, progress=None) -> int:
    """Blocking wrapper for callers outside an event loop."""
    if not movies:
        return 0
    client = client or AsyncCompletionClient()
    return asyncio.run(enrich_movies(movies, client, batch_size=batch_size, progress=progress))
