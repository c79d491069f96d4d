import httpx
import logging
from .config import TMDB_API_KEY, TMDB_BASE_URL, HTTP_TIMEOUT

logger = logging.getLogger(__name__)


class CatalogError(RuntimeError):
    """A catalog lookup failed (missing credentials, network error or bad status)."""


def _parse_year(release_date: str | None) -> int | None:
    if not isinstance(release_date, str) or not release_date:
        return None
    try:
        return int(release_date.split('-')[0])
    except ValueError:
        return None


def details_to_fields(details: dict, fallback_year: int | None = None) -> dict:
    """
    Map a TMDB movie details payload onto catalog columns.

    IMDB fields are left for the enrichment step, so readers fall back to
    vote_average until they are filled. Payloads that can't become a catalog
    record raise CatalogError.
    """
    if not isinstance(details, dict):
        raise CatalogError(f"Unexpected TMDB details payload: {type(details).__name__}")
    title = details.get('title') or details.get('original_title')
    if not title:
        raise CatalogError(f"TMDB details for ID {details.get('id')} have no title")

    genres = details.get('genres') or []
    if not isinstance(genres, list) or not all(isinstance(g, dict) for g in genres):
        raise CatalogError(f"TMDB details for ID {details.get('id')} have malformed genres")

    year = _parse_year(details.get('release_date')) or fallback_year
    return {
        'title': title,
        'original_title': details.get('original_title'),
        'overview': details.get('overview') or 'No summary available',
        'poster_path': details.get('poster_path'),
        'backdrop_path': details.get('backdrop_path'),
        'release_date': details.get('release_date'),
        'year': year,
        'vote_average': details.get('vote_average') or 0,
        'vote_count': details.get('vote_count') or 0,
        'popularity': details.get('popularity') or 0,
        'language': details.get('original_language'),
        'genres': [g['name'] for g in genres if g.get('name')],
        'runtime': details.get('runtime'),
        'tagline': details.get('tagline'),
    }


class TMDBClient:
    """Title/year search and detail lookup against the TMDB v3 API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = TMDB_BASE_URL,
        timeout: float = HTTP_TIMEOUT,
        transport: httpx.BaseTransport | None = None,
    ):
        self.api_key = TMDB_API_KEY if api_key is None else api_key
        self.client = httpx.Client(
            base_url=base_url.rstrip('/'),
            timeout=timeout,
            transport=transport,
        )

    def _get(self, path: str, params: dict) -> dict:
        if not self.api_key:
            raise CatalogError("TMDB_API_KEY is not set")
        try:
            resp = self.client.get(path, params={"api_key": self.api_key, **params})
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise CatalogError(f"TMDB returned {e.response.status_code} for {path}") from e
        except httpx.HTTPError as e:
            raise CatalogError(f"TMDB request failed for {path}: {e}") from e

        try:
            return resp.json()
        except ValueError as e:
            raise CatalogError(f"TMDB returned invalid JSON for {path}") from e

    def search_by_title_year(self, title: str, year: int | None) -> dict | None:
        """Return the top search hit for ``title``, or None when there is none."""
        params = {"query": title}
        if year:
            params["year"] = year
        results = self._get("/search/movie", params).get("results") or []
        if not results:
            logger.debug(f"No TMDB results for '{title}' ({year})")
            return None
        return results[0]

    def fetch_details(self, tmdb_id: int) -> dict:
        return self._get(f"/movie/{tmdb_id}", {"append_to_response": "external_ids"})

    def close(self):
        self.client.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
