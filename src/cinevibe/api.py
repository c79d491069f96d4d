import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from .database import close_pool
from .config import MAX_REQUESTED_COUNT, DEFAULT_REQUESTED_COUNT
from .pipeline import handle_smart_picks_request

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    close_pool()


app = FastAPI(title="CineVibe API", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = "; ".join(
        f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
    )
    logger.warning(f"Rejected {request.method} {request.url.path}: {details}")
    return JSONResponse(status_code=422, content={"error": "Invalid request", "details": details})


class SmartPicksPayload(BaseModel):
    userQuery: Optional[str] = None


async def smart_picks_payload(request: Request) -> Optional[SmartPicksPayload]:
    """Parse the optional JSON body; an empty or unparsable body means no custom query."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return SmartPicksPayload.model_validate_json(raw)
    except ValidationError as e:
        logger.warning(f"Ignoring unparsable smart picks body: {e.error_count()} error(s)")
        return None


def pipeline_options() -> dict:
    """Extra keyword arguments for handle_smart_picks_request (overridden in tests)."""
    return {}


@app.get("/api/health")
def health():
    return {"status": "ok"}


# Sync handler: FastAPI runs it in a worker thread, so the pipeline's
# blocking HTTP calls and per-request enrichment event loop stay off the main loop.
@app.post("/api/search/smart-picks")
def smart_picks(
    payload: Optional[SmartPicksPayload] = Depends(smart_picks_payload),
    count: int = Query(DEFAULT_REQUESTED_COUNT, description=f"Number of picks (max {MAX_REQUESTED_COUNT})"),
    x_user_id: Optional[str] = Header(None),
    options: dict = Depends(pipeline_options),
):
    if not x_user_id:
        return JSONResponse(status_code=401, content={"error": "Unauthorized"})

    user_query = payload.userQuery if payload else None
    logger.info(f"Smart picks requested by {x_user_id} (count={count}, query={user_query or 'preferences'})")

    status, body = handle_smart_picks_request(
        x_user_id,
        count=count,
        user_query=user_query,
        **options,
    )
    return JSONResponse(status_code=status, content=body)
