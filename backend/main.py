"""FastAPI application exposing one navigation session to the presentation layer."""

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import Body, Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
import db
from cache import GeoCache
from discovery import DiscoveryClient
from errors import (
    DiscoveryError,
    NavigationError,
    ProviderError,
    ResolutionError,
    RouteError,
    UnknownTargetError,
)
from gemini import GeminiClient
from models import Coordinate, SearchRequest, StatusRequest
from routing import RouteClient
from session import NavigationSession
from speech import AnnouncementFeed, LogAnnouncer, SpeechAnnouncer

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type, int] = {
    ResolutionError: 404,
    UnknownTargetError: 404,
    DiscoveryError: 502,
    RouteError: 502,
    ProviderError: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    db.init_db()
    logger.info("Database initialized")

    client = httpx.AsyncClient()
    cache = GeoCache()
    gemini = GeminiClient(client)
    feed = AnnouncementFeed()
    if config.GEMINI_API_KEY:
        announcer = SpeechAnnouncer(gemini, feed)
    else:
        logger.warning("GEMINI_API_KEY not set, announcements are text only")
        announcer = LogAnnouncer(feed)

    app.state.cache = cache
    app.state.announcements = feed
    app.state.session = NavigationSession(
        discovery=DiscoveryClient(gemini, cache),
        router=RouteClient(client),
        announcer=announcer,
        history=db,
    )
    try:
        yield
    finally:
        await app.state.session.close()
        await client.aclose()


app = FastAPI(title="Navigation Session", version="1.0.0", lifespan=lifespan)

# CORS: allow frontend origin(s)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NavigationError)
async def navigation_error_handler(request: Request, exc: NavigationError):
    status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
    return JSONResponse(status_code=status, content={"error": exc.kind, "detail": str(exc)})


def get_session(request: Request) -> NavigationSession:
    return request.app.state.session


def get_announcements(request: Request) -> AnnouncementFeed:
    return request.app.state.announcements


def get_cache(request: Request) -> GeoCache:
    return request.app.state.cache


# ---------- Health / config ----------

@app.get("/health")
async def health(cache: GeoCache = Depends(get_cache)):
    return {"status": "ok", "cache": cache.stats()}


@app.get("/config")
async def get_config():
    return {
        "cache_precision": config.CACHE_PRECISION,
        "track_min_displacement_m": config.TRACK_MIN_DISPLACEMENT_M,
        "arrival_radius_m": config.ARRIVAL_RADIUS_M,
        "route_starts_tracking": config.ROUTE_STARTS_TRACKING,
        "suggestion_min_chars": config.SUGGESTION_MIN_CHARS,
        "osrm_base_url": config.OSRM_BASE_URL,
    }


# ---------- Session ----------

@app.get("/session")
async def get_session_state(session: NavigationSession = Depends(get_session)):
    return session.snapshot()


@app.post("/reset")
async def reset_session(session: NavigationSession = Depends(get_session)):
    session.reset()
    return session.snapshot()


# ---------- Discovery ----------

@app.post("/search")
async def search(body: SearchRequest, session: NavigationSession = Depends(get_session)):
    applied = await session.search(body.query)
    return {"applied": applied, "session": session.snapshot()}


@app.get("/suggestions")
async def suggestions(
    q: str = Query(..., description="Partial place name"),
    session: NavigationSession = Depends(get_session),
):
    return {"suggestions": await session.suggest(q)}


@app.post("/locate")
async def locate(
    position: Coordinate | None = Body(default=None),
    session: NavigationSession = Depends(get_session),
):
    applied = await session.locate(position)
    return {"applied": applied, "session": session.snapshot()}


# ---------- Targets / routes ----------

@app.post("/targets/{target_id}/route")
async def route_to_target(target_id: str, session: NavigationSession = Depends(get_session)):
    route = await session.select_target(target_id)
    return {"route": route, "session": session.snapshot()}


@app.delete("/route")
async def clear_route(session: NavigationSession = Depends(get_session)):
    cleared = session.clear_route()
    return {"cleared": cleared, "session": session.snapshot()}


@app.post("/pois/{point_id}/status")
async def report_status(point_id: str, body: StatusRequest, session: NavigationSession = Depends(get_session)):
    updated = session.report_point_status(point_id, body.status)
    return {"updated": updated, "session": session.snapshot()}


# ---------- Tracking ----------

@app.post("/tracking/start")
async def start_tracking(session: NavigationSession = Depends(get_session)):
    session.start_tracking()
    return session.snapshot()


@app.post("/tracking/stop")
async def stop_tracking(session: NavigationSession = Depends(get_session)):
    session.stop_tracking()
    return session.snapshot()


@app.post("/location")
async def update_location(position: Coordinate, session: NavigationSession = Depends(get_session)):
    session.update_location(position)
    return session.snapshot()


@app.get("/history")
async def get_history(session: NavigationSession = Depends(get_session)):
    entries = session.history()
    return {"count": len(entries), "history": entries}


@app.get("/announcements")
async def get_announcements_feed(feed: AnnouncementFeed = Depends(get_announcements)):
    return {"announcements": feed.recent()}
