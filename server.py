import logging
from typing import List, Optional, Union

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from config import load_settings
from errors import MalformedQuery, StoreUnavailable
from library import open_library
from logging_config import setup_logging
from models import MatchResult, Song, SongMetadata

logger = logging.getLogger(__name__)


class RegisterRequest(SongMetadata):
    # Hashes come from the fingerprint generator; strings keep 64-bit values intact in JSON
    hashes: List[Union[int, str]]
    hash_count: Optional[int] = Field(default=None, ge=0)


class SearchRequest(BaseModel):
    hashes: List[Union[int, str]] = Field(default_factory=list)


def create_app(library=None, settings=None):
    """Builds the API. Without a library, one is opened from the environment at startup."""
    app = FastAPI(title="AudioPrint Index")
    app.state.library = library

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    def startup_event():
        if app.state.library is not None:
            return
        app_settings = settings or load_settings()
        setup_logging("audioprint", app_settings.log_level)
        logger.info("🔄 STARTUP: Opening song library...")
        app.state.library = open_library(app_settings)
        logger.info("✅ SUCCESS: Song library is ready.")

    @app.on_event("shutdown")
    def shutdown_event():
        if app.state.library is not None:
            app.state.library.close()

    @app.exception_handler(MalformedQuery)
    async def malformed_query_handler(request: Request, exc: MalformedQuery):
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error("Store unavailable while serving %s: %s", request.url.path, exc)
        return JSONResponse(status_code=503, content={"detail": "song store unavailable"})

    @app.get("/")
    async def root():
        return {"message": "AudioPrint Index is Live!"}

    @app.post("/songs", response_model=Song, status_code=201)
    def register_endpoint(body: RegisterRequest):
        logger.info("🎤 UPLOAD: Registering '%s' by '%s' (%d hashes)", body.title, body.artist, len(body.hashes))
        metadata = SongMetadata(**body.model_dump(include=set(SongMetadata.model_fields)))
        return app.state.library.register_song(metadata, body.hashes, body.hash_count)

    @app.post("/search", response_model=List[MatchResult])
    def search_endpoint(body: SearchRequest):
        results = app.state.library.identify(body.hashes)
        if results:
            best = results[0]
            logger.info("🎶 IDENTIFIED: %s (confidence %.3f)", best.song.title, best.confidence)
        return results

    @app.get("/songs", response_model=List[Song])
    def list_endpoint(page: int = Query(0, ge=0), size: int = Query(20, ge=0, le=500)):
        return app.state.library.list_songs(page, size)

    @app.get("/songs/count")
    def count_endpoint():
        return {"count": app.state.library.count_songs()}

    @app.get("/songs/search", response_model=List[Song])
    def text_search_endpoint(q: str = Query(..., min_length=1)):
        return app.state.library.search_by_text(q)

    @app.get("/songs/{song_id}", response_model=Song)
    def song_endpoint(song_id: int):
        song = app.state.library.get_song(song_id)
        if song is None:
            raise HTTPException(status_code=404, detail=f"song {song_id} not found")
        return song

    return app


app = create_app()
