from __future__ import annotations

from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from scienceai import __version__
from scienceai.api.routes import citations_router, status_router, usage_router
from scienceai.citations.search import SourceSearchClient
from scienceai.config import AppConfig, configure_logging, get_config
from scienceai.db.usage_store import UsageStore
from scienceai.subscription.limiter import UsageLimiter


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[UsageStore] = None,
    search_client: Optional[SourceSearchClient] = None,
) -> FastAPI:
    """Build the API with its services attached to `app.state`."""
    config = config or get_config()
    store = store or UsageStore(config.database_path)
    search_client = search_client or SourceSearchClient(
        timeout=config.search_timeout,
        contact_email=config.contact_email,
    )

    app = FastAPI(
        title="Science AI API",
        description="Usage limits and citation formatting",
        version=__version__,
    )
    app.state.config = config
    app.state.limiter = UsageLimiter(store)
    app.state.search_client = search_client

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(usage_router, prefix="/api")
    app.include_router(citations_router, prefix="/api")
    app.include_router(status_router, prefix="/api")

    @app.get("/")
    async def root():
        return {"message": "Science AI API", "version": __version__}

    return app


def run(config: Optional[AppConfig] = None) -> None:
    """Start the API server with uvicorn."""
    import uvicorn

    load_dotenv()
    config = config or get_config()
    configure_logging(config.log_level)
    uvicorn.run(create_app(config), host=config.host, port=config.port)


if __name__ == "__main__":
    run()
