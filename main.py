# redirect-service/main.py
import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.responses import RedirectResponse
from starlette.middleware.cors import CORSMiddleware

from cache import LinkCache, close_redis_connection, connect_to_redis
from config import get_settings
from errors import NotFoundError, StoreError
from logging_config import setup_logging
from resolver import Resolver
from store import DirectusStore, close_store_connection, connect_to_store

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Missing DIRECTUS_URL / DIRECTUS_TOKEN aborts startup here.
    settings = get_settings()
    setup_logging(settings.log_level)

    store_client = await connect_to_store(settings)
    redis_client = None
    cache = None
    if settings.redis_url:
        redis_client = await connect_to_redis(settings.redis_url)
        cache = LinkCache(
            redis_client, ttl=settings.cache_ttl, miss_ttl=settings.cache_miss_ttl
        )

    app.state.resolver = Resolver(
        store=DirectusStore(
            store_client,
            settings.links_collection,
            max_retries=settings.increment_max_retries,
        ),
        cache=cache,
        timeout=settings.request_timeout,
    )
    logger.info("Redirect Service started.")
    yield
    await close_store_connection(store_client)
    if redis_client is not None:
        await close_redis_connection(redis_client)


app = FastAPI(
    title="Redirect Service",
    description="Service for handling short link redirections.",
    version="0.2.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def get_resolver(request: Request) -> Resolver:
    """
    Dependency that provides the resolver built at startup.
    """
    return request.app.state.resolver


@app.get("/health", tags=["Health Check"])
async def health_check():
    """
    Health check endpoint to verify service status.
    """
    return {"status": "ok", "message": "Redirect Service is running!"}


@app.get("/r/{slug}", tags=["Redirect"])
async def redirect_to_target_url(
    slug: str,
    resolver: Resolver = Depends(get_resolver),
):
    """
    Redirects to the target URL stored for the provided slug.
    """
    try:
        target = await resolver.resolve(slug)
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Invalid slug: '{slug}'",
        )
    except StoreError as e:
        logger.error("Could not resolve slug %r: %s", slug, e)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Link service is temporarily unavailable, please try again.",
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )

    return RedirectResponse(url=target.url, status_code=status.HTTP_302_FOUND)


if __name__ == "__main__":
    settings = get_settings()
    uvicorn.run("main:app", host=settings.host, port=settings.port)
