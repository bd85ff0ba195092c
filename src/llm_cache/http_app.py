import asyncio
import contextlib
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from llm_cache.caches import CacheRegistry, run_periodic_cleanup
from llm_cache.config import Settings, load_settings
from llm_cache.gateway import ModelGateway
from llm_cache.logging_config import get_logger, log_context, setup_logging
from llm_cache.ratelimit import RateLimiter

logger = get_logger("llm_cache.http_app")

# Paths that are never rate limited
UNLIMITED_PATHS = {"/healthz"}


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip
    return request.client.host if request.client else "unknown"


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or load_settings()

    # -------------------------------------------------------------------------
    # LIFECYCLE MANAGEMENT
    # -------------------------------------------------------------------------
    # Caches and the limiter live for the whole process; the sweep task is
    # the only timer.
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        registry = CacheRegistry.from_settings(settings)
        app.state.registry = registry
        app.state.gateway = ModelGateway(registry, settings.retry)
        app.state.rate_limiter = RateLimiter(
            limit=settings.rate_limit.requests,
            interval=settings.rate_limit.window
        )
        cleanup_task = asyncio.create_task(
            run_periodic_cleanup(registry, settings.cleanup_interval, app.state.rate_limiter)
        )
        logger.info("Cache cleanup task started")
        try:
            yield
        finally:
            cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup_task
            logger.info("Cache cleanup task stopped")

    app = FastAPI(title="LLM Response Cache", lifespan=lifespan)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def rate_limit_and_log(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        with log_context(request_id=request_id, operation=f"{request.method} {request.url.path}"):
            logger.info(f"Incoming Request: {request.method} {request.url.path}")
            if request.url.path not in UNLIMITED_PATHS:
                limiter: RateLimiter = request.app.state.rate_limiter
                result = limiter.hit(_client_ip(request))
                if not result.success:
                    logger.warning("Rate limit exceeded", extra={"error_type": "rate_limit"})
                    return JSONResponse(
                        status_code=429,
                        content={
                            "error": "Rate limit exceeded",
                            "message": "Too many requests. Please try again later.",
                            "retry_after": result.retry_after,
                        },
                        headers={
                            "Retry-After": str(result.retry_after),
                            "X-RateLimit-Limit": str(limiter.limit),
                            "X-RateLimit-Remaining": str(result.remaining),
                            "X-RateLimit-Reset": str(result.reset_epoch),
                        },
                    )
            return await call_next(request)

    # -------------------------------------------------------------------------
    # ROUTES
    # -------------------------------------------------------------------------

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    @app.get("/cache/stats")
    async def all_stats(request: Request):
        return request.app.state.registry.stats()

    @app.get("/cache/{name}/stats")
    async def cache_stats(name: str, request: Request):
        try:
            cache = request.app.state.registry.get(name)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e.args[0])) from e
        stats = cache.get_stats()
        stats["in_flight"] = request.app.state.registry.flights(name).in_flight
        return stats

    @app.post("/cache/cleanup")
    async def cleanup(request: Request):
        removed = request.app.state.registry.cleanup_all()
        request.app.state.rate_limiter.cleanup()
        logger.info("Manual cleanup", extra={"removed": sum(removed.values())})
        return {"removed": removed}

    @app.delete("/cache/{name}")
    async def clear_cache(name: str, request: Request):
        try:
            cache = request.app.state.registry.get(name)
        except KeyError as e:
            raise HTTPException(status_code=404, detail=str(e.args[0])) from e
        cache.clear()
        logger.info(f"Cleared cache {name}", extra={"cache_name": name})
        return {"cleared": name}

    return app


app = create_app()


def main():
    settings = load_settings()
    setup_logging(settings.log_level)
    print(f"Starting server on port {settings.port}...")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level, proxy_headers=True)

if __name__ == "__main__":
    main()
