"""FastAPI application entry point."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from webpix.api.routes import router
from webpix.config import APP_ENV, CORS_ORIGINS, REDIS_URL, logger as config_logger
from webpix.conversion.service import shutdown_conversion_service
from webpix.db import init_db
from webpix.exceptions import WebpixError

logging.getLogger("uvicorn").setLevel(logging.INFO)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if not REDIS_URL:
        init_db()
    config_logger.info("Webpix API started in '%s' mode", APP_ENV.upper())
    yield
    shutdown_conversion_service()
    config_logger.info("Webpix API shutting down")


app = FastAPI(
    title="Webpix API",
    description="Convert batches of JPEG, PNG, GIF and SVG images to size-efficient formats.",
    version="1.0.0",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if CORS_ORIGINS else ["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


async def webpix_error_handler(request: Request, exc: WebpixError):
    if exc.status_code >= 500:
        config_logger.error("Conversion error: %s", exc.message)
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


app.add_exception_handler(WebpixError, webpix_error_handler)
app.include_router(router)


if __name__ == "__main__":
    import uvicorn
    from webpix.config import HOST, IS_PRODUCTION, PORT
    uvicorn.run("webpix.main:app", host=HOST, port=PORT, reload=not IS_PRODUCTION)
