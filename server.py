from contextlib import asynccontextmanager
import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.dependencies import get_capture_store
from api.routers.analysis import router as analysis_router
from api.routers.captures import router as captures_router
from api.routers.settings import router as settings_router
from env import get_settings


# Structured logging setup
class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple wrapper
        log_record = {
            "time": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(log_record)


handler = logging.StreamHandler()
handler.setFormatter(JsonFormatter())

root_logger = logging.getLogger()
root_logger.handlers = [handler]
root_logger.setLevel(logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    settings = get_settings()
    logger.info("Starting crowd analytics server...")
    logger.info(
        "Environment check - AWS credentials available: %s",
        bool(settings.AWS_ACCESS_KEY_ID and settings.AWS_SECRET_ACCESS_KEY),
    )
    logger.info(
        "Environment check - Face++ credentials available: %s",
        bool(settings.FACEPP_API_KEY and settings.FACEPP_API_SECRET),
    )
    logger.info("Usage file: %s, capture database: %s", settings.USAGE_FILE, settings.CAPTURE_DB_PATH)
    store = get_capture_store()
    logger.info("Active provider: %s", store.get_analysis_settings().api_provider.value)

    yield

    # Shutdown
    logger.info("Shutting down crowd analytics server...")


app = FastAPI(title="Crowd Analytics", version="1.0.0", lifespan=lifespan)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies are client errors, reported as 400."""
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request", "errors": jsonable_encoder(exc.errors())},
    )


@app.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": time.time()}


app.include_router(analysis_router)
app.include_router(captures_router)
app.include_router(settings_router)


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    logger.info("Starting server on %s:%s", settings.HOST, settings.PORT)
    uvicorn.run("server:app", host=settings.HOST, port=settings.PORT, reload=False, log_level="info")
