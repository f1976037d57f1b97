import logging
import logging.config
import traceback

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from train_dispatch.domains.orchestration.controllers.orchestration import error_response, orchestration_router
from train_dispatch.domains.orchestration.schemas.constants import PREFLIGHT_HEADERS
from train_dispatch.logs.cloudwatch_log_handler import setup_cloudwatch_logging
from train_dispatch.settings.settings import settings

logger = logging.getLogger(__name__)

if settings.logging_conf_path.exists():
    logging.config.fileConfig(str(settings.logging_conf_path), disable_existing_loggers=False)
logging.info('Setting up cloudwatch logging')
setup_cloudwatch_logging()

app = FastAPI(title="train-dispatch")


@app.middleware("http")
async def cors_preflight(request: Request, call_next):
    if request.method == "OPTIONS":
        return JSONResponse(status_code=200, content={"ok": True}, headers=PREFLIGHT_HEADERS)
    return await call_next(request)


@app.exception_handler(StarletteHTTPException)
async def route_not_found(request: Request, exc: StarletteHTTPException):
    # unknown paths and wrong methods on known paths are both unmatched routes
    if exc.status_code in (404, 405):
        return error_response(404, f"Route not found: {request.method} {request.url.path}")
    return error_response(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}\n{traceback.format_exc()}")
    return error_response(500, str(exc) or "Internal server error")


app.include_router(orchestration_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.fastapi_host, port=settings.fastapi_port)
