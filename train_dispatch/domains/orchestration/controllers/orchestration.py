from datetime import datetime, timezone
import json
import logging
import time
import traceback
from typing import Callable

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from train_dispatch.domains.orchestration.schemas.constants import CORS_HEADERS, TransferDirection
from train_dispatch.domains.orchestration.schemas.dispatch import DispatchResult
from train_dispatch.domains.orchestration.services.orchestrator import Orchestrator, get_orchestrator
from train_dispatch.errors import DispatchError, ValidationError
from train_dispatch.settings.settings import settings

logger = logging.getLogger(__name__)

orchestration_router = APIRouter(
    prefix=settings.api_prefix,
    tags=["Orchestration"]
)


def success_response(status_code: int, data: dict) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=data, headers=CORS_HEADERS)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "error": message,
            "timestamp": datetime.now(timezone.utc).isoformat()
        },
        headers=CORS_HEADERS
    )


def _respond(operation: str, run: Callable[[], DispatchResult]) -> JSONResponse:
    started = time.perf_counter()
    try:
        result = run()
        response = success_response(202, result.model_dump(mode="json"))
    except DispatchError as e:
        logger.error(f"Operation {operation} failed: {e}")
        response = error_response(e.status_code, str(e))
    except Exception as e:
        logger.error(f"Operation {operation} failed ERROR: {e}\n{traceback.format_exc()}")
        response = error_response(500, str(e) or "Internal server error")

    duration_ms = int((time.perf_counter() - started) * 1000)
    logger.info(f"Operation {operation} completed duration: {duration_ms}ms statusCode: {response.status_code}")
    return response


def parse_training_body(body: bytes) -> dict:
    if not body or not body.strip():
        return {}
    try:
        parsed = json.loads(body)
    except ValueError:
        raise ValidationError("Invalid JSON body. Send an object with the training parameters.")
    if parsed is None:
        return {}
    if not isinstance(parsed, dict):
        raise ValidationError("Invalid JSON body. Send an object with the training parameters.")
    return parsed


def _launch_training(build_orchestrator: Callable[[], Orchestrator], body: bytes) -> DispatchResult:
    request_config = parse_training_body(body)
    return build_orchestrator().run_training_launch(request_config)


def orchestrator_provider() -> Callable[[], Orchestrator]:
    return get_orchestrator


@orchestration_router.get("/download-start")
def download_start(build_orchestrator: Callable[[], Orchestrator] = Depends(orchestrator_provider)):
    return _respond(
        "start_download_s3_backup",
        lambda: build_orchestrator().run_bulk_transfer(TransferDirection.FORWARD)
    )


@orchestration_router.get("/rollback")
@orchestration_router.get("/rollback-ssm")
def rollback(build_orchestrator: Callable[[], Orchestrator] = Depends(orchestrator_provider)):
    return _respond(
        "start_rollback_s3",
        lambda: build_orchestrator().run_bulk_transfer(TransferDirection.REVERSE)
    )


@orchestration_router.api_route("/start-training", methods=["GET", "POST"])
async def start_training(
        request: Request,
        build_orchestrator: Callable[[], Orchestrator] = Depends(orchestrator_provider)
):
    body = await request.body()
    return await run_in_threadpool(
        _respond,
        "start_training",
        lambda: _launch_training(build_orchestrator, body)
    )
