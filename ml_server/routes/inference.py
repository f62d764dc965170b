"""
Request/response inference routes.

GET  /api/models                  - List model kind tags
POST /api/inference/{model}       - Run one inference
GET  /api/models/{model}/config   - Read executor tunables
PUT  /api/models/{model}/config   - Update executor tunables
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from ml_server.errors import DispatchError, InvalidInputError
from ml_server.routes import get_session
from ml_server.schemas import ConfigUpdateBody, format_validation_error
from ml_server.state import SessionState

logger = logging.getLogger(__name__)

router = APIRouter()


def _error_response(err: DispatchError) -> JSONResponse:
    return JSONResponse(status_code=err.status_code, content=err.to_payload())


@router.get("/models")
async def list_models(session: SessionState = Depends(get_session)) -> List[str]:
    return session.dispatcher.list_models()


@router.post("/inference/{model}")
async def inference(model: str, request: Request, session: SessionState = Depends(get_session)):
    """
    Run the executor for `model` on the JSON body.

    Returns `{model_type, prediction, latency_ms, timestamp}`.
    """
    body = await request.body()
    try:
        result = await run_in_threadpool(session.dispatcher.dispatch, model, body, transport="http")
    except DispatchError as e:
        if e.status_code >= 500:
            logger.error(f"Inference failed for {model}: {e.detail}")
        return _error_response(e)
    return JSONResponse(content=result.model_dump(mode="json"))


@router.get("/models/{model}/config")
async def get_model_config(model: str, session: SessionState = Depends(get_session)):
    try:
        config = await run_in_threadpool(session.dispatcher.describe, model)
    except DispatchError as e:
        return _error_response(e)
    return JSONResponse(content=config.model_dump(mode="json"))


@router.put("/models/{model}/config")
async def update_model_config(model: str, request: Request, session: SessionState = Depends(get_session)):
    body = await request.body()
    try:
        update = ConfigUpdateBody.model_validate_json(body or b"{}")
    except ValidationError as e:
        return _error_response(InvalidInputError(format_validation_error(e), model_type=model))

    try:
        config = await run_in_threadpool(session.dispatcher.reconfigure, model, update.parameters)
    except DispatchError as e:
        return _error_response(e)

    logger.info(f"Model {config.model_type.value} reconfigured to revision {config.revision}")
    return JSONResponse(content=config.model_dump(mode="json"))
