"""REST endpoints.

POST /chat - run one orchestration turn and return the answer
GET /health - service health and version
GET /functions - list the registered tools
POST /test-function - invoke a tool directly, bypassing the model
"""

from datetime import datetime, timezone
from typing import Any

import structlog
from fastapi import APIRouter, Body, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from backend.agent.orchestrator import render_tool_output
from backend.agent.registry import InvalidArgumentError, ToolExecutionError, UnknownToolError
from backend.api.schemas import (
    ChatRequest,
    ChatResponse,
    ErrorResponse,
    FunctionInfo,
    FunctionParameterInfo,
    FunctionsResponse,
    FunctionTestResponse,
    HealthResponse,
)
from backend.core.config import API_VERSION
from backend.core.llm_adapter import BackendError

logger = structlog.get_logger(__name__)

router = APIRouter()

_ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request"},
    500: {"model": ErrorResponse, "description": "Model backend failure"},
}


@router.post("/chat", response_model=ChatResponse, responses=_ERROR_RESPONSES)
async def chat(request: ChatRequest, req: Request):
    """Answer a financial question, calling tools as the model decides."""
    orchestrator = req.app.state.orchestrator
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Assistant not available. Configure LLM API keys in .env and restart.")

    logger.info("chat.request", query_len=len(request.query))

    try:
        result = await orchestrator.run(request.query)
    except BackendError as e:
        logger.error("chat.failed", error=str(e), error_type=e.__class__.__name__)
        body = ErrorResponse(
            error="An error occurred while processing your request.",
            details=str(e),
        )
        return JSONResponse(status_code=500, content=body.model_dump())

    logger.info("chat.response", iterations=result.iterations, tools=result.tools_called,
                response_len=len(result.text))
    return ChatResponse(response=result.text)


@router.get("/health", response_model=HealthResponse)
def health(req: Request):
    """Report whether the model backend is configured, plus live counters."""
    gateway = req.app.state.gateway
    registry = req.app.state.registry
    sessions = req.app.state.sessions

    llm_ok = gateway is not None and gateway.is_healthy() and req.app.state.orchestrator is not None
    components = {
        "llm": "ok" if llm_ok else "error",
        "tools": len(registry),
        "active_sessions": len(sessions),
    }

    return HealthResponse(
        status="Healthy" if llm_ok else "Degraded",
        timestamp=datetime.now(timezone.utc),
        version=API_VERSION,
        components=components,
    )


@router.get("/functions", response_model=FunctionsResponse)
def functions(req: Request):
    """List the tools advertised to the model."""
    catalog = req.app.state.registry.describe_all()
    infos = [
        FunctionInfo(
            name=descriptor.name,
            description=descriptor.description,
            parameters=[
                FunctionParameterInfo(
                    name=p.name,
                    type=p.type,
                    description=p.description,
                    required=p.required,
                    default=p.default,
                )
                for p in descriptor.parameters
            ],
        )
        for descriptor in catalog
    ]
    return FunctionsResponse(total_functions=len(infos), functions=infos)


@router.post("/test-function", response_model=FunctionTestResponse, responses={
    400: {"model": ErrorResponse, "description": "Invalid arguments or tool failure"},
    404: {"model": ErrorResponse, "description": "Unknown tool"},
})
def test_function(
    req: Request,
    function_name: str = Query(..., min_length=1),
    parameters: dict[str, Any] | None = Body(default=None),
):
    """Invoke one tool directly with the given arguments."""
    registry = req.app.state.registry
    parameters = parameters or {}
    logger.info("test_function.request", tool=function_name, params=sorted(parameters))

    try:
        output = registry.invoke(function_name, parameters)
    except UnknownToolError as e:
        return JSONResponse(status_code=404, content=ErrorResponse(error="Unknown function", details=str(e)).model_dump())
    except InvalidArgumentError as e:
        return JSONResponse(status_code=400, content=ErrorResponse(
            error="Invalid argument", details={"parameter": e.parameter, "reason": e.reason},
        ).model_dump())
    except ToolExecutionError as e:
        return JSONResponse(status_code=400, content=ErrorResponse(
            error=f"{e.cause.__class__.__name__}", details=str(e),
        ).model_dump())

    logger.info("test_function.ok", tool=function_name)
    return FunctionTestResponse(
        function_name=function_name,
        parameters=parameters,
        result=output if isinstance(output, dict) else render_tool_output(output),
    )
