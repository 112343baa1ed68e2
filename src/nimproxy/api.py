"""FastAPI application and routes for the NIM proxy."""

import json
import logging
import time
from typing import Optional

import httpx
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from .backends import BackendClient, BackendError
from .config import Settings, configure_logging, load_config
from .models import (
    ChatCompletionRequest,
    ErrorDetail,
    ErrorEnvelope,
    ModelCard,
    ModelList,
)
from .resolver import ModelResolver
from .streaming import relay_stream
from .transforms import build_backend_request, build_chat_response

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}

HEALTH_PATHS = {"/", "/api", "/api/"}


def error_response(
    message: str, status_code: int, error_type: str = "invalid_request_error"
) -> JSONResponse:
    envelope = ErrorEnvelope(
        error=ErrorDetail(message=message, type=error_type, code=status_code)
    )
    return JSONResponse(envelope.model_dump(), status_code=status_code)


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        settings: Proxy configuration; loaded from config.yaml and the
            environment when omitted
        transport: Optional httpx transport for backend calls

    Returns:
        A FastAPI app whose single catch-all route dispatches by path substring
    """
    if settings is None:
        settings = load_config()
    configure_logging(settings)

    backend = BackendClient(settings, transport=transport)
    resolver = ModelResolver(settings, backend)

    app = FastAPI(
        title="NIM Proxy", docs_url=None, redoc_url=None, openapi_url=None
    )
    app.state.settings = settings

    @app.middleware("http")
    async def cors(request: Request, call_next):
        if request.method == "OPTIONS":
            response = Response(status_code=200)
        else:
            response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def unrouted(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # Only reached for methods outside the catch-all route
        return error_response(f"Endpoint {request.url.path} not found", 404)

    async def health_check() -> JSONResponse:
        """Health check endpoint"""
        return JSONResponse(
            {
                "status": "ok",
                "service": settings.service_name,
                "reasoning_display": settings.show_reasoning,
                "thinking_mode": settings.enable_thinking_mode,
            }
        )

    async def list_models() -> JSONResponse:
        created = int(time.time() * 1000)
        models = ModelList(
            data=[ModelCard(id=model, created=created) for model in settings.model_mapping]
        )
        return JSONResponse(models.model_dump())

    async def chat_completions(request: Request) -> Response:
        """
        Translate an OpenAI chat completion into a NIM call:
        - Resolves the requested model to a backend model
        - Forwards the translated request
        - Reshapes the JSON response or relays the event stream
        """
        authorization = request.headers.get("authorization")
        try:
            chat_request = ChatCompletionRequest.model_validate(await request.json())
        except json.JSONDecodeError:
            return error_response("Invalid JSON", 400)
        except ValidationError as e:
            return error_response(f"Invalid request: {e.errors()[0]['msg']}", 400)

        resolution = await resolver.resolve(chat_request.model, authorization)
        payload = build_backend_request(chat_request, resolution, settings)

        if chat_request.stream:
            upstream = await backend.open_stream(payload, authorization)
            return StreamingResponse(
                relay_stream(upstream, settings.show_reasoning),
                media_type="text/event-stream",
                headers=STREAM_HEADERS,
            )

        backend_response = await backend.create_completion(payload, authorization)
        return JSONResponse(
            build_chat_response(backend_response, chat_request.model, settings)
        )

    @app.api_route(
        "/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE", "HEAD"]
    )
    async def dispatch(request: Request) -> Response:
        """Route by method and path substring; every failure becomes an error envelope."""
        url_path = request.url.path
        method = request.method
        try:
            if method == "GET" and ("/health" in url_path or url_path in HEALTH_PATHS):
                return await health_check()
            if method == "GET" and "/v1/models" in url_path:
                return await list_models()
            if method == "POST" and "/chat/completions" in url_path:
                return await chat_completions(request)
            return error_response(f"Endpoint {url_path} not found", 404)
        except BackendError as e:
            return error_response(e.message, e.status_code)
        except Exception as e:
            logger.error(f"Proxy error: {str(e)}")
            return error_response(str(e) or "Internal server error", 500)

    return app


app = create_app()


def main():
    import uvicorn

    settings = app.state.settings
    logger.info(f"{settings.service_name} running on port {settings.port}")
    logger.info(f"Health check: http://localhost:{settings.port}/health")
    logger.info(
        f"Reasoning display: {'ENABLED' if settings.show_reasoning else 'DISABLED'}"
    )
    logger.info(
        f"Thinking mode: {'ENABLED' if settings.enable_thinking_mode else 'DISABLED'}"
    )
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
