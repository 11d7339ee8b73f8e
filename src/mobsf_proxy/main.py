# src/mobsf_proxy/main.py
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mobsf_proxy.api.routes import router
from mobsf_proxy.config import Settings
from mobsf_proxy.errors import GatewayError, ProxyError
from mobsf_proxy.services import Services
from mobsf_proxy.tools.base import ScanEngineAdapter


def _error_response(request: Request, status_code: int, error) -> JSONResponse:
    trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": error, "trace_id": trace_id},
    )


def create_app(settings: Optional[Settings] = None, gateway: Optional[ScanEngineAdapter] = None) -> FastAPI:
    """
    Build the application. Settings come from the environment when not given;
    a missing MOBSF_API_KEY raises ConfigurationError before anything is served.
    """
    # Configure structured logging
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s %(message)s'
    )
    if settings is None:
        settings = Settings.from_env()

    services = Services.build(settings, gateway=gateway)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logging.info(f"MobSF report proxy started. Engine: {settings.mobsf_url}")
        yield
        await services.close()

    app = FastAPI(title="MobSF Report Proxy", lifespan=lifespan)
    app.state.services = services
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Trace-Id", "X-Report-Cached"],
    )

    @app.middleware("http")
    async def add_trace_id_and_log(request: Request, call_next):
        trace_id = str(uuid.uuid4())
        request.state.trace_id = trace_id
        logging.info(f"[trace_id={trace_id}] Incoming request: {request.method} {request.url}")
        try:
            response = await call_next(request)
        except Exception as exc:
            logging.error(f"[trace_id={trace_id}] Unhandled error: {exc}")
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "Internal server error", "trace_id": trace_id}
            )
        response.headers["X-Trace-Id"] = trace_id
        return response

    @app.exception_handler(ProxyError)
    async def proxy_error_handler(request: Request, exc: ProxyError):
        status_code = exc.status_code
        if isinstance(exc, GatewayError) and status_code < 400:
            status_code = 502
        logging.warning(f"[trace_id={getattr(request.state, 'trace_id', '-')}] {exc.kind}: {exc.message}")
        return _error_response(request, status_code, exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        error = {"kind": "ValidationError", "message": "Invalid request", "detail": jsonable_encoder(exc.errors())}
        return _error_response(request, 422, error)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        trace_id = getattr(request.state, "trace_id", str(uuid.uuid4()))
        logging.error(f"[trace_id={trace_id}] Exception: {exc}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc), "trace_id": trace_id}
        )

    app.include_router(router)

    return app


def run():
    settings = Settings.from_env()
    uvicorn.run("mobsf_proxy.main:create_app", factory=True, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    run()
