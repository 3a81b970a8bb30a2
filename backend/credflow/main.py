# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
FastAPI application - Credflow workflow engine API
"""
# Load environment variables from .env file (local development)
from dotenv import load_dotenv
from pathlib import Path as _PathForEnv
_env_path = _PathForEnv(__file__).parent.parent.parent / ".env"
if _env_path.exists():
    load_dotenv(_env_path)

from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from credflow import __version__
from credflow.api import executions, workflows
from credflow.core.config import Config, get_config
from credflow.core.errors import ConfigurationError, CredflowError
from credflow.core.logging import get_api_logger
from credflow.engine.events import ExecutionEventBus
from credflow.engine.nodes import NodeServices, build_registry
from credflow.engine.scheduler import WorkflowScheduler
from credflow.integrations import (
    InMemoryApprovalNotifier,
    InMemoryDataStore,
    OCRClient,
    OutboxMailSender,
    ResendMailSender,
    SignatureClient,
)
from credflow.storage import ExecutionRepository, create_repository

logger = get_api_logger()


def build_node_services(config: Config) -> NodeServices:
    """Collaborators for node handlers, chosen from config"""
    if config.mail_backend == "resend":
        api_key = config.get_mail_api_key()
        if not api_key:
            raise ConfigurationError("mail.backend is 'resend' but RESEND_API_KEY is not set")
        mail = ResendMailSender(api_key, config.mail_api_url, config.mail_from, config.http_timeout)
    else:
        mail = OutboxMailSender()

    return NodeServices(
        config=config,
        mail=mail,
        data_store=InMemoryDataStore(),
        notifier=InMemoryApprovalNotifier(),
        signature=SignatureClient(config.signature_api_url, config.get_signature_api_key(), config.http_timeout),
        ocr=OCRClient(config.ocr_api_url, config.get_ocr_api_key(), config.http_timeout),
    )


def create_app(
    config: Optional[Config] = None,
    repository: Optional[ExecutionRepository] = None,
    services: Optional[NodeServices] = None
) -> FastAPI:
    """
    Build the API application.

    Long-lived engine objects are stored in app.state for dependency
    injection; tests pass their own repository and services.
    """
    config = config or get_config()
    repository = repository or create_repository(config)
    services = services or build_node_services(config)
    event_bus = ExecutionEventBus(repository)

    app = FastAPI(
        title="Credflow Workflow Engine",
        description="Workflow execution for accreditation processes",
        version=__version__,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config
    app.state.repository = repository
    app.state.event_bus = event_bus
    app.state.scheduler = WorkflowScheduler(
        repository,
        registry=build_registry(services),
        event_bus=event_bus,
        config=config,
    )

    @app.exception_handler(CredflowError)
    async def credflow_error_handler(request: Request, exc: CredflowError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__, "storage": config.storage_backend}

    app.include_router(workflows.router)
    app.include_router(executions.router)

    logger.info(f"Credflow API initialized (storage: {config.storage_backend})")
    return app


app = create_app()
