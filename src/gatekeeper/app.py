"""FastAPI application factory for the gatekeeper control plane."""

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

from aiosqlite import connect as aiosqlite_connect
from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from gatekeeper.audit import AuditLog, AuditQueries, configure_audit_router
from gatekeeper.auth import (
    AuthQueries,
    Authenticator,
    PermissionMatrix,
    TokenService,
    Validate,
    configure_auth_router,
)
from gatekeeper.config import configure_logging, load_config_from_env
from gatekeeper.flags import (
    FeatureFlagStore,
    FlagCache,
    FlagQueries,
    GradualRolloutController,
    RolloutEvaluator,
    configure_flag_router,
)

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from gatekeeper.config import AppConfig

LOGGER = logging.getLogger(__name__)


def configure_fastapi_app(config: "AppConfig") -> FastAPI:
    """Configure and return the FastAPI application.

    :param config: Application configuration
    :return: Configured FastAPI application
    """
    if not Path(config.database_path).parent.exists():
        Path(config.database_path).parent.mkdir(parents=True, exist_ok=True)
        LOGGER.info(
            "Created directory for database at %s",
            Path(config.database_path).parent,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> "AsyncGenerator[Any, Any]":
        """Application lifespan manager.

        Opens the database, starts the audit writer and wires the routers.
        Running rollouts are cancelled before the audit log is drained.
        """
        LOGGER.info("Gatekeeper API is starting")

        async with aiosqlite_connect(config.database_path) as db_connection:
            auth_queries = AuthQueries(db_connection)
            audit_queries = AuditQueries(db_connection)
            await auth_queries.initialize_tables()
            await audit_queries.initialize_tables()

            async with AuditLog(
                audit_queries,
                max_queue_size=config.audit_queue_size,
                shutdown_period=config.audit_shutdown_period,
            ) as audit_log:
                permissions = PermissionMatrix()
                token_service = TokenService(
                    config.security_manager,
                    auth_queries,
                    audit_log,
                )
                authenticator = Authenticator(
                    auth_queries,
                    config.security_manager,
                    token_service,
                    permissions,
                    audit_log,
                )

                store = FeatureFlagStore(
                    FlagQueries(db_connection),
                    audit_log,
                    FlagCache(config.flag_cache_ttl_seconds),
                )
                await store.initialize()
                evaluator = RolloutEvaluator(store)
                controller = GradualRolloutController(store)

                validate = Validate(token_service, permissions, audit_log, evaluator)

                if config.bootstrap_admin:
                    await authenticator.ensure_admin(
                        config.admin_username,
                        config.admin_email,
                        config.admin_password,
                    )

                auth_router = configure_auth_router(
                    APIRouter(),
                    authenticator,
                    validate,
                    permissions,
                )
                flag_router = configure_flag_router(
                    APIRouter(),
                    store,
                    evaluator,
                    controller,
                    validate,
                )
                audit_router = configure_audit_router(
                    APIRouter(),
                    audit_queries,
                    validate,
                )

                app.include_router(auth_router, prefix="/auth", tags=["auth"])
                app.include_router(flag_router, prefix="/flags", tags=["flags"])
                app.include_router(audit_router, prefix="/audit", tags=["audit"])

                permissions.check_scopes(validate.guarded_scopes)

                @app.get("/health")
                async def health() -> dict[str, Any]:
                    return {
                        "status": "ok",
                        "active_users": await auth_queries.count_active_users(),
                        "audit_pending": audit_log.pending,
                        "audit_dropped": audit_log.dropped,
                        "active_rollouts": controller.active_rollouts(),
                    }

                try:
                    yield
                finally:
                    LOGGER.info("Gatekeeper API is shutting down")
                    await controller.shutdown()

    app = FastAPI(
        title="Gatekeeper API",
        version="0.1.0",
        lifespan=lifespan,
        root_path=config.root_path,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def read_root() -> str:
        return "Gatekeeper API"

    return app


def create_app(env_file: str | None = os.environ.get("ENV_FILE", ".env")) -> FastAPI:
    """Create and configure the FastAPI application.

    The default here is for uvicorn command line usage, in which case the user
    should set ENV_FILE environment variable if they want a different file.

    :param env_file: Optional path to the environment configuration file
    :return: Configured FastAPI application
    """
    config = load_config_from_env(env_file)
    configure_logging(config)
    return configure_fastapi_app(config)
