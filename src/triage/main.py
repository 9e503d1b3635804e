"""FastAPI application entry point for the triage service.

This module provides the FastAPI application that receives GitHub App
webhooks, labels issues, and runs engineer tasks on request.

Endpoints:
- POST /webhooks/github: signed GitHub deliveries
- POST /engineer: run an engineer task in a sandbox
- GET /health, GET /ready: liveness and readiness probes
- GET /metrics: Prometheus metrics
"""

import hmac
import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field

from src.triage.billing.payment_links import StripePaymentLinks
from src.triage.config import TriageSettings, get_settings
from src.triage.engineer.agent import Engineer
from src.triage.engineer.web_search import SerpAPISearch
from src.triage.errors import AuthorizationError, TriageError, UpstreamError
from src.triage.github.auth import GitHubAppAuth
from src.triage.github.client import GitHubClient
from src.triage.installations.sync import InstallationSynchronizer
from src.triage.knowledge.vector import CodeSearchClient
from src.triage.labeler.agent import LabelSelector
from src.triage.metrics import TriageMetrics, generate_metrics_output, get_metrics
from src.triage.orchestrator import InstallationClientFactory, WebhookService
from src.triage.sandbox.sandbox import LocalSandboxProvider
from src.triage.state.memory import InMemoryCustomerRepository
from src.triage.state.repository import CustomerRepository, PostgresCustomerRepository
from src.triage.usage.gate import BILLING_PLAN, UsageGate
from src.triage.webhook.handler import EVENT_HEADER
from src.triage.webhook.signature import SIGNATURE_HEADER

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Global instances, initialized during lifespan startup
settings: Optional[TriageSettings] = None
webhook_service: Optional[WebhookService] = None
engineer: Optional[Engineer] = None
repository: Optional[CustomerRepository] = None
code_search: Optional[CodeSearchClient] = None


class EngineerRequest(BaseModel):
    """Body of POST /engineer."""

    task: str = Field(..., min_length=1)
    customer_id: str = ""
    repository: str = ""
    installation_id: Optional[int] = None


def _redact_secret(value: Optional[str], visible_chars: int = 4) -> str:
    """Redact a secret value, showing only the first few characters.

    Args:
        value: The secret value to redact.
        visible_chars: Number of characters to show at the start.

    Returns:
        Redacted string with asterisks replacing hidden characters.
    """
    if not value:
        return "(not set)"
    if len(value) <= visible_chars:
        return "*" * len(value)
    return value[:visible_chars] + "*" * (len(value) - visible_chars)


def _log_configuration(settings: TriageSettings) -> None:
    """Log configuration values with secrets redacted."""
    logger.info("Triage configuration:")
    logger.info(f"  GitHub Base URL: {settings.github_base_url}")
    logger.info(f"  GitHub App ID: {settings.github_app_id or '(not set)'}")
    logger.info(f"  GitHub Private Key: {_redact_secret(settings.github_private_key)}")
    logger.info(
        f"  GitHub Webhook Secret: {_redact_secret(settings.github_webhook_secret)}"
    )
    logger.info(f"  GitHub Access Token: {_redact_secret(settings.github_access_token)}")
    logger.info(f"  OpenAI API Key: {_redact_secret(settings.openai_api_key)}")
    logger.info(f"  OpenAI Model: {settings.openai_model}")
    logger.info(f"  Engineer Model: {settings.engineer_model}")
    logger.info(f"  Database URL: {_redact_secret(settings.database_url)}")
    logger.info(f"  Default Usage Limit: {settings.default_usage_limit}")
    logger.info(f"  Stripe Secret Key: {_redact_secret(settings.stripe_secret_key)}")
    logger.info(f"  SerpAPI Key: {_redact_secret(settings.serpapi_api_key)}")
    logger.info(f"  Vector Store URL: {settings.vector_store_url}")
    logger.info(f"  Vector Collection: {settings.vector_collection}")
    logger.info(f"  Sandbox Base Path: {settings.sandbox_base_path}")
    logger.info(f"  Sandbox Env Passthrough: {settings.sandbox_env_passthrough}")
    logger.info(f"  Engineer Max Steps: {settings.engineer_max_steps}")
    logger.info(f"  Engineer API Token: {_redact_secret(settings.engineer_api_token)}")
    logger.info(
        f"  External Call Timeout Seconds: {settings.external_call_timeout_seconds}"
    )
    logger.info(f"  Host: {settings.host}")
    logger.info(f"  Port: {settings.port}")


def _build_client_factory(cfg: TriageSettings) -> InstallationClientFactory:
    """Choose how installation-scoped GitHub clients are created.

    A configured GitHub App mints installation tokens. Without one, the
    service account token is used for every installation, which suits
    local development against a single account.
    """
    timeout = cfg.external_call_timeout_seconds

    if cfg.github_app_id and cfg.github_private_key:
        app_auth = GitHubAppAuth(
            app_id=cfg.github_app_id,
            private_key=cfg.github_private_key_pem,
            base_url=cfg.github_base_url,
            timeout=timeout,
        )

        async def app_client(installation_id: int) -> GitHubClient:
            return await app_auth.installation_client(installation_id, timeout=timeout)

        return app_client

    async def token_client(installation_id: int) -> GitHubClient:
        if not cfg.github_access_token:
            raise UpstreamError("GitHub App credentials are not configured")
        return GitHubClient(
            token=cfg.github_access_token,
            base_url=cfg.github_base_url,
            timeout=timeout,
        )

    return token_client


async def _create_repository(cfg: TriageSettings) -> CustomerRepository:
    """Create the customer repository.

    Uses PostgreSQL when a database URL is configured, otherwise an
    in-memory repository for local development.
    """
    if cfg.database_url:
        postgres = PostgresCustomerRepository(cfg.database_url)
        await postgres.connect()
        return postgres

    logger.warning("No database URL configured, using in-memory customer storage")
    return InMemoryCustomerRepository()


def _build_webhook_service(
    cfg: TriageSettings,
    repo: CustomerRepository,
    client_factory: InstallationClientFactory,
    triage_metrics: TriageMetrics,
) -> WebhookService:
    """Wire the webhook path dependencies into a WebhookService."""
    timeout = cfg.external_call_timeout_seconds

    payment_links = StripePaymentLinks(
        secret_key=cfg.stripe_secret_key,
        prices={BILLING_PLAN: cfg.stripe_base_price_id},
        timeout=timeout,
    )

    label_selector = None
    if cfg.openai_api_key:
        label_selector = LabelSelector(
            api_key=cfg.openai_api_key,
            model_name=cfg.openai_model,
            base_url=cfg.openai_base_url,
            timeout=timeout,
        )

    return WebhookService(
        webhook_secret=cfg.github_webhook_secret,
        repository=repo,
        synchronizer=InstallationSynchronizer(
            repo,
            usage_limit=cfg.default_usage_limit,
            timeout=timeout,
        ),
        usage_gate=UsageGate(repo, payment_links, timeout=timeout, metrics=triage_metrics),
        label_selector=label_selector,
        client_factory=client_factory,
        timeout=timeout,
        metrics=triage_metrics,
    )


def _build_engineer(
    cfg: TriageSettings,
    client_factory: InstallationClientFactory,
    search: CodeSearchClient,
    triage_metrics: TriageMetrics,
) -> Engineer:
    """Wire the engineer agent with its sandbox provider and tools."""
    web_search = None
    if cfg.serpapi_api_key:
        web_search = SerpAPISearch(
            api_key=cfg.serpapi_api_key,
            timeout=cfg.external_call_timeout_seconds,
        )

    return Engineer(
        sandbox_provider=LocalSandboxProvider(
            Path(cfg.sandbox_base_path),
            command_timeout=cfg.sandbox_command_timeout_seconds,
            env_passthrough=cfg.sandbox_env_names,
        ),
        api_key=cfg.openai_api_key,
        model_name=cfg.engineer_model,
        base_url=cfg.openai_base_url,
        template=cfg.sandbox_template,
        max_steps=cfg.engineer_max_steps,
        client_factory=client_factory,
        code_search=search,
        web_search=web_search,
        git_token=cfg.github_access_token or None,
        git_email=cfg.github_email,
        git_username=cfg.github_username,
        metrics=triage_metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown.

    Handles:
    - Configuration loading and validation
    - Logging configuration (with secrets redacted)
    - Dependency wiring for the webhook service and engineer
    - Graceful shutdown and cleanup
    """
    global settings, webhook_service, engineer, repository, code_search

    logger.info("Triage service starting up...")

    settings = get_settings()
    _log_configuration(settings)

    triage_metrics = get_metrics()
    client_factory = _build_client_factory(settings)
    repository = await _create_repository(settings)
    code_search = CodeSearchClient(
        base_url=settings.vector_store_url,
        collection_name=settings.vector_collection,
        embedding_url=settings.embedding_url,
        timeout=settings.external_call_timeout_seconds,
    )

    webhook_service = _build_webhook_service(
        settings, repository, client_factory, triage_metrics
    )
    engineer = _build_engineer(settings, client_factory, code_search, triage_metrics)

    logger.info("Triage service started successfully")

    yield

    logger.info("Triage service shutting down...")

    if code_search is not None:
        await code_search.close()
    if isinstance(repository, PostgresCustomerRepository):
        await repository.disconnect()

    logger.info("Triage service shutdown complete")


app = FastAPI(
    title="Triage Bot",
    description="GitHub issue labeling and sandboxed engineer agent",
    version="1.0.0",
    lifespan=lifespan,
)


@app.exception_handler(TriageError)
async def triage_error_handler(request: Request, exc: TriageError):
    """Map service errors to their status code and message."""
    if exc.status_code >= 500:
        logger.error(
            "Request failed",
            extra={"path": request.url.path, "error": exc.message},
        )
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


@app.get("/health")
async def health():
    """Liveness probe endpoint.

    Returns:
        dict: Status indicating the application is healthy.
    """
    return {"status": "healthy"}


@app.get("/ready")
async def ready():
    """Readiness probe endpoint.

    Reports not_ready until the webhook service is wired, and checks the
    database when PostgreSQL storage is configured. The vector store only
    backs the engineer's code search, so its status is reported without
    gating readiness.
    """
    if webhook_service is None:
        return JSONResponse(
            status_code=503,
            content={"status": "not_ready", "dependencies": {}},
        )

    database_status = "in_memory"
    if isinstance(repository, PostgresCustomerRepository):
        try:
            async with repository.pool.acquire() as conn:
                await conn.execute("SELECT 1")
            database_status = "healthy"
        except Exception as e:
            logger.warning("Database readiness check failed", extra={"error": str(e)})
            database_status = "unhealthy"

    dependencies = {"database": database_status}
    if code_search is not None:
        healthy = await code_search.health_check()
        dependencies["vector_store"] = "healthy" if healthy else "unhealthy"

    is_ready = database_status != "unhealthy"
    return JSONResponse(
        status_code=200 if is_ready else 503,
        content={
            "status": "ready" if is_ready else "not_ready",
            "dependencies": dependencies,
        },
    )


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint.

    Returns:
        Response: Prometheus-formatted metrics text.
    """
    return Response(content=generate_metrics_output(), media_type=CONTENT_TYPE_LATEST)


@app.post("/webhooks/github")
async def github_webhook(request: Request):
    """GitHub webhook receiver endpoint.

    The signature is checked over the raw body bytes exactly as received.
    Other methods on this path get 405 from the router.

    Returns:
        JSONResponse: {"message": ...} with the delivery's status code.
    """
    if webhook_service is None:
        raise TriageError("Service not initialized")

    body = await request.body()
    response = await webhook_service.handle(
        body,
        request.headers.get(SIGNATURE_HEADER),
        request.headers.get(EVENT_HEADER),
    )
    return JSONResponse(
        status_code=response.status_code,
        content={"message": response.message},
    )


def _check_engineer_token(authorization: Optional[str]) -> None:
    """Require the configured bearer token on engineer requests.

    Raises:
        AuthorizationError: 403 when no token is configured, 401 when the
            request carries a missing or wrong token.
    """
    expected = settings.engineer_api_token if settings is not None else ""
    if not expected:
        raise AuthorizationError("Engineer endpoint is disabled")

    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(
        token.strip().encode("utf-8"), expected.encode("utf-8")
    ):
        raise AuthorizationError("Invalid engineer token", status_code=401)


@app.post("/engineer")
async def run_engineer(
    body: EngineerRequest,
    authorization: Optional[str] = Header(default=None),
):
    """Run an engineer task to completion in a fresh sandbox.

    Requests must carry ``Authorization: Bearer <TRIAGE_ENGINEER_API_TOKEN>``.

    Returns:
        dict: success, output, error and steps of the run.
    """
    _check_engineer_token(authorization)
    if engineer is None:
        raise TriageError("Service not initialized")

    result = await engineer.run(
        body.task,
        customer_id=body.customer_id,
        repository=body.repository,
        installation_id=body.installation_id,
    )
    return {
        "success": result.success,
        "output": result.output,
        "error": result.error,
        "steps": result.steps,
    }


if __name__ == "__main__":
    import uvicorn

    dev_settings = get_settings()
    uvicorn.run(
        "src.triage.main:app",
        host=dev_settings.host,
        port=dev_settings.port,
        reload=True,
    )
