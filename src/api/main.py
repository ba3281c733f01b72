"""SailMatch AI - FastAPI Application.

Exposes:
- Chat API for the assistant
- Registration assessment trigger
- Tool catalogue for the signed-in caller
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel, Field

from shared.config import GatewayConfig, Settings, get_settings
from shared.errors import (
    ConfigurationError,
    DataIntegrityError,
    ParseError,
    ProviderError,
    ToolPermissionError,
)
from shared.logging import bind_context, clear_context, get_logger, setup_logging
from shared.models import (
    ConversationMessage,
    LegReference,
    PendingAction,
    Registration,
    RegistrationAnswer,
    UserContext,
)
from assessment.notifier import Notifier, RecordingNotifier
from assessment.pipeline import AssessmentOutcome, AssessmentPipeline
from assessment.store import InMemoryAssessmentStore
from assistant.audit import ToolAuditLogger
from assistant.auth import AuthConfig, AuthMiddleware, security
from assistant.backend import InMemoryToolBackend
from assistant.executor import ToolExecutor
from assistant.orchestrator import ConversationOrchestrator
from assistant.registry import ToolRegistry
from assistant.sessions import ChatSessionStore
from gateway.gateway import AIGateway

logger = get_logger(__name__)


class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message")
    conversation_id: Optional[str] = Field(default=None, description="Existing conversation ID")
    approved_action: Optional[PendingAction] = Field(
        default=None,
        description="The pending action from the previous reply, resubmitted to approve it"
    )


class ChatResponse(BaseModel):
    conversation_id: str
    title: Optional[str] = None
    response: str
    leg_references: list[LegReference] = Field(default_factory=list)
    pending_action: Optional[PendingAction] = None
    iterations: int
    truncated: bool = False


class AssessRequest(BaseModel):
    answers: Optional[list[RegistrationAnswer]] = Field(
        default=None,
        description="Just-submitted answers; read from the store when omitted"
    )


class HealthResponse(BaseModel):
    status: str
    providers: dict[str, bool]
    use_cases: list[str]
    tool_count: int


class Services:
    """Everything the routes need, built once per process."""

    def __init__(
        self,
        settings: Settings,
        gateway: AIGateway,
        store: InMemoryAssessmentStore,
        notifier: Notifier,
        registry: Optional[ToolRegistry] = None,
        sessions: Optional[ChatSessionStore] = None,
        audit_logger: Optional[ToolAuditLogger] = None
    ) -> None:
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self.notifier = notifier
        self.pipeline = AssessmentPipeline(gateway, store, notifier, settings.assessment)
        self.registry = registry or ToolRegistry.default()
        self.backend = InMemoryToolBackend(store, on_registration=self._assess_new_registration)
        self.executor = ToolExecutor(self.registry, self.backend, audit_logger)
        self.orchestrator = ConversationOrchestrator(gateway, self.registry, self.executor, settings.assistant)
        self.sessions = sessions or ChatSessionStore(
            session_ttl_minutes=settings.assistant.session_ttl_minutes
        )
        self.audit_logger = audit_logger
        self.auth = AuthMiddleware(AuthConfig(
            secret_key=settings.assistant.secret_key,
            token_expire_minutes=settings.assistant.token_expire_minutes,
            require_auth=settings.assistant.require_auth,
        ))

    @classmethod
    def from_settings(cls, settings: Settings) -> "Services":
        audit_logger = ToolAuditLogger(
            log_path=settings.assistant.audit_log_path,
            enabled=settings.assistant.enable_audit,
        )
        return cls(
            settings=settings,
            gateway=AIGateway(GatewayConfig.from_settings(settings.ai)),
            store=InMemoryAssessmentStore(),
            notifier=RecordingNotifier(),
            audit_logger=audit_logger,
        )

    async def _assess_new_registration(
        self,
        registration: Registration,
        answers: list[RegistrationAnswer]
    ) -> AssessmentOutcome:
        return await self.pipeline.assess_registration(registration.id, answers=answers)

    async def close(self) -> None:
        if self.audit_logger is not None:
            await self.audit_logger.flush()
        await self.gateway.close()


async def cleanup_sessions_task(sessions: ChatSessionStore, interval: int = 300) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            await sessions.cleanup_expired()
        except Exception as e:
            logger.error("Chat session cleanup failed", error=str(e))


def create_app(services: Optional[Services] = None) -> FastAPI:
    """
    Build the application.

    Args:
        services: Prebuilt services (tests); built from settings at startup otherwise
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Starting SailMatch AI")

        app.state.services = services
        if app.state.services is None:
            settings = get_settings()
            setup_logging(settings.log_level, json_output=settings.environment == "production")
            app.state.services = Services.from_settings(settings)

        cleanup_task = asyncio.create_task(cleanup_sessions_task(app.state.services.sessions))
        logger.info("SailMatch AI started", environment=app.state.services.settings.environment)

        yield

        logger.info("Shutting down SailMatch AI")
        cleanup_task.cancel()
        try:
            await cleanup_task
        except asyncio.CancelledError:
            pass
        await app.state.services.close()

    app = FastAPI(
        title="SailMatch AI",
        description="AI gateway, registration assessment and sailing assistant",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    _register_error_handlers(app)
    _register_routes(app)
    return app


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": message})


def _register_error_handlers(app: FastAPI) -> None:

    @app.exception_handler(DataIntegrityError)
    async def data_integrity_handler(request: Request, exc: DataIntegrityError):
        return _error(status.HTTP_404_NOT_FOUND, str(exc))

    @app.exception_handler(ToolPermissionError)
    async def permission_handler(request: Request, exc: ToolPermissionError):
        return _error(status.HTTP_403_FORBIDDEN, str(exc))

    @app.exception_handler(ConfigurationError)
    async def configuration_handler(request: Request, exc: ConfigurationError):
        logger.error("Configuration error", error=str(exc), path=request.url.path)
        return _error(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc))

    @app.exception_handler(ProviderError)
    async def provider_handler(request: Request, exc: ProviderError):
        logger.error("AI providers unavailable", error=str(exc), path=request.url.path)
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))

    @app.exception_handler(ParseError)
    async def parse_handler(request: Request, exc: ParseError):
        return _error(status.HTTP_502_BAD_GATEWAY, str(exc))


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server not initialized"
        )
    return services


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    services: Services = Depends(get_services)
) -> UserContext:
    user = services.auth.resolve(credentials)
    clear_context()
    bind_context(user=user.user_id)
    return user


def _register_routes(app: FastAPI) -> None:

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check(services: Services = Depends(get_services)):
        info = services.gateway.health()
        return HealthResponse(
            status="healthy" if any(info["providers"].values()) else "degraded",
            providers=info["providers"],
            use_cases=info["use_cases"],
            tool_count=len(services.registry.list_tools()),
        )

    @app.post("/chat", response_model=ChatResponse, tags=["Chat"])
    async def chat(
        request: ChatRequest,
        user: UserContext = Depends(get_current_user),
        services: Services = Depends(get_services)
    ):
        session = await services.sessions.get_or_create(request.conversation_id, user)
        bind_context(conversation_id=session.id)

        result = await services.orchestrator.process_message(
            message=request.message,
            user=user,
            history=list(session.messages),
            approved_action=request.approved_action,
            conversation_id=session.id,
        )
        session = await services.sessions.append(session.id, result.messages) or session

        return ChatResponse(
            conversation_id=session.id,
            title=session.title,
            response=result.content,
            leg_references=result.leg_references,
            pending_action=result.pending_action,
            iterations=result.iterations,
            truncated=result.truncated,
        )

    @app.get("/conversations/{conversation_id}", tags=["Chat"])
    async def get_conversation(
        conversation_id: str,
        user: UserContext = Depends(get_current_user),
        services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        session = await services.sessions.get(conversation_id, user)
        if session is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Conversation not found"
            )
        messages: list[ConversationMessage] = session.messages
        return {
            "conversation_id": session.id,
            "title": session.title,
            "messages": [m.model_dump(mode="json") for m in messages],
        }

    @app.post("/assessments/{registration_id}", response_model=AssessmentOutcome, tags=["Assessment"])
    async def assess_registration(
        registration_id: str,
        request: Optional[AssessRequest] = None,
        user: UserContext = Depends(get_current_user),
        services: Services = Depends(get_services)
    ):
        if not user.authenticated:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Authentication required",
                headers={"WWW-Authenticate": "Bearer"},
            )

        ctx = await services.store.load_context(registration_id)
        if ctx.journey.owner_id != user.user_id and "owner" not in user.roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only journey owners can trigger assessments"
            )

        answers = request.answers if request is not None else None
        return await services.pipeline.assess_registration(registration_id, answers=answers)

    @app.get("/tools", tags=["Tools"])
    async def list_tools(
        user: UserContext = Depends(get_current_user),
        services: Services = Depends(get_services)
    ) -> dict[str, Any]:
        tools = [tool.model_dump(mode="json") for tool in services.registry.tools_for_user(user)]
        return {"tools": tools, "count": len(tools)}


app = create_app()


def main():
    """Run the API server."""
    import uvicorn

    settings = get_settings()

    uvicorn.run(
        "api.main:app",
        host=settings.assistant.host,
        port=settings.assistant.port,
        reload=settings.environment == "development"
    )


if __name__ == "__main__":
    main()
