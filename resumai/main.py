from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from resumai.config import get_settings
from resumai.errors import (
    AuthError,
    ForbiddenError,
    InvalidCredentials,
    NotFoundError,
    ResumAIError,
    ValidationError,
)
from resumai.models import AnalysisCreate, AuthResponse, LoginRequest, RegisterRequest, User
from resumai.observability import RequestIdMiddleware, setup_logging
from resumai.services.auth_service import AuthService, TokenPayload
from resumai.services.storage_service import Storage, create_storage

settings = get_settings()
setup_logging(settings.log_level, settings.log_format)
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.storage = create_storage(settings)
    logger.info("ResumAI server ready", storage=app.state.storage.name)
    yield


# Initialize
app = FastAPI(title="ResumAI", lifespan=lifespan)
app.add_middleware(RequestIdMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

auth_service = AuthService(settings)


# --- Dependencies ---

def get_storage(request: Request) -> Storage:
    return request.app.state.storage


def get_auth_service() -> AuthService:
    return auth_service


def get_current_user(
    authorization: Optional[str] = Header(None),
    auth: AuthService = Depends(get_auth_service),
) -> TokenPayload:
    if not authorization:
        raise AuthError("No token provided")
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AuthError("Token error")
    return auth.verify_token(parts[1])


# --- Error handling ---

@app.exception_handler(ResumAIError)
async def resumai_error_handler(request: Request, exc: ResumAIError):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled server error", path=request.url.path)
    return JSONResponse(status_code=500, content={"error": "Server error"})


# --- Auth routes ---

def _issue(auth: AuthService, user: User) -> AuthResponse:
    return AuthResponse(token=auth.create_token(user.id, user.email), user=user)


@app.post("/api/auth/register", response_model=AuthResponse)
@app.post("/api/auth/signup", response_model=AuthResponse)
async def register(
    body: RegisterRequest,
    storage: Storage = Depends(get_storage),
    auth: AuthService = Depends(get_auth_service),
):
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")

    user = storage.create_user(body.email, auth.hash_password(body.password), body.name)
    logger.info("User registered", user_id=user.id)
    return _issue(auth, user.public())


@app.post("/api/auth/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    storage: Storage = Depends(get_storage),
    auth: AuthService = Depends(get_auth_service),
):
    if not body.email or not body.password:
        raise ValidationError("Email and password are required")

    user = storage.get_user_by_email(body.email)
    if not user or not auth.verify_password(body.password, user.password_hash):
        logger.info("Login rejected")
        raise InvalidCredentials("Invalid credentials")
    return _issue(auth, user.public())


def _load_user(storage: Storage, token: TokenPayload) -> User:
    user = storage.get_user_by_id(token.sub)
    if not user:
        raise NotFoundError()
    return user.public()


@app.get("/api/auth/profile", response_model=User)
async def profile(
    token: TokenPayload = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return _load_user(storage, token)


@app.get("/api/me")
async def me(
    token: TokenPayload = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
):
    return {"user": _load_user(storage, token).to_json()}


# --- Analysis routes ---

def get_account(
    token: TokenPayload = Depends(get_current_user),
    storage: Storage = Depends(get_storage),
) -> User:
    """The token holder, who must still exist in storage."""
    return _load_user(storage, token)


@app.post("/api/analyses")
@app.post("/api/analysis")
async def save_analysis(
    body: AnalysisCreate,
    account: User = Depends(get_account),
    storage: Storage = Depends(get_storage),
):
    if body.resume_text is None or body.analysis is None:
        raise ValidationError("resumeText and analysis are required")

    record = storage.add_analysis(account.id, body.resume_text, body.analysis)
    logger.info("Analysis saved", analysis_id=record.id, user_id=account.id)
    return {"id": record.id, "message": "Analysis saved", "createdAt": record.created_at.isoformat()}


@app.get("/api/analyses")
async def list_analyses(
    account: User = Depends(get_account),
    storage: Storage = Depends(get_storage),
):
    return [record.to_json() for record in storage.list_analyses(account.id)]


@app.get("/api/analysis/{user_id}")
async def list_user_analyses(
    user_id: str,
    account: User = Depends(get_account),
    storage: Storage = Depends(get_storage),
):
    if account.id != user_id:
        raise ForbiddenError()
    return {"items": [record.to_json() for record in storage.list_analyses(user_id)]}


@app.delete("/api/analyses/{analysis_id}")
async def delete_analysis(
    analysis_id: str,
    account: User = Depends(get_account),
    storage: Storage = Depends(get_storage),
):
    if not storage.delete_analysis(account.id, analysis_id):
        raise NotFoundError("Analysis not found")
    return {"deleted": True}


@app.get("/api/health")
async def health_check(request: Request):
    storage = getattr(request.app.state, "storage", None)
    return {"status": "ok", "storage": storage.name if storage else None}
