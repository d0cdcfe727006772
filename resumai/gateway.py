"""Client-side persistence: remote ResumAI API with a local fallback.

``PersistenceGateway`` tries the backend first for auth calls. A network
failure or a server error opens its breaker, after which that
gateway instance works purely against ``LocalStorage`` until it is
recreated. Analyses are always written locally before any remote sync, so
history survives a dead backend.

A 400, 401 or 409 is the server rejecting the request, not the server
being down, so those are raised to the caller and the breaker stays shut.
"""
import json
import os
import tempfile
import time
import uuid
from typing import Any, List, Optional

import httpx
import structlog

from resumai.config import Settings, get_settings
from resumai.errors import DuplicateUser, InvalidCredentials, TransportError, ValidationError
from resumai.models import HistoryItem, ResumeAnalysis, User
from resumai.services.auth_service import AuthService
from resumai.services.storage_service import normalize_email

logger = structlog.get_logger(__name__)

TOKEN_KEY = "resumai_token"
USER_KEY = "resumai_user"
HISTORY_KEY = "resumai_history"
USERS_KEY = "resumai_users_local"

# Auth answers that reject the request rather than signal an outage
REJECTIONS = {400: ValidationError, 401: InvalidCredentials, 409: DuplicateUser}


def _error_message(response: httpx.Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    return body.get("error") if isinstance(body, dict) else None


class LocalStorage:
    """Small persistent key-value store backed by one JSON file.

    With ``path=None`` nothing touches disk.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self._data = {}
        if path and os.path.exists(path):
            try:
                with open(path, "r", encoding="utf-8") as f:
                    data = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Unreadable local storage, starting empty", path=path, exc=str(e))
                data = {}
            if not isinstance(data, dict):
                logger.warning("Local storage is not a JSON object, starting empty", path=path)
                data = {}
            self._data = data

    def get_item(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set_item(self, key: str, value: Any) -> None:
        self._data[key] = value
        self._flush()

    def remove_item(self, key: str) -> None:
        if self._data.pop(key, None) is not None:
            self._flush()

    def _flush(self) -> None:
        if not self.path:
            return
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(self._data, f)
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise


class PersistenceGateway:
    def __init__(
        self,
        api_url: str = "",
        storage: Optional[LocalStorage] = None,
        http_client: Optional[httpx.Client] = None,
        password_hasher: Optional[AuthService] = None,
    ):
        self.storage = storage if storage is not None else LocalStorage()
        self._owns_client = http_client is None
        self.http = http_client or httpx.Client(base_url=api_url)
        self.hasher = password_hasher or AuthService()
        self.remote_available = True
        self.clock = time.time

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PersistenceGateway":
        settings = settings or get_settings()
        return cls(
            api_url=settings.api_url,
            storage=LocalStorage(settings.local_storage_path),
            password_hasher=AuthService(settings),
        )

    def close(self) -> None:
        if self._owns_client:
            self.http.close()

    def __enter__(self) -> "PersistenceGateway":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # --- remote plumbing ---

    def _trip(self, reason: str) -> None:
        if self.remote_available:
            logger.warning("API unavailable, using local storage fallback", reason=reason)
        self.remote_available = False

    def _remote_auth(self, path: str, payload: dict) -> Optional[User]:
        """Try an auth call against the backend. None means "fall back".

        A rejection of the request itself (400, 401, 409) is raised as-is.
        Anything else short of a usable 2xx answer trips the breaker.
        """
        if not self.remote_available:
            return None
        try:
            response = self.http.post(path, json=payload)
        except httpx.HTTPError as e:
            self._trip(str(e))
            return None

        if response.status_code in REJECTIONS:
            raise REJECTIONS[response.status_code](_error_message(response))
        if not response.is_success:
            self._trip(f"HTTP {response.status_code}")
            return None

        try:
            data = response.json()
            user = User.model_validate(data["user"])
            token = data["token"]
        except (ValueError, KeyError, TypeError) as e:
            self._trip(f"unusable auth response: {e}")
            return None
        self.storage.set_item(TOKEN_KEY, token)
        self.storage.set_item(USER_KEY, user.to_json())
        return user

    def _auth_headers(self) -> dict:
        token = self.get_token()
        return {"Authorization": f"Bearer {token}"} if token else {}

    # --- authentication ---

    def register(self, email: str, password: str) -> User:
        logger.info("Registering user")
        user = self._remote_auth(
            "/api/auth/signup",
            {"email": email, "password": password, "name": email.split("@")[0]},
        )
        if user:
            return user

        email = normalize_email(email)
        users = self.storage.get_item(USERS_KEY, [])
        if any(u["email"] == email for u in users):
            raise DuplicateUser()

        user = User(id=str(uuid.uuid4()), email=email, name=email.split("@")[0])
        users.append({**user.to_json(), "passwordHash": self.hasher.hash_password(password)})
        self.storage.set_item(USERS_KEY, users)
        self._activate(user)
        return user

    def login(self, email: str, password: str) -> User:
        logger.info("Authenticating")
        user = self._remote_auth("/api/auth/login", {"email": email, "password": password})
        if user:
            return user

        email = normalize_email(email)
        for record in self.storage.get_item(USERS_KEY, []):
            if record["email"] == email and self.hasher.verify_password(password, record["passwordHash"]):
                user = User(id=record["id"], email=record["email"], name=record.get("name"))
                self._activate(user)
                return user
        raise InvalidCredentials()

    def _activate(self, user: User) -> None:
        # Local mode has no server to validate a token, so the email stands in for one
        self.storage.set_item(TOKEN_KEY, user.email)
        self.storage.set_item(USER_KEY, user.to_json())

    def logout(self) -> None:
        self.storage.remove_item(TOKEN_KEY)
        self.storage.remove_item(USER_KEY)

    def get_token(self) -> Optional[str]:
        return self.storage.get_item(TOKEN_KEY)

    def get_active_user(self) -> Optional[User]:
        data = self.storage.get_item(USER_KEY)
        return User.model_validate(data) if data else None

    # --- history ---

    def save_analysis(self, user_id: str, resume_text: str, analysis: ResumeAnalysis) -> HistoryItem:
        item = HistoryItem(
            id=str(uuid.uuid4()),
            user_id=user_id,
            timestamp=int(self.clock() * 1000),
            resume_text=resume_text,
            analysis=analysis,
        )
        self.storage.set_item(HISTORY_KEY, [item.to_json()] + self.storage.get_item(HISTORY_KEY, []))

        if self.remote_available:
            try:
                response = self.http.post(
                    "/api/analysis",
                    json={"resumeText": resume_text, "analysis": analysis.to_json()},
                    headers=self._auth_headers(),
                )
                if response.is_server_error:
                    logger.warning("Failed to sync to server, data saved locally", status=response.status_code)
                    self._trip(f"HTTP {response.status_code}")
                elif response.is_error:
                    logger.warning("Server refused analysis, data saved locally", status=response.status_code)
            except httpx.HTTPError as e:
                logger.warning("API unavailable, data saved locally", exc=str(e))
                self._trip(str(e))

        logger.info("Analysis saved", item_id=item.id)
        return item

    def get_all_history(self) -> List[HistoryItem]:
        items = [HistoryItem.model_validate(raw) for raw in self.storage.get_item(HISTORY_KEY, [])]
        # Stable sort keeps insertion order for identical timestamps
        return sorted(items, key=lambda item: item.timestamp, reverse=True)

    def get_user_history(self, user_id: str) -> List[HistoryItem]:
        return [item for item in self.get_all_history() if item.user_id == user_id]

    def delete_analysis(self, user_id: str, item_id: str) -> bool:
        history = self.storage.get_item(HISTORY_KEY, [])
        kept = [raw for raw in history if not (raw["id"] == item_id and raw["userId"] == user_id)]
        if len(kept) == len(history):
            return False
        self.storage.set_item(HISTORY_KEY, kept)
        return True

    # --- remote reads (not used by get_user_history) ---

    def _remote_get(self, path: str):
        try:
            response = self.http.get(path, headers=self._auth_headers())
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TransportError(f"GET {path} failed: {e}") from e
        return response.json()

    def fetch_remote_history(self) -> List[dict]:
        return self._remote_get("/api/analyses")

    def fetch_profile(self) -> User:
        return User.model_validate(self._remote_get("/api/auth/profile"))
