import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional

import structlog
from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import DuplicateKeyError, PyMongoError

from resumai.config import Settings
from resumai.errors import DuplicateUser
from resumai.models import AnalysisRecord, UserRecord

logger = structlog.get_logger(__name__)

HISTORY_LIMIT = 50


def normalize_email(email: str) -> str:
    return email.strip().lower()


class Storage(ABC):
    """Users and saved analyses. Route handlers only talk to this."""

    name = "abstract"

    @abstractmethod
    def create_user(self, email: str, password_hash: str, name: Optional[str] = None) -> UserRecord:
        """Raises DuplicateUser if the (normalized) email is taken."""

    @abstractmethod
    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def add_analysis(self, user_id: str, resume_text: str, analysis: dict) -> AnalysisRecord:
        ...

    @abstractmethod
    def list_analyses(self, user_id: str, limit: int = HISTORY_LIMIT) -> List[AnalysisRecord]:
        """Newest first."""

    @abstractmethod
    def delete_analysis(self, user_id: str, analysis_id: str) -> bool:
        """Delete one of the user's analyses. False if it does not exist or is not theirs."""


class MemoryStorage(Storage):
    """Process-local storage. Everything is lost on restart."""

    name = "memory"

    def __init__(self):
        self._users: Dict[str, UserRecord] = {}
        self._analyses: List[AnalysisRecord] = []
        self._lock = threading.Lock()

    def create_user(self, email, password_hash, name=None):
        email = normalize_email(email)
        with self._lock:
            if self.get_user_by_email(email):
                raise DuplicateUser()
            user = UserRecord(
                id=f"mock_{uuid.uuid4().hex}",
                email=email,
                password_hash=password_hash,
                name=name or email.split("@")[0],
                created_at=datetime.now(timezone.utc),
            )
            self._users[user.id] = user
        return user

    def get_user_by_email(self, email):
        email = normalize_email(email)
        for user in self._users.values():
            if user.email == email:
                return user
        return None

    def get_user_by_id(self, user_id):
        return self._users.get(user_id)

    def add_analysis(self, user_id, resume_text, analysis):
        record = AnalysisRecord(
            id=f"mock_analysis_{uuid.uuid4().hex}",
            user_id=user_id,
            resume_text=resume_text,
            analysis=analysis,
            created_at=datetime.now(timezone.utc),
        )
        with self._lock:
            self._analyses.append(record)
        return record

    def list_analyses(self, user_id, limit=HISTORY_LIMIT):
        mine = [a for a in self._analyses if a.user_id == user_id]
        # Appended in time order, so reversing gives newest first even on timestamp ties
        return list(reversed(mine))[:limit]

    def delete_analysis(self, user_id, analysis_id):
        with self._lock:
            for i, record in enumerate(self._analyses):
                if record.id == analysis_id and record.user_id == user_id:
                    del self._analyses[i]
                    return True
        return False


class MongoStorage(Storage):
    name = "mongodb"

    def __init__(self, client: MongoClient, db_name: str = "resumai"):
        self.client = client
        db = client[db_name]
        self.users = db["users"]
        self.analyses = db["analyses"]
        self.users.create_index("email", unique=True)
        self.analyses.create_index([("userId", ASCENDING), ("createdAt", DESCENDING)])

    @staticmethod
    def _user(doc: dict) -> UserRecord:
        return UserRecord(
            id=str(doc["_id"]),
            email=doc["email"],
            password_hash=doc["passwordHash"],
            name=doc.get("name"),
            created_at=doc["createdAt"],
        )

    @staticmethod
    def _analysis(doc: dict) -> AnalysisRecord:
        return AnalysisRecord(
            id=str(doc["_id"]),
            user_id=doc["userId"],
            resume_text=doc.get("resumeText", ""),
            analysis=doc.get("analysis") or {},
            created_at=doc["createdAt"],
        )

    def create_user(self, email, password_hash, name=None):
        email = normalize_email(email)
        doc = {
            "email": email,
            "passwordHash": password_hash,
            "name": name or email.split("@")[0],
            "createdAt": datetime.now(timezone.utc),
        }
        try:
            result = self.users.insert_one(doc)
        except DuplicateKeyError:
            raise DuplicateUser()
        doc["_id"] = result.inserted_id
        return self._user(doc)

    def get_user_by_email(self, email):
        doc = self.users.find_one({"email": normalize_email(email)})
        return self._user(doc) if doc else None

    def get_user_by_id(self, user_id):
        try:
            oid = ObjectId(user_id)
        except InvalidId:
            return None
        doc = self.users.find_one({"_id": oid})
        return self._user(doc) if doc else None

    def add_analysis(self, user_id, resume_text, analysis):
        doc = {
            "userId": user_id,
            "resumeText": resume_text,
            "analysis": analysis,
            "createdAt": datetime.now(timezone.utc),
        }
        result = self.analyses.insert_one(doc)
        doc["_id"] = result.inserted_id
        return self._analysis(doc)

    def list_analyses(self, user_id, limit=HISTORY_LIMIT):
        cursor = self.analyses.find({"userId": user_id}).sort("createdAt", DESCENDING).limit(limit)
        return [self._analysis(doc) for doc in cursor]

    def delete_analysis(self, user_id, analysis_id):
        try:
            oid = ObjectId(analysis_id)
        except InvalidId:
            return False
        result = self.analyses.delete_one({"_id": oid, "userId": user_id})
        return result.deleted_count == 1


def create_storage(settings: Settings) -> Storage:
    """Pick the storage engine once, at startup.

    MongoDB when a real URI is configured and answers a ping, otherwise the
    in-memory engine.
    """
    if not settings.mongodb_configured:
        logger.warning("No valid MongoDB URI. Using in-memory storage.")
        return MemoryStorage()

    try:
        client = MongoClient(settings.mongodb_uri, serverSelectionTimeoutMS=settings.mongodb_timeout_ms)
        client.admin.command("ping")
        storage = MongoStorage(client, settings.mongodb_db)
    except PyMongoError as e:
        logger.warning("MongoDB connection failed. Using in-memory storage.", exc=str(e))
        return MemoryStorage()

    logger.info("Connected to MongoDB", db=settings.mongodb_db)
    return storage
