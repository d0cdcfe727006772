from datetime import datetime, timedelta, timezone
from typing import Optional

import bcrypt
import jwt
from pydantic import BaseModel

from resumai.config import Settings, get_settings
from resumai.errors import AuthError, ValidationError

JWT_ALGORITHM = "HS256"

# bcrypt only looks at the first 72 bytes
MAX_PASSWORD_BYTES = 72


class TokenPayload(BaseModel):
    sub: str
    email: str
    iat: int
    exp: int


class AuthService:
    def __init__(self, settings: Optional[Settings] = None):
        settings = settings or get_settings()
        self.secret = settings.jwt_secret
        self.rounds = settings.bcrypt_rounds
        self.expiry = timedelta(days=settings.token_expiry_days)

    def hash_password(self, password: str) -> str:
        raw = password.encode("utf-8")
        if len(raw) > MAX_PASSWORD_BYTES:
            raise ValidationError("Password must be at most 72 bytes")
        return bcrypt.hashpw(raw, bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")

    @staticmethod
    def verify_password(password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            # Malformed hash or over-long password
            return False

    def create_token(self, user_id: str, email: str, now: Optional[datetime] = None) -> str:
        now = now or datetime.now(timezone.utc)
        payload = {
            "sub": user_id,
            "email": email,
            "iat": int(now.timestamp()),
            "exp": int((now + self.expiry).timestamp()),
        }
        return jwt.encode(payload, self.secret, algorithm=JWT_ALGORITHM)

    def verify_token(self, token: str) -> TokenPayload:
        """
        Check signature and expiry.
        Returns: decoded payload
        """
        try:
            payload = jwt.decode(
                token,
                self.secret,
                algorithms=[JWT_ALGORITHM],
                options={"require": ["sub", "exp"]},
            )
        except jwt.ExpiredSignatureError:
            raise AuthError("Token expired")
        except jwt.InvalidTokenError:
            raise AuthError("Token invalid")
        return TokenPayload.model_validate(payload)
