"""
MODULE OVERVIEW:
The in-memory backend behind the development server: users, issued tokens and
generation records.

WHAT IS HAPPENING HERE:
A real deployment keeps these in Postgres and Redis. For local runs and tests we
hold them in plain dicts on one `Backend` object. Tokens are three-segment
base64url strings with an `exp` claim, so the client's format check and expiry
helpers work against them exactly as they would against a real JWT. Nothing is
signed; the registry lookup is what makes a token valid.
"""
import base64
import json
import random
import secrets
import string
import time
from datetime import datetime, timezone

from loguru import logger

from scriptstream.shared.client_utils import mask_token
from scriptstream.shared.config import settings
from scriptstream.shared.models import AuthUser, Generation

REFRESH_TOKEN_TTL_S = 7 * 24 * 3600


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def issue_token(user_id: str, kind: str, ttl_s: int) -> str:
    header = _b64(json.dumps({"alg": "none", "typ": "JWT"}).encode())
    claims = {"sub": user_id, "type": kind, "jti": secrets.token_hex(8), "exp": int(time.time()) + ttl_s}
    payload = _b64(json.dumps(claims).encode())
    return f"{header}.{payload}.{_b64(secrets.token_bytes(16))}"


def make_generation_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"gen_{int(time.time() * 1000)}_{suffix}"


class Backend:
    def __init__(self):
        self.users: dict[str, AuthUser] = {}
        self.passwords: dict[str, str] = {}
        # token -> (user_id, expires_at epoch seconds)
        self.access_tokens: dict[str, tuple[str, float]] = {}
        self.refresh_tokens: dict[str, tuple[str, float]] = {}
        self.generations: dict[str, Generation] = {}
        self.owners: dict[str, str] = {}
        self.topics: dict[str, str] = {}

    # ==========================
    # AUTH
    # ==========================
    def authenticate(self, email: str, password: str) -> AuthUser | None:
        """Known users must match their password; unknown emails are registered on first login."""
        user = self.users.get(email)
        if user is None:
            user = AuthUser(id=f"user_{secrets.token_hex(6)}", email=email, name=email.split("@")[0])
            self.users[email] = user
            self.passwords[email] = password
            logger.info(f"event=register user_id={user.id} email={email}")
            return user
        if self.passwords.get(email) != password:
            return None
        return user

    def issue_pair(self, user: AuthUser) -> tuple[str, str]:
        access = issue_token(user.id, "access", settings.ACCESS_TOKEN_TTL_S)
        refresh = issue_token(user.id, "refresh", REFRESH_TOKEN_TTL_S)
        self.access_tokens[access] = (user.id, time.time() + settings.ACCESS_TOKEN_TTL_S)
        self.refresh_tokens[refresh] = (user.id, time.time() + REFRESH_TOKEN_TTL_S)
        return access, refresh

    def rotate(self, refresh_token: str) -> tuple[AuthUser, str, str] | None:
        """Consumes a refresh token and issues a new pair. Each refresh token works once."""
        entry = self.refresh_tokens.pop(refresh_token, None)
        if entry is None or entry[1] < time.time():
            logger.warning(f"event=refresh_rejected token={mask_token(refresh_token)}")
            return None
        user = self.user_by_id(entry[0])
        if user is None:
            return None
        access, refresh = self.issue_pair(user)
        return user, access, refresh

    def revoke(self, refresh_token: str) -> None:
        self.refresh_tokens.pop(refresh_token, None)

    def expire_access_tokens(self) -> None:
        """Marks every issued access token as expired. Used to rehearse the refresh path."""
        self.access_tokens = {token: (uid, 0.0) for token, (uid, _) in self.access_tokens.items()}

    def user_for_access_token(self, token: str | None) -> AuthUser | None:
        if not token:
            return None
        entry = self.access_tokens.get(token)
        if entry is None or entry[1] < time.time():
            return None
        return self.user_by_id(entry[0])

    def user_by_id(self, user_id: str) -> AuthUser | None:
        return next((u for u in self.users.values() if u.id == user_id), None)

    # ==========================
    # GENERATIONS
    # ==========================
    def create_generation(
        self,
        user_id: str,
        topic: str,
        platform: str,
        niche: str | None = None,
        target_audience: str | None = None,
    ) -> Generation:
        now = datetime.now(timezone.utc)
        generation = Generation(
            id=make_generation_id(),
            platform=platform,
            niche=niche,
            target_audience=target_audience,
            status="pending",
            created_at=now,
            updated_at=now,
        )
        self.generations[generation.id] = generation
        self.owners[generation.id] = user_id
        self.topics[generation.id] = topic
        return generation

    def save_generation(self, generation: Generation) -> None:
        self.generations[generation.id] = generation

    def get_generation(self, generation_id: str, user_id: str | None = None) -> Generation | None:
        generation = self.generations.get(generation_id)
        if generation is None:
            return None
        if user_id is not None and self.owners.get(generation_id) != user_id:
            return None
        return generation

    def list_generations(self, user_id: str, limit: int | None = None) -> list[Generation]:
        owned = [g for gid, g in self.generations.items() if self.owners.get(gid) == user_id]
        owned.sort(key=lambda g: g.created_at or datetime.min.replace(tzinfo=timezone.utc), reverse=True)
        return owned[:limit] if limit else owned


backend = Backend()
