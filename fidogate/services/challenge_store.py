"""
Session-scoped storage for pending ceremony challenges.

One pending ceremony per session: ``put`` replaces whatever was there, and
``take_and_clear`` hands a challenge out at most once. Expired entries look
exactly like entries that were never stored.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

import structlog

from fidogate.core.config import settings
from fidogate.db.redis import RedisClient

logger = structlog.get_logger()


class CeremonyKind(str, Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


@dataclass
class Challenge:
    kind: CeremonyKind
    # Verification engine state (carries the challenge itself)
    state: Dict[str, Any]
    # Options exactly as they were sent to the client
    options: Dict[str, Any]
    expires_at: float
    # Signup only: profile and provisional handle of the user to create
    pending_user: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Challenge":
        return cls(
            kind=CeremonyKind(data["kind"]),
            state=data["state"],
            options=data["options"],
            expires_at=data["expires_at"],
            pending_user=data.get("pending_user"),
        )


class ChallengeStore(ABC):
    """Interface shared by the Redis and in-process stores."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = settings.CHALLENGE_TTL_SECONDS if ttl_seconds is None else ttl_seconds

    def _new_challenge(
        self,
        kind: CeremonyKind,
        state: Dict[str, Any],
        options: Dict[str, Any],
        pending_user: Optional[Dict[str, Any]],
    ) -> Challenge:
        return Challenge(
            kind=kind,
            state=state,
            options=options,
            expires_at=time.time() + self.ttl_seconds,
            pending_user=pending_user,
        )

    @abstractmethod
    async def put(
        self,
        session_id: str,
        kind: CeremonyKind,
        state: Dict[str, Any],
        options: Dict[str, Any],
        pending_user: Optional[Dict[str, Any]] = None,
    ) -> Challenge:
        pass

    @abstractmethod
    async def take_and_clear(self, session_id: str) -> Optional[Challenge]:
        pass


class RedisChallengeStore(ChallengeStore):
    KEY_PREFIX = "webauthn:ceremony:"

    def __init__(self, client: RedisClient, ttl_seconds: Optional[int] = None):
        super().__init__(ttl_seconds)
        self.client = client

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    async def put(self, session_id, kind, state, options, pending_user=None):
        challenge = self._new_challenge(kind, state, options, pending_user)
        await self.client.cache_set(
            self._key(session_id), challenge.to_dict(), ttl=self.ttl_seconds
        )
        logger.debug("Ceremony challenge stored", kind=kind.value)
        return challenge

    async def take_and_clear(self, session_id: str) -> Optional[Challenge]:
        data = await self.client.cache_take(self._key(session_id))
        if not data:
            return None
        challenge = Challenge.from_dict(data)
        # Redis TTL has second granularity
        if challenge.expires_at <= time.time():
            return None
        return challenge


class InMemoryChallengeStore(ChallengeStore):
    """Process-local store; only valid when a single worker serves all requests."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        super().__init__(ttl_seconds)
        self._entries: Dict[str, Challenge] = {}
        self._lock = asyncio.Lock()

    async def put(self, session_id, kind, state, options, pending_user=None):
        challenge = self._new_challenge(kind, state, options, pending_user)
        async with self._lock:
            self._purge_expired()
            self._entries[session_id] = challenge
        return challenge

    async def take_and_clear(self, session_id: str) -> Optional[Challenge]:
        async with self._lock:
            challenge = self._entries.pop(session_id, None)
        if challenge is None or challenge.expires_at <= time.time():
            return None
        return challenge

    def _purge_expired(self) -> None:
        now = time.time()
        expired = [key for key, entry in self._entries.items() if entry.expires_at <= now]
        for key in expired:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)
