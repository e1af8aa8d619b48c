"""
Session backends.

The continuity manager only needs four capabilities from whatever holds the
credential; SessionBackend names them. HttpSessionBackend implements them
against the identity store's refresh-token grant, persisting session
material through FileSessionStore so it can be re-hydrated after a drop.
"""

import json
import os
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import structlog
from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from trustcore.common.exceptions import OracleUnavailableError
from trustcore.oracles.http import IdentityStoreClient

logger = structlog.get_logger(__name__)


class SessionBackend(ABC):
    """Credential operations used by SessionContinuityManager."""

    @abstractmethod
    async def refresh_if_needed(self) -> None:
        """Refresh the credential if it is close to expiry."""
        pass

    @abstractmethod
    async def has_session(self) -> bool:
        """Whether a live session is currently held."""
        pass

    @abstractmethod
    async def refresh_session(self) -> bool:
        """Exchange the refresh token for a new credential. False if rejected."""
        pass

    @abstractmethod
    async def restore_from_storage(self) -> bool:
        """Re-hydrate the session from locally persisted material."""
        pass


# ============================================================================
# SESSION MATERIAL
# ============================================================================


class SessionMaterial(BaseModel):
    """Tokens needed to keep a session alive."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    expires_at: datetime
    user_id: Optional[str] = None

    def expires_within(self, seconds: float, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return self.expires_at - now <= timedelta(seconds=seconds)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.expires_within(0, now)


class FileSessionStore:
    """Session material persisted as a JSON file."""

    def __init__(self, path: str):
        self.path = Path(os.path.expanduser(path))

    def load(self) -> Optional[SessionMaterial]:
        if not self.path.exists():
            return None
        try:
            return SessionMaterial.model_validate(json.loads(self.path.read_text("utf-8")))
        except (OSError, ValueError, PydanticValidationError) as e:
            logger.warning("session_store_unreadable", path=str(self.path), error=str(e))
            return None

    def save(self, material: SessionMaterial) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_text(material.model_dump_json(), "utf-8")
        os.replace(tmp, self.path)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass


# ============================================================================
# HTTP BACKEND
# ============================================================================


class HttpSessionBackend(SessionBackend):
    """Keeps a session alive through /auth/v1/token?grant_type=refresh_token."""

    def __init__(
        self,
        client: IdentityStoreClient,
        store: FileSessionStore,
        refresh_margin_seconds: float = 60.0,
    ):
        self._client = client
        self._store = store
        self._margin = refresh_margin_seconds
        self._material: Optional[SessionMaterial] = None

    @property
    def material(self) -> Optional[SessionMaterial]:
        return self._material

    def adopt(self, material: SessionMaterial) -> None:
        """Take over a freshly signed-in session."""
        self._material = material
        self._store.save(material)

    def forget(self) -> None:
        """Drop the session, in memory and on disk."""
        self._material = None
        self._store.clear()

    async def has_session(self) -> bool:
        return self._material is not None and not self._material.is_expired()

    async def refresh_if_needed(self) -> None:
        if self._material is not None and self._material.expires_within(self._margin):
            await self.refresh_session()

    async def refresh_session(self) -> bool:
        if self._material is None:
            return False
        return await self._refresh_with(self._material.refresh_token)

    async def restore_from_storage(self) -> bool:
        stored = self._store.load()
        if stored is None:
            return False
        if not stored.is_expired():
            self._material = stored
            logger.info("session_restored_from_storage", user_id=stored.user_id)
            return True
        return await self._refresh_with(stored.refresh_token)

    async def _refresh_with(self, refresh_token: str) -> bool:
        try:
            response = await self._client.request(
                "refresh_session",
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json={"refresh_token": refresh_token},
            )
        except OracleUnavailableError as e:
            # 4xx means the refresh token itself was rejected; retrying is pointless.
            if e.details.get("status_code") in (400, 401, 403):
                logger.warning("session_refresh_rejected", status_code=e.details["status_code"])
                return False
            raise

        try:
            data = response.json() or {}
            material = SessionMaterial(
                access_token=data["access_token"],
                refresh_token=data["refresh_token"],
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=int(data.get("expires_in", 3600))),
                user_id=(data.get("user") or {}).get("id"),
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise OracleUnavailableError("refresh_session", "malformed token response") from e

        try:
            self.adopt(material)
        except OSError as e:
            # The refreshed credential is already live in memory.
            logger.error("session_persist_failed", path=str(self._store.path), error=str(e))
        logger.info("session_refreshed", user_id=material.user_id)
        return True
