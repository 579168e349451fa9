"""Lookup of per-user brokerage credentials for the primary quote source."""
from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from price_cache.database import get_db_session
from price_cache.errors import StoreUnavailableError
from price_cache.models import BrokerCredential
from price_cache.schemas.quote import BrokerCredentials
from price_cache.utils.validators import normalize_timestamp


class CredentialStore(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> BrokerCredentials | None:
        raise NotImplementedError


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, credentials: list[BrokerCredentials] | None = None):
        self._rows = {c.user_id: c for c in credentials or []}

    def put(self, credentials: BrokerCredentials):
        self._rows[credentials.user_id] = credentials

    async def get(self, user_id: str) -> BrokerCredentials | None:
        return self._rows.get(user_id)


class SqlCredentialStore(CredentialStore):
    def __init__(self, session_factory: sessionmaker | None = None):
        self._session_factory = session_factory

    def _get_sync(self, user_id: str) -> BrokerCredentials | None:
        with get_db_session(self._session_factory) as session:
            row = session.query(BrokerCredential).filter_by(user_id=user_id).first()
            if row is None:
                return None
            return BrokerCredentials(
                user_id=row.user_id,
                api_key=row.api_key,
                access_token=row.access_token,
                token_expiry=normalize_timestamp(row.token_expiry) if row.token_expiry else None,
            )

    async def get(self, user_id: str) -> BrokerCredentials | None:
        try:
            return await asyncio.to_thread(self._get_sync, user_id)
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"credential lookup failed: {exc}") from exc
