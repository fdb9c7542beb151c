import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Integer, String, Text,
    delete as sa_delete, event, inspect, select, update as sa_update,
)
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, relationship, selectinload
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

logger = logging.getLogger('uvicorn.error')

Base = declarative_base()


def _utcnow():
    return datetime.now(timezone.utc)


# --- Tables ---
class Category(Base):
    __tablename__ = "categories"

    id         = Column(Integer, primary_key=True)
    name       = Column(String(100), unique=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class User(Base):
    __tablename__ = "users"

    id              = Column(Integer, primary_key=True)
    username        = Column(String(50), unique=True, nullable=False)
    email           = Column(String(255), unique=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)
    created_at      = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())


class Thread(Base):
    __tablename__ = "threads"

    id          = Column(Integer, primary_key=True)
    title       = Column(String(255), nullable=False)
    user_id     = Column(Integer, ForeignKey("users.id"), nullable=False)
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False)
    created_at  = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    category = relationship("Category")
    user     = relationship("User")


class Post(Base):
    __tablename__ = "posts"

    id               = Column(Integer, primary_key=True)
    content          = Column(Text, nullable=False)
    user_id          = Column(Integer, ForeignKey("users.id"), nullable=False)
    thread_id        = Column(Integer, ForeignKey("threads.id", ondelete="CASCADE"), nullable=False)
    is_original_post = Column(Boolean, nullable=False, default=False)
    created_at       = Column(DateTime(timezone=True), default=_utcnow, server_default=func.now())

    thread = relationship("Thread")
    user   = relationship("User")


TABLES = {model.__tablename__: model for model in (Category, User, Thread, Post)}


# --- Errors ---
class StoreError(Exception):
    """A relational store call failed."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StoreConstraintError(StoreError):
    """Unique or foreign-key constraint rejected the write."""


class StoreUnavailableError(StoreError):
    """The store could not be reached or did not answer in time."""


def _row_to_dict(row, columns: Optional[Sequence[str]] = None) -> Dict[str, Any]:
    names = columns or [c.name for c in row.__table__.columns]
    return {name: getattr(row, name) for name in names}


def _error_message(exc: SQLAlchemyError) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig) if orig is not None else str(exc)


class RelationalStore:
    """
    Table-scoped access to the forum tables.

    Each operation runs on its own session and commits on its own; callers
    that need several writes to succeed together must undo earlier writes
    themselves.
    """

    def __init__(self, engine: AsyncEngine, timeout: float = 10.0):
        self.engine = engine
        self.timeout = timeout
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, timeout: float = 10.0) -> "RelationalStore":
        kwargs: Dict[str, Any] = {"pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            kwargs = {"connect_args": {"check_same_thread": False, "timeout": timeout}}
            if make_url(database_url).database in (None, "", ":memory:"):
                kwargs["poolclass"] = StaticPool
        elif "asyncpg" in database_url:
            kwargs["connect_args"] = {"command_timeout": timeout}
        engine = create_async_engine(database_url, **kwargs)

        if engine.dialect.name == "sqlite":
            @event.listens_for(engine.sync_engine, "connect")
            def _enable_foreign_keys(dbapi_connection, connection_record):
                cursor = dbapi_connection.cursor()
                cursor.execute("PRAGMA foreign_keys=ON")
                cursor.close()

        return cls(engine, timeout=timeout)

    async def init_schema(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    def _model(self, table: str):
        try:
            return TABLES[table]
        except KeyError:
            raise ValueError(f"Unknown table '{table}'")

    @staticmethod
    def _relation(model, name: str):
        for rel in inspect(model).relationships:
            if rel.key == name or rel.mapper.local_table.name == name:
                return rel
        raise ValueError(f"Table '{model.__tablename__}' has no relation '{name}'")

    async def _run(self, what: str, coro, bounded: bool = True):
        """
        Await a store call and map driver errors to StoreError.

        Writes pass ``bounded=False`` and rely on the driver timeout set in
        ``from_url``: cancelling a write from outside could drop the result
        of a commit that already happened.
        """
        try:
            if not bounded:
                return await coro
            return await asyncio.wait_for(coro, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError(f"{what} timed out after {self.timeout}s") from e
        except IntegrityError as e:
            raise StoreConstraintError(_error_message(e)) from e
        except (OperationalError, InterfaceError) as e:
            raise StoreUnavailableError(_error_message(e)) from e
        except SQLAlchemyError as e:
            raise StoreError(_error_message(e)) from e

    async def insert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored, including its assigned id."""
        model = self._model(table)

        async def op():
            async with self._sessions() as ses:
                row = model(**values)
                ses.add(row)
                await ses.flush()
                await ses.refresh(row)
                data = _row_to_dict(row)
                await ses.commit()
                return data

        return await self._run(f"insert into {table}", op(), bounded=False)

    async def select(
        self,
        table: str,
        match: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        expand: Optional[Mapping[str, Sequence[str]]] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows matching every key/value in ``match``.

        ``expand`` maps a related table (or relationship name) to the columns
        to pull from it; each is returned as a nested dict under that name,
        e.g. ``{"categories": ("name",)}`` on threads yields
        ``row["categories"] == {"name": ...}``.
        """
        model = self._model(table)
        expand = expand or {}

        stmt = select(model)
        for key, value in (match or {}).items():
            stmt = stmt.where(getattr(model, key) == value)
        if order_by:
            col = getattr(model, order_by)
            if descending:
                stmt = stmt.order_by(col.desc(), model.id.desc())
            else:
                stmt = stmt.order_by(col.asc(), model.id.asc())
        relations = {name: self._relation(model, name) for name in expand}
        for rel in relations.values():
            stmt = stmt.options(selectinload(rel.class_attribute))

        async def op():
            async with self._sessions() as ses:
                rows = (await ses.scalars(stmt)).all()
                results = []
                for row in rows:
                    data = _row_to_dict(row)
                    for name, rel in relations.items():
                        related = getattr(row, rel.key)
                        data[name] = _row_to_dict(related, expand[name]) if related is not None else None
                    results.append(data)
                return results

        return await self._run(f"select from {table}", op())

    async def update(self, table: str, match: Mapping[str, Any], values: Mapping[str, Any]) -> int:
        model = self._model(table)
        stmt = sa_update(model).values(**values)
        for key, value in match.items():
            stmt = stmt.where(getattr(model, key) == value)

        async def op():
            async with self._sessions() as ses:
                result = await ses.execute(stmt)
                await ses.commit()
                return result.rowcount

        return await self._run(f"update {table}", op(), bounded=False)

    async def delete(self, table: str, match: Mapping[str, Any]) -> int:
        """Delete rows matching ``match``; returns the number removed."""
        if not match:
            raise ValueError("delete requires a filter")
        model = self._model(table)
        stmt = sa_delete(model)
        for key, value in match.items():
            stmt = stmt.where(getattr(model, key) == value)

        async def op():
            async with self._sessions() as ses:
                result = await ses.execute(stmt)
                await ses.commit()
                return result.rowcount

        return await self._run(f"delete from {table}", op(), bounded=False)

    async def seed_categories(self, names: Iterable[str]) -> None:
        existing = {row["name"] for row in await self.select("categories")}
        for name in names:
            if name not in existing:
                await self.insert("categories", {"name": name})
                logger.info(f"Seeded category '{name}'")
