"""Persistent storage of short links and their rendered HTML."""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String, Text, create_engine, select, update
from sqlalchemy import Enum as SAEnum
from sqlalchemy.engine import make_url
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    MappedAsDataclass,
    mapped_column,
    sessionmaker,
)
from sqlalchemy.pool import StaticPool


class RenderStatus(str, Enum):
    """Rendering state of a link's page."""

    PENDING = "pending"
    RENDERING = "rendering"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


class LinkNotFoundError(LookupError):
    """Raised when no link matches a lookup."""


class _Base(MappedAsDataclass, DeclarativeBase):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Link(_Base):
    """A shortened URL with its pre-rendered HTML."""

    __tablename__ = "links"

    short_code: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    original_url: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    rendered_html_content: Mapped[str] = mapped_column(Text, default="")
    render_status: Mapped[RenderStatus] = mapped_column(
        SAEnum(
            RenderStatus,
            native_enum=False,
            length=20,
            values_callable=lambda statuses: [s.value for s in statuses],
        ),
        default=RenderStatus.PENDING,
        nullable=False,
    )
    id: Mapped[int] = mapped_column(primary_key=True, init=False)
    created_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, init=False, default=None
    )
    updated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, init=False, default=None
    )
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime, init=False, default=None, index=True
    )


def _normalise_url(database_url: str) -> str:
    if database_url.startswith("postgres://"):
        return "postgresql://" + database_url[len("postgres://"):]
    return database_url


def _create_engine(database_url: str):
    url = make_url(_normalise_url(database_url))
    if url.get_backend_name() == "sqlite":
        options = {"connect_args": {"check_same_thread": False}}
        if url.database in (None, "", ":memory:"):
            options["poolclass"] = StaticPool
        return create_engine(url, **options)
    return create_engine(url)


class LinkStore:
    """Database-backed store of links; safe to share between threads."""

    def __init__(self, database_url: str) -> None:
        self._engine = _create_engine(database_url)
        _Base.metadata.create_all(self._engine)
        self._sessions = sessionmaker(self._engine, expire_on_commit=False)
        self._lock = threading.RLock()

    def create_link(self, link: Link) -> Link:
        """Insert a link, filling in its id and timestamps.

        Raises sqlalchemy.exc.IntegrityError if the short code is taken.
        """
        now = _now()
        link.created_at = now
        link.updated_at = now
        with self._lock, self._sessions.begin() as session:
            session.add(link)
        return link

    def _first(self, *criteria) -> Link:
        query = (
            select(Link)
            .where(Link.deleted_at.is_(None), *criteria)
            .order_by(Link.id)
            .limit(1)
        )
        with self._lock, self._sessions() as session:
            link = session.scalars(query).first()
        if link is None:
            raise LinkNotFoundError("record not found")
        return link

    def get_by_short_code(self, short_code: str) -> Link:
        """Return the link with this short code or raise LinkNotFoundError."""
        return self._first(Link.short_code == short_code)

    def get_by_original_url(self, original_url: str) -> Link:
        """Return the first link for this URL or raise LinkNotFoundError."""
        return self._first(Link.original_url == original_url)

    def _update(self, short_code: str, **values) -> None:
        statement = (
            update(Link)
            .where(Link.short_code == short_code, Link.deleted_at.is_(None))
            .values(updated_at=_now(), **values)
        )
        with self._lock, self._sessions.begin() as session:
            session.execute(statement)

    def update_render_status(self, short_code: str, status: RenderStatus) -> None:
        """Set the render status; a missing short code is not an error."""
        self._update(short_code, render_status=RenderStatus(status))

    def update_content(
        self, short_code: str, html_content: str, status: RenderStatus
    ) -> None:
        """Set the rendered HTML and the render status together."""
        self._update(
            short_code,
            rendered_html_content=html_content,
            render_status=RenderStatus(status),
        )

    def close(self) -> None:
        """Release the database connections."""
        self._engine.dispose()