"""Shared fixtures: a small mapped schema on in-memory SQLite.

Two independent databases (``source_session`` / ``target_session``) are
available so dumps can be loaded somewhere with different ids.
"""

from typing import Optional

import pytest
from sqlalchemy import Column, ForeignKey, String, Table, event
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    relationship,
    validates,
)
from sqlalchemy.pool import StaticPool

from db_replicate.adapters.orm import SQLAlchemyStore
from db_replicate.config.models import (
    PolymorphicRelation,
    ReplicationConfig,
    TypeConfig,
)
from db_replicate.factory import create_engine_for_url


# ============================================================================
# Models
# ============================================================================


class Base(DeclarativeBase):
    pass


domains_users = Table(
    "domains_users",
    Base.metadata,
    Column("user_id", ForeignKey("users.id"), primary_key=True),
    Column("domain_id", ForeignKey("domains.id"), primary_key=True),
)


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    login: Mapped[str] = mapped_column(String(50), unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(100))
    kind: Mapped[str] = mapped_column(String(20))

    profile: Mapped[Optional["Profile"]] = relationship(back_populates="user", uselist=False)
    emails: Mapped[list["Email"]] = relationship(back_populates="user", order_by="Email.id")
    domains: Mapped[list["Domain"]] = relationship(secondary=domains_users, order_by="Domain.id")

    __mapper_args__ = {"polymorphic_on": "kind", "polymorphic_identity": "user"}


class Admin(User):
    __mapper_args__ = {"polymorphic_identity": "admin"}


class Profile(Base):
    __tablename__ = "profiles"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    bio: Mapped[Optional[str]] = mapped_column(String(200))

    user: Mapped[Optional[User]] = relationship(back_populates="profile")


class Email(Base):
    __tablename__ = "emails"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(ForeignKey("users.id"))
    address: Mapped[str] = mapped_column(String(100))

    user: Mapped[Optional[User]] = relationship(back_populates="emails")


class Domain(Base):
    __tablename__ = "domains"

    id: Mapped[int] = mapped_column(primary_key=True)
    host: Mapped[str] = mapped_column(String(100), unique=True)


class WebPage(Base):
    __tablename__ = "web_pages"

    id: Mapped[int] = mapped_column(primary_key=True)
    path: Mapped[str] = mapped_column(String(200))
    domain_host: Mapped[Optional[str]] = mapped_column(String(100))

    domain: Mapped[Optional[Domain]] = relationship(
        primaryjoin="foreign(WebPage.domain_host) == remote(Domain.host)",
        viewonly=True,
    )


class Note(Base):
    __tablename__ = "notes"

    id: Mapped[int] = mapped_column(primary_key=True)
    body: Mapped[str] = mapped_column(String(200))
    notable_id: Mapped[Optional[int]]
    notable_type: Mapped[Optional[str]] = mapped_column(String(50))


class Author(Base):
    __tablename__ = "authors"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(100))

    comments: Mapped[list["Comment"]] = relationship(back_populates="author", order_by="Comment.id")


class Post(Base):
    __tablename__ = "posts"

    id: Mapped[int] = mapped_column(primary_key=True)
    author_id: Mapped[Optional[int]] = mapped_column(ForeignKey("authors.id"))
    title: Mapped[str] = mapped_column(String(200))

    author: Mapped[Optional[Author]] = relationship()


class Comment(Base):
    __tablename__ = "comments"

    id: Mapped[int] = mapped_column(primary_key=True)
    author_id: Mapped[Optional[int]] = mapped_column(ForeignKey("authors.id"))
    post_id: Mapped[Optional[int]] = mapped_column(ForeignKey("posts.id"))
    body: Mapped[str] = mapped_column(String(200))

    author: Mapped[Optional[Author]] = relationship(back_populates="comments")
    post: Mapped[Optional[Post]] = relationship()


class Ticket(Base):
    """Model with a validator and an insert hook that both reject writes."""

    __tablename__ = "tickets"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(String(20))

    @validates("code")
    def validate_code(self, key, value):
        if not value.startswith("T-"):
            raise ValueError(f"bad ticket code {value!r}")
        return value


@event.listens_for(Ticket, "before_insert")
def _reject_ticket_insert(mapper, connection, target):
    if target.code == "T-HOOKED":
        raise RuntimeError("before_insert hook ran")


# ============================================================================
# Fixtures
# ============================================================================


def make_session() -> Session:
    engine = create_engine_for_url(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(engine)
    return Session(engine)


def replication_config(**overrides: TypeConfig) -> ReplicationConfig:
    types = {
        "User": TypeConfig(
            enabled=True,
            natural_key=("login",),
            attributes=("name",),
            associations=("profile", "emails"),
        ),
        "Profile": TypeConfig(enabled=True, attributes=("bio",), associations=("user",)),
        "Email": TypeConfig(enabled=True, attributes=("address",)),
        "Domain": TypeConfig(enabled=True, natural_key=("host",)),
        "WebPage": TypeConfig(enabled=True, attributes=("path", "domain_host"), associations=("domain",)),
        "Note": TypeConfig(
            enabled=True,
            attributes=("body",),
            associations=("notable",),
            polymorphic=(PolymorphicRelation(name="notable", id_field="notable_id", type_field="notable_type"),),
        ),
        "Ticket": TypeConfig(enabled=True, attributes=("code",)),
        "Author": TypeConfig(enabled=True, attributes=("name",), associations=("comments",)),
        "Post": TypeConfig(enabled=True, attributes=("title",), associations=("author",)),
        "Comment": TypeConfig(enabled=True, attributes=("body",), associations=("post",)),
    }
    types.update(overrides)
    return ReplicationConfig(types=types)


@pytest.fixture
def config() -> ReplicationConfig:
    return replication_config()


@pytest.fixture
def source_session():
    session = make_session()
    yield session
    session.close()
    session.get_bind().dispose()


@pytest.fixture
def target_session():
    session = make_session()
    yield session
    session.close()
    session.get_bind().dispose()


@pytest.fixture
def source_store(source_session, config) -> SQLAlchemyStore:
    return SQLAlchemyStore(source_session, Base, config)


@pytest.fixture
def target_store(target_session, config) -> SQLAlchemyStore:
    return SQLAlchemyStore(target_session, Base, config)


@pytest.fixture
def user_graph(source_session):
    """User 7 with profile 3 and emails 10, 11."""
    user = User(id=7, login="ada", name="Ada", kind="user")
    source_session.add_all([
        user,
        Profile(id=3, user=user, bio="mathematician"),
        Email(id=10, user=user, address="ada@example.com"),
        Email(id=11, user=user, address="ada@work.example.com"),
    ])
    source_session.commit()
    return user
