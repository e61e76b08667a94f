"""SQLAlchemy models for the reader database."""

from sqlalchemy import (
    create_engine, Column, Integer, String, Text, Boolean, DateTime, ForeignKey,
    Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

from ..ingestion.interfaces import utcnow

Base = declarative_base()


class FolderModel(Base):
    """Database model for feed folders."""
    __tablename__ = "folders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    collapsed = Column(Boolean, default=False)


class FeedModel(Base):
    """Database model for subscribed feeds."""
    __tablename__ = "feeds"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String(2048), unique=True, nullable=False)
    title = Column(Text, default="")
    website = Column(String(2048), default="")
    folder_id = Column(Integer, ForeignKey("folders.id", ondelete="SET NULL"))
    favicon = Column(String(2048))

    # Fetch state
    last_fetched = Column(DateTime)
    error = Column(Text)

    __table_args__ = (
        Index('idx_feeds_folder', 'folder_id'),
    )


class ArticleModel(Base):
    """Database model for articles."""
    __tablename__ = "articles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    feed_id = Column(Integer, ForeignKey("feeds.id", ondelete="CASCADE"), nullable=False)
    guid = Column(String(2048), nullable=False)

    # Content
    title = Column(Text, default="Untitled")
    link = Column(String(2048), default="")
    content = Column(Text, default="")
    snippet = Column(Text, default="")
    author = Column(String(512), default="")

    # Timestamps
    iso_date = Column(String(40), nullable=False)
    received_date = Column(DateTime, default=utcnow)

    # Reading state
    read = Column(Boolean, default=False)
    starred = Column(Boolean, default=False)

    terms = relationship(
        "ArticleTermModel",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint('feed_id', 'guid', name='uq_articles_feed_guid'),
        Index('idx_articles_feed', 'feed_id'),
        Index('idx_articles_iso_date', 'iso_date'),
        Index('idx_articles_read', 'read'),
        Index('idx_articles_starred', 'starred'),
    )


class ArticleTermModel(Base):
    """One search term of an article (multi-entry index)."""
    __tablename__ = "article_terms"

    article_id = Column(Integer, ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True)
    term = Column(String(255), primary_key=True)

    __table_args__ = (
        Index('idx_article_terms_term', 'term'),
    )


class SettingModel(Base):
    """Key-value settings; values are JSON encoded."""
    __tablename__ = "settings"

    key = Column(String(255), primary_key=True)
    value = Column(Text)


def init_db(database_url: str):
    """Initialize database and create all tables."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # Store calls run on worker threads via asyncio.to_thread
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, echo=False, connect_args=connect_args)
    Base.metadata.create_all(engine)
    return engine


