"""Database operations for feeds, articles, folders and settings."""

import json
from typing import Any, Dict, Iterable, List, Optional, Tuple
from pathlib import Path

from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.exc import IntegrityError
import structlog

from .models import (
    ArticleModel, ArticleTermModel, FeedModel, FolderModel, SettingModel, init_db,
)
from ..ingestion.interfaces import Article, Feed, LinkBackfill, StorageInterface
from ..search.tokenizer import tokenize
from ..config.settings import settings

logger = structlog.get_logger()

# SQLite caps bound parameters per statement; keep IN () lists below it
LOOKUP_CHUNK_SIZE = 500

FEED_FIELDS = {"url", "title", "website", "folder_id", "favicon", "last_fetched", "error"}


class FeedStorage(StorageInterface):
    """SQL storage for the reader, one session per operation."""

    def __init__(self, database_url: str = None):
        if database_url is None:
            database_url = settings.database_url

        # Ensure data directory exists
        if database_url.startswith("sqlite:///"):
            db_path = database_url.replace("sqlite:///", "")
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        self.engine = init_db(database_url)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    # --- Feeds ---

    def add_feed(self, feed: Feed) -> Optional[Feed]:
        """Insert a feed and return it with its id, or None if the URL is taken."""
        session = self.Session()
        try:
            model = FeedModel(
                url=feed.url,
                title=feed.title,
                website=feed.website,
                folder_id=feed.folder_id,
                favicon=feed.favicon,
                last_fetched=feed.last_fetched,
                error=feed.error,
            )
            session.add(model)
            session.commit()
            feed.id = model.id
            logger.debug("feed_saved", id=feed.id, url=feed.url[:80])
            return feed
        except IntegrityError:
            session.rollback()
            logger.debug("feed_duplicate", url=feed.url[:80])
            return None
        finally:
            session.close()

    def get_feed(self, feed_id: int) -> Optional[Feed]:
        """Get feed by id."""
        session = self.Session()
        try:
            model = session.get(FeedModel, feed_id)
            return self._model_to_feed(model) if model else None
        finally:
            session.close()

    def get_feed_by_url(self, url: str) -> Optional[Feed]:
        """Get feed by subscription URL."""
        session = self.Session()
        try:
            model = session.query(FeedModel).filter(FeedModel.url == url).first()
            return self._model_to_feed(model) if model else None
        finally:
            session.close()

    def get_feeds(self) -> List[Feed]:
        """Get all subscribed feeds."""
        session = self.Session()
        try:
            models = session.query(FeedModel).order_by(FeedModel.id).all()
            return [self._model_to_feed(m) for m in models]
        finally:
            session.close()

    def update_feed(self, feed_id: int, **fields) -> None:
        """Update feed fields in place."""
        unknown = set(fields) - FEED_FIELDS
        if unknown:
            raise ValueError(f"Unknown feed fields: {sorted(unknown)}")

        session = self.Session()
        try:
            session.query(FeedModel).filter(FeedModel.id == feed_id).update(
                fields, synchronize_session=False
            )
            session.commit()
        finally:
            session.close()

    def set_feed_error(self, feed_id: int, message: Optional[str]) -> None:
        """Record (or clear) the last fetch error of a feed."""
        self.update_feed(feed_id, error=message)

    def delete_feed(self, feed_id: int) -> bool:
        """Delete a feed and its articles. Returns True if deleted."""
        session = self.Session()
        try:
            feed = session.get(FeedModel, feed_id)
            if feed is None:
                return False
            for article in session.query(ArticleModel).filter(ArticleModel.feed_id == feed_id):
                session.delete(article)
            session.delete(feed)
            session.commit()
            return True
        finally:
            session.close()

    # --- Articles ---

    def find_articles(self, feed_id: int, guids: List[str]) -> List[Article]:
        """Get existing articles of a feed matching any of the guids."""
        return self.find_articles_by_keys((feed_id, guid) for guid in guids)

    def find_articles_by_keys(self, keys: Iterable[Tuple[int, str]]) -> List[Article]:
        """Batched lookup of any of the given (feed_id, guid) pairs."""
        by_feed: Dict[int, List[str]] = {}
        for feed_id, guid in keys:
            by_feed.setdefault(feed_id, []).append(guid)

        session = self.Session()
        try:
            found = []
            for feed_id, guids in by_feed.items():
                unique = list(dict.fromkeys(guids))
                for start in range(0, len(unique), LOOKUP_CHUNK_SIZE):
                    chunk = unique[start:start + LOOKUP_CHUNK_SIZE]
                    found.extend(
                        session.query(ArticleModel)
                        .filter(ArticleModel.feed_id == feed_id)
                        .filter(ArticleModel.guid.in_(chunk))
                        .all()
                    )
            return [self._model_to_article(m) for m in found]
        finally:
            session.close()

    def get_linkless_articles(self, feed_id: int) -> List[Article]:
        """Articles of a feed that have no link yet."""
        session = self.Session()
        try:
            models = session.query(ArticleModel)\
                .filter(ArticleModel.feed_id == feed_id)\
                .filter((ArticleModel.link == "") | (ArticleModel.link.is_(None)))\
                .all()
            return [self._model_to_article(m) for m in models]
        finally:
            session.close()

    def apply_sync(
        self,
        feed_id: int,
        backfills: List[LinkBackfill],
        articles: List[Article],
    ) -> int:
        """Store link backfills and new articles in one transaction.

        Returns the number of inserted articles. A backfilled article also
        takes the incoming GUID, so a title match is recognised by GUID on
        later syncs. A (feed_id, guid) conflict rolls back the whole batch,
        backfills included.
        """
        session = self.Session()
        try:
            for backfill in backfills:
                values = {"link": backfill.link}
                if backfill.guid:
                    values["guid"] = backfill.guid
                session.query(ArticleModel)\
                    .filter(ArticleModel.id == backfill.article_id)\
                    .filter(ArticleModel.feed_id == feed_id)\
                    .update(values, synchronize_session=False)

            models = [self._article_to_model(a) for a in articles]
            session.add_all(models)
            session.commit()

            for article, model in zip(articles, models):
                article.id = model.id
            logger.debug(
                "sync_applied", feed_id=feed_id, inserted=len(models), backfilled=len(backfills)
            )
            return len(models)
        except IntegrityError:
            session.rollback()
            logger.error("sync_conflict", feed_id=feed_id, articles=len(articles))
            raise
        finally:
            session.close()

    def get_article(self, article_id: int) -> Optional[Article]:
        """Get article by id."""
        session = self.Session()
        try:
            model = session.get(ArticleModel, article_id)
            return self._model_to_article(model) if model else None
        finally:
            session.close()

    def get_articles(
        self,
        feed_id: int = None,
        unread_only: bool = False,
        starred_only: bool = False,
        limit: int = 50,
    ) -> List[Article]:
        """Articles newest first, optionally filtered."""
        session = self.Session()
        try:
            query = session.query(ArticleModel)
            if feed_id is not None:
                query = query.filter(ArticleModel.feed_id == feed_id)
            if unread_only:
                query = query.filter(ArticleModel.read == False)
            if starred_only:
                query = query.filter(ArticleModel.starred == True)

            models = query.order_by(ArticleModel.iso_date.desc()).limit(limit).all()
            return [self._model_to_article(m) for m in models]
        finally:
            session.close()

    def count_articles(self, feed_id: int = None, unread_only: bool = False) -> int:
        """Count stored articles."""
        session = self.Session()
        try:
            query = session.query(ArticleModel)
            if feed_id is not None:
                query = query.filter(ArticleModel.feed_id == feed_id)
            if unread_only:
                query = query.filter(ArticleModel.read == False)
            return query.count()
        finally:
            session.close()

    def search(self, query: str, limit: int = 50) -> List[Article]:
        """Articles containing every search term of the query."""
        terms = tokenize(query)
        if not terms:
            return []

        session = self.Session()
        try:
            matching_ids = select(ArticleTermModel.article_id)\
                .where(ArticleTermModel.term.in_(sorted(terms)))\
                .group_by(ArticleTermModel.article_id)\
                .having(func.count(ArticleTermModel.term) == len(terms))
            models = session.query(ArticleModel)\
                .filter(ArticleModel.id.in_(matching_ids))\
                .order_by(ArticleModel.iso_date.desc())\
                .limit(limit)\
                .all()
            return [self._model_to_article(m) for m in models]
        finally:
            session.close()

    def mark_read(self, article_ids: List[int]) -> int:
        """Mark articles as read. Returns count of changed rows."""
        return self._set_read(article_ids, True)

    def mark_unread(self, article_ids: List[int]) -> int:
        """Mark articles as unread. Returns count of changed rows."""
        return self._set_read(article_ids, False)

    def _set_read(self, article_ids: List[int], read: bool) -> int:
        if not article_ids:
            return 0
        session = self.Session()
        try:
            count = session.query(ArticleModel)\
                .filter(ArticleModel.id.in_(article_ids))\
                .filter(ArticleModel.read != read)\
                .update({"read": read}, synchronize_session=False)
            session.commit()
            return count
        finally:
            session.close()

    def mark_feed_read(self, feed_id: int) -> int:
        """Mark every article of a feed as read."""
        session = self.Session()
        try:
            count = session.query(ArticleModel)\
                .filter(ArticleModel.feed_id == feed_id)\
                .filter(ArticleModel.read == False)\
                .update({"read": True}, synchronize_session=False)
            session.commit()
            return count
        finally:
            session.close()

    def mark_all_read(self) -> int:
        """Mark every article as read."""
        session = self.Session()
        try:
            count = session.query(ArticleModel)\
                .filter(ArticleModel.read == False)\
                .update({"read": True}, synchronize_session=False)
            session.commit()
            return count
        finally:
            session.close()

    def set_starred(self, article_id: int, starred: bool = True) -> None:
        """Star or unstar an article."""
        session = self.Session()
        try:
            session.query(ArticleModel)\
                .filter(ArticleModel.id == article_id)\
                .update({"starred": starred}, synchronize_session=False)
            session.commit()
        finally:
            session.close()

    # --- Folders and settings ---

    def add_folder(self, name: str) -> Optional[int]:
        """Create a folder, return its id or None if the name exists."""
        session = self.Session()
        try:
            model = FolderModel(name=name)
            session.add(model)
            session.commit()
            return model.id
        except IntegrityError:
            session.rollback()
            return None
        finally:
            session.close()

    def get_folders(self) -> List[dict]:
        """All folders by name."""
        session = self.Session()
        try:
            return [
                {"id": f.id, "name": f.name, "collapsed": bool(f.collapsed)}
                for f in session.query(FolderModel).order_by(FolderModel.name).all()
            ]
        finally:
            session.close()

    def get_setting(self, key: str, default: Any = None) -> Any:
        """Get a setting value."""
        session = self.Session()
        try:
            model = session.get(SettingModel, key)
            return json.loads(model.value) if model else default
        finally:
            session.close()

    def set_setting(self, key: str, value: Any) -> None:
        """Create or replace a setting value."""
        session = self.Session()
        try:
            session.merge(SettingModel(key=key, value=json.dumps(value)))
            session.commit()
        finally:
            session.close()

    def get_stats(self) -> dict:
        """Get database statistics."""
        session = self.Session()
        try:
            total = session.query(ArticleModel).count()
            unread = session.query(ArticleModel)\
                .filter(ArticleModel.read == False).count()
            starred = session.query(ArticleModel)\
                .filter(ArticleModel.starred == True).count()
            feeds = session.query(FeedModel).count()
            failing = session.query(FeedModel)\
                .filter(FeedModel.error.isnot(None)).count()

            return {
                "total_feeds": feeds,
                "failing_feeds": failing,
                "total_articles": total,
                "unread_articles": unread,
                "starred_articles": starred,
            }
        finally:
            session.close()

    # --- Conversion ---

    def _model_to_feed(self, model: FeedModel) -> Feed:
        """Convert database model to Feed."""
        return Feed(
            id=model.id,
            url=model.url,
            title=model.title or "",
            website=model.website or "",
            folder_id=model.folder_id,
            last_fetched=model.last_fetched,
            error=model.error,
            favicon=model.favicon,
        )

    def _model_to_article(self, model: ArticleModel) -> Article:
        """Convert database model to Article."""
        return Article(
            id=model.id,
            feed_id=model.feed_id,
            guid=model.guid,
            title=model.title or "",
            link=model.link or "",
            content=model.content or "",
            snippet=model.snippet or "",
            author=model.author or "",
            iso_date=model.iso_date,
            received_date=model.received_date,
            read=bool(model.read),
            starred=bool(model.starred),
            words={t.term for t in model.terms},
        )

    def _article_to_model(self, article: Article) -> ArticleModel:
        """Convert Article to a new database model."""
        return ArticleModel(
            feed_id=article.feed_id,
            guid=article.guid,
            title=article.title,
            link=article.link,
            content=article.content,
            snippet=article.snippet,
            author=article.author,
            iso_date=article.iso_date,
            received_date=article.received_date,
            read=article.read,
            starred=article.starred,
            terms=[ArticleTermModel(term=term) for term in sorted(article.words)],
        )
