"""Database storage and models."""

from .database import FeedStorage
from .models import ArticleModel, FeedModel, FolderModel, SettingModel, init_db

__all__ = ["FeedStorage", "ArticleModel", "FeedModel", "FolderModel", "SettingModel", "init_db"]
