from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Table, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fiscalwire.models import Base, JSONType, utcnow
from app.fiscalwire.utils import iso

article_tags = Table(
    "article_tags",
    Base.metadata,
    Column("article_id", ForeignKey("articles.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    color: Mapped[str | None] = mapped_column(String(32), nullable=True)  # tailwind class, e.g. bg-blue-600
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "color": self.color,
            "description": self.description,
        }


class Author(Base):
    __tablename__ = "authors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    avatar: Mapped[str | None] = mapped_column(String(500), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "avatar": self.avatar, "bio": self.bio}


class Tag(Base):
    __tablename__ = "tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    def to_dict(self) -> dict:
        return {"id": self.id, "name": self.name, "slug": self.slug}


class Article(Base):
    __tablename__ = "articles"
    __table_args__ = (
        Index("idx_articles_published_at", "published_at"),
        Index("idx_articles_category_id", "category_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    excerpt: Mapped[str] = mapped_column(Text, nullable=False, default="")
    content: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)  # list of content blocks
    headings: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    image_url: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    read_time: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    is_featured: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_breaking: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    relevant_tickers: Mapped[list | None] = mapped_column(JSONType, nullable=True)

    # Primary category plus optional "markets"/"business" section categories.
    category_id: Mapped[int] = mapped_column(ForeignKey("categories.id"), nullable=False)
    markets_category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    business_category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("authors.id"), nullable=False)

    # Imported articles
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True, unique=True)
    source_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    published_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    category: Mapped[Category] = relationship(foreign_keys=[category_id], lazy="joined")
    author: Mapped[Author] = relationship(lazy="joined")
    tags: Mapped[list[Tag]] = relationship(secondary=article_tags, lazy="selectin")

    def to_summary(self) -> dict:
        return {
            "id": self.id,
            "slug": self.slug,
            "title": self.title,
            "excerpt": self.excerpt,
            "imageUrl": self.image_url,
            "readTime": self.read_time,
            "isFeatured": self.is_featured,
            "isBreaking": self.is_breaking,
            "publishedAt": iso(self.published_at),
            "category": self.category.to_dict() if self.category else None,
            "author": self.author.to_dict() if self.author else None,
        }

    def to_dict(self) -> dict:
        d = self.to_summary()
        d.update(
            {
                "content": self.content or [],
                "headings": self.headings,
                "relevantTickers": self.relevant_tickers or [],
                "categoryId": self.category_id,
                "marketsCategoryId": self.markets_category_id,
                "businessCategoryId": self.business_category_id,
                "authorId": self.author_id,
                "tags": [t.to_dict() for t in self.tags],
                "externalId": self.external_id,
                "sourceUrl": self.source_url,
                "createdAt": iso(self.created_at),
                "updatedAt": iso(self.updated_at),
            }
        )
        return d


class Video(Base):
    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    thumbnail: Mapped[str] = mapped_column(String(1000), nullable=False, default="")
    duration: Mapped[str] = mapped_column(String(16), nullable=False, default="0:00")
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="General")
    url: Mapped[str] = mapped_column(String(1000), nullable=False)
    embed_type: Mapped[str] = mapped_column(String(16), nullable=False)  # youtube | vimeo
    video_id: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "thumbnail": self.thumbnail,
            "duration": self.duration,
            "category": self.category,
            "url": self.url,
            "embedType": self.embed_type,
            "videoId": self.video_id,
            "createdAt": iso(self.created_at),
        }


class BreakingNews(Base):
    __tablename__ = "breaking_news"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    headline: Mapped[str] = mapped_column(String(500), nullable=False)
    url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "headline": self.headline,
            "url": self.url,
            "isActive": self.is_active,
            "createdAt": iso(self.created_at),
        }
