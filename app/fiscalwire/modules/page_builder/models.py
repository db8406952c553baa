from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.fiscalwire.models import Base, JSONType, utcnow
from app.fiscalwire.utils import iso

if TYPE_CHECKING:
    from app.fiscalwire.modules.cms.models import Article, Category, Video


PAGE_TYPES = ("HOMEPAGE", "CATEGORY", "STOCK", "MARKETS", "STATIC", "CUSTOM")
ZONE_TYPES = (
    "HERO_FEATURED",
    "HERO_SECONDARY",
    "ARTICLE_GRID",
    "ARTICLE_LIST",
    "TRENDING_SIDEBAR",
    "VIDEO_CAROUSEL",
    "BREAKING_BANNER",
    "CUSTOM",
)
CONTENT_TYPES = ("ARTICLE", "VIDEO", "CUSTOM")


class LayoutTemplate(Base):
    __tablename__ = "layout_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    grid_config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    thumbnail: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    zone_definitions: Mapped[list["ZoneDefinition"]] = relationship(back_populates="layout", lazy="selectin")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "gridConfig": self.grid_config,
            "thumbnail": self.thumbnail,
            "zoneDefinitions": [z.to_dict() for z in self.zone_definitions],
        }


class ZoneDefinition(Base):
    __tablename__ = "zone_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    zone_type: Mapped[str] = mapped_column(String(32), nullable=False)
    grid_area: Mapped[str | None] = mapped_column(String(64), nullable=True)
    min_items: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_items: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    default_rules: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    layout_id: Mapped[int | None] = mapped_column(ForeignKey("layout_templates.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    layout: Mapped[LayoutTemplate | None] = relationship(back_populates="zone_definitions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "zoneType": self.zone_type,
            "gridArea": self.grid_area,
            "minItems": self.min_items,
            "maxItems": self.max_items,
            "defaultRules": self.default_rules,
            "layoutId": self.layout_id,
        }


class PageDefinition(Base):
    __tablename__ = "page_definitions"
    __table_args__ = (Index("idx_page_definitions_page_type", "page_type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    page_type: Mapped[str] = mapped_column(String(16), nullable=False, default="CUSTOM")
    category_id: Mapped[int | None] = mapped_column(ForeignKey("categories.id", ondelete="SET NULL"), nullable=True)
    stock_symbol: Mapped[str | None] = mapped_column(String(16), nullable=True)
    layout_id: Mapped[int | None] = mapped_column(ForeignKey("layout_templates.id", ondelete="SET NULL"), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    category: Mapped["Category | None"] = relationship("Category", lazy="joined")
    layout: Mapped[LayoutTemplate | None] = relationship(lazy="joined")
    zones: Mapped[list["PageZone"]] = relationship(
        back_populates="page",
        cascade="all, delete-orphan",
        order_by="PageZone.sort_order",
        lazy="selectin",
    )

    def to_dict(self, *, with_zones: bool = False) -> dict:
        d = {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "pageType": self.page_type,
            "categoryId": self.category_id,
            "stockSymbol": self.stock_symbol,
            "layoutId": self.layout_id,
            "isActive": self.is_active,
            "category": self.category.to_dict() if self.category else None,
            "zoneCount": len(self.zones),
            "createdAt": iso(self.created_at),
            "updatedAt": iso(self.updated_at),
        }
        if with_zones:
            d["layout"] = self.layout.to_dict() if self.layout else None
            d["zones"] = [z.to_dict(with_placements=True) for z in self.zones]
        return d


class PageZone(Base):
    __tablename__ = "page_zones"
    __table_args__ = (UniqueConstraint("page_id", "zone_definition_id", name="uq_page_zones_page_zone_def"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    page_id: Mapped[int] = mapped_column(ForeignKey("page_definitions.id", ondelete="CASCADE"), nullable=False)
    zone_definition_id: Mapped[int] = mapped_column(ForeignKey("zone_definitions.id", ondelete="CASCADE"), nullable=False)
    custom_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_fill_rules: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    page: Mapped[PageDefinition] = relationship(back_populates="zones")
    zone_definition: Mapped[ZoneDefinition] = relationship(lazy="joined")
    placements: Mapped[list["ContentPlacement"]] = relationship(
        back_populates="zone",
        cascade="all, delete-orphan",
        order_by="ContentPlacement.position",
        lazy="selectin",
    )

    def to_dict(self, *, with_placements: bool = False) -> dict:
        d = {
            "id": self.id,
            "pageId": self.page_id,
            "zoneDefinitionId": self.zone_definition_id,
            "customName": self.custom_name,
            "isEnabled": self.is_enabled,
            "sortOrder": self.sort_order,
            "autoFillRules": self.auto_fill_rules,
            "zoneDefinition": self.zone_definition.to_dict() if self.zone_definition else None,
        }
        if with_placements:
            d["placements"] = [p.to_dict() for p in self.placements]
        return d


class ContentPlacement(Base):
    __tablename__ = "content_placements"
    __table_args__ = (UniqueConstraint("zone_id", "position", name="uq_content_placements_zone_position"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    zone_id: Mapped[int] = mapped_column(ForeignKey("page_zones.id", ondelete="CASCADE"), nullable=False)
    content_type: Mapped[str] = mapped_column(String(16), nullable=False)  # ARTICLE | VIDEO | CUSTOM
    article_id: Mapped[int | None] = mapped_column(ForeignKey("articles.id", ondelete="CASCADE"), nullable=True)
    video_id: Mapped[int | None] = mapped_column(ForeignKey("videos.id", ondelete="CASCADE"), nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    is_pinned: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    custom_content: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    zone: Mapped[PageZone] = relationship(back_populates="placements")
    article: Mapped["Article | None"] = relationship("Article", lazy="joined")
    video: Mapped["Video | None"] = relationship("Video", lazy="joined")

    def is_live(self, now: datetime) -> bool:
        if self.start_date and self.start_date > now:
            return False
        if self.end_date and self.end_date < now:
            return False
        return True

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "zoneId": self.zone_id,
            "contentType": self.content_type,
            "articleId": self.article_id,
            "videoId": self.video_id,
            "position": self.position,
            "isPinned": self.is_pinned,
            "startDate": iso(self.start_date),
            "endDate": iso(self.end_date),
            "customContent": self.custom_content,
            "article": self.article.to_summary() if self.article else None,
            "video": self.video.to_dict() if self.video else None,
        }


class AutoFillRule(Base):
    __tablename__ = "auto_fill_rules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    config: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "config": self.config,
            "isActive": self.is_active,
        }
