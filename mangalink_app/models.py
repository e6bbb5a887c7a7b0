"""
================================================================================
MangaLink v1.0 - Database Models
================================================================================
One row per leaf key. Every write touches exactly one row, so two writers
updating different targets of the same work never overwrite each other.

TABLES:
  - manual_links:  (platform, slug, target_platform) -> target_slug
                   User-asserted, never expires, wins over auto links.
  - auto_links:    (platform, slug, target_platform) -> target_slug | NULL
                   Discovered by search. NULL target_slug is the negative
                   marker ("searched, nothing matched"). Always expires.
  - metrics_cache: (platform, slug) -> available/consumed units + expiry.
                   Keyed by the TARGET work, shared by every source that
                   maps to it.
  - reading_progress: locally recorded consumption for platforms whose API
                   exposes no bookmark.
  - platform_tokens: bearer tokens used to read remote bookmarks.
================================================================================
"""

from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Float, Text, Index
from sqlalchemy.orm import declarative_base, declared_attr

Base = declarative_base()

# =============================================================================
# MIXINS
# =============================================================================

class TimestampMixin:
    """Adds created_at and updated_at timestamps to models."""
    @declared_attr
    def created_at(cls):
        return Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)

    @declared_attr
    def updated_at(cls):
        return Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

# =============================================================================
# IDENTITY MAPPINGS
# =============================================================================

class ManualLink(Base, TimestampMixin):
    """User-asserted mapping. No expiry."""
    __tablename__ = 'manual_links'

    platform = Column(String(50), primary_key=True)
    slug = Column(String(255), primary_key=True)
    target_platform = Column(String(50), primary_key=True)
    target_slug = Column(String(255), nullable=False)

    def __repr__(self):
        return f"<ManualLink {self.platform}/{self.slug} -> {self.target_platform}/{self.target_slug}>"


class AutoLink(Base, TimestampMixin):
    """Discovered mapping. target_slug NULL means nothing matched."""
    __tablename__ = 'auto_links'

    platform = Column(String(50), primary_key=True)
    slug = Column(String(255), primary_key=True)
    target_platform = Column(String(50), primary_key=True)
    target_slug = Column(String(255), nullable=True)
    expires = Column(Float, nullable=False)  # epoch seconds

    __table_args__ = (
        Index('idx_auto_links_expires', 'expires'),
    )

    @property
    def is_negative(self) -> bool:
        return self.target_slug is None

    def __repr__(self):
        target = self.target_slug if self.target_slug is not None else '<none>'
        return f"<AutoLink {self.platform}/{self.slug} -> {self.target_platform}/{target}>"

# =============================================================================
# CACHES & LOCAL STATE
# =============================================================================

class MetricsCacheEntry(Base, TimestampMixin):
    """Cached unit counts for one work on one platform."""
    __tablename__ = 'metrics_cache'

    platform = Column(String(50), primary_key=True)
    slug = Column(String(255), primary_key=True)
    available_units = Column(Float, nullable=False, default=0)
    consumed_units = Column(Float, nullable=False, default=0)
    expires = Column(Float, nullable=False)

    __table_args__ = (
        Index('idx_metrics_cache_expires', 'expires'),
    )


class ReadingProgress(Base, TimestampMixin):
    """Units consumed as recorded locally."""
    __tablename__ = 'reading_progress'

    platform = Column(String(50), primary_key=True)
    slug = Column(String(255), primary_key=True)
    units = Column(Float, nullable=False, default=0)


class PlatformToken(Base, TimestampMixin):
    """Bearer token for an authenticated platform API."""
    __tablename__ = 'platform_tokens'

    platform = Column(String(50), primary_key=True)
    token = Column(Text, nullable=False)
