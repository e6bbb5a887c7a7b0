"""
================================================================================
MangaLink v1.0 - Persistent Store
================================================================================
Partitioned key-value store over the SQLAlchemy tables in models.py.

PARTITIONS:
  - ManualMappingStore: user links, no expiry
  - AutoMappingStore:   discovered links (slug or negative marker) with TTL
  - MetricsCacheStore:  unit counts per target work with TTL
  - ProgressStore:      locally recorded consumption
  - TokenStore:         per-platform bearer tokens

EXPIRY:
  Reads treat entries with expires <= now as absent but leave them in place.
  flush_expired() deletes entries with expires < now in a single statement.
  MappingStore.flush_expired() sweeps every expiring partition.

FAILURES:
  Read failures are logged and reported as absent.
  Write failures raise PersistenceError.
================================================================================
"""

import time
import logging
from typing import Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .database import session_scope
from .models import ManualLink, AutoLink, MetricsCacheEntry, ReadingProgress, PlatformToken
from .mapping.models import MappingValue, MetricsEntry, NEGATIVE, is_concrete

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class PersistenceError(RuntimeError):
    """A store write did not reach the database."""


class _Partition:
    """Shared session and failure handling."""

    name = "partition"

    def __init__(self, session_factory: sessionmaker, clock: Clock = time.time):
        self._factory = session_factory
        self._clock = clock

    def _read_failed(self, op: str, exc: Exception) -> None:
        logger.error(f"⚠️ {self.name}.{op} read failed, treating as absent: {exc}")

    def _write_failed(self, op: str, exc: Exception) -> PersistenceError:
        logger.error(f"❌ {self.name}.{op} write failed: {exc}")
        return PersistenceError(f"{self.name}.{op} failed: {exc}")


# =============================================================================
# MAPPINGS
# =============================================================================

class ManualMappingStore(_Partition):
    """(platform, slug, target_platform) -> target slug. Never expires."""

    name = "manual"

    def get(self, platform: str, slug: str, target: str) -> Optional[str]:
        try:
            with session_scope(self._factory) as session:
                row = session.get(ManualLink, (platform, slug, target))
                return row.target_slug if row else None
        except SQLAlchemyError as e:
            self._read_failed("get", e)
            return None

    def set(self, platform: str, slug: str, target: str, target_slug: str) -> None:
        if not is_concrete(target_slug):
            raise ValueError("Manual links must point at a concrete slug")
        try:
            with session_scope(self._factory) as session:
                row = session.get(ManualLink, (platform, slug, target))
                if row is None:
                    session.add(ManualLink(
                        platform=platform, slug=slug,
                        target_platform=target, target_slug=target_slug,
                    ))
                else:
                    row.target_slug = target_slug
        except SQLAlchemyError as e:
            raise self._write_failed("set", e) from e

    def delete(self, platform: str, slug: str, target: str) -> bool:
        try:
            with session_scope(self._factory) as session:
                deleted = session.query(ManualLink).filter_by(
                    platform=platform, slug=slug, target_platform=target
                ).delete()
            return deleted > 0
        except SQLAlchemyError as e:
            raise self._write_failed("delete", e) from e

    def get_all_for_scope(self, platform: str, slug: str) -> Dict[str, str]:
        try:
            with session_scope(self._factory) as session:
                rows = session.query(ManualLink).filter_by(platform=platform, slug=slug).all()
                return {row.target_platform: row.target_slug for row in rows}
        except SQLAlchemyError as e:
            self._read_failed("get_all_for_scope", e)
            return {}


class AutoMappingStore(_Partition):
    """
    (platform, slug, target_platform) -> slug or NEGATIVE, with expiry.

    Positive and negative results carry separate default TTLs.
    """

    name = "auto"

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Clock = time.time,
        ttl: float = 3600,
        negative_ttl: Optional[float] = None,
    ):
        super().__init__(session_factory, clock)
        self.ttl = ttl
        self.negative_ttl = negative_ttl if negative_ttl is not None else ttl

    @staticmethod
    def _value(row: AutoLink) -> MappingValue:
        return NEGATIVE if row.target_slug is None else row.target_slug

    def get(self, platform: str, slug: str, target: str) -> Optional[MappingValue]:
        try:
            with session_scope(self._factory) as session:
                row = session.get(AutoLink, (platform, slug, target))
                if row is None or row.expires <= self._clock():
                    return None
                return self._value(row)
        except SQLAlchemyError as e:
            self._read_failed("get", e)
            return None

    def set(
        self,
        platform: str,
        slug: str,
        target: str,
        value: MappingValue,
        ttl: Optional[float] = None,
    ) -> float:
        """Store a slug or NEGATIVE. Returns the expiry timestamp."""
        if value is not NEGATIVE and not is_concrete(value):
            raise ValueError("Auto links hold a concrete slug or the negative marker")
        if ttl is None:
            ttl = self.negative_ttl if value is NEGATIVE else self.ttl
        expires = self._clock() + ttl
        target_slug = None if value is NEGATIVE else value
        try:
            with session_scope(self._factory) as session:
                row = session.get(AutoLink, (platform, slug, target))
                if row is None:
                    session.add(AutoLink(
                        platform=platform, slug=slug, target_platform=target,
                        target_slug=target_slug, expires=expires,
                    ))
                else:
                    row.target_slug = target_slug
                    row.expires = expires
        except SQLAlchemyError as e:
            raise self._write_failed("set", e) from e
        return expires

    def delete(self, platform: str, slug: str, target: str) -> bool:
        try:
            with session_scope(self._factory) as session:
                deleted = session.query(AutoLink).filter_by(
                    platform=platform, slug=slug, target_platform=target
                ).delete()
            return deleted > 0
        except SQLAlchemyError as e:
            raise self._write_failed("delete", e) from e

    def get_all_for_scope(self, platform: str, slug: str) -> Dict[str, MappingValue]:
        try:
            with session_scope(self._factory) as session:
                rows = session.query(AutoLink).filter(
                    AutoLink.platform == platform,
                    AutoLink.slug == slug,
                    AutoLink.expires > self._clock(),
                ).all()
                return {row.target_platform: self._value(row) for row in rows}
        except SQLAlchemyError as e:
            self._read_failed("get_all_for_scope", e)
            return {}

    def flush_expired(self) -> int:
        try:
            with session_scope(self._factory) as session:
                removed = session.query(AutoLink).filter(
                    AutoLink.expires < self._clock()
                ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            raise self._write_failed("flush_expired", e) from e
        if removed:
            logger.info(f"🗑️ Removed {removed} expired auto links")
        return removed


# =============================================================================
# METRICS CACHE
# =============================================================================

class MetricsCacheStore(_Partition):
    """(target platform, target slug) -> unit counts, with expiry."""

    name = "metrics"

    def __init__(self, session_factory: sessionmaker, clock: Clock = time.time, ttl: float = 3600):
        super().__init__(session_factory, clock)
        self.ttl = ttl

    @staticmethod
    def _entry(row: MetricsCacheEntry) -> MetricsEntry:
        # MetricsEntry clamps consumed to available on construction
        return MetricsEntry(row.available_units, row.consumed_units, row.expires)

    def get(self, platform: str, slug: str) -> Optional[MetricsEntry]:
        try:
            with session_scope(self._factory) as session:
                row = session.get(MetricsCacheEntry, (platform, slug))
                if row is None or row.expires <= self._clock():
                    return None
                return self._entry(row)
        except SQLAlchemyError as e:
            self._read_failed("get", e)
            return None

    def set(
        self,
        platform: str,
        slug: str,
        available_units: float,
        consumed_units: float,
        ttl: Optional[float] = None,
    ) -> MetricsEntry:
        """Write through, clamping consumed to available. Returns the stored entry."""
        entry = MetricsEntry(
            available_units,
            consumed_units,
            self._clock() + (self.ttl if ttl is None else ttl),
        )
        try:
            with session_scope(self._factory) as session:
                row = session.get(MetricsCacheEntry, (platform, slug))
                if row is None:
                    session.add(MetricsCacheEntry(
                        platform=platform, slug=slug,
                        available_units=entry.available_units,
                        consumed_units=entry.consumed_units,
                        expires=entry.expires,
                    ))
                else:
                    row.available_units = entry.available_units
                    row.consumed_units = entry.consumed_units
                    row.expires = entry.expires
        except SQLAlchemyError as e:
            raise self._write_failed("set", e) from e
        return entry

    def delete(self, platform: str, slug: str) -> bool:
        try:
            with session_scope(self._factory) as session:
                deleted = session.query(MetricsCacheEntry).filter_by(
                    platform=platform, slug=slug
                ).delete()
            return deleted > 0
        except SQLAlchemyError as e:
            raise self._write_failed("delete", e) from e

    def get_all_for_scope(self, platform: str) -> Dict[str, MetricsEntry]:
        try:
            with session_scope(self._factory) as session:
                rows = session.query(MetricsCacheEntry).filter(
                    MetricsCacheEntry.platform == platform,
                    MetricsCacheEntry.expires > self._clock(),
                ).all()
                return {row.slug: self._entry(row) for row in rows}
        except SQLAlchemyError as e:
            self._read_failed("get_all_for_scope", e)
            return {}

    def flush_expired(self) -> int:
        try:
            with session_scope(self._factory) as session:
                removed = session.query(MetricsCacheEntry).filter(
                    MetricsCacheEntry.expires < self._clock()
                ).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            raise self._write_failed("flush_expired", e) from e
        if removed:
            logger.info(f"🗑️ Removed {removed} expired metrics entries")
        return removed


# =============================================================================
# LOCAL STATE
# =============================================================================

class ProgressStore(_Partition):
    name = "progress"

    def get(self, platform: str, slug: str) -> float:
        try:
            with session_scope(self._factory) as session:
                row = session.get(ReadingProgress, (platform, slug))
                return row.units if row else 0.0
        except SQLAlchemyError as e:
            self._read_failed("get", e)
            return 0.0

    def set(self, platform: str, slug: str, units: float) -> None:
        if units < 0:
            raise ValueError("Progress cannot be negative")
        try:
            with session_scope(self._factory) as session:
                row = session.get(ReadingProgress, (platform, slug))
                if row is None:
                    session.add(ReadingProgress(platform=platform, slug=slug, units=units))
                else:
                    row.units = units
        except SQLAlchemyError as e:
            raise self._write_failed("set", e) from e

    def delete(self, platform: str, slug: str) -> bool:
        try:
            with session_scope(self._factory) as session:
                deleted = session.query(ReadingProgress).filter_by(platform=platform, slug=slug).delete()
            return deleted > 0
        except SQLAlchemyError as e:
            raise self._write_failed("delete", e) from e


class TokenStore(_Partition):
    name = "tokens"

    def get(self, platform: str) -> Optional[str]:
        try:
            with session_scope(self._factory) as session:
                row = session.get(PlatformToken, platform)
                return row.token if row else None
        except SQLAlchemyError as e:
            self._read_failed("get", e)
            return None

    def set(self, platform: str, token: str) -> None:
        try:
            with session_scope(self._factory) as session:
                row = session.get(PlatformToken, platform)
                if row is None:
                    session.add(PlatformToken(platform=platform, token=token))
                else:
                    row.token = token
        except SQLAlchemyError as e:
            raise self._write_failed("set", e) from e

    def delete(self, platform: str) -> bool:
        try:
            with session_scope(self._factory) as session:
                deleted = session.query(PlatformToken).filter_by(platform=platform).delete()
            return deleted > 0
        except SQLAlchemyError as e:
            raise self._write_failed("delete", e) from e


# =============================================================================
# FACADE
# =============================================================================

class MappingStore:
    """All partitions over one session factory and one clock."""

    def __init__(
        self,
        session_factory: sessionmaker,
        clock: Clock = time.time,
        auto_ttl: float = 3600,
        negative_ttl: Optional[float] = None,
        metrics_ttl: float = 3600,
    ):
        self.manual = ManualMappingStore(session_factory, clock)
        self.auto = AutoMappingStore(session_factory, clock, ttl=auto_ttl, negative_ttl=negative_ttl)
        self.metrics = MetricsCacheStore(session_factory, clock, ttl=metrics_ttl)
        self.progress = ProgressStore(session_factory, clock)
        self.tokens = TokenStore(session_factory, clock)

    @classmethod
    def from_settings(cls, session_factory: sessionmaker, settings, clock: Clock = time.time) -> "MappingStore":
        return cls(
            session_factory,
            clock=clock,
            auto_ttl=settings.auto_mapping_ttl,
            negative_ttl=settings.negative_mapping_ttl,
            metrics_ttl=settings.metrics_ttl,
        )

    def flush_expired(self) -> Dict[str, int]:
        """Sweep every expiring partition."""
        return {
            "auto": self.auto.flush_expired(),
            "metrics": self.metrics.flush_expired(),
        }
