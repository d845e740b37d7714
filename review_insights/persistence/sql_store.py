"""
SQLAlchemy-backed analysis store.

Tables: ``brands``, ``products``, ``competitors`` and ``analyses`` (unique on
``product_id, type``). The processing lease is a compare-and-set update on
``products`` that succeeds when the lease is free or has outlived its TTL.

Sessions are synchronous; every public coroutine runs its session work in a
worker thread so database round trips never block the event loop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    or_,
    select,
    update,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

from review_insights.models.schemas import (
    Analysis,
    AnalysisStatus,
    Competitor,
    Product,
    utcnow,
)
from review_insights.persistence.store import (
    DEFAULT_LEASE_TTL_SECONDS,
    AnalysisStore,
    BrandOwnershipError,
    Clock,
)
from review_insights.utils.logger import get_logger

logger = get_logger(__name__)

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_store_engine(database_url: str) -> Engine:
    """Engine whose connections may be used from worker threads."""
    url = make_url(database_url)
    kwargs: dict[str, Any] = {"future": True}
    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            # One shared connection, otherwise each thread sees its own empty database
            kwargs["poolclass"] = StaticPool
    return create_engine(url, **kwargs)


# =============================================================================
# Tables
# =============================================================================

class BrandRow(Base):
    __tablename__ = "brands"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False, default="")
    user_id = Column(String(64), nullable=False, index=True)

    products = relationship("ProductRow", back_populates="brand")


class ProductRow(Base):
    __tablename__ = "products"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    brand_id = Column(String(64), ForeignKey("brands.id"), nullable=False, index=True)
    is_processing = Column(Boolean, nullable=False, default=False)
    processing_since = Column(DateTime(timezone=True), nullable=True)
    processing_owner = Column(String(64), nullable=True)

    brand = relationship("BrandRow", back_populates="products")
    competitors = relationship(
        "CompetitorRow", back_populates="product", cascade="all, delete-orphan",
    )


class CompetitorRow(Base):
    __tablename__ = "competitors"

    id = Column(String(64), primary_key=True)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False, index=True)
    name = Column(String(255), nullable=False)

    product = relationship("ProductRow", back_populates="competitors")


class AnalysisRow(Base):
    __tablename__ = "analyses"
    __table_args__ = (
        UniqueConstraint("product_id", "type", name="uq_analyses_product_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(64), ForeignKey("products.id"), nullable=False, index=True)
    type = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default=AnalysisStatus.PENDING.value)
    data = Column(JSON, nullable=False, default=dict)
    error = Column(Text, nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_now, onupdate=_now)

    def to_model(self) -> Analysis:
        return Analysis(
            product_id=self.product_id,
            type=self.type,
            status=AnalysisStatus(self.status),
            data=dict(self.data or {}),
            error=self.error,
            updated_at=_as_utc(self.updated_at),
        )


# =============================================================================
# Store
# =============================================================================

class SQLAnalysisStore(AnalysisStore):
    """
    Relational store using a synchronous SQLAlchemy engine.

    Example:
        >>> store = SQLAnalysisStore("sqlite:///review_insights.db")
        >>> await store.acquire_processing("p-1", owner="worker-a")
        True
    """

    def __init__(
        self,
        database_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        lease_ttl_seconds: float = DEFAULT_LEASE_TTL_SECONDS,
        clock: Clock = utcnow,
    ):
        if engine is None:
            if database_url is None:
                raise ValueError("database_url or engine is required")
            engine = create_store_engine(database_url)
        self.engine = engine
        self.lease_ttl = timedelta(seconds=lease_ttl_seconds)
        self._clock = clock
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)
        Base.metadata.create_all(engine)

    def _session(self) -> Session:
        return self._session_factory()

    def _lease_is_live(self, row: ProductRow) -> bool:
        if not row.is_processing:
            return False
        since = _as_utc(row.processing_since)
        return since is not None and self._clock() - since < self.lease_ttl

    # =========================================================================
    # Products & Lease
    # =========================================================================

    def _get_product(self, product_id: str) -> Optional[Product]:
        with self._session() as session:
            row = session.get(ProductRow, product_id)
            if row is None:
                return None
            return Product(
                id=row.id,
                name=row.name,
                brand_id=row.brand_id,
                user_id=row.brand.user_id,
                is_processing=self._lease_is_live(row),
                competitors=[
                    Competitor(id=c.id, name=c.name, product_id=row.id)
                    for c in row.competitors
                ],
            )

    async def get_product(self, product_id: str) -> Optional[Product]:
        return await asyncio.to_thread(self._get_product, product_id)

    def _add_product(self, product: Product, brand_name: str) -> None:
        with self._session() as session:
            brand = session.get(BrandRow, product.brand_id)
            if brand is None:
                session.add(BrandRow(id=product.brand_id, name=brand_name, user_id=product.user_id))
            elif brand.user_id != product.user_id:
                raise BrandOwnershipError(product.brand_id)
            elif brand_name:
                brand.name = brand_name

            row = session.get(ProductRow, product.id)
            if row is None:
                row = ProductRow(id=product.id, brand_id=product.brand_id, name=product.name)
                session.add(row)
            row.name = product.name
            row.brand_id = product.brand_id
            existing = {c.id: c for c in row.competitors}
            competitors = []
            for competitor in product.competitors:
                competitor_row = existing.get(competitor.id) or CompetitorRow(id=competitor.id)
                competitor_row.name = competitor.name
                competitors.append(competitor_row)
            row.competitors = competitors
            session.commit()

    async def add_product(self, product: Product, brand_name: str = "") -> None:
        await asyncio.to_thread(self._add_product, product, brand_name)

    def _acquire_processing(self, product_id: str, owner: Optional[str]) -> bool:
        now = self._clock()
        with self._session() as session:
            result = session.execute(
                update(ProductRow)
                .where(
                    ProductRow.id == product_id,
                    or_(
                        ProductRow.is_processing.is_(False),
                        ProductRow.processing_since.is_(None),
                        ProductRow.processing_since < now - self.lease_ttl,
                    ),
                )
                .values(is_processing=True, processing_since=now, processing_owner=owner)
            )
            session.commit()
            return result.rowcount == 1

    async def acquire_processing(self, product_id: str, owner: Optional[str] = None) -> bool:
        return await asyncio.to_thread(self._acquire_processing, product_id, owner)

    def _release_processing(self, product_id: str, owner: Optional[str]) -> None:
        statement = update(ProductRow).where(ProductRow.id == product_id)
        if owner is not None:
            statement = statement.where(ProductRow.processing_owner == owner)
        with self._session() as session:
            session.execute(
                statement.values(is_processing=False, processing_since=None, processing_owner=None)
            )
            session.commit()

    async def release_processing(self, product_id: str, owner: Optional[str] = None) -> None:
        await asyncio.to_thread(self._release_processing, product_id, owner)

    # =========================================================================
    # Analyses
    # =========================================================================

    def _find(self, session: Session, product_id: str, analysis_type: str) -> Optional[AnalysisRow]:
        return session.execute(
            select(AnalysisRow).where(
                AnalysisRow.product_id == product_id,
                AnalysisRow.type == analysis_type,
            )
        ).scalar_one_or_none()

    def _upsert_analysis(
        self,
        product_id: str,
        analysis_type: str,
        status: str,
        data: Optional[dict[str, Any]],
        error: Optional[str],
    ) -> Analysis:
        for attempt in range(2):
            with self._session() as session:
                row = self._find(session, product_id, analysis_type)
                if row is None:
                    row = AnalysisRow(
                        product_id=product_id,
                        type=analysis_type,
                        data=data if data is not None else {},
                    )
                    session.add(row)
                elif data is not None:
                    row.data = data
                row.status = status
                row.error = error
                row.updated_at = _now()
                try:
                    session.commit()
                except IntegrityError:
                    # Concurrent insert of the same (product, type); retry as an update
                    session.rollback()
                    if attempt == 1:
                        raise
                    continue
                return row.to_model()

        raise RuntimeError("unreachable")

    async def upsert_analysis(
        self,
        product_id: str,
        analysis_type: str,
        status: AnalysisStatus | str,
        data: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Analysis:
        return await asyncio.to_thread(
            self._upsert_analysis,
            product_id,
            analysis_type,
            AnalysisStatus(status).value,
            data,
            error,
        )

    def _update_analysis_data(self, product_id: str, analysis_type: str, data: dict[str, Any]) -> None:
        with self._session() as session:
            row = self._find(session, product_id, analysis_type)
            if row is None:
                logger.warning("No analysis row to update", product_id=product_id, analysis_type=analysis_type)
                return
            row.data = data
            row.updated_at = _now()
            session.commit()

    async def update_analysis_data(
        self,
        product_id: str,
        analysis_type: str,
        data: dict[str, Any],
    ) -> None:
        await asyncio.to_thread(self._update_analysis_data, product_id, analysis_type, data)

    def _get_analysis(self, product_id: str, analysis_type: str) -> Optional[Analysis]:
        with self._session() as session:
            row = self._find(session, product_id, analysis_type)
            return row.to_model() if row else None

    async def get_analysis(self, product_id: str, analysis_type: str) -> Optional[Analysis]:
        return await asyncio.to_thread(self._get_analysis, product_id, analysis_type)

    def _list_analyses(self, product_id: str) -> list[Analysis]:
        with self._session() as session:
            rows = session.execute(
                select(AnalysisRow)
                .where(AnalysisRow.product_id == product_id)
                .order_by(AnalysisRow.id)
            ).scalars()
            return [row.to_model() for row in rows]

    async def list_analyses(self, product_id: str) -> list[Analysis]:
        return await asyncio.to_thread(self._list_analyses, product_id)

    async def close(self) -> None:
        await asyncio.to_thread(self.engine.dispose)
