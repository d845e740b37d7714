"""
Persistence gateway for products and analysis rows.

``AnalysisStore`` is the narrow interface the orchestrator talks to.
``InMemoryAnalysisStore`` backs tests and single-process demos; the
SQLAlchemy implementation lives in ``sql_store``.

The processing lease records who took it and when. A lease older than the
store's TTL counts as abandoned (its worker died mid-run) and may be taken
over by the next caller.
"""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from review_insights.models.schemas import Analysis, AnalysisStatus, Product, utcnow

DEFAULT_LEASE_TTL_SECONDS = 3600

Clock = Callable[[], datetime]


class BrandOwnershipError(ValueError):
    """The brand already belongs to another user."""

    def __init__(self, brand_id: str):
        super().__init__(f"Brand {brand_id} belongs to another user")
        self.brand_id = brand_id


class AnalysisStore:
    """Abstract interface for product and analysis persistence."""

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Load a product with its competitors and processing flag."""
        raise NotImplementedError

    async def add_product(self, product: Product, brand_name: str = "") -> None:
        """
        Create or replace a product (and its competitors).

        Raises:
            BrandOwnershipError: If the brand exists under another user
        """
        raise NotImplementedError

    async def acquire_processing(self, product_id: str, owner: Optional[str] = None) -> bool:
        """
        Atomically take the product's processing lease.

        Succeeds when the lease is free or older than the TTL; False when
        another holder's lease is still live or the product is unknown.
        """
        raise NotImplementedError

    async def release_processing(self, product_id: str, owner: Optional[str] = None) -> None:
        """Clear the lease; with ``owner`` only if that owner still holds it."""
        raise NotImplementedError

    async def upsert_analysis(
        self,
        product_id: str,
        analysis_type: str,
        status: AnalysisStatus | str,
        data: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Analysis:
        """
        Create or update the ``(product_id, analysis_type)`` row.

        ``data=None`` keeps the stored data (``{}`` for a new row); ``error``
        always replaces the stored error.
        """
        raise NotImplementedError

    async def update_analysis_data(
        self,
        product_id: str,
        analysis_type: str,
        data: dict[str, Any],
    ) -> None:
        """Replace only the data of an existing row."""
        raise NotImplementedError

    async def get_analysis(self, product_id: str, analysis_type: str) -> Optional[Analysis]:
        raise NotImplementedError

    async def list_analyses(self, product_id: str) -> list[Analysis]:
        raise NotImplementedError

    async def close(self) -> None:
        """Release any held connections."""
        return None


class InMemoryAnalysisStore(AnalysisStore):
    """In-memory store for testing."""

    def __init__(
        self,
        lease_ttl_seconds: float = DEFAULT_LEASE_TTL_SECONDS,
        clock: Clock = utcnow,
    ):
        self.lease_ttl = timedelta(seconds=lease_ttl_seconds)
        self._clock = clock
        self._products: dict[str, Product] = {}
        self._brand_owners: dict[str, str] = {}
        self._leases: dict[str, tuple[Optional[str], datetime]] = {}
        self._analyses: dict[tuple[str, str], Analysis] = {}
        self._lock = asyncio.Lock()

    def _lease_is_live(self, product_id: str) -> bool:
        lease = self._leases.get(product_id)
        return lease is not None and self._clock() - lease[1] < self.lease_ttl

    async def get_product(self, product_id: str) -> Optional[Product]:
        product = self._products.get(product_id)
        if product is None:
            return None
        return product.model_copy(
            deep=True, update={"is_processing": self._lease_is_live(product_id)},
        )

    async def add_product(self, product: Product, brand_name: str = "") -> None:
        owner = self._brand_owners.setdefault(product.brand_id, product.user_id)
        if owner != product.user_id:
            raise BrandOwnershipError(product.brand_id)
        self._products[product.id] = product.model_copy(deep=True)

    async def acquire_processing(self, product_id: str, owner: Optional[str] = None) -> bool:
        async with self._lock:
            if product_id not in self._products or self._lease_is_live(product_id):
                return False
            self._leases[product_id] = (owner, self._clock())
            return True

    async def release_processing(self, product_id: str, owner: Optional[str] = None) -> None:
        async with self._lock:
            lease = self._leases.get(product_id)
            if lease is not None and (owner is None or lease[0] == owner):
                del self._leases[product_id]

    async def upsert_analysis(
        self,
        product_id: str,
        analysis_type: str,
        status: AnalysisStatus | str,
        data: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Analysis:
        key = (product_id, analysis_type)
        existing = self._analyses.get(key)
        if data is None:
            data = existing.data if existing else {}

        row = Analysis(
            product_id=product_id,
            type=analysis_type,
            status=AnalysisStatus(status),
            data=copy.deepcopy(data),
            error=error,
            updated_at=utcnow(),
        )
        self._analyses[key] = row
        return row.model_copy(deep=True)

    async def update_analysis_data(
        self,
        product_id: str,
        analysis_type: str,
        data: dict[str, Any],
    ) -> None:
        row = self._analyses.get((product_id, analysis_type))
        if row is not None:
            row.data = copy.deepcopy(data)
            row.updated_at = utcnow()

    async def get_analysis(self, product_id: str, analysis_type: str) -> Optional[Analysis]:
        row = self._analyses.get((product_id, analysis_type))
        return row.model_copy(deep=True) if row else None

    async def list_analyses(self, product_id: str) -> list[Analysis]:
        return [
            row.model_copy(deep=True)
            for (pid, _), row in self._analyses.items()
            if pid == product_id
        ]
