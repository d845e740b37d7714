"""
Analysis orchestrator using LangGraph.

Runs the analysis catalogue for a product: per type it selects reviews,
executes the analysis, persists the outcome and moves on. One failing type
never aborts the run.

Graph structure:
    load_product -> run_step -> run_step -> ... -> finalize -> END
         |                                            ^
         +------------------(fatal)-------------------+

Features:
    - Stateful execution with LangGraph StateGraph
    - Accumulated per-step outcomes (completed / failed / skipped / no_reviews)
    - Single-flight per product: in-process lock plus persisted lease
    - Pacing between analyses to stay under provider rate limits
    - Persona portrait enrichment after personas / stp completions
"""

import asyncio
import copy
import operator
from contextlib import asynccontextmanager
from typing import Annotated, Any, Awaitable, Callable, Literal, Optional, TypedDict
from uuid import uuid4

from langgraph.graph import END, StateGraph

from review_insights.analyzers.analysis_executor import AnalysisExecutor
from review_insights.analyzers.competitor_runner import CompetitorRunner
from review_insights.config.settings import Settings, get_settings
from review_insights.models.schemas import (
    ANALYSIS_CATALOGUE,
    COMPETITOR_DEPENDENT_TYPES,
    SMART_COMPETITION_PREREQUISITES,
    AnalysisResult,
    AnalysisStatus,
    AnalysisStatusEntry,
    AnalysisStatusReport,
    AnalysisType,
    ErrorType,
    Product,
    ReprocessResult,
    Review,
    RunSummary,
    SelectionRequest,
    StepOutcome,
    StepOutcomeKind,
    expected_types_for,
)
from review_insights.persistence.sql_store import SQLAnalysisStore
from review_insights.persistence.store import AnalysisStore
from review_insights.selection.profiles import DEFAULT_SELECTION_CONFIG, SelectionConfig
from review_insights.selection.selector import ReviewSelector
from review_insights.services.embedding_service import EmbeddingService
from review_insights.services.image_service import PersonaImageService
from review_insights.services.llm_service import ClaudeService
from review_insights.services.vector_index import VectorIndex
from review_insights.utils.logger import LogContext, get_logger
from review_insights.utils.retry import ErrorHandler

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

CATALOGUE_TYPES: tuple[str, ...] = tuple(t.value for t in ANALYSIS_CATALOGUE)

# load_product + one run_step per type + finalize, with headroom
RECURSION_LIMIT = len(CATALOGUE_TYPES) + 5

PERSONA_ENRICHED_TYPES = frozenset({AnalysisType.PERSONAS.value, AnalysisType.STP.value})


# =============================================================================
# Run State Definition (TypedDict for LangGraph)
# =============================================================================

class RunStateDict(TypedDict, total=False):
    """
    TypedDict-based run state for LangGraph.

    Uses Annotated with operator.add for list accumulation, so each node
    returns only the items it adds.
    """
    # Identifiers
    run_id: str
    product_id: str
    user_id: str

    # Loaded product (serialized Product)
    product: dict

    # Loop position in the catalogue
    step_index: int

    # Accumulators
    completed_types: Annotated[list[str], operator.add]
    errors: Annotated[list[str], operator.add]
    outcomes: Annotated[list[dict], operator.add]

    # Status
    fatal: bool
    success: bool


# =============================================================================
# Error Classes
# =============================================================================

class PipelineError(Exception):
    """Base exception for orchestration errors."""

    def __init__(
        self,
        message: str,
        error_type: ErrorType = ErrorType.INTERNAL_ERROR,
        details: dict | None = None,
        recoverable: bool = False,
    ):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.details = details or {}
        self.recoverable = recoverable


class ProductNotFoundError(PipelineError):
    """The product does not exist."""

    def __init__(self, product_id: str):
        super().__init__(
            message="Product not found",
            error_type=ErrorType.NOT_FOUND_ERROR,
            details={"product_id": product_id},
        )


class OwnershipError(PipelineError):
    """The product's brand belongs to another user."""

    def __init__(self, product_id: str, user_id: str):
        super().__init__(
            message="Unauthorized: Product does not belong to user",
            error_type=ErrorType.OWNERSHIP_ERROR,
            details={"product_id": product_id, "user_id": user_id},
        )


class ProcessingConflictError(PipelineError):
    """Another run already holds the product."""

    def __init__(self, product_id: str):
        super().__init__(
            message=f"Analysis already in progress for product {product_id}",
            error_type=ErrorType.CONFLICT_ERROR,
            details={"product_id": product_id},
            recoverable=True,
        )


# =============================================================================
# Step Planning
# =============================================================================

def plan_step(
    analysis_type: str,
    product: Product,
    completed_types: set[str] | frozenset[str],
) -> tuple[bool, Optional[str]]:
    """
    Decide whether a catalogue type should run for a product.

    Args:
        analysis_type: Catalogue type about to run
        product: Product with its competitors
        completed_types: Types whose rows are currently ``completed``

    Returns:
        ``(True, None)`` to run, or ``(False, reason)`` to skip without
        writing a row.
    """
    if analysis_type in COMPETITOR_DEPENDENT_TYPES and not product.has_competitors:
        return False, "no competitors found"

    if analysis_type == AnalysisType.SMART_COMPETITION.value:
        missing = [t for t in SMART_COMPETITION_PREREQUISITES if t not in completed_types]
        if missing:
            return False, f"missing required analyses: {', '.join(missing)}"

    return True, None


def missing_prerequisites(analysis_type: str, completed_types: set[str]) -> list[str]:
    """Prerequisites of ``analysis_type`` that are not yet completed."""
    if analysis_type != AnalysisType.SMART_COMPETITION.value:
        return []
    return [t for t in SMART_COMPETITION_PREREQUISITES if t not in completed_types]


# =============================================================================
# Main Orchestrator Class
# =============================================================================

ProgressCallback = Callable[[str, int, int], None]


class AnalysisOrchestrator:
    """
    Runs the analysis catalogue for products.

    Example:
        >>> async with AnalysisOrchestrator() as orchestrator:
        ...     summary = await orchestrator.run_all("prod-1", "user-1")
        ...     print(summary.completed_types)

    Attributes:
        settings: Application settings
        store: Persistence gateway for products and analysis rows
        pacing_seconds: Pause between executed analyses
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[AnalysisStore] = None,
        selector: Optional[ReviewSelector] = None,
        executor: Optional[AnalysisExecutor] = None,
        competitor_runner: Optional[CompetitorRunner] = None,
        image_service: Optional[PersonaImageService] = None,
        selection_config: Optional[SelectionConfig] = None,
        pacing_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        progress_callback: Optional[ProgressCallback] = None,
    ):
        """
        Initialize the orchestrator.

        Components left as None are built from settings on first use.

        Args:
            settings: Application settings (uses default if not provided)
            store: Persistence gateway
            selector: Review selector
            executor: Analysis executor
            competitor_runner: Competitor sub-analysis runner
            image_service: Persona portrait service (None disables enrichment
                unless settings enable it)
            selection_config: Review counts per type
            pacing_seconds: Pause between analyses (defaults to settings)
            sleep: Awaitable sleep, replaceable in tests
            progress_callback: Optional callback(message, done, total)
        """
        self.settings = settings or get_settings()
        self.selection_config = selection_config or DEFAULT_SELECTION_CONFIG
        self.pacing_seconds = (
            pacing_seconds if pacing_seconds is not None
            else self.settings.analysis_pacing_seconds
        )
        self.progress_callback = progress_callback
        self._sleep = sleep

        self._store = store
        self._selector = selector
        self._executor = executor
        self._competitor_runner = competitor_runner
        self._image_service = image_service

        # Clients created here are closed by close()
        self._owned: list[Any] = []

        # Identifies this orchestrator as the holder of the leases it takes
        self.lease_owner = uuid4().hex
        self._locks: dict[str, asyncio.Lock] = {}
        self._leases: set[str] = set()

        self._graph = self._build_graph()

    async def __aenter__(self):
        """Async context manager entry."""
        self._initialize_services()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    def _initialize_services(self) -> None:
        """Build missing components from settings."""
        if self._store is None:
            self._store = SQLAnalysisStore(
                self.settings.database_url,
                lease_ttl_seconds=self.settings.processing_lease_ttl_seconds,
            )
            self._owned.append(self._store)

        if self._selector is None:
            index = VectorIndex(self.settings)
            embedder = EmbeddingService(self.settings)
            self._owned.extend([index, embedder])
            self._selector = ReviewSelector(index, embedder, self.selection_config)

        if self._executor is None:
            llm_service = ClaudeService(self.settings)
            self._owned.append(llm_service)
            self._executor = AnalysisExecutor(llm_service)

        if self._competitor_runner is None:
            self._competitor_runner = CompetitorRunner(self._selector, self._executor)

        if (
            self._image_service is None
            and self.settings.persona_images_enabled
            and self.settings.openai_api_key is not None
        ):
            self._image_service = PersonaImageService(self.settings)
            self._owned.append(self._image_service)

    @property
    def store(self) -> AnalysisStore:
        if self._store is None:
            raise RuntimeError("Orchestrator not initialized. Use async context manager.")
        return self._store

    @property
    def selector(self) -> ReviewSelector:
        if self._selector is None:
            raise RuntimeError("Orchestrator not initialized. Use async context manager.")
        return self._selector

    @property
    def executor(self) -> AnalysisExecutor:
        if self._executor is None:
            raise RuntimeError("Orchestrator not initialized. Use async context manager.")
        return self._executor

    @property
    def competitor_runner(self) -> CompetitorRunner:
        if self._competitor_runner is None:
            self._competitor_runner = CompetitorRunner(self.selector, self.executor)
        return self._competitor_runner

    def _build_graph(self):
        """Build the LangGraph state machine for a full run."""
        graph = StateGraph(RunStateDict)

        graph.add_node("load_product", self._load_product_node)
        graph.add_node("run_step", self._run_step_node)
        graph.add_node("finalize", self._finalize_node)

        graph.set_entry_point("load_product")

        graph.add_conditional_edges(
            "load_product",
            self._route_after_load,
            {
                "run": "run_step",
                "fatal": "finalize",
            },
        )
        graph.add_conditional_edges(
            "run_step",
            self._route_after_step,
            {
                "next": "run_step",
                "done": "finalize",
            },
        )
        graph.add_edge("finalize", END)

        return graph.compile()

    def _route_after_load(self, state: RunStateDict) -> Literal["run", "fatal"]:
        return "fatal" if state.get("fatal") else "run"

    def _route_after_step(self, state: RunStateDict) -> Literal["next", "done"]:
        return "next" if state.get("step_index", 0) < len(CATALOGUE_TYPES) else "done"

    # =========================================================================
    # Shared Helpers
    # =========================================================================

    def _lock_for(self, product_id: str) -> asyncio.Lock:
        return self._locks.setdefault(product_id, asyncio.Lock())

    @asynccontextmanager
    async def _holding(self, product_id: str, lock: asyncio.Lock):
        """Hold a product lock, dropping it from the registry once released."""
        try:
            async with lock:
                yield
        finally:
            # Callers never wait on a held lock, so a released one has no waiters
            if not lock.locked() and self._locks.get(product_id) is lock:
                del self._locks[product_id]

    def _report_progress(self, message: str, done: int, total: int) -> None:
        if self.progress_callback is None:
            return
        try:
            self.progress_callback(message, done, total)
        except Exception as e:
            logger.warning("Progress callback failed", error=str(e))

    async def _load_product(self, product_id: str, user_id: str) -> Product:
        """Load a product and check that ``user_id`` owns it."""
        product = await self.store.get_product(product_id)
        if product is None:
            raise ProductNotFoundError(product_id)
        if product.user_id != user_id:
            raise OwnershipError(product_id, user_id)
        return product

    async def _acquire_lease(self, product_id: str) -> None:
        if not await self.store.acquire_processing(product_id, owner=self.lease_owner):
            raise ProcessingConflictError(product_id)
        self._leases.add(product_id)

    async def _release_lease(self, product_id: str) -> None:
        if product_id not in self._leases:
            return
        self._leases.discard(product_id)
        try:
            await self.store.release_processing(product_id, owner=self.lease_owner)
        except Exception as e:
            logger.error("Failed to release processing lease", product_id=product_id, error=str(e))

    async def _completed_types(self, product_id: str) -> set[str]:
        return {a.type for a in await self.store.list_analyses(product_id) if a.is_completed}

    async def _select_reviews(self, product: Product, analysis_type: str) -> list[Review]:
        return await self.selector.select(SelectionRequest(
            product_id=product.id,
            analysis_type=analysis_type,
            target_count=self.selection_config.review_count_for(analysis_type),
            user_id=product.user_id,
            brand_id=product.brand_id,
            product_name=product.name,
        ))

    async def _existing_analyses(self, product_id: str) -> dict[str, Any]:
        """Completed prerequisite data for smart competition."""
        existing: dict[str, Any] = {}
        for analysis_type in SMART_COMPETITION_PREREQUISITES:
            row = await self.store.get_analysis(product_id, analysis_type)
            if row is not None and row.is_completed and row.data:
                existing[analysis_type] = row.data
        return existing

    async def _analysis_context(self, product: Product, analysis_type: str) -> dict[str, Any]:
        """Extra executor inputs for the competitor-aware types."""
        if analysis_type == AnalysisType.COMPETITION.value and product.has_competitors:
            return {
                "competitor_reviews": await self.selector.fetch_competitor_reviews(
                    product.user_id,
                    product.brand_id,
                    product.id,
                    [c.id for c in product.competitors],
                ),
            }

        if analysis_type == AnalysisType.SMART_COMPETITION.value:
            context: dict[str, Any] = {
                "existing_analyses": await self._existing_analyses(product.id),
            }
            if product.has_competitors:
                context["competitor_analyses"] = await self.competitor_runner.run(product)
            return context

        return {}

    async def _enrich_personas(self, product_id: str, analysis_type: str, data: dict[str, Any]) -> None:
        """Attach persona portraits; failures are logged and dropped."""
        if self._image_service is None or analysis_type not in PERSONA_ENRICHED_TYPES:
            return

        enriched = copy.deepcopy(data)
        try:
            if analysis_type == AnalysisType.PERSONAS.value:
                changed = await self._image_service.enrich_personas(product_id, enriched)
            else:
                changed = await self._image_service.enrich_stp(product_id, enriched)
            if changed:
                await self.store.update_analysis_data(product_id, analysis_type, enriched)
        except Exception as e:
            logger.warning(
                "Persona image enrichment failed",
                product_id=product_id,
                analysis_type=analysis_type,
                error=str(e),
            )

    async def _execute_and_record(
        self,
        product: Product,
        analysis_type: str,
        reviews: list[Review],
    ) -> AnalysisResult:
        """Mark the row processing, execute, then persist the outcome."""
        await self.store.upsert_analysis(product.id, analysis_type, AnalysisStatus.PROCESSING)

        context = await self._analysis_context(product, analysis_type)
        result = await self.executor.execute(analysis_type, reviews, **context)

        if result.succeeded:
            await self.store.upsert_analysis(
                product.id, analysis_type, AnalysisStatus.COMPLETED, data=result.data, error=None,
            )
            await self._enrich_personas(product.id, analysis_type, result.data)
        else:
            await self.store.upsert_analysis(
                product.id, analysis_type, AnalysisStatus.FAILED,
                error=result.error or "Unknown error",
            )
        return result

    async def _record_failure(self, product_id: str, analysis_type: str, error: str) -> None:
        try:
            await self.store.upsert_analysis(
                product_id, analysis_type, AnalysisStatus.FAILED, error=error,
            )
        except Exception as e:
            logger.error(
                "Failed to record analysis failure",
                product_id=product_id,
                analysis_type=analysis_type,
                error=str(e),
            )

    # =========================================================================
    # Node Implementations
    # =========================================================================

    async def _load_product_node(self, state: RunStateDict) -> dict[str, Any]:
        """Node 1: load the product, check ownership, take the lease."""
        product_id = state["product_id"]
        try:
            product = await self._load_product(product_id, state["user_id"])
            await self._acquire_lease(product_id)
        except PipelineError as e:
            logger.error("Run rejected", product_id=product_id, error=e.message, error_type=e.error_type)
            return {"fatal": True, "errors": [e.message]}

        logger.info(
            "Starting analyses",
            product_id=product_id,
            competitors=len(product.competitors),
            expected=len(expected_types_for(product)),
        )
        self._report_progress("Initializing", 0, len(CATALOGUE_TYPES))
        return {"product": product.model_dump(), "step_index": 0}

    async def _run_step_node(self, state: RunStateDict) -> dict[str, Any]:
        """Node 2: run one catalogue type, never raising for per-type failures."""
        index = state.get("step_index", 0)
        analysis_type = CATALOGUE_TYPES[index]
        product = Product.model_validate(state["product"])
        update: dict[str, Any] = {"step_index": index + 1}

        self._report_progress(f"Processing {analysis_type}", index, len(CATALOGUE_TYPES))

        should_run, reason = plan_step(
            analysis_type, product, await self._completed_types(product.id),
        )
        if not should_run:
            logger.info("Skipping analysis", analysis_type=analysis_type, reason=reason)
            update["outcomes"] = [StepOutcome(
                type=analysis_type, outcome=StepOutcomeKind.SKIPPED, detail=reason,
            ).model_dump()]
            return update

        try:
            reviews = await self._select_reviews(product, analysis_type)
            if not reviews:
                message = f"No reviews found for {analysis_type} analysis"
                logger.warning(message, product_id=product.id)
                update["errors"] = [message]
                update["outcomes"] = [StepOutcome(
                    type=analysis_type, outcome=StepOutcomeKind.NO_REVIEWS, detail=message,
                ).model_dump()]
                return update

            result = await self._execute_and_record(product, analysis_type, reviews)
        except Exception as e:
            logger.error(
                "Analysis step error",
                analysis_type=analysis_type,
                error=str(e),
                category=ErrorHandler.categorize_error(e),
            )
            await self._record_failure(product.id, analysis_type, str(e))
            result = AnalysisResult.failed(analysis_type, str(e))

        if result.succeeded:
            update["completed_types"] = [analysis_type]
            update["outcomes"] = [StepOutcome(
                type=analysis_type, outcome=StepOutcomeKind.COMPLETED,
            ).model_dump()]
        else:
            error = result.error or "Unknown error"
            update["errors"] = [f"{analysis_type}: {error}"]
            update["outcomes"] = [StepOutcome(
                type=analysis_type, outcome=StepOutcomeKind.FAILED, detail=error,
            ).model_dump()]

        if index < len(CATALOGUE_TYPES) - 1 and self.pacing_seconds > 0:
            self._report_progress("Rate limiting...", index + 1, len(CATALOGUE_TYPES))
            await self._sleep(self.pacing_seconds)

        return update

    async def _finalize_node(self, state: RunStateDict) -> dict[str, Any]:
        """Node 3: compute overall success."""
        success = not state.get("fatal") and bool(state.get("completed_types"))
        if not state.get("fatal"):
            self._report_progress("Completed", len(CATALOGUE_TYPES), len(CATALOGUE_TYPES))
        logger.info(
            "Analyses finished",
            product_id=state.get("product_id"),
            success=success,
            completed=len(state.get("completed_types", [])),
            errors=len(state.get("errors", [])),
        )
        return {"success": success}

    # =========================================================================
    # Public API
    # =========================================================================

    async def run_all(
        self,
        product_id: str,
        user_id: str,
        run_id: Optional[str] = None,
    ) -> RunSummary:
        """
        Run every applicable catalogue type for a product.

        Args:
            product_id: Product to analyze
            user_id: Caller; must own the product's brand
            run_id: Optional run ID for log correlation

        Returns:
            RunSummary; ``success`` is True when at least one type completed
        """
        self._initialize_services()
        run_id = run_id or str(uuid4())

        lock = self._lock_for(product_id)
        if lock.locked():
            return RunSummary(success=False, errors=[ProcessingConflictError(product_id).message])

        async with self._holding(product_id, lock):
            with LogContext(product_id=product_id, run_id=run_id):
                initial_state: RunStateDict = {
                    "run_id": run_id,
                    "product_id": product_id,
                    "user_id": user_id,
                    "step_index": 0,
                    "completed_types": [],
                    "errors": [],
                    "outcomes": [],
                    "fatal": False,
                }

                try:
                    final_state = await self._graph.ainvoke(
                        initial_state,
                        config={"recursion_limit": RECURSION_LIMIT},
                    )
                except Exception as e:
                    logger.error("Run failed with unexpected error", error=str(e))
                    return RunSummary(success=False, errors=[str(e) or "Unknown error"])
                finally:
                    await self._release_lease(product_id)

        return RunSummary(
            success=final_state.get("success", False),
            completed_types=final_state.get("completed_types", []),
            errors=final_state.get("errors", []),
            outcomes=[StepOutcome.model_validate(o) for o in final_state.get("outcomes", [])],
        )

    async def run_one(
        self,
        product_id: str,
        analysis_type: str,
        user_id: str,
    ) -> ReprocessResult:
        """
        Re-run a single analysis type.

        Competitor and prerequisite skip rules are not applied here; for
        smart competition the missing prerequisites are only logged and the
        analysis proceeds with whatever context exists.
        """
        self._initialize_services()

        if analysis_type not in CATALOGUE_TYPES:
            return ReprocessResult(success=False, error=f"Unknown analysis type: {analysis_type}")

        lock = self._lock_for(product_id)
        if lock.locked():
            return ReprocessResult(success=False, error=ProcessingConflictError(product_id).message)

        async with self._holding(product_id, lock):
            with LogContext(product_id=product_id, analysis_type=analysis_type):
                try:
                    product = await self._load_product(product_id, user_id)
                    await self._acquire_lease(product_id)
                except PipelineError as e:
                    logger.error("Reprocess rejected", error=e.message, error_type=e.error_type)
                    return ReprocessResult(success=False, error=e.message)

                try:
                    missing = missing_prerequisites(
                        analysis_type, await self._completed_types(product_id),
                    )
                    if missing:
                        logger.warning(
                            "Running without required analyses",
                            missing=", ".join(missing),
                        )

                    reviews = await self._select_reviews(product, analysis_type)
                    if not reviews:
                        return ReprocessResult(success=False, error="No reviews found for analysis")

                    result = await self._execute_and_record(product, analysis_type, reviews)
                except Exception as e:
                    logger.error(
                        "Reprocess error",
                        error=str(e),
                        category=ErrorHandler.categorize_error(e),
                    )
                    await self._record_failure(product_id, analysis_type, str(e))
                    return ReprocessResult(success=False, error=str(e) or "Unknown error")
                finally:
                    await self._release_lease(product_id)

        if result.succeeded:
            return ReprocessResult(success=True)
        return ReprocessResult(success=False, error=result.error)

    async def get_status(self, product_id: str, user_id: str) -> AnalysisStatusReport:
        """
        Progress view of a product's analyses.

        Raises:
            ProductNotFoundError: If the product does not exist
            OwnershipError: If ``user_id`` does not own the product
        """
        self._initialize_services()
        product = await self._load_product(product_id, user_id)
        analyses = await self.store.list_analyses(product_id)

        return AnalysisStatusReport(
            is_processing=product.is_processing,
            completed_types=[a.type for a in analyses if a.status == AnalysisStatus.COMPLETED],
            failed_types=[a.type for a in analyses if a.status == AnalysisStatus.FAILED],
            total_expected_types=len(expected_types_for(product)),
            analyses=[
                AnalysisStatusEntry(type=a.type, status=a.status, error=a.error)
                for a in analyses
            ],
        )

    # =========================================================================
    # Cleanup
    # =========================================================================

    async def close(self) -> None:
        """Close clients created by this orchestrator."""
        for component in self._owned:
            try:
                await component.close()
            except Exception as e:
                logger.warning(f"Error closing {type(component).__name__}: {e}")
        self._owned.clear()


# =============================================================================
# Convenience Functions
# =============================================================================

async def analyze_product(
    product_id: str,
    user_id: str,
    settings: Optional[Settings] = None,
) -> RunSummary:
    """
    Convenience function to run every analysis for a product.

    Example:
        >>> summary = await analyze_product("prod-1", "user-1")
        >>> summary.success
        True
    """
    async with AnalysisOrchestrator(settings=settings) as orchestrator:
        return await orchestrator.run_all(product_id, user_id)
