"""
Integration tests for the CLI using Click's CliRunner.
"""

from unittest.mock import AsyncMock, patch

import pytest
from click.testing import CliRunner

from review_insights.main import cli
from review_insights.models.schemas import (
    AnalysisStatus,
    AnalysisStatusEntry,
    AnalysisStatusReport,
    NamespaceStats,
    ReprocessResult,
    RunSummary,
)
from review_insights.persistence.store import BrandOwnershipError
from review_insights.pipeline.orchestrator import OwnershipError

# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def mock_orchestrator(product):
    """Patches the orchestrator class and its async context manager."""
    instance = AsyncMock()
    instance.__aenter__.return_value = instance
    instance.__aexit__.return_value = None

    instance.run_all.return_value = RunSummary(
        success=True,
        completed_types=["product_description", "sentiment"],
        errors=["No reviews found for swot analysis"],
    )
    instance.run_one.return_value = ReprocessResult(success=True)
    instance.get_status.return_value = AnalysisStatusReport(
        is_processing=False,
        completed_types=["sentiment"],
        failed_types=["swot"],
        total_expected_types=11,
        analyses=[
            AnalysisStatusEntry(type="sentiment", status=AnalysisStatus.COMPLETED),
            AnalysisStatusEntry(type="swot", status=AnalysisStatus.FAILED, error="timeout"),
        ],
    )
    instance.store.get_product.return_value = product
    instance.selector.index.store_reviews.side_effect = lambda namespace, reviews, embedder: reviews
    instance.selector.index.delete_product_reviews.return_value = 4
    instance.selector.index.namespace_stats.return_value = NamespaceStats(
        namespace="user_user-1_brand_brand-1",
        exists=True,
        review_count=14,
        product_breakdown={"prod-1": 13, "prod-2": 1},
        version_breakdown={"v1": 14},
    )

    with patch("review_insights.main.AnalysisOrchestrator", return_value=instance) as mock_cls:
        mock_cls.instance = instance
        yield mock_cls


# =============================================================================
# run
# =============================================================================

def test_run_success(runner, mock_orchestrator):
    result = runner.invoke(cli, ["run", "prod-1", "--user", "user-1"])

    assert result.exit_code == 0, result.output
    assert "Analysis Summary" in result.output
    assert "Success" in result.output
    assert "No reviews found for swot analysis" in result.output
    mock_orchestrator.instance.run_all.assert_awaited_once_with("prod-1", "user-1")


def test_run_passes_pacing(runner, mock_orchestrator):
    runner.invoke(cli, ["run", "prod-1", "--user", "user-1", "--pacing", "2.5"])

    assert mock_orchestrator.call_args.kwargs["pacing_seconds"] == 2.5


def test_run_unsuccessful_exits_nonzero(runner, mock_orchestrator):
    mock_orchestrator.instance.run_all.return_value = RunSummary(
        success=False, errors=["Product not found"],
    )

    result = runner.invoke(cli, ["run", "prod-1", "--user", "user-1"])

    assert result.exit_code == 1
    assert "Failed" in result.output
    assert "Product not found" in result.output


def test_run_unexpected_error(runner, mock_orchestrator):
    mock_orchestrator.instance.run_all.side_effect = RuntimeError("database locked")

    result = runner.invoke(cli, ["run", "prod-1", "--user", "user-1"])

    assert result.exit_code == 1
    assert "database locked" in result.output


def test_run_requires_user(runner, mock_orchestrator):
    result = runner.invoke(cli, ["run", "prod-1"])

    assert result.exit_code != 0
    assert "--user" in result.output


# =============================================================================
# retry
# =============================================================================

def test_retry_success(runner, mock_orchestrator):
    result = runner.invoke(cli, ["retry", "prod-1", "swot", "--user", "user-1"])

    assert result.exit_code == 0, result.output
    assert "swot completed" in result.output
    mock_orchestrator.instance.run_one.assert_awaited_once_with("prod-1", "swot", "user-1")


def test_retry_failure(runner, mock_orchestrator):
    mock_orchestrator.instance.run_one.return_value = ReprocessResult(
        success=False, error="No reviews found for analysis",
    )

    result = runner.invoke(cli, ["retry", "prod-1", "swot", "--user", "user-1"])

    assert result.exit_code == 1
    assert "No reviews found for analysis" in result.output


def test_retry_rejects_unknown_type(runner, mock_orchestrator):
    result = runner.invoke(cli, ["retry", "prod-1", "horoscope", "--user", "user-1"])

    assert result.exit_code == 2
    mock_orchestrator.instance.run_one.assert_not_called()


# =============================================================================
# status
# =============================================================================

def test_status_table(runner, mock_orchestrator):
    result = runner.invoke(cli, ["status", "prod-1", "--user", "user-1"])

    assert result.exit_code == 0, result.output
    assert "sentiment" in result.output
    assert "timeout" in result.output
    assert "Completed 1 of 11 expected" in result.output


def test_status_ownership_error(runner, mock_orchestrator):
    mock_orchestrator.instance.get_status.side_effect = OwnershipError("prod-1", "intruder")

    result = runner.invoke(cli, ["status", "prod-1", "--user", "intruder"])

    assert result.exit_code == 1
    assert "Unauthorized: Product does not belong to user" in result.output


# =============================================================================
# ingest
# =============================================================================

def test_ingest_csv(runner, mock_orchestrator, tmp_path):
    csv_file = tmp_path / "reviews.csv"
    csv_file.write_text(
        "text,rating,date,competitor_id\n"
        "Keeps coffee hot all morning,5,2024-05-01,\n"
        ",3,,\n"
        "Lid leaks,2,,comp-1\n",
        encoding="utf-8",
    )

    result = runner.invoke(cli, ["ingest", "prod-1", str(csv_file), "--user", "user-1"])

    assert result.exit_code == 0, result.output
    assert "Stored 2 reviews" in result.output
    call = mock_orchestrator.instance.selector.index.store_reviews.call_args
    namespace, reviews = call.args[0], call.args[1]
    assert namespace == "user_user-1_brand_brand-1"
    assert [r.competitor_id for r in reviews] == [None, "comp-1"]


def test_ingest_foreign_product(runner, mock_orchestrator, tmp_path):
    csv_file = tmp_path / "reviews.csv"
    csv_file.write_text("text\nGreat\n", encoding="utf-8")

    result = runner.invoke(cli, ["ingest", "prod-1", str(csv_file), "--user", "intruder"])

    assert result.exit_code == 1
    assert "Product not found" in result.output
    mock_orchestrator.instance.selector.index.store_reviews.assert_not_called()


def test_ingest_skips_invalid_rows(runner, mock_orchestrator, tmp_path):
    csv_file = tmp_path / "reviews.csv"
    csv_file.write_text(
        "text,rating\n"
        "Great grip,5\n"
        "Broke in a week,seven\n"
        "Fine,3\n",
        encoding="utf-8",
    )

    result = runner.invoke(cli, ["ingest", "prod-1", str(csv_file), "--user", "user-1"])

    assert result.exit_code == 0, result.output
    assert "Stored 2 reviews" in result.output


def test_ingest_replace_and_version(runner, mock_orchestrator, tmp_path):
    csv_file = tmp_path / "reviews.csv"
    csv_file.write_text("text\nGreat\n", encoding="utf-8")

    result = runner.invoke(
        cli,
        ["ingest", "prod-1", str(csv_file), "--user", "user-1", "--replace", "--version", "v2"],
    )

    assert result.exit_code == 0, result.output
    assert "Removed 4 stored reviews" in result.output
    index = mock_orchestrator.instance.selector.index
    index.delete_product_reviews.assert_awaited_once_with("user_user-1_brand_brand-1", "prod-1")
    reviews = index.store_reviews.call_args.args[1]
    assert reviews[0].analysis_version == "v2"
    assert reviews[0].product_name == "Trail Mug"


def test_ingest_without_replace_keeps_stored_reviews(runner, mock_orchestrator, tmp_path):
    csv_file = tmp_path / "reviews.csv"
    csv_file.write_text("text\nGreat\n", encoding="utf-8")

    runner.invoke(cli, ["ingest", "prod-1", str(csv_file), "--user", "user-1"])

    mock_orchestrator.instance.selector.index.delete_product_reviews.assert_not_called()


def test_ingest_unreadable_file(runner, mock_orchestrator, tmp_path):
    csv_file = tmp_path / "reviews.csv"
    csv_file.write_text("rating,date\n5,2024-01-01\n", encoding="utf-8")

    result = runner.invoke(cli, ["ingest", "prod-1", str(csv_file), "--user", "user-1"])

    assert result.exit_code == 1
    assert "Ingestion Failed" in result.output


# =============================================================================
# add-product
# =============================================================================

def test_add_product_with_competitors(runner, mock_orchestrator):
    mock_orchestrator.instance.store.get_product.return_value = None

    result = runner.invoke(cli, [
        "add-product", "prod-9",
        "--name", "Summit Bottle",
        "--brand", "brand-1",
        "--brand-name", "Trailhead",
        "--user", "user-1",
        "--competitor", "comp-1=Ridge Flask",
        "--competitor", "comp-2 = Canyon Cup",
    ])

    assert result.exit_code == 0, result.output
    assert "Saved prod-9 with 2 competitor(s)" in result.output
    call = mock_orchestrator.instance.store.add_product.call_args
    product = call.args[0]
    assert product.namespace == "user_user-1_brand_brand-1"
    assert [(c.id, c.name) for c in product.competitors] == [
        ("comp-1", "Ridge Flask"),
        ("comp-2", "Canyon Cup"),
    ]
    assert all(c.product_id == "prod-9" for c in product.competitors)
    assert call.kwargs["brand_name"] == "Trailhead"


def test_add_product_updates_own_product(runner, mock_orchestrator):
    result = runner.invoke(cli, [
        "add-product", "prod-1", "--name", "Trail Mug XL", "--brand", "brand-1", "--user", "user-1",
    ])

    assert result.exit_code == 0, result.output
    assert mock_orchestrator.instance.store.add_product.call_args.args[0].name == "Trail Mug XL"


@pytest.mark.parametrize("competitor", ["comp-1", "=Ridge Flask", "comp-1="])
def test_add_product_rejects_malformed_competitor(runner, mock_orchestrator, competitor):
    result = runner.invoke(cli, [
        "add-product", "prod-9", "--name", "Bottle", "--brand", "brand-1",
        "--user", "user-1", "--competitor", competitor,
    ])

    assert result.exit_code == 2
    assert "expected ID=NAME" in result.output
    mock_orchestrator.instance.store.add_product.assert_not_called()


def test_add_product_rejects_foreign_product(runner, mock_orchestrator):
    result = runner.invoke(cli, [
        "add-product", "prod-1", "--name", "Hijacked", "--brand", "brand-1", "--user", "intruder",
    ])

    assert result.exit_code == 1
    assert "Unauthorized: Product does not belong to user" in result.output
    mock_orchestrator.instance.store.add_product.assert_not_called()


def test_add_product_rejects_foreign_brand(runner, mock_orchestrator):
    mock_orchestrator.instance.store.get_product.return_value = None
    mock_orchestrator.instance.store.add_product.side_effect = BrandOwnershipError("brand-1")

    result = runner.invoke(cli, [
        "add-product", "prod-9", "--name", "Bottle", "--brand", "brand-1", "--user", "intruder",
    ])

    assert result.exit_code == 1
    assert "belongs to another user" in result.output


# =============================================================================
# stats
# =============================================================================

def test_stats_table(runner, mock_orchestrator):
    result = runner.invoke(cli, ["stats", "prod-1", "--user", "user-1"])

    assert result.exit_code == 0, result.output
    assert "14 reviews" in result.output
    assert "prod-2" in result.output
    mock_orchestrator.instance.selector.index.namespace_stats.assert_awaited_once_with(
        "user_user-1_brand_brand-1"
    )


def test_stats_empty_namespace(runner, mock_orchestrator):
    mock_orchestrator.instance.selector.index.namespace_stats.return_value = NamespaceStats(
        namespace="user_user-1_brand_brand-1",
    )

    result = runner.invoke(cli, ["stats", "prod-1", "--user", "user-1"])

    assert result.exit_code == 0, result.output
    assert "No reviews stored" in result.output


def test_stats_foreign_product(runner, mock_orchestrator):
    result = runner.invoke(cli, ["stats", "prod-1", "--user", "intruder"])

    assert result.exit_code == 1
    assert "Product not found" in result.output


# =============================================================================
# validate-setup
# =============================================================================

def test_validate_setup(runner, mock_settings):
    result = runner.invoke(cli, ["validate-setup"])

    assert result.exit_code == 0, result.output
    assert "Anthropic API Key" in result.output
    assert "in-memory" in result.output


def test_validate_setup_without_embeddings(runner, mock_settings):
    mock_settings.has_embedding_provider.return_value = False

    result = runner.invoke(cli, ["validate-setup"])

    assert result.exit_code == 1
    assert "No OpenAI API key configured" in result.output
