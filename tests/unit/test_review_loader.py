"""
Unit tests for the CSV review loader.
"""

from datetime import timezone
from unittest.mock import patch

import pytest

from review_insights.utils.review_loader import ReviewFileError, read_reviews_csv


def write_csv(tmp_path, content: str):
    path = tmp_path / "reviews.csv"
    path.write_text(content, encoding="utf-8")
    return path


def test_loads_valid_row(tmp_path):
    path = write_csv(tmp_path, "text,rating,date\nSolid mug,4.5,2024-03-02T10:00:00\n")

    reviews = read_reviews_csv(path, "prod-1", "brand-1")

    assert len(reviews) == 1
    review = reviews[0]
    assert review.rating == 4.5
    assert review.date.year == 2024
    assert review.date.tzinfo is not None
    assert review.date.utcoffset() == timezone.utc.utcoffset(None)
    assert review.brand_id == "brand-1"
    assert review.product_id == "prod-1"
    assert review.analysis_version == "v1"
    assert review.word_count == 2
    assert review.competitor_id is None


def test_mixed_file_keeps_only_valid_rows(tmp_path):
    path = write_csv(
        tmp_path,
        "text,rating,date,competitor_id\n"
        "Keeps coffee hot,5,2024-05-01,\n"
        "Handle snapped,4 stars,2024-05-02,\n"
        "Lid leaks,3,,comp-1\n"
        "Best mug ever,7,2024-05-03,\n"
        "Arrived dented,2,last tuesday,\n"
        ",4,2024-05-04,\n"
        "No rating given,,2024-05-05,comp-2\n"
        "Too small,0,,\n",
    )

    reviews = read_reviews_csv(path, "prod-1", "brand-1")

    assert [r.text for r in reviews] == ["Keeps coffee hot", "Lid leaks", "No rating given"]
    assert [r.rating for r in reviews] == [5.0, 3.0, None]
    assert [r.competitor_id for r in reviews] == [None, "comp-1", "comp-2"]
    assert reviews[1].date is None


def test_rejected_rows_are_logged(tmp_path):
    path = write_csv(tmp_path, "text,rating\nGood,5\nBad,eleven\n")

    with patch("review_insights.utils.review_loader.logger") as mock_logger:
        read_reviews_csv(path, "prod-1", "brand-1")

    mock_logger.warning.assert_called_once_with(
        "Skipping review with invalid rating", line=3, rating="eleven",
    )


def test_headers_are_case_insensitive(tmp_path):
    path = write_csv(tmp_path, " Text ,RATING,Competitor_ID\nSturdy,4,comp-3\n")

    reviews = read_reviews_csv(path, "prod-1", "brand-1")

    assert reviews[0].text == "Sturdy"
    assert reviews[0].rating == 4.0
    assert reviews[0].competitor_id == "comp-3"


def test_version_and_product_name_are_stamped(tmp_path):
    path = write_csv(tmp_path, "text\nGreat\nFine\n")

    reviews = read_reviews_csv(path, "prod-1", "brand-1", analysis_version="v3", product_name="Trail Mug")

    assert {r.analysis_version for r in reviews} == {"v3"}
    assert {r.product_name for r in reviews} == {"Trail Mug"}
    assert reviews[0].upload_date == reviews[1].upload_date


def test_missing_text_column(tmp_path):
    path = write_csv(tmp_path, "rating,date\n5,2024-01-01\n")

    with pytest.raises(ReviewFileError, match="no 'text' column"):
        read_reviews_csv(path, "prod-1", "brand-1")


def test_empty_file(tmp_path):
    path = write_csv(tmp_path, "")

    with pytest.raises(ReviewFileError):
        read_reviews_csv(path, "prod-1", "brand-1")


def test_header_only_file(tmp_path):
    path = write_csv(tmp_path, "text,rating\n")

    assert read_reviews_csv(path, "prod-1", "brand-1") == []
