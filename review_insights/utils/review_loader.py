"""
CSV review loader.

Reads a review export with pandas and turns every usable row into a
``Review`` ready for embedding. Expected columns (header names are matched
case-insensitively): ``text`` (required), ``rating``, ``date`` and
``competitor_id``.

Rows without text are dropped. Rows whose rating is not a number in 1-5, or
whose date cannot be parsed, are dropped with a warning so one bad cell never
costs the rest of the file.
"""

from pathlib import Path
from typing import Optional

import pandas as pd

from review_insights.models.schemas import Review, utcnow
from review_insights.utils.logger import get_logger

logger = get_logger(__name__)

TEXT_COLUMN = "text"
OPTIONAL_COLUMNS = ("rating", "date", "competitor_id")

MIN_RATING = 1.0
MAX_RATING = 5.0


class ReviewFileError(ValueError):
    """The file cannot be read as a review export."""
    pass


def _read_frame(path: Path) -> pd.DataFrame:
    try:
        df = pd.read_csv(path, dtype=str, keep_default_na=False)
    except (pd.errors.EmptyDataError, pd.errors.ParserError, UnicodeDecodeError) as e:
        logger.error("Failed to read review file", path=str(path), error=str(e))
        raise ReviewFileError(f"Could not read {path}: {e}") from e

    df.columns = df.columns.str.strip().str.lower()
    if TEXT_COLUMN not in df.columns:
        raise ReviewFileError(f"{path} has no '{TEXT_COLUMN}' column")

    for column in OPTIONAL_COLUMNS:
        if column not in df.columns:
            df[column] = ""

    df = df[[TEXT_COLUMN, *OPTIONAL_COLUMNS]].copy()
    for column in df.columns:
        df[column] = df[column].str.strip()
    return df


def read_reviews_csv(
    path: Path,
    product_id: str,
    brand_id: str,
    analysis_version: str = "v1",
    product_name: Optional[str] = None,
) -> list[Review]:
    """
    Load reviews for one product from a CSV file.

    Args:
        path: CSV file
        product_id: Product the reviews belong to
        brand_id: Brand of the product
        analysis_version: Ingestion version tag stored with every review
        product_name: Optional product name stored with every review

    Returns:
        Reviews in file order, with placeholder ids

    Raises:
        ReviewFileError: If the file is unreadable or has no text column
    """
    df = _read_frame(Path(path))

    ratings = pd.to_numeric(df["rating"], errors="coerce")
    dates = pd.to_datetime(df["date"], errors="coerce", utc=True, format="ISO8601")

    has_text = df[TEXT_COLUMN] != ""
    bad_rating = (df["rating"] != "") & (
        ratings.isna() | (ratings < MIN_RATING) | (ratings > MAX_RATING)
    )
    bad_date = (df["date"] != "") & dates.isna()

    uploaded = utcnow()
    reviews = []
    rejected = 0
    for index in df.index:
        if not has_text[index]:
            continue

        # header is line 1
        line = int(index) + 2
        if bad_rating[index]:
            logger.warning("Skipping review with invalid rating", line=line, rating=df.at[index, "rating"])
            rejected += 1
            continue
        if bad_date[index]:
            logger.warning("Skipping review with invalid date", line=line, date=df.at[index, "date"])
            rejected += 1
            continue

        rating = ratings[index]
        date = dates[index]
        reviews.append(Review(
            id="pending",
            product_id=product_id,
            brand_id=brand_id,
            text=df.at[index, TEXT_COLUMN],
            rating=None if pd.isna(rating) else float(rating),
            date=None if pd.isna(date) else date.to_pydatetime(),
            competitor_id=df.at[index, "competitor_id"] or None,
            analysis_version=analysis_version,
            upload_date=uploaded,
            product_name=product_name,
        ))

    logger.info(
        "Loaded reviews from CSV",
        path=str(path),
        rows=len(df),
        loaded=len(reviews),
        rejected=rejected,
    )
    return reviews
