"""
Setup configuration for the Review Insights Engine.

This setup.py enables installation of the package via pip:
    pip install -e .
    pip install -e ".[dev]"
"""

from pathlib import Path
from setuptools import setup, find_packages

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text(encoding="utf-8") if readme_path.exists() else ""

# Read requirements
requirements_path = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_path.exists():
    requirements = [
        line.strip()
        for line in requirements_path.read_text().split("\n")
        if line.strip() and not line.startswith("#")
    ]

# Read dev requirements
dev_requirements_path = Path(__file__).parent / "requirements-dev.txt"
dev_requirements = []
if dev_requirements_path.exists():
    dev_requirements = [
        line.strip()
        for line in dev_requirements_path.read_text().split("\n")
        if line.strip() and not line.startswith("#") and not line.startswith("-r")
    ]

setup(
    name="review-insights-engine",
    version="1.0.0",
    author="Review Insights Team",
    author_email="team@example.com",
    description="Review selection and LLM analysis orchestration for product reviews",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/your-org/review-insights-engine",
    project_urls={
        "Bug Tracker": "https://github.com/your-org/review-insights-engine/issues",
        "Documentation": "https://your-org.github.io/review-insights-engine/",
        "Source Code": "https://github.com/your-org/review-insights-engine",
    },
    packages=find_packages(exclude=["tests", "tests.*", "examples"]),
    package_dir={"": "."},
    include_package_data=True,
    python_requires=">=3.11",
    install_requires=requirements,
    extras_require={
        "dev": dev_requirements,
        "test": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.12.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "review-insights=review_insights.main:cli",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Topic :: Text Processing :: Linguistic",
        "Typing :: Typed",
    ],
    keywords=[
        "reviews",
        "customer-insights",
        "ai",
        "llm",
        "claude",
        "langgraph",
        "vector-search",
        "qdrant",
    ],
    license="MIT",
    zip_safe=False,
)
