"""
Setup script for linguaspark-pipeline.

LinguaSpark turns web content into language lessons. This package holds
the two pieces that sit between the page and the lesson:

1. Extraction Sessions - lifecycle, retry bookkeeping, history and analytics
2. Streamed Generation - consumes the lesson generation event stream

The 'linguaspark' command inspects sessions and drives generation runs.
"""

from setuptools import find_packages, setup

setup(
    name="linguaspark-pipeline",
    version="1.0.0",
    description="Extraction session tracking and streamed lesson generation for LinguaSpark",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    author="LinguaSpark",
    packages=find_packages(include=["linguaspark", "linguaspark.*"]),
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # HTTP
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "linguaspark=linguaspark.cli:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
    ],
    keywords="language-learning lessons extraction streaming cli",
)
