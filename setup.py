"""
Setup script for cohort-links.

Cohort Links decides whose learning modules each cohort's students see:
the cohort's own modules, another cohort's modules, or the global library.
It serves two roles:

1. Link Service - REST API used by the admin UI
2. Admin CLI - Inspect, link, untag and audit cohorts from the terminal

The 'cohort-links' command is the CLI entry point.
"""

from setuptools import find_packages, setup

setup(
    name="cohort-links",
    version="1.0.0",
    description="Cross-cohort learning module link coordination",
    long_description=open("README.md", encoding="utf-8").read() if __import__("os").path.exists("README.md") else "",
    long_description_content_type="text/markdown",
    packages=find_packages(include=["cohortlinks", "cohortlinks.*"]),
    python_requires=">=3.10",
    install_requires=[
        # CLI
        "typer>=0.9.0",
        "rich>=13.0.0",
        # Database
        "sqlalchemy>=2.0.0",
        "psycopg2-binary>=2.9.0",
        # Config & Validation
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        # API
        "fastapi>=0.110.0",
        "uvicorn>=0.23.0",
        # HTTP (FastAPI TestClient)
        "httpx>=0.25.0",
        # Logging
        "loguru>=0.7.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=4.0.0",
            "ruff>=0.1.0",
            "mypy>=1.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "cohort-links=cohortlinks.cli.main:run",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Web Environment",
        "Intended Audience :: Education",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Education",
    ],
    keywords="learning cohorts modules linking lms",
)
