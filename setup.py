"""Setup configuration for headshot-orchestrator package."""

from setuptools import setup, find_namespace_packages

setup(
    name="headshot-orchestrator",
    version="0.1.0",
    description="Model selection, quota, caching and dispatch core for AI headshot generation",
    packages=find_namespace_packages(include=["src", "src.*"], exclude=["src.tests*"]),
    python_requires=">=3.9",
    install_requires=[
        "pydantic>=2.0.0",
        "python-dotenv>=1.0.0",
        "redis[hiredis]>=5.0.1",
        "httpx>=0.25.0",
        "click>=8.1.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "pytest-mock>=3.11.0",
            "ruff>=0.1.0",
            "mypy>=1.5.0",
            "black>=23.0.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "headshot-orchestrator=src.cli.app:main",
        ],
    },
)
