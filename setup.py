"""Setup script for the Aladdin orchestration package."""

from setuptools import setup, find_packages

setup(
    name="aladdin-orchestration",
    version="0.1.0",
    packages=find_packages(exclude=("tests", "tests.*")),
    python_requires=">=3.10",
    install_requires=[
        "pydantic>=2.6",
        "pydantic-settings>=2.2",
        "structlog>=24.1",
        "httpx>=0.27",
        "tenacity>=8.2",
        "redis>=5.0",
        "prometheus-client>=0.20",
        "langchain-core>=0.2",
        "langchain-openai>=0.1",
        "openai>=1.30",
    ],
    extras_require={
        "test": [
            "pytest>=8.0",
            "pytest-asyncio>=0.23",
        ],
    },
    description="Aladdin - department orchestration and LLM quality gating",
    author="Aladdin Team",
)
