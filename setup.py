"""
CryptoSage Core - Setup Configuration

Decision and risk-management engine for short-horizon spot crypto trading:
every decision is gated, explainable, and recorded in an append-only ledger.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README for long description
readme_path = Path(__file__).parent / "README.md"
long_description = ""
if readme_path.exists():
    long_description = readme_path.read_text(encoding="utf-8")

# Read requirements
requirements_path = Path(__file__).parent / "requirements.txt"
requirements = []
if requirements_path.exists():
    with open(requirements_path) as f:
        requirements = [
            line.strip()
            for line in f
            if line.strip() and not line.startswith("#")
        ]

setup(
    name="cryptosage-core",
    version="1.0.0",
    description="Decision and risk-management engine for spot crypto trading",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(where=".", include=["cryptosage", "cryptosage.*"]),
    package_dir={"": "."},
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=23.0.0",
            "isort>=5.12.0",
            "mypy>=1.0.0",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Financial and Insurance Industry",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Office/Business :: Financial :: Investment",
    ],
    keywords="trading, cryptocurrency, risk-management, mexc",
    include_package_data=True,
    package_data={
        "": ["*.yaml"],
    },
)
