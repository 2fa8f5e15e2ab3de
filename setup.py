#!/usr/bin/env python3
"""
Setup script for Adorn.
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read README
readme_file = Path(__file__).parent / "README.md"
long_description = readme_file.read_text() if readme_file.exists() else ""

setup(
    name="adorn",
    version="0.1.0",
    description="Decorator-driven controllers with a statically checked route manifest and OpenAPI generation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Adorn Contributors",
    packages=find_packages(include=["adorn", "adorn.*"]),
    include_package_data=True,
    python_requires=">=3.10",
    install_requires=[
        "click>=8.2.0",
        "python-dotenv>=1.0.0",
        "jinja2>=3.1.0",
        "orjson>=3.9.0",
        "pydantic>=2.5.0",
        "PyYAML>=6.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.4.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.1.0",
            "httpx>=0.24.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "adorn=adorn.cli.__main__:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP",
        "Topic :: Software Development :: Libraries :: Application Frameworks",
    ],
    keywords="controllers decorators openapi manifest asgi",
)
