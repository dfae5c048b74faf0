#!/usr/bin/env python
# -*- coding: utf-8 -*-

import re
from setuptools import setup, find_packages


def read(filename):
    with open(filename, "r", encoding="utf-8") as f:
        return f.read()


def get_version():
    version_file = read("webgate_mcp_server/__init__.py")
    version_match = re.search(r"""^__version__ = ["']([^"']*)["']""", version_file, re.M)
    if version_match:
        return version_match.group(1)
    raise RuntimeError("Unable to find version string.")


setup(
    name="webgate_mcp_server",
    version=get_version(),
    description="A Model Context Protocol (MCP) server for remote browser automation and unblocked web scraping",
    long_description=read("README.md"),
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    include_package_data=True,
    install_requires=[
        "mcp>=1.10.0,<2",
        "playwright>=1.40.0",
        "httpx>=0.24.1",
        "pydantic>=2.0.0",
        "pydantic-settings>=2.0.0",
        "pyyaml>=6.0",
        "rich>=13.0.0",
    ],
    extras_require={
        "dev": [
            "pytest",
            "pytest-asyncio",
            "pytest-cov",
            "ruff",
        ],
    },
    python_requires=">=3.10",
    entry_points={
        "console_scripts": [
            "webgate=webgate_mcp_server.cli.main:main",
        ],
    },
    keywords=[
        "mcp",
        "browser",
        "playwright",
        "scraping",
        "unblocker",
        "cdp",
    ],
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Developers",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Topic :: Internet :: WWW/HTTP :: Browsers",
        "Topic :: Software Development :: Libraries :: Python Modules",
    ],
)
