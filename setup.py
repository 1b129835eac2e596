#!/usr/bin/env python3
"""
Setup script for canary-releaser.
Installs the rollout daemon and its console entry point.
"""

from setuptools import setup, find_packages

setup(
    name="canary-releaser",
    version="0.4.0",
    description="Canary-deploy GitHub release assets across a fleet of hosts",
    python_requires=">=3.10",
    packages=find_packages(include=["canary_releaser", "canary_releaser.*"]),
    install_requires=[
        "pydantic>=2.0",
        "pyyaml>=6.0",
        "httpx>=0.24",
        "aiofiles>=23.1",
        "redis>=5.0.1",
    ],
    extras_require={
        "test": [
            "pytest>=7.0",
            "pytest-asyncio>=0.21",
        ],
    },
    entry_points={
        "console_scripts": [
            "canary-releaser=canary_releaser.__main__:main",
        ],
    },
)
