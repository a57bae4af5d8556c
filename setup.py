#!/usr/bin/env python3
"""
Setup script for the OCoup tournament client
"""

from setuptools import setup, find_namespace_packages

setup(
    name="ocoup-client",
    version="0.1.0",
    description="Client and tournament runner for the OCoup game server",
    packages=find_namespace_packages(include=["client", "client.*", "shared", "shared.*"]),
    install_requires=[
        "websockets==15.0",
        "httpx==0.27.2",
        "click==8.1.7",
        "typer==0.12.3",
        "rich==13.9.2",
        "aioconsole==0.8.1",
        "PyYAML==6.0.2",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
            "pytest-asyncio==1.2.0",
        ],
    },
    python_requires=">=3.9",
    entry_points={
        'console_scripts': [
            'ocoup=client.ocoup_cli:main',
        ],
    },
)
