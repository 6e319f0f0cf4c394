#!/usr/bin/env python3
"""
Setup script for netsock
"""

from setuptools import setup, find_packages

setup(
    name="netsock",
    version="0.1.0",
    description="Blocking TCP/UDP socket handles with normalized errors and full-length stream reads",
    packages=find_packages(exclude=["tests", "tests.*"]),
    install_requires=[
        "typer==0.12.3",
        "click<8.2",  # typer 0.12.3 is incompatible with click>=8.2
        "rich==13.9.2",
        "PyYAML==6.0.1",
    ],
    extras_require={
        "test": [
            "pytest==8.4.2",
        ],
    },
    python_requires=">=3.8",
    entry_points={
        'console_scripts': [
            'netsock-server=server.server:main',
            'netsock-client=client.cli:main',
        ],
    },
)
