"""
Setup script for backwards compatibility.

Modern installations should use pyproject.toml.
This file is for older pip versions that cannot build from it directly.
"""

from setuptools import setup

# Metadata, dependencies and the console script live in pyproject.toml
setup()
