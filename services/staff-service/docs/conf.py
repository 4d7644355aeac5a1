"""Sphinx configuration for the Staff Service API reference."""

from __future__ import annotations

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

project = "Staff Service"
release = "0.1.0"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx_autodoc_typehints",
]

autodoc_typehints = "description"
# only the audit store and the shared limiter need these at import time
autodoc_mock_imports = ["psycopg", "psycopg_pool", "redis"]
