"""Sphinx build for the FrameCraft identity reference (``sphinx-build docs docs/_build``)."""

from __future__ import annotations

import os
import sys
from importlib import metadata

DOCS_DIR = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, os.path.dirname(DOCS_DIR))

try:
    release = metadata.version("framecraft-identity")
except metadata.PackageNotFoundError:
    # Building from a checkout that was never installed.
    release = "0.1.0"
version = ".".join(release.split(".")[:2])

project = "FrameCraft Identity"
author = "FrameCraft Platform"
copyright = f"2024, {author}"

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.intersphinx",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
    "sphinx_autodoc_typehints",
]

# Docs build without the database drivers installed.
autodoc_mock_imports = ["psycopg", "psycopg_pool"]
autodoc_member_order = "bysource"
autodoc_default_options = {
    "members": True,
    "show-inheritance": True,
    "exclude-members": "model_config",
}
autodoc_typehints = "description"
typehints_defaults = "comma"

napoleon_google_docstring = False
napoleon_numpy_docstring = True
napoleon_use_rtype = False

intersphinx_mapping = {
    "python": ("https://docs.python.org/3", None),
    "psycopg": ("https://www.psycopg.org/psycopg3/docs/", None),
    "pydantic": ("https://docs.pydantic.dev/latest/", None),
}

exclude_patterns = ["_build"]
nitpick_ignore = [("py:class", "Request"), ("py:class", "ConnectionPool")]

html_theme = "alabaster"
html_title = f"{project} {release}"
html_theme_options = {
    "description": "Tenant isolation and session authority",
    "fixed_sidebar": True,
}
