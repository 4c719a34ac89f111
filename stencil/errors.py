"""
errors.py - Root of the stencil exception hierarchy.

Each subpackage defines its own typed errors in an ``errors.py`` module; all of
them derive from StencilError so callers can catch the whole family at once.
"""

from __future__ import annotations


class StencilError(Exception):
    """Base exception for all stencil errors."""

    pass
