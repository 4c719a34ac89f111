"""
stencil - Template configuration resolution core.

Subpackages:
- stencil.descriptor: parse and validate template.yml descriptors
- stencil.resolution: resolvers, cache and the SourceResolutionManager
- stencil.composition: extends/includes composition
- stencil.dependencies: dependency graph resolution
- stencil.config: resolver settings
- stencil.pipeline: parse -> compose -> resolve dependencies
"""

from stencil.errors import StencilError

__version__ = "0.1.0"

__all__ = ["StencilError", "__version__"]
