"""
.. include:: ../README.md
"""

__version__ = "0.1.0"

__all__ = [
    "cluster",
    "config",
    "deploy",
    "exceptions",
    "helm",
    "manifest",
    "mirror",
    "release",
    # Note this is exposed for CLI documentation, not to be used as a library
    "tool",
]
