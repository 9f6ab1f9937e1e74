"""unsafe-reach: find call paths from a Rust crate's public API to its unsafe code."""

__version__ = "0.1.0"

__all__ = ["__version__"]
