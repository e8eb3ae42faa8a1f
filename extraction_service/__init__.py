"""Hotel rate extraction orchestrator service package."""

__all__ = [
    "config",
    "errors",
    "service",
]

__version__ = "0.1.0"
