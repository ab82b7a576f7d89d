"""
ZSP API Module

User-facing interfaces:
- cli: Command-line interface (zsp command)
- models: Pydantic request validation shared by every caller
"""

__all__ = [
    "cli",
    "models",
]
