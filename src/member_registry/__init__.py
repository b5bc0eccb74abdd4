"""
Member Registry - linked identity store with encrypted persistence.

Keeps external accounts and subjects bijectively linked, persists the
registry as one encrypted-at-rest document, and audits its invariants.
"""

__version__ = "0.1.0"

__all__ = ["__version__"]
