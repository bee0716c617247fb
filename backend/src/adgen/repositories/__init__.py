"""Repository layer for the adgen backend.

Provides data access abstractions for domain entities.
"""

from adgen.repositories.job import AdJobRepository

__all__ = [
    "AdJobRepository",
]
