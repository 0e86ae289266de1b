"""
SDK for Archive Guard.

Provides governed access to the upstream catalog service.
"""

from .client import GovernedClient

__all__ = ["GovernedClient"]
