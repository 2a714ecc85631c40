"""
Posterior analysis of saved chains.
"""

from .reader import ChainReader

__all__ = ["ChainReader"]
