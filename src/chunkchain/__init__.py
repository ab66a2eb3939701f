"""
chunkchain: store byte payloads larger than one ledger transaction.

The transfer core lives in :mod:`chunkchain.transfer`; :mod:`chunkchain.result`
holds the Success/Failure types every boundary client returns.
"""

from __future__ import annotations

__version__ = "0.1.0"

__all__ = ["__version__"]
