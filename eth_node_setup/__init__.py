"""
Ethereum Node Setup

Provisions a single Ethereum node host from a flat key=value configuration:
execution and consensus clients, optional validator and MEV-boost, monitoring,
backups and security hardening.
"""

__version__ = "1.0.0"
