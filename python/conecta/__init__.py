"""Conecta: connection requests and direct messaging for entrepreneurs."""

__version__ = "0.1.0"
