"""Microservice building blocks: WSGI RPC handler, stats, registry commands, bot and plugins."""

__version__ = "0.5.0"