"""clearnear: tag retention cleanup for Docker Registry HTTP API v2 registries."""

__version__ = "0.4.0"
