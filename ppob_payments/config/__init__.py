"""Configuration package for the PPOB payment service."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
