"""Heatshrink compression, EspFs image building and read-only image access."""

__version__ = "0.1.0"