"""Artisan marketplace escrow core and call signaling."""

__version__ = "0.1.0"
