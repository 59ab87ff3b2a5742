"""Axolotl auth: PKCE authorization-code proxy and client-side auth provider."""

__version__ = "1.0.0"
