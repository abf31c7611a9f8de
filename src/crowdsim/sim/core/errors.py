from __future__ import annotations


class ConfigurationError(ValueError):
    """Raised when an agent spec or configuration section cannot be used."""
