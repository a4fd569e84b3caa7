"""Configuration errors."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Raised when a configuration cannot drive a mirror cycle."""

    def __init__(self, message: str, *, config_id: str | None = None) -> None:
        """Initialise with a message and the offending configuration id."""
        self.config_id = config_id
        super().__init__(message)

    @classmethod
    def missing_credentials(cls, config_id: str) -> ConfigurationError:
        """Return an error for a configuration lacking a token or username."""
        return cls(
            f"Configuration {config_id} is missing GitHub or Gitea credentials "
            "(tokens and destination username)",
            config_id=config_id,
        )

    @classmethod
    def invalid_section(
        cls, config_id: str, section: str, detail: str
    ) -> ConfigurationError:
        """Return an error for a JSON section that failed validation."""
        return cls(
            f"Configuration {config_id} has an invalid {section} section: {detail}",
            config_id=config_id,
        )

    @classmethod
    def not_found(cls, config_id: str) -> ConfigurationError:
        """Return an error for an unknown configuration id."""
        return cls(f"Configuration {config_id} does not exist", config_id=config_id)

    @classmethod
    def missing_database_url(cls) -> ConfigurationError:
        """Return an error when no database URL is configured."""
        return cls("GITEAMIRROR_DATABASE_URL is required")
