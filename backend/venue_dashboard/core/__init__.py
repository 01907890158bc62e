"""Configuration, authentication, observability and error types."""
