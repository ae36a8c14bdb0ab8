"""Mock identity provider for local development and integration tests."""
