"""HTTP API for the newsletter service."""
