"""HTTP clients for external providers (generation API, Google OAuth)."""
