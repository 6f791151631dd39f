"""Pipeline services: claiming, retrying, scene tracking and stage processing."""
