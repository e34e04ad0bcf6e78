"""Persistence: in-memory and PostgreSQL stores."""
