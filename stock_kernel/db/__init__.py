"""Database infrastructure for the SQL key-value store backend."""
