"""Core infrastructure: settings, database, security, logging, errors."""
