"""Shared infrastructure: config, logging, database, metrics, exceptions."""
