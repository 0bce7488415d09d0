"""Core configuration, errors, logging and utilities."""
