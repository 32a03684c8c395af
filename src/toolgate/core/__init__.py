"""Configuration, logging, errors, metrics and connection helpers."""
