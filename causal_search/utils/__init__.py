"""Shared utilities: configuration, logging, graph serialization."""
