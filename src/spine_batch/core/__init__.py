"""Core platform primitives for spine-batch: logging, errors, settings, persistence."""
