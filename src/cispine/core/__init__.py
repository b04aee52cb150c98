"""Core primitives: errors, logging, hashing, configuration."""
