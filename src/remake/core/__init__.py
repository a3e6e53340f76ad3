"""Core primitives shared by every remake layer: errors, logging, hashing, config."""
