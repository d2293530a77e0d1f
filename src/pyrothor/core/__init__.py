"""Core models, errors and process utilities shared by all components."""
