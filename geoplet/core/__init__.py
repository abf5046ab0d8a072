"""Core building blocks: error codes, persistence and rate limiting."""
