"""Core plumbing: configuration, HTTP client, retries, state, logging."""
