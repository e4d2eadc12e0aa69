"""Sync engines: providers, rate limiting, publishing, import and reducers."""
