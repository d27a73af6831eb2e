"""Remote endpoint helpers (request builders and response parsers)."""
