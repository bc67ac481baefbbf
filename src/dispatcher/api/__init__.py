"""HTTP API for the dispatcher."""
