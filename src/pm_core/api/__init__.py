"""PM Core REST API."""
