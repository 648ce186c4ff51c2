"""HTTP API and process supervision."""
