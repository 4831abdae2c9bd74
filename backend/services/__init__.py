"""Platform-facing services: building loading, telemetry routing and event polling."""
