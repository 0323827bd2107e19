"""HTTP API of the engine server."""
