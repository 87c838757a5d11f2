"""HTTP and WebSocket routes for the operator UI."""
