"""HTTP and WebSocket routers for the conversation relay."""
