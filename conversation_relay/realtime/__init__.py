"""Real-time relay components: registry, rooms, fan-out and the WebSocket transport."""
