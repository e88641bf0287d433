"""
Services Package

Business logic kept separate from HTTP and WebSocket handling:
- directory.py: User display fields and book existence lookups
- events.py: Event types, broadcast plans and the event publisher
- exceptions.py: Domain errors with their HTTP status codes
- membership.py: Reading group membership engine
- notifications.py: Log entry text and real-time payloads
- rate_limiter.py: Rate limiting with slowapi
- security.py: Access token issuing and validation (identity gate)
- websocket.py: Live connection registry and rooms
"""
