"""
ReadAlong API test suite.

- conftest.py: database, client, connection manager and group fixtures
- test_membership.py: membership engine rules and concurrent writes
- test_reading_groups.py: /api/v1/reading-groups endpoints
- test_websocket.py: the /ws channel and HTTP-triggered broadcasts
- test_events.py, test_notifications.py, test_security.py: building blocks

Run with `pytest`, or `pytest tests/test_websocket.py -v` for one file.
"""
