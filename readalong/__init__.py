"""
ReadAlong API Application Package

Backend for a social reading tracker built around reading groups: users
read the same book together, report their progress, chat, and receive
live updates over a WebSocket channel.

Package Structure:
- config.py: Application configuration using Pydantic Settings
- database.py: SQLAlchemy database connection and session management
- main.py: FastAPI application factory and configuration
- dependencies.py: Dependency injection functions
- models/: SQLAlchemy ORM models
- schemas/: Pydantic request/response schemas
- routers/: API route handlers (HTTP and WebSocket)
- services/: Business logic (membership rules, notifications, broadcasting)
"""

__version__ = "0.1.0"
