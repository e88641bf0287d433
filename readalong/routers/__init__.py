"""
API Routers Package

Router Structure:
- reading_groups.py: /api/v1/reading-groups/* endpoints
- websocket.py: /ws real-time channel and /ws/stats

Each router is imported and registered in main.py.
"""

from readalong.routers.reading_groups import router as reading_groups_router
from readalong.routers.websocket import router as websocket_router

__all__ = [
    "reading_groups_router",
    "websocket_router",
]
