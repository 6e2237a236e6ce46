# app/api/__init__.py
"""
🌐 API ROUTES (маршруты FastAPI)

/health и админка IIKO под /api/iiko.
"""

from app.api.app import create_app

__all__ = ["create_app"]
