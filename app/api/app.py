# app/api/app.py
"""
FastAPI приложение: админка синхронизации с IIKO.

create_app() получает готовые сервисы (main.py или тесты)
и кладет их в app.state.iiko, откуда их берут маршруты.
"""

from typing import Optional

from fastapi import FastAPI

from app.api.iiko import router as iiko_router
from app.iiko.services import IikoServices


def create_app(services: IikoServices, lifespan: Optional[object] = None) -> FastAPI:
    app = FastAPI(
        title="Bubble Tea IIKO Sync API",
        description="Админка синхронизации заказов и меню с IIKO",
        version="1.0.0",
        lifespan=lifespan
    )
    app.state.iiko = services

    # ==========================================
    # ENDPOINT: Health check
    # ==========================================

    @app.get("/health")
    async def health_check():
        """
        Пример:
            GET /health
            → {"status": "ok", "service": "bubbletea_iiko_sync", "scheduler": {...}}
        """
        return {
            "status": "ok",
            "service": "bubbletea_iiko_sync",
            "scheduler": services.scheduler.status()
        }

    app.include_router(iiko_router)

    return app
