import logging
import secrets
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from sqlalchemy import select, text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from sewer_monitor.config import settings
from sewer_monitor.database import Base, async_session

logger = logging.getLogger("sewer-monitor")


def setup_logging():
    level = logging.DEBUG if settings.DEBUG else getattr(logging, settings.LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("apscheduler.executors").setLevel(logging.WARNING)


async def create_initial_admin(session_factory: async_sessionmaker[AsyncSession]):
    """Create initial admin user if not exists."""
    from sewer_monitor.api.v1.auth import hash_password
    from sewer_monitor.models.user import User

    async with session_factory() as db:
        result = await db.execute(select(User).where(User.username == "admin"))
        if result.scalar_one_or_none():
            return

        password = settings.ADMIN_PASSWORD or secrets.token_urlsafe(12)
        admin = User(
            username="admin",
            password_hash=hash_password(password),
            full_name="Administrator",
            role="admin",
            is_active=True,
            whatsapp_notifications=False,
            language=settings.ALERT_LANGUAGE,
        )
        db.add(admin)
        await db.commit()
        if settings.ADMIN_PASSWORD:
            logger.info("Created initial admin user (password from ADMIN_PASSWORD)")
        else:
            logger.info("=" * 60)
            logger.info("FIRST START - Created initial admin user")
            logger.info(f"Admin password: {password}")
            logger.info("Set ADMIN_PASSWORD in .env to choose your own.")
            logger.info("=" * 60)


def create_app(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    start_monitor: bool = True,
) -> FastAPI:
    from sewer_monitor.services.broadcaster import ConnectionManager
    from sewer_monitor.services.whatsapp_notifier import WhatsAppNotifier
    from sewer_monitor.tasks.scheduler import AlertMonitor, AlertMonitorConfig

    session_factory = session_factory or async_session

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        logger.info("Starting Sewer Monitor server...")

        # Create tables
        engine = session_factory.kw["bind"]
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        await create_initial_admin(session_factory)

        connections = ConnectionManager()
        notifier = WhatsAppNotifier()
        monitor = AlertMonitor(session_factory, connections, notifier)

        app.state.session_factory = session_factory
        app.state.connections = connections
        app.state.notifier = notifier
        app.state.lifecycle = monitor.lifecycle
        app.state.monitor = monitor

        if notifier.simulated:
            logger.warning("WhatsApp gateway not configured, notifications run in simulated mode")
        if start_monitor:
            monitor.start(AlertMonitorConfig.from_settings())

        logger.info("Sewer Monitor server started successfully")
        yield

        await monitor.stop()
        await engine.dispose()
        logger.info("Sewer Monitor server stopped")

    app = FastAPI(
        title="Sewer Monitor",
        description="Sewer network telemetry and alerting",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/api/docs" if settings.DEBUG else None,
        redoc_url="/api/redoc" if settings.DEBUG else None,
    )

    # API routes
    from sewer_monitor.api.v1 import auth as auth_api
    from sewer_monitor.api.v1 import sensors as sensors_api
    from sewer_monitor.api.v1 import alerts as alerts_api
    from sewer_monitor.api.v1 import dashboard as dashboard_api
    from sewer_monitor.api.v1 import notifications as notifications_api
    from sewer_monitor.api.v1 import reports as reports_api

    app.include_router(auth_api.router, prefix="/api/v1/auth")
    app.include_router(sensors_api.router, prefix="/api/v1/sensors")
    app.include_router(alerts_api.router, prefix="/api/v1/alerts")
    app.include_router(dashboard_api.router, prefix="/api/v1/dashboard")
    app.include_router(notifications_api.router, prefix="/api/v1/notifications")
    app.include_router(reports_api.router, prefix="/api/v1/reports")

    @app.get("/health")
    async def health():
        db_ok = True
        try:
            async with app.state.session_factory() as db:
                await db.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Health check database error: {e}")
            db_ok = False

        monitor = app.state.monitor
        return {
            "status": "ok" if db_ok else "degraded",
            "database": "ok" if db_ok else "unavailable",
            "monitor_running": monitor.running,
            "whatsapp_simulated": app.state.notifier.simulated,
            "websocket_clients": app.state.connections.connection_count,
        }

    @app.websocket("/ws/dashboard")
    async def dashboard_socket(websocket: WebSocket):
        connections = websocket.app.state.connections
        await connections.connect(websocket)
        try:
            while True:
                message = await websocket.receive_text()
                if message == "ping":
                    await websocket.send_json({"event": "pong", "data": {}})
        except WebSocketDisconnect:
            pass
        finally:
            await connections.disconnect(websocket)

    return app


app = create_app()

if __name__ == "__main__":
    setup_logging()
    uvicorn.run(
        "sewer_monitor.main:app",
        host=settings.APP_HOST,
        port=settings.APP_PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower(),
    )
