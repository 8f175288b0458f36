"""
CronJob Controller - Manager
FastAPI application entry point: health probes plus the controller lifecycle
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from config import get_settings, settings
from services.cluster import ClusterClient, get_cluster_client
from services.cronjob import API_GROUP_VERSION, CRONJOB_KIND, Clock
from services.locking import LeaderElector, RedisLock
from services.log_config import configure_logging
from services.reconciler import CronJobController, CronJobReconciler

logger = structlog.get_logger()

VERSION = "0.1.0"


# Global reference to the running controller for probes and stats
_controller: Optional[CronJobController] = None
_controller_task: Optional[asyncio.Task] = None


def get_controller() -> Optional[CronJobController]:
    """Get the controller instance (if created)."""
    return _controller


def build_controller(
    client: Optional[ClusterClient] = None,
    clock: Optional[Clock] = None,
) -> CronJobController:
    """
    Wire the reconciler, work queue, optional leader election and controller.

    Raises:
        RuntimeError: If leader election is enabled without REDIS_URL
    """
    config = get_settings()
    client = client or get_cluster_client()
    reconciler = CronJobReconciler(client=client, clock=clock)

    elector = None
    if config.leader_elect:
        if not config.redis_url:
            raise RuntimeError("LEADER_ELECT requires REDIS_URL")
        elector = LeaderElector(
            lock=RedisLock(redis_url=config.redis_url),
            lease_key=config.leader_election_id,
            lease_seconds=config.leader_lease_seconds,
            clock=reconciler.clock,
        )

    return CronJobController(reconciler=reconciler, client=client, elector=elector)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global _controller, _controller_task

    configure_logging()
    logger.info("manager_startup", version=VERSION)

    if settings.controller_enabled:
        try:
            _controller = build_controller()
            _controller_task = asyncio.create_task(
                _controller.start(),
                name="cronjob_controller",
            )
        except Exception as e:
            logger.exception("controller_startup_failed", error=str(e))
    else:
        logger.info("controller_disabled", reason="CONTROLLER_ENABLED=false")

    yield

    logger.info("manager_shutdown")

    if _controller is not None:
        await _controller.stop()

    if _controller_task is not None:
        done, pending = await asyncio.wait({_controller_task}, timeout=10.0)
        for task in pending:
            logger.warning("cancelling_stuck_task", task_name=task.get_name())
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.error("controller_task_failed", error=str(task.exception()))

    if _controller is not None:
        await _controller.client.close()

    _controller = None
    _controller_task = None
    logger.info("manager_shutdown_complete")


# Create FastAPI application
app = FastAPI(
    title="CronJob Controller",
    description="Reconciles CronJob resources toward their desired state",
    version=VERSION,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)


# ===========================================
# Root & Health Endpoints
# ===========================================


@app.get("/")
async def root():
    """Root endpoint - confirms the manager is running."""
    return {"ok": True, "service": "CronJob Controller", "version": VERSION}


@app.get("/health")
async def health():
    """Basic health check."""
    return {"status": "ok"}


@app.get("/healthz")
async def healthz():
    """Liveness probe; 503 once the controller has lost its lease for good."""
    controller = get_controller()
    if controller is not None and controller.lost_leadership:
        return JSONResponse({"status": "lease_lost"}, status_code=503)
    return {"status": "ok"}


async def _readiness() -> dict:
    controller = get_controller()

    cluster_ok = None
    if controller is not None:
        cluster_ok = await controller.client.health_check()

    controller_running = controller is not None and controller.running
    leader = controller.elector.is_leader if controller is not None and controller.elector else None

    if settings.controller_enabled:
        ready = controller_running and bool(cluster_ok)
    else:
        ready = True

    return {
        "ready": ready,
        "checks": {
            "cluster": cluster_ok,
            "controller": controller_running if settings.controller_enabled else None,
            "leader": leader,
        },
    }


@app.get("/health/ready")
async def ready():
    """Readiness check with dependency status."""
    return await _readiness()


@app.get("/readyz")
async def readyz():
    """Readiness probe; 503 until the controller is running."""
    body = await _readiness()
    return JSONResponse(body, status_code=200 if body["ready"] else 503)


@app.get("/health/live")
async def live():
    """Liveness check."""
    return {"live": True}


# ===========================================
# API Info & Stats
# ===========================================


@app.get("/api/info")
async def info():
    """Get controller information."""
    return {
        "name": "CronJob Controller",
        "version": VERSION,
        "watches": f"{API_GROUP_VERSION}, Kind={CRONJOB_KIND}",
        "namespace": settings.watch_namespace or "*",
    }


@app.get("/api/controller/stats")
async def controller_stats():
    """Get controller stats."""
    controller = get_controller()
    if controller is None:
        return {"running": False}
    return controller.get_stats()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.probe_host, port=settings.probe_port)
