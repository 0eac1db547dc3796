"""
API routes module.
"""

from jobqueue.api.routes.health import router as health_router
from jobqueue.api.routes.tasks import router as tasks_router
from jobqueue.api.routes.worker import router as worker_router

__all__ = ["health_router", "tasks_router", "worker_router"]
