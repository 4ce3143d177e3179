#!/usr/bin/env python3
"""
Sleep Preventer - control API
Register/deregister reporters and query session, resource and safety state
"""

import logging
from typing import Optional

import psutil
from fastapi import FastAPI, HTTPException
from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator
from pydantic import BaseModel, Field

from . import __version__
from .controller import SleepController
from .errors import InvalidSessionId

logger = logging.getLogger(__name__)

api_requests = Counter('sleep_preventer_api_requests', 'API request count', ['endpoint', 'method'])


# Request models
class RegisterRequest(BaseModel):
    id: int = Field(..., gt=0)
    origin: Optional[str] = None


class PreventionRequest(BaseModel):
    enabled: bool


def create_app(controller: SleepController, instrument: bool = True) -> FastAPI:
    app = FastAPI(
        title="Claude Sleep Preventer",
        description="Keeps the machine awake while reporter sessions are working",
        version=__version__,
    )

    # ========================================================================
    # Health & Status Endpoints
    # ========================================================================

    @app.get("/api/v1/health")
    def health_check():
        api_requests.labels(endpoint='health', method='GET').inc()
        try:
            process = psutil.Process()
            return {
                "status": "healthy",
                "version": __version__,
                "safety": controller.safety.details(),
                "system": {
                    "cpu_percent": psutil.cpu_percent(interval=None),
                    "memory_percent": psutil.virtual_memory().percent,
                    "daemon_pid": process.pid,
                    "daemon_rss_mb": round(process.memory_info().rss / (1024**2), 1),
                }
            }
        except Exception as e:
            logger.error(f"Health check failed: {e}")
            return {"status": "error", "detail": str(e)}

    @app.get("/api/v1/status")
    def get_status():
        api_requests.labels(endpoint='status', method='GET').inc()
        try:
            return controller.status()
        except Exception as e:
            logger.error(f"Failed to get status: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    # ========================================================================
    # Session Endpoints
    # ========================================================================

    @app.get("/api/v1/sessions")
    def list_sessions():
        api_requests.labels(endpoint='sessions', method='GET').inc()
        try:
            return controller.list_sessions()
        except Exception as e:
            logger.error(f"Failed to list sessions: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/api/v1/sessions")
    def register_session(request: RegisterRequest):
        """
        Register (or refresh) a reporter session.
        Returns after sleep prevention has been reconciled.
        """
        api_requests.labels(endpoint='sessions', method='POST').inc()
        try:
            return controller.register(request.id, origin=request.origin)
        except InvalidSessionId as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error(f"Failed to register session {request.id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.delete("/api/v1/sessions/{session_id}")
    def deregister_session(session_id: int):
        api_requests.labels(endpoint='sessions', method='DELETE').inc()
        try:
            return controller.deregister(session_id)
        except InvalidSessionId as e:
            raise HTTPException(status_code=400, detail=str(e))
        except Exception as e:
            logger.error(f"Failed to deregister session {session_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    # ========================================================================
    # Maintenance Endpoints
    # ========================================================================

    @app.post("/api/v1/reset")
    def reset():
        api_requests.labels(endpoint='reset', method='POST').inc()
        try:
            return controller.reset()
        except Exception as e:
            logger.error(f"Reset failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/api/v1/cleanup")
    def cleanup():
        """Run a reaper pass now"""
        api_requests.labels(endpoint='cleanup', method='POST').inc()
        try:
            report = controller.run_reaper()
            return {**controller.status(), "reaper": report.to_dict()}
        except Exception as e:
            logger.error(f"Cleanup failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.post("/api/v1/thermal")
    def thermal_check():
        """Run a thermal safety check now"""
        api_requests.labels(endpoint='thermal', method='POST').inc()
        try:
            return controller.check_thermal()
        except Exception as e:
            logger.error(f"Thermal check failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    @app.put("/api/v1/prevention")
    def set_prevention(request: PreventionRequest):
        api_requests.labels(endpoint='prevention', method='PUT').inc()
        try:
            return controller.set_prevention_enabled(request.enabled)
        except Exception as e:
            logger.error(f"Failed to switch prevention: {e}")
            raise HTTPException(status_code=500, detail=str(e))

    if instrument:
        Instrumentator().instrument(app).expose(app)

    return app
