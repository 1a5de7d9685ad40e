"""Development control routes: data reset and the scenario simulator."""

from typing import Protocol

from pydantic import BaseModel
from fastapi import APIRouter, HTTPException

from ...app import IApplication


class StatusResponse(BaseModel):
    """Response model for status."""

    status: str


class ISimulator(Protocol):
    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...


# Set by the entry point when a simulator is configured
_sim_instance: ISimulator | None = None


def set_sim_instance(sim: ISimulator | None) -> None:
    """Set the global simulator instance."""
    global _sim_instance
    _sim_instance = sim


def get_sim_instance() -> ISimulator | None:
    """Get the global simulator instance."""
    return _sim_instance


def _require_sim() -> ISimulator:
    if _sim_instance is None:
        raise HTTPException(status_code=404, detail="SIM not configured")
    return _sim_instance


def create_control_router(app: IApplication) -> APIRouter:
    """Create control router."""
    router = APIRouter(prefix="/api/control", tags=["control"])

    @router.post("/reset", response_model=StatusResponse)
    async def reset_system() -> dict:
        """Clear sessions, work items, logs, cache and rate counters."""
        try:
            await app.reset()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "ok"}

    @router.post("/sim/start", response_model=StatusResponse)
    async def start_sim() -> dict:
        sim = _require_sim()
        try:
            await sim.start()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "ok"}

    @router.post("/sim/stop", response_model=StatusResponse)
    async def stop_sim() -> dict:
        sim = _require_sim()
        try:
            await sim.stop()
        except Exception as e:
            raise HTTPException(status_code=500, detail=str(e))
        return {"status": "ok"}

    return router
