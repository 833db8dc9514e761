"""
FastAPI backend for the Tracker Dashboard.

Serves the derived dashboard views (gantt, engineer breakdown, kanban,
calendar) and the mutation endpoints used by the forms. The dashboard is
recomputed whenever the data source signals a change; external writers can
signal through ``POST /api/notify``.
"""

import logging
from typing import Any, Callable, Dict, Literal, Optional

from fastapi import FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from tracker.core.aggregator import Aggregator
from tracker.core.classifier import Classifier
from tracker.core.config import Settings, load_display_config, load_settings
from tracker.core.data_source import DataSourceError, SQLiteDataSource
from tracker.core.entity_store import EntityStore
from tracker.core.mutations import EntityNotFoundError, TrackerWriter
from tracker.core.store import serialize

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


class UserIn(BaseModel):
    full_name: str
    email: Optional[str] = None
    role: Literal["user", "admin"] = "user"
    performed_by: Optional[str] = None


class TaskIn(BaseModel):
    name: str
    category: str
    created_by: Optional[str] = None


class SubtaskIn(BaseModel):
    task_id: str
    name: str
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None


class SubSubtaskIn(BaseModel):
    subtask_id: str
    name: str
    assigned_to: Optional[str] = None
    created_by: Optional[str] = None


class MilestoneIn(BaseModel):
    milestone_date: str
    milestone_text: str
    subtask_id: Optional[str] = None
    sub_subtask_id: Optional[str] = None
    created_by: Optional[str] = None


class MilestoneUpdate(BaseModel):
    milestone_text: Optional[str] = None
    milestone_date: Optional[str] = None
    performed_by: Optional[str] = None


def _call(action: Callable[[], Any]) -> Any:
    """Run a store operation and map its failures onto HTTP errors."""
    try:
        return action()
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except EntityNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DataSourceError as e:
        logger.error(f"Write failed: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail=str(e))


def build_aggregator(source: SQLiteDataSource) -> Aggregator:
    """Aggregator using the persisted display config (defaults on failure)."""
    return Aggregator(Classifier(load_display_config(source)))


def create_app(
    settings: Optional[Settings] = None,
    source: Optional[SQLiteDataSource] = None,
) -> FastAPI:
    """
    Build the API with its data source, entity store and writer.

    Parameters
    ----------
    settings : Optional[Settings]
        Runtime settings (default: loaded from config.json)
    source : Optional[SQLiteDataSource]
        Data source to serve (default: SQLite at settings.database_path)

    Returns
    -------
    FastAPI
        Application with the initial snapshot already loaded
    """
    settings = settings or load_settings()
    source = source or SQLiteDataSource(settings.database_path)
    store = EntityStore(source, build_aggregator(source))
    writer = TrackerWriter(source)

    app = FastAPI(
        title="Tracker API",
        description="Backend API for the Tracker project dashboard",
        version=API_VERSION,
    )

    # Configure CORS - allow all localhost origins in development
    app.add_middleware(
        CORSMiddleware,
        allow_origin_regex=r"http://(localhost|127\.0\.0\.1):\d+",
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.source = source
    app.state.store = store
    app.state.writer = writer

    store.start()
    logger.info(f"Tracker API ready, database: {source.db_path}")

    @app.get("/")  # type: ignore[misc]
    async def root() -> Dict[str, Any]:
        """API information and status."""
        return {
            "name": "Tracker API",
            "version": API_VERSION,
            "status": "running",
            "endpoints": {
                "/api/dashboard": "Every derived view in one payload",
                "/api/gantt": "Annotated task tree and day axis",
                "/api/engineers": "Per-user breakdown",
                "/api/kanban": "Cards grouped by latest milestone",
                "/api/calendar": "Milestones by date",
                "/api/config": "Display configuration",
                "/api/schema": "Schema status (GET) and setup (POST)",
                "/health": "Health check",
            },
        }

    @app.get("/health")  # type: ignore[misc]
    async def health() -> Dict[str, Any]:
        return {"status": "healthy", "stale": store.dashboard.is_stale}

    @app.get("/api/dashboard")  # type: ignore[misc]
    async def get_dashboard(
        refresh: bool = Query(False, description="Re-fetch before answering"),
    ) -> Dict[str, Any]:
        """
        Get every derived view.

        A failed fetch is not an HTTP error: the last good data is returned
        with ``error`` set and ``stale`` true.
        """
        dashboard = store.refresh() if refresh else store.dashboard
        return dashboard.to_dict()

    @app.get("/api/gantt")  # type: ignore[misc]
    async def get_gantt() -> Dict[str, Any]:
        dashboard = store.dashboard
        return {
            "snapshot_version": dashboard.snapshot_version,
            "error": dashboard.error,
            "day_sequence": [d.isoformat() for d in dashboard.day_sequence],
            "tasks": serialize(dashboard.tasks),
        }

    @app.get("/api/engineers")  # type: ignore[misc]
    async def get_engineers() -> Dict[str, Any]:
        dashboard = store.dashboard
        return {"error": dashboard.error, "engineers": serialize(dashboard.engineers)}

    @app.get("/api/kanban")  # type: ignore[misc]
    async def get_kanban() -> Dict[str, Any]:
        dashboard = store.dashboard
        return {"error": dashboard.error, "columns": serialize(dashboard.kanban)}

    @app.get("/api/calendar")  # type: ignore[misc]
    async def get_calendar() -> Dict[str, Any]:
        dashboard = store.dashboard
        return {"error": dashboard.error, "entries": serialize(dashboard.calendar)}

    @app.get("/api/config")  # type: ignore[misc]
    async def get_config() -> Dict[str, Any]:
        return store.aggregator.classifier.config.to_dict()

    @app.post("/api/config/reload")  # type: ignore[misc]
    async def reload_config() -> Dict[str, Any]:
        """Reload display config from the database and recompute."""
        store.set_aggregator(build_aggregator(source))
        return store.aggregator.classifier.config.to_dict()

    @app.get("/api/schema")  # type: ignore[misc]
    async def get_schema() -> Dict[str, Any]:
        try:
            missing = source.check_schema()
        except DataSourceError as e:
            return {"is_setup": False, "missing_tables": [], "error": str(e)}
        return {"is_setup": not missing, "missing_tables": missing, "error": None}

    @app.post("/api/schema")  # type: ignore[misc]
    async def setup_schema() -> Dict[str, Any]:
        """Create missing tables, then reload config and data."""
        try:
            source.ensure_schema()
        except DataSourceError as e:
            logger.error(f"Schema setup failed: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail=str(e))
        store.set_aggregator(build_aggregator(source))
        store.refresh()
        return {"is_setup": True, "missing_tables": source.check_schema()}

    @app.post("/api/refresh")  # type: ignore[misc]
    async def refresh() -> Dict[str, Any]:
        """User-initiated retry of the snapshot fetch."""
        dashboard = store.refresh()
        return {
            "snapshot_version": dashboard.snapshot_version,
            "error": dashboard.error,
            "stale": dashboard.is_stale,
        }

    @app.post("/api/notify")  # type: ignore[misc]
    async def notify() -> Dict[str, Any]:
        """Signal that an external writer changed one of the tables."""
        source.notify_change()
        return {"snapshot_version": store.dashboard.snapshot_version, "error": store.dashboard.error}

    @app.get("/api/history")  # type: ignore[misc]
    async def get_history(limit: int = Query(100, ge=1, le=1000)) -> Dict[str, Any]:
        actions = _call(lambda: source.list_actions(limit))
        return {"actions": serialize(actions)}

    @app.post("/api/users", status_code=201)  # type: ignore[misc]
    async def create_user(body: UserIn) -> Dict[str, Any]:
        return serialize(_call(lambda: writer.create_user(
            body.full_name, body.email, body.role, body.performed_by
        )))

    @app.delete("/api/users/{user_id}", status_code=204)  # type: ignore[misc]
    async def delete_user(user_id: str) -> None:
        _call(lambda: writer.delete_user(user_id))

    @app.post("/api/tasks", status_code=201)  # type: ignore[misc]
    async def create_task(body: TaskIn) -> Dict[str, Any]:
        return serialize(_call(lambda: writer.create_task(body.name, body.category, body.created_by)))

    @app.delete("/api/tasks/{task_id}", status_code=204)  # type: ignore[misc]
    async def delete_task(task_id: str) -> None:
        _call(lambda: writer.delete_task(task_id))

    @app.post("/api/subtasks", status_code=201)  # type: ignore[misc]
    async def create_subtask(body: SubtaskIn) -> Dict[str, Any]:
        return serialize(_call(lambda: writer.create_subtask(
            body.task_id, body.name, body.assigned_to, body.created_by
        )))

    @app.delete("/api/subtasks/{subtask_id}", status_code=204)  # type: ignore[misc]
    async def delete_subtask(subtask_id: str) -> None:
        _call(lambda: writer.delete_subtask(subtask_id))

    @app.post("/api/sub-subtasks", status_code=201)  # type: ignore[misc]
    async def create_sub_subtask(body: SubSubtaskIn) -> Dict[str, Any]:
        return serialize(_call(lambda: writer.create_sub_subtask(
            body.subtask_id, body.name, body.assigned_to, body.created_by
        )))

    @app.delete("/api/sub-subtasks/{sub_subtask_id}", status_code=204)  # type: ignore[misc]
    async def delete_sub_subtask(sub_subtask_id: str) -> None:
        _call(lambda: writer.delete_sub_subtask(sub_subtask_id))

    @app.post("/api/milestones", status_code=201)  # type: ignore[misc]
    async def create_milestone(body: MilestoneIn) -> Dict[str, Any]:
        return serialize(_call(lambda: writer.create_milestone(
            body.milestone_date, body.milestone_text,
            body.subtask_id, body.sub_subtask_id, body.created_by,
        )))

    @app.patch("/api/milestones/{milestone_id}")  # type: ignore[misc]
    async def update_milestone(milestone_id: str, body: MilestoneUpdate) -> Dict[str, Any]:
        return serialize(_call(lambda: writer.update_milestone(
            milestone_id, body.milestone_text, body.milestone_date, body.performed_by
        )))

    @app.delete("/api/milestones/{milestone_id}", status_code=204)  # type: ignore[misc]
    async def delete_milestone(milestone_id: str) -> None:
        _call(lambda: writer.delete_milestone(milestone_id))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = app.state.settings
    logger.info(f"Starting Tracker API on http://0.0.0.0:{settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level=settings.log_level)  # nosec B104
