from __future__ import annotations

import os
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from autocat.commands import Command, CommandDispatcher, CommandKind, CommandResponse
from autocat.config_manager import ConfigManager
from autocat.scan_engine import ScanEngine
from autocat.scheduler import ScanScheduler
from autocat.state_store import StateStore


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class ConfigImportRequest(BaseModel):
    content: str = Field(min_length=1)


class CategoryCreateRequest(BaseModel):
    keyword: str
    color: str = "#0000FF"


class CategoryNamesRequest(BaseModel):
    category_names: list[str] = Field(default_factory=list)


class CommandRequest(BaseModel):
    action: str
    category_names: list[str] = Field(default_factory=list)


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self.scan_engine = ScanEngine(self.config_manager, self.state_store)
        self.scheduler = ScanScheduler(self.scan_engine, self.config_manager)
        self.dispatcher = CommandDispatcher(self.config_manager, self.scan_engine, self.scheduler)


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_password = str(current.get("caldav", {}).get("password", ""))
    caldav = sanitized.get("caldav")
    if isinstance(caldav, dict):
        password = caldav.get("password")
        if password is not None and str(password).strip() in {"", "***"}:
            if current_password:
                caldav.pop("password", None)
            else:
                caldav["password"] = ""
        if not caldav:
            sanitized.pop("caldav", None)
    return sanitized


def _command_result(response: CommandResponse) -> dict[str, Any]:
    if not response.success:
        raise HTTPException(status_code=502, detail=response.error or "command failed")
    return response.to_dict()


def create_app() -> FastAPI:
    config_path = os.getenv("AUTOCAT_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("AUTOCAT_STATE_PATH", "data/state.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="Autocat Admin", version="0.1.0")
    app.state.context = context

    def _reload() -> dict[str, Any]:
        return _command_result(app.state.context.dispatcher.dispatch(Command(CommandKind.RELOAD_CONFIG)))

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start(run_immediately=True)

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        current = app.state.context.config_manager.load().to_dict()
        sanitized_payload = _sanitize_config_payload(request.payload, current)
        try:
            updated = app.state.context.config_manager.update(sanitized_payload)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        reload_result = _reload()
        return {"message": "config updated", "config": updated.portable_dict(), "reload": reload_result}

    @app.get("/api/config/export")
    def export_config() -> dict[str, Any]:
        return {"content": app.state.context.config_manager.export_json()}

    @app.post("/api/config/import")
    def import_config(request: ConfigImportRequest) -> dict[str, Any]:
        try:
            imported = app.state.context.config_manager.import_json(request.content)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=f"Error importing: {exc}") from exc
        _reload()
        return {"message": "config imported", "config": imported.portable_dict()}

    @app.post("/api/categories")
    def add_category(request: CategoryCreateRequest) -> dict[str, Any]:
        try:
            updated = app.state.context.config_manager.add_category(request.keyword, request.color)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        _reload()
        return {"message": f'Added "{request.keyword.strip()}"', "categories": updated.categories}

    @app.delete("/api/categories/{keyword}")
    def delete_category(keyword: str) -> dict[str, Any]:
        try:
            updated = app.state.context.config_manager.remove_category(keyword)
        except KeyError as exc:
            raise HTTPException(status_code=404, detail="category not found") from exc
        _reload()
        return {"message": f'Removed "{keyword}"', "categories": updated.categories}

    @app.post("/api/categories/ensure")
    def ensure_categories() -> dict[str, Any]:
        return app.state.context.scan_engine.ensure_categories().to_dict()

    @app.post("/api/categories/reset")
    def reset_categories(request: CategoryNamesRequest) -> dict[str, Any]:
        response = app.state.context.dispatcher.dispatch(
            Command(CommandKind.RESET_CATEGORIES, category_names=request.category_names)
        )
        return _command_result(response)

    @app.post("/api/scan")
    def scan_now() -> dict[str, Any]:
        return _command_result(app.state.context.dispatcher.dispatch(Command(CommandKind.SCAN)))

    @app.post("/api/scan/force")
    def force_scan() -> dict[str, Any]:
        return _command_result(app.state.context.dispatcher.dispatch(Command(CommandKind.FORCE_SCAN)))

    @app.get("/api/stats")
    def stats() -> dict[str, Any]:
        return app.state.context.scan_engine.get_stats().to_dict()

    @app.get("/api/scan/history")
    def scan_history(limit: int = 20) -> dict[str, Any]:
        return {"runs": app.state.context.state_store.recent_scan_runs(limit=limit)}

    @app.get("/api/scan/history/{run_id}")
    def scan_history_details(run_id: int) -> dict[str, Any]:
        return {"details": app.state.context.state_store.scan_run_details(run_id)}

    @app.get("/api/calendars")
    def list_calendars() -> dict[str, Any]:
        try:
            calendars = app.state.context.scan_engine.list_calendars()
        except Exception as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        return {"calendars": [calendar.to_dict() for calendar in calendars]}

    @app.post("/api/commands")
    def run_command(request: CommandRequest) -> dict[str, Any]:
        response = app.state.context.dispatcher.dispatch_action(request.action, request.category_names)
        if not response.success and response.error.startswith("Unknown action"):
            raise HTTPException(status_code=400, detail=response.error)
        return _command_result(response)

    return app
