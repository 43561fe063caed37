from __future__ import annotations

import secrets
from dataclasses import asdict

from fastapi import Depends, FastAPI, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from cso import db
from cso.api_models import ConfirmRequest
from cso.backend import ClusterApiClient
from cso.dispatcher import HttpCommandDispatcher
from cso.engine import OrchestrationEngine
from cso.ledger import OperationLedger
from cso.preconditions import NameNodeCheckpointChecker
from cso.queries import Query
from cso.registry import INSTALLED, STARTED, ServiceRegistry
from cso.settings import settings
from cso.sync import ClusterSync

security = HTTPBasic()


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    user_ok = secrets.compare_digest(credentials.username, settings.admin_user)
    pass_ok = secrets.compare_digest(credentials.password, settings.admin_password)
    if not (user_ok and pass_ok):
        raise HTTPException(status_code=401, detail="Invalid credentials", headers={"WWW-Authenticate": "Basic"})
    return credentials.username


def _query_out(q: Query) -> dict:
    return asdict(q)


def build_engine() -> tuple[OrchestrationEngine, ClusterSync]:
    client = ClusterApiClient()
    registry = ServiceRegistry()
    ledger = OperationLedger()
    engine = OrchestrationEngine(
        registry,
        ledger,
        HttpCommandDispatcher(client),
        NameNodeCheckpointChecker(client),
        show_background_operations=lambda: db.log_event("INFO", "Background operations running, see /operations"),
    )
    return engine, ClusterSync(client, registry, ledger)


def create_app(engine: OrchestrationEngine | None = None, sync: ClusterSync | None = None) -> FastAPI:
    if engine is None:
        engine, sync = build_engine()

    app = FastAPI(title="Cluster Service Orchestrator")

    @app.on_event("startup")
    def startup() -> None:
        db.init_db()
        if sync:
            sync.start()

    @app.on_event("shutdown")
    def shutdown() -> None:
        if sync:
            sync.stop()

    @app.get("/services")
    def list_services(username: str = Depends(get_current_username)):
        return {
            "services": [asdict(s) for s in engine.registry.all_services()],
            "start_all_disabled": engine.is_start_all_disabled(),
            "stop_all_disabled": engine.is_stop_all_disabled(),
            "restart_required_disabled": engine.is_restart_all_required_disabled(),
        }

    @app.get("/operations")
    def operations(username: str = Depends(get_current_username)):
        return {"in_flight": engine.ledger.in_flight_operation_count()}

    def _transition(desired_state: str, body: ConfirmRequest, username: str) -> dict:
        if not body.confirm:
            raise HTTPException(status_code=400, detail="Confirmation required")
        q = engine.request_transition(desired_state, confirmation_granted=True)
        if q is None:
            raise HTTPException(status_code=409, detail="Operation is disabled")
        db.log_event("INFO", f"{username} requested '{q.context}' ({q.id})", context=q.context)
        return _query_out(q)

    @app.post("/services/start-all", status_code=status.HTTP_202_ACCEPTED)
    def start_all(body: ConfirmRequest, username: str = Depends(get_current_username)):
        return _transition(STARTED, body, username)

    @app.post("/services/stop-all", status_code=status.HTTP_202_ACCEPTED)
    def stop_all(body: ConfirmRequest, username: str = Depends(get_current_username)):
        return _transition(INSTALLED, body, username)

    @app.get("/services/restart-required")
    def restart_required_info(username: str = Depends(get_current_username)):
        return {
            "disabled": engine.is_restart_all_required_disabled(),
            "services": engine.stale_service_names(),
        }

    @app.post("/services/restart-required", status_code=status.HTTP_202_ACCEPTED)
    def restart_required(body: ConfirmRequest, username: str = Depends(get_current_username)):
        if not body.confirm:
            raise HTTPException(status_code=400, detail="Confirmation required")
        q = engine.request_restart_required()
        if q is None:
            raise HTTPException(status_code=409, detail="No service requires a restart")
        db.log_event("INFO", f"{username} requested '{q.context}' ({q.id})", context=q.context)
        return _query_out(q)

    @app.post("/services/restart-all", status_code=status.HTTP_202_ACCEPTED)
    def restart_all(username: str = Depends(get_current_username)):
        q = engine.restart_all_services()
        if q is None:
            raise HTTPException(status_code=409, detail="A restart cycle is already running")
        db.log_event("INFO", f"{username} started a full restart ({q.id})", context=q.context)
        return _query_out(q)

    @app.get("/restart-cycle")
    def restart_cycle(username: str = Depends(get_current_username)):
        return {"state": engine.restart_cycle_state, "start_eligible": engine.cycle.start_eligible}

    @app.get("/queries")
    def list_queries(username: str = Depends(get_current_username)):
        return [_query_out(q) for q in engine.queries.list_queries()]

    @app.get("/queries/{query_id}")
    def get_query(query_id: str, username: str = Depends(get_current_username)):
        q = engine.queries.get(query_id)
        if q is None:
            raise HTTPException(status_code=404, detail="Unknown query")
        return _query_out(q)

    @app.get("/events")
    def events(limit: int = 100, username: str = Depends(get_current_username)):
        return db.latest_events(max(1, min(limit, 1000)))

    return app


app = create_app()
