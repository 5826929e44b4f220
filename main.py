from __future__ import annotations

import secrets
from dataclasses import asdict
from threading import Lock

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from roleholder import db
from roleholder.api_models import (
    CandidateResponse,
    ManageHolderRequest,
    ReconcileRequest,
    RequestStateResponse,
    RoleResponse,
)
from roleholder.platform import InMemoryPlatform
from roleholder.reconciler import RoleReconciler
from roleholder.roles import RoleCatalog, UnknownRole, default_catalog
from roleholder.runtime import IDLE
from roleholder.settings import settings

app = FastAPI(title="Role Holder Reconciler")
security = HTTPBasic()

_reconciler: RoleReconciler | None = None
_reconciler_lock = Lock()


def build_reconciler() -> RoleReconciler:
    catalog = RoleCatalog.from_json(settings.catalog_path) if settings.catalog_path else default_catalog()
    if settings.platform_seed_path:
        platform = InMemoryPlatform.from_json(settings.platform_seed_path)
    else:
        platform = InMemoryPlatform(users=[settings.default_user])
    return RoleReconciler(catalog, platform)


def get_reconciler() -> RoleReconciler:
    global _reconciler
    with _reconciler_lock:
        if _reconciler is None:
            _reconciler = build_reconciler()
        return _reconciler


def get_current_username(credentials: HTTPBasicCredentials = Depends(security)) -> str:
    user_ok = secrets.compare_digest(credentials.username.encode(), settings.admin_user.encode())
    pass_ok = secrets.compare_digest(credentials.password.encode(), settings.admin_password.encode())
    if not (user_ok and pass_ok):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid credentials",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username


def _user(user: int | None) -> int:
    return settings.default_user if user is None else user


@app.exception_handler(UnknownRole)
def unknown_role_handler(request: Request, exc: UnknownRole) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.get("/roles", response_model=list[RoleResponse])
def list_roles(
    user: int | None = Query(None, ge=0),
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
):
    out = []
    for s in reconciler.summarize(_user(user)):
        role = reconciler.catalog.get(s.name)
        out.append(
            RoleResponse(
                name=s.name,
                label=s.label,
                behavior=role.behavior_kind,
                exclusive=s.exclusive,
                holders=s.holders,
                qualifying=s.qualifying,
            )
        )
    return out


@app.get("/roles/{role_name}/applications", response_model=list[CandidateResponse])
def list_applications(
    role_name: str,
    user: int | None = Query(None, ge=0),
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
):
    return [
        CandidateResponse(key=c.key, package=c.package_name, uid=c.uid, label=c.label, is_holder=c.is_holder)
        for c in reconciler.query_qualifying_applications(role_name, _user(user))
    ]


@app.get("/roles/{role_name}/holders")
def list_holders(
    role_name: str,
    user: int | None = Query(None, ge=0),
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
) -> dict:
    return {"role": role_name, "holders": sorted(reconciler.query_current_holders(role_name, _user(user)))}


@app.post(
    "/roles/{role_name}/holders",
    response_model=RequestStateResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
def manage_holder(
    role_name: str,
    req: ManageHolderRequest,
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
):
    handle = reconciler.manage_role_holder(role_name, req.package, _user(req.user), add=req.add)
    return RequestStateResponse(**handle.snapshot())


@app.get("/roles/{role_name}/holders/{package_name}/state", response_model=RequestStateResponse)
def holder_request_state(
    role_name: str,
    package_name: str,
    user: int | None = Query(None, ge=0),
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
):
    handle = reconciler.peek_handle(role_name, package_name, _user(user))
    if handle is None:
        return RequestStateResponse(role=role_name, package=package_name, user=_user(user), state=IDLE)
    return RequestStateResponse(**handle.snapshot())


@app.post("/roles/{role_name}/holders/{package_name}/reset", response_model=RequestStateResponse)
def reset_holder_request(
    role_name: str,
    package_name: str,
    user: int | None = Query(None, ge=0),
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
):
    handle = reconciler.peek_handle(role_name, package_name, _user(user))
    if handle is None or not handle.reset_state():
        state = handle.state if handle is not None else IDLE
        raise HTTPException(status_code=409, detail=f"Request is {state}; only finished requests can be reset.")
    return RequestStateResponse(**handle.snapshot())


@app.post("/roles/{role_name}/reconcile", response_model=list[RequestStateResponse])
def reconcile_role(
    role_name: str,
    req: ReconcileRequest,
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
):
    try:
        handles = reconciler.reconcile(role_name, req.holders, _user(req.user))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return [RequestStateResponse(**h.snapshot()) for h in handles]


@app.get("/requests")
def list_requests(
    role: str | None = None,
    limit: int = Query(100, ge=1, le=1000),
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
) -> list[dict]:
    return [asdict(r) for r in db.list_requests(role_name=role, limit=limit)]


@app.get("/events")
def list_events(
    limit: int = Query(100, ge=1, le=1000),
    reconciler: RoleReconciler = Depends(get_reconciler),
    username: str = Depends(get_current_username),
) -> list[dict]:
    return db.latest_events(limit=limit)
