"""FastAPI facade over :class:`~olympusbank.service.FamilyBank`.

Run with ``uvicorn --factory olympusbank.webapp:create_app``. The bank is
initialised in the application lifespan and its sync timers run for as long
as the server does.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.middleware.sessions import SessionMiddleware

from .config import SESSION_SECRET
from .exceptions import (
    IncorrectPasswordError,
    InsufficientFundsError,
    NotFoundError,
    OlympusBankError,
    PersistenceError,
    StructuralError,
    ValidationError,
)
from .models import Role
from .money import to_float
from .service import FamilyBank, Result

ROLE_SESSION_KEY = "olympus_role"

_STATUS_BY_ERROR = (
    (ValidationError, 422),
    (StructuralError, 422),
    (NotFoundError, 404),
    (InsufficientFundsError, 409),
    (IncorrectPasswordError, 403),
    (PersistenceError, 503),
)


def status_for(error: OlympusBankError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(error, error_type):
            return status
    return 400


def _unwrap(result: Result) -> Any:
    if not result.ok:
        assert result.error is not None
        detail: Dict[str, Any] = {"error": type(result.error).__name__, "message": str(result.error)}
        errors = getattr(result.error, "errors", ())
        if errors:
            detail["errors"] = list(errors)
        raise HTTPException(status_code=status_for(result.error), detail=detail)
    return result.value


def _session_role(request: Request) -> Optional[Role]:
    raw = request.session.get(ROLE_SESSION_KEY)
    try:
        return Role(raw) if raw else None
    except ValueError:
        return None


def require_parent(request: Request) -> Optional[JSONResponse]:
    if _session_role(request) is not Role.PARENT:
        return JSONResponse({"detail": "Parent sign-in required."}, status_code=403)
    return None


def create_app(bank: FamilyBank | None = None, *, start_scheduler: bool = True) -> FastAPI:
    """Build the HTTP application around ``bank`` (configured from the environment by default)."""

    bank = bank or FamilyBank.from_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await bank.init()
        if start_scheduler:
            await bank.start()
        try:
            yield
        finally:
            await bank.close()

    app = FastAPI(title="Family Mount Olympus Bank", lifespan=lifespan)
    app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET, same_site="lax", max_age=None)
    app.state.bank = bank

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------
    @app.post("/login")
    async def login(request: Request, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        role = _unwrap(bank.login(payload.get("role", ""), payload.get("password")))
        request.session[ROLE_SESSION_KEY] = role.value
        return {"role": role.value}

    @app.post("/logout")
    async def logout(request: Request) -> Dict[str, Any]:
        request.session.pop(ROLE_SESSION_KEY, None)
        bank.logout()
        return {"role": None}

    @app.get("/session")
    async def session_info(request: Request) -> Dict[str, Any]:
        role = _session_role(request)
        return {"role": role.value if role else None, "familyId": bank.family_id}

    @app.post("/password")
    async def change_password(request: Request, payload: Dict[str, Any] = Body(...)):
        if (denied := require_parent(request)) is not None:
            return denied
        _unwrap(await bank.change_parent_password(payload.get("current", ""), payload.get("new", "")))
        return {"ok": True}

    # ------------------------------------------------------------------
    # Balance and transactions
    # ------------------------------------------------------------------
    @app.get("/balance")
    async def balance() -> Dict[str, Any]:
        return {"balance": to_float(bank.get_balance())}

    @app.post("/balance")
    async def set_balance(request: Request, payload: Dict[str, Any] = Body(...)):
        if (denied := require_parent(request)) is not None:
            return denied
        value = _unwrap(await bank.set_balance(payload.get("balance")))
        return {"balance": to_float(value)}

    @app.get("/transactions")
    async def transactions(limit: int = Query(0, ge=0), type: Optional[str] = Query(None)) -> Dict[str, Any]:
        try:
            items = bank.get_transactions(limit, type)
        except ValueError:
            raise HTTPException(status_code=422, detail={"message": f"Unknown transaction type: {type}"})
        return {"transactions": [tx.to_dict() for tx in items]}

    @app.post("/transactions", status_code=201)
    async def add_transaction(request: Request, payload: Dict[str, Any] = Body(...)):
        if (denied := require_parent(request)) is not None:
            return denied
        transaction = _unwrap(await bank.add_transaction(payload))
        return {"transaction": transaction.to_dict(), "balance": to_float(bank.get_balance())}

    @app.post("/transactions/pending", status_code=201)
    async def add_pending_transaction(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        transaction = _unwrap(await bank.add_pending_transaction(payload))
        return {"transaction": transaction.to_dict()}

    @app.post("/transactions/clear")
    async def clear_transactions(request: Request):
        if (denied := require_parent(request)) is not None:
            return denied
        _unwrap(await bank.clear_transactions())
        return {"transactions": [tx.to_dict() for tx in bank.get_transactions()]}

    @app.get("/approvals")
    async def approvals(request: Request):
        if (denied := require_parent(request)) is not None:
            return denied
        return {"approvals": [item.as_dict() for item in bank.get_all_pending_approvals()]}

    @app.post("/pending/{transaction_id}/approve")
    async def approve_pending(request: Request, transaction_id: str):
        if (denied := require_parent(request)) is not None:
            return denied
        transaction = _unwrap(await bank.approve_pending_transaction(transaction_id))
        return {"transaction": transaction.to_dict(), "balance": to_float(bank.get_balance())}

    @app.post("/pending/{transaction_id}/reject")
    async def reject_pending(request: Request, transaction_id: str):
        if (denied := require_parent(request)) is not None:
            return denied
        transaction = _unwrap(await bank.reject_pending_transaction(transaction_id))
        return {"transaction": transaction.to_dict()}

    # ------------------------------------------------------------------
    # Chores
    # ------------------------------------------------------------------
    @app.get("/chores")
    async def chores() -> Dict[str, Any]:
        return {"chores": [chore.to_dict() for chore in bank.get_chores()]}

    @app.post("/chores", status_code=201)
    async def add_chore(request: Request, payload: Dict[str, Any] = Body(...)):
        if (denied := require_parent(request)) is not None:
            return denied
        chore = _unwrap(await bank.add_chore(payload))
        return {"chore": chore.to_dict()}

    @app.post("/chores/{chore_id}/complete")
    async def complete_chore(chore_id: str, payload: Optional[Dict[str, Any]] = Body(None)) -> Dict[str, Any]:
        chore = _unwrap(await bank.complete_chore(chore_id, (payload or {}).get("eventCount", 1)))
        return {"chore": chore.to_dict()}

    @app.post("/chores/{chore_id}/approve")
    async def approve_chore(request: Request, chore_id: str):
        if (denied := require_parent(request)) is not None:
            return denied
        transaction = _unwrap(await bank.approve_chore(chore_id))
        return {"transaction": transaction.to_dict(), "balance": to_float(bank.get_balance())}

    @app.post("/chores/{chore_id}/reject")
    async def reject_chore(request: Request, chore_id: str):
        if (denied := require_parent(request)) is not None:
            return denied
        return {"chore": _unwrap(await bank.reject_chore(chore_id)).to_dict()}

    @app.post("/chores/{chore_id}/reset")
    async def reset_chore(request: Request, chore_id: str):
        if (denied := require_parent(request)) is not None:
            return denied
        return {"chore": _unwrap(await bank.reset_chore(chore_id)).to_dict()}

    @app.delete("/chores/{chore_id}")
    async def delete_chore(request: Request, chore_id: str):
        if (denied := require_parent(request)) is not None:
            return denied
        return {"chore": _unwrap(await bank.delete_chore(chore_id)).to_dict()}

    # ------------------------------------------------------------------
    # Goals
    # ------------------------------------------------------------------
    @app.get("/goals")
    async def goals() -> Dict[str, Any]:
        return {"goals": [goal.to_dict() for goal in bank.get_goals()]}

    @app.post("/goals", status_code=201)
    async def add_goal(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        return {"goal": _unwrap(await bank.add_goal(payload)).to_dict()}

    @app.post("/goals/{goal_id}/contribute")
    async def contribute(goal_id: str, payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        goal = _unwrap(await bank.contribute_to_goal(goal_id, payload.get("amount")))
        return {"goal": goal.to_dict(), "balance": to_float(bank.get_balance())}

    @app.delete("/goals/{goal_id}")
    async def delete_goal(request: Request, goal_id: str):
        if (denied := require_parent(request)) is not None:
            return denied
        goal = _unwrap(await bank.delete_goal(goal_id))
        return {"goal": goal.to_dict(), "balance": to_float(bank.get_balance())}

    # ------------------------------------------------------------------
    # Family, sync and data management
    # ------------------------------------------------------------------
    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return bank.health_status()

    @app.post("/family")
    async def set_family(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        if not await bank.set_family_id(payload.get("familyId", "")):
            raise HTTPException(status_code=422, detail={"message": "Family ID is required."})
        return {"familyId": bank.family_id, "balance": to_float(bank.get_balance())}

    @app.post("/sync")
    async def sync() -> Dict[str, Any]:
        return {"synced": await bank.manual_sync()}

    @app.post("/sync/force")
    async def force_sync(request: Request):
        if (denied := require_parent(request)) is not None:
            return denied
        return {"synced": await bank.force_sync_from_remote()}

    @app.post("/connection")
    async def connection() -> Dict[str, Any]:
        return {"online": await bank.check_connection()}

    @app.post("/visibility")
    async def visibility(payload: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
        bank.set_visibility(bool(payload.get("visible", True)))
        return {"visible": bank.scheduler.visible}

    @app.get("/export")
    async def export_data(request: Request):
        if (denied := require_parent(request)) is not None:
            return denied
        return PlainTextResponse(bank.export_data(), media_type="application/json")

    @app.post("/import")
    async def import_data(request: Request):
        if (denied := require_parent(request)) is not None:
            return denied
        _unwrap(await bank.import_data(await request.body()))
        return {"ok": True, "balance": to_float(bank.get_balance())}

    @app.post("/reset")
    async def reset(request: Request):
        if (denied := require_parent(request)) is not None:
            return denied
        _unwrap(await bank.reset_data())
        return {"ok": True, "balance": to_float(bank.get_balance())}

    @app.post("/recover")
    async def recover(request: Request):
        if (denied := require_parent(request)) is not None:
            return denied
        _unwrap(await bank.recover_data())
        return {"ok": True, "balance": to_float(bank.get_balance())}

    return app


__all__ = ["ROLE_SESSION_KEY", "create_app", "require_parent", "status_for"]
