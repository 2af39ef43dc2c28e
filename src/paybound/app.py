"""
HTTP surface for the gateway.

Routes are plain `def` handlers: FastAPI runs them in its worker
threadpool, so blocking ledger and upstream I/O never stalls the loop.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from fastapi import Body, FastAPI, Header, Query, Request
from fastapi.responses import JSONResponse

from . import __version__
from .errors import LedgerError
from .gateway import PaymentGateway


logger = logging.getLogger(__name__)


def create_app(gateway: PaymentGateway) -> FastAPI:
    app = FastAPI(title="Paybound", version=__version__)
    app.state.gateway = gateway

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        logger.error("Ledger failure on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=500,
            content={"error": "ledger_error", "message": str(exc)},
        )

    @app.get("/health")
    def health():
        return gateway.health()

    @app.post("/verify")
    def verify(
        payload: dict[str, Any] = Body(...),
        agent_id: Optional[str] = Header(default=None, alias="X-Paybound-Agent"),
        authorization: Optional[str] = Header(default=None),
    ):
        result = gateway.verify(payload, agent_id=agent_id, authorization=authorization)
        return JSONResponse(status_code=result.status_code, content=result.body)

    @app.post("/settle")
    def settle(
        payload: dict[str, Any] = Body(...),
        agent_id: Optional[str] = Header(default=None, alias="X-Paybound-Agent"),
        authorization: Optional[str] = Header(default=None),
    ):
        result = gateway.settle(payload, agent_id=agent_id, authorization=authorization)
        return JSONResponse(status_code=result.status_code, content=result.body)

    @app.get("/transactions")
    def transactions(
        agent_id: Optional[str] = Query(default=None, alias="agentId"),
        since: Optional[int] = Query(default=None, ge=0),
        limit: Optional[int] = Query(default=None, ge=1),
    ):
        records = gateway.ledger.query_transactions(agent_id=agent_id, since=since, limit=limit)
        return {"transactions": [r.to_dict() for r in records]}

    return app
