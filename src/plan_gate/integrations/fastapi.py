"""FastAPI dependencies that gate routes on plan features.

Mirrors the gate server-side so a client cannot bypass it::

    app.state.plan_gate = PlanGate(catalog="./plans/", ...)

    @app.post("/clients", dependencies=[Depends(require_feature("clients"))])
    def create_client(...):
        ...

The tenant is read from the ``X-Tenant-ID`` header unless a
``tenant_resolver`` is given. Denials become 403 with the denial as the
detail; source failures become 503 (fail closed). Requires the
``fastapi`` extra.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request

from plan_gate.models import GateResult
from plan_gate.sdk.client import PlanGate
from plan_gate.sources.base import SourceUnavailableError

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-ID"


def _tenant_from_header(request: Request) -> str:
    tenant_id = request.headers.get(TENANT_HEADER)
    if not tenant_id:
        raise HTTPException(status_code=401, detail=f"Missing {TENANT_HEADER} header")
    return tenant_id


def _gate_from_app(request: Request) -> PlanGate:
    gate = getattr(request.app.state, "plan_gate", None)
    if gate is None:
        raise RuntimeError("app.state.plan_gate is not configured")
    return gate


def require_feature(
    feature_id: str,
    tenant_resolver: Callable[[Request], str] | None = None,
) -> Callable[[Request], GateResult]:
    """Build a dependency that enforces ``feature_id`` for the request's tenant.

    Args:
        feature_id: Feature consumed by the route.
        tenant_resolver: Extracts the tenant id from the request
            (default: the ``X-Tenant-ID`` header).

    Returns:
        A FastAPI dependency returning the GateResult when allowed.
    """
    resolve_tenant = tenant_resolver or _tenant_from_header

    def dependency(request: Request) -> GateResult:
        gate = _gate_from_app(request)
        tenant_id = resolve_tenant(request)

        try:
            result = gate.enforce(tenant_id, feature_id)
        except SourceUnavailableError as exc:
            logger.warning("Gate sources unavailable for tenant %s: %s", tenant_id, exc)
            raise HTTPException(
                status_code=503,
                detail={
                    "error": "entitlements_unavailable",
                    "feature": feature_id,
                    "message": "Plan information is temporarily unavailable. Try again shortly.",
                },
            ) from exc

        if result.denial is not None:
            denial = result.denial
            raise HTTPException(
                status_code=403,
                detail={
                    "error": denial.code.value,
                    "feature": denial.feature_id,
                    "label": denial.label,
                    "message": denial.message,
                    "usage": denial.usage,
                    "limit": denial.limit,
                    "upgrade_url": denial.upgrade.url,
                    "suggested_plan": denial.upgrade.suggested_plan,
                },
            )
        return result

    return dependency
