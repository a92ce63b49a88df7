"""JSON control surface: rules, alerts, health and consensus."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from oracle_watch.alerts.models import AlertRule, AlertStatus

log = structlog.get_logger(__name__)

router = APIRouter()


async def _json_body(request: Request) -> dict[str, Any] | JSONResponse:
    """Parse a JSON object body, or return a 400 response."""
    try:
        body = await request.json()
    except Exception:
        return JSONResponse(content={"error": "Invalid JSON body"}, status_code=400)
    if not isinstance(body, dict):
        return JSONResponse(content={"error": "JSON body must be an object"}, status_code=400)
    return body


async def _optional_json_body(request: Request) -> dict[str, Any] | JSONResponse:
    if not await request.body():
        return {}
    return await _json_body(request)


# ──────────────────────────────────────────────
# Rules
# ──────────────────────────────────────────────


@router.get("/rules")
async def list_rules(request: Request) -> JSONResponse:
    rules = await request.app.state.rule_engine.list_rules()
    return JSONResponse(content=[r.to_dict() for r in rules])


@router.post("/rules")
async def add_rule(request: Request) -> JSONResponse:
    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body
    try:
        rule = AlertRule.from_dict(body)
    except ValueError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)
    try:
        added = await request.app.state.rule_engine.add_rule(rule)
    except ValueError as e:
        return JSONResponse(content={"error": str(e)}, status_code=409)
    return JSONResponse(content=added.to_dict(), status_code=201)


@router.get("/rules/{rule_id}")
async def get_rule(request: Request, rule_id: str) -> JSONResponse:
    rule = await request.app.state.rule_engine.get_rule(rule_id)
    if rule is None:
        return JSONResponse(content={"error": f"Rule '{rule_id}' not found"}, status_code=404)
    return JSONResponse(content=rule.to_dict())


@router.put("/rules/{rule_id}")
async def update_rule(request: Request, rule_id: str) -> JSONResponse:
    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body
    try:
        rule = await request.app.state.rule_engine.update_rule(rule_id, body)
    except ValueError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)
    if rule is None:
        return JSONResponse(content={"error": f"Rule '{rule_id}' not found"}, status_code=404)
    return JSONResponse(content=rule.to_dict())


@router.delete("/rules/{rule_id}")
async def delete_rule(request: Request, rule_id: str) -> JSONResponse:
    deleted = await request.app.state.rule_engine.delete_rule(rule_id)
    if not deleted:
        return JSONResponse(content={"error": f"Rule '{rule_id}' not found"}, status_code=404)
    return JSONResponse(content={"deleted": True, "id": rule_id})


@router.post("/rules/{rule_id}/toggle")
async def toggle_rule(request: Request, rule_id: str) -> JSONResponse:
    body = await _optional_json_body(request)
    if isinstance(body, JSONResponse):
        return body
    enabled = body.get("enabled")
    if enabled is not None and not isinstance(enabled, bool):
        return JSONResponse(content={"error": "'enabled' must be a boolean"}, status_code=400)
    rule = await request.app.state.rule_engine.toggle_rule(rule_id, enabled)
    if rule is None:
        return JSONResponse(content={"error": f"Rule '{rule_id}' not found"}, status_code=404)
    return JSONResponse(content=rule.to_dict())


# ──────────────────────────────────────────────
# Alerts
# ──────────────────────────────────────────────


@router.get("/alerts")
async def list_alerts(
    request: Request, status: str | None = None, symbol: str | None = None
) -> JSONResponse:
    try:
        status_filter = AlertStatus(status) if status else None
    except ValueError:
        return JSONResponse(content={"error": f"Unknown status '{status}'"}, status_code=400)
    alerts = await request.app.state.rule_engine.list_alerts(status=status_filter, symbol=symbol)
    return JSONResponse(content=[a.to_dict() for a in alerts])


@router.get("/alerts/stats")
async def alert_stats(request: Request) -> JSONResponse:
    return JSONResponse(content=await request.app.state.rule_engine.get_stats())


@router.get("/alerts/history")
async def alert_history(request: Request, symbol: str) -> JSONResponse:
    alerts = await request.app.state.rule_engine.get_alert_history(symbol)
    return JSONResponse(content=[a.to_dict() for a in alerts])


@router.post("/alerts/{alert_id}/acknowledge")
async def acknowledge_alert(request: Request, alert_id: str) -> JSONResponse:
    body = await _optional_json_body(request)
    if isinstance(body, JSONResponse):
        return body
    alert = await request.app.state.rule_engine.acknowledge_alert(alert_id, body.get("user"))
    if alert is None:
        return JSONResponse(
            content={"error": f"Alert '{alert_id}' not found or not open"}, status_code=404
        )
    log.info("alert_acknowledged_via_api", alert_id=alert_id)
    return JSONResponse(content=alert.to_dict())


@router.post("/alerts/{alert_id}/resolve")
async def resolve_alert(request: Request, alert_id: str) -> JSONResponse:
    body = await _optional_json_body(request)
    if isinstance(body, JSONResponse):
        return body
    alert = await request.app.state.rule_engine.resolve_alert(alert_id, body.get("resolution"))
    if alert is None:
        return JSONResponse(
            content={"error": f"Alert '{alert_id}' not found or already resolved"},
            status_code=404,
        )
    log.info("alert_resolved_via_api", alert_id=alert_id)
    return JSONResponse(content=alert.to_dict())


@router.get("/price-alerts")
async def list_price_alerts(
    request: Request, symbol: str | None = None, unresolved: bool = False, limit: int = 100
) -> JSONResponse:
    records = await request.app.state.monitor_store.get_price_alerts(
        symbol=symbol, unresolved_only=unresolved, limit=limit
    )
    return JSONResponse(content=[r.to_dict() for r in records])


# ──────────────────────────────────────────────
# Health
# ──────────────────────────────────────────────


def _health_payload(result: Any) -> dict[str, Any]:
    return {
        "summary": result.summary(),
        "checked_at": result.checked_at,
        "statuses": [s.to_dict() for s in result.statuses],
    }


@router.get("/health")
async def latest_health(request: Request) -> JSONResponse:
    result = request.app.state.health_checker.last_result
    if result is None:
        return JSONResponse(content={"error": "No health check has run yet"}, status_code=404)
    return JSONResponse(content=_health_payload(result))


@router.post("/health/check")
async def run_health_check(request: Request) -> JSONResponse:
    try:
        result = await request.app.state.anomaly_detector.run_once()
    except Exception as e:
        log.error("health_check_via_api_failed", error=str(e))
        return JSONResponse(content={"error": str(e)}, status_code=503)
    return JSONResponse(content=_health_payload(result))


@router.get("/health/config")
async def get_health_config(request: Request) -> JSONResponse:
    config = request.app.state.health_checker.config
    return JSONResponse(content=config.model_dump(mode="json"))


@router.put("/health/config")
async def update_health_config(request: Request) -> JSONResponse:
    body = await _json_body(request)
    if isinstance(body, JSONResponse):
        return body
    try:
        config = request.app.state.health_checker.update_config(**body)
    except ValueError as e:
        return JSONResponse(content={"error": str(e)}, status_code=400)
    return JSONResponse(content=config.model_dump(mode="json"))


# ──────────────────────────────────────────────
# Consensus
# ──────────────────────────────────────────────


@router.get("/consensus")
async def get_consensus(request: Request, symbol: str | None = None) -> JSONResponse:
    monitor = request.app.state.price_monitor
    if symbol is None:
        return JSONResponse(content=[r.to_dict() for r in monitor.get_all_consensus()])
    result = monitor.get_consensus(symbol)
    if result is None:
        return JSONResponse(content={"error": f"No consensus for {symbol}"}, status_code=404)
    return JSONResponse(content=result.to_dict())


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    return JSONResponse(
        content={
            "monitor": request.app.state.price_monitor.get_status(),
            "detector_running": request.app.state.anomaly_detector.is_running,
        }
    )
