"""
Flask HTTP surface for opswatch, consumed by the operations dashboard.

API endpoints:
  GET  /health                                - Liveness + monitoring status
  GET  /api/monitoring                        - Status, metrics (last 20 points), alerts
  POST /api/monitoring/alerts                 - Acknowledge or resolve an alert
  GET  /api/alerts                            - Alert records from the audit store
  GET  /api/automation                        - Automation statistics
  POST /api/automation                        - process_predictions | get_stats | clear_history
  GET  /api/workflows                         - Workflows, runs and pending approvals
  POST /api/workflows/<run_id>/approval       - Decide a workflow approval step
  POST /api/executions/<exec_id>/approval     - Decide an approval-gated rule execution

Started via: python main.py web [--port 5000] [--host 0.0.0.0]
"""
import logging
from datetime import datetime, timezone

from flask import Flask, jsonify, request

logger = logging.getLogger("opswatch.web.app")

HISTORY_POINTS = 20
RESOLVED_LIMIT = 10


def _flag(name, default=True):
    value = request.args.get(name)
    if value is None:
        return default
    return value.lower() not in ("false", "0", "no")


def _acting_user(body):
    return body.get("user_id") or request.headers.get("X-User-Id")


def create_app(config: dict, engines: dict) -> Flask:
    """
    Factory function. Receives initialized components from main.py / wsgi.py.

    Args:
        config: Application config dict
        engines: dict with the MonitoringEngine under "monitoring" and the
                 AuditStore under "db" (optional)
    """
    app = Flask(__name__)
    monitoring = engines["monitoring"]

    @app.route("/health")
    def health():
        return jsonify({"status": "ok", "monitoring": monitoring.get_monitoring_status()})

    # ─── Monitoring ──────────────────────────────────────

    @app.route("/api/monitoring")
    def api_monitoring():
        try:
            alert_limit = min(int(request.args.get("alert_limit", 50)), 500)
        except ValueError:
            return jsonify({"error": "alert_limit must be an integer"}), 400

        status = monitoring.get_monitoring_status()
        resp = {
            "success": True,
            "monitoring": {
                "status": status,
                "real_time": {
                    "enabled": status["running"],
                    "update_interval": config.get("monitor", {}).get("tick_interval", 5),
                    "last_update": status["last_update"],
                },
            },
        }

        if _flag("include_metrics"):
            resp["metrics"] = [m.to_dict(history_limit=HISTORY_POINTS) for m in monitoring.get_metrics()]

        if _flag("include_alerts"):
            alerts = monitoring.get_alerts()
            active = [a for a in alerts if not a.resolution.resolved]
            resolved = [a for a in alerts if a.resolution.resolved]
            resp["alerts"] = {
                "active": [a.to_dict() for a in active[:alert_limit]],
                "resolved": [a.to_dict() for a in resolved[:RESOLVED_LIMIT]],
                "summary": {
                    "total": len(alerts),
                    "active": len(active),
                    "critical": sum(1 for a in active if a.severity.value == "critical"),
                    "acknowledged": sum(1 for a in active if a.acknowledgement.acknowledged),
                },
            }
        return jsonify(resp)

    @app.route("/api/monitoring/alerts", methods=["POST"])
    def api_manage_alert():
        body = request.get_json(silent=True) or {}
        action = body.get("action")
        alert_id = body.get("alert_id")
        user_id = _acting_user(body)

        if not alert_id:
            return jsonify({"error": "alert_id is required"}), 400
        if not user_id:
            return jsonify({"error": "user_id is required"}), 400

        if action == "acknowledge":
            result = monitoring.acknowledge_alert(alert_id, user_id, body.get("reason"))
        elif action == "resolve":
            if not body.get("resolution"):
                return jsonify({"error": "resolution description is required"}), 400
            result = monitoring.resolve_alert(alert_id, user_id, body["resolution"])
        else:
            return jsonify({"error": f"Unknown action: {action}"}), 400

        if not result:
            return jsonify({"error": "Alert not found or already processed"}), 404

        return jsonify({
            "success": True,
            "action": action,
            "alert_id": alert_id,
            "performed_by": user_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route("/api/alerts")
    def api_alerts():
        db = engines.get("db")
        if db is None:
            return jsonify({"error": "Audit store not configured"}), 503
        try:
            limit = min(int(request.args.get("limit", 20)), 100)
        except ValueError:
            return jsonify({"error": "limit must be an integer"}), 400
        alerts = db.get_recent_alerts(limit=limit)
        return jsonify({"alerts": alerts or [], "count": len(alerts or [])})

    # ─── Automation ──────────────────────────────────────

    @app.route("/api/automation")
    def api_automation():
        stats = monitoring.get_automation_stats()
        return jsonify({
            "success": True,
            "automation": {"status": "active", "stats": stats},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route("/api/automation", methods=["POST"])
    def api_automation_action():
        body = request.get_json(silent=True) or {}
        action = body.get("action")

        if action == "process_predictions":
            executions = monitoring.process_decisions() or []
            result = {
                "executions": [e.to_dict() for e in executions],
                "count": len(executions),
            }
        elif action == "get_stats":
            result = monitoring.get_automation_stats()
        elif action == "clear_history":
            monitoring.decisions.clear_history()
            result = {"message": "Execution history cleared"}
        else:
            return jsonify({"error": f"Unknown action: {action}"}), 400

        return jsonify({
            "success": True,
            "action": action,
            "result": result,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        })

    @app.route("/api/workflows")
    def api_workflows():
        workflows = monitoring.workflows.list_workflows()
        runs = monitoring.workflows.list_runs(workflow_id=request.args.get("workflow_id"))
        return jsonify({
            "workflows": [w.to_dict() for w in workflows],
            "runs": [r.to_dict() for r in runs],
            "pending_approvals": [r.id for r in runs if r.state.value == "waiting_approval"],
            "pending_executions": [e.id for e in monitoring.decisions.pending_executions()],
        })

    @app.route("/api/workflows/<run_id>/approval", methods=["POST"])
    def api_workflow_approval(run_id):
        return _approval(run_id, monitoring.record_workflow_approval)

    @app.route("/api/executions/<exec_id>/approval", methods=["POST"])
    def api_execution_approval(exec_id):
        return _approval(exec_id, monitoring.approve_execution)

    def _approval(target_id, decide):
        body = request.get_json(silent=True) or {}
        approver = body.get("approver_id") or _acting_user(body)
        if not approver:
            return jsonify({"error": "approver_id is required"}), 400
        if not isinstance(body.get("approve"), bool):
            return jsonify({"error": "approve must be true or false"}), 400
        if not decide(target_id, approver, body["approve"], body.get("reason")):
            return jsonify({"error": "Nothing awaiting approval from this approver"}), 404
        return jsonify({"success": True, "id": target_id, "approved": body["approve"], "approver_id": approver})

    return app
