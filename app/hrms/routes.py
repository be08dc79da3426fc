from datetime import datetime, timezone

from flask import Blueprint, current_app

bp = Blueprint("routes", __name__)

SERVICE_NAME = "HRMSService"


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON. No auth, no DB access."""
    return {
        "status": "HRMS Service is running",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": SERVICE_NAME,
        "port": current_app.config.get("PORT"),
    }


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s/DO probes. Minimal overhead.
    """
    return "ok", 200
