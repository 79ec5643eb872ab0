# backend/lotkeeper/routes/system.py
"""
System health endpoint.

Reports database reachability and the lot store's size; 503 when the
database cannot be queried.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import VariantBatch, VariantBatchAllocation
from lotkeeper.time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        batch_count = db.session.query(VariantBatch).count()
        allocation_count = db.session.query(VariantBatchAllocation).count()

        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "variant_batches": batch_count,
                "allocations": allocation_count,
            }
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        db.session.rollback()
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error"
        }


@system_bp.get("/health")
def health():
    start_time = time.time()
    database_health = check_database_health()

    http_status = 503 if database_health["status"] == "unhealthy" else 200
    total_elapsed_ms = (time.time() - start_time) * 1000

    response = {
        "status": database_health["status"],
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round(total_elapsed_ms, 2),
        "checks": {
            "database": database_health,
        },
        "at_price_sync_enabled": bool(current_app.config.get("AT_PRICE_CUSTOMER_GROUP_ID")),
        "coa_storage_configured": bool(current_app.config.get("COA_STORAGE_ENDPOINT")),
    }
    return response, http_status
