"""
Intranet mapping admin endpoints.

``POST /api/v1/config/reload`` re-reads the mappings file in this worker
process only. Under gunicorn, send SIGHUP to the master to reload every worker.
"""

import structlog
from flask import jsonify

from hls_relay.intranet import MappingError
from hls_relay.routes import bp, relay

log = structlog.get_logger(__name__)

NOT_CONFIGURED = "intranet mappings are not configured"


@bp.route("/api/v1/config/mappings", methods=["GET", "OPTIONS"])
def get_mappings():
    mapper = relay().mapper
    if mapper is None:
        return jsonify({})
    return jsonify(mapper.mappings())


@bp.route("/api/v1/config/reload", methods=["POST", "OPTIONS"])
def reload_mappings():
    mapper = relay().mapper
    if mapper is None:
        return jsonify({"status": "error", "error": NOT_CONFIGURED}), 404

    try:
        mapper.reload()
    except MappingError as exc:
        log.error("intranet_reload_failed", error=str(exc))
        return jsonify({"status": "error", "error": str(exc)}), 500

    return jsonify({"status": "ok"})
