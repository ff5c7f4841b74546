"""
API routes for CamRelay.
Read-only status of running streams plus an operator stop.
"""
from flask import Blueprint, jsonify

from .. import __version__
from ..security import audit_log, get_client_ip
from ..services.registry import stream_registry

api_bp = Blueprint("api", __name__)


@api_bp.route("/health")
def health_check():
    """Health check endpoint for system monitoring"""
    return jsonify({
        "status": "healthy",
        "service": "CamRelay",
        "version": __version__,
        "streams": len(stream_registry),
    })


@api_bp.route("/streams")
def list_streams():
    """List running streams"""
    return jsonify(stream_registry.snapshot())


@api_bp.route("/streams/<stream_id>")
def get_stream(stream_id):
    """Get status of a single stream"""
    process = stream_registry.get(stream_id)
    if process is None:
        return jsonify({"error": "Stream not found"}), 404
    return jsonify(process.status())


@api_bp.route("/streams/<stream_id>", methods=["DELETE"])
def stop_stream(stream_id):
    """Stop a stream regardless of which client started it"""
    stopped = stream_registry.stop(stream_id)
    audit_log("STREAM_STOP", get_client_ip(), stream_id, "via API" if stopped else "via API, not running")
    return jsonify({"success": True, "stream_id": stream_id, "stopped": stopped})
