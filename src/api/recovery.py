"""
Guardian Recovery API Blueprint

REST endpoints for the recovery engine:
- Guardian administration (owner only)
- Recovery requests, votes and expiry
- Earnings balance and withdrawal
- Account, configuration and metrics views
"""

from flask import Blueprint, Response, g, jsonify, request

from monitoring import metrics
from recovery_config import get_recovery_config
from recovery_errors import RecoveryError
from recovery_machine import RequestStatus

from .state import get_config, get_engine
from .utils import MAX_IDENTITY_LENGTH, error_response, require_api_key, require_caller, validate_json_schema

recovery_bp = Blueprint("recovery", __name__)


# =============================================================================
# Health, Account and Config
# =============================================================================


@recovery_bp.route("/health", methods=["GET"])
def health():
    """Liveness probe."""
    return jsonify({"status": "healthy", "service": "guardian-recovery"})


@recovery_bp.route("/account", methods=["GET"])
def get_account():
    """Current owner of the account."""
    return jsonify(get_engine().account.to_dict())


@recovery_bp.route("/recovery/config", methods=["GET"])
def get_policy():
    """Effective policy constants and settings."""
    return jsonify(get_recovery_config(get_config()))


@recovery_bp.route("/recovery/stats", methods=["GET"])
def get_stats():
    return jsonify(get_engine().get_statistics())


@recovery_bp.route("/metrics", methods=["GET"])
def prometheus_metrics():
    """Prometheus text exposition, or a JSON snapshot with ?format=json."""
    if request.args.get("format") == "json":
        return jsonify(metrics.get_all())
    return Response(metrics.to_prometheus(), mimetype="text/plain")


# =============================================================================
# Guardians
# =============================================================================


@recovery_bp.route("/guardians", methods=["GET"])
def list_guardians():
    return jsonify(get_engine().registry.to_dict())


@recovery_bp.route("/guardians/<guardian_id>", methods=["GET"])
def get_guardian(guardian_id):
    guardian = get_engine().registry.get_guardian(guardian_id)
    if guardian is None:
        return jsonify({"error": f"Guardian {guardian_id} not found"}), 404
    return jsonify(guardian.to_dict())


@recovery_bp.route("/guardians", methods=["POST"])
@require_api_key
@require_caller
def add_guardian():
    """
    Add a guardian. Caller must be the current owner.

    Request body:
        {"guardian_id": "carol"}
    """
    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={"guardian_id": str},
        max_lengths={"guardian_id": MAX_IDENTITY_LENGTH},
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    try:
        guardian = get_engine().add_guardian(g.caller, data["guardian_id"])
    except RecoveryError as e:
        return error_response(e)
    return jsonify(guardian.to_dict()), 201


@recovery_bp.route("/guardians/<guardian_id>", methods=["DELETE"])
@require_api_key
@require_caller
def remove_guardian(guardian_id):
    """Deactivate a guardian. Caller must be the current owner."""
    try:
        guardian = get_engine().remove_guardian(g.caller, guardian_id)
    except RecoveryError as e:
        return error_response(e)
    return jsonify(guardian.to_dict())


# =============================================================================
# Recovery Requests
# =============================================================================


@recovery_bp.route("/recovery/requests", methods=["GET"])
def list_requests():
    """
    List recovery requests.

    Query params:
        status: open | executed | expired (optional)
    """
    status_param = request.args.get("status")
    status = None
    if status_param:
        try:
            status = RequestStatus(status_param.lower())
        except ValueError:
            return jsonify({"error": f"Unknown status: {status_param}"}), 400

    requests_ = get_engine().list_requests(status)
    return jsonify({
        "count": len(requests_),
        "requests": [r.to_dict() for r in requests_],
    })


@recovery_bp.route("/recovery/requests/<int:request_id>", methods=["GET"])
def get_request(request_id):
    try:
        return jsonify(get_engine().get_request(request_id).to_dict())
    except RecoveryError as e:
        return error_response(e)


@recovery_bp.route("/recovery/requests", methods=["POST"])
@require_api_key
@require_caller
def open_request():
    """
    Open a recovery request. Caller must be an active guardian.

    Request body:
        {"new_owner": "dave", "recovery_class": "LOST_KEY"}
    """
    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={"new_owner": str, "recovery_class": str},
        max_lengths={"new_owner": MAX_IDENTITY_LENGTH, "recovery_class": 32},
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    try:
        recovery_request = get_engine().open_request(
            g.caller, data["new_owner"], data["recovery_class"]
        )
    except RecoveryError as e:
        return error_response(e)
    return jsonify(recovery_request.to_dict()), 201


@recovery_bp.route("/recovery/requests/<int:request_id>/votes", methods=["POST"])
@require_api_key
@require_caller
def cast_vote(request_id):
    """
    Cast a staked vote.

    Request body:
        {"support": true, "stake": "0.1"}

    ``stake`` may be a string or a number; strings keep full decimal precision.
    """
    data = request.get_json(silent=True)
    is_valid, error_msg = validate_json_schema(
        data,
        required_fields={"support": bool, "stake": (str, int, float)},
    )
    if not is_valid:
        return jsonify({"error": error_msg}), 400

    try:
        recovery_request = get_engine().vote(request_id, g.caller, data["support"], data["stake"])
    except RecoveryError as e:
        return error_response(e)

    return jsonify({
        "executed": recovery_request.status is RequestStatus.EXECUTED,
        "request": recovery_request.to_dict(),
    })


@recovery_bp.route("/recovery/requests/<int:request_id>/expire", methods=["POST"])
@require_api_key
@require_caller
def expire_request(request_id):
    """Close a request that aged out without quorum."""
    try:
        recovery_request = get_engine().expire_request(request_id, g.caller)
    except RecoveryError as e:
        return error_response(e)
    return jsonify(recovery_request.to_dict())


# =============================================================================
# Earnings
# =============================================================================


@recovery_bp.route("/earnings/<identity>", methods=["GET"])
def get_earnings(identity):
    balance = get_engine().ledger.balance_of(identity)
    return jsonify({"identity": identity, "balance": str(balance)})


@recovery_bp.route("/earnings/withdraw", methods=["POST"])
@require_api_key
@require_caller
def withdraw_earnings():
    """Withdraw the caller's whole balance."""
    try:
        amount = get_engine().withdraw_earnings(g.caller)
    except RecoveryError as e:
        return error_response(e)
    return jsonify({"identity": g.caller, "withdrawn": str(amount)})
