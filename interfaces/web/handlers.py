from __future__ import annotations

import logging
from functools import wraps
from typing import Callable, Optional

from flask import Blueprint, Flask, jsonify, redirect, request, session
from werkzeug.exceptions import HTTPException

from application.services import (
    ErrorKind,
    claim,
    get_position_detail,
    list_positions,
    list_transactions,
    stake,
    unstake,
)
from domain.interest import current_time_ms
from domain.repositories import StakingRepository

logger = logging.getLogger(__name__)


def _current_user_id() -> Optional[str]:
    userinfo = session.get("userinfo")
    if not isinstance(userinfo, dict) or userinfo.get("id") is None:
        return None
    return str(userinfo["id"])


def login_required(f):
    """Redirect to the panel login page when there is no authenticated session."""

    @wraps(f)
    def decorated_function(*args, **kwargs):
        if _current_user_id() is None:
            return redirect("/login")
        return f(*args, **kwargs)

    return decorated_function


def _request_data() -> dict:
    data = request.get_json(silent=True)
    if isinstance(data, dict):
        return data
    return request.form.to_dict()


def _error(message: Optional[str], status: int = 400):
    return jsonify({"error": message or "Request failed"}), status


def create_staking_blueprint(
    staking_repo: StakingRepository,
    clock: Optional[Callable[[], int]] = None,
) -> Blueprint:
    """
    Build the blueprint exposing the staking engine over HTTP.

    Only HTTP concerns live here: reading the session and request body,
    calling the application services and turning their results into JSON.
    """

    bp = Blueprint("staking", __name__)
    now = clock or current_time_ms

    @bp.route("/stake", methods=["POST"])
    @login_required
    def stake_route():
        data = _request_data()
        result = stake(
            _current_user_id(),
            data.get("amount"),
            data.get("lockPeriod"),
            staking_repo,
            now=now(),
        )
        if not result.success:
            return _error(result.error_message)

        return jsonify({"message": "Staked successfully", "position": result.position.to_dict()})

    @bp.route("/unstake", methods=["POST"])
    @login_required
    def unstake_route():
        data = _request_data()
        result = unstake(_current_user_id(), data.get("positionId"), staking_repo, now=now())
        if not result.success:
            return _error(result.error_message)

        return jsonify(
            {
                "message": "Unstaked successfully",
                "returned": result.returned,
                "principal": result.principal,
                "earnings": result.earnings,
                "penaltyApplied": result.penalty_applied,
            }
        )

    @bp.route("/stake/positions", methods=["GET"])
    @login_required
    def positions_route():
        result = list_positions(_current_user_id(), staking_repo, now=now())
        body = {"positions": [view.to_dict() for view in result.positions]}
        if result.migrated:
            body["message"] = "Staking data migrated to new format"
        return jsonify(body)

    @bp.route("/stake/positions/<position_id>", methods=["GET"])
    @login_required
    def position_detail_route(position_id: str):
        result = get_position_detail(_current_user_id(), position_id, staking_repo, now=now())
        if not result.success:
            status = 404 if result.error == ErrorKind.POSITION_NOT_FOUND else 400
            return _error(result.error_message, status)

        return jsonify({"position": result.detail.to_dict()})

    @bp.route("/stake/claim", methods=["POST"])
    @login_required
    def claim_route():
        data = _request_data()
        result = claim(_current_user_id(), data.get("positionId"), staking_repo, now=now())
        if not result.success:
            return _error(result.error_message)

        return jsonify(
            {
                "message": "Earnings claimed successfully",
                "claimedAmount": result.claimed_amount,
                "newBalance": result.new_balance,
                "position": result.position.to_dict(),
            }
        )

    @bp.route("/stake/transactions", methods=["GET"])
    @login_required
    def transactions_route():
        records = list_transactions(_current_user_id(), staking_repo)
        return jsonify({"transactions": [r.to_dict() for r in records]})

    return bp


def create_web_app(
    staking_repo: StakingRepository,
    secret_key: str,
    clock: Optional[Callable[[], int]] = None,
) -> Flask:
    """Configure and return the Flask app serving the staking routes."""

    app = Flask(__name__)
    app.config.update(SECRET_KEY=secret_key)

    app.register_blueprint(create_staking_blueprint(staking_repo, clock))

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        if isinstance(error, HTTPException):
            return error
        logger.exception("Unhandled error while serving %s %s", request.method, request.path)
        return _error("Internal server error", 500)

    @app.route("/health")
    def health_check():
        return jsonify({"status": "healthy"})

    return app
