from __future__ import annotations

from typing import Optional

from flask import Flask, jsonify
from pydantic import ValidationError
from werkzeug.exceptions import HTTPException

from .clock import Clock
from .config import AppSettings, load_settings
from .db import Database
from .errors import RaffleError
from .extensions import MACHINE_KEY
from .machine import RaffleStateMachine
from .payouts import InMemoryPayoutSender, PayoutSender
from .randomness import CallbackSigner, MockVRFCoordinator, RandomnessRequester, VRFRequestConfig
from .routes.admin import bp as admin_bp
from .routes.config import bp as config_bp
from .routes.health import bp as health_bp
from .routes.raffle import bp as raffle_bp
from .routes.vrf import bp as vrf_bp


def build_machine(settings: AppSettings, clock: Optional[Clock] = None) -> RaffleStateMachine:
    database = Database(settings.database_url)
    signer = CallbackSigner(settings.callback_secret)

    client = None
    if "chain" in (settings.randomness_backend, settings.payout_backend):
        from .services.chain import ChainClient

        client = ChainClient.from_rpc(
            settings.web3.rpc_url,
            settings.web3.signer_key,
            receipt_timeout=settings.web3.receipt_timeout_seconds,
        )

    requester: RandomnessRequester
    if settings.randomness_backend == "chain":
        from .services.chain import ChainVRFCoordinator

        requester = ChainVRFCoordinator(client)
    else:
        requester = MockVRFCoordinator(signer)

    payouts: PayoutSender
    if settings.payout_backend == "chain":
        from .services.chain import ChainPayoutSender

        payouts = ChainPayoutSender(client)
    else:
        payouts = InMemoryPayoutSender()

    machine = RaffleStateMachine(
        database,
        settings.raffle,
        VRFRequestConfig.from_settings(settings.vrf),
        requester,
        payouts,
        signer,
        clock=clock,
    )
    machine.initialize()
    return machine


def create_app(
    settings: Optional[AppSettings] = None, machine: Optional[RaffleStateMachine] = None
) -> Flask:
    settings = settings or load_settings()
    app = Flask(__name__)
    app.config["SECRET_KEY"] = settings.flask.secret_key
    app.config["ADMIN_API_KEY"] = settings.admin_api_key
    app.config["MOCK_VRF_ALLOW_CHOSEN_WORDS"] = settings.allow_chosen_random_words
    app.config["RAFFLE_SETTINGS"] = settings
    app.extensions[MACHINE_KEY] = machine or build_machine(settings)

    app.register_blueprint(health_bp)
    app.register_blueprint(config_bp)
    app.register_blueprint(raffle_bp, url_prefix="/raffle")
    app.register_blueprint(vrf_bp, url_prefix="/vrf")
    app.register_blueprint(admin_bp, url_prefix="/admin/api")

    @app.errorhandler(RaffleError)
    def handle_raffle_error(exc: RaffleError):
        app.logger.info("Raffle call rejected: %s", exc)
        return jsonify(exc.to_dict()), exc.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc: ValidationError):
        details = exc.errors(include_url=False, include_context=False, include_input=False)
        return jsonify({"error": "invalid_request", "details": details}), 400

    @app.errorhandler(Exception)
    def handle_error(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        app.logger.exception("Unhandled error: %s", exc)
        return jsonify({"error": str(exc)}), 500

    return app
