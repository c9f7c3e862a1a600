import logging
import os

from dotenv import load_dotenv
from flask import Flask, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

import accounts
import snapshots
from errors import InvalidCredential, NotFound, PortfolioError, StoreError, ValidationError
from models import db, init_db

load_dotenv()


class Config:
    SQLALCHEMY_DATABASE_URI = os.environ.get("DATABASE_URL", "sqlite:///finance.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    HOST = os.environ.get("HOST", "127.0.0.1")
    PORT = int(os.environ.get("PORT", 5000))
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    EMAIL_CASE_SENSITIVE_SIGNUP = os.environ.get("EMAIL_CASE_SENSITIVE_SIGNUP", "0").lower() in ("1", "true", "yes")
    CORS_ALLOW_ORIGIN = os.environ.get("CORS_ALLOW_ORIGIN", "*")


def _json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def create_app(test_config=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)

    logging.basicConfig(
        level=app.config["LOG_LEVEL"],
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    db.init_app(app)

    # ==============================
    # CORS / ERRORS
    # ==============================
    @app.before_request
    def short_circuit_options():
        if request.method == "OPTIONS":
            return "", 200

    @app.after_request
    def cors_headers(resp):
        resp.headers["Access-Control-Allow-Origin"] = app.config["CORS_ALLOW_ORIGIN"]
        resp.headers["Access-Control-Allow-Headers"] = "Content-Type"
        resp.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, OPTIONS"
        return resp

    @app.errorhandler(PortfolioError)
    def handle_portfolio_error(err):
        if err.status >= 500:
            app.logger.error("%s on %s %s: %s", err.code, request.method, request.path, err.message)
        return jsonify(err.to_dict()), err.status

    @app.errorhandler(SQLAlchemyError)
    def handle_store_failure(err):
        db.session.rollback()
        app.logger.exception("Store failure on %s %s", request.method, request.path)
        failure = StoreError()
        return jsonify(failure.to_dict()), failure.status

    # ==============================
    # ROUTES: AUTH
    # ==============================
    @app.route("/")
    def index():
        return "Welcome to My Portfolio Server"

    @app.route("/signup", methods=["POST"])
    def signup():
        data = _json_body()
        user_id = accounts.register(data.get("email"), data.get("password"))
        return jsonify({"message": "User registered successfully", "userId": user_id}), 201

    @app.route("/signin", methods=["POST"])
    def signin():
        data = _json_body()
        try:
            user_id = accounts.authenticate(data.get("email"), data.get("password"))
        except NotFound:
            raise InvalidCredential()
        user = accounts.resolve_owner(user_id)
        return jsonify({
            "userId": user.id,
            "email": user.email,
            "financialData": snapshots.snapshots_payload(snapshots.list_snapshots(user.id)),
        })

    # ==============================
    # ROUTES: FINANCIAL DATA
    # ==============================
    @app.route("/save-financial-data", methods=["POST"])
    def save_financial_data():
        data = _json_body()
        owner = accounts.resolve_owner(data.get("userId") or data.get("email"))
        snapshots.save_snapshots(owner.id, data.get("monthlyAssets"), data.get("lastUpdate"))
        payload = snapshots.snapshots_payload(snapshots.list_snapshots(owner.id))
        return jsonify({"message": "Financial data saved successfully", "financialData": payload}), 201

    @app.route("/update-financial-data/<identifier>", methods=["PATCH"])
    def update_financial_data(identifier):
        owner = accounts.resolve_owner(identifier)
        data = _json_body()
        last_update = data.pop("lastUpdate", None)
        if "monthlyAssets" in data:
            snapshots.update_snapshots(owner.id, data["monthlyAssets"], last_update)
        else:
            month_key = data.pop("monthKey", None)
            snapshots.update_snapshot(owner.id, month_key, data, last_update)
        payload = snapshots.snapshots_payload(snapshots.list_snapshots(owner.id))
        return jsonify({"message": "Financial data updated successfully", "financialData": payload})

    @app.route("/financial-data/<identifier>", methods=["GET"])
    def get_financial_data(identifier):
        owner = accounts.resolve_owner(identifier)
        payload = snapshots.snapshots_payload(snapshots.list_snapshots(owner.id))
        return jsonify({"userId": owner.id, "financialData": payload})

    @app.route("/financial-data/<identifier>", methods=["PUT"])
    def replace_financial_data(identifier):
        owner = accounts.resolve_owner(identifier)
        data = _json_body()
        snapshots.replace_all(owner.id, data.get("monthlyAssets"), data.get("lastUpdate"))
        payload = snapshots.snapshots_payload(snapshots.list_snapshots(owner.id))
        return jsonify({"message": "Financial data replaced successfully", "financialData": payload})

    @app.route("/financial-summary/<identifier>")
    def financial_summary(identifier):
        owner = accounts.resolve_owner(identifier)
        return jsonify(snapshots.summarize(owner.id))

    # ==============================
    # INIT DB COMMAND
    # ==============================
    @app.cli.command("initdb")
    def initdb():
        init_db()
        print("Database initialized!")

    return app


if __name__ == "__main__":
    app = create_app()
    with app.app_context():
        init_db()
    app.run(host=app.config["HOST"], port=app.config["PORT"], debug=app.config.get("DEBUG", False))
