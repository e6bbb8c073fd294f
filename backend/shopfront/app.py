import logging
import os
from datetime import timedelta
from typing import Dict, List, Optional

from dotenv import load_dotenv
from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from flask_pymongo import PyMongo
from werkzeug.middleware.proxy_fix import ProxyFix

from .context import GATEWAY_EXTENSION, STORE_EXTENSION
from .errors import register_error_handlers
from .gateway import DEFAULT_API_BASE, RazorpayGateway
from .store import Store, wait_for_store
from .views import register_blueprints

load_dotenv()


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def load_config() -> Dict:
    return {
        "APP_ENV": os.getenv("APP_ENV", "development"),
        "MONGO_URI": os.getenv("MONGO_URI", "mongodb://localhost:27017/shopfront"),
        "MONGO_CONNECT_RETRIES": _env_int("MONGO_CONNECT_RETRIES", 5),
        "MONGO_CONNECT_BACKOFF": _env_float("MONGO_CONNECT_BACKOFF", 0.5),
        "JWT_SECRET_KEY": os.getenv("JWT_SECRET_KEY", "change-me-in-production"),
        "JWT_ACCESS_TOKEN_EXPIRES": timedelta(
            seconds=_env_int("JWT_ACCESS_TOKEN_EXPIRES", 7 * 24 * 60 * 60)
        ),
        "JWT_TOKEN_LOCATION": ["headers", "cookies"],
        "JWT_COOKIE_CSRF_PROTECT": False,
        "JWT_COOKIE_SAMESITE": "Strict",
        "RAZORPAY_KEY_ID": os.getenv("RAZORPAY_KEY_ID", ""),
        "RAZORPAY_KEY_SECRET": os.getenv("RAZORPAY_KEY_SECRET", ""),
        "RAZORPAY_API_BASE": os.getenv("RAZORPAY_API_BASE", DEFAULT_API_BASE),
        "PAYMENT_GATEWAY_TIMEOUT": _env_float("PAYMENT_GATEWAY_TIMEOUT", 10.0),
        "HTTP_TIMEOUT": _env_float("HTTP_TIMEOUT", 10.0),
        "SHOP_CURRENCY": os.getenv("SHOP_CURRENCY", "INR").upper(),
        "ADMIN_SECRET": os.getenv("ADMIN_SECRET", ""),
        "GOOGLE_CLIENT_ID": os.getenv("GOOGLE_CLIENT_ID", ""),
        "RESEND_API_KEY": (os.getenv("RESEND_API_KEY") or "").strip(),
        "ORDER_EMAIL_SENDER": os.getenv("ORDER_EMAIL_SENDER", "Shopfront <orders@shopfront.dev>"),
        "LOG_LEVEL": os.getenv("LOG_LEVEL", "INFO").upper(),
        "TRUSTED_PROXY_HOPS": _env_int("TRUSTED_PROXY_HOPS", 1),
        "CORS_ORIGIN": os.getenv("CORS_ORIGIN", "http://localhost:5173"),
        "CORS_ALLOWED_ORIGINS": os.getenv("CORS_ALLOWED_ORIGINS", ""),
    }


def allowed_origins(config: Dict) -> List[str]:
    origins = [str(config.get("CORS_ORIGIN") or "").strip()]
    for origin in str(config.get("CORS_ALLOWED_ORIGINS") or "").split(","):
        origins.append(origin.strip())
    return [origin for origin in origins if origin]


def configure_jwt(jwt: JWTManager) -> None:
    def auth_error(message: str):
        return jsonify({"success": False, "error": "unauthorized", "message": message}), 401

    @jwt.unauthorized_loader
    def missing_token(reason):
        return auth_error("Not authorized, no token")

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return auth_error("Not authorized, token failed")

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return auth_error("Session expired, please log in again")


def create_app(config: Optional[Dict] = None, store=None, gateway=None) -> Flask:
    """Create and configure the Flask application.

    ``store`` and ``gateway`` may be injected (tests do this); otherwise they
    are built from configuration. Raises StoreUnavailableError when MongoDB
    cannot be reached within the configured retries.
    """
    app = Flask("shopfront")
    app.config.update(load_config())
    if config:
        app.config.update(config)
    # Session cookies only travel over HTTPS in production.
    app.config.setdefault("JWT_COOKIE_SECURE", app.config["APP_ENV"] == "production")

    logging.basicConfig(format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # Honor proxy headers so client addresses and schemes survive the load balancer.
    trusted_proxy_hops = max(0, int(app.config["TRUSTED_PROXY_HOPS"]))
    if trusted_proxy_hops:
        app.wsgi_app = ProxyFix(
            app.wsgi_app,
            x_for=trusted_proxy_hops,
            x_proto=trusted_proxy_hops,
            x_host=trusted_proxy_hops,
            x_port=trusted_proxy_hops,
        )

    CORS(app, supports_credentials=True, origins=allowed_origins(app.config) or "*")
    configure_jwt(JWTManager(app))

    if store is None:
        mongo = PyMongo(app)
        wait_for_store(
            lambda: mongo.cx.admin.command("ping"),
            retries=app.config["MONGO_CONNECT_RETRIES"],
            backoff=app.config["MONGO_CONNECT_BACKOFF"],
        )
        store = Store(mongo.db)
        store.ensure_indexes()
        app.logger.info("MongoDB connected")

    if gateway is None:
        gateway = RazorpayGateway(
            app.config["RAZORPAY_KEY_ID"],
            app.config["RAZORPAY_KEY_SECRET"],
            api_base=app.config["RAZORPAY_API_BASE"],
            timeout=app.config["PAYMENT_GATEWAY_TIMEOUT"],
        )
        if not gateway.is_configured():
            app.logger.warning("Razorpay credentials missing; payment routes will fail")

    app.extensions[STORE_EXTENSION] = store
    app.extensions[GATEWAY_EXTENSION] = gateway

    register_error_handlers(app)
    register_blueprints(app)

    @app.route("/api/health")
    def health():
        return jsonify({"success": True, "status": "ok", "env": app.config["APP_ENV"]}), 200

    return app
