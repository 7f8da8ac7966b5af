# app/__init__.py
from __future__ import annotations

import logging
import logging.config

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .extensions import init_extensions, db
from .core.errors import ServiceError, NotFound, InsufficientStock, Conflict

logger = logging.getLogger(__name__)

STATUS_POR_ERRO = (
    (NotFound, 404),
    (InsufficientStock, 409),
    (Conflict, 409),
)

def _status(exc: ServiceError) -> int:
    for cls, status in STATUS_POR_ERRO:
        if isinstance(exc, cls):
            return status
    return 400

def _configurar_logging(app: Flask):
    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "padrao": {"format": "%(asctime)s %(levelname)s [%(name)s] %(message)s"},
        },
        "handlers": {
            "console": {"class": "logging.StreamHandler", "formatter": "padrao"},
        },
        "loggers": {
            "app": {"handlers": ["console"], "level": app.config.get("LOG_LEVEL", "INFO"), "propagate": False},
        },
    })

def create_app(config_object: str = "config.Config"):
    app = Flask(__name__)

    # Config básica
    app.config.from_object(config_object)
    app.url_map.strict_slashes = False
    app.json.sort_keys = app.config.get("JSON_SORT_KEYS", False)

    _configurar_logging(app)
    init_extensions(app)

    # Blueprints
    from .views.clientes import bp as clientes_bp
    from .views.itens import bp as itens_bp
    from .views.vendas import bp as vendas_bp
    from .views.compras import bp as compras_bp
    from .views.baixas import bp as baixas_bp
    from .views.condicionais import bp as condicionais_bp

    app.register_blueprint(clientes_bp, url_prefix="/clientes")
    app.register_blueprint(itens_bp, url_prefix="/itens")
    app.register_blueprint(vendas_bp, url_prefix="/vendas")
    app.register_blueprint(compras_bp, url_prefix="/compras")
    app.register_blueprint(baixas_bp, url_prefix="/baixas")
    app.register_blueprint(condicionais_bp, url_prefix="/condicionais")

    # Healthcheck simples
    @app.get("/health")
    def health():
        return jsonify(ok=True)

    # Erros
    @app.errorhandler(ServiceError)
    def service_error(e: ServiceError):
        status = _status(e)
        if status == 400:
            logger.warning("Requisição recusada: %s (%s)", e.message, e.code)
        body = {"success": False, "message": e.message, "code": e.code}
        if e.detalhes:
            body["errors"] = e.detalhes.get("errors", e.detalhes)
        return jsonify(body), status

    @app.errorhandler(HTTPException)
    def http_error(e: HTTPException):
        return jsonify(success=False, message=e.description, code=e.name.upper().replace(" ", "_")), e.code

    @app.errorhandler(500)
    def server_error(e):
        logger.exception("Erro interno")
        return jsonify(success=False, message="Erro interno do servidor", code="INTERNAL_ERROR"), 500

    with app.app_context():
        db.create_all()

    return app
