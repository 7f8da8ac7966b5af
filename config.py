# config.py
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "sim", "yes", "on")


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev")
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL", "sqlite:///brecho.db")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    JSON_SORT_KEYS = False
    # API JSON: CSRF não se aplica
    WTF_CSRF_ENABLED = False
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    # Permite converter só parte dos itens de um condicional em venda
    CONDICIONAL_CONVERSAO_PARCIAL = _env_bool("CONDICIONAL_CONVERSAO_PARCIAL", True)
    LISTAGEM_LIMITE = int(os.getenv("LISTAGEM_LIMITE", "200"))


class TestConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite://"
    LOG_LEVEL = "WARNING"
