"""
Fixtures: app com SQLite em memória, test client e fábricas de cadastro.
"""
import pytest

from app import create_app
from app.extensions import db as _db
from app.core import services
from app.core.models import Roupa
from app.core.services import transaction


@pytest.fixture()
def app():
    app = create_app("config.TestConfig")
    with app.app_context():
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def session(app):
    return _db.session


@pytest.fixture()
def nova_roupa(session):
    """Cria roupas com estoque inicial; nomes únicos por teste."""
    contador = {"n": 0}

    def _nova(nome=None, quantidade=10, preco="50.00", **extra):
        contador["n"] += 1
        dados = {
            "nome": nome or f"Peça {contador['n']}",
            "tipo": "Camisa",
            "tamanho": "M",
            "cor": "Azul",
            "preco": preco,
            "quantidade": quantidade,
        }
        dados.update(extra)
        with transaction(session):
            roupa = services.criar_roupa(session, dados)
        return roupa

    return _nova


@pytest.fixture()
def cliente(session):
    with transaction(session):
        c = services.criar_cliente(session, {"nome": "Maria Souza", "telefone": "11999990000"})
    return c


def estoque(session, roupa_id):
    """Quantidade atual lida do banco."""
    session.expire_all()
    return session.get(Roupa, roupa_id).quantidade
