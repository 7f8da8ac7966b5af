# app/views/clientes.py
from __future__ import annotations

from flask import Blueprint

from app.extensions import db
from app.core import services
from app.core.forms import ClienteForm, ClienteUpdateForm
from app.core.serializers import cliente_json, lista
from app.core.services import transaction
from app.views.common import ok, validar, limite, filtros_texto

bp = Blueprint("clientes", __name__)


@bp.get("/")
def listar():
    clientes = services.listar_clientes(db.session, filtros_texto("nome", "cpf", "email"), limite())
    return ok(lista(clientes, cliente_json))

@bp.get("/<int:cliente_id>")
def obter(cliente_id: int):
    return ok(cliente_json(services.obter_cliente(db.session, cliente_id)))

@bp.post("/")
def criar():
    dados = validar(ClienteForm)
    with transaction(db.session):
        cliente = services.criar_cliente(db.session, dados)
    return ok(cliente_json(cliente), 201)

@bp.put("/<int:cliente_id>")
def atualizar(cliente_id: int):
    dados = validar(ClienteUpdateForm)
    with transaction(db.session):
        cliente = services.atualizar_cliente(db.session, cliente_id, dados)
    return ok(cliente_json(cliente))

@bp.delete("/<int:cliente_id>")
def deletar(cliente_id: int):
    with transaction(db.session):
        services.deletar_cliente(db.session, cliente_id)
    return ok({"id": cliente_id})
