# app/views/itens.py
from __future__ import annotations

from flask import Blueprint

from app.extensions import db
from app.core import services
from app.core.forms import RoupaForm, RoupaUpdateForm
from app.core.serializers import roupa_json, lista
from app.core.services import transaction
from app.views.common import ok, validar, limite, filtros_texto

bp = Blueprint("itens", __name__)


# ----------------------------
# Listagem
# ----------------------------
@bp.get("/")
def listar():
    filtros = filtros_texto("nome", "tipo", "cor", "tamanho")
    roupas = services.listar_roupas(db.session, filtros, limite())
    return ok(lista(roupas, roupa_json))

@bp.get("/<int:roupa_id>")
def obter(roupa_id: int):
    return ok(roupa_json(services.obter_roupa(db.session, roupa_id)))


# ----------------------------
# Cadastro
# ----------------------------
@bp.post("/")
def criar():
    dados = validar(RoupaForm)
    with transaction(db.session):
        roupa = services.criar_roupa(db.session, dados)
    return ok(roupa_json(roupa), 201)

@bp.put("/<int:roupa_id>")
def atualizar(roupa_id: int):
    # quantidade passa pelo form e é recusada pelo serviço
    dados = validar(RoupaUpdateForm)
    with transaction(db.session):
        roupa = services.atualizar_roupa(db.session, roupa_id, dados)
    return ok(roupa_json(roupa))

@bp.delete("/<int:roupa_id>")
def deletar(roupa_id: int):
    with transaction(db.session):
        services.deletar_roupa(db.session, roupa_id)
    return ok({"id": roupa_id})
