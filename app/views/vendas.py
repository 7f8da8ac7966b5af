# app/views/vendas.py
from __future__ import annotations

from flask import Blueprint

from app.extensions import db
from app.core import services
from app.core.forms import VendaForm, VendaUpdateForm
from app.core.serializers import venda_json, lista
from app.core.services import transaction
from app.views.common import ok, validar, limite, filtros_texto, filtros_valor, periodo, juntar

bp = Blueprint("vendas", __name__)


# ----------------------------
# Consulta
# ----------------------------
@bp.get("/")
def listar():
    filtros = juntar(periodo(), filtros_texto("forma_pgto"), filtros_valor("valor_min", "valor_max"))
    vendas = services.listar_vendas(db.session, filtros, limite())
    return ok(lista(vendas, venda_json))

@bp.get("/estatisticas")
def estatisticas():
    return ok(services.estatisticas_vendas(db.session, periodo()))

@bp.get("/<int:venda_id>")
def obter(venda_id: int):
    return ok(venda_json(services.obter_venda(db.session, venda_id)))


# ----------------------------
# Movimentação
# ----------------------------
@bp.post("/")
def criar():
    dados = validar(VendaForm)
    with transaction(db.session):
        venda = services.criar_venda(db.session, dados)
    return ok(venda_json(venda), 201)

@bp.put("/<int:venda_id>")
def atualizar(venda_id: int):
    dados = validar(VendaUpdateForm)
    with transaction(db.session):
        venda = services.atualizar_venda(db.session, venda_id, dados)
    return ok(venda_json(venda))

@bp.delete("/<int:venda_id>")
def deletar(venda_id: int):
    with transaction(db.session):
        resultado = services.deletar_venda(db.session, venda_id)
    return ok(resultado)
