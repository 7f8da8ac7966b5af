# app/views/compras.py
from __future__ import annotations

from flask import Blueprint

from app.extensions import db
from app.core import services
from app.core.forms import (
    CompraForm, CompraUpdateForm, ItemCompraForm, ItemCompraUpdateForm, FinalizarCompraForm
)
from app.core.serializers import compra_json, lista
from app.core.services import transaction
from app.views.common import ok, validar, limite, filtros_texto, filtros_valor, filtro_bool, periodo, juntar

bp = Blueprint("compras", __name__)


# ----------------------------
# Consulta
# ----------------------------
@bp.get("/")
def listar():
    filtros = juntar(periodo(), filtros_texto("fornecedor"), filtros_valor("valor_min", "valor_max"), filtro_bool("finalizada"))
    compras = services.listar_compras(db.session, filtros, limite())
    return ok(lista(compras, compra_json))

@bp.get("/estatisticas")
def estatisticas():
    return ok(services.estatisticas_compras(db.session, periodo()))

@bp.get("/<int:compra_id>")
def obter(compra_id: int):
    return ok(compra_json(services.obter_compra(db.session, compra_id)))


# ----------------------------
# Pedido
# ----------------------------
@bp.post("/")
def criar():
    dados = validar(CompraForm)
    with transaction(db.session):
        compra = services.criar_compra(db.session, dados)
    return ok(compra_json(compra), 201)

@bp.put("/<int:compra_id>")
def atualizar(compra_id: int):
    dados = validar(CompraUpdateForm)
    with transaction(db.session):
        compra = services.atualizar_compra(db.session, compra_id, dados)
    return ok(compra_json(compra))

@bp.delete("/<int:compra_id>")
def deletar(compra_id: int):
    with transaction(db.session):
        services.deletar_compra(db.session, compra_id)
    return ok({"id": compra_id})


# ----------------------------
# Itens do pedido
# ----------------------------
@bp.post("/<int:compra_id>/itens")
def adicionar_item(compra_id: int):
    dados = validar(ItemCompraForm)
    with transaction(db.session):
        services.adicionar_item_compra(db.session, compra_id, dados)
    return ok(compra_json(services.obter_compra(db.session, compra_id)), 201)

@bp.put("/<int:compra_id>/itens/<int:item_id>")
def atualizar_item(compra_id: int, item_id: int):
    dados = validar(ItemCompraUpdateForm)
    with transaction(db.session):
        services.atualizar_item_compra(db.session, compra_id, item_id, dados)
    return ok(compra_json(services.obter_compra(db.session, compra_id)))

@bp.delete("/<int:compra_id>/itens/<int:item_id>")
def remover_item(compra_id: int, item_id: int):
    with transaction(db.session):
        services.remover_item_compra(db.session, compra_id, item_id)
    return ok(compra_json(services.obter_compra(db.session, compra_id)))


# ----------------------------
# Recebimento
# ----------------------------
@bp.post("/<int:compra_id>/finalizar")
def finalizar(compra_id: int):
    dados = validar(FinalizarCompraForm)
    with transaction(db.session):
        compra = services.finalizar_compra(db.session, compra_id, dados.get("observacoes"))
    return ok(compra_json(compra))
