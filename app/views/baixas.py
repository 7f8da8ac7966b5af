# app/views/baixas.py
from __future__ import annotations

from flask import Blueprint, request

from app.extensions import db
from app.core import services
from app.core.forms import BaixaForm, BaixaUpdateForm, ItemBaixaForm, ItemBaixaUpdateForm
from app.core.serializers import baixa_json, lista
from app.core.services import transaction
from app.views.common import ok, validar, limite, filtros_texto, filtros_int, periodo, juntar

bp = Blueprint("baixas", __name__)


@bp.get("/motivos")
def motivos():
    return ok(services.motivos_baixa())

@bp.get("/estatisticas")
def estatisticas():
    return ok(services.estatisticas_baixas(db.session, request.args.get("periodo", "mes")))

@bp.get("/")
def listar():
    filtros = juntar(periodo(), filtros_texto("motivo"), filtros_int("roupa_id"))
    return ok(lista(services.listar_baixas(db.session, filtros, limite()), baixa_json))

@bp.get("/<int:baixa_id>")
def obter(baixa_id: int):
    return ok(baixa_json(services.obter_baixa(db.session, baixa_id)))

@bp.post("/")
def criar():
    dados = validar(BaixaForm)
    with transaction(db.session):
        baixa = services.criar_baixa(db.session, dados)
    return ok(baixa_json(baixa), 201)

@bp.put("/<int:baixa_id>")
def atualizar(baixa_id: int):
    dados = validar(BaixaUpdateForm)
    with transaction(db.session):
        baixa = services.atualizar_baixa(db.session, baixa_id, dados)
    return ok(baixa_json(baixa))

@bp.delete("/<int:baixa_id>")
def deletar(baixa_id: int):
    with transaction(db.session):
        resultado = services.deletar_baixa(db.session, baixa_id)
    return ok(resultado)


# ----------------------------
# Itens da baixa
# ----------------------------
@bp.post("/<int:baixa_id>/itens")
def adicionar_item(baixa_id: int):
    dados = validar(ItemBaixaForm)
    with transaction(db.session):
        services.adicionar_item_baixa(db.session, baixa_id, dados)
    return ok(baixa_json(services.obter_baixa(db.session, baixa_id)), 201)

@bp.put("/<int:baixa_id>/itens/<int:item_id>")
def atualizar_item(baixa_id: int, item_id: int):
    dados = validar(ItemBaixaUpdateForm)
    with transaction(db.session):
        services.atualizar_item_baixa(db.session, baixa_id, item_id, dados)
    return ok(baixa_json(services.obter_baixa(db.session, baixa_id)))

@bp.delete("/<int:baixa_id>/itens/<int:item_id>")
def remover_item(baixa_id: int, item_id: int):
    with transaction(db.session):
        services.remover_item_baixa(db.session, baixa_id, item_id)
    return ok(baixa_json(services.obter_baixa(db.session, baixa_id)))
