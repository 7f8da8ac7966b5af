# app/views/condicionais.py
from __future__ import annotations

from flask import Blueprint, current_app

from app.extensions import db
from app.core import services
from app.core.forms import CondicionalForm, CondicionalUpdateForm, DevolverItemForm, ConverterVendaForm
from app.core.serializers import condicional_json, venda_json, lista
from app.core.services import transaction
from app.views.common import ok, validar, limite, filtros_texto, filtros_int, filtro_bool, periodo, juntar

bp = Blueprint("condicionais", __name__)


# ----------------------------
# Consulta
# ----------------------------
@bp.get("/")
def listar():
    filtros = juntar(periodo(), filtros_int("cliente_id"), filtros_texto("status"), filtro_bool("vencidos"))
    return ok(lista(services.listar_condicionais(db.session, filtros, limite()), condicional_json))

@bp.get("/estatisticas")
def estatisticas():
    return ok(services.estatisticas_condicionais(db.session, periodo()))

@bp.get("/<int:condicional_id>")
def obter(condicional_id: int):
    return ok(condicional_json(services.obter_condicional(db.session, condicional_id)))


# ----------------------------
# Ciclo de vida
# ----------------------------
@bp.post("/")
def criar():
    dados = validar(CondicionalForm)
    with transaction(db.session):
        cond = services.criar_condicional(db.session, dados)
    return ok(condicional_json(cond), 201)

@bp.put("/<int:condicional_id>")
def atualizar(condicional_id: int):
    dados = validar(CondicionalUpdateForm)
    with transaction(db.session):
        cond = services.atualizar_condicional(db.session, condicional_id, dados)
    return ok(condicional_json(cond))

@bp.post("/<int:condicional_id>/devolver-item")
def devolver_item(condicional_id: int):
    dados = validar(DevolverItemForm)
    with transaction(db.session):
        services.devolver_item(db.session, condicional_id, dados["roupas_id"], dados.get("quantidade"))
    return ok(condicional_json(services.obter_condicional(db.session, condicional_id)))

@bp.post("/<int:condicional_id>/converter-venda")
def converter_venda(condicional_id: int):
    dados = validar(ConverterVendaForm)
    parcial = current_app.config.get("CONDICIONAL_CONVERSAO_PARCIAL", True)
    with transaction(db.session):
        venda = services.converter_em_venda(db.session, condicional_id, dados, permitir_parcial=parcial)
    cond = services.obter_condicional(db.session, condicional_id)
    return ok({"venda": venda_json(venda), "condicional": condicional_json(cond)}, 201)

@bp.post("/<int:condicional_id>/finalizar")
def finalizar(condicional_id: int):
    with transaction(db.session):
        cond = services.finalizar_condicional(db.session, condicional_id)
    return ok(condicional_json(cond))

@bp.delete("/<int:condicional_id>")
def deletar(condicional_id: int):
    with transaction(db.session):
        resultado = services.deletar_condicional(db.session, condicional_id)
    return ok(resultado)
