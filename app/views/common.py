# app/views/common.py
from __future__ import annotations

from typing import Any, Dict

from flask import current_app, jsonify, request

from app.core.errors import ValidationError
from app.core.forms import form_from_json


def ok(data: Any = None, status: int = 200, **extra):
    body = {"success": True, "data": data}
    body.update(extra)
    return jsonify(body), status

def validar(form_cls) -> Dict[str, Any]:
    """Valida o corpo JSON com o form e devolve apenas os campos enviados."""
    form = form_from_json(form_cls, request.get_json(silent=True))
    if not form.validate():
        raise ValidationError("Dados inválidos", errors=form.errors)
    return form.dados()

def limite() -> int:
    return int(current_app.config.get("LISTAGEM_LIMITE", 200))


# ----------------------------
# Query string
# ----------------------------
def filtros_texto(*nomes: str) -> Dict[str, Any]:
    return {n: request.args[n] for n in nomes if request.args.get(n)}

def filtros_int(*nomes: str) -> Dict[str, Any]:
    out = {}
    for n in nomes:
        v = request.args.get(n, type=int)
        if v is not None:
            out[n] = v
    return out

def filtros_valor(*nomes: str) -> Dict[str, Any]:
    out = {}
    for n in nomes:
        v = request.args.get(n, type=float)
        if v is not None:
            out[n] = v
    return out

def filtro_bool(nome: str) -> Dict[str, Any]:
    v = (request.args.get(nome) or "").lower()
    if v in ("1", "true", "sim"):
        return {nome: True}
    if v in ("0", "false", "nao", "não"):
        return {nome: False}
    return {}

def periodo() -> Dict[str, Any]:
    return filtros_texto("data_inicio", "data_fim")

def juntar(*partes: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for p in partes:
        out.update(p)
    return out
