# app/core/serializers.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from app.core.models import Roupa, Cliente, Venda, Compra, Baixa, Condicional, ITEM_FORA


def _v(value):
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value

def _campos(obj, nomes: Iterable[str]) -> Dict[str, Any]:
    return {n: _v(getattr(obj, n)) for n in nomes}

def _roupa_resumo(roupa: Roupa) -> Dict[str, Any]:
    if roupa is None:
        return None
    return {"id": roupa.id, "nome": roupa.nome, "tipo": roupa.tipo, "tamanho": roupa.tamanho, "cor": roupa.cor}


# =============================================================================
# Catálogo
# =============================================================================

def roupa_json(r: Roupa) -> Dict[str, Any]:
    return _campos(r, ("id", "nome", "descricao", "tipo", "tamanho", "cor", "preco", "quantidade", "created_at", "updated_at"))

def cliente_json(c: Cliente) -> Dict[str, Any]:
    return _campos(c, ("id", "nome", "email", "cpf", "telefone", "endereco", "created_at", "updated_at"))


# =============================================================================
# Movimentações
# =============================================================================

def venda_json(v: Venda) -> Dict[str, Any]:
    out = _campos(v, ("id", "forma_pgto", "valor_total", "desconto", "valor_pago", "descricao_permuta",
                      "nome_cliente", "telefone_cliente", "condicional_id", "created_at"))
    out["itens"] = [
        dict(_campos(i, ("id", "roupa_id", "quantidade", "valor_unitario")), roupa=_roupa_resumo(i.roupa))
        for i in v.itens
    ]
    return out

def compra_json(c: Compra) -> Dict[str, Any]:
    out = _campos(c, ("id", "fornecedor", "valor_pago", "observacoes", "finalizada_em", "created_at"))
    out["finalizada"] = c.finalizada
    out["itens"] = [
        dict(_campos(i, ("id", "roupa_id", "quantidade", "valor_peca")), roupa=_roupa_resumo(i.roupa))
        for i in c.itens
    ]
    out["total_pecas"] = sum(i.quantidade for i in c.itens)
    return out

def baixa_json(b: Baixa) -> Dict[str, Any]:
    out = _campos(b, ("id", "motivo", "observacao", "created_at"))
    out["itens"] = [
        dict(_campos(i, ("id", "roupa_id", "quantidade", "observacao_item")), roupa=_roupa_resumo(i.roupa))
        for i in b.itens
    ]
    out["quantidade_total"] = sum(i.quantidade for i in b.itens)
    return out

def condicional_json(c: Condicional) -> Dict[str, Any]:
    out = _campos(c, ("id", "cliente_id", "data_devolucao", "status", "finalizado_em", "created_at"))
    out["devolvido"] = c.finalizado
    out["cliente"] = {"id": c.cliente.id, "nome": c.cliente.nome, "telefone": c.cliente.telefone} if c.cliente else None
    out["itens"] = [
        dict(_campos(i, ("id", "roupa_id", "quantidade", "valor_unitario", "status")), roupa=_roupa_resumo(i.roupa))
        for i in c.itens
    ]
    out["pecas_fora"] = sum(i.quantidade for i in c.itens if i.status == ITEM_FORA)
    return out

def lista(objs: Iterable, fn) -> List[Dict[str, Any]]:
    return [fn(o) for o in objs]
