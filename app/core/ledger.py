# app/core/ledger.py
"""
Livro de estoque.

`StockLedger` é o único ponto do sistema que altera `Roupa.quantidade`.
Cada chamada trava a linha da roupa (SELECT ... FOR UPDATE) dentro da
transação do chamador, aplica o delta e registra um `MovimentoEstoque`.
Nada aqui faz commit: quem abre a unidade de trabalho é `transaction()`.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import case, func

from app.core.errors import InsufficientStock, ItemNotFound, ValidationError
from app.core.models import MovimentoEstoque, Roupa

logger = logging.getLogger(__name__)


# =============================================================================
# Resolução de itens (por ID ou por nome)
# =============================================================================

@dataclass(frozen=True)
class RoupaEncontrada:
    roupa: Roupa


@dataclass(frozen=True)
class RoupaAusente:
    identificador: str


ResultadoBusca = Union[RoupaEncontrada, RoupaAusente]


def resolver_roupa(session, roupas_id: Optional[int] = None, nome_item: Optional[str] = None) -> ResultadoBusca:
    """Busca por ID quando informado; caso contrário pelo nome exato (único)."""
    if roupas_id:
        roupa = session.get(Roupa, roupas_id)
        return RoupaEncontrada(roupa) if roupa else RoupaAusente(f"ID {roupas_id}")
    nome = (nome_item or "").strip()
    if not nome:
        raise ValidationError("Deve informar roupas_id ou nome_item")
    roupa = session.query(Roupa).filter(Roupa.nome == nome).one_or_none()
    return RoupaEncontrada(roupa) if roupa else RoupaAusente(f'nome "{nome}"')


def exigir_roupa(session, roupas_id: Optional[int] = None, nome_item: Optional[str] = None) -> Roupa:
    resultado = resolver_roupa(session, roupas_id, nome_item)
    if isinstance(resultado, RoupaAusente):
        raise ItemNotFound(resultado.identificador)
    return resultado.roupa


# =============================================================================
# StockLedger
# =============================================================================

class StockLedger:
    def __init__(self, session):
        self.session = session

    def _travar(self, roupa_id: int) -> Roupa:
        roupa = (
            self.session.query(Roupa)
            .filter(Roupa.id == roupa_id)
            .with_for_update()
            .populate_existing()
            .one_or_none()
        )
        if roupa is None:
            raise ItemNotFound(f"ID {roupa_id}")
        return roupa

    @staticmethod
    def _checar_qtd(qtd) -> int:
        if not isinstance(qtd, int) or isinstance(qtd, bool) or qtd <= 0:
            raise ValidationError("Quantidade deve ser um inteiro positivo", quantidade=qtd)
        return qtd

    def _registrar(self, roupa: Roupa, tipo: str, qtd: int, ref_origem: Optional[str], ref_id: Optional[int], motivo: Optional[str]):
        self.session.add(MovimentoEstoque(
            roupa_id=roupa.id,
            tipo=tipo,
            quantidade=qtd,
            ref_origem=ref_origem,
            ref_id=ref_id,
            motivo=(motivo or None) and motivo[:200],
        ))

    def reserve(self, roupa_id: int, qtd: int, ref_origem: Optional[str] = None,
                ref_id: Optional[int] = None, motivo: Optional[str] = None) -> Roupa:
        qtd = self._checar_qtd(qtd)
        roupa = self._travar(roupa_id)
        if qtd > roupa.quantidade:
            logger.warning("Reserva recusada: roupa=%s disponivel=%s solicitado=%s", roupa.id, roupa.quantidade, qtd)
            raise InsufficientStock(roupa.id, roupa.nome, roupa.quantidade, qtd)
        roupa.quantidade = roupa.quantidade - qtd
        self._registrar(roupa, "saida", qtd, ref_origem, ref_id, motivo)
        return roupa

    def release(self, roupa_id: int, qtd: int, ref_origem: Optional[str] = None,
                ref_id: Optional[int] = None, motivo: Optional[str] = None) -> Roupa:
        qtd = self._checar_qtd(qtd)
        roupa = self._travar(roupa_id)
        roupa.quantidade = roupa.quantidade + qtd
        self._registrar(roupa, "entrada", qtd, ref_origem, ref_id, motivo)
        return roupa

    def adjust(self, roupa_id: int, delta: int, ref_origem: Optional[str] = None,
               ref_id: Optional[int] = None, motivo: Optional[str] = None) -> Optional[Roupa]:
        if delta < 0:
            return self.reserve(roupa_id, -delta, ref_origem, ref_id, motivo)
        if delta > 0:
            return self.release(roupa_id, delta, ref_origem, ref_id, motivo)
        return None


# =============================================================================
# Conferência
# =============================================================================

@dataclass(frozen=True)
class Divergencia:
    roupa_id: int
    esperado: int
    atual: int


def saldo_movimentado(session, roupa_id: int) -> int:
    """Soma com sinal de todos os movimentos registrados para a roupa."""
    sinal = case((MovimentoEstoque.tipo == "entrada", MovimentoEstoque.quantidade), else_=-MovimentoEstoque.quantidade)
    total = session.query(func.coalesce(func.sum(sinal), 0)).filter(MovimentoEstoque.roupa_id == roupa_id).scalar()
    return int(total or 0)


def conferir_estoque(session) -> List[Divergencia]:
    """Lista roupas cujo estoque não bate com estoque_inicial + movimentos."""
    divergencias = []
    for roupa in session.query(Roupa).order_by(Roupa.id):
        esperado = roupa.estoque_inicial + saldo_movimentado(session, roupa.id)
        if esperado != roupa.quantidade:
            divergencias.append(Divergencia(roupa.id, esperado, roupa.quantidade))
    return divergencias
