from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from app.core import services
from app.core.errors import ClienteNotFound, Conflict, InsufficientStock, NotFound, ValidationError
from app.core.ledger import conferir_estoque
from app.core.models import (
    Condicional, MovimentoEstoque, Venda, ITEM_FORA, ITEM_DEVOLVIDO, ITEM_VENDIDO, CONDICIONAL_ATIVO, CONDICIONAL_FINALIZADO,
)
from app.core.services import transaction
from conftest import estoque

DEVOLUCAO = (datetime.utcnow() + timedelta(days=7)).isoformat()


def _condicional(session, cliente, itens):
    with transaction(session):
        cond = services.criar_condicional(session, {"cliente_id": cliente.id, "data_devolucao": DEVOLUCAO, "itens": itens})
    return cond


def _status_linhas(session, cond_id):
    session.expire_all()
    return sorted((l.roupa_id, l.quantidade, l.status) for l in session.get(Condicional, cond_id).itens)


def test_devolver_item_restaura_estoque(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 3}])
    assert estoque(session, a.id) == 7
    assert _status_linhas(session, cond.id) == [(a.id, 3, ITEM_FORA)]

    with transaction(session):
        services.devolver_item(session, cond.id, a.id)
    assert estoque(session, a.id) == 10
    assert _status_linhas(session, cond.id) == [(a.id, 3, ITEM_DEVOLVIDO)]
    # sem linhas fora o condicional se encerra
    assert session.get(Condicional, cond.id).status == CONDICIONAL_FINALIZADO


def test_converter_em_venda_nao_baixa_de_novo(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10, preco="40.00")
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 3}])
    with transaction(session):
        venda = services.converter_em_venda(session, cond.id, {"forma_pagamento": "Pix"})
    assert estoque(session, a.id) == 7
    assert _status_linhas(session, cond.id) == [(a.id, 3, ITEM_VENDIDO)]
    venda = session.get(Venda, venda.id)
    assert venda.condicional_id == cond.id
    assert [(i.roupa_id, i.quantidade) for i in venda.itens] == [(a.id, 3)]
    assert venda.valor_total == Decimal("120.00")
    assert venda.nome_cliente == cliente.nome
    assert conferir_estoque(session) == []


def test_devolucao_parcial_divide_a_linha(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 5}])
    with transaction(session):
        services.devolver_item(session, cond.id, a.id, 2)
    assert estoque(session, a.id) == 7
    assert _status_linhas(session, cond.id) == [(a.id, 2, ITEM_DEVOLVIDO), (a.id, 3, ITEM_FORA)]
    assert session.get(Condicional, cond.id).status == CONDICIONAL_ATIVO

    with pytest.raises(ValidationError):
        with transaction(session):
            services.devolver_item(session, cond.id, a.id, 4)
    assert estoque(session, a.id) == 7


def test_conversao_parcial(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10, preco="10.00")
    b = nova_roupa(quantidade=10, preco="25.00")
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 2}, {"roupas_id": b.id, "quantidade": 1}])
    with transaction(session):
        venda = services.converter_em_venda(session, cond.id, {
            "forma_pagamento": "Dinheiro",
            "desconto": "5.00",
            "itens_vendidos": [{"roupas_id": a.id, "quantidade": 1}],
        })
    venda = session.get(Venda, venda.id)
    assert venda.valor_total == Decimal("10.00")
    assert venda.valor_pago == Decimal("5.00")
    assert _status_linhas(session, cond.id) == sorted([
        (a.id, 1, ITEM_FORA), (a.id, 1, ITEM_VENDIDO), (b.id, 1, ITEM_FORA),
    ])

    # o restante volta para o estoque
    with transaction(session):
        services.finalizar_condicional(session, cond.id)
    assert (estoque(session, a.id), estoque(session, b.id)) == (9, 10)
    assert conferir_estoque(session) == []


def test_conversao_parcial_desabilitada(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 2}])
    with pytest.raises(ValidationError):
        with transaction(session):
            services.converter_em_venda(
                session, cond.id,
                {"forma_pagamento": "Pix", "itens_vendidos": [{"roupas_id": a.id, "quantidade": 1}]},
                permitir_parcial=False,
            )
    assert _status_linhas(session, cond.id) == [(a.id, 2, ITEM_FORA)]


def test_condicional_finalizado_recusa_operacoes(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 2}])
    with transaction(session):
        services.finalizar_condicional(session, cond.id)
    assert estoque(session, a.id) == 10
    for operacao in (
        lambda: services.finalizar_condicional(session, cond.id),
        lambda: services.devolver_item(session, cond.id, a.id),
        lambda: services.converter_em_venda(session, cond.id, {"forma_pagamento": "Pix"}),
    ):
        with pytest.raises(Conflict):
            with transaction(session):
                operacao()
    assert estoque(session, a.id) == 10


def test_devolver_item_que_nao_esta_fora(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    b = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 1}])
    with pytest.raises(NotFound):
        with transaction(session):
            services.devolver_item(session, cond.id, b.id)


def test_cliente_inexistente_e_saldo_insuficiente(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=1)
    with pytest.raises(ClienteNotFound):
        with transaction(session):
            services.criar_condicional(session, {"cliente_id": 999, "data_devolucao": DEVOLUCAO,
                                                 "itens": [{"roupas_id": a.id, "quantidade": 1}]})
    with pytest.raises(InsufficientStock):
        _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 2}])
    assert estoque(session, a.id) == 1
    assert session.query(Condicional).count() == 0


def test_varias_linhas_sem_saldo_nao_persistem(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    b = nova_roupa(quantidade=1)
    with pytest.raises(InsufficientStock):
        _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 3}, {"roupas_id": b.id, "quantidade": 2}])
    assert (estoque(session, a.id), estoque(session, b.id)) == (10, 1)
    assert session.query(Condicional).count() == 0
    assert session.query(MovimentoEstoque).count() == 0


def test_linhas_repetidas_viram_uma_so(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 1}, {"roupas_id": a.id, "quantidade": 1}])
    assert estoque(session, a.id) == 8
    assert _status_linhas(session, cond.id) == [(a.id, 2, ITEM_FORA)]

    with transaction(session):
        services.converter_em_venda(session, cond.id, {
            "forma_pagamento": "Pix", "itens_vendidos": [{"roupas_id": a.id, "quantidade": 2}],
        })
    assert _status_linhas(session, cond.id) == [(a.id, 2, ITEM_VENDIDO)]
    assert estoque(session, a.id) == 8
    assert conferir_estoque(session) == []


def test_devolucao_total_de_linhas_repetidas(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 1}, {"roupas_id": a.id, "quantidade": 2}])
    with transaction(session):
        services.devolver_item(session, cond.id, a.id)
    assert estoque(session, a.id) == 10
    assert _status_linhas(session, cond.id) == [(a.id, 3, ITEM_DEVOLVIDO)]
    assert session.get(Condicional, cond.id).status == CONDICIONAL_FINALIZADO


def test_excluir_condicional_devolve_so_o_que_esta_fora(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    cond = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 4}])
    with transaction(session):
        venda = services.converter_em_venda(session, cond.id, {
            "forma_pagamento": "Pix", "itens_vendidos": [{"roupas_id": a.id, "quantidade": 1}],
        })
    venda_id = venda.id
    with transaction(session):
        resultado = services.deletar_condicional(session, cond.id)
    assert resultado["estoque_restaurado"] == 3
    assert estoque(session, a.id) == 9
    session.expire_all()
    assert session.get(Venda, venda_id).condicional_id is None
    assert conferir_estoque(session) == []


def test_cliente_com_condicional_nao_pode_ser_excluido(session, cliente, nova_roupa):
    a = nova_roupa()
    _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 1}])
    with pytest.raises(Conflict):
        with transaction(session):
            services.deletar_cliente(session, cliente.id)


def test_estatisticas_condicionais(session, cliente, nova_roupa):
    a = nova_roupa(quantidade=10)
    c1 = _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 2}])
    _condicional(session, cliente, [{"roupas_id": a.id, "quantidade": 3}])
    with transaction(session):
        services.finalizar_condicional(session, c1.id)
    stats = services.estatisticas_condicionais(session)
    assert stats == {
        "total_condicionais": 2,
        "condicionais_ativos": 1,
        "condicionais_finalizados": 1,
        "pecas_em_condicional": 3,
    }
    assert len(services.listar_condicionais(session, {"status": CONDICIONAL_ATIVO})) == 1
