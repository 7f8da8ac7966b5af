import pytest

from app.core.errors import InsufficientStock, ItemNotFound, ValidationError
from app.core.ledger import (
    StockLedger, RoupaEncontrada, RoupaAusente, resolver_roupa, exigir_roupa,
    conferir_estoque, saldo_movimentado,
)
from app.core.models import MovimentoEstoque
from app.core.services import transaction
from conftest import estoque


def test_reserve_decrementa_e_registra_saida(session, nova_roupa):
    roupa = nova_roupa(quantidade=10)
    with transaction(session):
        StockLedger(session).reserve(roupa.id, 4, "venda", 1)
    assert estoque(session, roupa.id) == 6
    mov = session.query(MovimentoEstoque).filter_by(roupa_id=roupa.id).one()
    assert (mov.tipo, mov.quantidade, mov.ref_origem, mov.ref_id) == ("saida", 4, "venda", 1)


def test_reserve_recusa_saldo_insuficiente(session, nova_roupa):
    roupa = nova_roupa(quantidade=2)
    with pytest.raises(InsufficientStock) as exc:
        with transaction(session):
            StockLedger(session).reserve(roupa.id, 5)
    assert exc.value.disponivel == 2
    assert exc.value.solicitado == 5
    assert estoque(session, roupa.id) == 2
    assert session.query(MovimentoEstoque).count() == 0


def test_release_incrementa_sem_limite(session, nova_roupa):
    roupa = nova_roupa(quantidade=0)
    with transaction(session):
        StockLedger(session).release(roupa.id, 7, "compra", 3)
    assert estoque(session, roupa.id) == 7


def test_adjust_despacha_pelo_sinal(session, nova_roupa):
    roupa = nova_roupa(quantidade=5)
    ledger = StockLedger(session)
    with transaction(session):
        ledger.adjust(roupa.id, -2)
        ledger.adjust(roupa.id, 3)
        assert ledger.adjust(roupa.id, 0) is None
    assert estoque(session, roupa.id) == 6
    assert saldo_movimentado(session, roupa.id) == 1


@pytest.mark.parametrize("qtd", [0, -1, True, "3"])
def test_quantidade_deve_ser_inteiro_positivo(session, nova_roupa, qtd):
    roupa = nova_roupa()
    with pytest.raises(ValidationError):
        StockLedger(session).reserve(roupa.id, qtd)


def test_roupa_inexistente(session):
    with pytest.raises(ItemNotFound):
        StockLedger(session).release(999, 1)


def test_resolver_por_id_ou_nome(session, nova_roupa):
    roupa = nova_roupa(nome="Vestido Floral")
    assert resolver_roupa(session, roupas_id=roupa.id) == RoupaEncontrada(roupa)
    assert resolver_roupa(session, nome_item="  Vestido Floral ") == RoupaEncontrada(roupa)
    assert isinstance(resolver_roupa(session, nome_item="Vestido"), RoupaAusente)
    assert isinstance(resolver_roupa(session, roupas_id=4242), RoupaAusente)
    with pytest.raises(ValidationError):
        resolver_roupa(session)
    with pytest.raises(ItemNotFound) as exc:
        exigir_roupa(session, nome_item="Inexistente")
    assert "Inexistente" in exc.value.message


def test_conferir_estoque_detecta_divergencia(session, nova_roupa):
    roupa = nova_roupa(quantidade=10)
    with transaction(session):
        StockLedger(session).reserve(roupa.id, 3)
    assert conferir_estoque(session) == []

    # escrita direta fora do ledger
    with transaction(session):
        session.get(type(roupa), roupa.id).quantidade = 1
    divergencias = conferir_estoque(session)
    assert len(divergencias) == 1
    assert divergencias[0].esperado == 7
    assert divergencias[0].atual == 1
