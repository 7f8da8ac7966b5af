# app/core/services.py
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from app.core.errors import (
    ServiceError, NotFound, ClienteNotFound, InsufficientStock, Conflict, ValidationError
)
from app.core.ledger import StockLedger, exigir_roupa
from app.core.models import (
    _as_money, normalize_cpf,
    FORMAS_PAGAMENTO, MOTIVOS_BAIXA,
    ITEM_FORA, ITEM_DEVOLVIDO, ITEM_VENDIDO, CONDICIONAL_ATIVO, CONDICIONAL_FINALIZADO,
    Cliente, Roupa, MovimentoEstoque,
    Venda, VendaItem, Compra, CompraItem, Baixa, BaixaItem,
    Condicional, CondicionalItem, AuditLog,
)

logger = logging.getLogger(__name__)

# =============================================================================
# Unidade de trabalho e utilidades
# =============================================================================

def _ensure(cond, msg: str, erro=ValidationError, **detalhes):
    if not cond:
        raise erro(msg, **detalhes)

def _row_to_dict(obj, keys: Iterable[str]) -> Dict[str, Any]:
    out = {}
    for k in keys:
        v = getattr(obj, k, None)
        out[k] = str(v) if isinstance(v, (Decimal, datetime, date)) else v
    return out

@contextmanager
def transaction(session):
    """
    Unidade de trabalho: commit se o bloco terminar, rollback em qualquer falha.
    Os serviços abaixo nunca fazem commit por conta própria.
    """
    try:
        yield session
        session.commit()
    except IntegrityError as ie:
        session.rollback()
        raise Conflict(f"Violação de integridade: {ie.orig}") from ie
    except ServiceError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        raise ServiceError(str(e)) from e

def audit_log(session, entidade: str, entidade_id: Optional[int], acao: str, payload: dict):
    session.add(AuditLog(
        entidade=entidade,
        entidade_id=entidade_id,
        acao=acao,
        payload_json=payload or {},
    ))

def _obter(session, model, obj_id: int, nome: str):
    obj = session.get(model, obj_id) if obj_id else None
    if obj is None:
        raise NotFound(f"{nome} não encontrada" if nome.endswith("a") else f"{nome} não encontrado", id=obj_id)
    return obj

def _quantidade(valor) -> int:
    if isinstance(valor, bool) or not isinstance(valor, int) or valor < 1:
        raise ValidationError("Quantidade deve ser pelo menos 1", quantidade=valor)
    return valor

def _itens_obrigatorios(itens, msg: str) -> list:
    _ensure(isinstance(itens, (list, tuple)) and len(itens) > 0, msg)
    return list(itens)

def _parse_data(valor, fim: bool = False) -> Optional[datetime]:
    if valor in (None, ""):
        return None
    if isinstance(valor, datetime):
        return valor
    if isinstance(valor, date):
        return datetime.combine(valor, time.max if fim else time.min)
    try:
        d = date.fromisoformat(str(valor)[:10])
    except ValueError:
        raise ValidationError("Data deve estar no formato YYYY-MM-DD", valor=valor)
    return datetime.combine(d, time.max if fim else time.min)

def _parse_datahora(valor) -> datetime:
    if isinstance(valor, datetime):
        return valor
    try:
        dt = datetime.fromisoformat(str(valor).replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Data de devolução deve ser uma data válida", valor=valor)
    return dt.replace(tzinfo=None)

def _filtrar_periodo(query, coluna, filtros: Dict[str, Any]):
    ini = _parse_data(filtros.get("data_inicio"))
    fim = _parse_data(filtros.get("data_fim"), fim=True)
    if ini:
        query = query.filter(coluna >= ini)
    if fim:
        query = query.filter(coluna <= fim)
    return query

def _pagamento(forma_pgto: Optional[str]) -> str:
    _ensure(forma_pgto in FORMAS_PAGAMENTO, "Forma de pagamento inválida", forma_pgto=forma_pgto)
    return forma_pgto

# =============================================================================
# Catálogo: Roupas
# =============================================================================

ROUPA_CAMPOS_EDITAVEIS = {"nome", "descricao", "tipo", "tamanho", "cor", "preco"}

def criar_roupa(session, dados: Dict[str, Any]) -> Roupa:
    nome = (dados.get("nome") or "").strip()
    _ensure(len(nome) >= 3, "Nome deve ter pelo menos 3 caracteres")
    _ensure(session.query(Roupa).filter(Roupa.nome == nome).first() is None,
            f'Já existe uma roupa com o nome "{nome}"', erro=Conflict)
    qtd = dados.get("quantidade", 0) or 0
    _ensure(isinstance(qtd, int) and qtd >= 0, "Quantidade deve ser um número inteiro não negativo")
    preco = _as_money(dados.get("preco"))
    _ensure(preco > 0, "Preço deve ser um valor positivo")
    roupa = Roupa(
        nome=nome,
        descricao=dados.get("descricao"),
        tipo=dados.get("tipo"),
        tamanho=dados.get("tamanho"),
        cor=dados.get("cor"),
        preco=preco,
        quantidade=qtd,
        estoque_inicial=qtd,
    )
    session.add(roupa)
    session.flush()
    audit_log(session, "Roupa", roupa.id, "created", _row_to_dict(roupa, ["nome", "preco", "quantidade"]))
    return roupa

def atualizar_roupa(session, roupa_id: int, dados: Dict[str, Any]) -> Roupa:
    roupa = _obter(session, Roupa, roupa_id, "Roupa")
    # quantidade muda apenas por movimentações
    _ensure("quantidade" not in dados, "Quantidade só pode ser alterada por vendas, compras, baixas ou condicionais")
    before = _row_to_dict(roupa, ROUPA_CAMPOS_EDITAVEIS)
    for k, v in dados.items():
        if k not in ROUPA_CAMPOS_EDITAVEIS:
            continue
        if k == "nome":
            v = (v or "").strip()
            _ensure(len(v) >= 3, "Nome deve ter pelo menos 3 caracteres")
            outra = session.query(Roupa).filter(Roupa.nome == v, Roupa.id != roupa.id).first()
            _ensure(outra is None, f'Já existe uma roupa com o nome "{v}"', erro=Conflict)
        if k == "preco":
            v = _as_money(v)
            _ensure(v > 0, "Preço deve ser um valor positivo")
        setattr(roupa, k, v)
    audit_log(session, "Roupa", roupa.id, "updated", {"before": before, "after": _row_to_dict(roupa, ROUPA_CAMPOS_EDITAVEIS)})
    return roupa

def obter_roupa(session, roupa_id: int) -> Roupa:
    return _obter(session, Roupa, roupa_id, "Roupa")

def listar_roupas(session, filtros: Optional[Dict[str, Any]] = None, limite: int = 200) -> List[Roupa]:
    filtros = filtros or {}
    q = session.query(Roupa)
    if filtros.get("nome"):
        q = q.filter(func.lower(Roupa.nome).like(f"%{filtros['nome'].strip().lower()}%"))
    for campo in ("tipo", "cor", "tamanho"):
        if filtros.get(campo):
            q = q.filter(getattr(Roupa, campo) == filtros[campo])
    return q.order_by(Roupa.nome).limit(limite).all()

def deletar_roupa(session, roupa_id: int) -> None:
    roupa = _obter(session, Roupa, roupa_id, "Roupa")
    for model in (VendaItem, CompraItem, BaixaItem, CondicionalItem, MovimentoEstoque):
        em_uso = session.query(model.id).filter(model.roupa_id == roupa.id).first()
        _ensure(em_uso is None, "Roupa possui movimentações e não pode ser excluída", erro=Conflict, roupa_id=roupa.id)
    session.delete(roupa)
    audit_log(session, "Roupa", roupa_id, "deleted", {"nome": roupa.nome})

# =============================================================================
# Catálogo: Clientes
# =============================================================================

CLIENTE_CAMPOS = {"nome", "email", "cpf", "telefone", "endereco"}

def _checar_cpf_unico(session, cpf: Optional[str], ignorar_id: Optional[int] = None):
    cpf = normalize_cpf(cpf)
    if not cpf:
        return
    q = session.query(Cliente).filter(Cliente.cpf == cpf)
    if ignorar_id:
        q = q.filter(Cliente.id != ignorar_id)
    _ensure(q.first() is None, "CPF já cadastrado", erro=Conflict)

def criar_cliente(session, dados: Dict[str, Any]) -> Cliente:
    nome = (dados.get("nome") or "").strip()
    _ensure(len(nome) >= 2, "Nome deve ter pelo menos 2 caracteres")
    _checar_cpf_unico(session, dados.get("cpf"))
    try:
        cliente = Cliente(
            nome=nome,
            email=dados.get("email") or None,
            cpf=dados.get("cpf") or None,
            telefone=dados.get("telefone") or None,
            endereco=dados.get("endereco") or None,
        )
    except ValueError as e:
        raise ValidationError(str(e)) from e
    session.add(cliente)
    session.flush()
    audit_log(session, "Cliente", cliente.id, "created", {"nome": nome})
    return cliente

def atualizar_cliente(session, cliente_id: int, dados: Dict[str, Any]) -> Cliente:
    cliente = session.get(Cliente, cliente_id)
    if cliente is None:
        raise ClienteNotFound(cliente_id)
    if "cpf" in dados:
        _checar_cpf_unico(session, dados["cpf"], ignorar_id=cliente.id)
    try:
        for k, v in dados.items():
            if k in CLIENTE_CAMPOS:
                setattr(cliente, k, v or None)
    except ValueError as e:
        raise ValidationError(str(e)) from e
    _ensure(cliente.nome, "Nome é obrigatório")
    audit_log(session, "Cliente", cliente.id, "updated", _row_to_dict(cliente, CLIENTE_CAMPOS))
    return cliente

def obter_cliente(session, cliente_id: int) -> Cliente:
    cliente = session.get(Cliente, cliente_id)
    if cliente is None:
        raise ClienteNotFound(cliente_id)
    return cliente

def listar_clientes(session, filtros: Optional[Dict[str, Any]] = None, limite: int = 200) -> List[Cliente]:
    filtros = filtros or {}
    q = session.query(Cliente)
    if filtros.get("nome"):
        q = q.filter(func.lower(Cliente.nome).like(f"%{filtros['nome'].strip().lower()}%"))
    if filtros.get("cpf"):
        q = q.filter(Cliente.cpf == normalize_cpf(filtros["cpf"]))
    if filtros.get("email"):
        q = q.filter(Cliente.email == filtros["email"].lower())
    return q.order_by(Cliente.nome).limit(limite).all()

def deletar_cliente(session, cliente_id: int) -> None:
    cliente = obter_cliente(session, cliente_id)
    _ensure(cliente.condicionais.count() == 0, "Cliente possui condicionais e não pode ser excluído", erro=Conflict)
    session.delete(cliente)
    audit_log(session, "Cliente", cliente_id, "deleted", {"nome": cliente.nome})

# =============================================================================
# Vendas
# =============================================================================

VENDA_CAMPOS_EDITAVEIS = {"forma_pgto", "valor_total", "desconto", "valor_pago", "descricao_permuta", "nome_cliente", "telefone_cliente"}

def _aplicar_permuta(venda: Venda):
    # Permuta não movimenta dinheiro
    _ensure((venda.descricao_permuta or "").strip(), "Para permuta, descrição é obrigatória")
    venda.valor_total = Decimal("0")
    venda.desconto = Decimal("0")
    venda.valor_pago = Decimal("0")

def criar_venda(session, dados: Dict[str, Any]) -> Venda:
    """
    Cria a venda e reserva o estoque de cada linha.
    Qualquer item ausente ou sem saldo aborta a unidade de trabalho inteira.
    """
    itens = _itens_obrigatorios(dados.get("itens"), "Deve haver pelo menos um item na venda")
    forma = _pagamento(dados.get("forma_pgto"))
    ledger = StockLedger(session)

    venda = Venda(
        forma_pgto=forma,
        desconto=_as_money(dados.get("desconto")),
        descricao_permuta=dados.get("descricao_permuta"),
        nome_cliente=dados.get("nome_cliente"),
        telefone_cliente=dados.get("telefone_cliente"),
    )
    session.add(venda)
    session.flush()

    total = Decimal("0.00")
    for it in itens:
        qtd = _quantidade(it.get("quantidade"))
        roupa = exigir_roupa(session, it.get("roupas_id"), it.get("nome_item"))
        ledger.reserve(roupa.id, qtd, "venda", venda.id)
        unit = _as_money(it["valor_unitario"]) if it.get("valor_unitario") is not None else roupa.preco
        venda.itens.append(VendaItem(roupa_id=roupa.id, quantidade=qtd, valor_unitario=unit))
        total += _as_money(unit * qtd)

    venda.valor_total = _as_money(dados["valor_total"]) if dados.get("valor_total") is not None else total
    _ensure(venda.desconto <= venda.valor_total, "Desconto não pode ser maior que o valor total")
    if dados.get("valor_pago") is not None:
        venda.valor_pago = _as_money(dados["valor_pago"])
    else:
        venda.valor_pago = venda.valor_total - venda.desconto
    if forma == "Permuta":
        _aplicar_permuta(venda)
    else:
        _ensure(venda.valor_pago <= venda.valor_total, "Valor pago não pode ser maior que valor total")

    audit_log(session, "Venda", venda.id, "created", {
        "forma_pgto": forma, "itens": len(itens), "valor_total": str(venda.valor_total)
    })
    logger.info("Venda %s criada com %d itens", venda.id, len(itens))
    return venda

def atualizar_venda(session, venda_id: int, dados: Dict[str, Any]) -> Venda:
    """Somente campos do cabeçalho; itens de venda são imutáveis."""
    venda = _obter(session, Venda, venda_id, "Venda")
    _ensure("itens" not in dados, "Itens de uma venda não podem ser alterados")
    before = _row_to_dict(venda, VENDA_CAMPOS_EDITAVEIS)
    for k, v in dados.items():
        if k not in VENDA_CAMPOS_EDITAVEIS:
            continue
        if k == "forma_pgto":
            v = _pagamento(v)
        elif k in ("valor_total", "desconto", "valor_pago"):
            v = _as_money(v)
            _ensure(v >= 0, f"{k} deve ser maior ou igual a 0")
        setattr(venda, k, v)
    if venda.forma_pgto == "Permuta":
        _aplicar_permuta(venda)
    else:
        _ensure(venda.desconto <= venda.valor_total, "Desconto não pode ser maior que o valor total")
        _ensure(venda.valor_pago <= venda.valor_total, "Valor pago não pode ser maior que valor total")
    audit_log(session, "Venda", venda.id, "updated", {"before": before, "after": _row_to_dict(venda, VENDA_CAMPOS_EDITAVEIS)})
    return venda

def deletar_venda(session, venda_id: int) -> Dict[str, Any]:
    venda = _obter(session, Venda, venda_id, "Venda")
    ledger = StockLedger(session)
    restaurado = {}
    for it in venda.itens:
        ledger.release(it.roupa_id, it.quantidade, "venda", venda.id, "Exclusão de venda")
        restaurado[it.roupa_id] = restaurado.get(it.roupa_id, 0) + it.quantidade
    session.delete(venda)
    audit_log(session, "Venda", venda_id, "deleted", {"estoque_restaurado": restaurado})
    logger.info("Venda %s excluída, estoque restaurado", venda_id)
    return {"venda_id": venda_id, "estoque_restaurado": restaurado}

def obter_venda(session, venda_id: int) -> Venda:
    return _obter(session, Venda, venda_id, "Venda")

def listar_vendas(session, filtros: Optional[Dict[str, Any]] = None, limite: int = 200) -> List[Venda]:
    filtros = filtros or {}
    q = _filtrar_periodo(session.query(Venda), Venda.created_at, filtros)
    if filtros.get("forma_pgto"):
        q = q.filter(Venda.forma_pgto == filtros["forma_pgto"])
    if filtros.get("valor_min") is not None:
        q = q.filter(Venda.valor_total >= _as_money(filtros["valor_min"]))
    if filtros.get("valor_max") is not None:
        q = q.filter(Venda.valor_total <= _as_money(filtros["valor_max"]))
    return q.order_by(Venda.created_at.desc(), Venda.id.desc()).limit(limite).all()

def estatisticas_vendas(session, filtros: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    q = session.query(
        func.count(Venda.id),
        func.sum(Venda.valor_total),
        func.sum(Venda.valor_pago),
        func.sum(Venda.desconto),
        func.avg(Venda.valor_total),
    )
    row = _filtrar_periodo(q, Venda.created_at, filtros or {}).one()
    return {
        "total_vendas": int(row[0] or 0),
        "valor_total_vendido": str(_as_money(row[1] or 0)),
        "valor_total_recebido": str(_as_money(row[2] or 0)),
        "total_descontos": str(_as_money(row[3] or 0)),
        "ticket_medio": str(_as_money(row[4] or 0)),
    }

# =============================================================================
# Compras
# =============================================================================

COMPRA_CAMPOS_EDITAVEIS = {"fornecedor", "valor_pago", "observacoes"}

def _obter_compra_aberta(session, compra_id: int) -> Compra:
    compra = _obter(session, Compra, compra_id, "Compra")
    _ensure(not compra.finalizada, "Compra já finalizada não pode ser alterada", erro=Conflict, compra_id=compra.id)
    return compra

def _linha_compra_da_roupa(compra: Compra, roupa_id: int) -> Optional[CompraItem]:
    for linha in compra.itens:
        if linha.roupa_id == roupa_id:
            return linha
    return None

def _somar_item_compra(session, compra: Compra, it: Dict[str, Any]) -> CompraItem:
    qtd = _quantidade(it.get("quantidade"))
    roupa = exigir_roupa(session, it.get("roupas_id"), it.get("nome_item"))
    valor = _as_money(it.get("valor_peca"))
    _ensure(valor >= 0, "Valor da peça deve ser maior ou igual a 0")
    linha = _linha_compra_da_roupa(compra, roupa.id)
    if linha:
        linha.quantidade = linha.quantidade + qtd
        linha.valor_peca = valor
        return linha
    linha = CompraItem(roupa_id=roupa.id, quantidade=qtd, valor_peca=valor)
    compra.itens.append(linha)
    return linha

def criar_compra(session, dados: Dict[str, Any]) -> Compra:
    """Registra o pedido; o estoque só muda em finalizar_compra."""
    itens = _itens_obrigatorios(dados.get("itens"), "É necessário informar pelo menos um item")
    fornecedor = (dados.get("fornecedor") or "").strip()
    _ensure(fornecedor, "Fornecedor é obrigatório")
    compra = Compra(
        fornecedor=fornecedor,
        valor_pago=_as_money(dados.get("valor_pago")),
        observacoes=dados.get("observacoes"),
    )
    session.add(compra)
    for it in itens:
        _somar_item_compra(session, compra, it)
    session.flush()

    valor_itens = sum((_as_money(l.valor_peca * l.quantidade) for l in compra.itens), Decimal("0.00"))
    if compra.valor_pago > valor_itens * Decimal("1.5"):
        logger.warning("Compra %s: valor pago (%s) muito superior ao valor dos itens (%s)", compra.id, compra.valor_pago, valor_itens)
    audit_log(session, "Compra", compra.id, "created", {"fornecedor": fornecedor, "itens": len(compra.itens)})
    return compra

def atualizar_compra(session, compra_id: int, dados: Dict[str, Any]) -> Compra:
    compra = _obter(session, Compra, compra_id, "Compra")
    for k, v in dados.items():
        if k not in COMPRA_CAMPOS_EDITAVEIS:
            continue
        if k == "valor_pago":
            v = _as_money(v)
            _ensure(v >= 0, "Valor pago deve ser maior ou igual a 0")
        if k == "fornecedor":
            v = (v or "").strip()
            _ensure(v, "Fornecedor é obrigatório")
        setattr(compra, k, v)
    audit_log(session, "Compra", compra.id, "updated", _row_to_dict(compra, COMPRA_CAMPOS_EDITAVEIS))
    return compra

def adicionar_item_compra(session, compra_id: int, dados: Dict[str, Any]) -> CompraItem:
    compra = _obter_compra_aberta(session, compra_id)
    linha = _somar_item_compra(session, compra, dados)
    session.flush()
    audit_log(session, "Compra", compra.id, "item_added", {"roupa_id": linha.roupa_id, "quantidade": linha.quantidade})
    return linha

def _obter_linha(session, model, linha_id: int, fk: str, header_id: int, nome: str):
    linha = session.get(model, linha_id)
    if linha is None or getattr(linha, fk) != header_id:
        raise NotFound(f"{nome} não encontrado", id=linha_id)
    return linha

def atualizar_item_compra(session, compra_id: int, item_id: int, dados: Dict[str, Any]) -> CompraItem:
    _obter_compra_aberta(session, compra_id)
    linha = _obter_linha(session, CompraItem, item_id, "compra_id", compra_id, "Item da compra")
    if "quantidade" in dados:
        linha.quantidade = _quantidade(dados["quantidade"])
    if "valor_peca" in dados:
        valor = _as_money(dados["valor_peca"])
        _ensure(valor >= 0, "Valor da peça deve ser maior ou igual a 0")
        linha.valor_peca = valor
    audit_log(session, "Compra", compra_id, "item_updated", _row_to_dict(linha, ["id", "quantidade", "valor_peca"]))
    return linha

def remover_item_compra(session, compra_id: int, item_id: int) -> None:
    compra = _obter_compra_aberta(session, compra_id)
    linha = _obter_linha(session, CompraItem, item_id, "compra_id", compra_id, "Item da compra")
    _ensure(len(compra.itens) > 1, "A compra deve manter pelo menos um item")
    compra.itens.remove(linha)
    audit_log(session, "Compra", compra.id, "item_removed", {"item_id": item_id})

def finalizar_compra(session, compra_id: int, observacoes: Optional[str] = None) -> Compra:
    """Dá entrada no estoque de todas as linhas. Uma compra só é finalizada uma vez."""
    compra = _obter(session, Compra, compra_id, "Compra")
    _ensure(len(compra.itens) > 0, "Compra não possui itens para finalizar", erro=NotFound, compra_id=compra.id)
    _ensure(not compra.finalizada, "Compra já foi finalizada", erro=Conflict, compra_id=compra.id)
    ledger = StockLedger(session)
    for linha in compra.itens:
        ledger.release(linha.roupa_id, linha.quantidade, "compra", compra.id, "Finalização de compra")
    compra.finalizada_em = datetime.utcnow()
    if observacoes:
        compra.observacoes = observacoes
    audit_log(session, "Compra", compra.id, "finalized", {"itens": len(compra.itens)})
    logger.info("Compra %s finalizada, %d itens adicionados ao estoque", compra.id, len(compra.itens))
    return compra

def deletar_compra(session, compra_id: int) -> None:
    compra = _obter(session, Compra, compra_id, "Compra")
    if compra.finalizada:
        # desfaz a entrada; falha se as peças já saíram do estoque
        ledger = StockLedger(session)
        for linha in compra.itens:
            ledger.reserve(linha.roupa_id, linha.quantidade, "compra", compra.id, "Exclusão de compra finalizada")
    session.delete(compra)
    audit_log(session, "Compra", compra_id, "deleted", {"finalizada": compra.finalizada})

def obter_compra(session, compra_id: int) -> Compra:
    return _obter(session, Compra, compra_id, "Compra")

def listar_compras(session, filtros: Optional[Dict[str, Any]] = None, limite: int = 200) -> List[Compra]:
    filtros = filtros or {}
    q = _filtrar_periodo(session.query(Compra), Compra.created_at, filtros)
    if filtros.get("fornecedor"):
        q = q.filter(func.lower(Compra.fornecedor).like(f"%{filtros['fornecedor'].lower()}%"))
    if filtros.get("valor_min") is not None:
        q = q.filter(Compra.valor_pago >= _as_money(filtros["valor_min"]))
    if filtros.get("valor_max") is not None:
        q = q.filter(Compra.valor_pago <= _as_money(filtros["valor_max"]))
    if filtros.get("finalizada") is True:
        q = q.filter(Compra.finalizada_em.isnot(None))
    elif filtros.get("finalizada") is False:
        q = q.filter(Compra.finalizada_em.is_(None))
    return q.order_by(Compra.created_at.desc(), Compra.id.desc()).limit(limite).all()

def estatisticas_compras(session, filtros: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    filtros = filtros or {}
    q = session.query(func.count(Compra.id), func.sum(Compra.valor_pago), func.avg(Compra.valor_pago))
    row = _filtrar_periodo(q, Compra.created_at, filtros).one()
    qi = session.query(func.sum(CompraItem.quantidade)).join(Compra, Compra.id == CompraItem.compra_id)
    total_itens = _filtrar_periodo(qi, Compra.created_at, filtros).scalar()
    return {
        "total_compras": int(row[0] or 0),
        "valor_total_gasto": str(_as_money(row[1] or 0)),
        "valor_medio_compra": str(_as_money(row[2] or 0)),
        "total_itens_comprados": int(total_itens or 0),
    }

# =============================================================================
# Baixas
# =============================================================================

def motivos_baixa() -> List[str]:
    return list(MOTIVOS_BAIXA)

def _motivo(valor) -> str:
    _ensure(valor in MOTIVOS_BAIXA, "Motivo deve ser um dos valores válidos", motivo=valor)
    return valor

def _baixar(session, ledger: StockLedger, baixa_id: int, it: Dict[str, Any]) -> Tuple[Roupa, int]:
    qtd = _quantidade(it.get("quantidade"))
    roupa = exigir_roupa(session, it.get("roupas_id"), it.get("nome_item"))
    # saldo conferido antes do ledger
    if qtd > roupa.quantidade:
        raise InsufficientStock(roupa.id, roupa.nome, roupa.quantidade, qtd)
    ledger.reserve(roupa.id, qtd, "baixa", baixa_id)
    return roupa, qtd

def criar_baixa(session, dados: Dict[str, Any]) -> Baixa:
    itens = _itens_obrigatorios(dados.get("itens"), "Deve ter pelo menos um item na baixa")
    baixa = Baixa(motivo=_motivo(dados.get("motivo")), observacao=dados.get("observacao") or dados.get("observacoes"))
    session.add(baixa)
    session.flush()
    ledger = StockLedger(session)
    for it in itens:
        roupa, qtd = _baixar(session, ledger, baixa.id, it)
        baixa.itens.append(BaixaItem(roupa_id=roupa.id, quantidade=qtd, observacao_item=it.get("observacao_item")))
    audit_log(session, "Baixa", baixa.id, "created", {"motivo": baixa.motivo, "itens": len(itens)})
    logger.info("Baixa %s (%s) criada com %d itens", baixa.id, baixa.motivo, len(itens))
    return baixa

def atualizar_baixa(session, baixa_id: int, dados: Dict[str, Any]) -> Baixa:
    """Apenas motivo e observação; quantidades mudam pelos endpoints de itens."""
    baixa = _obter(session, Baixa, baixa_id, "Baixa")
    if dados.get("motivo"):
        baixa.motivo = _motivo(dados["motivo"])
    for k in ("observacao", "observacoes"):
        if k in dados:
            baixa.observacao = dados[k]
    audit_log(session, "Baixa", baixa.id, "updated", {"motivo": baixa.motivo, "observacao": baixa.observacao})
    return baixa

def deletar_baixa(session, baixa_id: int) -> Dict[str, Any]:
    baixa = _obter(session, Baixa, baixa_id, "Baixa")
    ledger = StockLedger(session)
    total = 0
    for linha in baixa.itens:
        ledger.release(linha.roupa_id, linha.quantidade, "baixa", baixa.id, "Exclusão de baixa")
        total += linha.quantidade
    session.delete(baixa)
    audit_log(session, "Baixa", baixa_id, "deleted", {"estoque_restaurado": total})
    return {"baixa_id": baixa_id, "estoque_restaurado": total}

def adicionar_item_baixa(session, baixa_id: int, dados: Dict[str, Any]) -> BaixaItem:
    baixa = _obter(session, Baixa, baixa_id, "Baixa")
    roupa, qtd = _baixar(session, StockLedger(session), baixa.id, dados)
    linha = next((l for l in baixa.itens if l.roupa_id == roupa.id), None)
    if linha:
        linha.quantidade = linha.quantidade + qtd
        if dados.get("observacao_item"):
            linha.observacao_item = dados["observacao_item"]
    else:
        linha = BaixaItem(roupa_id=roupa.id, quantidade=qtd, observacao_item=dados.get("observacao_item"))
        baixa.itens.append(linha)
    session.flush()
    audit_log(session, "Baixa", baixa.id, "item_added", {"roupa_id": roupa.id, "quantidade": qtd})
    return linha

def atualizar_item_baixa(session, baixa_id: int, item_id: int, dados: Dict[str, Any]) -> BaixaItem:
    _obter(session, Baixa, baixa_id, "Baixa")
    linha = _obter_linha(session, BaixaItem, item_id, "baixa_id", baixa_id, "Item da baixa")
    if "quantidade" in dados:
        nova = _quantidade(dados["quantidade"])
        delta = nova - linha.quantidade
        ledger = StockLedger(session)
        if delta > 0:
            roupa = session.get(Roupa, linha.roupa_id)
            if delta > roupa.quantidade:
                raise InsufficientStock(roupa.id, roupa.nome, roupa.quantidade, delta)
        # baixar mais reserva a diferença; baixar menos devolve a diferença
        ledger.adjust(linha.roupa_id, -delta, "baixa", baixa_id, "Ajuste de item da baixa")
        linha.quantidade = nova
    if "observacao_item" in dados:
        linha.observacao_item = dados["observacao_item"]
    audit_log(session, "Baixa", baixa_id, "item_updated", _row_to_dict(linha, ["id", "quantidade"]))
    return linha

def remover_item_baixa(session, baixa_id: int, item_id: int) -> None:
    baixa = _obter(session, Baixa, baixa_id, "Baixa")
    linha = _obter_linha(session, BaixaItem, item_id, "baixa_id", baixa_id, "Item da baixa")
    _ensure(len(baixa.itens) > 1, "A baixa deve manter pelo menos um item; exclua a baixa inteira")
    StockLedger(session).release(linha.roupa_id, linha.quantidade, "baixa", baixa.id, "Remoção de item da baixa")
    baixa.itens.remove(linha)
    audit_log(session, "Baixa", baixa.id, "item_removed", {"item_id": item_id})

def obter_baixa(session, baixa_id: int) -> Baixa:
    return _obter(session, Baixa, baixa_id, "Baixa")

def listar_baixas(session, filtros: Optional[Dict[str, Any]] = None, limite: int = 200) -> List[Baixa]:
    filtros = filtros or {}
    q = _filtrar_periodo(session.query(Baixa), Baixa.created_at, filtros)
    if filtros.get("motivo"):
        q = q.filter(Baixa.motivo == filtros["motivo"])
    if filtros.get("roupa_id"):
        q = q.filter(Baixa.itens.any(BaixaItem.roupa_id == filtros["roupa_id"]))
    return q.order_by(Baixa.created_at.desc(), Baixa.id.desc()).limit(limite).all()

PERIODOS = {"hoje": 0, "semana": 7, "mes": 30, "ano": 365}

def estatisticas_baixas(session, periodo: str = "mes") -> Dict[str, Any]:
    _ensure(periodo in PERIODOS, "Período deve ser hoje, semana, mes ou ano")
    hoje = datetime.combine(datetime.utcnow().date(), time.min)
    desde = hoje - timedelta(days=PERIODOS[periodo])
    total_baixas = session.query(func.count(Baixa.id)).filter(Baixa.created_at >= desde).scalar()
    rows = (
        session.query(Baixa.motivo, func.sum(BaixaItem.quantidade), func.count(func.distinct(Baixa.id)))
        .join(BaixaItem, BaixaItem.baixa_id == Baixa.id)
        .filter(Baixa.created_at >= desde)
        .group_by(Baixa.motivo)
        .all()
    )
    por_motivo = {motivo: {"quantidade": int(qtd or 0), "total_baixas": int(n or 0)} for motivo, qtd, n in rows}
    return {
        "total_baixas": int(total_baixas or 0),
        "quantidade_total": sum(m["quantidade"] for m in por_motivo.values()),
        "por_motivo": por_motivo,
        "periodo": periodo,
    }

# =============================================================================
# Condicionais
# =============================================================================

def _obter_condicional_ativo(session, condicional_id: int) -> Condicional:
    cond = _obter(session, Condicional, condicional_id, "Condicional")
    _ensure(not cond.finalizado, "Condicional já foi finalizado", erro=Conflict, condicional_id=cond.id)
    return cond

def _finalizar_se_vazio(cond: Condicional):
    if not cond.itens_fora():
        cond.status = CONDICIONAL_FINALIZADO
        cond.finalizado_em = datetime.utcnow()

def _separar_linha(cond: Condicional, linha: CondicionalItem, qtd: int, status: str) -> CondicionalItem:
    """Move `qtd` da linha (fora) para o novo status, dividindo a linha se for parcial."""
    if qtd == linha.quantidade:
        linha.status = status
        return linha
    linha.quantidade = linha.quantidade - qtd
    nova = CondicionalItem(roupa_id=linha.roupa_id, quantidade=qtd, valor_unitario=linha.valor_unitario, status=status)
    cond.itens.append(nova)
    return nova

def _linha_fora(cond: Condicional, roupa_id: int) -> CondicionalItem:
    linha = next((l for l in cond.itens_fora() if l.roupa_id == roupa_id), None)
    if linha is None:
        raise NotFound("Item não encontrado no condicional", roupa_id=roupa_id, condicional_id=cond.id)
    return linha

def criar_condicional(session, dados: Dict[str, Any]) -> Condicional:
    """Peças saem com o cliente: estoque reservado linha a linha, tudo ou nada."""
    cliente_id = dados.get("cliente_id")
    if not cliente_id or session.get(Cliente, cliente_id) is None:
        raise ClienteNotFound(cliente_id)
    itens = _itens_obrigatorios(dados.get("itens"), "Deve haver pelo menos um item no condicional")
    _ensure(dados.get("data_devolucao"), "Data de devolução é obrigatória")

    cond = Condicional(cliente_id=cliente_id, data_devolucao=_parse_datahora(dados["data_devolucao"]), status=CONDICIONAL_ATIVO)
    session.add(cond)
    session.flush()
    ledger = StockLedger(session)
    for it in itens:
        qtd = _quantidade(it.get("quantidade"))
        roupa = exigir_roupa(session, it.get("roupas_id"), it.get("nome_item"))
        ledger.reserve(roupa.id, qtd, "condicional", cond.id)
        # uma linha fora por peça
        linha = next((l for l in cond.itens if l.roupa_id == roupa.id), None)
        if linha:
            linha.quantidade = linha.quantidade + qtd
        else:
            cond.itens.append(CondicionalItem(roupa_id=roupa.id, quantidade=qtd, valor_unitario=roupa.preco, status=ITEM_FORA))
    audit_log(session, "Condicional", cond.id, "created", {"cliente_id": cliente_id, "itens": len(itens)})
    logger.info("Condicional %s criado para cliente %s com %d itens", cond.id, cliente_id, len(itens))
    return cond

def atualizar_condicional(session, condicional_id: int, dados: Dict[str, Any]) -> Condicional:
    cond = _obter_condicional_ativo(session, condicional_id)
    if dados.get("cliente_id"):
        if session.get(Cliente, dados["cliente_id"]) is None:
            raise ClienteNotFound(dados["cliente_id"])
        cond.cliente_id = dados["cliente_id"]
    if dados.get("data_devolucao"):
        cond.data_devolucao = _parse_datahora(dados["data_devolucao"])
    audit_log(session, "Condicional", cond.id, "updated", _row_to_dict(cond, ["cliente_id", "data_devolucao"]))
    return cond

def devolver_item(session, condicional_id: int, roupa_id: int, quantidade: Optional[int] = None) -> CondicionalItem:
    """Cliente devolve a peça: estoque volta e a linha fica como devolvida."""
    cond = _obter_condicional_ativo(session, condicional_id)
    linha = _linha_fora(cond, roupa_id)
    qtd = linha.quantidade if quantidade is None else _quantidade(quantidade)
    _ensure(qtd <= linha.quantidade,
            f"Quantidade a devolver ({qtd}) é maior que a quantidade no condicional ({linha.quantidade})",
            quantidade=qtd, disponivel=linha.quantidade)
    StockLedger(session).release(roupa_id, qtd, "condicional", cond.id, "Devolução de condicional")
    devolvida = _separar_linha(cond, linha, qtd, ITEM_DEVOLVIDO)
    _finalizar_se_vazio(cond)
    audit_log(session, "Condicional", cond.id, "item_returned", {"roupa_id": roupa_id, "quantidade": qtd})
    return devolvida

def converter_em_venda(session, condicional_id: int, dados: Dict[str, Any], permitir_parcial: bool = True) -> Venda:
    """
    Converte linhas ainda fora em venda. O estoque já saiu na criação do
    condicional, então nenhuma chamada ao ledger é feita aqui: o efeito da
    linha passa a pertencer à venda gerada.
    """
    cond = _obter_condicional_ativo(session, condicional_id)
    fora = cond.itens_fora()
    _ensure(fora, "Condicional não possui itens para converter", erro=Conflict, code="NO_ITEMS")
    forma = _pagamento(dados.get("forma_pagamento") or dados.get("forma_pgto"))

    selecionados = dados.get("itens_vendidos", "todos")
    if selecionados == "todos":
        escolha = [(l, l.quantidade) for l in fora]
    else:
        _ensure(isinstance(selecionados, list) and selecionados, "Deve especificar pelo menos um item para venda")
        escolha = []
        for sel in selecionados:
            linha = _linha_fora(cond, sel.get("roupas_id"))
            qtd = _quantidade(sel.get("quantidade"))
            _ensure(qtd <= linha.quantidade, "Quantidade vendida maior que a quantidade no condicional",
                    quantidade=qtd, disponivel=linha.quantidade)
            _ensure(all(l is not linha for l, _ in escolha), "Item informado mais de uma vez", roupa_id=linha.roupa_id)
            escolha.append((linha, qtd))
        if not permitir_parcial:
            completo = len(escolha) == len(fora) and all(q == l.quantidade for l, q in escolha)
            _ensure(completo, "Conversão parcial desabilitada: todos os itens devem ser vendidos")

    cliente = cond.cliente
    venda = Venda(
        forma_pgto=forma,
        descricao_permuta=dados.get("descricao_permuta"),
        nome_cliente=cliente.nome if cliente else None,
        telefone_cliente=cliente.telefone if cliente else None,
        condicional_id=cond.id,
    )
    total = Decimal("0.00")
    for linha, qtd in escolha:
        _separar_linha(cond, linha, qtd, ITEM_VENDIDO)
        venda.itens.append(VendaItem(roupa_id=linha.roupa_id, quantidade=qtd, valor_unitario=linha.valor_unitario))
        total += _as_money(linha.valor_unitario * qtd)

    desconto = _as_money(dados.get("desconto"))
    _ensure(desconto >= 0, "Desconto deve ser maior ou igual a 0")
    _ensure(desconto <= total, "Desconto não pode ser maior que o valor total")
    venda.valor_total = total
    venda.desconto = desconto
    venda.valor_pago = total - desconto
    if forma == "Permuta":
        _aplicar_permuta(venda)
    session.add(venda)
    _finalizar_se_vazio(cond)
    session.flush()

    audit_log(session, "Condicional", cond.id, "converted", {
        "venda_id": venda.id, "itens": [[l.roupa_id, q] for l, q in escolha], "forma_pgto": forma
    })
    logger.info("Condicional %s convertido na venda %s", cond.id, venda.id)
    return venda

def finalizar_condicional(session, condicional_id: int) -> Condicional:
    """Encerra o condicional devolvendo ao estoque tudo que ainda está fora."""
    cond = _obter_condicional_ativo(session, condicional_id)
    ledger = StockLedger(session)
    devolvidos = 0
    for linha in cond.itens_fora():
        ledger.release(linha.roupa_id, linha.quantidade, "condicional", cond.id, "Finalização de condicional")
        linha.status = ITEM_DEVOLVIDO
        devolvidos += linha.quantidade
    cond.status = CONDICIONAL_FINALIZADO
    cond.finalizado_em = datetime.utcnow()
    audit_log(session, "Condicional", cond.id, "finalized", {"devolvidos": devolvidos})
    return cond

def deletar_condicional(session, condicional_id: int) -> Dict[str, Any]:
    cond = _obter(session, Condicional, condicional_id, "Condicional")
    ledger = StockLedger(session)
    restaurado = 0
    for linha in cond.itens_fora():
        ledger.release(linha.roupa_id, linha.quantidade, "condicional", cond.id, "Exclusão de condicional")
        restaurado += linha.quantidade
    session.delete(cond)
    audit_log(session, "Condicional", condicional_id, "deleted", {"estoque_restaurado": restaurado})
    return {"condicional_id": condicional_id, "estoque_restaurado": restaurado}

def obter_condicional(session, condicional_id: int) -> Condicional:
    return _obter(session, Condicional, condicional_id, "Condicional")

def listar_condicionais(session, filtros: Optional[Dict[str, Any]] = None, limite: int = 200) -> List[Condicional]:
    filtros = filtros or {}
    q = _filtrar_periodo(session.query(Condicional), Condicional.created_at, filtros)
    if filtros.get("cliente_id"):
        q = q.filter(Condicional.cliente_id == filtros["cliente_id"])
    if filtros.get("status"):
        q = q.filter(Condicional.status == filtros["status"])
    if filtros.get("vencidos"):
        q = q.filter(Condicional.status == CONDICIONAL_ATIVO, Condicional.data_devolucao < datetime.utcnow())
    return q.order_by(Condicional.created_at.desc(), Condicional.id.desc()).limit(limite).all()

def estatisticas_condicionais(session, filtros: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    filtros = filtros or {}
    base = _filtrar_periodo(session.query(func.count(Condicional.id)), Condicional.created_at, filtros)
    total = base.scalar()
    ativos = base.filter(Condicional.status == CONDICIONAL_ATIVO).scalar()
    pecas_fora = (
        session.query(func.sum(CondicionalItem.quantidade))
        .filter(CondicionalItem.status == ITEM_FORA)
        .scalar()
    )
    return {
        "total_condicionais": int(total or 0),
        "condicionais_ativos": int(ativos or 0),
        "condicionais_finalizados": int((total or 0) - (ativos or 0)),
        "pecas_em_condicional": int(pecas_fora or 0),
    }
