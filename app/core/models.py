# app/core/models.py
from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import (
    CheckConstraint, Column, Integer, BigInteger, String, DateTime, Text,
    ForeignKey, UniqueConstraint, Numeric, Enum, JSON, Index, func
)
from sqlalchemy.orm import relationship, validates

from app.extensions import db  # type: ignore


# =============================================================================
# Utilidades e Mixins
# =============================================================================

MONEY = Numeric(12, 2)   # 999.999.999,99 máx

def _as_money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def normalize_cpf(cpf: Optional[str]) -> Optional[str]:
    if not cpf:
        return None
    digits = re.sub(r"\D+", "", cpf)
    return digits or None

class TimestampMixin:
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


# =============================================================================
# Enums
# =============================================================================

FORMAS_PAGAMENTO = ("Pix", "Dinheiro", "Cartão de Crédito", "Cartão de Débito", "Boleto", "Cheque", "Permuta")
MOTIVOS_BAIXA = ("Perda", "Roubo", "Uso interno", "Descarte por obsolescência", "Manchada", "Defeito", "Doação")

# Estados da linha de condicional
ITEM_FORA = "fora"
ITEM_DEVOLVIDO = "devolvido"
ITEM_VENDIDO = "vendido"

CONDICIONAL_ATIVO = "ativo"
CONDICIONAL_FINALIZADO = "finalizado"

FormaPgtoEnum = Enum(*FORMAS_PAGAMENTO, name="forma_pgto_enum")
MotivoBaixaEnum = Enum(*MOTIVOS_BAIXA, name="motivo_baixa_enum")
CondicionalStatusEnum = Enum(CONDICIONAL_ATIVO, CONDICIONAL_FINALIZADO, name="condicional_status_enum")
CondicionalItemStatusEnum = Enum(ITEM_FORA, ITEM_DEVOLVIDO, ITEM_VENDIDO, name="condicional_item_status_enum")
MovimentoTipoEnum = Enum("entrada", "saida", name="movimento_tipo_enum")


# =============================================================================
# Cadastros
# =============================================================================

class Cliente(db.Model, TimestampMixin):
    __tablename__ = "clientes"

    id = Column(Integer, primary_key=True)
    nome = Column(String(100), nullable=False, index=True)
    email = Column(String(180), nullable=True)
    cpf = Column(String(11), nullable=True, unique=True)
    telefone = Column(String(15), nullable=True)
    endereco = Column(String(200), nullable=True)

    condicionais = relationship("Condicional", back_populates="cliente", lazy="dynamic")

    @validates("cpf")
    def _val_cpf(self, key, value):
        v = normalize_cpf(value)
        if v and len(v) != 11:
            raise ValueError("CPF deve ter exatamente 11 dígitos")
        return v

    @validates("email")
    def _val_email(self, key, value):
        if not value:
            return None
        if "@" not in value:
            raise ValueError("Email inválido")
        return value.lower()

    def __repr__(self):
        return f"<Cliente {self.id} {self.nome}>"


class Roupa(db.Model, TimestampMixin):
    """Peça do catálogo. `quantidade` só é alterada pelo StockLedger."""
    __tablename__ = "roupas"

    id = Column(Integer, primary_key=True)
    nome = Column(String(200), nullable=False)
    descricao = Column(Text, nullable=True)
    tipo = Column(String(60), nullable=False)
    tamanho = Column(String(20), nullable=False)
    cor = Column(String(40), nullable=False)
    preco = Column(MONEY, nullable=False)
    quantidade = Column(Integer, default=0, nullable=False)
    estoque_inicial = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        UniqueConstraint("nome", name="uq_roupas_nome"),
        CheckConstraint("quantidade >= 0", name="ck_roupas_qtd_nao_negativa"),
        CheckConstraint("estoque_inicial >= 0", name="ck_roupas_estoque_inicial"),
        CheckConstraint("preco > 0", name="ck_roupas_preco_positivo"),
    )

    @validates("preco")
    def _val_money(self, key, value):
        return _as_money(value)

    def __repr__(self):
        return f"<Roupa {self.id} {self.nome} qtd={self.quantidade}>"


# =============================================================================
# Livro de estoque
# =============================================================================

class MovimentoEstoque(db.Model):
    """Diário append-only de cada reserve/release aplicado a uma roupa."""
    __tablename__ = "movimentos_estoque"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    roupa_id = Column(Integer, ForeignKey("roupas.id", ondelete="RESTRICT"), nullable=False, index=True)
    tipo = Column(MovimentoTipoEnum, nullable=False, index=True)
    quantidade = Column(Integer, nullable=False)
    ref_origem = Column(String(30), nullable=True)  # "venda", "compra" etc
    ref_id = Column(Integer, nullable=True)
    motivo = Column(String(200), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    roupa = relationship("Roupa")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_movimentos_qtd_positiva"),
        Index("ix_movimentos_roupa_created", "roupa_id", "created_at"),
    )


# =============================================================================
# Vendas
# =============================================================================

class Venda(db.Model, TimestampMixin):
    __tablename__ = "vendas"

    id = Column(Integer, primary_key=True)
    forma_pgto = Column(FormaPgtoEnum, nullable=False, index=True)
    valor_total = Column(MONEY, default=Decimal("0.00"), nullable=False)
    desconto = Column(MONEY, default=Decimal("0.00"), nullable=False)
    valor_pago = Column(MONEY, default=Decimal("0.00"), nullable=False)
    descricao_permuta = Column(String(500), nullable=True)
    nome_cliente = Column(String(100), nullable=True)
    telefone_cliente = Column(String(15), nullable=True)
    condicional_id = Column(Integer, ForeignKey("condicionais.id", ondelete="SET NULL"), nullable=True, index=True)

    itens = relationship("VendaItem", cascade="all, delete-orphan", back_populates="venda", order_by="VendaItem.id")
    condicional = relationship("Condicional")

    __table_args__ = (
        CheckConstraint("valor_total >= 0", name="ck_vendas_total"),
        CheckConstraint("desconto >= 0", name="ck_vendas_desconto"),
        CheckConstraint("valor_pago >= 0", name="ck_vendas_pago"),
    )

    @validates("valor_total", "desconto", "valor_pago")
    def _val_money(self, key, value):
        return _as_money(value)


class VendaItem(db.Model):
    __tablename__ = "vendas_itens"

    id = Column(Integer, primary_key=True)
    venda_id = Column(Integer, ForeignKey("vendas.id", ondelete="CASCADE"), nullable=False, index=True)
    roupa_id = Column(Integer, ForeignKey("roupas.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantidade = Column(Integer, nullable=False)
    valor_unitario = Column(MONEY, default=Decimal("0.00"), nullable=False)

    venda = relationship("Venda", back_populates="itens")
    roupa = relationship("Roupa")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_vendas_itens_qtd"),
    )

    @validates("valor_unitario")
    def _val_money(self, key, value):
        return _as_money(value)


# =============================================================================
# Compras
# =============================================================================

class Compra(db.Model, TimestampMixin):
    __tablename__ = "compras"

    id = Column(Integer, primary_key=True)
    fornecedor = Column(String(180), nullable=False, index=True)
    valor_pago = Column(MONEY, default=Decimal("0.00"), nullable=False)
    observacoes = Column(String(500), nullable=True)
    finalizada_em = Column(DateTime, nullable=True)

    itens = relationship("CompraItem", cascade="all, delete-orphan", back_populates="compra", order_by="CompraItem.id")

    __table_args__ = (
        CheckConstraint("valor_pago >= 0", name="ck_compras_valor_pago"),
    )

    @property
    def finalizada(self) -> bool:
        return self.finalizada_em is not None

    @validates("valor_pago")
    def _val_money(self, key, value):
        return _as_money(value)


class CompraItem(db.Model):
    __tablename__ = "compras_itens"

    id = Column(Integer, primary_key=True)
    compra_id = Column(Integer, ForeignKey("compras.id", ondelete="CASCADE"), nullable=False, index=True)
    roupa_id = Column(Integer, ForeignKey("roupas.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantidade = Column(Integer, nullable=False)
    valor_peca = Column(MONEY, default=Decimal("0.00"), nullable=False)

    compra = relationship("Compra", back_populates="itens")
    roupa = relationship("Roupa")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_compras_itens_qtd"),
        CheckConstraint("valor_peca >= 0", name="ck_compras_itens_valor"),
        Index("ix_compras_itens_compra_roupa", "compra_id", "roupa_id"),
    )

    @validates("valor_peca")
    def _val_money(self, key, value):
        return _as_money(value)


# =============================================================================
# Baixas
# =============================================================================

class Baixa(db.Model, TimestampMixin):
    __tablename__ = "baixas"

    id = Column(Integer, primary_key=True)
    motivo = Column(MotivoBaixaEnum, nullable=False, index=True)
    observacao = Column(String(500), nullable=True)

    itens = relationship("BaixaItem", cascade="all, delete-orphan", back_populates="baixa", order_by="BaixaItem.id")


class BaixaItem(db.Model):
    __tablename__ = "baixas_itens"

    id = Column(Integer, primary_key=True)
    baixa_id = Column(Integer, ForeignKey("baixas.id", ondelete="CASCADE"), nullable=False, index=True)
    roupa_id = Column(Integer, ForeignKey("roupas.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantidade = Column(Integer, nullable=False)
    observacao_item = Column(String(200), nullable=True)

    baixa = relationship("Baixa", back_populates="itens")
    roupa = relationship("Roupa")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_baixas_itens_qtd"),
    )


# =============================================================================
# Condicionais
# =============================================================================

class Condicional(db.Model, TimestampMixin):
    __tablename__ = "condicionais"

    id = Column(Integer, primary_key=True)
    cliente_id = Column(Integer, ForeignKey("clientes.id", ondelete="RESTRICT"), nullable=False, index=True)
    data_devolucao = Column(DateTime, nullable=False)
    status = Column(CondicionalStatusEnum, default=CONDICIONAL_ATIVO, nullable=False, index=True)
    finalizado_em = Column(DateTime, nullable=True)

    cliente = relationship("Cliente", back_populates="condicionais")
    itens = relationship("CondicionalItem", cascade="all, delete-orphan", back_populates="condicional", order_by="CondicionalItem.id")

    @property
    def finalizado(self) -> bool:
        return self.status == CONDICIONAL_FINALIZADO

    def itens_fora(self):
        return [i for i in self.itens if i.status == ITEM_FORA]


class CondicionalItem(db.Model):
    __tablename__ = "condicionais_itens"

    id = Column(Integer, primary_key=True)
    condicional_id = Column(Integer, ForeignKey("condicionais.id", ondelete="CASCADE"), nullable=False, index=True)
    roupa_id = Column(Integer, ForeignKey("roupas.id", ondelete="RESTRICT"), nullable=False, index=True)
    quantidade = Column(Integer, nullable=False)
    valor_unitario = Column(MONEY, default=Decimal("0.00"), nullable=False)
    status = Column(CondicionalItemStatusEnum, default=ITEM_FORA, nullable=False, index=True)

    condicional = relationship("Condicional", back_populates="itens")
    roupa = relationship("Roupa")

    __table_args__ = (
        CheckConstraint("quantidade > 0", name="ck_condicionais_itens_qtd"),
    )

    @validates("valor_unitario")
    def _val_money(self, key, value):
        return _as_money(value)


# =============================================================================
# Auditoria
# =============================================================================

class AuditLog(db.Model):
    __tablename__ = "audit_logs"

    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True)
    entidade = Column(String(60), nullable=False)
    entidade_id = Column(Integer, nullable=True)
    acao = Column(String(60), nullable=False)  # created, updated, deleted, finalized...
    payload_json = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


# =============================================================================
# Índices
# =============================================================================

Index("ix_roupas_nome_lower", func.lower(Roupa.nome))
Index("ix_clientes_nome_lower", func.lower(Cliente.nome))
