# app/core/forms.py
from __future__ import annotations

import re
from datetime import datetime
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Tuple

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import Form, StringField, IntegerField, FieldList, FormField
from wtforms.fields.core import Field
from wtforms.validators import (
    DataRequired, InputRequired, Optional as Opt, Length, NumberRange, Email, AnyOf, ValidationError
)

from app.core.models import FORMAS_PAGAMENTO, MOTIVOS_BAIXA


# =============================================================================
# Utilidades
# =============================================================================

def _q2(v: Decimal) -> Decimal:
    return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

def parse_decimal(text: Optional[str]) -> Decimal:
    """
    Converte string para Decimal aceitando vírgula ou ponto.
    Vazio vira 0.
    """
    if text is None:
        return Decimal("0")
    s = text.strip()
    if s == "":
        return Decimal("0")
    s = s.replace(".", "").replace(",", ".") if s.count(",") == 1 and s.count(".") > 0 else s.replace(",", ".")
    try:
        d = Decimal(s)
    except InvalidOperation:
        raise ValueError("Valor numérico inválido")
    return _q2(d)

def _achatar(valor: Any, prefixo: str, out: List[Tuple[str, str]]):
    # {"itens": [{"quantidade": 2}]} -> itens-0-quantidade=2 (convenção do FieldList)
    if isinstance(valor, dict):
        for k, v in valor.items():
            _achatar(v, f"{prefixo}-{k}" if prefixo else str(k), out)
    elif isinstance(valor, (list, tuple)):
        for i, v in enumerate(valor):
            _achatar(v, f"{prefixo}-{i}", out)
    elif valor is None:
        return
    elif isinstance(valor, bool):
        out.append((prefixo, "y" if valor else ""))
    else:
        out.append((prefixo, str(valor)))

def form_from_json(form_cls, payload: Optional[Dict[str, Any]]):
    """Instancia um form a partir de um corpo JSON."""
    payload = payload if isinstance(payload, dict) else {}
    pares: List[Tuple[str, str]] = []
    _achatar(payload, "", pares)
    form = form_cls(formdata=MultiDict(pares))
    form.payload = payload
    return form


# =============================================================================
# Campos customizados
# =============================================================================

class DecimalMoneyField(Field):
    """
    Entrada textual que vira Decimal com 2 casas.
    """
    def __init__(self, label=None, validators=None, **kwargs):
        super().__init__(label, validators, **kwargs)
        self.data = None

    def _value(self):
        return str(self.data) if isinstance(self.data, Decimal) else (self.data or "")

    def process_formdata(self, valuelist):
        if valuelist:
            try:
                self.data = parse_decimal(valuelist[0])
            except ValueError as e:
                self.data = None
                raise ValueError(str(e))


# =============================================================================
# Base
# =============================================================================

def _enviados(form) -> Dict[str, Any]:
    out = {}
    for name, field in form._fields.items():
        if isinstance(field, FieldList):
            out[name] = [_enviados(entry.form) for entry in field.entries]
        elif field.raw_data:
            out[name] = field.data
    return out

class JsonForm(FlaskForm):
    """FlaskForm alimentado por JSON; só campos enviados vão para os serviços."""
    class Meta:
        csrf = False

    def dados(self) -> Dict[str, Any]:
        return _enviados(self)

class LinhaForm(Form):
    roupas_id = IntegerField("Roupa", validators=[Opt(), NumberRange(min=1)])
    nome_item = StringField("Nome do item", validators=[Opt(), Length(max=200)])
    quantidade = IntegerField("Quantidade", validators=[InputRequired(message="Quantidade é obrigatória"), NumberRange(min=1, message="Quantidade deve ser pelo menos 1")])

    def validate(self, extra_validators=None):
        ok = super().validate(extra_validators)
        if not self.roupas_id.data and not (self.nome_item.data or "").strip():
            self.nome_item.errors.append("Deve informar roupas_id ou nome_item")
            ok = False
        return ok

def _exigir_itens(form, field_name: str, msg: str) -> bool:
    field = form._fields[field_name]
    if not field.entries:
        field.errors = [msg]
        return False
    return True


# =============================================================================
# Catálogo
# =============================================================================

class RoupaForm(JsonForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(min=3, max=200)])
    descricao = StringField("Descrição", validators=[Opt(), Length(max=1000)])
    tipo = StringField("Tipo", validators=[DataRequired(), Length(max=60)])
    tamanho = StringField("Tamanho", validators=[DataRequired(), Length(max=20)])
    cor = StringField("Cor", validators=[DataRequired(), Length(max=40)])
    preco = DecimalMoneyField("Preço", validators=[InputRequired()])
    quantidade = IntegerField("Quantidade", validators=[Opt(), NumberRange(min=0)])

    def validate_preco(self, field):
        if field.data is None or field.data <= 0:
            raise ValidationError("Preço deve ser um valor positivo")

class RoupaUpdateForm(RoupaForm):
    nome = StringField("Nome", validators=[Opt(), Length(min=3, max=200)])
    tipo = StringField("Tipo", validators=[Opt(), Length(max=60)])
    tamanho = StringField("Tamanho", validators=[Opt(), Length(max=20)])
    cor = StringField("Cor", validators=[Opt(), Length(max=40)])
    preco = DecimalMoneyField("Preço", validators=[Opt()])

class ClienteForm(JsonForm):
    nome = StringField("Nome", validators=[DataRequired(), Length(min=2, max=100)])
    email = StringField("E-mail", validators=[Opt(), Email(message="Email deve ter formato válido"), Length(max=180)])
    cpf = StringField("CPF", validators=[Opt(), Length(max=14)])
    telefone = StringField("Telefone", validators=[Opt(), Length(max=15)])
    endereco = StringField("Endereço", validators=[Opt(), Length(max=200)])

    def validate_cpf(self, field):
        digits = re.sub(r"\D+", "", field.data or "")
        if len(digits) != 11:
            raise ValidationError("CPF deve ter exatamente 11 dígitos")
        field.data = digits

class ClienteUpdateForm(ClienteForm):
    nome = StringField("Nome", validators=[Opt(), Length(min=2, max=100)])


# =============================================================================
# Vendas
# =============================================================================

class LinhaVendaForm(LinhaForm):
    valor_unitario = DecimalMoneyField("Valor unitário", validators=[Opt()])

class VendaForm(JsonForm):
    forma_pgto = StringField("Forma de pagamento", validators=[DataRequired(), AnyOf(FORMAS_PAGAMENTO, message="Forma de pagamento inválida")])
    valor_total = DecimalMoneyField("Valor total", validators=[Opt()])
    desconto = DecimalMoneyField("Desconto", validators=[Opt()])
    valor_pago = DecimalMoneyField("Valor pago", validators=[Opt()])
    descricao_permuta = StringField("Descrição da permuta", validators=[Opt(), Length(max=500)])
    nome_cliente = StringField("Cliente", validators=[Opt(), Length(max=100)])
    telefone_cliente = StringField("Telefone", validators=[Opt(), Length(max=15)])
    itens = FieldList(FormField(LinhaVendaForm))

    def validate(self, extra_validators=None):
        ok = super().validate(extra_validators)
        if "itens" in self._fields and not _exigir_itens(self, "itens", "Deve haver pelo menos um item na venda"):
            ok = False
        for campo in (self.valor_total, self.desconto, self.valor_pago):
            if campo.data is not None and campo.data < 0:
                campo.errors.append("Valor deve ser maior ou igual a 0")
                ok = False
        if self.forma_pgto.data == "Permuta":
            if not (self.descricao_permuta.data or "").strip():
                self.descricao_permuta.errors.append("Para permuta, descrição é obrigatória")
                ok = False
        elif self.valor_pago.data is not None and self.valor_total.data is not None \
                and self.valor_pago.data > self.valor_total.data:
            self.valor_pago.errors.append("Valor pago não pode ser maior que valor total")
            ok = False
        return ok

class VendaUpdateForm(VendaForm):
    forma_pgto = StringField("Forma de pagamento", validators=[Opt(), AnyOf(FORMAS_PAGAMENTO, message="Forma de pagamento inválida")])
    itens = None


# =============================================================================
# Compras
# =============================================================================

class LinhaCompraForm(LinhaForm):
    valor_peca = DecimalMoneyField("Valor da peça", validators=[InputRequired(message="Valor da peça é obrigatório")])

    def validate_valor_peca(self, field):
        if field.data is not None and field.data < 0:
            raise ValidationError("Valor da peça deve ser maior ou igual a 0")

class CompraForm(JsonForm):
    fornecedor = StringField("Fornecedor", validators=[DataRequired(message="Fornecedor é obrigatório"), Length(max=180)])
    valor_pago = DecimalMoneyField("Valor pago", validators=[InputRequired(message="Valor pago é obrigatório")])
    observacoes = StringField("Observações", validators=[Opt(), Length(max=500)])
    itens = FieldList(FormField(LinhaCompraForm))

    def validate_valor_pago(self, field):
        if field.data is not None and field.data < 0:
            raise ValidationError("Valor pago deve ser maior ou igual a 0")

    def validate(self, extra_validators=None):
        ok = super().validate(extra_validators)
        if "itens" in self._fields and not _exigir_itens(self, "itens", "É necessário informar pelo menos um item"):
            ok = False
        return ok

class CompraUpdateForm(CompraForm):
    fornecedor = StringField("Fornecedor", validators=[Opt(), Length(max=180)])
    valor_pago = DecimalMoneyField("Valor pago", validators=[Opt()])
    itens = None

class ItemCompraUpdateForm(JsonForm):
    quantidade = IntegerField("Quantidade", validators=[Opt(), NumberRange(min=1, message="Quantidade deve ser pelo menos 1")])
    valor_peca = DecimalMoneyField("Valor da peça", validators=[Opt()])

    def validate_valor_peca(self, field):
        if field.data is not None and field.data < 0:
            raise ValidationError("Valor da peça deve ser maior ou igual a 0")

class ItemCompraForm(JsonForm, LinhaCompraForm):
    pass

class FinalizarCompraForm(JsonForm):
    observacoes = StringField("Observações", validators=[Opt(), Length(max=500)])


# =============================================================================
# Baixas
# =============================================================================

class LinhaBaixaForm(LinhaForm):
    observacao_item = StringField("Observação do item", validators=[Opt(), Length(max=200)])

class BaixaForm(JsonForm):
    motivo = StringField("Motivo", validators=[DataRequired(message="Motivo é obrigatório"), AnyOf(MOTIVOS_BAIXA, message="Motivo deve ser um dos valores válidos")])
    observacao = StringField("Observação", validators=[Opt(), Length(max=500)])
    itens = FieldList(FormField(LinhaBaixaForm))

    def validate(self, extra_validators=None):
        ok = super().validate(extra_validators)
        if "itens" in self._fields and not _exigir_itens(self, "itens", "Deve ter pelo menos um item na baixa"):
            ok = False
        return ok

class BaixaUpdateForm(BaixaForm):
    motivo = StringField("Motivo", validators=[Opt(), AnyOf(MOTIVOS_BAIXA, message="Motivo deve ser um dos valores válidos")])
    itens = None

class ItemBaixaForm(JsonForm, LinhaBaixaForm):
    pass

class ItemBaixaUpdateForm(JsonForm):
    quantidade = IntegerField("Quantidade", validators=[Opt(), NumberRange(min=1, message="Quantidade deve ser pelo menos 1")])
    observacao_item = StringField("Observação do item", validators=[Opt(), Length(max=200)])


# =============================================================================
# Condicionais
# =============================================================================

def _parse_iso(texto: str) -> datetime:
    try:
        dt = datetime.fromisoformat(texto.strip().replace("Z", "+00:00"))
    except ValueError:
        raise ValidationError("Data de devolução deve ser uma data válida")
    return dt.replace(tzinfo=None)

class CondicionalForm(JsonForm):
    cliente_id = IntegerField("Cliente", validators=[DataRequired(message="Cliente é obrigatório"), NumberRange(min=1)])
    data_devolucao = StringField("Data de devolução", validators=[DataRequired(message="Data de devolução é obrigatória")])
    itens = FieldList(FormField(LinhaForm))

    def validate_data_devolucao(self, field):
        field.data = _parse_iso(field.data)

    def validate(self, extra_validators=None):
        ok = super().validate(extra_validators)
        if "itens" in self._fields and not _exigir_itens(self, "itens", "Deve haver pelo menos um item no condicional"):
            ok = False
        return ok

class CondicionalUpdateForm(CondicionalForm):
    cliente_id = IntegerField("Cliente", validators=[Opt(), NumberRange(min=1)])
    data_devolucao = StringField("Data de devolução", validators=[Opt()])
    itens = None

class DevolverItemForm(JsonForm):
    roupas_id = IntegerField("Roupa", validators=[DataRequired(message="roupas_id é obrigatório"), NumberRange(min=1)])
    quantidade = IntegerField("Quantidade", validators=[Opt(), NumberRange(min=1, message="Quantidade deve ser pelo menos 1")])

class LinhaConversaoForm(Form):
    roupas_id = IntegerField("Roupa", validators=[DataRequired(message="roupas_id é obrigatório"), NumberRange(min=1)])
    quantidade = IntegerField("Quantidade", validators=[InputRequired(message="Quantidade é obrigatória"), NumberRange(min=1, message="Quantidade deve ser pelo menos 1")])

class ConverterVendaForm(JsonForm):
    forma_pagamento = StringField("Forma de pagamento", validators=[DataRequired(message="Forma de pagamento é obrigatória"), AnyOf(FORMAS_PAGAMENTO, message="Forma de pagamento inválida")])
    desconto = DecimalMoneyField("Desconto", validators=[Opt()])
    descricao_permuta = StringField("Descrição da permuta", validators=[Opt(), Length(max=500)])
    itens_vendidos = FieldList(FormField(LinhaConversaoForm))

    def _todos(self) -> bool:
        return self.payload.get("itens_vendidos", "todos") == "todos"

    def validate(self, extra_validators=None):
        ok = super().validate(extra_validators)
        if not self._todos() and not _exigir_itens(self, "itens_vendidos", "Deve especificar pelo menos um item para venda"):
            ok = False
        if self.desconto.data is not None and self.desconto.data < 0:
            self.desconto.errors.append("Desconto deve ser maior ou igual a 0")
            ok = False
        if self.forma_pagamento.data == "Permuta" and not (self.descricao_permuta.data or "").strip():
            self.descricao_permuta.errors.append("Para permuta, descrição é obrigatória")
            ok = False
        return ok

    def dados(self) -> Dict[str, Any]:
        out = super().dados()
        if self._todos():
            out["itens_vendidos"] = "todos"
        return out
