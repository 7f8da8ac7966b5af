# app/core/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(Exception):
    """Falha de regra de negócio; a camada HTTP decide o status."""
    code = "SERVICE_ERROR"

    def __init__(self, message: str, code: Optional[str] = None, **detalhes: Any):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.detalhes: Dict[str, Any] = detalhes

    def to_dict(self) -> Dict[str, Any]:
        out = {"message": self.message, "code": self.code}
        if self.detalhes:
            out["detalhes"] = self.detalhes
        return out


class NotFound(ServiceError):
    code = "NOT_FOUND"


class ItemNotFound(NotFound):
    code = "ITEM_NOT_FOUND"

    def __init__(self, identificador: str, **detalhes: Any):
        super().__init__(f"Item não encontrado com {identificador}", identificador=identificador, **detalhes)
        self.identificador = identificador


class ClienteNotFound(NotFound):
    code = "CLIENT_NOT_FOUND"

    def __init__(self, cliente_id: int):
        super().__init__(f"Cliente com ID {cliente_id} não encontrado", cliente_id=cliente_id)
        self.cliente_id = cliente_id


class InsufficientStock(ServiceError):
    code = "INSUFFICIENT_STOCK"

    def __init__(self, roupa_id: int, nome: str, disponivel: int, solicitado: int):
        super().__init__(
            f"Estoque insuficiente para {nome}. Disponível: {disponivel}, Solicitado: {solicitado}",
            roupa_id=roupa_id, disponivel=disponivel, solicitado=solicitado,
        )
        self.roupa_id = roupa_id
        self.disponivel = disponivel
        self.solicitado = solicitado


class Conflict(ServiceError):
    code = "CONFLICT"


class ValidationError(ServiceError):
    code = "VALIDATION_ERROR"
