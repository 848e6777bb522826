# tonescrow/core/exceptions.py

from decimal import Decimal
from typing import Any, Dict


class EscrowError(Exception):
    """
    Базовое исключение предметной области.
    Каждый подкласс знает свой HTTP-статус и машинный код, чтобы обработчик
    в main.py мог отдать структурированный ответ без лишних if/else.
    """
    status_code: int = 400
    code: str = "escrow_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        payload = {"detail": self.message, "code": self.code}
        for key, value in self.extra.items():
            payload[key] = str(value) if isinstance(value, Decimal) else value
        return payload


class ValidationError(EscrowError):
    """Некорректный ввод: отрицательная сумма, кривой адрес и т.п."""
    status_code = 400
    code = "validation_error"


class NotFound(EscrowError):
    status_code = 404
    code = "not_found"


class PermissionDenied(EscrowError):
    status_code = 403
    code = "permission_denied"


class UserBlocked(EscrowError):
    status_code = 403
    code = "user_blocked"


class InsufficientFunds(EscrowError):
    """Недостаточно средств. Всегда сообщает, сколько нужно и сколько есть."""
    status_code = 409
    code = "insufficient_funds"

    def __init__(self, required: Decimal, available: Decimal, message: str | None = None, **extra: Any):
        super().__init__(
            message or f"Insufficient funds: required {required}, available {available}",
            required=required, available=available, **extra
        )
        self.required = required
        self.available = available


class CustodyBalanceInsufficient(InsufficientFunds):
    """На кастодиальном кошельке не хватает TON для автоматической выплаты."""
    code = "custody_balance_insufficient"


class InvalidTransition(EscrowError):
    status_code = 409
    code = "invalid_transition"


class AlreadyProcessed(EscrowError):
    """
    Сработала защита идемпотентности. Это НЕ ошибка: вызывающий код
    трактует его как успешный no-op.
    """
    status_code = 200
    code = "already_processed"


class UncertainExternalOutcome(EscrowError):
    """Результат перевода неизвестен (например, таймаут после отправки). Только ручная сверка."""
    status_code = 502
    code = "uncertain_external_outcome"


class DefiniteTransferFailure(EscrowError):
    """Перевод точно не был отправлен в сеть, повторить безопасно."""
    status_code = 502
    code = "transfer_failed"


class DecryptionError(EscrowError):
    status_code = 500
    code = "decryption_error"


class ConfigurationMissing(EscrowError):
    status_code = 503
    code = "not_configured"


class MaintenanceMode(EscrowError):
    status_code = 503
    code = "maintenance"
