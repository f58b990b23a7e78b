"""
notifier.py
-----------
Traduce una decisión de riesgo + evento de transacción en una intención
de notificación (kind, title, message). No hace I/O: la entrega y la
persistencia son del colaborador de notificaciones.

Plantillas por (tipo, status):
  TRANSFER + COMPLETED → MONEY_DEDUCTED
  *        + PENDING   → PAYMENT_PENDING   ("is pending because: ..." si hay razones)
  *        + FAILED    → PAYMENT_PENDING   ("failed because: ..." si hay razones)
  *        + COMPLETED → TRANSACTION_COMPLETED (nunca lleva razones)
  usuario marcado      → USER_FLAGGED con el nivel de riesgo
"""

from collections.abc import Sequence
from decimal import Decimal
from typing import Optional

from motor_riesgo.core.config import settings
from motor_riesgo.domain.schemas import (
    NotificationIntent,
    NotificationKind,
    RiskLevel,
    TransactionStatus,
    TransactionType,
)

CURRENCY_SYMBOL = "₹"


def format_amount(amount: float | Decimal) -> str:
    return f"{CURRENCY_SYMBOL}{float(amount):.2f}"


def _with_reasons(message: str, reasons: Sequence[str]) -> str:
    if not reasons:
        return message
    return f"{message} because: {', '.join(reasons)}"


class DecisionNotifier:

    def __init__(self, high_value_amount: float = settings.HIGH_VALUE_ALERT_AMOUNT):
        self.high_value_amount = high_value_amount

    def intent_for(
        self,
        event_type:     TransactionType | str,
        amount:         float | Decimal,
        description:    str,
        status:         TransactionStatus | str,
        reasons:        Sequence[str] = (),
        transaction_id: Optional[str] = None,
    ) -> Optional[NotificationIntent]:
        """Retorna None para status sin plantilla (ej. CANCELLED)."""
        # Acepta enums o strings crudos del colaborador de persistencia
        event_type = str(getattr(event_type, "value", event_type))
        status     = str(getattr(status, "value", status))
        money      = format_amount(amount)

        if event_type == TransactionType.TRANSFER.value and status == TransactionStatus.COMPLETED.value:
            return NotificationIntent(
                kind           = NotificationKind.MONEY_DEDUCTED,
                title          = "Money Deducted",
                message        = f"{money} has been deducted from your account for: {description}",
                transaction_id = transaction_id,
            )

        if status == TransactionStatus.PENDING.value:
            return NotificationIntent(
                kind           = NotificationKind.PAYMENT_PENDING,
                title          = "Payment Pending",
                message        = _with_reasons(
                    f"Your payment of {money} for: {description} is pending", reasons
                ),
                transaction_id = transaction_id,
            )

        if status == TransactionStatus.FAILED.value:
            return NotificationIntent(
                kind           = NotificationKind.PAYMENT_PENDING,
                title          = "Payment Failed",
                message        = _with_reasons(
                    f"Your payment of {money} for: {description} failed", reasons
                ),
                transaction_id = transaction_id,
            )

        if status == TransactionStatus.COMPLETED.value:
            return NotificationIntent(
                kind           = NotificationKind.TRANSACTION_COMPLETED,
                title          = "Transaction Completed",
                message        = f"Your transaction of {money} for: {description} has been completed",
                transaction_id = transaction_id,
            )

        return None

    def flagged_user_intent(self, risk_level: RiskLevel | str) -> NotificationIntent:
        level = getattr(risk_level, "value", risk_level)
        return NotificationIntent(
            kind    = NotificationKind.USER_FLAGGED,
            title   = "Account Flagged",
            message = (
                "Your account has been flagged due to unusual activity. "
                f"Risk level: {level}. Please contact support if needed."
            ),
        )

    # ── Intenciones para el panel de administración ──────────────────

    def admin_flagged_intent(
        self,
        user_ref:   str,
        risk_level: RiskLevel | str,
    ) -> NotificationIntent:
        level = getattr(risk_level, "value", risk_level)
        return NotificationIntent(
            kind    = NotificationKind.USER_FLAGGED,
            title   = "User Flagged for Review",
            message = f"User {user_ref} has been flagged with {level} risk level and requires attention",
        )

    def high_value_alert(
        self,
        amount:         float | Decimal,
        event_type:     TransactionType | str,
        transaction_id: Optional[str] = None,
    ) -> Optional[NotificationIntent]:
        if float(amount) < self.high_value_amount:
            return None
        type_label = getattr(event_type, "value", event_type)
        return NotificationIntent(
            kind           = NotificationKind.SYSTEM_ALERT,
            title          = "High Value Transaction Alert",
            message        = f"Transaction of {format_amount(amount)} ({type_label}) requires review",
            transaction_id = transaction_id,
        )
