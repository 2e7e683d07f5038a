# Overview: Payment-gateway collaborator used for refunds.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app


@dataclass(frozen=True)
class RefundResult:
    accepted: bool
    message: str | None = None
    external_id: str | None = None


class RefundGateway:
    """
    Refund side of the payment provider (mobile money, card processor).

    The provider's own retry policy lives behind this call; the caller makes
    exactly one attempt and records the outcome.
    """

    def refund(self, amount_cents: int, external_payment_reference: str | None) -> RefundResult:
        raise NotImplementedError


class NullRefundGateway(RefundGateway):
    """Accepts every refund. Used until a real provider is configured."""

    def refund(self, amount_cents: int, external_payment_reference: str | None) -> RefundResult:
        return RefundResult(accepted=True, message="Refund accepted (no gateway configured)")


def init_refund_gateway(app, gateway: RefundGateway | None = None) -> RefundGateway:
    gateway = gateway or NullRefundGateway()
    app.extensions["refund_gateway"] = gateway
    return gateway


def get_refund_gateway() -> RefundGateway:
    return current_app.extensions["refund_gateway"]
