from presale.infrastructure.payments.mock import MockPaymentGateway

__all__ = ["MockPaymentGateway"]
