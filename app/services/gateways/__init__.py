# Payment Gateways
from app.services.gateways.base import BaseGateway, PaymentIntent, WebhookResult, PaymentStatus
from app.services.gateways.midtrans import MidtransGateway

GATEWAYS = {
    'midtrans': MidtransGateway,
}

def get_gateway(name: str = 'midtrans') -> BaseGateway:
    """Get gateway instance by name"""
    gateway_class = GATEWAYS.get(name.lower())
    if not gateway_class:
        raise ValueError(f"Unknown gateway: {name}. Available: {list(GATEWAYS.keys())}")
    return gateway_class()
