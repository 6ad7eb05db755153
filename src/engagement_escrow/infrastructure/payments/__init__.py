"""Payment processor adapters."""

from __future__ import annotations

from typing import TYPE_CHECKING

from engagement_escrow.domain.enums import ProcessorBackend
from engagement_escrow.infrastructure.payments.gateway import ProcessorGateway
from engagement_escrow.infrastructure.payments.simulated import SimulatedProcessor
from engagement_escrow.logging_config import get_logger

if TYPE_CHECKING:
    from engagement_escrow.config import Settings
    from engagement_escrow.domain.processor_protocol import PaymentProcessor

logger = get_logger(__name__)

_shared_simulated: SimulatedProcessor | None = None


def build_processor(settings: Settings) -> PaymentProcessor:
    """Select the processor adapter named by settings.processor_backend.

    The simulated backend is shared across requests so authorized intents
    survive until they are captured.
    """
    global _shared_simulated
    if settings.processor_backend is ProcessorBackend.STRIPE:
        from engagement_escrow.infrastructure.payments.stripe_processor import StripeProcessor

        return StripeProcessor(api_key=settings.stripe_secret_key)

    if _shared_simulated is None:
        _shared_simulated = SimulatedProcessor()
        logger.info("payments.simulated_processor_enabled")
    return _shared_simulated


__all__ = ["ProcessorGateway", "SimulatedProcessor", "build_processor"]
