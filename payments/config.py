from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict

from django.conf import settings

DEFAULT_DELIMITER = '_'


@dataclass(frozen=True)
class ProviderSettings:
    secret: str = ''
    delimiter: str = DEFAULT_DELIMITER


@dataclass(frozen=True)
class PaymentsConfig:
    providers: Dict[str, ProviderSettings] = field(default_factory=dict)
    reference_currency: str = 'XOF'
    card_conversion_rate: Decimal = Decimal('655.957')
    amount_tolerance: int = 50
    block_on_amount_mismatch: bool = False
    send_notifications: bool = True

    def for_provider(self, kind):
        return self.providers.get(str(kind), ProviderSettings())

    @classmethod
    def from_settings(cls):
        providers = {
            name: ProviderSettings(secret=options.get('secret') or '',
                                   delimiter=options.get('delimiter') or DEFAULT_DELIMITER)
            for name, options in getattr(settings, 'PAYMENT_PROVIDERS', {}).items()
        }
        return cls(
            providers=providers,
            reference_currency=settings.PAYMENTS_REFERENCE_CURRENCY,
            card_conversion_rate=Decimal(str(settings.PAYMENTS_CARD_CONVERSION_RATE)),
            amount_tolerance=int(settings.PAYMENTS_AMOUNT_TOLERANCE),
            block_on_amount_mismatch=bool(settings.PAYMENTS_BLOCK_ON_AMOUNT_MISMATCH),
            send_notifications=bool(settings.PAYMENTS_SEND_NOTIFICATIONS),
        )
