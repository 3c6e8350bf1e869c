"""
Registration package: payment guard, browser pool, form strategies and the
registration automator.
"""

from .browser_pool import BrowserPool
from .form_strategies import DEFAULT_STRATEGIES, FamilyProfile
from .payment_guard import GuardDecision, PaymentGuard
from .service import RegistrationService

__all__ = [
    "DEFAULT_STRATEGIES",
    "BrowserPool",
    "FamilyProfile",
    "GuardDecision",
    "PaymentGuard",
    "RegistrationService",
]
