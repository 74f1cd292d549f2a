from .profile_model import Profile
from .subscription_model import Subscription
from .payment_model import Payment
from .promo_code_model import PromoCode, PromoCodeUsage

__all__ = [
    "Profile",
    "Subscription",
    "Payment",
    "PromoCode",
    "PromoCodeUsage",
]
