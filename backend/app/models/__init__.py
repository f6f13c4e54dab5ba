"""Database models for the LPlate payments backend."""
from app.models.profile import Profile
from app.models.instructor import Instructor
from app.models.booking import Booking
from app.models.payment import Payment
from app.models.refund import Refund
from app.models.credit_ledger import CreditLedgerEntry
from app.models.learner_credit import LearnerCredit
from app.models.payout import Payout, PayoutPayment
from app.models.stripe_connect_account import StripeConnectAccount
from app.models.discount_code import DiscountCode

__all__ = [
    "Profile",
    "Instructor",
    "Booking",
    "Payment",
    "Refund",
    "CreditLedgerEntry",
    "LearnerCredit",
    "Payout",
    "PayoutPayment",
    "StripeConnectAccount",
    "DiscountCode",
]
