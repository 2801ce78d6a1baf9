# gymbook services package
from gymbook.services.booking_service import BookingService, BookingOptions, CancelOptions
from gymbook.services.credit_ledger import CreditLedger, CreditService
from gymbook.services.eligibility_service import EligibilityService
from gymbook.services.roster_service import RosterService

__all__ = [
    "BookingService",
    "BookingOptions",
    "CancelOptions",
    "CreditLedger",
    "CreditService",
    "EligibilityService",
    "RosterService",
]
