from gymbook.routers.bookings import router as bookings_router
from gymbook.routers.credits import router as credits_router

__all__ = ["bookings_router", "credits_router"]
