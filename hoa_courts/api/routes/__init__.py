"""
API routes - combined router from all domain modules.

Shared infrastructure (limiter, constants) lives here; every sub-router
imports what it needs from this package.
"""

import os

from fastapi import APIRouter, HTTPException
from slowapi import Limiter
from slowapi.util import get_remote_address

# ---------------------------------------------------------------------------
# Shared rate limiter
# ---------------------------------------------------------------------------
IS_TEST_ENV = os.getenv("ENV", "").lower() == "test"
limiter = Limiter(key_func=get_remote_address)
if IS_TEST_ENV:

    def no_op_limit(*args, **kwargs):
        """No-op decorator for test mode - doesn't apply any rate limiting."""
        def decorator(func):
            return func
        return decorator

    limiter.limit = no_op_limit

# ---------------------------------------------------------------------------
# Shared constants
# ---------------------------------------------------------------------------
INVALID_CREDENTIALS_RESPONSE = HTTPException(
    status_code=401, detail="Email or password is incorrect"
)

# ---------------------------------------------------------------------------
# Import sub-routers and combine
# ---------------------------------------------------------------------------
from hoa_courts.api.routes.auth import router as auth_router  # noqa: E402
from hoa_courts.api.routes.profile import router as profile_router  # noqa: E402
from hoa_courts.api.routes.bookings import router as bookings_router  # noqa: E402
from hoa_courts.api.routes.hoas import router as hoas_router  # noqa: E402
from hoa_courts.api.routes.users import router as users_router  # noqa: E402
from hoa_courts.api.routes.stats import router as stats_router  # noqa: E402
from hoa_courts.api.routes.notifications import router as notifications_router  # noqa: E402

router = APIRouter()
router.include_router(auth_router)
router.include_router(profile_router)
router.include_router(bookings_router)
router.include_router(hoas_router)
router.include_router(users_router)
router.include_router(stats_router)
router.include_router(notifications_router)
