"""Utility modules for cross-cutting concerns."""

from utils.timezone import now_utc, to_utc, add_months, utc_date
from utils.request_context import (
    get_current_organization_id,
    get_current_user_id,
    set_request_context,
    clear_request_context,
    organization_context,
)
