"""Dynamic pricing reason codes.

Values are persisted on every purchase row for financial auditing. The
vocabulary is append-only: never rename or reuse a value.
"""

from enum import Enum


class PricingReason(str, Enum):
    # Event tickets
    EVENT_48_PLUS = "event_48_plus"
    EVENT_24_48 = "event_24_48"
    EVENT_LESS_24 = "event_less_24"
    EVENT_GRACE_PERIOD = "event_grace_period"
    EVENT_EXPIRED = "event_expired"

    # Menu on event days
    EVENT_MENU_OPEN_HOURS_BASE = "event_menu_open_hours_base"
    EVENT_MENU_PASSED_BASE = "event_menu_passed_base"
    EVENT_MENU_48_PLUS_30_OFF = "event_menu_48_plus_30_off"
    EVENT_MENU_24_48_BASE = "event_menu_24_48_base"
    EVENT_MENU_LT24_BASE = "event_menu_lt24_base"

    # Covers (general tickets)
    COVERS_OPEN_HOURS_BASE = "covers_open_hours_base"
    COVERS_CLOSED_NEXT_OPEN_30_OFF = "covers_closed_next_open_30_off"
    COVERS_PREOPEN_3H_PLUS_30_OFF = "covers_preopen_3h_plus_30_off"
    COVERS_PREOPEN_2_3H_10_OFF = "covers_preopen_2_3h_10_off"
    COVERS_PREOPEN_LT2H_BASE = "covers_preopen_lt2h_base"

    # Menu on regular days
    MENU_CLOSED_DAY_30_OFF = "menu_closed_day_30_off"
    MENU_OPEN_HOURS_BASE = "menu_open_hours_base"
    MENU_PREOPEN_3H_PLUS_30_OFF = "menu_preopen_3h_plus_30_off"
    MENU_PREOPEN_LT3H_10_OFF = "menu_preopen_lt3h_10_off"

    # Policy
    FREE_TICKET_NO_DP = "free_ticket_no_dp"
    TICKET_DP_DISABLED_BASE = "ticket_dp_disabled_base"
    MENU_PARENT_HAS_VARIANTS_NO_DP = "menu_parent_has_variants_no_dp"
    MENU_VARIANT_DP_DISABLED = "menu_variant_dp_disabled"
    MENU_DP_DISABLED_BASE = "menu_dp_disabled_base"
    PRICING_FALLBACK_BASE = "pricing_fallback_base"

    # Covers after today's window closed
    COVERS_AFTER_HOURS_BASE = "covers_after_hours_base"

    def __str__(self) -> str:
        return self.value
