from enum import Enum


class MutationStatus(Enum):
    IDLE = "IDLE"                                   # No cart operation in flight
    MUTATING = "MUTATING"                           # Read-modify-write in progress
    SETTLED = "SETTLED"                             # Applied as requested
    SETTLED_WITH_WARNING = "SETTLED_WITH_WARNING"   # Applied but clamped to available stock
    SETTLED_WITH_ERROR = "SETTLED_WITH_ERROR"       # Rejected, cart unchanged
