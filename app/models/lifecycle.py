from enum import Enum


class Lifecycle(str, Enum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"  # imported rows whose cancel state could not be determined
