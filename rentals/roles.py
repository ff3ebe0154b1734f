from enum import StrEnum


class ActorRole(StrEnum):
    GUEST = "guest"  # books stays, may cancel own bookings
    OWNER = "owner"  # manages bookings and calendar of own apartments
    ADMIN = "admin"  # manages everything


ROLE_DESCRIPTIONS: dict[str, str] = {
    ActorRole.GUEST: "Create bookings and cancel your own bookings.",
    ActorRole.OWNER: "Confirm, settle or cancel bookings of apartments you own.",
    ActorRole.ADMIN: "Manage any booking and any apartment calendar.",
}

# Roles allowed to act on behalf of an apartment (calendar, booking lifecycle)
STAFF_ROLES = frozenset({ActorRole.OWNER, ActorRole.ADMIN})
