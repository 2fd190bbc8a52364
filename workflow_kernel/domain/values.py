"""
Values -- Immutable, self-validating domain value objects.

Responsibility:
    Provides the identity and money types used by every other domain
    module: EntityId (typed legal-entity identity), Money (minor-unit
    amounts paired with a currency) and Actor (the identity-provider view
    of a caller).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Legal entities are identified by ``EntityId`` wrapping a UUID; they
      are never matched by display name.
    - Stage fees are integer minor units (cents); never float.
    - Currency codes are three upper-case ASCII letters.

Failure modes:
    - ValueError on construction with negative amounts or malformed
      currency codes.
    - TypeError when an amount is not an int, or Money of different
      currencies is combined.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


@dataclass(frozen=True, slots=True)
class EntityId:
    """
    Typed identity of a legal entity (customs authority, ministry, bank).

    Contract:
        Wraps the entity's UUID.  Two EntityIds are equal only when their
        UUIDs are equal; names never participate in identity.
    """

    value: UUID

    def __post_init__(self) -> None:
        if isinstance(self.value, str):
            object.__setattr__(self, "value", UUID(self.value))
        elif not isinstance(self.value, UUID):
            raise TypeError(
                f"EntityId requires a UUID, got {type(self.value).__name__}"
            )

    @classmethod
    def parse(cls, raw: str | UUID | EntityId) -> EntityId:
        if isinstance(raw, EntityId):
            return raw
        return cls(raw if isinstance(raw, UUID) else UUID(str(raw)))

    def __str__(self) -> str:
        return str(self.value)


def _validate_currency(code: str) -> str:
    normalized = code.upper().strip() if code else ""
    if len(normalized) != 3 or not normalized.isascii() or not normalized.isalpha():
        raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
    return normalized


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount in integer minor units.

    Contract:
        Pairs an integer minor-unit amount (e.g. cents) with its currency.
        Stage fees, payment amounts and fee aggregates all use this type.

    Guarantees:
        - ``amount_minor`` is a non-negative int (bool is rejected).
        - ``currency`` is a normalized three-letter code.
        - Addition refuses to mix currencies.
    """

    amount_minor: int
    currency: str = "USD"

    def __post_init__(self) -> None:
        if isinstance(self.amount_minor, bool) or not isinstance(self.amount_minor, int):
            raise TypeError(
                "Money amount must be integer minor units, got "
                f"{type(self.amount_minor).__name__}"
            )
        if self.amount_minor < 0:
            raise ValueError(f"Money amount cannot be negative: {self.amount_minor}")
        object.__setattr__(self, "currency", _validate_currency(self.currency))

    @classmethod
    def zero(cls, currency: str = "USD") -> Money:
        return cls(0, currency)

    @property
    def is_zero(self) -> bool:
        return self.amount_minor == 0

    @property
    def is_positive(self) -> bool:
        return self.amount_minor > 0

    def __add__(self, other: Money) -> Money:
        if not isinstance(other, Money):
            return NotImplemented
        if other.currency != self.currency:
            raise TypeError(
                f"Cannot add {other.currency} to {self.currency}"
            )
        return Money(self.amount_minor + other.amount_minor, self.currency)

    def __str__(self) -> str:
        return f"{self.amount_minor} {self.currency}"


class ActorRole(str, Enum):
    """Roles supplied by the identity provider."""

    LEGAL_ENTITY = "legal_entity"
    SUBMITTER = "submitter"
    ADMIN = "admin"


@dataclass(frozen=True, slots=True)
class Actor:
    """
    Caller identity as reported by the authentication provider.

    ``legal_entity_id`` is set only for members of a legal entity.
    """

    actor_id: UUID
    role: ActorRole
    legal_entity_id: EntityId | None = None
