"""Data models for the detector module."""

from __future__ import annotations

import asyncio
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum


class Role(str, Enum):
    """Fixed roles; discovered wallets get ``WALLET_<n>`` names instead."""

    SELLER = "SELLER"
    DISTRIB = "DISTRIB"
    BOT = "BOT"


DISCOVERED_ROLE_PREFIX = "WALLET_"


class CyclePhase(str, Enum):
    """Where the current detection cycle stands."""

    IDLE = "idle"
    SEED_DETECTED = "seed_detected"
    AWAITING_DISTRIBUTION = "awaiting_distribution"
    BUY_PENDING = "buy_pending"
    HOLDING_POSITION = "holding_position"
    SELL_PENDING = "sell_pending"


@dataclass
class CycleState:
    """The single in-flight detection cycle.

    ``candidate_token is None`` means the cycle is idle: every flag is
    false, ``received_count`` is zero and ``phase`` is ``IDLE``.
    """

    candidate_token: str | None = None
    seller_handoff_observed: bool = False
    bought_confirmed: bool = False
    received_count: int = 0
    sold_confirmed: bool = False
    distributing_in_progress: bool = False
    phase: CyclePhase = CyclePhase.IDLE
    started_at: datetime | None = None

    @property
    def is_idle(self) -> bool:
        return self.candidate_token is None

    def begin(self, token: str) -> None:
        """Start a cycle for ``token`` from a clean state."""
        self.reset()
        self.candidate_token = token
        self.started_at = datetime.now(UTC)

    def reset(self) -> None:
        self.candidate_token = None
        self.seller_handoff_observed = False
        self.bought_confirmed = False
        self.received_count = 0
        self.sold_confirmed = False
        self.distributing_in_progress = False
        self.phase = CyclePhase.IDLE
        self.started_at = None

    def is_consistent(self) -> bool:
        """Check the idle invariant."""
        if self.candidate_token is not None:
            return True
        return (
            not self.seller_handoff_observed
            and not self.bought_confirmed
            and not self.sold_confirmed
            and not self.distributing_in_progress
            and self.received_count == 0
            and self.phase is CyclePhase.IDLE
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "candidate_token": self.candidate_token,
            "seller_handoff_observed": self.seller_handoff_observed,
            "bought_confirmed": self.bought_confirmed,
            "received_count": self.received_count,
            "sold_confirmed": self.sold_confirmed,
            "distributing_in_progress": self.distributing_in_progress,
            "phase": self.phase.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


@dataclass
class PendingBuy:
    """A scheduled buy that has not been confirmed yet. At most one per cycle."""

    token: str
    retry_count: int = 0
    task: asyncio.Task[None] | None = None
    scheduled_at: datetime = field(default_factory=lambda: datetime.now(UTC))


class WatchedAddressSet:
    """Role name to address mapping, extendable at runtime.

    Example:
        ```python
        watched = WatchedAddressSet({"SELLER": seller, "DISTRIB": distrib})
        role = watched.discover(new_address)  # "WALLET_1"
        ```
    """

    def __init__(self, roles: Mapping[str, str] | None = None) -> None:
        self._roles: dict[str, str] = {}
        self._discovered = 0
        for role, address in (roles or {}).items():
            self.add(role, address)

    def add(self, role: str | Role, address: str) -> None:
        if not address:
            raise ValueError(f"Empty address for role {role}")
        name = role.value if isinstance(role, Role) else str(role)
        self._roles[name] = address

    def get(self, role: str | Role) -> str | None:
        name = role.value if isinstance(role, Role) else str(role)
        return self._roles.get(name)

    @property
    def seller(self) -> str | None:
        return self.get(Role.SELLER)

    @property
    def distrib(self) -> str | None:
        return self.get(Role.DISTRIB)

    @property
    def bot(self) -> str | None:
        return self.get(Role.BOT)

    def role_of(self, address: str | None) -> str | None:
        if address is None:
            return None
        for role, watched in self._roles.items():
            if watched == address:
                return role
        return None

    def discover(self, address: str) -> str | None:
        """Add ``address`` under the next ``WALLET_<n>`` role.

        Returns:
            The new role name, or None if the address was already watched.
        """
        if address in self:
            return None
        self._discovered += 1
        role = f"{DISCOVERED_ROLE_PREFIX}{self._discovered}"
        self._roles[role] = address
        return role

    def addresses(self) -> frozenset[str]:
        return frozenset(self._roles.values())

    def items(self) -> Iterator[tuple[str, str]]:
        return iter(list(self._roles.items()))

    def __contains__(self, address: object) -> bool:
        return address in self._roles.values()

    def __len__(self) -> int:
        return len(self._roles)


class ActionKind(str, Enum):
    SCHEDULE_BUY = "schedule_buy"
    SELL = "sell"
    SUBSCRIBE = "subscribe"
    REPORT_TOKEN = "report_token"


@dataclass(frozen=True)
class PatternAction:
    """Side effect requested by the state machine; the pipeline carries it out."""

    kind: ActionKind
    token: str | None = None
    delay_seconds: float = 0.0
    address: str | None = None
