"""
Slot schema for lead qualification.

A deployment declares one ordered slot list (3 or 4 slots). The pending slot
is always derived from that order and the current slot values; nothing else
decides what the bot asks next.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

PENDING_NONE = "none"

MIN_SLOTS = 3
MAX_SLOTS = 4


class SlotSchemaError(ValueError):
    """Raised when the declared slot order is unusable."""


@dataclass(frozen=True)
class SlotSpec:
    name: str
    label: str
    question: str
    examples: str = ""


# Known slots. Labels go into the admin summary, questions into the prompt.
KNOWN_SLOTS: dict[str, SlotSpec] = {
    "sector": SlotSpec(
        name="sector",
        label="Business",
        question="What kind of business do you have?",
        examples="dental clinic, spa, beauty salon, practice, barbershop, studio, other",
    ),
    "service": SlotSpec(
        name="service",
        label="Automate first",
        question="What would you like to automate first on WhatsApp?",
        examples="booking appointments, confirmations/reminders, rescheduling, info and prices",
    ),
    "volume": SlotSpec(
        name="volume",
        label="Appointments/week",
        question="Roughly how many appointments do you handle per week?",
        examples="5, 15, 30, 60+",
    ),
    "objective": SlotSpec(
        name="objective",
        label="Main goal",
        question="What is the main result you want from the bot?",
        examples="more bookings, fewer no-shows, faster replies",
    ),
}


def infer_pending(slots: Mapping[str, str], order: tuple[str, ...] | list[str]) -> str:
    """Return the first slot in `order` with an empty value, or "none"."""
    for name in order:
        if not (slots.get(name) or "").strip():
            return name
    return PENDING_NONE


@dataclass(frozen=True)
class SlotSchema:
    order: tuple[str, ...]
    freeform_slot: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.order:
            raise SlotSchemaError("slot order is empty")
        if len(set(self.order)) != len(self.order):
            raise SlotSchemaError(f"duplicate slot names in {list(self.order)}")
        if not MIN_SLOTS <= len(self.order) <= MAX_SLOTS:
            raise SlotSchemaError(
                f"expected {MIN_SLOTS}-{MAX_SLOTS} slots, got {len(self.order)}"
            )
        unknown = [name for name in self.order if name not in KNOWN_SLOTS]
        if unknown:
            raise SlotSchemaError(f"unknown slot names: {unknown}")
        if self.freeform_slot and self.freeform_slot not in self.order:
            raise SlotSchemaError(
                f"freeform slot {self.freeform_slot!r} is not in the slot order"
            )

    @classmethod
    def from_config(cls, slots_csv: str, freeform_slot: str = "") -> "SlotSchema":
        order = tuple(s.strip().lower() for s in (slots_csv or "").split(",") if s.strip())
        return cls(order=order, freeform_slot=(freeform_slot or "").strip().lower() or None)

    def spec(self, name: str) -> SlotSpec:
        return KNOWN_SLOTS[name]

    def empty_slots(self) -> dict[str, str]:
        return {name: "" for name in self.order}

    def pending(self, slots: Mapping[str, str]) -> str:
        return infer_pending(slots, self.order)

    def all_filled(self, slots: Mapping[str, str]) -> bool:
        return self.pending(slots) == PENDING_NONE

    def pending_choices(self) -> str:
        return "|".join(self.order + (PENDING_NONE,))
