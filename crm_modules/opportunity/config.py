"""
Module: crm_modules.opportunity.config
Responsibility:
    Configuration schema for the opportunity revenue engine: schedule
    numbering, default cadence, the enabled stage gate rules, and the
    tolerances used by the deletion guard, reconciliation status and
    split validation.

Architecture:
    crm_modules layer -- pure dataclass configuration schema.
    Consumed by OpportunityService at construction time.
    No I/O; no database access.

    Configuration is resolved via the single entrypoint:
        crm_config.get_active_config()

Invariants:
    - Every enabled stage gate names a registered gate rule.
    - All tolerances are non-negative Decimals.
    - ``schedule_number_floor`` is non-negative.

Failure modes:
    - ValueError on invalid values in __post_init__.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Self

from crm_kernel.logging_config import get_logger
from crm_modules.opportunity.models import ScheduleCadence
from crm_modules.opportunity.workflows import DEFAULT_STAGE_GATES, STAGE_GATES

logger = get_logger("modules.opportunity.config")


@dataclass
class OpportunityConfig:
    """
    Configuration schema for the opportunity revenue engine.

    Contract:
        Mutable dataclass (not frozen) so it can be loaded from YAML
        config.  Validated in ``__post_init__``.

    Guarantees:
        - ``stage_gates`` only names gates present in ``STAGE_GATES``.
        - ``default_cadence`` is a ``ScheduleCadence`` value.
    """

    # Display schedule numbers are floor + per-tenant sequence value
    schedule_number_floor: int = 10000

    default_cadence: str = ScheduleCadence.MONTHLY.value

    stage_gates: tuple[str, ...] = DEFAULT_STAGE_GATES

    # |actual amount| above this counts as applied money
    applied_money_tolerance: Decimal = Decimal("0.0001")

    # Fraction of expected net allowed as variance for a Reconciled status
    reconciliation_variance_tolerance: Decimal = Decimal("0")

    split_sum_tolerance: Decimal = Decimal("0.0001")

    def __post_init__(self):
        self.stage_gates = tuple(self.stage_gates)
        unknown = [g for g in self.stage_gates if g not in STAGE_GATES]
        if unknown:
            raise ValueError(f"Unknown stage gates: {', '.join(unknown)}")
        if len(set(self.stage_gates)) != len(self.stage_gates):
            raise ValueError("stage_gates contains duplicates")
        try:
            ScheduleCadence(self.default_cadence)
        except ValueError:
            raise ValueError(f"Unknown default_cadence: {self.default_cadence!r}") from None
        if self.schedule_number_floor < 0:
            raise ValueError("schedule_number_floor cannot be negative")
        for name in (
            "applied_money_tolerance",
            "reconciliation_variance_tolerance",
            "split_sum_tolerance",
        ):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                raise ValueError(f"{name} must be a Decimal")
            if value < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.reconciliation_variance_tolerance > 1:
            raise ValueError("reconciliation_variance_tolerance must be a fraction <= 1")

        logger.info(
            "opportunity_config_initialized",
            extra={
                "default_cadence": self.default_cadence,
                "schedule_number_floor": self.schedule_number_floor,
                "stage_gates": list(self.stage_gates),
            },
        )

    @classmethod
    def with_defaults(cls) -> Self:
        """
        Create config with the standard defaults.

        Postconditions:
            - Returns an OpportunityConfig with all default values.
            - Passes __post_init__ validation.
        """
        return cls()

    @property
    def cadence(self) -> ScheduleCadence:
        return ScheduleCadence(self.default_cadence)
