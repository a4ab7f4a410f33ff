import math
from collections import namedtuple
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, Optional

from .models import SchoolModel


PlanTariff = namedtuple('PlanTariff', 'name monthly_price cycles_included students_included '
                                      'storage_included_gb bills_overage bundles_modules')

INFINITE = math.inf

# Monthly prices and quotas, in XOF.
PLAN_TARIFFS = {
    SchoolModel.Plan.ESSENTIEL: PlanTariff(SchoolModel.Plan.ESSENTIEL, 0, 5, 50, 1, False, False),
    SchoolModel.Plan.PRO: PlanTariff(SchoolModel.Plan.PRO, 49900, 5, 250, 10, True, False),
    SchoolModel.Plan.PREMIUM: PlanTariff(SchoolModel.Plan.PREMIUM, 99900, INFINITE, INFINITE, INFINITE, True, True),
}

PRICE_PER_CYCLE = 5000
PRICE_PER_STUDENT = 250
PRICE_PER_GB = 1000

MODULE_PRICES = {
    SchoolModel.Module.SANTE: 5000,
    SchoolModel.Module.CANTINE: 10000,
    SchoolModel.Module.TRANSPORT: 10000,
    SchoolModel.Module.INTERNAT: 15000,
    SchoolModel.Module.RH: 15000,
    SchoolModel.Module.IMMOBILIER: 10000,
    SchoolModel.Module.ACTIVITES: 5000,
}


@dataclass(frozen=True)
class Usage:
    cycles_count: int = 0
    students_count: int = 0
    storage_used_gb: Decimal = Decimal('0')


@dataclass(frozen=True)
class BillBreakdown:
    plan: str
    base: int
    supplements: Dict[str, int] = field(default_factory=dict)

    @property
    def total(self):
        return self.base + sum(self.supplements.values())


@dataclass(frozen=True)
class AmountMismatch:
    expected: int
    charged: int
    tolerance: int

    @property
    def difference(self):
        return self.charged - self.expected


def get_plan(plan_name):
    try:
        return PLAN_TARIFFS[SchoolModel.Plan(plan_name)]
    except ValueError:
        raise ValueError(f"Unknown plan: {plan_name}")


def get_module_price(module_id):
    try:
        return MODULE_PRICES[SchoolModel.Module(module_id)]
    except ValueError:
        raise ValueError(f"Unknown module: {module_id}")


class UsageBillingCalculator:
    """
    Computes the monthly charge of a school from its plan, its current usage
    and the add-on modules it pays for.
    """

    def __init__(self, plan_name, usage: Usage, active_modules: Optional[Iterable[str]] = None):
        self.plan = get_plan(plan_name)
        self.usage = usage
        self.active_modules = list(active_modules or [])

    def calculate_base(self):
        return self.plan.monthly_price

    def _overage(self, used, included, unit_price):
        if not self.plan.bills_overage or included == INFINITE:
            return 0
        return max(0, used - included) * unit_price

    def calculate_cycles_supplement(self):
        return self._overage(self.usage.cycles_count, self.plan.cycles_included, PRICE_PER_CYCLE)

    def calculate_students_supplement(self):
        return self._overage(self.usage.students_count, self.plan.students_included, PRICE_PER_STUDENT)

    def calculate_storage_supplement(self):
        """Partial gigabytes over the quota are billed as whole gigabytes."""
        if not self.plan.bills_overage or self.plan.storage_included_gb == INFINITE:
            return 0
        over = Decimal(str(self.usage.storage_used_gb)) - Decimal(self.plan.storage_included_gb)
        if over <= 0:
            return 0
        return math.ceil(over) * PRICE_PER_GB

    def calculate_modules_supplement(self):
        if self.plan.bundles_modules:
            return 0
        return sum(get_module_price(module) for module in set(self.active_modules))

    def breakdown(self):
        return BillBreakdown(
            plan=self.plan.name,
            base=self.calculate_base(),
            supplements={
                'cycles': self.calculate_cycles_supplement(),
                'students': self.calculate_students_supplement(),
                'storage': self.calculate_storage_supplement(),
                'modules': self.calculate_modules_supplement(),
            },
        )


def compute_monthly_bill(plan_name, usage, active_modules=None):
    return UsageBillingCalculator(plan_name, usage, active_modules).breakdown()


def expected_charge(plan_name, usage, active_modules, duration_months):
    return compute_monthly_bill(plan_name, usage, active_modules).total * duration_months


def check_amount_drift(expected, charged, tolerance):
    """Returns an AmountMismatch when charged differs from expected by more than tolerance."""
    if abs(int(charged) - int(expected)) > tolerance:
        return AmountMismatch(expected=int(expected), charged=int(charged), tolerance=tolerance)
    return None
