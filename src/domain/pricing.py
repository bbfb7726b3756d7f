"""
Fare Calculator  (Strategy Pattern)
===================================

Formula
-------
Running = Base_Fare + Distance x Rate_Per_KM + Duration x Rate_Per_Minute
        + max(0, Distance - 20) x Long_Distance_Rate

then exactly one service-type strategy:

* **standard**          -- nothing added.
* **errand**            -- + deposit (float advanced by the driver) + flat fee.
* **designated_driver** -- running x multiplier, then + flat fee.

The result is rounded with an explicit ``RoundingMode`` and floored at the
minimum fare.  Every intermediate amount is kept on ``FareBreakdown`` so
the itemised components always add up to the charged total.

Complexity: O(1) per calculation.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass

from .enums import RoundingMode, ServiceType
from .errors import InvalidFareInput


@dataclass(frozen=True)
class FareRates:
    base_fare: float = 70.0
    rate_per_km: float = 15.0
    rate_per_minute: float = 3.0
    long_distance_threshold_km: float = 20.0
    long_distance_rate_per_km: float = 10.0
    errand_service_fee: float = 100.0
    designated_driver_multiplier: float = 2.0
    designated_driver_fee: float = 300.0
    minimum_fare: int = 50

    @classmethod
    def from_settings(cls, settings) -> "FareRates":
        return cls(
            base_fare=settings.base_fare,
            rate_per_km=settings.rate_per_km,
            rate_per_minute=settings.rate_per_minute,
            long_distance_threshold_km=settings.long_distance_threshold_km,
            long_distance_rate_per_km=settings.long_distance_rate_per_km,
            errand_service_fee=settings.errand_service_fee,
            designated_driver_multiplier=settings.designated_driver_multiplier,
            designated_driver_fee=settings.designated_driver_fee,
            minimum_fare=settings.minimum_fare,
        )


@dataclass(frozen=True)
class ServiceCharge:
    multiplier: float = 1.0
    multiplier_uplift: float = 0.0
    service_fee: float = 0.0
    deposit: float = 0.0

    @property
    def added(self) -> float:
        return self.multiplier_uplift + self.service_fee + self.deposit


@dataclass(frozen=True)
class FareBreakdown:
    service_type: ServiceType
    rounding: RoundingMode
    base_fare: float
    distance_charge: float
    duration_charge: float
    long_distance_surcharge: float
    service_multiplier: float
    multiplier_uplift: float
    service_fee: float
    deposit: float
    subtotal: float
    rounding_adjustment: float
    minimum_fare_adjustment: float
    total: int

    COMPONENTS = (
        "base_fare",
        "distance_charge",
        "duration_charge",
        "long_distance_surcharge",
        "multiplier_uplift",
        "service_fee",
        "deposit",
        "rounding_adjustment",
        "minimum_fare_adjustment",
    )

    def components(self) -> dict[str, float]:
        """Itemised amounts whose sum is ``total``."""
        return {name: getattr(self, name) for name in self.COMPONENTS}

    def as_dict(self) -> dict:
        return asdict(self)


# ── Strategy hierarchy ────────────────────────────────────────────────


class ServicePricing(ABC):
    @abstractmethod
    def apply(
        self, running_total: float, deposit: float, rates: FareRates
    ) -> ServiceCharge: ...


class StandardPricing(ServicePricing):
    def apply(
        self, running_total: float, deposit: float, rates: FareRates
    ) -> ServiceCharge:
        return ServiceCharge()


class ErrandPricing(ServicePricing):
    """Reimburses the driver's float and adds a flat errand fee."""

    def apply(
        self, running_total: float, deposit: float, rates: FareRates
    ) -> ServiceCharge:
        return ServiceCharge(service_fee=rates.errand_service_fee, deposit=deposit)


class DesignatedDriverPricing(ServicePricing):
    def apply(
        self, running_total: float, deposit: float, rates: FareRates
    ) -> ServiceCharge:
        multiplier = rates.designated_driver_multiplier
        return ServiceCharge(
            multiplier=multiplier,
            multiplier_uplift=running_total * (multiplier - 1),
            service_fee=rates.designated_driver_fee,
        )


SERVICE_PRICING: dict[ServiceType, ServicePricing] = {
    ServiceType.STANDARD: StandardPricing(),
    ServiceType.ERRAND: ErrandPricing(),
    ServiceType.DESIGNATED_DRIVER: DesignatedDriverPricing(),
}


def apply_rounding(amount: float, mode: RoundingMode) -> int:
    # drop float noise such as 279.99999999997 before flooring
    amount = round(amount, 6)
    if mode == RoundingMode.FLOOR_TEN:
        return int(math.floor(amount / 10) * 10)
    return int(math.floor(amount + 0.5))


# ── Calculator facade ─────────────────────────────────────────────────


class FareCalculator:
    """High-level API used by the lifecycle service and the quote route."""

    def __init__(self, rates: FareRates | None = None):
        self.rates = rates or FareRates()

    @classmethod
    def from_settings(cls, settings) -> "FareCalculator":
        return cls(FareRates.from_settings(settings))

    def breakdown(
        self,
        distance_km: float,
        duration_min: float,
        service_type: ServiceType = ServiceType.STANDARD,
        deposit: float = 0,
        rounding: RoundingMode = RoundingMode.NEAREST,
    ) -> FareBreakdown:
        if distance_km is None or distance_km < 0:
            raise InvalidFareInput("Distance must be non-negative")
        if duration_min is None or duration_min < 0:
            raise InvalidFareInput("Duration must be non-negative")
        if deposit is None or deposit < 0:
            raise InvalidFareInput("Deposit must be non-negative")

        service_type = ServiceType(service_type)
        rates = self.rates

        distance_charge = distance_km * rates.rate_per_km
        duration_charge = duration_min * rates.rate_per_minute
        over = max(0.0, distance_km - rates.long_distance_threshold_km)
        surcharge = over * rates.long_distance_rate_per_km
        running = rates.base_fare + distance_charge + duration_charge + surcharge

        charge = SERVICE_PRICING[service_type].apply(running, deposit, rates)
        subtotal = running + charge.added

        rounded = apply_rounding(subtotal, RoundingMode(rounding))
        total = max(rounded, rates.minimum_fare)

        return FareBreakdown(
            service_type=service_type,
            rounding=RoundingMode(rounding),
            base_fare=rates.base_fare,
            distance_charge=distance_charge,
            duration_charge=duration_charge,
            long_distance_surcharge=surcharge,
            service_multiplier=charge.multiplier,
            multiplier_uplift=charge.multiplier_uplift,
            service_fee=charge.service_fee,
            deposit=charge.deposit,
            subtotal=subtotal,
            rounding_adjustment=rounded - subtotal,
            minimum_fare_adjustment=total - rounded,
            total=total,
        )

    def calculate(
        self,
        distance_km: float,
        duration_min: float,
        service_type: ServiceType = ServiceType.STANDARD,
        deposit: float = 0,
        rounding: RoundingMode = RoundingMode.NEAREST,
    ) -> int:
        return self.breakdown(
            distance_km, duration_min, service_type, deposit, rounding
        ).total
