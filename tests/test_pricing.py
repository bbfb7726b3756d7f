"""Unit tests for the fare calculator."""

import pytest

from src.domain.enums import RoundingMode, ServiceType
from src.domain.errors import InvalidFareInput
from src.domain.pricing import (
    DesignatedDriverPricing,
    ErrandPricing,
    FareCalculator,
    FareRates,
    StandardPricing,
    apply_rounding,
)


class TestServicePricing:
    def setup_method(self):
        self.rates = FareRates()

    def test_standard_adds_nothing(self):
        charge = StandardPricing().apply(280.0, 0, self.rates)
        assert charge.added == 0
        assert charge.multiplier == 1.0

    def test_errand_adds_deposit_and_fee(self):
        charge = ErrandPricing().apply(175.0, 200, self.rates)
        assert charge.deposit == 200
        assert charge.service_fee == 100
        assert charge.added == 300

    def test_designated_driver_doubles_then_adds_fee(self):
        charge = DesignatedDriverPricing().apply(280.0, 0, self.rates)
        assert charge.multiplier == 2.0
        assert charge.multiplier_uplift == 280.0
        assert charge.added == 580.0


class TestRounding:
    def test_half_rounds_up(self):
        assert apply_rounding(280.5, RoundingMode.NEAREST) == 281

    def test_below_half_rounds_down(self):
        assert apply_rounding(280.49, RoundingMode.NEAREST) == 280

    def test_float_noise_is_ignored(self):
        assert apply_rounding(279.99999999997, RoundingMode.NEAREST) == 280

    def test_floor_ten(self):
        assert apply_rounding(589.9, RoundingMode.FLOOR_TEN) == 580
        assert apply_rounding(580.0, RoundingMode.FLOOR_TEN) == 580


class TestFareCalculator:
    def setup_method(self):
        self.calc = FareCalculator()

    def test_standard_short_ride(self):
        # 70 + 10*15 + 20*3
        assert self.calc.calculate(10, 20, ServiceType.STANDARD, 0) == 280

    def test_long_distance_surcharge(self):
        # 70 + 375 + 90 + 5*10
        assert self.calc.calculate(25, 30, ServiceType.STANDARD, 0) == 585

    def test_surcharge_starts_after_twenty_km(self):
        at_threshold = self.calc.breakdown(20, 0)
        assert at_threshold.long_distance_surcharge == 0
        assert at_threshold.total == 370

    def test_errand(self):
        # 70 + 75 + 30 + 200 deposit + 100 fee
        assert self.calc.calculate(5, 10, ServiceType.ERRAND, 200) == 475

    def test_designated_driver(self):
        # (70 + 150 + 60) * 2 + 300
        assert self.calc.calculate(10, 20, ServiceType.DESIGNATED_DRIVER) == 860

    def test_deposit_ignored_outside_errands(self):
        assert self.calc.calculate(10, 20, ServiceType.STANDARD, 500) == 280
        assert self.calc.calculate(10, 20, ServiceType.DESIGNATED_DRIVER, 500) == 860

    def test_minimum_fare_applies(self):
        calc = FareCalculator(FareRates(base_fare=10, minimum_fare=50))
        fare = calc.breakdown(0, 0)
        assert fare.total == 50
        assert fare.minimum_fare_adjustment == 40

    def test_floor_ten_rounding_is_explicit(self):
        # 589.5 before rounding
        assert self.calc.calculate(25, 31.5, rounding=RoundingMode.FLOOR_TEN) == 580
        assert self.calc.calculate(25, 31.5) == 590

    def test_accepts_string_service_type(self):
        assert self.calc.calculate(5, 10, "errand", 200) == 475

    @pytest.mark.parametrize(
        "distance,duration,deposit",
        [(-1, 10, 0), (5, -0.1, 0), (5, 10, -50)],
    )
    def test_negative_input_rejected(self, distance, duration, deposit):
        with pytest.raises(InvalidFareInput):
            self.calc.calculate(distance, duration, ServiceType.ERRAND, deposit)

    def test_rates_from_settings(self):
        class _Settings:
            base_fare = 100
            rate_per_km = 20
            rate_per_minute = 0
            long_distance_threshold_km = 20
            long_distance_rate_per_km = 10
            errand_service_fee = 100
            designated_driver_multiplier = 2
            designated_driver_fee = 300
            minimum_fare = 50

        calc = FareCalculator.from_settings(_Settings())
        assert calc.calculate(1, 10) == 120


class TestFareBreakdown:
    def setup_method(self):
        self.calc = FareCalculator()

    @pytest.mark.parametrize(
        "distance,duration,service,deposit",
        [
            (10, 20, ServiceType.STANDARD, 0),
            (25, 30, ServiceType.STANDARD, 0),
            (5, 10, ServiceType.ERRAND, 200),
            (33.3, 47.7, ServiceType.DESIGNATED_DRIVER, 0),
            (0.2, 0.5, ServiceType.STANDARD, 0),
        ],
    )
    def test_components_sum_to_total(self, distance, duration, service, deposit):
        fare = self.calc.breakdown(distance, duration, service, deposit)
        assert sum(fare.components().values()) == pytest.approx(fare.total)

    def test_itemisation(self):
        fare = self.calc.breakdown(25, 30)
        assert fare.base_fare == 70
        assert fare.distance_charge == 375
        assert fare.duration_charge == 90
        assert fare.long_distance_surcharge == 50
        assert fare.subtotal == 585
        assert fare.rounding_adjustment == 0

    def test_as_dict_is_serialisable(self):
        data = self.calc.breakdown(5, 10, ServiceType.ERRAND, 200).as_dict()
        assert data["total"] == 475
        assert data["service_type"] == ServiceType.ERRAND
