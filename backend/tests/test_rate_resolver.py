import pytest
from datetime import date
from decimal import Decimal

from brokerdesk.models.grid import ProductType
from brokerdesk.services.errors import RateNotFoundError, AmbiguousRateError
from brokerdesk.services.rate_resolver import (
    MotorContext, HealthContext, LifeContext, MotorGridEntry, HealthGridEntry, LifeGridEntry,
    RateResolver, resolve_base_rate,
)
from conftest import ORG


def motor(id, rate="10", valid_from=date(2024, 1, 1), valid_to=None, provider="ICICI Lombard",
          is_active=True, **dims):
    return MotorGridEntry(
        id=id,
        provider=provider,
        commission_rate=Decimal(rate),
        reward_rate=Decimal("0"),
        valid_from=valid_from,
        valid_to=valid_to,
        is_active=is_active,
        **dims,
    )


ON = date(2024, 6, 15)


class TestSpecificity:
    """The most specific matching entry wins."""

    def test_more_dimensions_beat_generic(self):
        entries = [
            motor(1, "10"),
            motor(2, "12", vehicle_make="Maruti"),
            motor(3, "14", vehicle_make="Maruti", fuel_type="Petrol"),
        ]
        ctx = MotorContext(evaluation_date=ON, vehicle_make="maruti", fuel_type="PETROL")
        res = resolve_base_rate(ProductType.MOTOR, "ICICI Lombard", ctx, entries)
        assert res.rate == Decimal("14")
        assert res.matched_entry_id == "motor:3"
        assert res.specificity == 2

    def test_mismatched_dimension_excludes_entry(self):
        entries = [motor(1, "10"), motor(2, "14", fuel_type="Diesel")]
        ctx = MotorContext(evaluation_date=ON, fuel_type="Petrol")
        res = resolve_base_rate(ProductType.MOTOR, "ICICI Lombard", ctx, entries)
        assert res.matched_entry_id == "motor:1"

    def test_populated_dimension_needs_a_value_on_the_policy(self):
        entries = [motor(1, "10"), motor(2, "14", vehicle_make="Maruti")]
        ctx = MotorContext(evaluation_date=ON)
        res = resolve_base_rate(ProductType.MOTOR, "ICICI Lombard", ctx, entries)
        assert res.matched_entry_id == "motor:1"

    def test_newer_valid_from_breaks_specificity_tie(self):
        entries = [motor(1, "10", valid_from=date(2024, 1, 1)), motor(2, "11", valid_from=date(2024, 4, 1))]
        res = resolve_base_rate(ProductType.MOTOR, "ICICI Lombard", MotorContext(evaluation_date=ON), entries)
        assert res.rate == Decimal("11")

    def test_health_sum_insured_band(self):
        entries = [
            HealthGridEntry(id=1, provider="Star Health", commission_rate=Decimal("15"), reward_rate=Decimal("0"),
                            valid_from=date(2024, 1, 1), valid_to=None, is_active=True),
            HealthGridEntry(id=2, provider="Star Health", commission_rate=Decimal("18"), reward_rate=Decimal("0"),
                            valid_from=date(2024, 1, 1), valid_to=None, is_active=True,
                            sum_insured_min=Decimal("500000"), sum_insured_max=Decimal("1000000")),
        ]
        inside = HealthContext(evaluation_date=ON, sum_insured=Decimal("750000"))
        outside = HealthContext(evaluation_date=ON, sum_insured=Decimal("2000000"))
        assert resolve_base_rate("health", "Star Health", inside, entries).rate == Decimal("18")
        assert resolve_base_rate("health", "Star Health", outside, entries).rate == Decimal("15")

    def test_life_terms_must_match(self):
        entries = [
            LifeGridEntry(id=1, provider="HDFC Life", commission_rate=Decimal("25"), reward_rate=Decimal("0"),
                          valid_from=date(2024, 1, 1), valid_to=None, is_active=True, ppt=10, pt=20),
            LifeGridEntry(id=2, provider="HDFC Life", commission_rate=Decimal("30"), reward_rate=Decimal("0"),
                          valid_from=date(2024, 1, 1), valid_to=None, is_active=True, ppt=5, pt=10),
        ]
        ctx = LifeContext(evaluation_date=ON, ppt=5, pt=10)
        assert resolve_base_rate("life", "HDFC Life", ctx, entries).matched_entry_id == "life:2"


class TestAmbiguityAndMisses:

    def test_tie_raises_with_both_entry_ids(self):
        entries = [motor(1, "10"), motor(2, "12")]
        with pytest.raises(AmbiguousRateError) as exc:
            resolve_base_rate(ProductType.MOTOR, "ICICI Lombard", MotorContext(evaluation_date=ON), entries)
        assert exc.value.entry_ids == ["motor:1", "motor:2"]

    def test_no_entry_raises_not_found(self):
        with pytest.raises(RateNotFoundError):
            resolve_base_rate(ProductType.MOTOR, "ICICI Lombard", MotorContext(evaluation_date=ON), [])

    def test_other_provider_is_not_a_match(self):
        with pytest.raises(RateNotFoundError):
            resolve_base_rate(ProductType.MOTOR, "Bajaj Allianz", MotorContext(evaluation_date=ON), [motor(1)])

    def test_provider_match_ignores_case(self):
        res = resolve_base_rate(ProductType.MOTOR, "icici lombard ", MotorContext(evaluation_date=ON), [motor(1)])
        assert res.matched_entry_id == "motor:1"

    def test_inactive_entry_is_ignored(self):
        with pytest.raises(RateNotFoundError):
            resolve_base_rate(ProductType.MOTOR, "ICICI Lombard", MotorContext(evaluation_date=ON),
                              [motor(1, is_active=False)])

    def test_context_for_another_product_is_rejected(self):
        with pytest.raises(ValueError):
            resolve_base_rate(ProductType.HEALTH, "ICICI Lombard", MotorContext(evaluation_date=ON), [motor(1)])


class TestValidityWindow:

    def test_both_ends_inclusive(self):
        entries = [motor(1, valid_from=date(2024, 1, 1), valid_to=date(2024, 3, 31))]
        for on in (date(2024, 1, 1), date(2024, 3, 31)):
            res = resolve_base_rate("motor", "ICICI Lombard", MotorContext(evaluation_date=on), entries)
            assert res.matched_entry_id == "motor:1"

    def test_day_after_valid_to_misses(self):
        entries = [motor(1, valid_from=date(2024, 1, 1), valid_to=date(2024, 3, 31))]
        with pytest.raises(RateNotFoundError):
            resolve_base_rate("motor", "ICICI Lombard", MotorContext(evaluation_date=date(2024, 4, 1)), entries)

    def test_not_yet_valid_misses(self):
        with pytest.raises(RateNotFoundError):
            resolve_base_rate("motor", "ICICI Lombard", MotorContext(evaluation_date=date(2023, 12, 31)),
                              [motor(1)])

    def test_same_input_same_answer_regardless_of_order(self):
        entries = [
            motor(1, "10"),
            motor(2, "12", vehicle_make="Maruti"),
            motor(3, "9", valid_from=date(2023, 1, 1), vehicle_make="Maruti"),
        ]
        ctx = MotorContext(evaluation_date=ON, vehicle_make="Maruti")
        first = resolve_base_rate("motor", "ICICI Lombard", ctx, entries)
        second = resolve_base_rate("motor", "ICICI Lombard", ctx, list(reversed(entries)))
        assert first == second
        assert first.matched_entry_id == "motor:2"


class TestRateResolverLoading:
    """Candidates are loaded per tenant from the grid tables."""

    def test_resolves_from_database(self, db, motor_entry):
        motor_entry(commission_rate="10", reward_rate="2")
        res = RateResolver(db).resolve(ORG, "motor", "ICICI Lombard", MotorContext(evaluation_date=ON))
        assert res.rate == Decimal("10")
        assert res.reward_rate == Decimal("2")

    def test_other_tenants_entries_are_invisible(self, db, motor_entry):
        motor_entry(org_id="org-b")
        with pytest.raises(RateNotFoundError):
            RateResolver(db).resolve(ORG, "motor", "ICICI Lombard", MotorContext(evaluation_date=ON))

    def test_resolve_for_policy_uses_policy_dimensions(self, db, motor_entry, policy):
        motor_entry(commission_rate="10")
        specific = motor_entry(commission_rate="13", vehicle_make="Maruti")
        p = policy(vehicle_make="Maruti")
        res = RateResolver(db).resolve_for_policy(p)
        assert res.matched_entry_id == f"motor:{specific.id}"
