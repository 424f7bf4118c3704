"""
Tests for the statutory rate tables in care_config.

Validates:
- Tax year resolution from a date (6 April boundary)
- The shipped 2025/26 table parses with the published thresholds
- Structural validation of bands and tax years
"""

from datetime import date
from decimal import Decimal

import pytest

from care_config import (
    DEFAULT_TAX_YEAR,
    IncomeTaxRegime,
    TaxBand,
    available_tax_years,
    get_active_config,
    tax_year_for,
)
from care_config.loader import tax_year_file_name


class TestTaxYearResolution:
    @pytest.mark.parametrize(
        "as_of, expected",
        [
            (date(2025, 4, 5), "2024/25"),
            (date(2025, 4, 6), "2025/26"),
            (date(2026, 1, 31), "2025/26"),
            (date(2026, 4, 6), "2026/27"),
        ],
    )
    def test_year_starts_on_sixth_april(self, as_of, expected):
        assert tax_year_for(as_of) == expected

    def test_file_name(self):
        assert tax_year_file_name("2025/26") == "2025_26.yaml"

    def test_shipped_years(self):
        years = available_tax_years()
        assert DEFAULT_TAX_YEAR in years
        assert "2024/25" in years


class TestShippedRates:
    def test_default_year_loaded_without_arguments(self):
        rates = get_active_config()
        assert rates.tax_year == "2025/26"
        assert rates.checksum

    def test_as_of_date_selects_covering_year(self):
        rates = get_active_config(as_of_date=date(2025, 3, 1))
        assert rates.tax_year == "2024/25"
        assert rates.covers(date(2025, 3, 1))

    def test_2025_26_thresholds(self):
        rates = get_active_config(tax_year="2025/26")
        assert rates.personal_allowance == Decimal("12570")
        assert rates.ni_thresholds.primary_threshold == Decimal("12570")
        assert rates.ni_thresholds.upper_earnings_limit == Decimal("50270")
        assert rates.ni_thresholds.secondary_threshold == Decimal("5000")

        cat_a = rates.ni_categories["A"]
        assert cat_a.employee_main_rate == Decimal("0.08")
        assert cat_a.employee_upper_rate == Decimal("0.02")
        assert cat_a.employer_rate == Decimal("0.15")

        assert rates.pension.lower_qualifying_earnings == Decimal("6240")
        assert rates.student_loans["plan2"].threshold == Decimal("28470")

    def test_ruk_bands(self):
        bands = get_active_config().regimes["rUK"].bands
        assert [b.rate for b in bands] == [Decimal("0.20"), Decimal("0.40"), Decimal("0.45")]
        assert bands[-1].upper is None

    def test_scottish_regime_present(self):
        assert "scottish" in {name.lower() for name in get_active_config().regimes}

    def test_loads_are_cached(self):
        assert get_active_config(tax_year="2025/26") is get_active_config(tax_year="2025/26")

    def test_unknown_year_raises(self):
        with pytest.raises(FileNotFoundError):
            get_active_config(tax_year="1999/00")


class TestSchemaValidation:
    def test_band_rate_out_of_range(self):
        with pytest.raises(ValueError):
            TaxBand("silly", Decimal("1.5"), Decimal("1000"))

    def test_band_limits_must_increase(self):
        with pytest.raises(ValueError):
            IncomeTaxRegime(
                "broken",
                (
                    TaxBand("basic", Decimal("0.20"), Decimal("37700")),
                    TaxBand("higher", Decimal("0.40"), Decimal("10000")),
                    TaxBand("additional", Decimal("0.45"), None),
                ),
            )

    def test_only_last_band_open(self):
        with pytest.raises(ValueError):
            IncomeTaxRegime(
                "broken",
                (TaxBand("basic", Decimal("0.20"), None), TaxBand("higher", Decimal("0.40"), None)),
            )
