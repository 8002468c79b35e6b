"""
Bank statement CSV parsing helpers.
"""

from datetime import date
from decimal import Decimal

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from ledger_kernel.exceptions import MalformedImportRowError
from ledger_modules.cash.helpers import (
    normalize_statement_rows,
    parse_bank_statement_csv,
    parse_statement_amount,
    parse_statement_date,
)


class TestAmounts:
    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("1250.00", Decimal("1250.00")),
            ("-45.10", Decimal("-45.10")),
            ("$1,250.00", Decimal("1250.00")),
            ("-$1,250.00", Decimal("-1250.00")),
            ("$-3.50", Decimal("-3.50")),
            (" 7 ", Decimal("7")),
            (Decimal("2.5"), Decimal("2.5")),
            (12, Decimal("12")),
        ],
    )
    def test_valid(self, raw, expected):
        assert parse_statement_amount(raw) == expected

    @pytest.mark.parametrize("raw", ["", "abc", "0", "0.00", "--5", "NaN", "Infinity", 1.5])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_statement_amount(raw)

    @given(
        st.decimals(
            min_value=Decimal("-1000000"),
            max_value=Decimal("1000000"),
            places=2,
            allow_nan=False,
            allow_infinity=False,
        ).filter(lambda d: d != 0)
    )
    @settings(max_examples=200)
    def test_text_round_trip_is_exact(self, amount):
        assert parse_statement_amount(str(amount)) == amount


class TestDates:
    @pytest.mark.parametrize("raw", ["2024-03-04", "03/04/2024", date(2024, 3, 4)])
    def test_formats(self, raw):
        assert parse_statement_date(raw) == date(2024, 3, 4)

    @pytest.mark.parametrize("raw", ["", "2024-13-01", "4 March 2024", None])
    def test_invalid(self, raw):
        with pytest.raises(ValueError):
            parse_statement_date(raw)


class TestCsv:
    def test_parses_rows_in_order(self):
        text = (
            "\ufeffDate,Description,Amount,Reference\n"
            "2024-03-04,Office rent,-1200.00,CHK-101\n"
            "\n"
            "03/05/2024,Customer deposit,\"$2,090.00\",\n"
        )

        rows = parse_bank_statement_csv(text)

        assert [r.row_number for r in rows] == [1, 3]
        assert rows[0].amount == Decimal("-1200.00")
        assert rows[0].reference == "CHK-101"
        assert rows[1].transaction_date == date(2024, 3, 5)
        assert rows[1].amount == Decimal("2090.00")
        assert rows[1].reference is None

    def test_header_case_insensitive(self):
        rows = parse_bank_statement_csv("DATE,description,AMOUNT\n2024-03-04,x,1\n")
        assert rows[0].description == "x"

    def test_missing_column_is_row_zero(self):
        with pytest.raises(MalformedImportRowError) as exc_info:
            parse_bank_statement_csv("Date,Description\n2024-03-04,x\n")
        assert exc_info.value.row_number == 0
        assert "amount" in exc_info.value.reason

    def test_bad_row_reports_its_number(self):
        text = "Date,Description,Amount\n2024-03-04,ok,1\n2024-03-05,bad,abc\n"
        with pytest.raises(MalformedImportRowError) as exc_info:
            parse_bank_statement_csv(text)
        assert exc_info.value.row_number == 2

    def test_extra_fields_rejected(self):
        with pytest.raises(MalformedImportRowError) as exc_info:
            parse_bank_statement_csv("Date,Description,Amount\n2024-03-04,x,1,extra\n")
        assert exc_info.value.row_number == 1

    @pytest.mark.parametrize(
        "bad_line,reason",
        [("2024-03-06,bad,abc", "money"), ("2024-03-06,x,1,extra", "too many fields")],
    )
    def test_row_numbers_count_blank_lines(self, bad_line, reason):
        text = f"Date,Description,Amount\n2024-03-04,ok,1\n\n , , \n{bad_line}\n"
        with pytest.raises(MalformedImportRowError) as exc_info:
            parse_bank_statement_csv(text)
        assert exc_info.value.row_number == 4
        assert reason in exc_info.value.reason


class TestMappings:
    def test_typed_values_accepted(self):
        rows = normalize_statement_rows(
            [{"Date": date(2024, 3, 4), "Description": "Fee", "Amount": Decimal("-5.00")}]
        )
        assert rows[0].amount == Decimal("-5.00")

    def test_missing_key(self):
        with pytest.raises(MalformedImportRowError) as exc_info:
            normalize_statement_rows([{"date": "2024-03-04", "amount": "1"}])
        assert exc_info.value.row_number == 1
        assert "description" in exc_info.value.reason

    def test_zero_amount_rejected(self):
        with pytest.raises(MalformedImportRowError):
            normalize_statement_rows([{"date": "2024-03-04", "description": "x", "amount": "0"}])
