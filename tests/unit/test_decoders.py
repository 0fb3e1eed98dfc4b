"""
Unit tests for spreadsheet and delimited-text decoding
"""

import pytest
from unittest.mock import patch

from core.exceptions import ParseError
from ingestion.transformers.decoders import (
    DelimitedTextStrategy,
    FrameStrategy,
    PayloadDecoder,
    StreamingStrategy,
    cell_to_text,
    is_spreadsheet,
    rows_to_records,
)

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


class TestCellToText:

    def test_blank_values_become_none(self):
        assert cell_to_text(None) is None
        assert cell_to_text(float("nan")) is None
        assert cell_to_text("   ") is None

    def test_integral_float_rendered_as_int(self):
        assert cell_to_text(100.0) == "100"
        assert cell_to_text(87.5) == "87.5"

    def test_datetime_rendered_as_date(self):
        from datetime import datetime
        assert cell_to_text(datetime(2024, 3, 1, 8, 30)) == "2024-03-01"


class TestRowsToRecords:

    def test_header_from_first_non_blank_row(self):
        records, _ = rows_to_records([
            (None, None),
            ("Name", "Grade"),
            ("Amina", 10),
        ])
        assert records == [{"Name": "Amina", "Grade": "10"}]

    def test_blank_and_duplicate_headers_named(self):
        records, _ = rows_to_records([
            ("Score", None, "Score"),
            (1, 2, 3),
        ])
        assert records == [{"Score": "1", "column_2": "2", "Score_2": "3"}]

    def test_short_rows_padded_and_blank_rows_skipped(self):
        records, _ = rows_to_records([
            ("A", "B", "C"),
            ("x",),
            (None, None, None),
        ])
        assert records == [{"A": "x", "B": None, "C": None}]

    def test_long_cells_truncated_and_counted(self):
        records, truncated = rows_to_records(
            [("Comment",), ("x" * 50,)],
            cell_max_length=10,
            header_max_length=500,
        )
        assert records[0]["Comment"] == "x" * 10
        assert truncated == 1


class TestPayloadDecoder:

    def test_spreadsheet_detection(self, build_xlsx):
        content = build_xlsx([("a",), (1,)])
        assert is_spreadsheet(content, "application/octet-stream")
        assert is_spreadsheet(b"", XLSX_TYPE)
        assert not is_spreadsheet(b"a,b\n1,2\n", "text/csv")

    def test_xlsx_decoded_with_frame_strategy(self, build_xlsx, assessment_export):
        content = build_xlsx(assessment_export(("R1",), ("R2", "12")))

        result = PayloadDecoder().decode(content, XLSX_TYPE)

        assert result.strategy == "frame"
        assert len(result.records) == 2
        assert result.records[0]["Register Number"] == "R1"
        assert result.records[1]["Grade Name"] == "12"
        assert result.records[0]["Max Value"] == "100"

    def test_fallback_yields_same_records(self, build_xlsx, assessment_export):
        content = build_xlsx(assessment_export(("R1",), ("R2",), ("R3", "12")))
        expected = PayloadDecoder().decode(content, XLSX_TYPE).records

        with patch.object(FrameStrategy, "read_rows", side_effect=ValueError("corrupt styles")):
            result = PayloadDecoder().decode(content, XLSX_TYPE)

        assert result.strategy == "frame_all_sheets"
        assert result.records == expected

    def test_zero_rows_from_frame_tries_next_strategy(self, build_xlsx, assessment_export):
        content = build_xlsx(assessment_export(("R1",), ("R2",)))
        expected = PayloadDecoder().decode(content, XLSX_TYPE).records

        with patch.object(FrameStrategy, "read_rows", return_value=[]) as frame_rows:
            result = PayloadDecoder().decode(content, XLSX_TYPE)

        frame_rows.assert_called_once()
        assert result.strategy == "frame_all_sheets"
        assert result.records == expected
        assert len(result.records) == 2

    def test_streaming_is_last_resort(self, build_xlsx, assessment_export):
        content = build_xlsx(assessment_export(("R1",), ("R2",)))
        expected = PayloadDecoder().decode(content, XLSX_TYPE).records

        decoder = PayloadDecoder()
        with patch.object(FrameStrategy, "read_rows", side_effect=MemoryError()), \
                patch("ingestion.transformers.decoders.PermissiveFrameStrategy.read_rows",
                      side_effect=ValueError("bad sheet")):
            result = decoder.decode(content, XLSX_TYPE)

        assert result.strategy == "streaming"
        assert result.records == expected

    def test_large_payload_skips_frame_strategies(self, build_xlsx):
        content = build_xlsx([("Name",), ("Amina",)])

        result = PayloadDecoder(frame_limit_bytes=10).decode(content, XLSX_TYPE)

        assert result.strategy == StreamingStrategy.name
        assert result.records == [{"Name": "Amina"}]

    def test_every_strategy_failing_raises_parse_error(self):
        garbage = b"PK\x03\x04" + b"\x00" * 64

        with pytest.raises(ParseError) as exc_info:
            PayloadDecoder().decode(garbage, XLSX_TYPE)

        assert set(exc_info.value.context["strategies"]) == {"frame", "frame_all_sheets", "streaming"}

    def test_empty_payload_is_empty_result(self):
        result = PayloadDecoder().decode(b"", "text/csv")
        assert result.records == []
        assert result.strategy == "empty"

    def test_truncation_reported(self, build_xlsx):
        content = build_xlsx([("Comment",), ("y" * 40,)])

        result = PayloadDecoder(cell_max_length=16).decode(content, XLSX_TYPE)

        assert result.records == [{"Comment": "y" * 16}]
        assert result.truncated_cells == 1


class TestDelimitedText:

    def test_bom_stripped_from_header(self):
        content = "\ufeffRegister Number,Grade Name\nR1,10\n".encode("utf-8")

        result = PayloadDecoder().decode(content, "text/csv")

        assert result.strategy == DelimitedTextStrategy.name
        assert result.records == [{"Register Number": "R1", "Grade Name": "10"}]

    def test_ragged_rows(self):
        content = b"A,B,C\n1,2\n3,4,5,6\n"

        records = PayloadDecoder().decode(content, "text/csv").records

        assert records == [
            {"A": "1", "B": "2", "C": None},
            {"A": "3", "B": "4", "C": "5"},
        ]

    def test_escaped_separator(self):
        content = b"Name,Comment\nAmina,good\\, improving\n"

        records = PayloadDecoder().decode(content, "text/csv").records

        assert records == [{"Name": "Amina", "Comment": "good, improving"}]

    def test_values_kept_as_text(self):
        content = b"Register Number,Max Value\n00123,100\n"

        records = PayloadDecoder().decode(content, "text/csv").records

        assert records == [{"Register Number": "00123", "Max Value": "100"}]
