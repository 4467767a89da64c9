"""
Unit tests for modules/reconciliation/extractor.py — extract_usage().

Pure logic tests, no live API required.

Run:
    pytest tests/test_extractor.py -v
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "backend"))

from modules.reconciliation.extractor import extract_usage


GCODE_HEADER = b"""; generated by PrusaSlicer 2.8.1+linux-x64-GTK3
; external perimeters extrusion width = 0.45mm
G1 X10 Y10
"""


class TestPlainGcode:
    def test_single_toolhead(self):
        payload = GCODE_HEADER + b"; filament used [g] = 12.34\n"
        assert extract_usage(payload) == {0: 12.34}

    def test_multi_toolhead_keeps_indexes(self):
        payload = b"; filament used [g]=12.50, 0.00, 3.20\n"
        assert extract_usage(payload) == {0: 12.5, 2: 3.2}

    def test_marker_missing(self):
        assert extract_usage(GCODE_HEADER) == {}

    def test_all_zero_is_no_data(self):
        assert extract_usage(b"; filament used [g]=0.00, 0.00\n") == {}

    def test_unparsable_entry_dropped(self):
        payload = b"; filament used [g]=5.0, ., 2.5\n"
        assert extract_usage(payload) == {0: 5.0, 2: 2.5}

    def test_only_first_marker_counts(self):
        payload = b"; filament used [g]=1.0\n; filament used [g]=99.0\n"
        assert extract_usage(payload) == {0: 1.0}

    def test_str_payload_accepted(self):
        assert extract_usage("; filament used [g]=7.25\n") == {0: 7.25}

    def test_empty_payload(self):
        assert extract_usage(b"") == {}


class TestBinaryGcode:
    def test_marker_inside_binary_blocks(self):
        # bgcode: binary header and compressed blocks around a plain-text metadata block
        payload = (
            b"GCDE\x01\x00\x00\x00\x00\x00\x01\x00\xff\xfe"
            b"printer_model=COREONE\nfilament used [g]=21.07\nfilament used [mm]=7064.51\n"
            b"\x00\x00\x9c\x78\xda\x01\x02"
        )
        assert extract_usage(payload) == {0: 21.07}

    def test_filament_mm_line_is_not_usage(self):
        assert extract_usage(b"filament used [mm]=7064.51\n") == {}


class TestEntriesAfterBadValues:
    def test_negative_entry_dropped(self):
        assert extract_usage(b"; filament used [g]=12.5,-1,3.2\n") == {0: 12.5, 2: 3.2}

    def test_word_entry_dropped(self):
        assert extract_usage(b"; filament used [g]=12.5,n/a,3.2\n") == {0: 12.5, 2: 3.2}

    def test_non_finite_entries_dropped(self):
        assert extract_usage(b"; filament used [g]=nan,inf,4.0\n") == {2: 4.0}

    def test_capture_stops_at_line_end(self):
        payload = b"; filament used [g]=1.5\n; 2.5, 3.5\n"
        assert extract_usage(payload) == {0: 1.5}
