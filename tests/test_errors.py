"""Tests for errors, warning accumulation, logging, and parallel helpers."""

import logging

import pytest

from viraqc.errors import (
    InsufficientDataError,
    MalformedRowError,
    MissingInputError,
    SamplesheetError,
    ViraQCError,
    WarningLog,
)
from viraqc.logging import ColoredFormatter, setup_logging
from viraqc.parallel import map_samples


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_hierarchy(self):
        assert issubclass(SamplesheetError, MissingInputError)
        assert issubclass(MalformedRowError, ViraQCError)

    def test_malformed_row_location(self, tmp_path):
        error = MalformedRowError("row skipped", path=tmp_path / "s1.summary.tsv", line_number=3)
        assert str(error) == "s1.summary.tsv:3: row skipped"

    def test_malformed_row_without_location(self):
        assert str(MalformedRowError("row skipped")) == "row skipped"

    def test_insufficient_data(self):
        error = InsufficientDataError("s1")
        assert error.sample_id == "s1"
        assert "s1" in str(error)


class TestWarningLog:
    """Tests for WarningLog."""

    def test_record(self, caplog):
        warnings = WarningLog()
        with caplog.at_level(logging.WARNING):
            warnings.record(MalformedRowError("bad row"))

        assert len(warnings) == 1
        assert warnings.messages == ["bad row"]
        assert "bad row" in caplog.text

    def test_summary(self):
        warnings = WarningLog()
        assert warnings.summary() == "No warnings"

        warnings.record(MalformedRowError("a"))
        warnings.record(MalformedRowError("b"))
        warnings.record(InsufficientDataError("s1"))

        assert warnings.summary() == "3 warning(s), 2 malformed row(s) skipped, 1 sample(s) without data"

    def test_of_type(self):
        warnings = WarningLog()
        warnings.record(MalformedRowError("a"))
        warnings.record(InsufficientDataError("s1"))

        assert len(warnings.of_type(InsufficientDataError)) == 1
        assert len(warnings.of_type(ViraQCError)) == 2

    def test_thread_safe_recording(self):
        warnings = WarningLog()
        map_samples(lambda i: warnings.record(MalformedRowError(str(i))), list(range(50)), threads=8)
        assert len(warnings) == 50


class TestMapSamples:
    """Tests for map_samples."""

    def test_serial(self):
        assert map_samples(lambda x: x * 2, [1, 2, 3]) == [2, 4, 6]

    def test_parallel_keeps_order(self):
        assert map_samples(lambda x: x * 2, list(range(20)), threads=4) == [x * 2 for x in range(20)]

    def test_empty(self):
        assert map_samples(lambda x: x, [], threads=4) == []

    def test_exception_propagates(self):
        def fail_on_three(x):
            if x == 3:
                raise MissingInputError("boom")
            return x

        with pytest.raises(MissingInputError):
            map_samples(fail_on_three, [1, 2, 3, 4], threads=2)


class TestLogging:
    """Tests for logging setup."""

    def test_plain_level_names(self):
        formatter = ColoredFormatter("%(levelname)s %(message)s", use_colors=False)
        record = logging.LogRecord("viraqc", logging.WARNING, __file__, 1, "careful", None, None)

        assert formatter.format(record) == "[WARNING] careful"
        assert record.levelname == "WARNING"

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "run.log"
        logger = setup_logging("viraqc.test", log_file=log_file, use_colors=False)

        logger.info("hello")
        for handler in logger.handlers:
            handler.flush()

        assert "hello" in log_file.read_text()
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

    def test_verbose(self):
        logger = setup_logging("viraqc.test_verbose", verbose=True)
        assert logger.level == logging.DEBUG
