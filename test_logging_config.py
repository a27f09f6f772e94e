"""
Tests for structured log formatting.
"""

import logging
import unittest
from unittest.mock import patch

from logging_config import StructuredFormatter, setup_logging


class TestStructuredFormatter(unittest.TestCase):

    def make_record(self, msg, **extra):
        record = logging.LogRecord("ingestion", logging.INFO, __file__, 1, msg, None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_extra_fields_are_appended_sorted(self):
        """Test that extra fields render as sorted key=value pairs."""
        formatter = StructuredFormatter(fmt="%(levelname)s - %(message)s")
        line = formatter.format(self.make_record("Batch ingested", jobs_updated=1, jobs_created=3))
        self.assertEqual(line, "INFO - Batch ingested | jobs_created=3 jobs_updated=1")

    def test_plain_message(self):
        """Test that records without extras are left alone."""
        formatter = StructuredFormatter(fmt="%(message)s")
        self.assertEqual(formatter.format(self.make_record("Expiry cycle finished")), "Expiry cycle finished")


class TestSetupLogging(unittest.TestCase):

    def setUp(self):
        root = logging.getLogger()
        self.saved = (root.level, list(root.handlers))

    def tearDown(self):
        root = logging.getLogger()
        root.setLevel(self.saved[0])
        root.handlers[:] = self.saved[1]

    def test_level_from_environment(self):
        """Test LOG_LEVEL handling and the single stdout handler."""
        with patch.dict("os.environ", {"LOG_LEVEL": "debug"}):
            logger = setup_logging("job_ingest")
        root = logging.getLogger()
        self.assertEqual(logger.name, "job_ingest")
        self.assertEqual(root.level, logging.DEBUG)
        self.assertEqual(len(root.handlers), 1)
        self.assertIsInstance(root.handlers[0].formatter, StructuredFormatter)
        self.assertEqual(logging.getLogger("httpx").level, logging.WARNING)

    def test_unknown_level_falls_back_to_info(self):
        """Test that a bogus LOG_LEVEL does not break startup."""
        with patch.dict("os.environ", {"LOG_LEVEL": "chatty"}):
            setup_logging()
        self.assertEqual(logging.getLogger().level, logging.INFO)


if __name__ == "__main__":
    unittest.main()
