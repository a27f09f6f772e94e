"""
Tests for location normalization.
"""

import unittest

from models import LocationKind, NormalizedLocation
from normalization import (
    LocationNormalizer,
    coerce_remote_flag,
    has_multi_location_signals,
    html_to_text,
    normalize_country,
    normalize_location_raw,
)


class TestComparisonForm(unittest.TestCase):
    """Test the lower-cased comparison form and multi-location signals."""

    def test_bullets_become_pipes(self):
        """Test that bullet separators are treated as pipes."""
        self.assertEqual(
            normalize_location_raw("San Francisco, CA • New York, NY • United States"),
            "san francisco, ca | new york, ny | united states",
        )

    def test_punctuation_collapses(self):
        """Test that other punctuation collapses to single spaces."""
        self.assertEqual(normalize_location_raw("  London (Remote)!! "), "london remote")
        self.assertEqual(normalize_location_raw(None), "")

    def test_city_region_country_is_single(self):
        """Test that three comma segments are still one location."""
        lr = normalize_location_raw("San Francisco, California, United States")
        self.assertFalse(has_multi_location_signals(lr))

    def test_four_segments_are_multi(self):
        """Test that four comma segments mean several locations."""
        self.assertTrue(has_multi_location_signals("a, b, c, d"))

    def test_separators_and_phrases_are_multi(self):
        """Test semicolon, pipe, slash and phrase signals."""
        self.assertTrue(has_multi_location_signals("remote, canada; remote, us"))
        self.assertTrue(has_multi_location_signals("berlin | munich"))
        self.assertTrue(has_multi_location_signals("nyc / sf"))
        self.assertTrue(has_multi_location_signals("multiple locations"))
        self.assertFalse(has_multi_location_signals(""))


class TestLocationNormalizer(unittest.TestCase):
    """Test the full normalizer."""

    def setUp(self):
        self.normalizer = LocationNormalizer()

    def test_empty_input(self):
        """Test that empty input yields a fully null location."""
        for raw in (None, "", "   ", "!!"):
            result = self.normalizer.normalize(raw)
            self.assertEqual(result.kind, LocationKind.UNKNOWN)
            self.assertIsNone(result.normalized_text)
            self.assertIsNone(result.is_remote)

    def test_city_and_state(self):
        """Test that a two-letter final segment is a region, not a country."""
        result = self.normalizer.normalize("San Francisco, CA")
        self.assertEqual(result.city, "San Francisco")
        self.assertEqual(result.region, "CA")
        self.assertIsNone(result.country)
        self.assertEqual(result.kind, LocationKind.UNKNOWN)

    def test_city_region_country(self):
        """Test the three-part shape."""
        result = self.normalizer.normalize("San Francisco, California, United States")
        self.assertEqual(
            (result.city, result.region, result.country),
            ("San Francisco", "California", "United States"),
        )
        self.assertFalse(result.is_multi_location)

    def test_parenthesized_remote(self):
        """Test a trailing (Remote) qualifier."""
        result = self.normalizer.normalize("London (Remote)")
        self.assertEqual(result.kind, LocationKind.REMOTE)
        self.assertTrue(result.is_remote)
        self.assertEqual(result.normalized_text, "London")
        self.assertEqual(result.city, "London")

    def test_remote_us(self):
        """Test a leading Remote qualifier and US-only scope."""
        result = self.normalizer.normalize("Remote - US")
        self.assertEqual(result.remote_region, "us-only")
        self.assertEqual(result.normalized_text, "US")
        self.assertEqual(result.country, "United States")

    def test_hybrid(self):
        """Test that hybrid wins and counts as remote-capable."""
        result = self.normalizer.normalize("Hybrid - Berlin, Germany")
        self.assertEqual(result.kind, LocationKind.HYBRID)
        self.assertTrue(result.is_remote)
        self.assertEqual(result.city, "Berlin")
        self.assertEqual(result.country, "Germany")

    def test_onsite(self):
        """Test an onsite qualifier."""
        result = self.normalizer.normalize("Onsite - Austin, TX")
        self.assertEqual(result.kind, LocationKind.ONSITE)
        self.assertFalse(result.is_remote)
        self.assertEqual((result.city, result.region), ("Austin", "TX"))

    def test_bare_remote(self):
        """Test that a bare qualifier has no place fields."""
        result = self.normalizer.normalize("Remote")
        self.assertEqual(result.kind, LocationKind.REMOTE)
        self.assertEqual(result.normalized_text, "Remote")
        self.assertIsNone(result.city)
        self.assertIsNone(result.country)

    def test_remote_regions(self):
        """Test region labels for remote scopes."""
        self.assertEqual(self.normalizer.normalize("Remote (EMEA)").remote_region, "emea")
        self.assertEqual(self.normalizer.normalize("Anywhere").remote_region, "global")
        self.assertEqual(self.normalizer.normalize("Remote, Canada; Remote, US").remote_region, "canada")

    def test_multi_location_has_no_place_fields(self):
        """Test that multi-location strings keep only the display text."""
        result = self.normalizer.normalize("Berlin • Munich")
        self.assertTrue(result.is_multi_location)
        self.assertEqual(result.normalized_text, "Berlin • Munich")
        self.assertIsNone(result.city)
        self.assertIsNone(result.country)

    def test_remote_is_not_a_substring_match(self):
        """Test that words containing a qualifier do not classify."""
        result = self.normalizer.normalize("Remoteville, Ohio")
        self.assertEqual(result.kind, LocationKind.UNKNOWN)


class TestHelpers(unittest.TestCase):
    """Test country lookup, remote flag coercion and HTML stripping."""

    def test_normalize_country(self):
        """Test aliases, codes and regional labels."""
        self.assertEqual(normalize_country("USA"), "United States")
        self.assertEqual(normalize_country("Deutschland"), "Germany")
        self.assertEqual(normalize_country("CA"), "Canada")
        self.assertIsNone(normalize_country("CA", allow_codes=False))
        self.assertIsNone(normalize_country("EMEA"))
        self.assertIsNone(normalize_country("Atlantis"))

    def test_coerce_remote_flag(self):
        """Test that a parsed remote kind overrides the provider flag."""
        remote = NormalizedLocation(kind=LocationKind.REMOTE)
        onsite = NormalizedLocation(kind=LocationKind.ONSITE)
        unknown = NormalizedLocation()
        self.assertTrue(coerce_remote_flag(False, remote))
        self.assertFalse(coerce_remote_flag(False, unknown))
        self.assertFalse(coerce_remote_flag(None, onsite))
        self.assertIsNone(coerce_remote_flag(None, unknown))

    def test_html_to_text(self):
        """Test raw and entity-escaped HTML."""
        self.assertEqual(html_to_text("<p>A</p><p>B</p>"), "A B")
        self.assertEqual(html_to_text("&lt;p&gt;Hello &amp;amp; world&lt;/p&gt;"), "Hello & world")
        self.assertEqual(html_to_text(None), "")


if __name__ == "__main__":
    unittest.main()
