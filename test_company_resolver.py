"""
Tests for company name sanitization and canonical company resolution.
"""

import unittest

from company_resolver import (
    CompanyResolver,
    clean_company_name,
    sanitize_board_company_name,
    sanitize_company_name,
    slugify,
)
from db_models import Company
from repositories import InMemoryCompanyRepository


class TestCleanCompanyName(unittest.TestCase):
    """Test first-pass cleanup."""

    def test_strips_work_arrangement_suffix(self):
        """Test that trailing arrangement words are removed."""
        self.assertEqual(clean_company_name("Acme Inc - Remote"), "Acme Inc")
        self.assertEqual(clean_company_name("Globex | Full-time"), "Globex")

    def test_strips_trailing_parenthetical(self):
        """Test that a trailing parenthetical is removed."""
        self.assertEqual(clean_company_name("Globex (Remote)"), "Globex")

    def test_collapses_whitespace(self):
        """Test whitespace collapsing."""
        self.assertEqual(clean_company_name("  Initech   Labs "), "Initech Labs")

    def test_rejects_salary_strings(self):
        """Test that salary strings are not company names."""
        self.assertIsNone(clean_company_name("$240k – $290k USD"))
        self.assertIsNone(clean_company_name("€90k-110k"))

    def test_rejects_banned_and_empty(self):
        """Test banned words, empty input and names without letters."""
        for raw in (None, "", "Remote", "full time", "Marketing", "X", "123"):
            self.assertIsNone(clean_company_name(raw), raw)

    def test_overlong_name_keeps_leading_segment(self):
        """Test that an overlong name is cut at the first " - " separator."""
        self.assertEqual(clean_company_name("Acme Corp - " + "x" * 90), "Acme Corp")
        self.assertEqual(sanitize_company_name("Acme Corp - " + "x" * 90), "Acme Corp")

    def test_overlong_name_without_usable_segment(self):
        """Test that an overlong name with no short leading segment is rejected."""
        self.assertIsNone(clean_company_name("Acme " + "x" * 90))
        self.assertIsNone(sanitize_company_name("Acme " + "x" * 90))
        self.assertIsNone(clean_company_name("42 - " + "x" * 90))
        self.assertIsNone(clean_company_name("A - " + "x" * 90))


class TestSanitizeBoardCompanyName(unittest.TestCase):
    """Test board-specific rejection rules."""

    def test_rejects_board_brands(self):
        """Test that the board's own brand is not an employer."""
        self.assertIsNone(sanitize_board_company_name("Remote OK"))
        self.assertIsNone(sanitize_board_company_name("Remotive"))
        self.assertIsNone(sanitize_board_company_name("RemoteOK Jobs"))

    def test_extracts_company_after_at(self):
        """Test "<title> at <company>" extraction."""
        self.assertEqual(sanitize_board_company_name("Senior Engineer at Acme"), "Acme")

    def test_rejects_bare_job_titles(self):
        """Test that job titles are rejected."""
        self.assertIsNone(sanitize_board_company_name("Senior Backend Engineer"))
        self.assertIsNone(sanitize_board_company_name("Product Manager"))

    def test_keeps_titles_with_org_suffix(self):
        """Test that an organization suffix rescues a title-like name."""
        self.assertEqual(sanitize_board_company_name("Sales Systems Inc"), "Sales Systems Inc")
        self.assertEqual(sanitize_board_company_name("Design Labs"), "Design Labs")

    def test_full_pipeline(self):
        """Test cleanup and board rules together."""
        self.assertEqual(sanitize_company_name("Acme Inc - Remote"), "Acme Inc")
        self.assertIsNone(sanitize_company_name("Remote"))
        self.assertIsNone(sanitize_company_name("Staff Engineer (Remote)"))


class TestSlugify(unittest.TestCase):
    """Test slug generation."""

    def test_slugify(self):
        """Test lower-casing, ampersands and fallbacks."""
        self.assertEqual(slugify("Acme Inc."), "acme-inc")
        self.assertEqual(slugify("AT&T Labs"), "at-and-t-labs")
        self.assertEqual(slugify("!!!"), "company")


class TestCompanyResolver(unittest.TestCase):
    """Test find-or-create and fill-only-null behavior."""

    def setUp(self):
        self.repo = InMemoryCompanyRepository()
        self.resolver = CompanyResolver(self.repo)

    def test_creates_company_with_slug(self):
        """Test creation of a new company."""
        company = self.resolver.resolve("Acme", source="board:remoteok")
        self.assertEqual(company.name, "Acme")
        self.assertEqual(company.slug, "acme")
        self.assertIsNotNone(self.repo.find_by_name("acme"))

    def test_same_name_resolves_to_same_company(self):
        """Test case-insensitive matching."""
        first = self.resolver.resolve("Acme")
        second = self.resolver.resolve("ACME")
        self.assertEqual(first.id, second.id)

    def test_slug_collisions_get_suffixes(self):
        """Test acme, acme-2, acme-3."""
        self.resolver.resolve("Acme")
        second = self.resolver.resolve("Acme!")
        self.assertEqual(second.slug, "acme-2")
        self.assertEqual(self.resolver.ensure_unique_slug("ACME"), "acme-3")

    def test_rejected_name_creates_nothing(self):
        """Test that rejected names return None."""
        self.assertIsNone(self.resolver.resolve("$240k – $290k USD"))
        self.assertIsNone(self.resolver.resolve("Remote"))
        self.assertFalse(self.repo.slug_exists("remote"))

    def test_fills_only_null_fields(self):
        """Test that stored values are never overwritten."""
        created = self.resolver.resolve("Acme", website_url="https://acme.com")
        updated = self.resolver.resolve(
            "Acme",
            website_url="https://other.example",
            apply_url="https://boards.greenhouse.io/acme/jobs/123",
        )
        self.assertEqual(updated.id, created.id)
        self.assertEqual(updated.website, "https://acme.com")
        self.assertEqual(updated.ats_provider, "greenhouse")
        self.assertEqual(updated.ats_url, "https://boards.greenhouse.io/acme")

    def test_matches_by_ats_url(self):
        """Test that a known board URL finds the company under another name."""
        existing = self.repo.create(Company(
            name="Acme Corp",
            slug="acme-corp",
            ats_provider="lever",
            ats_url="https://jobs.lever.co/acme",
        ))
        resolved = self.resolver.resolve("Acme Corporation", ats_url="https://jobs.lever.co/acme/")
        self.assertEqual(resolved.id, existing.id)
        self.assertEqual(resolved.name, "Acme Corp")

    def test_infers_website_from_apply_url(self):
        """Test website inference from a non-ATS apply link."""
        company = self.resolver.resolve("Hooli", apply_url="https://www.hooli.xyz/careers/1")
        self.assertEqual(company.website, "https://hooli.xyz")
        self.assertIsNone(company.ats_provider)


if __name__ == "__main__":
    unittest.main()
