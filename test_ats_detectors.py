"""
Tests for ATS detection from URLs.
"""

import unittest

from ats_detectors import (
    DetectedAts,
    detect_ats_from_url,
    extract_ashby_slug,
    extract_greenhouse_slug,
    extract_lever_slug,
    infer_website_from_url,
    is_ats_host,
)


class TestDetectAtsFromUrl(unittest.TestCase):
    """Test provider detection and canonical board URLs."""

    def test_known_providers(self):
        """Test the canonical URL for each supported provider."""
        cases = [
            ("https://boards.greenhouse.io/acme/jobs/123", DetectedAts("greenhouse", "https://boards.greenhouse.io/acme")),
            ("https://job-boards.greenhouse.io/acme/jobs/9", DetectedAts("greenhouse", "https://boards.greenhouse.io/acme")),
            ("https://boards.greenhouse.io/embed/job_app?for=acme&token=1", DetectedAts("greenhouse", "https://boards.greenhouse.io/acme")),
            ("https://jobs.lever.co/globex/5f1c-apply", DetectedAts("lever", "https://jobs.lever.co/globex")),
            ("https://jobs.ashbyhq.com/initech/abc-123", DetectedAts("ashby", "https://jobs.ashbyhq.com/initech")),
            ("https://hooli.wd5.myworkdayjobs.com/en-US/careers/job/1", DetectedAts("workday", "https://hooli.wd5.myworkdayjobs.com")),
        ]
        for url, expected in cases:
            with self.subTest(url=url):
                self.assertEqual(detect_ats_from_url(url), expected)

    def test_unknown_or_invalid(self):
        """Test URLs that name no ATS."""
        for url in (None, "", "not a url", "ftp://jobs.lever.co/acme", "https://acme.com/careers", "https://jobs.lever.co/"):
            with self.subTest(url=url):
                self.assertIsNone(detect_ats_from_url(url))


class TestSlugExtraction(unittest.TestCase):

    def test_greenhouse(self):
        """Test every Greenhouse URL shape, with ?for= taking precedence."""
        self.assertEqual(extract_greenhouse_slug("https://boards-api.greenhouse.io/v1/boards/acme/jobs"), "acme")
        self.assertEqual(extract_greenhouse_slug("https://boards.greenhouse.io/acme"), "acme")
        self.assertEqual(extract_greenhouse_slug("https://job-boards.greenhouse.io/acme"), "acme")
        self.assertEqual(extract_greenhouse_slug("https://boards.greenhouse.io/other?for=acme"), "acme")
        self.assertIsNone(extract_greenhouse_slug("https://boards.greenhouse.io/embed/job_board"))
        self.assertIsNone(extract_greenhouse_slug(""))

    def test_lever_and_ashby(self):
        self.assertEqual(extract_lever_slug("https://jobs.lever.co/globex"), "globex")
        self.assertIsNone(extract_lever_slug(None))
        self.assertEqual(extract_ashby_slug("https://jobs.ashbyhq.com/initech?utm=x"), "initech")
        self.assertIsNone(extract_ashby_slug("https://initech.com/jobs"))


class TestWebsiteInference(unittest.TestCase):

    def test_employer_site(self):
        """Test that an employer-hosted apply link yields its origin."""
        self.assertEqual(infer_website_from_url("https://www.hooli.xyz/careers/apply?id=4"), "https://hooli.xyz")

    def test_ats_hosts_say_nothing(self):
        """Test that ATS-hosted links never become a website."""
        self.assertTrue(is_ats_host("https://api.lever.co/v0/postings/acme"))
        self.assertIsNone(infer_website_from_url("https://jobs.lever.co/acme/1"))
        self.assertIsNone(infer_website_from_url("https://acme.wd1.myworkdayjobs.com/x"))
        self.assertIsNone(infer_website_from_url(None))


if __name__ == "__main__":
    unittest.main()
