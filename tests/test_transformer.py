"""
Tests for RecordTransformer.
"""

from datetime import datetime, timezone

import pytest

from jobwaterfall.normalizer.schemas import ExperienceLevel, JobListing, SourceTier, WorkType
from jobwaterfall.normalizer.transformer import RecordTransformer
from jobwaterfall.utils.exceptions import NormalizationError


class TestFromJSearch:
    """Test mapping of JSearch payload items."""

    def test_full_item(self, jsearch_item):
        """Test every mapped field of a complete item."""
        listing = RecordTransformer.from_jsearch(jsearch_item)

        assert listing.job_id == "jsearch_abc123"
        assert listing.title == "Senior Account Executive"
        assert listing.company == "Acme Corp"
        assert listing.location == "Edmonton, AB, CA"
        assert listing.url == "https://acme.example.com/careers/abc123"
        assert listing.salary == "CAD $70,000 - $90,000/year"
        assert listing.posted_date == "2026-01-01"
        assert listing.work_type == WorkType.ONSITE
        assert listing.experience_level == ExperienceLevel.SENIOR
        assert listing.skills == ["CRM", "Negotiation"]
        assert listing.source == SourceTier.PRIMARY_SOURCE
        assert listing.board == "LinkedIn"

    def test_remote_and_no_experience(self, jsearch_item):
        """Test remote flag and the no-experience marker."""
        jsearch_item.update(
            job_is_remote=True,
            job_title="Account Executive",
            job_required_experience={"no_experience_required": True},
        )
        listing = RecordTransformer.from_jsearch(jsearch_item)

        assert listing.work_type == WorkType.REMOTE
        assert listing.experience_level == ExperienceLevel.ENTRY

    def test_missing_salary_and_publisher(self, jsearch_item):
        """Test optional fields fall back cleanly."""
        for key in ("job_min_salary", "job_publisher", "job_posted_at_timestamp"):
            jsearch_item.pop(key)
        listing = RecordTransformer.from_jsearch(jsearch_item)

        assert listing.salary is None
        assert listing.posted_date is None
        assert listing.board == "jsearch"

    def test_missing_employer_raises(self, jsearch_item):
        """Test an item without employer raises NormalizationError."""
        jsearch_item["employer_name"] = None
        with pytest.raises(NormalizationError) as exc_info:
            RecordTransformer.from_jsearch(jsearch_item)
        assert exc_info.value.field == "employer_name"


class TestFromBoardCard:
    """Test mapping of scraped job cards."""

    def test_card_inference(self):
        """Test work type and seniority are inferred from card text."""
        card = {
            "title": "Junior Sales Associate",
            "company": "Best Retail",
            "url": "https://ca.indeed.com/viewjob?jk=1",
            "location": "Remote in Alberta",
            "description": None,
            "salary": None,
            "posted_date": None,
        }
        listing = RecordTransformer.from_board_card(card, "indeed")

        assert listing.source == SourceTier.SCRAPER
        assert listing.board == "indeed"
        assert listing.work_type == WorkType.REMOTE
        assert listing.experience_level == ExperienceLevel.ENTRY
        assert listing.description is None


class TestGenerativeMapping:
    """Test field renaming for generative answers."""

    def test_camel_case_fields(self, generative_items):
        """Test camelCase fields map onto listing fields and validate."""
        mapped = RecordTransformer.generative_to_listing_dict(generative_items[0])
        listing = JobListing.model_validate(mapped)

        assert listing.description == "Outbound calling and pipeline management."
        assert listing.posted_date == "2026-02-20"
        assert listing.work_type == WorkType.ONSITE
        assert listing.experience_level == ExperienceLevel.ENTRY
        assert listing.skill_match_score == 80.0
        assert listing.board == "Indeed"
        assert listing.source == SourceTier.GENERATIVE

    def test_alternate_names_and_cleanup(self):
        """Test alternate names, string skills and percent scores."""
        mapped = RecordTransformer.generative_to_listing_dict(
            {
                "jobTitle": "Sales Rep",
                "employer": "Acme",
                "link": "https://acme.example.com/1",
                "skills": "CRM, Prospecting, ",
                "match_score": "85%",
                "remote": True,
            }
        )

        assert mapped["title"] == "Sales Rep"
        assert mapped["company"] == "Acme"
        assert mapped["url"] == "https://acme.example.com/1"
        assert mapped["skills"] == ["CRM", "Prospecting"]
        assert mapped["skill_match_score"] == 85.0
        assert mapped["work_type"] == "remote"
        assert mapped["board"] == "generative"

    def test_none_values_skipped(self, generative_items):
        """Test None values do not shadow later candidates or defaults."""
        mapped = RecordTransformer.generative_to_listing_dict(generative_items[1])
        assert "salary" not in mapped
        assert "posted_date" not in mapped


class TestHelpers:
    """Test inference and normalization helpers."""

    @pytest.mark.parametrize(
        "title,expected",
        [
            ("VP of Sales", ExperienceLevel.EXECUTIVE),
            ("Sr. Account Manager", ExperienceLevel.SENIOR),
            ("Sales Intern", ExperienceLevel.ENTRY),
            ("Account Manager", None),
        ],
    )
    def test_infer_experience(self, title, expected):
        assert RecordTransformer.infer_experience(title) == expected

    def test_infer_work_type_prefers_hybrid(self):
        """Test hybrid wins when text mentions remote as well."""
        assert RecordTransformer.infer_work_type("Hybrid: 2 days remote") == WorkType.HYBRID
        assert RecordTransformer.infer_work_type("Downtown office") is None

    def test_normalize_timestamp(self):
        """Test seconds, milliseconds and ISO strings."""
        expected = datetime(2026, 1, 1, tzinfo=timezone.utc)

        assert RecordTransformer.normalize_timestamp(1767225600) == expected
        assert RecordTransformer.normalize_timestamp(1767225600000) == expected
        assert RecordTransformer.normalize_timestamp("2026-01-01T00:00:00Z") == expected

        with pytest.raises(NormalizationError):
            RecordTransformer.normalize_timestamp("yesterday")

    @pytest.mark.parametrize(
        "value,expected",
        [("85%", 85.0), ("1,200", 1200.0), ("N/A", None), (True, None), (7, 7.0), ("abc", None)],
    )
    def test_normalize_number(self, value, expected):
        assert RecordTransformer.normalize_number(value) == expected
