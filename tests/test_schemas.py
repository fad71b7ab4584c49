"""
Tests for record schemas, cache keys and the SchemaValidator.
"""

from datetime import datetime, timezone

import pytest
from pydantic import ValidationError as PydanticValidationError

from jobwaterfall.normalizer.schemas import (
    AcquisitionResult,
    ExperienceLevel,
    HiringContact,
    JobListing,
    JobQuery,
    SourceTier,
    WorkType,
    canonical_url,
    make_cache_key,
)
from jobwaterfall.normalizer.validator import SchemaValidator
from jobwaterfall.utils.exceptions import ValidationError


class TestJobListing:
    """Test JobListing validation and dedup keys."""

    def test_minimal_listing(self):
        """Test title and company are enough and defaults are applied."""
        listing = JobListing(title="  Sales Rep ", company="Acme")

        assert listing.title == "Sales Rep"
        assert listing.source == SourceTier.PRIMARY_SOURCE
        assert listing.skills == []
        assert listing.fetched_at.tzinfo is not None

    def test_blank_title_rejected(self):
        """Test a whitespace-only title is invalid."""
        with pytest.raises(PydanticValidationError):
            JobListing(title="   ", company="Acme")

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("On-site", WorkType.ONSITE),
            ("Remote", WorkType.REMOTE),
            ("hybrid", WorkType.HYBRID),
            ("flexible", None),
        ],
    )
    def test_work_type_coercion(self, raw, expected):
        """Test loose work-type spellings map onto WorkType."""
        assert JobListing(title="Rep", company="Acme", work_type=raw).work_type == expected

    def test_experience_coercion(self):
        """Test seniority words map onto ExperienceLevel."""
        assert JobListing(title="Rep", company="Acme", experience_level="Entry level").experience_level == ExperienceLevel.ENTRY
        assert JobListing(title="Rep", company="Acme", experience_level="Director").experience_level == ExperienceLevel.EXECUTIVE

    def test_dedup_key_prefers_canonical_url(self):
        """Test listings with equivalent URLs share a dedup key."""
        a = JobListing(title="Rep", company="Acme", url="https://CA.indeed.com/viewjob?jk=1&utm_source=x")
        b = JobListing(title="Sales Rep", company="Acme Inc", url="https://ca.indeed.com/viewjob/?jk=1#apply")

        assert a.dedup_key() == b.dedup_key()

    def test_dedup_key_keeps_identifying_query(self):
        """Test different job ids on the same path stay distinct."""
        a = JobListing(title="Rep", company="Acme", url="https://ca.indeed.com/viewjob?jk=1")
        b = JobListing(title="Rep", company="Acme", url="https://ca.indeed.com/viewjob?jk=2")

        assert a.dedup_key() != b.dedup_key()

    def test_dedup_key_composite_without_url(self):
        """Test the title/company/location composite is case and space insensitive."""
        a = JobListing(title="Sales  Rep", company="ACME", location="Edmonton, AB")
        b = JobListing(title="sales rep", company="acme", location=" edmonton, ab ")

        assert a.dedup_key() == b.dedup_key() == "sales rep|acme|edmonton, ab"

    def test_with_source_copies(self):
        """Test with_source returns a retagged copy."""
        listing = JobListing(title="Rep", company="Acme")
        copy = listing.with_source(SourceTier.SCRAPER)

        assert copy.source == SourceTier.SCRAPER
        assert listing.source == SourceTier.PRIMARY_SOURCE

    def test_dict_round_trip(self):
        """Test to_dict output is JSON-friendly and restores an equal listing."""
        listing = JobListing(
            title="Rep",
            company="Acme",
            work_type="remote",
            fetched_at=datetime(2026, 3, 1, tzinfo=timezone.utc),
        )
        data = listing.to_dict()

        assert data["work_type"] == "remote"
        assert data["source"] == "primary_source"
        assert isinstance(data["fetched_at"], str)
        assert JobListing.from_dict(data) == listing


class TestOtherRecords:
    """Test contact and result models."""

    def test_contact_email_validated(self):
        """Test malformed emails are rejected and valid ones lower-cased."""
        contact = HiringContact(name="Dana", company="Acme", email="Dana@Acme.COM")
        assert contact.email == "dana@acme.com"
        assert contact.dedup_key() == "dana@acme.com"

        with pytest.raises(PydanticValidationError):
            HiringContact(name="Dana", company="Acme", email="not-an-email")

    def test_result_degraded(self):
        """Test degraded reflects timeouts and tier failures."""
        clean = AcquisitionResult(source_tier=SourceTier.PRIMARY_SOURCE)
        failed = AcquisitionResult(source_tier=SourceTier.SCRAPER, tier_failures={"primary_source[sales]": "boom"})

        assert clean.degraded is False
        assert failed.degraded is True
        assert AcquisitionResult(source_tier=SourceTier.HYBRID, timed_out=True).degraded is True


class TestJobQuery:
    """Test query normalization and keys."""

    def test_blank_keywords_dropped(self):
        """Test blank keywords are removed and an all-blank list is rejected."""
        assert JobQuery(keywords=[" sales ", ""], location="Edmonton").keywords == ["sales"]

        with pytest.raises(PydanticValidationError):
            JobQuery(keywords=["  "], location="Edmonton")

    def test_cache_key_order_and_case_insensitive(self):
        """Test semantically equal queries share a cache key."""
        a = JobQuery(keywords=["Sales", "B2B"], location="Edmonton, AB")
        b = JobQuery(keywords=["b2b", "sales"], location=" edmonton, ab ")

        assert a.cache_key() == b.cache_key()
        assert a.cache_key().startswith("jobs:")

    def test_cache_key_differs_by_work_type(self):
        """Test a different work type yields a different key."""
        a = JobQuery(keywords=["sales"], location="Edmonton")
        b = JobQuery(keywords=["sales"], location="Edmonton", work_type=WorkType.REMOTE)

        assert a.cache_key() != b.cache_key()

    def test_search_key(self):
        """Test the readable search key."""
        query = JobQuery(keywords=["Sales", "b2b"], location="Edmonton, AB")
        assert query.search_key() == "jobs:b2b,sales:edmonton, ab:any:70"

    def test_top_keywords_dedupes_case_insensitively(self):
        """Test top_keywords keeps caller order and skips repeats."""
        query = JobQuery(keywords=["Sales", "sales", "CRM", "B2B"], location="Edmonton")
        assert query.top_keywords(2) == ["Sales", "CRM"]

    def test_make_cache_key_nested(self):
        """Test nested mappings and lists are canonicalized."""
        a = make_cache_key("x", {"filters": {"b": ["Two", "one"], "a": 1}})
        b = make_cache_key("x", {"filters": {"a": 1, "b": ["one", "two"]}})
        assert a == b

    def test_canonical_url_edge_cases(self):
        """Test empty and relative URLs."""
        assert canonical_url(None) is None
        assert canonical_url("  ") is None
        assert canonical_url("/ViewJob/") == "/viewjob"


class TestSchemaValidator:
    """Test strict and fallback validation."""

    @pytest.fixture
    def validator(self):
        return SchemaValidator()

    def test_valid_record(self, validator):
        """Test a conforming dict validates into the registered model."""
        listing = validator.validate({"title": "Rep", "company": "Acme", "skills": ["CRM"]}, "job_listing")

        assert isinstance(listing, JobListing)
        assert validator.get_statistics()["validated"] == 1

    def test_every_violation_reported(self, validator):
        """Test all violations are listed with their paths."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate({"title": "", "skills": ["ok", 3], "skill_match_score": 150}, "job_listing")

        paths = {path for path, _ in exc_info.value.violations}
        assert {"title", "company", "skills.1", "skill_match_score"} <= paths
        assert exc_info.value.shape == "job_listing"

    def test_non_dict_rejected(self, validator):
        """Test non-object input reports a root violation."""
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(["not", "a", "dict"], "job_listing")
        assert exc_info.value.violations[0][0] == "<root>"

    def test_fallback_returned_and_logged(self, validator, caplog):
        """Test validate_with_fallback returns the fallback and logs a warning."""
        with caplog.at_level("WARNING"):
            result = validator.validate_with_fallback({"title": "Rep"}, "job_listing", None)

        assert result is None
        assert "fallback" in caplog.text
        assert validator.get_statistics()["fallbacks"] == 1

    def test_soft_validate(self, validator):
        """Test soft_validate reports without raising."""
        ok, violations = validator.soft_validate({"title": "Rep", "company": "Acme"}, "job_listing")
        assert ok is True and violations == []

        ok, violations = validator.soft_validate({}, "job_listing")
        assert ok is False
        assert len(violations) == 2

    def test_unknown_shape(self, validator):
        """Test an unregistered shape raises KeyError."""
        with pytest.raises(KeyError):
            validator.validate({}, "nope")

    def test_register_shape(self, validator):
        """Test custom shapes can be registered."""
        validator.register("contact", HiringContact)
        assert validator.has_shape("contact")
        assert "contact" in validator.list_shapes()
