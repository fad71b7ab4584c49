"""
Record transformation for multi-source job data.

Transforms raw payloads from the structured job API, job-board cards and
generative responses into standardized JobListing objects.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from jobwaterfall.normalizer.schemas import (
    ExperienceLevel,
    JobListing,
    SourceTier,
    WorkType,
)
from jobwaterfall.utils.exceptions import NormalizationError


class RecordTransformer:
    """
    Transform and normalize job data from multiple upstreams.

    Handles field mapping, type conversion, and work-type/seniority
    inference for the JSearch API, scraped job-board cards and the
    generative service.
    """

    # Generative responses use inconsistent field names
    GENERATIVE_FIELD_MAP = {
        "title": ["title", "job_title", "jobTitle", "position"],
        "company": ["company", "company_name", "companyName", "employer"],
        "location": ["location", "city", "job_location"],
        "url": ["url", "link", "apply_url", "applyUrl", "job_url"],
        "description": ["summary", "description", "snippet"],
        "salary": ["salary", "salary_range", "compensation"],
        "posted_date": ["postedDate", "posted_date", "date_posted", "posted"],
        "work_type": ["workType", "work_type", "remote"],
        "experience_level": ["experienceLevel", "experience_level", "seniority"],
        "skills": ["skills", "required_skills"],
        "skill_match_score": ["skillMatchPercent", "skill_match", "match_score"],
        "board": ["source", "board", "site"],
    }

    SENIOR_WORDS = ("senior", "sr.", "lead")
    EXECUTIVE_WORDS = ("principal", "director", "vp", "chief", "head of")
    ENTRY_WORDS = ("junior", "jr.", "entry", "intern", "graduate")

    @staticmethod
    def from_jsearch(data: dict[str, Any]) -> JobListing:
        """
        Transform one JSearch ``data[]`` item to a JobListing.

        Args:
            data: Raw JSearch job dictionary

        Returns:
            JobListing: Normalized listing tagged ``primary_source``

        Raises:
            NormalizationError: If title or employer is missing
        """
        title = data.get("job_title")
        company = data.get("employer_name")
        if not title or not company:
            raise NormalizationError(
                "Missing required field in JSearch job",
                source="jsearch",
                field="job_title" if not title else "employer_name",
                value=data.get("job_id"),
            )

        employment_type = (data.get("job_employment_type") or "").lower()
        if data.get("job_is_remote"):
            work_type = WorkType.REMOTE
        elif "hybrid" in employment_type:
            work_type = WorkType.HYBRID
        else:
            work_type = WorkType.ONSITE

        location = ", ".join(
            part for part in (data.get("job_city"), data.get("job_state"), data.get("job_country")) if part
        )

        salary = None
        min_salary, max_salary = data.get("job_min_salary"), data.get("job_max_salary")
        if min_salary and max_salary:
            currency = data.get("job_salary_currency") or "USD"
            period = (data.get("job_salary_period") or "YEAR").lower()
            salary = f"{currency} ${min_salary:,.0f} - ${max_salary:,.0f}/{period}"

        experience = (data.get("job_required_experience") or {})
        if experience.get("no_experience_required"):
            level = ExperienceLevel.ENTRY
        else:
            level = RecordTransformer.infer_experience(title) or ExperienceLevel.MID

        posted = data.get("job_posted_at_timestamp") or data.get("job_posted_at_datetime_utc")

        job_id = data.get("job_id")
        return JobListing(
            job_id=f"jsearch_{job_id}" if job_id else None,
            title=title,
            company=company,
            location=location or None,
            url=data.get("job_apply_link") or data.get("job_google_link"),
            description=(data.get("job_description") or "")[:500] or None,
            salary=salary,
            posted_date=RecordTransformer.normalize_timestamp(posted).date().isoformat() if posted else None,
            work_type=work_type,
            experience_level=level,
            skills=list(data.get("job_required_skills") or []),
            source=SourceTier.PRIMARY_SOURCE,
            board=data.get("job_publisher") or "jsearch",
        )

    @staticmethod
    def from_board_card(card: dict[str, Optional[str]], board: str) -> JobListing:
        """
        Transform an extracted job-board card to a JobListing.

        Args:
            card: Field values extracted from the card (missing ones None)
            board: Board name (e.g. 'indeed')

        Returns:
            JobListing: Normalized listing tagged ``scraper``
        """
        snippet = card.get("description") or ""
        return JobListing(
            title=card["title"],
            company=card["company"],
            url=card.get("url"),
            location=card.get("location"),
            description=snippet or None,
            salary=card.get("salary"),
            posted_date=card.get("posted_date"),
            work_type=RecordTransformer.infer_work_type(f"{snippet} {card.get('location') or ''}"),
            experience_level=RecordTransformer.infer_experience(card["title"]),
            source=SourceTier.SCRAPER,
            board=board,
        )

    @staticmethod
    def generative_to_listing_dict(data: dict[str, Any]) -> dict[str, Any]:
        """
        Map a decoded generative item onto JobListing field names.

        The result still has to pass schema validation; nothing is
        coerced beyond renaming and simple type cleanup.
        """
        mapped: dict[str, Any] = {}
        for target, names in RecordTransformer.GENERATIVE_FIELD_MAP.items():
            value = RecordTransformer._extract_field(data, names)
            if value is not None:
                mapped[target] = value

        if isinstance(mapped.get("work_type"), bool):
            mapped["work_type"] = WorkType.REMOTE.value if mapped["work_type"] else None
        if isinstance(mapped.get("skills"), str):
            mapped["skills"] = [s.strip() for s in mapped["skills"].split(",") if s.strip()]
        if "skill_match_score" in mapped:
            mapped["skill_match_score"] = RecordTransformer.normalize_number(mapped["skill_match_score"])

        mapped["source"] = SourceTier.GENERATIVE.value
        mapped.setdefault("board", "generative")
        return mapped

    @staticmethod
    def infer_work_type(text: str) -> Optional[WorkType]:
        """Infer work arrangement from free text."""
        lowered = text.lower()
        if "hybrid" in lowered:
            return WorkType.HYBRID
        if "remote" in lowered or "work from home" in lowered:
            return WorkType.REMOTE
        if "on-site" in lowered or "onsite" in lowered or "in-office" in lowered:
            return WorkType.ONSITE
        return None

    @staticmethod
    def infer_experience(title: str) -> Optional[ExperienceLevel]:
        """Infer seniority from a job title."""
        lowered = title.lower()
        if any(word in lowered for word in RecordTransformer.EXECUTIVE_WORDS):
            return ExperienceLevel.EXECUTIVE
        if any(word in lowered for word in RecordTransformer.SENIOR_WORDS):
            return ExperienceLevel.SENIOR
        if any(word in lowered for word in RecordTransformer.ENTRY_WORDS):
            return ExperienceLevel.ENTRY
        return None

    @staticmethod
    def normalize_timestamp(ts: Any) -> datetime:
        """
        Normalize various timestamp formats to an aware UTC datetime.

        Args:
            ts: Timestamp (datetime, Unix seconds/milliseconds, ISO string)

        Returns:
            datetime: UTC datetime

        Raises:
            NormalizationError: If timestamp cannot be parsed
        """
        if ts is None:
            return datetime.now(timezone.utc)

        if isinstance(ts, datetime):
            if ts.tzinfo is None:
                return ts.replace(tzinfo=timezone.utc)
            return ts.astimezone(timezone.utc)

        if isinstance(ts, (int, float)):
            try:
                # Handle both seconds and milliseconds
                if ts > 1e10:
                    ts = ts / 1000
                return datetime.fromtimestamp(ts, tz=timezone.utc)
            except (ValueError, OSError) as e:
                raise NormalizationError(f"Invalid Unix timestamp: {ts}", value=ts) from e

        if isinstance(ts, str):
            text = ts.strip()
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            try:
                parsed = datetime.fromisoformat(text)
            except ValueError as e:
                raise NormalizationError(f"Unable to parse timestamp: {ts}", value=ts) from e
            return RecordTransformer.normalize_timestamp(parsed)

        raise NormalizationError(f"Unsupported timestamp type: {type(ts)}", value=ts)

    @staticmethod
    def normalize_number(value: Any) -> Optional[float]:
        """
        Normalize numeric text such as '85%' or '1,200' to float.

        Returns:
            Optional[float]: Normalized value or None
        """
        if value is None or value == "" or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return float(value)
        if isinstance(value, str):
            cleaned = re.sub(r"[$,%\s]", "", value)
            if cleaned.lower() in ("n/a", "na", "nan", "null", "none", "-"):
                return None
            try:
                return float(cleaned)
            except ValueError:
                return None
        return None

    @staticmethod
    def _extract_field(data: dict[str, Any], field_names: list[str]) -> Optional[Any]:
        """Return the first non-None value among candidate field names."""
        for field_name in field_names:
            if field_name in data and data[field_name] is not None:
                return data[field_name]
        return None
