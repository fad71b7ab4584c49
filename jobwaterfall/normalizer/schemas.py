"""
Data schemas for acquired records.

Pydantic models providing type safety, validation, and serialization
for records gathered from heterogeneous tiers.
"""

import hashlib
import json
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from pydantic import BaseModel, Field, field_validator, model_validator

from jobwaterfall.config import AcquisitionConfig


def utc_now() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class SourceTier(str, Enum):
    """Waterfall tier that produced a record or result."""

    FAST_CACHE = "fast_cache"
    DISTRIBUTED_CACHE = "distributed_cache"
    PERSISTENT_STORE = "persistent_store"
    PRIMARY_SOURCE = "primary_source"
    SCRAPER = "scraper"
    GENERATIVE = "generative"
    HYBRID = "hybrid"


class WorkType(str, Enum):
    """Work arrangement of a listing."""

    REMOTE = "remote"
    HYBRID = "hybrid"
    ONSITE = "onsite"
    ANY = "any"


class ExperienceLevel(str, Enum):
    """Seniority of a listing."""

    ENTRY = "entry"
    MID = "mid"
    SENIOR = "senior"
    EXECUTIVE = "executive"


def canonical_url(url: Optional[str]) -> Optional[str]:
    """
    Normalize a URL for duplicate detection.

    Lower-cases the scheme and host, drops the fragment, trailing slash
    and tracking parameters (utm_*), and sorts the remaining query.

    Example:
        >>> canonical_url("https://CA.Indeed.com/viewjob/?utm_source=x&jk=1#top")
        'https://ca.indeed.com/viewjob?jk=1'
    """
    if not url or not url.strip():
        return None
    parts = urlsplit(url.strip())
    if not parts.netloc:
        return url.strip().lower().rstrip("/")
    path = parts.path.rstrip("/")
    query = urlencode(sorted(
        (k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not k.lower().startswith("utm_")
    ))
    return urlunsplit((parts.scheme.lower(), parts.netloc.lower(), path, query, ""))


def _squash(value: Optional[str]) -> str:
    return re.sub(r"\s+", " ", (value or "").strip().lower())


class JobListing(BaseModel):
    """
    Normalized job listing record.

    Standardizes listings from the structured API, job boards and the
    generative service into one comparable shape. Every listing carries
    the tier that produced it and when it was fetched.
    """

    # Required fields
    title: str = Field(..., description="Job title", min_length=1)
    company: str = Field(..., description="Hiring company", min_length=1)

    # Descriptive fields
    url: Optional[str] = Field(None, description="Listing or apply URL")
    job_id: Optional[str] = Field(None, description="Source-specific identifier")
    location: Optional[str] = Field(None, description="City, region or 'Remote'")
    description: Optional[str] = Field(None, description="Snippet or summary")
    salary: Optional[str] = Field(None, description="Salary text as advertised")
    posted_date: Optional[str] = Field(None, description="Posting date as reported")
    work_type: Optional[WorkType] = Field(None, description="Work arrangement")
    experience_level: Optional[ExperienceLevel] = Field(None, description="Seniority")
    skills: list[str] = Field(default_factory=list, description="Skills mentioned")
    skill_match_score: Optional[float] = Field(None, description="Skill match 0-100", ge=0, le=100)

    # Provenance
    source: SourceTier = Field(SourceTier.PRIMARY_SOURCE, description="Tier that produced the record")
    board: Optional[str] = Field(None, description="Job board or provider name")
    fetched_at: datetime = Field(default_factory=utc_now, description="Fetch timestamp (UTC)")

    @field_validator("title", "company")
    @classmethod
    def strip_required(cls, v: str) -> str:
        """Ensure required text fields are non-blank."""
        if not v or not v.strip():
            raise ValueError("must not be blank")
        return v.strip()

    @field_validator("url")
    @classmethod
    def blank_url_to_none(cls, v: Optional[str]) -> Optional[str]:
        """Treat blank URLs as missing."""
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("work_type", mode="before")
    @classmethod
    def coerce_work_type(cls, v: Any) -> Any:
        """Accept loose spellings such as 'On-site' or 'Remote'."""
        if isinstance(v, str):
            lowered = v.strip().lower().replace("-", "").replace(" ", "")
            if not lowered:
                return None
            if lowered in ("onsite", "inoffice", "office"):
                return WorkType.ONSITE
            if lowered not in {w.value for w in WorkType}:
                return None
            return lowered
        return v

    @field_validator("experience_level", mode="before")
    @classmethod
    def coerce_experience(cls, v: Any) -> Any:
        """Map common seniority words onto ExperienceLevel."""
        if isinstance(v, str):
            lowered = v.strip().lower()
            if not lowered:
                return None
            for word, level in (
                ("exec", ExperienceLevel.EXECUTIVE),
                ("director", ExperienceLevel.EXECUTIVE),
                ("senior", ExperienceLevel.SENIOR),
                ("lead", ExperienceLevel.SENIOR),
                ("entry", ExperienceLevel.ENTRY),
                ("junior", ExperienceLevel.ENTRY),
                ("mid", ExperienceLevel.MID),
            ):
                if word in lowered:
                    return level
            return None
        return v

    @field_validator("fetched_at")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Assume UTC for naive timestamps."""
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    def dedup_key(self) -> str:
        """
        Key used to collapse duplicates across tiers.

        The canonical URL when present, otherwise the lower-cased
        ``title|company|location`` composite.
        """
        url_key = canonical_url(self.url)
        if url_key:
            return url_key
        return "|".join((_squash(self.title), _squash(self.company), _squash(self.location)))

    def with_source(self, source: SourceTier) -> "JobListing":
        """Copy of this listing attributed to another tier."""
        return self.model_copy(update={"source": source})

    def to_dict(self) -> dict[str, Any]:
        """JSON-compatible dictionary (enums and datetimes serialized)."""
        return self.model_dump(mode="json")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "JobListing":
        """Create instance from dictionary."""
        return cls.model_validate(data)

    def __repr__(self) -> str:
        return (
            f"JobListing(title={self.title!r}, company={self.company!r}, "
            f"source={self.source.value})"
        )


class CompanyFacts(BaseModel):
    """Facts about a hiring company."""

    name: str = Field(..., min_length=1)
    website: Optional[str] = None
    industry: Optional[str] = None
    headquarters: Optional[str] = None
    employee_count: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None
    source: SourceTier = SourceTier.GENERATIVE
    fetched_at: datetime = Field(default_factory=utc_now)

    def dedup_key(self) -> str:
        return canonical_url(self.website) or _squash(self.name)


class HiringContact(BaseModel):
    """A person to contact about openings at a company."""

    name: str = Field(..., min_length=1)
    company: str = Field(..., min_length=1)
    title: Optional[str] = None
    email: Optional[str] = None
    linkedin_url: Optional[str] = None
    source: SourceTier = SourceTier.GENERATIVE
    fetched_at: datetime = Field(default_factory=utc_now)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        """Reject obviously malformed addresses."""
        if v is None or not v.strip():
            return None
        v = v.strip().lower()
        if not re.fullmatch(r"[^@\s]+@[^@\s]+\.[^@\s]+", v):
            raise ValueError("invalid email address")
        return v

    def dedup_key(self) -> str:
        if self.email:
            return self.email
        return f"{_squash(self.name)}|{_squash(self.company)}"


class JobQuery(BaseModel):
    """Search parameters for one acquisition call."""

    keywords: list[str] = Field(..., min_length=1, description="Search keywords")
    location: str = Field(..., min_length=1, description="Location text")
    radius_km: int = Field(AcquisitionConfig.DEFAULT_RADIUS_KM, ge=0)
    work_type: WorkType = Field(WorkType.ANY)
    experience_level: Optional[ExperienceLevel] = None
    max_results: int = Field(AcquisitionConfig.DEFAULT_MAX_RESULTS, ge=1)

    @field_validator("keywords")
    @classmethod
    def clean_keywords(cls, v: list[str]) -> list[str]:
        """Drop blank keywords while keeping caller order."""
        cleaned = [k.strip() for k in v if k and k.strip()]
        if not cleaned:
            raise ValueError("at least one non-blank keyword is required")
        return cleaned

    @model_validator(mode="after")
    def strip_location(self) -> "JobQuery":
        self.location = self.location.strip()
        return self

    def normalized_keywords(self) -> list[str]:
        """Lower-cased, de-duplicated, sorted keywords."""
        return sorted({k.lower() for k in self.keywords})

    def top_keywords(self, limit: int) -> list[str]:
        """First ``limit`` distinct keywords in caller order."""
        seen: list[str] = []
        for keyword in self.keywords:
            if keyword.lower() not in (s.lower() for s in seen):
                seen.append(keyword)
        return seen[:limit]

    def search_key(self) -> str:
        """
        Human-readable search key.

        Example:
            >>> JobQuery(keywords=["Sales", "b2b"], location="Edmonton, AB").search_key()
            'jobs:b2b,sales:edmonton, ab:any:70'
        """
        return (
            f"jobs:{','.join(self.normalized_keywords())}:{self.location.lower()}:"
            f"{self.work_type.value}:{self.radius_km}"
        )

    def cache_key(self) -> str:
        """Stable hashed key shared by both cache tiers."""
        return make_cache_key("jobs", self.cache_params())

    def cache_params(self) -> dict[str, Any]:
        return {
            "keywords": self.keywords,
            "location": self.location,
            "work_type": self.work_type.value,
            "radius_km": self.radius_km,
        }


def _normalize_for_key(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().lower()
    if isinstance(value, Enum):
        return _normalize_for_key(value.value)
    if isinstance(value, dict):
        return {str(k): _normalize_for_key(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        items = [_normalize_for_key(v) for v in value]
        return sorted(items, key=lambda item: json.dumps(item, sort_keys=True, default=str))
    return value


def make_cache_key(prefix: str, params: dict[str, Any]) -> str:
    """
    Derive a stable cache key from request parameters.

    Strings are lower-cased and stripped, list fields sorted and mapping
    keys ordered, so semantically identical requests share a key.

    Args:
        prefix: Namespace for the key (e.g. 'jobs')
        params: Request parameters

    Returns:
        ``'<prefix>:<sha256 hex>'``

    Example:
        >>> a = make_cache_key("jobs", {"keywords": ["Sales", "B2B"], "location": "Edmonton"})
        >>> b = make_cache_key("jobs", {"location": "edmonton ", "keywords": ["b2b", "sales"]})
        >>> a == b
        True
    """
    canonical = json.dumps(_normalize_for_key(params), sort_keys=True, default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{prefix}:{digest}"


class AcquisitionResult(BaseModel):
    """Outcome of one waterfall run."""

    records: list[JobListing] = Field(default_factory=list)
    source_tier: SourceTier
    cached: bool = False
    timed_out: bool = False
    search_count: Optional[int] = Field(None, description="Store usage counter on store hits")
    tier_failures: dict[str, str] = Field(default_factory=dict)
    tiers_used: list[SourceTier] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=utc_now)

    @property
    def total(self) -> int:
        return len(self.records)

    @property
    def degraded(self) -> bool:
        """True when the result came back short of a confident answer."""
        return self.timed_out or bool(self.tier_failures)

    def __repr__(self) -> str:
        return (
            f"AcquisitionResult(records={len(self.records)}, "
            f"source_tier={self.source_tier.value}, cached={self.cached}, "
            f"timed_out={self.timed_out})"
        )
