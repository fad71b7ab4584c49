"""
Normalizer Module

Record schemas, schema validation and payload conversion.

Components:
    - schemas: Pydantic models for listings, companies, contacts and queries
    - validator: SchemaValidator with strict and fallback validation
    - transformer: RecordTransformer for upstream payloads
"""

from .schemas import (
    AcquisitionResult,
    CompanyFacts,
    ExperienceLevel,
    HiringContact,
    JobListing,
    JobQuery,
    SourceTier,
    WorkType,
    make_cache_key,
)
from .transformer import RecordTransformer
from .validator import SchemaValidator

__all__ = [
    "AcquisitionResult",
    "CompanyFacts",
    "ExperienceLevel",
    "HiringContact",
    "JobListing",
    "JobQuery",
    "RecordTransformer",
    "SchemaValidator",
    "SourceTier",
    "WorkType",
    "make_cache_key",
]
