"""
Generative job source.

The last waterfall tier: asks the generative text service for listings,
decodes its free-text answer with the ResponseDecoder and keeps only
items that pass the ``job_listing`` schema.
"""

import logging
from typing import Any, Optional

from jobwaterfall.clients.perplexity import PerplexityClient
from jobwaterfall.config import DecoderConfig
from jobwaterfall.normalizer.schemas import JobListing, JobQuery, SourceTier, WorkType
from jobwaterfall.normalizer.transformer import RecordTransformer
from jobwaterfall.normalizer.validator import SchemaValidator
from jobwaterfall.parsers.response_decoder import (
    JOB_LISTING_SHAPE,
    DecodeFailure,
    DecodeResult,
    DecodeSuccess,
    ResponseDecoder,
)
from jobwaterfall.utils.exceptions import AcquisitionError, DecodeError

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = (
    "You are a job search assistant with web access. "
    "Return only a valid JSON array with no markdown and no commentary."
)

JOB_PROMPT_TEMPLATE = """Find up to {limit} current job postings for: {keywords}
Location: {location} (within {radius_km} km){work_type_line}

Return a JSON array where each item has exactly these fields:
  "title", "company", "location", "url", "summary", "salary", "postedDate",
  "source", "skillMatchPercent", "skills", "workType", "experienceLevel"

Rules:
- Only include real postings with a direct URL to the posting.
- "skills" is an array of strings; "skillMatchPercent" is a number 0-100.
- "workType" is one of remote, hybrid, onsite.
- Use null for unknown values."""


class GenerativeJobSource:
    """
    Turn generative service answers into validated job listings.

    A salvaged decode whose completeness falls below
    ``min_completeness`` triggers one re-request; the better of the two
    answers is used.

    Example:
        >>> source = GenerativeJobSource(PerplexityClient())
        >>> listings = await source.search(JobQuery(keywords=["sales"], location="Edmonton, AB"), limit=10)
    """

    def __init__(
        self,
        client: PerplexityClient,
        decoder: Optional[ResponseDecoder] = None,
        validator: Optional[SchemaValidator] = None,
        min_completeness: Optional[float] = None,
        cost_tracker: Optional[Any] = None,
    ):
        """
        Initialize source.

        Args:
            client: Generative text service client
            decoder: Response decoder
            validator: Schema validator providing the job_listing shape
            min_completeness: Completeness below which a salvage is re-requested
            cost_tracker: Budget tracker charged once per completion request
        """
        self.client = client
        self.cost_tracker = cost_tracker
        self.decoder = decoder or ResponseDecoder()
        self.validator = validator or SchemaValidator()
        self.min_completeness = (
            min_completeness if min_completeness is not None else DecoderConfig.MIN_COMPLETENESS
        )
        self._stats = {
            "requests": 0,
            "re_requests": 0,
            "decode_failures": 0,
            "items_decoded": 0,
            "items_rejected": 0,
        }

    @staticmethod
    def build_prompt(query: JobQuery, limit: int) -> str:
        """User prompt asking for ``limit`` listings matching ``query``."""
        work_type_line = ""
        if query.work_type != WorkType.ANY:
            work_type_line = f"\nWork arrangement: {query.work_type.value}"
        if query.experience_level is not None:
            work_type_line += f"\nExperience level: {query.experience_level.value}"
        return JOB_PROMPT_TEMPLATE.format(
            limit=limit,
            keywords=", ".join(query.keywords),
            location=query.location,
            radius_km=query.radius_km,
            work_type_line=work_type_line,
        )

    async def _ask(self, prompt: str) -> tuple[str, DecodeResult]:
        tier = SourceTier.GENERATIVE.value
        if self.cost_tracker is not None:
            self.cost_tracker.can_make_request(tier)

        self._stats["requests"] += 1
        try:
            completion = await self.client.complete(SYSTEM_PROMPT, prompt)
        except Exception:
            if self.cost_tracker is not None:
                self.cost_tracker.record_request(tier, "job_search", success=False)
            raise
        if self.cost_tracker is not None:
            self.cost_tracker.record_request(tier, "job_search", success=True)

        text = completion.content
        return text, self.decoder.parse(text, allow_partial=True, shape=JOB_LISTING_SHAPE)

    def _needs_retry(self, text: str, result: DecodeResult) -> bool:
        if isinstance(result, DecodeFailure):
            return True
        return result.salvaged and self.decoder.completeness(text) < self.min_completeness

    def _item_count(self, result: DecodeResult) -> int:
        if isinstance(result, DecodeSuccess):
            return len(self.decoder.ensure_list(result.value))
        return -1

    async def search(self, query: JobQuery, limit: int) -> list[JobListing]:
        """
        Ask for listings and return the ones that validate.

        Args:
            query: Search query
            limit: Number of listings requested

        Returns:
            Generative-tier listings (possibly empty)

        Raises:
            DecodeError: Neither answer could be decoded
            UpstreamError: The service call failed
        """
        prompt = self.build_prompt(query, limit)
        text, result = await self._ask(prompt)

        if self._needs_retry(text, result):
            self._stats["re_requests"] += 1
            logger.info(
                "Generative answer incomplete; requesting again",
                extra={"completeness": self.decoder.completeness(text), "ok": result.ok},
            )
            try:
                retry_text, retry_result = await self._ask(prompt)
            except AcquisitionError as e:
                logger.warning(f"Re-request failed, keeping first answer: {e}")
            else:
                if self._item_count(retry_result) >= self._item_count(result):
                    text, result = retry_text, retry_result

        if isinstance(result, DecodeFailure):
            self._stats["decode_failures"] += 1
            raise DecodeError(attempts=list(result.attempts), raw_preview=result.raw_preview)

        items = self.decoder.ensure_list(result.value)
        self._stats["items_decoded"] += len(items)

        listings = []
        for item in items:
            if not isinstance(item, dict):
                self._stats["items_rejected"] += 1
                continue
            mapped = RecordTransformer.generative_to_listing_dict(item)
            listing = self.validator.validate_with_fallback(mapped, "job_listing", None)
            if listing is None:
                self._stats["items_rejected"] += 1
                continue
            listings.append(listing)

        logger.info(
            f"Generative source produced {len(listings)} listings",
            extra={"strategy": result.strategy, "decoded": len(items)},
        )
        return listings

    def get_statistics(self) -> dict:
        return dict(self._stats)
