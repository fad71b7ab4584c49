"""
Parsers Module

Turns raw upstream text into structured values.

Components:
    - response_decoder: Multi-strategy JSON recovery from free text
    - job_board_parser: Selector-driven job card extraction from HTML
"""

from jobwaterfall.parsers.job_board_parser import (
    INDEED_SELECTORS,
    JOBBANK_SELECTORS,
    LINKEDIN_SELECTORS,
    BoardSelectors,
    JobBoardParser,
)
from jobwaterfall.parsers.response_decoder import (
    JOB_LISTING_SHAPE,
    DecodeFailure,
    DecodeSuccess,
    RecordShape,
    ResponseDecoder,
)

__all__ = [
    "ResponseDecoder",
    "DecodeSuccess",
    "DecodeFailure",
    "RecordShape",
    "JOB_LISTING_SHAPE",
    "JobBoardParser",
    "BoardSelectors",
    "INDEED_SELECTORS",
    "JOBBANK_SELECTORS",
    "LINKEDIN_SELECTORS",
]
