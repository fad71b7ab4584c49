"""
Schema validation for decoded records.

Validates loosely-typed dictionaries (usually produced by the response
decoder) against registered pydantic models. Every violated field is
reported, not only the first one.
"""

import logging
from typing import Any, Optional, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from jobwaterfall.normalizer.schemas import CompanyFacts, HiringContact, JobListing
from jobwaterfall.utils.exceptions import ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_SHAPES: dict[str, type[BaseModel]] = {
    "job_listing": JobListing,
    "company_facts": CompanyFacts,
    "hiring_contact": HiringContact,
}


def _format_path(loc: tuple) -> str:
    """Render a pydantic error location as a dotted path ('skills.2')."""
    if not loc:
        return "<root>"
    return ".".join(str(part) for part in loc)


class SchemaValidator:
    """
    Registry of record shapes with strict and fallback validation.

    Example:
        >>> validator = SchemaValidator()
        >>> listing = validator.validate({"title": "Rep", "company": "Acme"}, "job_listing")
        >>> validator.validate_with_fallback({"title": ""}, "job_listing", None) is None
        True
    """

    def __init__(self, shapes: Optional[dict[str, type[BaseModel]]] = None):
        """
        Initialize validator.

        Args:
            shapes: Shape name to model mapping (defaults to job_listing,
                company_facts and hiring_contact)
        """
        self._shapes: dict[str, type[BaseModel]] = dict(shapes if shapes is not None else DEFAULT_SHAPES)
        self._stats = {
            "validated": 0,
            "failed": 0,
            "fallbacks": 0,
        }

    def register(self, shape: str, model: type[BaseModel]) -> None:
        """Register or replace a shape."""
        self._shapes[shape] = model
        logger.debug(f"Registered shape '{shape}' -> {model.__name__}")

    def has_shape(self, shape: str) -> bool:
        return shape in self._shapes

    def list_shapes(self) -> list[str]:
        return sorted(self._shapes)

    def _model_for(self, shape: str) -> type[BaseModel]:
        try:
            return self._shapes[shape]
        except KeyError:
            raise KeyError(f"Unknown shape '{shape}'") from None

    def _violations(self, data: Any, shape: str) -> tuple[Optional[BaseModel], list[tuple[str, str]]]:
        model = self._model_for(shape)
        if not isinstance(data, dict):
            return None, [("<root>", f"expected object, got {type(data).__name__}")]
        try:
            return model.model_validate(data), []
        except PydanticValidationError as e:
            return None, [(_format_path(err["loc"]), err["msg"]) for err in e.errors()]

    def validate(self, data: Any, shape: str) -> BaseModel:
        """
        Validate data against a registered shape.

        Args:
            data: Decoded record (a dict)
            shape: Registered shape name

        Returns:
            Validated model instance

        Raises:
            ValidationError: Listing every (path, reason) violation
            KeyError: If the shape is not registered
        """
        instance, violations = self._violations(data, shape)
        if violations:
            self._stats["failed"] += 1
            raise ValidationError(shape, violations)
        self._stats["validated"] += 1
        return instance

    def validate_with_fallback(self, data: Any, shape: str, fallback: T) -> Any:
        """
        Validate data, substituting ``fallback`` when it does not conform.

        Violations are logged at WARNING before the fallback is returned.

        Args:
            data: Decoded record (a dict)
            shape: Registered shape name
            fallback: Value returned on failure

        Returns:
            Validated model instance or ``fallback``
        """
        try:
            return self.validate(data, shape)
        except ValidationError as e:
            self._stats["fallbacks"] += 1
            logger.warning(
                f"Validation failed for shape '{shape}', using fallback: {e.details['violations']}",
                extra={
                    "shape": shape,
                    "violations": e.violations,
                    "violation_count": len(e.violations),
                },
            )
            return fallback

    def soft_validate(self, data: Any, shape: str) -> tuple[bool, list[tuple[str, str]]]:
        """Check conformance without raising or logging."""
        _, violations = self._violations(data, shape)
        return (not violations, violations)

    def get_statistics(self) -> dict:
        return {**self._stats, "shapes": self.list_shapes()}

    def __repr__(self) -> str:
        return f"SchemaValidator(shapes={self.list_shapes()})"
