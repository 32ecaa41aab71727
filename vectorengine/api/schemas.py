"""
Caller-facing option and patch models.
Validated with pydantic at the engine boundary; failures surface as engine errors.
"""

import math
from typing import Any, Dict, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from ..core.errors import InvalidOptionsError

ModelT = TypeVar("ModelT", bound=BaseModel)


class SearchOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    filter: Optional[Any] = None
    threshold: float = 0.0
    include_vectors: bool = False

    @field_validator('threshold')
    @classmethod
    def threshold_must_be_finite(cls, v):
        if not math.isfinite(v):
            raise ValueError('threshold must be a finite number')
        return v


class MultiSearchOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    top_k: int = 10
    threshold: float = 0.0
    filter: Optional[Any] = None
    include_vectors: bool = False

    @field_validator('top_k')
    @classmethod
    def top_k_must_not_be_negative(cls, v):
        if v < 0:
            raise ValueError('top_k cannot be negative')
        return v

    @field_validator('threshold')
    @classmethod
    def threshold_must_be_finite(cls, v):
        if not math.isfinite(v):
            raise ValueError('threshold must be a finite number')
        return v

    def to_search_options(self) -> SearchOptions:
        return SearchOptions(filter=self.filter, threshold=self.threshold,
                             include_vectors=self.include_vectors)


class CreateSessionOptions(BaseModel):
    dimensions: Optional[int] = None
    owner: Optional[str] = None
    description: Optional[str] = None
    is_public: bool = False

    @field_validator('dimensions')
    @classmethod
    def dimensions_must_be_positive(cls, v):
        if v is not None and v < 1:
            raise ValueError('dimensions must be a positive integer')
        return v


class DatabaseMetadataPatch(BaseModel):
    """Top-level metadata patch; unknown keys are kept as custom metadata."""

    model_config = ConfigDict(extra='allow')

    description: Optional[str] = None
    is_public: Optional[bool] = None

    def custom_fields(self) -> Dict[str, Any]:
        return dict(self.model_extra or {})


class VectorInput(BaseModel):
    """One record of a batch insert."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: Any = None
    values: Any = None
    metadata: Any = None


def coerce(model_cls: Type[ModelT], raw: Any, error_cls=InvalidOptionsError) -> ModelT:
    """Build model_cls from None, a mapping, or an existing instance."""
    if isinstance(raw, model_cls):
        return raw
    if raw is None:
        return model_cls()
    if not isinstance(raw, Mapping):
        raise error_cls(f"{model_cls.__name__} must be a mapping, got {type(raw).__name__}")
    try:
        return model_cls(**raw)
    except ValidationError as e:
        messages = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise error_cls(f"Invalid {model_cls.__name__}: {messages}") from e
