"""
Pydantic input schemas for the edge engine.

Services accept plain dicts or these models.  Validation happens once at the
service boundary via :func:`validate_input`, which turns pydantic's
``ValidationError`` into :class:`~edge_engine.core.errors.InvalidInputError`
so callers only ever catch engine errors.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional, Type, TypeVar, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from edge_engine.core.errors import InvalidInputError

ModelT = TypeVar("ModelT", bound=BaseModel)


def validate_input(model: Type[ModelT], data: Union[ModelT, dict, Any]) -> ModelT:
    """Coerce ``data`` into ``model``; re-raise failures as ``InvalidInputError``."""
    if isinstance(data, model):
        return data
    try:
        if isinstance(data, BaseModel):
            data = data.model_dump()
        return model.model_validate(data)
    except ValidationError as exc:
        raise InvalidInputError(f"Invalid {model.__name__}: {exc}") from exc


# ---------------------------------------------------------------------------
# Simulation parameters
# ---------------------------------------------------------------------------

class TradeSimParams(BaseModel):
    """
    One candidate accumulator trade for the Monte Carlo simulator.

    ``estimated_ticks`` is the median holding period; ``volatility`` spreads
    the log-normal holding-period distribution around it.
    """

    model_config = ConfigDict(allow_inf_nan=False, frozen=True)

    stake: float = Field(..., gt=0, description="Amount risked")
    win_probability: float = Field(..., ge=0.0, le=1.0)
    growth_rate: float = Field(..., ge=0.0, description="Accumulator growth per tick")
    estimated_ticks: float = Field(10, gt=0)
    volatility: float = Field(0.5, ge=0.0)


# ---------------------------------------------------------------------------
# Trade settlement
# ---------------------------------------------------------------------------

class TradeEvent(BaseModel):
    """
    A resolved trade, as reported by the driver after settlement.

    ``profit`` is signed: positive on a win, ``-stake`` (or thereabouts) on a
    loss.  ``timestamp`` defaults to the ledger's clock when omitted.
    """

    model_config = ConfigDict(allow_inf_nan=False)

    asset: str = Field(..., min_length=1)
    stake: float = Field(..., gt=0)
    outcome: Literal["win", "loss"]
    profit: float
    duration: float = Field(0.0, ge=0.0, description="Ticks held")
    regime: str = Field("UNKNOWN", min_length=1)
    pattern: Optional[str] = None
    timestamp: Optional[datetime] = None
    growth_rate: Optional[float] = Field(None, ge=0.0)
    survival_prob_at_entry: Optional[float] = Field(None, ge=0.0, le=1.0)

    @field_validator("outcome", mode="before")
    @classmethod
    def normalise_outcome(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator("regime", mode="before")
    @classmethod
    def regime_name(cls, v: Any) -> Any:
        if isinstance(v, Enum):
            return v.value
        return v

    @field_validator("pattern", mode="before")
    @classmethod
    def pattern_as_str(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)

    @property
    def won(self) -> bool:
        return self.outcome == "win"
