"""
Copy decision and fan-out result models
"""
from pydantic import BaseModel, Field
from typing import Annotated, Dict, List, Literal, Optional, Union
from decimal import Decimal
from enum import Enum


class SkipReason(str, Enum):
    # Eligibility outcomes
    COPYING_DISABLED = "copying_disabled"
    TOKEN_EXCLUDED = "token_excluded"
    TOKEN_NOT_ALLOWED = "token_not_allowed"
    NO_USD_VALUE = "no_usd_value"
    NEGATIVE_USD_VALUE = "negative_usd_value"
    BELOW_MIN_SIZE = "below_min_size"
    ABOVE_MAX_SIZE = "above_max_size"

    # Coordinator outcomes
    NO_COPY_SETTINGS = "no_copy_settings"
    RISK_LIMIT_REACHED = "risk_limit_reached"
    ALREADY_COPIED = "already_copied"
    ERROR = "error"


class NegativeValuePolicy(str, Enum):
    """What to do with a trade whose USD value is below zero"""
    PROPAGATE = "propagate"  # size with the signed value
    CLAMP = "clamp"  # clamp the copy amount to zero before bounds
    SKIP = "skip"  # never copy losing trades


class Copy(BaseModel):
    kind: Literal["copy"] = "copy"
    amount: Decimal

    @property
    def should_copy(self) -> bool:
        return True

    class Config:
        frozen = True


class Skip(BaseModel):
    kind: Literal["skip"] = "skip"
    reason: SkipReason

    @property
    def should_copy(self) -> bool:
        return False

    class Config:
        frozen = True


Decision = Annotated[Union[Copy, Skip], Field(discriminator="kind")]


class FanOutError(BaseModel):
    """A failure isolated to one subscriber (or to the whole run)"""
    copier_id: Optional[str] = None
    detail: str

    def __str__(self) -> str:
        if self.copier_id is None:
            return f"General error: {self.detail}"
        return f"Error copying trade for copier {self.copier_id}: {self.detail}"


class FanOutResult(BaseModel):
    """Summary of one trade's propagation to its subscribers"""
    trade_id: str
    copied_count: int = Field(default=0)
    skipped_count: int = Field(default=0)
    errors: List[FanOutError] = Field(default_factory=list)
    outcomes: Dict[str, Decision] = Field(default_factory=dict)  # copier_id -> decision

    def record(self, copier_id: str, decision: Decision) -> None:
        self.outcomes[copier_id] = decision
        if decision.should_copy:
            self.copied_count += 1
        else:
            self.skipped_count += 1
