"""
Subscription and copy settings models
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional, FrozenSet, List, Union, Literal, Annotated
from datetime import datetime
from decimal import Decimal
from enum import Enum


class SubscriptionStatus(str, Enum):
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    CANCELLED = "CANCELLED"


class SizingMode(str, Enum):
    PERCENTAGE = "PERCENTAGE"
    FIXED = "FIXED"
    PROPORTIONAL = "PROPORTIONAL"


class PercentageSizing(BaseModel):
    """Copy `amount` percent of the trade's USD value"""
    mode: Literal["PERCENTAGE"] = "PERCENTAGE"
    amount: Decimal = Field(..., ge=0)

    class Config:
        frozen = True


class FixedSizing(BaseModel):
    """Copy a fixed USD amount regardless of trade size"""
    mode: Literal["FIXED"] = "FIXED"
    amount: Decimal = Field(..., ge=0)

    class Config:
        frozen = True


class ProportionalSizing(BaseModel):
    """Copy the trade's USD value multiplied by `amount`"""
    mode: Literal["PROPORTIONAL"] = "PROPORTIONAL"
    amount: Decimal = Field(..., ge=0)

    class Config:
        frozen = True


Sizing = Annotated[
    Union[PercentageSizing, FixedSizing, ProportionalSizing],
    Field(discriminator="mode")
]


def make_sizing(mode: SizingMode, amount: Decimal) -> Sizing:
    """Build the sizing variant for a stored (mode, amount) pair"""
    mode = SizingMode(mode)
    if mode == SizingMode.PERCENTAGE:
        return PercentageSizing(amount=amount)
    if mode == SizingMode.FIXED:
        return FixedSizing(amount=amount)
    if mode == SizingMode.PROPORTIONAL:
        return ProportionalSizing(amount=amount)
    raise TypeError(f"Unknown sizing mode: {mode!r}")


def _normalize_tokens(value) -> FrozenSet[str]:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        value = [value]
    return frozenset(str(token).strip().upper() for token in value if str(token).strip())


class CopySettings(BaseModel):
    """A copier's policy for mirroring one trader's trades"""
    copy_enabled: bool = Field(default=True)
    sizing: Sizing = Field(default_factory=lambda: PercentageSizing(amount=Decimal("100")))

    # Size bounds (USD)
    min_trade_size: Optional[Decimal] = Field(default=None, ge=0)
    max_trade_size: Optional[Decimal] = Field(default=None, ge=0)

    # Risk controls
    max_daily_loss: Optional[Decimal] = Field(default=None, ge=0)
    stop_loss_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)  # informational

    # Token filters, stored upper-cased
    allowed_tokens: FrozenSet[str] = Field(default_factory=frozenset)
    excluded_tokens: FrozenSet[str] = Field(default_factory=frozenset)

    @field_validator("allowed_tokens", "excluded_tokens", mode="before")
    @classmethod
    def normalize_tokens(cls, value):
        return _normalize_tokens(value)

    @property
    def sizing_mode(self) -> SizingMode:
        return SizingMode(self.sizing.mode)

    class Config:
        frozen = True


class Subscription(BaseModel):
    """A copier's relationship to one trader"""
    id: str
    copier_id: str
    trader_id: str
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)
    monthly_price: Decimal = Field(default=Decimal("0"))

    start_date: datetime = Field(default_factory=datetime.now)
    end_date: Optional[datetime] = None

    copy_settings: Optional[CopySettings] = None

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE


class SubscriptionRequest(BaseModel):
    copier_id: str = Field(..., min_length=1)
    trader_id: str = Field(..., min_length=1)


class SubscriptionStatusUpdate(BaseModel):
    copier_id: str = Field(..., min_length=1)
    status: SubscriptionStatus


class CopySettingsUpdate(BaseModel):
    """Partial update of copy settings; omitted fields are left unchanged"""
    copier_id: str = Field(..., min_length=1)
    copy_enabled: Optional[bool] = None
    copy_amount_type: Optional[SizingMode] = None
    copy_amount: Optional[Decimal] = Field(default=None, ge=0)
    max_trade_size: Optional[Decimal] = Field(default=None, ge=0)
    min_trade_size: Optional[Decimal] = Field(default=None, ge=0)
    max_daily_loss: Optional[Decimal] = Field(default=None, ge=0)
    stop_loss_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    allowed_tokens: Optional[List[str]] = None
    excluded_tokens: Optional[List[str]] = None

    def apply(self, current: Optional[CopySettings]) -> CopySettings:
        """Merge the fields that were explicitly sent onto `current`"""
        current = current or CopySettings()
        sent = self.model_fields_set
        data = current.model_dump()

        mode = self.copy_amount_type if self.copy_amount_type is not None else current.sizing_mode
        amount = self.copy_amount if self.copy_amount is not None else current.sizing.amount
        data["sizing"] = make_sizing(mode, amount)

        if "copy_enabled" in sent and self.copy_enabled is not None:
            data["copy_enabled"] = self.copy_enabled
        for name in ("max_trade_size", "min_trade_size", "max_daily_loss", "stop_loss_percent",
                     "allowed_tokens", "excluded_tokens"):
            if name in sent:
                data[name] = getattr(self, name)

        return CopySettings(**data)
