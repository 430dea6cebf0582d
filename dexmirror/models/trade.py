"""
Trade models
"""
from pydantic import BaseModel, Field, field_validator
from typing import Optional
from datetime import datetime
from decimal import Decimal, InvalidOperation
import re


TOKEN_SYMBOL_RE = re.compile(r"^[A-Z0-9]+$")
TX_HASH_RE = re.compile(r"^0x[a-fA-F0-9]{64}$")
AMOUNT_RE = re.compile(r"^\d+(\.\d+)?$")


class Trade(BaseModel):
    """An executed swap recorded by a trader. Never mutated by fan-out."""
    id: str
    trader_id: str

    # Swap
    token_in: str
    token_out: str
    amount_in: str  # decimal string
    amount_out: str  # decimal string
    usd_value: Optional[Decimal] = None

    # On-chain reference
    tx_hash: Optional[str] = None
    notes: Optional[str] = None

    timestamp: datetime = Field(default_factory=datetime.now)

    @property
    def pair(self) -> str:
        return f"{self.token_in} → {self.token_out}"

    class Config:
        frozen = True
        json_schema_extra = {
            "example": {
                "id": "5f1c7a9e-2b7f-4a4e-9d1e-3c1f0b2a9d10",
                "trader_id": "b8d1c0f2-1d9e-4a51-8e57-6a0f4f0e2c11",
                "token_in": "USDC",
                "token_out": "ETH",
                "amount_in": "1000",
                "amount_out": "0.31",
                "usd_value": "1000.00"
            }
        }


class TradeSubmission(BaseModel):
    """Payload a trader submits after executing a swap"""
    token_in: str = Field(..., min_length=1, max_length=10)
    token_out: str = Field(..., min_length=1, max_length=10)
    amount_in: str
    amount_out: str
    tx_hash: str
    usd_value: Optional[Decimal] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)

    @field_validator("token_in", "token_out", mode="before")
    @classmethod
    def normalize_symbol(cls, value):
        if isinstance(value, str):
            value = value.strip().upper()
        return value

    @field_validator("token_in", "token_out")
    @classmethod
    def check_symbol(cls, value: str) -> str:
        if not TOKEN_SYMBOL_RE.match(value):
            raise ValueError("Token symbols must be uppercase letters and numbers")
        return value

    @field_validator("amount_in", "amount_out")
    @classmethod
    def check_amount(cls, value: str) -> str:
        value = value.strip()
        if not AMOUNT_RE.match(value):
            raise ValueError("Must be a valid number")
        try:
            if Decimal(value) <= 0:
                raise ValueError("Amount must be greater than 0")
        except InvalidOperation:
            raise ValueError("Must be a valid number")
        return value

    @field_validator("tx_hash")
    @classmethod
    def check_tx_hash(cls, value: str) -> str:
        value = value.strip()
        if not TX_HASH_RE.match(value):
            raise ValueError(
                "Invalid transaction hash format (must be 0x followed by 64 hex characters)"
            )
        return value


class TradeUpdate(TradeSubmission):
    """Full replacement of a trade's fields by the trader who owns it"""
    user_id: str = Field(..., min_length=1)
