"""
Trader models
"""
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal


class Trader(BaseModel):
    """A user who publishes trades for others to copy"""
    id: str
    user_id: str
    username: Optional[str] = Field(default=None)
    subscription_price: Decimal = Field(default=Decimal("0"), ge=0)
    created_at: datetime = Field(default_factory=datetime.now)

    @property
    def display_name(self) -> str:
        """Name used in notification messages"""
        return self.username or self.user_id

    class Config:
        json_schema_extra = {
            "example": {
                "id": "b8d1c0f2-1d9e-4a51-8e57-6a0f4f0e2c11",
                "user_id": "0x1234567890abcdef1234567890abcdef12345678",
                "username": "alpha",
                "subscription_price": "25.00"
            }
        }


class TraderRegistration(BaseModel):
    user_id: str = Field(..., min_length=1)
    username: Optional[str] = Field(default=None, max_length=50)
    subscription_price: Decimal = Field(default=Decimal("0"), ge=0)
