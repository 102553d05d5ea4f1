from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AISource(str, Enum):
    """Which assistant suggested the position."""

    GEMINI = "Gemini"
    CHATGPT = "ChatGPT"
    CLAUDE = "Claude"
    PERPLEXITY = "Perplexity"
    OTHER = "Other"


def normalize_ticker(value: Optional[str]) -> str:
    return (value or "").strip().upper()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AssetRecord(BaseModel):
    """One holding lot. Several lots may share a ticker."""

    model_config = ConfigDict(frozen=True)

    id: str
    ticker: str = Field(min_length=1, max_length=16)
    company_name: str
    quantity: float = Field(ge=0)
    avg_price: float = Field(ge=0, description="Average acquisition price in USD")
    current_price: float = Field(ge=0, description="Latest known price in USD")
    source: AISource = AISource.GEMINI
    icon_url: Optional[str] = None
    last_updated: datetime = Field(default_factory=utcnow)

    @field_validator("ticker", mode="before")
    @classmethod
    def _upper_ticker(cls, v):
        return normalize_ticker(v) if isinstance(v, str) else v


class AssetCreate(BaseModel):
    ticker: str = Field(min_length=1, max_length=16)
    company_name: Optional[str] = Field(default=None, max_length=120)
    quantity: float = Field(ge=0)
    avg_price: float = Field(ge=0)
    current_price: Optional[float] = Field(default=None, ge=0)
    source: AISource = AISource.GEMINI

    @field_validator("ticker", mode="before")
    @classmethod
    def _upper_ticker(cls, v):
        return normalize_ticker(v) if isinstance(v, str) else v

    @field_validator("company_name")
    @classmethod
    def _blank_name(cls, v: Optional[str]) -> Optional[str]:
        v = (v or "").strip()
        return v or None


class AssetView(AssetRecord):
    market_value: float
    cost_basis: float
    gain: float
    gain_percentage: float
    market_value_jpy: float


class TradeFields(BaseModel):
    """Fields read off a trade confirmation. Any of them may be missing."""

    model_config = ConfigDict(populate_by_name=True)

    ticker: Optional[str] = None
    company_name: Optional[str] = Field(default=None, alias="companyName")
    quantity: Optional[float] = Field(default=None, ge=0)
    avg_price: Optional[float] = Field(default=None, ge=0, alias="avgPrice")

    @field_validator("ticker", "company_name", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("ticker")
    @classmethod
    def _upper(cls, v: Optional[str]) -> Optional[str]:
        return v.upper() if v else v

    def is_empty(self) -> bool:
        return all(
            value is None
            for value in (self.ticker, self.company_name, self.quantity, self.avg_price)
        )


class TradeDraft(BaseModel):
    """The add-asset form as the user currently has it filled in."""

    ticker: str = ""
    company_name: str = ""
    quantity: Optional[float] = Field(default=None, ge=0)
    avg_price: Optional[float] = Field(default=None, ge=0)
    source: AISource = AISource.GEMINI
