from typing import Annotated, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from apps.api.app.schemas.common import UtcDatetime
from apps.api.app.schemas.risk import RiskTriggerReason


AssetClass = Literal["stocks", "options", "futures", "crypto", "forex"]
Direction = Literal["long", "short"]
TradingSession = Literal["Asia", "London", "NY"]
Symbol = Annotated[str, StringConstraints(strip_whitespace=True, to_upper=True, min_length=1, max_length=20)]


class TradeCreate(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False, extra="ignore")

    opened_at: UtcDatetime
    closed_at: Optional[UtcDatetime] = None
    symbol: Symbol
    asset_class: AssetClass
    direction: Direction
    entry_price: float = Field(ge=0)
    exit_price: Optional[float] = Field(default=None, ge=0)
    size: float = Field(ge=0.000001)
    fees: Optional[float] = Field(default=0.0, ge=0)
    r_multiple: Optional[float] = None
    setup: Optional[str] = Field(default=None, max_length=120)
    timeframe: Optional[str] = Field(default=None, max_length=60)
    session: Optional[TradingSession] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    plan_adherence: bool = True
    notes: Optional[str] = Field(default=None, max_length=5000)
    mistakes: Optional[str] = Field(default=None, max_length=1000)


class TradeUpdate(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False, extra="ignore")

    opened_at: Optional[UtcDatetime] = None
    closed_at: Optional[UtcDatetime] = None
    symbol: Optional[Symbol] = None
    asset_class: Optional[AssetClass] = None
    direction: Optional[Direction] = None
    entry_price: Optional[float] = Field(default=None, ge=0)
    exit_price: Optional[float] = Field(default=None, ge=0)
    size: Optional[float] = Field(default=None, ge=0.000001)
    fees: Optional[float] = Field(default=None, ge=0)
    r_multiple: Optional[float] = None
    setup: Optional[str] = Field(default=None, max_length=120)
    timeframe: Optional[str] = Field(default=None, max_length=60)
    session: Optional[TradingSession] = None
    confidence: Optional[float] = Field(default=None, ge=0, le=100)
    plan_adherence: Optional[bool] = None
    notes: Optional[str] = Field(default=None, max_length=5000)
    mistakes: Optional[str] = Field(default=None, max_length=1000)


class TradeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    opened_at: UtcDatetime
    closed_at: Optional[UtcDatetime] = None
    symbol: str
    asset_class: str
    direction: str
    entry_price: float
    exit_price: Optional[float] = None
    size: float
    fees: float
    pnl: Optional[float] = None
    r_multiple: Optional[float] = None
    setup: Optional[str] = None
    timeframe: Optional[str] = None
    session: Optional[str] = None
    confidence: Optional[float] = None
    plan_adherence: bool
    notes: Optional[str] = None
    mistakes: Optional[str] = None
    created_at: UtcDatetime
    updated_at: UtcDatetime


class RiskTriggerOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    reason: RiskTriggerReason
    lockout_until: UtcDatetime = Field(alias="lockoutUntil")


class TradeCreateOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    trade: TradeOut
    risk_triggered: Optional[RiskTriggerOut] = Field(default=None, alias="riskTriggered")


class TradeEnvelope(BaseModel):
    trade: TradeOut


class TradeListOut(BaseModel):
    trades: list[TradeOut]
