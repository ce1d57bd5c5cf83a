"""Store Models - Pydantic models for partner, order and snapshot records.

Records are validated and normalized here, at the store boundary, so the
services never deal with loosely shaped dictionaries. The dashboard backend
historically wrote some fields under Russian names (спонсорId, команда,
уровень, покупательId, итого, датаСоздания); both spellings are accepted.
"""
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any, Optional

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)

from mlm.logging import get_logger, sanitize_id_for_logging
from mlm.services.money import round_money, to_decimal, to_float

logger = get_logger(__name__)


def _coerce_id(value: Any) -> Optional[str]:
    """Accept non-empty strings and integers as identifiers."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, str) and value.strip():
        return value
    return None


def _parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse ISO-8601 strings and epoch milliseconds; naive values are UTC."""
    parsed: Optional[datetime] = None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    elif isinstance(value, str) and value.strip():
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class Partner(BaseModel):
    """Partner record stored under user:id:{id}."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str
    sponsor_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("sponsorId", "sponsor_id", "спонсорId"),
    )
    team: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("team", "команда"),
    )
    rank: int = Field(default=0, validation_alias=AliasChoices("rank", "уровень"))
    is_admin: bool = Field(default=False, validation_alias=AliasChoices("isAdmin", "is_admin"))

    @model_validator(mode="before")
    @classmethod
    def detect_admin_type(cls, data: Any) -> Any:
        # Admin accounts created by the signup-admin flow only carry __type
        if isinstance(data, dict) and data.get("__type") == "admin":
            data = {**data, "isAdmin": True}
        return data

    @field_validator("id", mode="before")
    @classmethod
    def validate_id(cls, v):
        partner_id = _coerce_id(v)
        if partner_id is None:
            raise ValueError("partner id must be a non-empty string")
        return partner_id

    @field_validator("sponsor_id", mode="before")
    @classmethod
    def normalize_sponsor(cls, v):
        return _coerce_id(v)

    @field_validator("team", mode="before")
    @classmethod
    def normalize_team(cls, v):
        # Malformed entries are dropped silently, order is kept
        if not isinstance(v, (list, tuple)):
            return []
        return [item for item in v if isinstance(item, str) and item.strip()]

    @field_validator("rank", mode="before")
    @classmethod
    def normalize_rank(cls, v):
        try:
            rank = int(v)
        except (TypeError, ValueError):
            return 0
        return max(rank, 0)

    @field_validator("is_admin", mode="before")
    @classmethod
    def normalize_admin(cls, v):
        return bool(v)

    @classmethod
    def from_record(cls, record: Any) -> Optional["Partner"]:
        """Build a Partner from a raw store value, or None if it is not one."""
        if not isinstance(record, dict):
            return None
        try:
            return cls.model_validate(record)
        except ValidationError as e:
            logger.debug("Skipping malformed partner record: %s", e.error_count())
            return None


class Order(BaseModel):
    """Order record stored under order:{id}. Read-only for this engine."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    buyer_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("buyerId", "buyer_id", "покупательId"),
    )
    total: Decimal = Field(default=Decimal("0"), validation_alias=AliasChoices("total", "итого"))
    created_at: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("createdAt", "created_at", "датаСоздания"),
    )

    @field_validator("buyer_id", mode="before")
    @classmethod
    def normalize_buyer(cls, v):
        return _coerce_id(v)

    @field_validator("total", mode="before")
    @classmethod
    def convert_to_decimal(cls, v):
        return to_decimal(v)

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v):
        return _parse_timestamp(v)

    @classmethod
    def from_record(cls, record: Any) -> Optional["Order"]:
        if not isinstance(record, dict):
            return None
        try:
            return cls.model_validate(record)
        except ValidationError:
            return None


class UserMetrics(BaseModel):
    """Cached metrics snapshot stored under user_metrics:{id}.

    Serialized with camelCase keys. Snapshots written by the older
    dashboard backend (userId, teamSize, ordersCount, averageCheck,
    lastCalculated) are read as well.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    partner_id: str = Field(
        validation_alias=AliasChoices("partnerId", "userId", "partner_id"),
        serialization_alias="partnerId",
    )
    rank: int = 0
    direct_team_size: int = Field(
        default=0,
        validation_alias=AliasChoices("directTeamSize", "teamSize", "direct_team_size"),
        serialization_alias="directTeamSize",
    )
    total_team_size: int = Field(
        default=0,
        validation_alias=AliasChoices("totalTeamSize", "total_team_size"),
        serialization_alias="totalTeamSize",
    )
    personal_sales: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("personalSales", "personal_sales"),
        serialization_alias="personalSales",
    )
    # Not computed yet: no agreed definition of which downline levels count
    team_sales: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("teamSales", "team_sales"),
        serialization_alias="teamSales",
    )
    order_count: int = Field(
        default=0,
        validation_alias=AliasChoices("orderCount", "ordersCount", "order_count"),
        serialization_alias="orderCount",
    )
    average_order_value: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("averageOrderValue", "averageCheck", "average_order_value"),
        serialization_alias="averageOrderValue",
    )
    computed_at: datetime = Field(
        validation_alias=AliasChoices("computedAt", "lastCalculated", "computed_at"),
        serialization_alias="computedAt",
    )

    @field_validator("personal_sales", "team_sales", "average_order_value", mode="before")
    @classmethod
    def convert_money(cls, v):
        return round_money(v)

    @field_validator("computed_at", mode="before")
    @classmethod
    def parse_computed_at(cls, v):
        parsed = _parse_timestamp(v)
        if parsed is None:
            raise ValueError("computedAt must be a timestamp")
        return parsed

    @field_serializer("personal_sales", "team_sales", "average_order_value")
    def serialize_money(self, value: Decimal) -> float:
        return to_float(value)

    @field_serializer("computed_at")
    def serialize_computed_at(self, value: datetime) -> str:
        return value.astimezone(UTC).isoformat()

    @classmethod
    def zero(cls, partner_id: str, computed_at: datetime) -> "UserMetrics":
        """All-zero snapshot (administrative accounts, unknown failures)."""
        return cls(partner_id=partner_id, computed_at=computed_at)

    @classmethod
    def from_record(cls, record: Any) -> Optional["UserMetrics"]:
        if not isinstance(record, dict):
            return None
        try:
            return cls.model_validate(record)
        except ValidationError as e:
            logger.warning(
                "Unreadable metrics snapshot for %s: %s error(s)",
                sanitize_id_for_logging(str(record.get("partnerId") or record.get("userId"))),
                e.error_count(),
            )
            return None

    def to_record(self) -> dict:
        """Serialize for the store (camelCase keys, floats, ISO timestamp)."""
        return self.model_dump(by_alias=True)

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.computed_at < ttl
