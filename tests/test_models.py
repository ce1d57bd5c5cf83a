"""Tests for store models"""
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from mlm.services.models import Order, Partner, UserMetrics
from mlm.services.money import divide, round_money, to_decimal


class TestMoney:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (None, Decimal("0")),
            (True, Decimal("0")),
            ("abc", Decimal("0")),
            ("NaN", Decimal("0")),
            (float("inf"), Decimal("0")),
            (0.1, Decimal("0.1")),
            ("12.345", Decimal("12.345")),
            (7, Decimal("7")),
        ],
    )
    def test_to_decimal(self, value, expected):
        assert to_decimal(value) == expected

    def test_round_money(self):
        assert round_money("2.345") == Decimal("2.35")
        assert round_money(None) == Decimal("0.00")

    def test_divide_by_zero(self):
        assert divide(100, 0) == 0
        assert divide(100, 4) == Decimal("25")


class TestPartner:
    def test_english_fields(self):
        partner = Partner.model_validate(
            {"id": "A", "sponsorId": "S", "team": ["B", "C"], "rank": 3, "name": "Ann"}
        )

        assert partner.id == "A"
        assert partner.sponsor_id == "S"
        assert partner.team == ["B", "C"]
        assert partner.rank == 3
        assert partner.is_admin is False

    def test_legacy_fields(self):
        partner = Partner.model_validate(
            {"id": "A", "спонсорId": "S", "команда": ["B"], "уровень": 2}
        )

        assert partner.sponsor_id == "S"
        assert partner.team == ["B"]
        assert partner.rank == 2

    def test_team_is_normalized(self):
        partner = Partner.model_validate({"id": "A", "team": ["B", "", None, 5, "  ", "C"]})
        assert partner.team == ["B", "C"]

    @pytest.mark.parametrize("team", [None, "B", {"B": True}, 3])
    def test_non_list_team_is_empty(self, team):
        assert Partner.model_validate({"id": "A", "team": team}).team == []

    @pytest.mark.parametrize("sponsor", [None, "", "   ", False])
    def test_blank_sponsor_is_root(self, sponsor):
        assert Partner.model_validate({"id": "A", "sponsorId": sponsor}).sponsor_id is None

    @pytest.mark.parametrize("rank, expected", [(-3, 0), ("4", 4), ("x", 0), (None, 0)])
    def test_rank_is_non_negative(self, rank, expected):
        assert Partner.model_validate({"id": "A", "rank": rank}).rank == expected

    def test_admin_by_flag(self):
        assert Partner.model_validate({"id": "A", "isAdmin": True}).is_admin is True

    def test_admin_by_type(self):
        partner = Partner.model_validate({"id": "A", "__type": "admin"})
        assert partner.is_admin is True

    @pytest.mark.parametrize("record", [None, "user:id:A", ["A"], {"team": []}, {"id": ""}])
    def test_from_record_rejects_non_partners(self, record):
        assert Partner.from_record(record) is None


class TestOrder:
    def test_parses_iso_timestamp(self):
        order = Order.model_validate(
            {"buyerId": "A", "total": "99.90", "createdAt": "2026-01-10T08:30:00Z"}
        )

        assert order.buyer_id == "A"
        assert order.total == Decimal("99.90")
        assert order.created_at == datetime(2026, 1, 10, 8, 30, tzinfo=UTC)

    def test_naive_timestamp_is_utc(self):
        order = Order.model_validate({"buyerId": "A", "createdAt": "2026-01-10T08:30:00"})
        assert order.created_at.tzinfo is not None
        assert order.created_at == datetime(2026, 1, 10, 8, 30, tzinfo=UTC)

    def test_epoch_milliseconds(self):
        order = Order.model_validate({"buyerId": "A", "createdAt": 1768046400000})
        assert order.created_at == datetime(2026, 1, 10, 12, 0, tzinfo=UTC)

    def test_legacy_fields(self):
        order = Order.model_validate(
            {"покупательId": "A", "итого": 150, "датаСоздания": "2026-01-10T00:00:00+03:00"}
        )

        assert order.buyer_id == "A"
        assert order.total == Decimal("150")
        assert order.created_at == datetime(2026, 1, 9, 21, 0, tzinfo=UTC)

    def test_bad_values_are_tolerated(self):
        order = Order.model_validate({"buyerId": None, "total": "n/a", "createdAt": "soon"})

        assert order.buyer_id is None
        assert order.total == 0
        assert order.created_at is None


class TestUserMetrics:
    @pytest.fixture
    def computed_at(self):
        return datetime(2026, 1, 15, 12, 0, tzinfo=UTC)

    def test_record_uses_camel_case(self, computed_at):
        metrics = UserMetrics(
            partner_id="A",
            rank=2,
            direct_team_size=2,
            total_team_size=3,
            personal_sales=Decimal("150.5"),
            order_count=2,
            average_order_value=Decimal("75.25"),
            computed_at=computed_at,
        )

        assert metrics.to_record() == {
            "partnerId": "A",
            "rank": 2,
            "directTeamSize": 2,
            "totalTeamSize": 3,
            "personalSales": 150.5,
            "teamSales": 0.0,
            "orderCount": 2,
            "averageOrderValue": 75.25,
            "computedAt": "2026-01-15T12:00:00+00:00",
        }

    def test_record_reads_back(self, computed_at):
        metrics = UserMetrics(partner_id="A", rank=4, personal_sales="10.005", computed_at=computed_at)

        restored = UserMetrics.from_record(metrics.to_record())

        assert restored == metrics
        assert restored.personal_sales == Decimal("10.01")

    def test_zero_snapshot(self, computed_at):
        metrics = UserMetrics.zero("A", computed_at)

        assert metrics.rank == 0
        assert metrics.total_team_size == 0
        assert metrics.average_order_value == 0
        assert metrics.computed_at == computed_at

    def test_legacy_snapshot(self):
        metrics = UserMetrics.from_record({
            "userId": "A",
            "teamSize": 4,
            "ordersCount": 1,
            "averageCheck": 10,
            "lastCalculated": "2026-01-15T11:00:00.000Z",
        })

        assert metrics.partner_id == "A"
        assert metrics.direct_team_size == 4
        assert metrics.order_count == 1
        assert metrics.computed_at == datetime(2026, 1, 15, 11, 0, tzinfo=UTC)

    @pytest.mark.parametrize("record", [None, [], {"partnerId": "A"}, {"computedAt": "2026-01-15T11:00:00Z"}])
    def test_unreadable_snapshot(self, record):
        assert UserMetrics.from_record(record) is None

    def test_freshness(self, computed_at):
        metrics = UserMetrics.zero("A", computed_at)
        ttl = timedelta(hours=1)

        assert metrics.is_fresh(computed_at + timedelta(minutes=59), ttl) is True
        assert metrics.is_fresh(computed_at + timedelta(hours=1), ttl) is False
