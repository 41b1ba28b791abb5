"""
Tests for Holiday Routes (/api/holidays endpoints).

- Endpoints: list, get, create, delete, check-business-day
- Duplicate dates are rejected
- Table name: holidays
"""
import pytest

from tests.helpers import assert_response_error, assert_response_ok


@pytest.fixture
def holidays(mock_data):
    rows = [
        {"id": "hol-1", "name": "Republic Day", "holiday_date": "2025-01-26"},
        {"id": "hol-2", "name": "Christmas", "holiday_date": "2025-12-25"},
        {"id": "hol-3", "name": "Republic Day", "holiday_date": "2026-01-26"},
    ]
    mock_data["holidays"].extend(rows)
    return rows


class TestHolidayCRUD:

    @pytest.mark.unit
    def test_list_holidays_empty(self, client):
        data = assert_response_ok(client.get("/api/holidays"))

        assert data["holidays"] == []
        assert data["count"] == 0

    @pytest.mark.unit
    def test_list_holidays_sorted(self, client, holidays):
        data = assert_response_ok(client.get("/api/holidays"))

        assert [h["holiday_date"] for h in data["holidays"]] == ["2025-01-26", "2025-12-25", "2026-01-26"]

    @pytest.mark.unit
    def test_list_holidays_filter_by_year(self, client, holidays):
        data = assert_response_ok(client.get("/api/holidays?year=2025"))

        assert data["count"] == 2
        assert {h["id"] for h in data["holidays"]} == {"hol-1", "hol-2"}

    @pytest.mark.unit
    def test_get_holiday(self, client, holidays):
        data = assert_response_ok(client.get("/api/holidays/hol-2"))

        assert data["name"] == "Christmas"

    @pytest.mark.unit
    def test_get_holiday_not_found(self, client):
        assert_response_error(client.get("/api/holidays/hol-missing"), 404)

    @pytest.mark.unit
    def test_create_holiday(self, client, mock_data):
        data = assert_response_ok(client.post("/api/holidays", json={
            "name": "Independence Day",
            "holiday_date": "2025-08-15",
        }))

        assert data["success"] is True
        assert data["holiday"]["holiday_date"] == "2025-08-15"
        assert len(mock_data["holidays"]) == 1

    @pytest.mark.unit
    def test_create_duplicate_date(self, client, holidays, mock_data):
        response = client.post("/api/holidays", json={"name": "Christmas Day", "holiday_date": "2025-12-25"})

        assert_response_error(response, 400)
        assert len(mock_data["holidays"]) == 3

    @pytest.mark.unit
    def test_create_requires_name(self, client):
        assert_response_error(client.post("/api/holidays", json={"name": "", "holiday_date": "2025-08-15"}), 422)

    @pytest.mark.unit
    def test_delete_holiday(self, client, holidays, mock_data):
        data = assert_response_ok(client.delete("/api/holidays/hol-1"))

        assert data["deleted"]["name"] == "Republic Day"
        assert [h["id"] for h in mock_data["holidays"]] == ["hol-2", "hol-3"]

    @pytest.mark.unit
    def test_delete_holiday_not_found(self, client):
        assert_response_error(client.delete("/api/holidays/hol-missing"), 404)


class TestBusinessDayCheck:

    @pytest.mark.unit
    def test_plain_weekday(self, client):
        data = assert_response_ok(client.get("/api/holidays/check-business-day?check_date=2025-04-14"))

        assert data["day_of_week"] == "Monday"
        assert data["is_business_day"] is True
        assert data["is_holiday"] is False
        assert data["holiday_name"] is None

    @pytest.mark.unit
    def test_weekend(self, client):
        data = assert_response_ok(client.get("/api/holidays/check-business-day?check_date=2025-04-12"))

        assert data["is_weekend"] is True
        assert data["is_business_day"] is False

    @pytest.mark.unit
    def test_holiday_on_weekday(self, client, holidays):
        data = assert_response_ok(client.get("/api/holidays/check-business-day?check_date=2025-12-25"))

        assert data["is_holiday"] is True
        assert data["holiday_name"] == "Christmas"
        assert data["is_business_day"] is False

    @pytest.mark.unit
    def test_new_holiday_is_seen_immediately(self, client):
        assert_response_ok(client.get("/api/holidays/check-business-day?check_date=2025-08-15"))
        client.post("/api/holidays", json={"name": "Independence Day", "holiday_date": "2025-08-15"})

        data = assert_response_ok(client.get("/api/holidays/check-business-day?check_date=2025-08-15"))

        assert data["is_business_day"] is False

    @pytest.mark.unit
    def test_invalid_date(self, client):
        assert_response_error(client.get("/api/holidays/check-business-day?check_date=not-a-date"), 422)
