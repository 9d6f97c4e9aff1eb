import pytest


class TestWorkingHoursAPI:
    URL = "/api/v1/preferences/working-hours"

    def test_defaults_when_nothing_stored(self, client):
        res = client.get(self.URL)
        assert res.status_code == 200
        assert res.json() == {"start": "09:00", "end": "17:00", "timezone": "UTC"}

    def test_put_then_get(self, client):
        res = client.put(self.URL, json={"start": "08:30", "end": "18:00", "timezone": "Europe/Paris"})
        assert res.status_code == 200
        assert res.json() == {"start": "08:30", "end": "18:00", "timezone": "Europe/Paris"}
        assert client.get(self.URL).json()["timezone"] == "Europe/Paris"
        # Other users still see the default
        assert client.get(self.URL, headers={"X-User-Id": "bob"}).json()["start"] == "09:00"

    def test_omitted_timezone_follows_server_default(self, client, store):
        res = client.put(self.URL, json={"start": "10:00", "end": "16:00"})
        assert res.json()["timezone"] == "UTC"
        assert store.preferences.get("alice")["timezone"] is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"start": "18:00", "end": "09:00"},
            {"start": "09:00", "end": "09:00"},
            {"start": "nine", "end": "17:00"},
            {"start": "09:00", "end": "17:00", "timezone": "Not/AZone"},
        ],
    )
    def test_unusable_hours_are_rejected(self, client, store, payload):
        res = client.put(self.URL, json=payload)
        assert res.status_code == 400
        assert res.json()["error"] == "InvalidInput"
        assert store.preferences.get("alice") is None

    def test_missing_fields_are_a_validation_error(self, client):
        res = client.put(self.URL, json={"start": "09:00"})
        assert res.status_code == 422
