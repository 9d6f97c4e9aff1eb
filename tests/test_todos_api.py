from datetime import datetime, timedelta


def create_todo_payload(
    title="Test Task",
    description="Do something",
    status="pending",
    due_date=None,
    **extra,
):
    payload = {
        "title": title,
        "description": description,
        "status": status,
    }
    if due_date is not None:
        payload["due_date"] = due_date
    payload.update(extra)
    return payload


def parse_ts(value: str) -> datetime:
    # Pydantic renders UTC as a trailing 'Z'
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def assert_todo_shape(todo: dict):
    for key in ["id", "user_id", "title", "status", "priority", "list", "reminder", "created_at", "updated_at"]:
        assert key in todo
    assert "description" in todo
    assert "due_date" in todo
    assert "completed_at" in todo
    assert "linked_event_id" in todo
    assert isinstance(todo["id"], int)
    assert isinstance(todo["title"], str)
    assert set(todo["reminder"]) == {"enabled", "time", "sent"}
    parse_ts(todo["created_at"])
    parse_ts(todo["updated_at"])
    if todo["due_date"] is not None:
        parse_ts(todo["due_date"])


class TestHealth:
    def test_health_check(self, client):
        res = client.get("/")
        assert res.status_code == 200
        data = res.json()
        assert data["message"] == "Healthy"
        assert data["backend"] in ("memory", "sqlite")
        assert data["scheduler_running"] is False


class TestIdentity:
    def test_missing_user_header_is_rejected(self, client):
        res = client.get("/api/v1/todos/", headers={"X-User-Id": ""})
        assert res.status_code == 401
        assert res.json()["detail"] == "Not authenticated"

    def test_todos_are_scoped_to_owner(self, client):
        tid = client.post("/api/v1/todos/", json=create_todo_payload(title="Mine")).json()["id"]
        res = client.get(f"/api/v1/todos/{tid}", headers={"X-User-Id": "mallory"})
        assert res.status_code == 404
        listed = client.get("/api/v1/todos/", headers={"X-User-Id": "mallory"}).json()
        assert listed["total"] == 0


class TestTodosCRUD:
    def test_create_todo_minimal(self, client):
        res = client.post("/api/v1/todos/", json={"title": "Buy milk"})
        assert res.status_code == 201
        todo = res.json()
        assert_todo_shape(todo)
        assert todo["title"] == "Buy milk"
        assert todo["description"] is None
        assert todo["status"] == "pending"
        assert todo["priority"] == "medium"
        assert todo["list"] == "inbox"
        assert todo["user_id"] == "alice"
        assert todo["reminder"] == {"enabled": False, "time": None, "sent": False}

    def test_create_todo_with_due_date_date_string(self, client):
        payload = create_todo_payload(title="Pay bills", description="Electricity", due_date="2099-12-25")
        res = client.post("/api/v1/todos/", json=payload)
        assert res.status_code == 201
        todo = res.json()
        assert_todo_shape(todo)
        # Date-only input is promoted to midnight UTC
        assert parse_ts(todo["due_date"]) == parse_ts("2099-12-25T00:00:00Z")

    def test_create_publishes_live_update(self, client, hub):
        received = []
        hub.publish = lambda user_id, message: received.append((user_id, message)) or 1
        client.post("/api/v1/todos/", json=create_todo_payload(title="Announce"))
        assert received[0][0] == "alice"
        assert received[0][1]["type"] == "todo:created"
        assert received[0][1]["todo"]["title"] == "Announce"

    def test_get_todo_and_not_found(self, client):
        res_create = client.post("/api/v1/todos/", json=create_todo_payload(title="Read book"))
        assert res_create.status_code == 201
        tid = res_create.json()["id"]

        res_get = client.get(f"/api/v1/todos/{tid}")
        assert res_get.status_code == 200
        fetched = res_get.json()
        assert fetched["id"] == tid
        assert fetched["title"] == "Read book"

        res_404 = client.get("/api/v1/todos/999999")
        assert res_404.status_code == 404
        assert res_404.json()["detail"] == "Todo not found"

    def test_put_replace_todo(self, client):
        res_create = client.post(
            "/api/v1/todos/",
            json=create_todo_payload(title="Initial", description="A", priority="high", list="work"),
        )
        assert res_create.status_code == 201
        tid = res_create.json()["id"]

        new_payload = create_todo_payload(title="Replaced", description=None, status="completed", due_date="2100-01-01")
        res_put = client.put(f"/api/v1/todos/{tid}", json=new_payload)
        assert res_put.status_code == 200
        updated = res_put.json()
        assert updated["id"] == tid
        assert updated["title"] == "Replaced"
        assert updated["description"] is None
        assert updated["status"] == "completed"
        assert updated["completed_at"] is not None
        # Omitted fields fall back to their defaults
        assert updated["priority"] == "medium"
        assert updated["list"] == "inbox"
        assert updated["due_date"].startswith("2100-01-01")

        res_put_nf = client.put("/api/v1/todos/424242", json=new_payload)
        assert res_put_nf.status_code == 404
        assert res_put_nf.json()["detail"] == "Todo not found"

    def test_patch_partial_update(self, client):
        res_create = client.post("/api/v1/todos/", json=create_todo_payload(title="Partial", description="X"))
        assert res_create.status_code == 201
        tid = res_create.json()["id"]

        res_patch = client.patch(f"/api/v1/todos/{tid}", json={"title": "Partial Updated", "status": "completed"})
        assert res_patch.status_code == 200
        patched = res_patch.json()
        assert patched["id"] == tid
        assert patched["title"] == "Partial Updated"
        assert patched["status"] == "completed"
        assert patched["completed_at"] is not None
        assert patched["description"] == "X"

        reopened = client.patch(f"/api/v1/todos/{tid}", json={"status": "pending"}).json()
        assert reopened["completed_at"] is None

        res_patch_nf = client.patch("/api/v1/todos/123456", json={"title": "Nope"})
        assert res_patch_nf.status_code == 404
        assert res_patch_nf.json()["detail"] == "Todo not found"

    def test_moving_due_date_rearms_reminder(self, client, store):
        created = client.post(
            "/api/v1/todos/",
            json=create_todo_payload(title="Report", due_date="2099-01-01T10:00:00Z", reminder={"enabled": True}),
        ).json()
        assert store.todos.mark_reminder_sent(created["id"]) is True
        assert client.get(f"/api/v1/todos/{created['id']}").json()["reminder"]["sent"] is True

        # Unrelated edits keep the flag
        kept = client.patch(f"/api/v1/todos/{created['id']}", json={"title": "Report v2"}).json()
        assert kept["reminder"]["sent"] is True

        moved = client.patch(f"/api/v1/todos/{created['id']}", json={"due_date": "2099-01-02T10:00:00Z"}).json()
        assert moved["reminder"] == {"enabled": True, "time": None, "sent": False}

    def test_delete_todo(self, client):
        res_create = client.post("/api/v1/todos/", json=create_todo_payload(title="ToDelete"))
        tid = res_create.json()["id"]

        res_del = client.delete(f"/api/v1/todos/{tid}")
        assert res_del.status_code == 204
        assert res_del.text == ""

        res_get = client.get(f"/api/v1/todos/{tid}")
        assert res_get.status_code == 404
        res_del_again = client.delete(f"/api/v1/todos/{tid}")
        assert res_del_again.status_code == 404
        assert res_del_again.json()["detail"] == "Todo not found"


class TestListPaginationFilteringSorting:
    def seed_todos(self, client, count=10):
        base = datetime(2099, 1, 1)
        created_ids = []
        for i in range(count):
            due = (base + timedelta(days=i)).date().isoformat()
            payload = create_todo_payload(
                title=f"Task {i}",
                description=f"Desc {i}",
                status="completed" if i % 2 == 0 else "pending",
                priority="high" if i < 2 else "low",
                list="work" if i % 3 == 0 else "home",
                due_date=due,
            )
            res = client.post("/api/v1/todos/", json=payload)
            assert res.status_code == 201
            created_ids.append(res.json()["id"])
        return created_ids

    def test_list_basic_pagination(self, client):
        ids = self.seed_todos(client, 7)
        res1 = client.get("/api/v1/todos/?limit=3&offset=0")
        assert res1.status_code == 200
        page1 = res1.json()
        assert page1["total"] == 7
        assert page1["limit"] == 3
        assert page1["offset"] == 0
        assert len(page1["items"]) == 3

        res3 = client.get("/api/v1/todos/?limit=3&offset=6")
        page3 = res3.json()
        assert page3["offset"] == 6
        assert len(page3["items"]) == 1

        seen = {t["id"] for t in page1["items"]}
        seen |= {t["id"] for t in client.get("/api/v1/todos/?limit=3&offset=3").json()["items"]}
        seen |= {t["id"] for t in page3["items"]}
        assert seen == set(ids)

    def test_list_filter_status_priority_list(self, client):
        self.seed_todos(client, 6)

        done = client.get("/api/v1/todos/?status=completed&limit=100").json()
        assert done["total"] == 3
        assert all(item["status"] == "completed" for item in done["items"])

        high = client.get("/api/v1/todos/?priority=high&limit=100").json()
        assert {t["title"] for t in high["items"]} == {"Task 0", "Task 1"}

        work = client.get("/api/v1/todos/?list=work&limit=100").json()
        assert {t["title"] for t in work["items"]} == {"Task 0", "Task 3"}

    def test_list_rejects_unknown_status(self, client):
        res = client.get("/api/v1/todos/?status=archived")
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

    def test_list_search_q_matches_title_and_description(self, client):
        self.seed_todos(client, 5)
        data_title = client.get("/api/v1/todos/?q=task 1&limit=100").json()
        assert [item["title"] for item in data_title["items"]] == ["Task 1"]

        data_desc = client.get("/api/v1/todos/?q=Desc 2&limit=100").json()
        assert any("Desc 2" in (item["description"] or "") for item in data_desc["items"])

    def test_list_sort_and_order(self, client):
        self.seed_todos(client, 5)
        default_items = client.get("/api/v1/todos/?limit=5").json()["items"]
        created_ts = [parse_ts(t["created_at"]) for t in default_items]
        assert created_ts == sorted(created_ts, reverse=True)

        items_asc = client.get("/api/v1/todos/?sort=due_date&limit=5").json()["items"]
        assert [t["title"] for t in items_asc] == [f"Task {i}" for i in range(5)]

        items_desc = client.get("/api/v1/todos/?sort=due_date&order=desc&limit=5").json()["items"]
        assert [t["title"] for t in items_desc] == [f"Task {i}" for i in reversed(range(5))]

    def test_due_date_sort_puts_undated_last(self, client):
        client.post("/api/v1/todos/", json=create_todo_payload(title="Someday"))
        client.post("/api/v1/todos/", json=create_todo_payload(title="Dated", due_date="2099-05-01"))
        items = client.get("/api/v1/todos/?sort=due_date").json()["items"]
        assert [t["title"] for t in items] == ["Dated", "Someday"]

    def test_list_invalid_order_param(self, client):
        res = client.get("/api/v1/todos/?order=invalid")
        assert res.status_code == 400
        assert res.json()["detail"] == "order must be 'asc' or 'desc'"


class TestListsAndConversion:
    def test_lists_are_distinct_and_sorted(self, client):
        for title, list_name in [("a", "work"), ("b", "home"), ("c", "work")]:
            client.post("/api/v1/todos/", json=create_todo_payload(title=title, list=list_name))
        client.post("/api/v1/todos/", json=create_todo_payload(list="errands"), headers={"X-User-Id": "bob"})

        res = client.get("/api/v1/todos/lists")
        assert res.status_code == 200
        assert res.json() == {"lists": ["home", "work"]}

    def test_lists_empty_for_new_user(self, client):
        assert client.get("/api/v1/todos/lists").json() == {"lists": []}

    def test_convert_to_event_in_default_calendar(self, client, hub):
        received = []
        hub.publish = lambda user_id, message: received.append(message) or 1
        payload = create_todo_payload(title="Write report", description="Q3")
        tid = client.post("/api/v1/todos/", json=payload).json()["id"]

        res = client.post(
            f"/api/v1/todos/{tid}/convert-to-event",
            json={"start": "2030-03-04T14:00:00Z", "end": "2030-03-04T15:00:00Z"},
        )
        assert res.status_code == 201
        body = res.json()
        event, todo = body["event"], body["todo"]
        assert event["title"] == "Write report"
        assert event["description"] == "Q3"
        assert parse_ts(event["start"]) == parse_ts("2030-03-04T14:00:00Z")
        default = client.get("/api/v1/calendars/").json()["items"][0]
        assert event["calendar_id"] == default["id"]
        assert todo["linked_event_id"] == event["id"]
        assert client.get(f"/api/v1/todos/{tid}").json()["linked_event_id"] == event["id"]
        assert [m["type"] for m in received] == ["todo:created", "event:created", "todo:updated"]

    def test_convert_into_named_calendar(self, client):
        work = client.post("/api/v1/calendars/", json={"name": "Work"}).json()["id"]
        tid = client.post("/api/v1/todos/", json=create_todo_payload()).json()["id"]
        res = client.post(
            f"/api/v1/todos/{tid}/convert-to-event",
            json={"start": "2030-03-04T14:00:00Z", "end": "2030-03-04T15:00:00Z", "calendar_id": work},
        )
        assert res.json()["event"]["calendar_id"] == work

    def test_convert_rejects_unknown_todo_or_calendar(self, client):
        window = {"start": "2030-03-04T14:00:00Z", "end": "2030-03-04T15:00:00Z"}
        assert client.post("/api/v1/todos/999/convert-to-event", json=window).status_code == 404

        tid = client.post("/api/v1/todos/", json=create_todo_payload()).json()["id"]
        res = client.post(f"/api/v1/todos/{tid}/convert-to-event", json={**window, "calendar_id": 999})
        assert res.status_code == 404
        assert res.json()["message"] == "Calendar not found"
        assert client.get("/api/v1/events/").json()["items"] == []
        assert client.get(f"/api/v1/todos/{tid}").json()["linked_event_id"] is None

    def test_convert_requires_end_after_start(self, client):
        tid = client.post("/api/v1/todos/", json=create_todo_payload()).json()["id"]
        res = client.post(
            f"/api/v1/todos/{tid}/convert-to-event",
            json={"start": "2030-03-04T15:00:00Z", "end": "2030-03-04T14:00:00Z"},
        )
        assert res.status_code == 422


class TestValidationErrors:
    def test_create_validation_error_title_empty(self, client):
        res = client.post("/api/v1/todos/", json={"title": "  ", "description": "x"})
        assert res.status_code == 422
        body = res.json()
        assert body.get("error") == "ValidationError"
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)

    def test_patch_validation_error_bad_due_date(self, client):
        res_create = client.post("/api/v1/todos/", json=create_todo_payload(title="Due date bad"))
        assert res_create.status_code == 201
        tid = res_create.json()["id"]

        res_patch = client.patch(f"/api/v1/todos/{tid}", json={"due_date": "not-a-date"})
        assert res_patch.status_code == 422
        body = res_patch.json()
        assert body.get("error") == "ValidationError"
        assert body.get("message") == "Request validation failed"
        assert isinstance(body.get("detail"), list)
