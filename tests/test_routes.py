import pytest
import pathlib
import sys

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from conftest import record
from trialmerge import create_app
from trialmerge.routes import index_report


@pytest.fixture()
def client(memory_store, seed):
    seed.entry("E1")
    seed.entry("E2")
    seed.entry("E3")
    seed.selection("S1", "E1", "R1")
    seed.selection("S2", "E2", "R1", scores=2)
    app = create_app()
    app.config.update({"TESTING": True})
    with app.test_client() as c:
        yield c


def _payload(*records):
    return {"trialId": "T1", "duplicates": list(records)}


def test_merge_endpoint_reports_summary(client, memory_store):
    res = client.post(
        "/api/admin/merge-duplicates",
        json=_payload(
            record("E1", "KEEP"),
            record("E2", "MERGE (has scores!)"),
            record("E3", "DELETE (empty)"),
        ),
    )
    assert res.status_code == 200
    data = res.get_json()
    assert data["success"] is True
    assert data["totalGroups"] == 1
    assert data["mergedEntries"] == 1
    assert data["deletedEntries"] == 2
    assert data["movedSelections"] == 1
    assert data["deletedSelections"] == 1
    assert data["preservedScores"] == 2
    assert data["errors"] == []
    assert data["groups"] == [
        {"key": "Jane Doe|Rex|C-100", "outcome": "merged", "canonicalId": "E1", "unresolvedConflicts": 0, "errors": []}
    ]
    assert memory_store["selections"]["S2"]["entry_id"] == "E1"


def test_merge_endpoint_group_errors_still_200(client, memory_store):
    res = client.post(
        "/api/admin/merge-duplicates",
        json=_payload(record("E2", "MERGE (has scores!)")),
    )
    assert res.status_code == 200
    data = res.get_json()
    assert data["success"] is False
    assert data["errors"] == ["No primary entry for Jane Doe|Rex|C-100"]
    assert data["groups"][0]["outcome"] == "skipped_no_canonical"


@pytest.mark.parametrize(
    "body",
    [
        {"duplicates": []},
        {"trialId": "T1"},
        {"trialId": "T1", "duplicates": {"entry_id": "E1"}},
    ],
)
def test_merge_endpoint_rejects_bad_request(client, memory_store, body):
    res = client.post("/api/admin/merge-duplicates", json=body)
    assert res.status_code == 400
    assert res.get_json() == {"error": "Invalid request: trialId and duplicates array required"}
    assert memory_store["calls"] == []


def test_merge_endpoint_rejects_non_json(client):
    res = client.post("/api/admin/merge-duplicates", data="not json", content_type="text/plain")
    assert res.status_code == 400


def test_merge_endpoint_rejects_unknown_action(client, memory_store):
    res = client.post("/api/admin/merge-duplicates", json=_payload(record("E1", "SQUASH")))
    assert res.status_code == 400
    assert "Unknown action" in res.get_json()["error"]
    assert memory_store["calls"] == []


def test_merge_endpoint_unexpected_failure_is_500(client, monkeypatch):
    import trialmerge.routes as routes

    def boom(_records):
        raise RuntimeError("pool exhausted")

    monkeypatch.setattr(routes, "run_batch", boom)
    res = client.post("/api/admin/merge-duplicates", json=_payload(record("E1", "KEEP")))
    assert res.status_code == 500
    assert res.get_json() == {"error": "pool exhausted"}


def test_analyze_endpoint_does_not_mutate(client, memory_store):
    res = client.post(
        "/api/admin/merge-duplicates/analyze",
        json=_payload(
            record("E1", "KEEP", num_selections=1),
            record("E2", "MERGE (has scores!)", num_selections=1, num_scores=2),
        ),
    )
    assert res.status_code == 200
    data = res.get_json()
    assert data["stats"]["total"] == 2
    assert data["stats"]["toMerge"] == 1
    assert data["stats"]["totalScores"] == 2
    assert list(data["groups"]) == ["Jane Doe|Rex|C-100"]
    assert memory_store["calls"] == []


def test_trial_duplicates_endpoint(client):
    res = client.get("/api/admin/trials/T1/duplicates")
    assert res.status_code == 200
    data = res.get_json()
    assert data["trialId"] == "T1"
    assert data["totalGroups"] == 1
    by_id = {d["entry_id"]: d for d in data["duplicates"]}
    assert by_id["E2"]["action"] == "KEEP"
    assert by_id["E2"]["status"] == "✅ PRIMARY"
    assert by_id["E1"]["action"] == "MERGE (has selections)"
    assert by_id["E3"]["action"] == "DELETE (empty)"


def test_trial_duplicates_store_failure_is_500(client, seed):
    seed.fail("list_trial_entry_counts", "T1")
    res = client.get("/api/admin/trials/T1/duplicates")
    assert res.status_code == 500
    assert "simulated database error" in res.get_json()["error"]


def test_health_db_without_url(client, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    res = client.get("/health/db")
    assert res.status_code == 200
    assert res.get_json()["status"] == "no_database_url"


def test_index_report_matches_definitions():
    rows = [
        ("entries", "idx_entries_trial", "CREATE INDEX idx_entries_trial ON public.entries USING btree (trial_id)"),
        (
            "entry_selections",
            "uq",
            "CREATE UNIQUE INDEX uq ON public.entry_selections USING btree (entry_id, trial_round_id, entry_type)",
        ),
    ]
    report = index_report(rows)
    assert report["entries(trial_id)"] is True
    assert report["entry_selections(entry_id)"] is True
    assert report["entry_selections(entry_id,trial_round_id,entry_type)"] is True
    assert report["scores(entry_selection_id)"] is False
