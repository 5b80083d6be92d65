import mongomock
import pytest
from bson import ObjectId
from pymongo.errors import PyMongoError

PROMPT = {"title": "Summarise", "text": "Summarise the following text in three bullets."}


@pytest.fixture
def team_setup(make_user, make_team):
    _, owner_id = make_user("owner@example.com")
    _, member_id = make_user("member@example.com")
    _, other_id = make_user("other@example.com")
    team_id = make_team(owner_id, members=[(member_id, "member"), (other_id, "member")])
    return team_id, owner_id, member_id, other_id


def create(client, headers, **overrides):
    resp = client.post("/prompts", json={**PROMPT, **overrides}, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()


def test_create_private_prompt_writes_audit(client, db, make_user, auth_headers):
    _, user_id = make_user()

    prompt = create(client, auth_headers(user_id), tags=[" ai ", "ai", "writing"])

    assert prompt["creator"] == user_id
    assert prompt["visibility"] == "private"
    assert prompt["tags"] == ["ai", "writing"]
    assert db["auditlog"].count_documents({"action": "create_prompt", "targetId": prompt["id"]}) == 1


def test_team_prompt_requires_team_id(client, make_user, auth_headers):
    _, user_id = make_user()
    resp = client.post("/prompts", json={**PROMPT, "visibility": "team"}, headers=auth_headers(user_id))
    assert resp.status_code == 400
    assert "teamId" in resp.json()["errors"]


def test_member_edits_own_team_prompt_only(client, team_setup, auth_headers):
    team_id, owner_id, member_id, other_id = team_setup
    prompt = create(client, auth_headers(member_id), visibility="team", teamId=team_id)

    by_creator = client.put(f"/prompts/{prompt['id']}", json={"title": "Renamed"}, headers=auth_headers(member_id))
    by_other = client.put(f"/prompts/{prompt['id']}", json={"title": "Hijacked"}, headers=auth_headers(other_id))
    by_owner = client.put(f"/prompts/{prompt['id']}", json={"title": "Edited by owner"}, headers=auth_headers(owner_id))

    assert by_creator.status_code == 200
    assert by_other.status_code == 403
    assert by_owner.status_code == 200
    assert by_owner.json()["title"] == "Edited by owner"


def test_member_cannot_delete_own_team_prompt(client, team_setup, auth_headers):
    team_id, owner_id, member_id, _ = team_setup
    prompt = create(client, auth_headers(member_id), visibility="team", teamId=team_id)

    assert client.delete(f"/prompts/{prompt['id']}", headers=auth_headers(member_id)).status_code == 403
    assert client.delete(f"/prompts/{prompt['id']}", headers=auth_headers(owner_id)).status_code == 200


def test_member_cannot_take_prompt_out_of_team(client, team_setup, auth_headers):
    team_id, _, member_id, _ = team_setup
    prompt = create(client, auth_headers(member_id), visibility="team", teamId=team_id)

    resp = client.put(f"/prompts/{prompt['id']}", json={"visibility": "private"}, headers=auth_headers(member_id))
    assert resp.status_code == 403


def test_outsider_cannot_create_team_prompt(client, make_user, make_team, auth_headers):
    _, owner_id = make_user("owner@example.com")
    _, outsider_id = make_user("outsider@example.com")
    team_id = make_team(owner_id)

    resp = client.post("/prompts", json={**PROMPT, "visibility": "team", "teamId": team_id}, headers=auth_headers(outsider_id))
    assert resp.status_code == 403


def test_visibility_on_read(client, make_user, auth_headers):
    _, alice = make_user("alice@example.com")
    _, bob = make_user("bob@example.com")
    private = create(client, auth_headers(alice))
    public = create(client, auth_headers(alice), visibility="public")

    assert client.get(f"/prompts/{private['id']}", headers=auth_headers(bob)).status_code == 403
    assert client.get(f"/prompts/{public['id']}").status_code == 200
    assert client.get(f"/prompts/{ObjectId()}").status_code == 404
    assert client.get("/prompts/not-an-id").status_code == 400


def test_search_returns_only_visible_prompts(client, make_user, auth_headers):
    _, alice = make_user("alice@example.com")
    _, bob = make_user("bob@example.com")
    create(client, auth_headers(alice), title="Secret summary")
    create(client, auth_headers(alice), title="Public summary", visibility="public", tags=["ai"])

    resp = client.get("/search", params={"q": "summary"}, headers=auth_headers(bob))

    assert [p["title"] for p in resp.json()] == ["Public summary"]
    assert len(client.get("/search", params={"tag": "ai"}).json()) == 1


def test_delete_keeps_comments_and_collections_still_read(client, db, make_user, auth_headers):
    _, user_id = make_user()
    headers = auth_headers(user_id)
    prompt = create(client, headers)
    comment = client.post(f"/prompts/{prompt['id']}/comments", json={"content": "Nice"}, headers=headers).json()
    collection = client.post("/collections", json={"name": "Favourites", "prompts": [prompt["id"]]}, headers=headers).json()

    assert client.delete(f"/prompts/{prompt['id']}", headers=headers).status_code == 200

    assert db["comment"].count_documents({"prompt": prompt["id"]}) == 1
    assert client.get(f"/comments/{comment['id']}", headers=headers).status_code == 200
    resp = client.get(f"/collections/{collection['id']}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["prompts"] == [prompt["id"]]
    assert resp.json()["promptDetails"] == []


def test_audit_failure_does_not_undo_creation(client, db, make_user, auth_headers, monkeypatch):
    user, user_id = make_user()
    original = mongomock.Collection.insert_one

    def failing_insert(self, document, *args, **kwargs):
        if self.name == "auditlog":
            raise RuntimeError("audit store unavailable")
        return original(self, document, *args, **kwargs)

    monkeypatch.setattr(mongomock.Collection, "insert_one", failing_insert)

    resp = client.post("/prompts", json=PROMPT, headers=auth_headers(user_id))

    assert resp.status_code == 201
    assert db["prompt"].count_documents({}) == 1
    assert db["user"].find_one({"_id": user["_id"]})["promptCount"] == 1
    assert db["auditlog"].count_documents({}) == 0


def fail_writes_to(monkeypatch, method, collection_name):
    original = getattr(mongomock.Collection, method)

    def failing(self, *args, **kwargs):
        if self.name == collection_name:
            raise PyMongoError(f"{collection_name} store unavailable")
        return original(self, *args, **kwargs)

    monkeypatch.setattr(mongomock.Collection, method, failing)


def test_counter_failure_does_not_fail_creation(client, db, make_user, make_team, auth_headers, monkeypatch):
    _, user_id = make_user()
    team_id = make_team(user_id)
    fail_writes_to(monkeypatch, "update_one", "user")

    resp = client.post("/prompts", json={**PROMPT, "visibility": "team", "teamId": team_id}, headers=auth_headers(user_id))

    assert resp.status_code == 201
    assert db["prompt"].count_documents({}) == 1
    assert db["auditlog"].count_documents({"action": "create_prompt"}) == 1


def test_counter_failure_does_not_fail_deletion(client, db, make_user, auth_headers, monkeypatch):
    _, user_id = make_user()
    prompt = create(client, auth_headers(user_id))
    fail_writes_to(monkeypatch, "update_one", "user")

    resp = client.delete(f"/prompts/{prompt['id']}", headers=auth_headers(user_id))

    assert resp.status_code == 200
    assert db["prompt"].count_documents({}) == 0
    assert db["auditlog"].count_documents({"action": "delete_prompt"}) == 1


def test_failed_insert_releases_personal_slot(client, db, make_user, auth_headers, monkeypatch):
    user, user_id = make_user(prompt_count=9)
    fail_writes_to(monkeypatch, "insert_one", "prompt")

    resp = client.post("/prompts", json=PROMPT, headers=auth_headers(user_id))

    assert resp.status_code == 500
    assert db["prompt"].count_documents({}) == 0
    assert db["user"].find_one({"_id": user["_id"]})["promptCount"] == 9


def test_team_prompt_counts_towards_author(client, db, make_user, make_team, auth_headers):
    user, user_id = make_user()
    team_id = make_team(user_id)

    create(client, auth_headers(user_id), visibility="team", teamId=team_id)

    assert db["user"].find_one({"_id": user["_id"]})["promptCount"] == 1


def test_rating_replaces_previous_value(client, make_user, auth_headers):
    _, alice = make_user("alice@example.com")
    _, bob = make_user("bob@example.com")
    prompt = create(client, auth_headers(alice), visibility="public")

    client.post(f"/prompts/{prompt['id']}/rating", json={"value": 2}, headers=auth_headers(bob))
    resp = client.post(f"/prompts/{prompt['id']}/rating", json={"value": 4}, headers=auth_headers(bob))

    assert resp.json()["ratingCount"] == 1
    assert resp.json()["averageRating"] == 4


def test_usage_and_success_counters(client, db, make_user, auth_headers):
    _, user_id = make_user()
    headers = auth_headers(user_id)
    prompt = create(client, headers)

    usage = client.post(f"/prompts/{prompt['id']}/usage", headers=headers)
    assert usage.json()["usageCount"] == 1
    assert db["usageevent"].count_documents({"promptId": prompt["id"]}) == 1

    client.post(f"/prompts/{prompt['id']}/success", json={"isSuccess": True}, headers=headers)
    resp = client.post(f"/prompts/{prompt['id']}/success", json={"isSuccess": False}, headers=headers)
    assert resp.json() == {"successCount": 1, "failureCount": 1, "successRate": 50}


def test_export_contains_own_prompts(client, make_user, auth_headers):
    _, user_id = make_user()
    create(client, auth_headers(user_id))

    resp = client.get("/prompts/export", headers=auth_headers(user_id))

    assert resp.status_code == 200
    assert "attachment" in resp.headers["content-disposition"]
    assert len(resp.json()["prompts"]) == 1
