from datetime import datetime, timedelta, timezone

PROMPT = {"title": "Summarise", "text": "Summarise the following text in three bullets."}


def test_log_and_summarise_own_usage(client, db, make_user, auth_headers):
    _, user_id = make_user()
    headers = auth_headers(user_id)
    prompt = client.post("/prompts", json=PROMPT, headers=headers).json()

    for event_type in ("execute", "execute", "copy"):
        resp = client.post("/analytics/log", json={"promptId": prompt["id"], "eventType": event_type}, headers=headers)
        assert resp.status_code == 201
    db["usageevent"].insert_one({
        "promptId": prompt["id"],
        "userId": user_id,
        "eventType": "execute",
        "timestamp": datetime.now(timezone.utc) - timedelta(days=90),
    })

    summary = client.get("/analytics/summary", headers=headers).json()

    assert summary["totalCounts"] == {"execute": 2, "copy": 1}
    assert summary["topPrompts"] == [{"id": prompt["id"], "title": "Summarise", "count": 2}]
    assert summary["periodDays"] == 30


def test_deleted_prompt_is_labelled(client, make_user, auth_headers):
    _, user_id = make_user()
    headers = auth_headers(user_id)
    prompt = client.post("/prompts", json=PROMPT, headers=headers).json()
    client.post("/analytics/log", json={"promptId": prompt["id"], "eventType": "execute"}, headers=headers)
    client.delete(f"/prompts/{prompt['id']}", headers=headers)

    summary = client.get("/analytics/summary", headers=headers).json()

    assert summary["topPrompts"][0]["title"] == "Prompt Deleted or Inaccessible"


def test_team_summary_requires_membership(client, make_user, make_team, auth_headers):
    _, owner_id = make_user("owner@example.com")
    _, outsider_id = make_user("outsider@example.com")
    team_id = make_team(owner_id)

    assert client.get("/analytics/summary", params={"teamId": team_id}, headers=auth_headers(owner_id)).status_code == 200
    assert client.get("/analytics/summary", params={"teamId": team_id}, headers=auth_headers(outsider_id)).status_code == 403


def test_cannot_log_usage_for_hidden_prompt(client, make_user, auth_headers):
    _, alice = make_user("alice@example.com")
    _, bob = make_user("bob@example.com")
    prompt = client.post("/prompts", json=PROMPT, headers=auth_headers(alice)).json()

    resp = client.post("/analytics/log", json={"promptId": prompt["id"], "eventType": "view"}, headers=auth_headers(bob))
    assert resp.status_code == 403


def test_usage_is_attributed_to_the_prompt_team(client, db, make_user, make_team, auth_headers):
    _, owner_id = make_user("owner@example.com")
    _, alice = make_user("alice@example.com")
    victim_team = make_team(owner_id)
    prompt = client.post("/prompts", json={**PROMPT, "visibility": "public"}, headers=auth_headers(alice)).json()

    injected = client.post(
        "/analytics/log",
        json={"promptId": prompt["id"], "teamId": victim_team, "eventType": "execute"},
        headers=auth_headers(alice),
    )
    assert injected.status_code == 400

    client.post("/analytics/log", json={"promptId": prompt["id"], "eventType": "execute"}, headers=auth_headers(alice))
    assert db["usageevent"].count_documents({"teamId": victim_team}) == 0
    summary = client.get("/analytics/summary", params={"teamId": victim_team}, headers=auth_headers(owner_id)).json()
    assert summary["totalCounts"] == {}


def test_team_prompt_usage_lands_in_team_summary(client, make_user, make_team, auth_headers):
    _, owner_id = make_user("owner@example.com")
    team_id = make_team(owner_id)
    headers = auth_headers(owner_id)
    prompt = client.post("/prompts", json={**PROMPT, "visibility": "team", "teamId": team_id}, headers=headers).json()

    resp = client.post("/analytics/log", json={"promptId": prompt["id"], "teamId": team_id, "eventType": "execute"}, headers=headers)

    assert resp.status_code == 201
    summary = client.get("/analytics/summary", params={"teamId": team_id}, headers=headers).json()
    assert summary["totalCounts"] == {"execute": 1}
