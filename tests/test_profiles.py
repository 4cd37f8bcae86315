import pytest

from database import PROFILES, ensure_indexes
from errors import Conflict, NotFound, ValidationError
from profiles import ProfileStore
from schemas import ProjectFields
from sessions import Identity


@pytest.fixture
def owner(client, signup):
    return signup("alice@x.com")


@pytest.fixture
def with_profile(client, owner):
    res = client.post("/api/profiles", json={"username": "alice"}, headers=owner)
    assert res.status_code == 201, res.text
    return owner


def add_project(client, headers, title, **fields):
    res = client.post("/api/profiles/me/projects", json=dict(title=title, **fields), headers=headers)
    assert res.status_code == 201, res.text
    return res.json()


def test_check_username(client, with_profile):
    assert client.get("/api/profiles/check-username", params={"username": "alice"}).json() == {"exists": True}
    assert client.get("/api/profiles/check-username", params={"username": "bob"}).json() == {"exists": False}
    assert client.get("/api/profiles/check-username").status_code == 400
    assert client.get("/api/profiles/check-username", params={"username": "no spaces"}).status_code == 400


def test_create_profile_prefills_fields(client, owner):
    res = client.post("/api/profiles", json={"username": "alice"}, headers=owner)
    assert res.status_code == 201
    body = res.json()
    assert body["username"] == "alice"
    assert body["template"] == "default"
    assert body["projects"] == []
    assert body["profile"]["name"] == "alice"
    assert body["profile"]["social_links"] == {
        "github": "", "linkedin": "", "twitter": "", "personal_website": "",
    }
    assert body["profile"]["skills"] == []
    assert "id" in body and "_id" not in body


def test_create_profile_requires_auth(client):
    assert client.post("/api/profiles", json={"username": "alice"}).status_code == 401


def test_username_taken_twice(client, with_profile, signup):
    other = signup("bob@x.com")
    res = client.post("/api/profiles", json={"username": "alice"}, headers=other)
    assert res.status_code == 400
    assert res.json()["detail"] == "Username already taken"


def test_one_profile_per_user(client, with_profile):
    res = client.post("/api/profiles", json={"username": "alice2"}, headers=with_profile)
    assert res.status_code == 400


def test_invalid_username(client, owner):
    res = client.post("/api/profiles", json={"username": "a!"}, headers=owner)
    assert res.status_code == 400


def test_racing_username_claims_yield_one_conflict(db, monkeypatch):
    ensure_indexes(db)
    store = ProfileStore(db)
    # Both callers pass the availability check before either inserts.
    monkeypatch.setattr(store, "username_available", lambda username: True)
    first = Identity(id="65a000000000000000000001", email="one@x.com")
    second = Identity(id="65a000000000000000000002", email="two@x.com")

    store.create_profile(first, "alice")
    with pytest.raises(Conflict):
        store.create_profile(second, "alice")
    assert db[PROFILES].count_documents({"username": "alice"}) == 1


def test_public_profile_is_unauthenticated(client, with_profile):
    add_project(client, with_profile, "Portfolio site")
    res = client.get("/api/profiles/alice")
    assert res.status_code == 200
    body = res.json()
    assert body["username"] == "alice"
    assert body["projects"][0]["title"] == "Portfolio site"
    assert client.get("/api/profiles/nobody").status_code == 404


def test_get_own_profile(client, owner):
    assert client.get("/api/profiles/me", headers=owner).status_code == 404
    client.post("/api/profiles", json={"username": "alice"}, headers=owner)
    assert client.get("/api/profiles/me", headers=owner).json()["username"] == "alice"


def test_update_profile_replaces_subdocument(client, with_profile):
    payload = {
        "profile": {
            "name": "Alice A.",
            "bio": "Builds things",
            "social_links": {"github": "https://github.com/alice"},
            "skills": [{"tech_name": "Backend", "skills_used": ["Python", "MongoDB"]}],
            "education": [{"college_name": "MIT", "course": "CS", "year_of_passout": 2020}],
            "work_experience": [{"company_name": "Acme", "position": "Dev", "currently_working": True}],
        }
    }
    res = client.put("/api/profiles/me/profile", json=payload, headers=with_profile)
    assert res.status_code == 200
    profile = res.json()["profile"]
    assert profile["name"] == "Alice A."
    assert profile["passionate_text"] == ""
    assert profile["social_links"]["github"] == "https://github.com/alice"
    assert profile["social_links"]["twitter"] == ""
    assert profile["skills"][0]["skills_used"] == ["Python", "MongoDB"]
    assert profile["work_experience"][0]["currently_working"] is True

    res = client.put("/api/profiles/me/profile", json={"profile": {"name": "Only name"}}, headers=with_profile)
    assert res.json()["profile"]["skills"] == []


def test_update_profile_without_profile(client, owner):
    res = client.put("/api/profiles/me/profile", json={"profile": {"name": "x"}}, headers=owner)
    assert res.status_code == 404


def test_update_template(client, with_profile):
    res = client.put("/api/profiles/me/template", json={"template": "minimal"}, headers=with_profile)
    assert res.status_code == 200
    assert res.json()["template"] == "minimal"

    res = client.put("/api/profiles/me/template", json={"template": "neon"}, headers=with_profile)
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid template"


def test_add_project_assigns_id_and_timestamp(client, with_profile):
    project = add_project(
        client, with_profile, "Chat app",
        tech_stack=["FastAPI", "React"], featured=True, category="web",
    )
    assert project["id"]
    assert project["created_at"]
    assert project["tech_stack"] == ["FastAPI", "React"]
    assert project["featured"] is True


def test_add_project_without_profile(client, owner):
    res = client.post("/api/profiles/me/projects", json={"title": "x"}, headers=owner)
    assert res.status_code == 404


def test_update_project_is_a_shallow_merge(client, with_profile):
    project = add_project(client, with_profile, "Chat app", description="v1", tech_stack=["Flask"])
    res = client.put(
        f"/api/profiles/me/projects/{project['id']}",
        json={"description": "v2", "tech_stack": ["FastAPI"]},
        headers=with_profile,
    )
    assert res.status_code == 200
    updated = res.json()["projects"][0]
    assert updated["id"] == project["id"]
    assert updated["title"] == "Chat app"
    assert updated["description"] == "v2"
    assert updated["tech_stack"] == ["FastAPI"]
    assert updated["created_at"] == project["created_at"]


def test_update_missing_project(client, with_profile):
    res = client.put(
        "/api/profiles/me/projects/65a000000000000000000009", json={"title": "x"}, headers=with_profile
    )
    assert res.status_code == 404
    assert res.json()["detail"] == "Project not found"

    res = client.put("/api/profiles/me/projects/not-an-id", json={"title": "x"}, headers=with_profile)
    assert res.status_code == 400


def test_delete_project_keeps_order_of_others(client, with_profile):
    ids = [add_project(client, with_profile, title)["id"] for title in ("one", "two", "three")]
    res = client.delete(f"/api/profiles/me/projects/{ids[1]}", headers=with_profile)
    assert res.status_code == 200
    assert [p["id"] for p in res.json()["projects"]] == [ids[0], ids[2]]

    again = client.delete(f"/api/profiles/me/projects/{ids[1]}", headers=with_profile)
    assert again.status_code == 200
    assert [p["title"] for p in again.json()["projects"]] == ["one", "three"]


def test_project_edits_do_not_clobber_each_other(db):
    ensure_indexes(db)
    store = ProfileStore(db)
    owner = Identity(id="65a000000000000000000001", email="one@x.com")
    store.create_profile(owner, "alice")
    first = store.add_project(owner.id, ProjectFields(title="one"))
    second = store.add_project(owner.id, ProjectFields(title="two"))

    # Two writers holding the same stale snapshot of the document.
    store.update_project(owner.id, first["_id"], {"title": "one v2"})
    store.update_project(owner.id, second["_id"], {"featured": True})

    projects = store.get_own_profile(owner.id)["projects"]
    assert [p["title"] for p in projects] == ["one v2", "two"]
    assert projects[1]["featured"] is True


def test_store_errors(db):
    store = ProfileStore(db)
    with pytest.raises(NotFound):
        store.get_public_profile("ghost")
    with pytest.raises(NotFound):
        store.delete_project("65a000000000000000000001", "65a000000000000000000002")
    with pytest.raises(ValidationError):
        store.update_template("65a000000000000000000001", "neon")


def test_update_project_edits_only_the_matched_entry(client, with_profile):
    add_project(client, with_profile, "one")
    second = add_project(client, with_profile, "two")
    res = client.put(
        f"/api/profiles/me/projects/{second['id']}", json={"description": "edited"}, headers=with_profile
    )
    assert res.status_code == 200
    projects = [(p["title"], p["description"]) for p in res.json()["projects"]]
    assert projects == [("one", ""), ("two", "edited")]


def test_created_project_matches_stored_project(client, with_profile):
    project = add_project(client, with_profile, "Chat app")
    [stored] = client.get("/api/profiles/me", headers=with_profile).json()["projects"]
    assert stored == project


@pytest.mark.parametrize("field", ["title", "description", "tech_stack", "images", "featured"])
def test_update_project_rejects_null(client, with_profile, field):
    project = add_project(client, with_profile, "Chat app", tech_stack=["FastAPI"])
    res = client.put(f"/api/profiles/me/projects/{project['id']}", json={field: None}, headers=with_profile)
    assert res.status_code == 400
    [stored] = client.get("/api/profiles/me", headers=with_profile).json()["projects"]
    assert stored == project


def test_update_project_clears_optional_link(client, with_profile):
    project = add_project(client, with_profile, "Chat app", live_url="https://chat.example")
    res = client.put(f"/api/profiles/me/projects/{project['id']}", json={"live_url": None}, headers=with_profile)
    assert res.status_code == 200
    assert res.json()["projects"][0]["live_url"] is None


def test_delete_project_with_malformed_id_is_a_no_op(client, with_profile):
    add_project(client, with_profile, "one")
    res = client.delete("/api/profiles/me/projects/not-an-id", headers=with_profile)
    assert res.status_code == 200
    assert [p["title"] for p in res.json()["projects"]] == ["one"]


def test_delete_project_with_malformed_id_still_needs_a_profile(client, owner):
    assert client.delete("/api/profiles/me/projects/not-an-id", headers=owner).status_code == 404
