"""HTTP tests for projects, members and the activity feed."""

from aipm.models import PlanningDocument, Project, ProjectMember

from conftest import auth_headers

API = "/api/v1"


def _create_project(client, admin, name="Webtoon", description=None):
    response = client.post(
        f"{API}/projects", json={"name": name, "description": description}, headers=auth_headers(admin)
    )
    assert response.status_code == 201
    return response.json()


class TestProjects:
    def test_only_admin_creates(self, client, planner):
        response = client.post(f"{API}/projects", json={"name": "Nope"}, headers=auth_headers(planner))
        assert response.status_code == 403

    def test_blank_name_rejected(self, client, admin):
        response = client.post(f"{API}/projects", json={"name": "  "}, headers=auth_headers(admin))
        assert response.status_code == 400

    def test_list_is_scoped_to_membership(self, client, admin, planner, outsider, project):
        mine = client.get(f"{API}/projects", headers=auth_headers(planner)).json()
        assert [p["id"] for p in mine] == [str(project.id)]
        assert mine[0]["my_role"] == "service_planning"
        assert mine[0]["member_count"] == 2
        assert mine[0]["official_documents_count"] == 0

        assert client.get(f"{API}/projects", headers=auth_headers(outsider)).json() == []
        everything = client.get(f"{API}/projects", headers=auth_headers(admin)).json()
        assert [p["id"] for p in everything] == [str(project.id)]

    def test_detail_has_members_and_progress(self, client, planner, project):
        detail = client.get(f"{API}/projects/{project.id}", headers=auth_headers(planner)).json()
        assert {m["user"]["email"] for m in detail["members"]} == {
            "planner@funcommute.io",
            "designer@funcommute.io",
        }
        assert [step["workflow_step"] for step in detail["progress"]] == list(range(1, 10))
        assert detail["progress"][0]["step_name"] == "Service Overview & Goals"

    def test_detail_forbidden_for_outsider(self, client, outsider, project):
        assert client.get(f"{API}/projects/{project.id}", headers=auth_headers(outsider)).status_code == 403

    def test_partial_update(self, client, admin):
        created = _create_project(client, admin, description="First pass")
        updated = client.put(
            f"{API}/projects/{created['id']}", json={"name": "Renamed"}, headers=auth_headers(admin)
        ).json()
        assert updated["name"] == "Renamed"
        assert updated["description"] == "First pass"

        cleared = client.put(
            f"{API}/projects/{created['id']}", json={"description": None}, headers=auth_headers(admin)
        ).json()
        assert cleared["description"] is None

    def test_member_cannot_update(self, client, planner, project):
        response = client.put(f"{API}/projects/{project.id}", json={"name": "Mine"}, headers=auth_headers(planner))
        assert response.status_code == 403

    def test_delete_cascades(self, client, db, admin, planner, project):
        client.post(
            f"{API}/documents",
            json={"project_id": str(project.id), "workflow_step": 1, "title": "T", "content": "C"},
            headers=auth_headers(planner),
        )
        assert client.delete(f"{API}/projects/{project.id}", headers=auth_headers(admin)).status_code == 204
        db.expire_all()
        assert db.query(Project).count() == 0
        assert db.query(ProjectMember).count() == 0
        assert db.query(PlanningDocument).count() == 0


class TestMembers:
    def test_add_update_remove(self, client, admin, outsider, project):
        headers = auth_headers(admin)
        added = client.post(
            f"{API}/projects/{project.id}/members",
            json={"user_id": str(outsider.id), "role": "developer"},
            headers=headers,
        )
        assert added.status_code == 201
        member = added.json()
        assert member["user"]["email"] == outsider.email
        assert member["added_by"] == str(admin.id)

        changed = client.put(
            f"{API}/projects/{project.id}/members/{member['id']}", json={"role": "ux_planning"}, headers=headers
        )
        assert changed.json()["role"] == "ux_planning"

        removed = client.delete(f"{API}/projects/{project.id}/members/{member['id']}", headers=headers)
        assert removed.status_code == 204
        members = client.get(f"{API}/projects/{project.id}/members", headers=headers).json()
        assert outsider.email not in {m["user"]["email"] for m in members}

    def test_duplicate_member_conflicts(self, client, admin, planner, project):
        response = client.post(
            f"{API}/projects/{project.id}/members",
            json={"user_id": str(planner.id), "role": "developer"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "CONFLICT"

    def test_unknown_role_rejected(self, client, admin, outsider, project):
        response = client.post(
            f"{API}/projects/{project.id}/members",
            json={"user_id": str(outsider.id), "role": "owner"},
            headers=auth_headers(admin),
        )
        assert response.status_code == 400

    def test_members_cannot_manage_members(self, client, planner, outsider, project):
        response = client.post(
            f"{API}/projects/{project.id}/members",
            json={"user_id": str(outsider.id), "role": "developer"},
            headers=auth_headers(planner),
        )
        assert response.status_code == 403


def test_activity_feed(client, admin, planner, outsider, project):
    client.post(
        f"{API}/documents",
        json={"project_id": str(project.id), "workflow_step": 1, "title": "Plan", "content": "Body"},
        headers=auth_headers(planner),
    )
    client.post(
        f"{API}/projects/{project.id}/members",
        json={"user_id": str(outsider.id), "role": "developer"},
        headers=auth_headers(admin),
    )
    feed = client.get(f"{API}/projects/{project.id}/activities", headers=auth_headers(planner)).json()
    types = [a["activity_type"] for a in feed]
    assert "document_created" in types
    assert "member_added" in types
    created = next(a for a in feed if a["activity_type"] == "document_created")
    assert created["metadata"] == {"workflow_step": 1, "title": "Plan"}
