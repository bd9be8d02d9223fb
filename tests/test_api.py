import base64
import io

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from civic_reports.api.deps import get_analysis_dispatcher, get_image_storage
from civic_reports.models.analysis import ModelAnalysis
from civic_reports.utils.storage import LocalImageStorage
from civic_reports.utils.token import generate_jwt_token
from main import app


@pytest.fixture
def dispatched():
    return []


@pytest.fixture
def client(storage, dispatched):
    app.dependency_overrides[get_image_storage] = lambda: storage
    app.dependency_overrides[get_analysis_dispatcher] = lambda: (lambda *args: dispatched.append(args))
    yield TestClient(app)
    app.dependency_overrides.clear()


def _auth(user_id="user-123"):
    return {"Authorization": f"Bearer {generate_jwt_token(user_id)}"}


def _png() -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", (32, 32), (200, 30, 30)).save(buffer, format="PNG")
    return buffer.getvalue()


def _payload(location=(28.6139, 77.2090), category="ROAD_ISSUE", title="Pothole on main road"):
    image = base64.b64encode(_png()).decode("ascii")
    return {
        "title": title,
        "description": "Deep pothole near the junction",
        "image": f"data:image/png;base64,{image}",
        "location": list(location),
        "category": category,
    }


class TestCreateReport:

    def test_requires_token(self, client):
        response = client.post("/api/reports/", json=_payload())
        assert response.status_code in (401, 403)

    def test_rejects_bad_token(self, client):
        response = client.post("/api/reports/", json=_payload(), headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_fresh_report(self, client, dispatched):
        response = client.post("/api/reports/", json=_payload(), headers=_auth())

        assert response.status_code == 201
        body = response.json()
        assert body["message"] == "Report created successfully"
        assert body["deduplication"] == {"is_duplicate": False, "merged": False, "original_report": None}
        assert body["report"]["status"] == "PENDING"
        assert body["report"]["creator_id"] == "user-123"
        assert body["report"]["upvotes"] == 1
        assert len(dispatched) == 1

    def test_nearby_same_category_submission_is_merged(self, client):
        first = client.post("/api/reports/", json=_payload(), headers=_auth("user-1")).json()
        second = client.post(
            "/api/reports/", json=_payload(location=(28.6140, 77.2091)), headers=_auth("user-2")
        )

        assert second.status_code == 201
        body = second.json()
        assert body["message"] == "Report created and merged with existing duplicate"
        assert body["deduplication"]["is_duplicate"] is True
        assert body["deduplication"]["original_report"]["id"] == first["report"]["id"]
        assert body["deduplication"]["original_report"]["duplicate_count"] == 1
        assert body["report"]["status"] == "ARCHIVED"
        assert body["report"]["original_report_id"] == first["report"]["id"]

        visible = client.get("/api/reports/").json()
        road_issues = [r for r in visible if r["category"] == "ROAD_ISSUE"]
        assert len(road_issues) == 1
        assert road_issues[0]["id"] == first["report"]["id"]
        assert road_issues[0]["duplicate_count"] == 1
        assert len(road_issues[0]["image_urls"]) == 2

    def test_far_submission_is_a_new_report(self, client):
        client.post("/api/reports/", json=_payload(), headers=_auth())
        response = client.post("/api/reports/", json=_payload(location=(28.7041, 77.1025)), headers=_auth())

        assert response.json()["deduplication"]["is_duplicate"] is False
        assert len(client.get("/api/reports/").json()) == 2

    @pytest.mark.parametrize("overrides", [
        {"location": [91, 0]},
        {"category": "FIRE"},
        {"title": ""},
    ])
    def test_invalid_payload(self, client, overrides):
        payload = {**_payload(), **overrides}
        response = client.post("/api/reports/", json=payload, headers=_auth())
        assert response.status_code == 422

    def test_invalid_image(self, client):
        payload = {**_payload(), "image": "data:image/png;base64,@@@"}
        response = client.post("/api/reports/", json=payload, headers=_auth())
        assert response.status_code == 422


class TestReportRoutes:

    def test_unknown_report(self, client):
        response = client.get("/api/reports/does-not-exist")
        assert response.status_code == 404
        assert "does-not-exist" in response.json()["detail"]

    def test_status_flow(self, client, make_report):
        report = make_report()

        response = client.patch(f"/api/reports/{report.id}/status", json={"status": "IN_PROGRESS"}, headers=_auth())
        assert response.json()["status"] == "IN_PROGRESS"

        response = client.patch(f"/api/reports/{report.id}/resolve", headers=_auth())
        assert response.json()["status"] == "RESOLVED"

        response = client.patch(f"/api/reports/{report.id}/status", json={"status": "PENDING"}, headers=_auth())
        assert response.status_code == 409

    def test_edit_by_another_user_is_forbidden(self, client, make_report):
        report = make_report(creator_id="user-123")
        response = client.patch(f"/api/reports/{report.id}", json={"title": "Hijacked"}, headers=_auth("user-999"))
        assert response.status_code == 403

    def test_comments_and_activities(self, client, make_report):
        report = make_report()

        response = client.post(f"/api/reports/{report.id}/comments", json={"text": "Still there"}, headers=_auth())
        assert response.status_code == 201

        comments = client.get(f"/api/reports/{report.id}/comments").json()
        assert [c["text"] for c in comments] == ["Still there"]
        activities = client.get(f"/api/reports/{report.id}/activities").json()
        assert [a["type"] for a in activities] == ["COMMENT_ADDED"]

    def test_upvote_twice(self, client, make_report):
        report = make_report()

        first = client.post(f"/api/reports/{report.id}/upvote", headers=_auth("voter")).json()
        second = client.post(f"/api/reports/{report.id}/upvote", headers=_auth("voter")).json()

        assert first == {"report_id": report.id, "upvoted": True, "upvotes": 1}
        assert second == {"report_id": report.id, "upvoted": False, "upvotes": 1}

    def test_nearby(self, client, make_report):
        near = make_report(latitude=28.6140, longitude=77.2091)
        make_report(latitude=28.7041, longitude=77.1025)

        body = client.get("/api/reports/nearby", params={"lat": 28.6139, "lng": 77.2090, "radius": 1}).json()

        assert body["count"] == 1
        assert body["reports"][0]["id"] == near.id

    def test_user_reports(self, client, make_report):
        mine = make_report(creator_id="user-123")
        make_report(creator_id="user-456")

        body = client.get("/api/reports/user", headers=_auth("user-123")).json()
        assert [r["id"] for r in body] == [mine.id]
        assert client.get("/api/reports/user/resolved", headers=_auth("user-123")).json() == []


class TestDebugRoutes:

    def test_missing_analysis(self, client, make_report):
        report = make_report()
        assert client.get(f"/api/reports/debug/{report.id}/analysis").status_code == 404

    def test_analysis_includes_annotated_image(self, client, db, make_report):
        report = make_report()
        db.add(ModelAnalysis(report_id=report.id, outcome="success", detections="[]", detection_count=1,
                             is_confirmed_issue=True, annotated_image="data:image/png;base64,AAAA"))
        db.commit()

        body = client.get(f"/api/reports/debug/{report.id}/analysis").json()

        assert body["annotated_image"] == "data:image/png;base64,AAAA"
        assert body["is_confirmed_issue"] is True

    def test_hidden_in_production(self, client, monkeypatch):
        monkeypatch.setattr("civic_reports.api.report.settings.ENV", "production")
        assert client.get("/api/reports/debug/model/health").status_code == 404

    def test_model_health(self, client, monkeypatch):
        monkeypatch.setattr("civic_reports.services.analysis_service.check_model_health", lambda: False)
        body = client.get("/api/reports/debug/model/health").json()
        assert body["healthy"] is False


class TestInternalDedupe:

    def test_check_and_merge(self, client, make_report):
        original = make_report(id="a" * 32)
        duplicate = make_report(id="b" * 32)

        check = client.post("/internal/dedupe/check", json={"report_id": duplicate.id}).json()
        assert check == {"is_duplicate": True, "original_report_id": original.id, "similarity": None}

        merged = client.post("/internal/dedupe/merge", json={"source_id": duplicate.id, "target_id": original.id})
        assert merged.status_code == 200
        assert merged.json()["duplicate_count"] == 1

        again = client.post("/internal/dedupe/merge", json={"source_id": duplicate.id, "target_id": original.id})
        assert again.status_code == 409

    def test_merge_unknown_report(self, client, make_report):
        original = make_report()
        response = client.post("/internal/dedupe/merge", json={"source_id": "missing", "target_id": original.id})
        assert response.status_code == 404

    def test_merging_a_resolved_report_conflicts(self, client, make_report):
        original = make_report()
        resolved = make_report(status="RESOLVED")
        response = client.post("/internal/dedupe/merge", json={"source_id": resolved.id, "target_id": original.id})
        assert response.status_code == 409


class TestLocalUploads:

    def test_uploaded_image_is_served(self, client, png_bytes):
        url = LocalImageStorage().upload(png_bytes, "image/png", folder="reports")

        response = client.get(url)

        assert response.status_code == 200
        assert response.content == png_bytes
