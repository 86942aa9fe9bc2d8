from civicsense.db.models import Issue

FORM = {
    "latitude": "12.9716",
    "longitude": "77.5946",
    "description": "Dangerous pothole, accident waiting to happen",
}


def _photo(name="photo.jpg", content=b"\xff\xd8\xff fake jpeg"):
    return {"image": (name, content, "image/jpeg")}


def test_report_issue_with_category(client, make_user, auth_headers, image_store, classifier, geocoder):
    user = make_user()
    response = client.post(
        "/api/issues",
        data={**FORM, "category": "pothole", "ai_confidence": "77"},
        files=_photo(),
        headers=auth_headers(user)
    )

    assert response.status_code == 201
    issue = response.json()["issue"]
    assert issue["category"] == "pothole"
    assert issue["severity"] == "critical"
    assert issue["severity_score"] == 10
    assert issue["assigned_department"] == "roads"
    assert issue["predicted_resolution_time"] == 24
    assert issue["ai_confidence"] == 77
    assert issue["status"] == "pending"
    assert issue["location"] == {"type": "Point", "coordinates": [77.5946, 12.9716]}
    assert issue["address"] == "MG Road, Bangalore"
    assert issue["reported_by"]["id"] == user.id
    assert issue["image_url"].startswith("https://images.test/civicsense/issues/")
    assert len(issue["timeline"]) == 1
    assert image_store.uploads == [("photo.jpg", "civicsense/issues")]
    assert classifier.calls == []
    assert geocoder.calls == [(12.9716, 77.5946)]


def test_report_without_category_uses_classifier(client, make_user, auth_headers, classifier):
    response = client.post(
        "/api/issues",
        data={**FORM, "address": "Given address"},
        files=_photo(),
        headers=auth_headers(make_user())
    )
    assert response.status_code == 201
    issue = response.json()["issue"]
    assert issue["category"] == "pothole"
    assert issue["ai_confidence"] == 88
    assert issue["address"] == "Given address"
    assert classifier.calls[0].startswith("data:image/jpeg;base64,")


def test_report_with_image_url(client, make_user, auth_headers, image_store):
    response = client.post(
        "/api/issues",
        data={**FORM, "category": "garbage", "image_url": "https://cdn.example.com/garbage.png"},
        headers=auth_headers(make_user())
    )
    assert response.status_code == 201
    assert response.json()["issue"]["image_url"] == "https://cdn.example.com/garbage.png"
    assert image_store.uploads == []


def test_report_validation(client, make_user, auth_headers, image_store, db):
    headers = auth_headers(make_user())

    no_image = client.post("/api/issues", data={**FORM, "category": "pothole"}, headers=headers)
    assert no_image.status_code == 400

    bad_type = client.post("/api/issues", data={**FORM, "category": "pothole"},
                           files=_photo("notes.gif"), headers=headers)
    assert bad_type.status_code == 400

    short = client.post("/api/issues", data={**FORM, "description": "short"},
                        files=_photo(), headers=headers)
    assert short.status_code == 400
    assert short.json()["detail"] == {"field": "description"}

    missing = client.post("/api/issues", data={"description": FORM["description"]},
                          files=_photo(), headers=headers)
    assert missing.status_code == 400
    assert {e["field"] for e in missing.json()["errors"]} == {"latitude", "longitude"}

    assert image_store.uploads == []
    assert db.query(Issue).count() == 0


def test_report_requires_auth(client):
    assert client.post("/api/issues", data=FORM, files=_photo()).status_code == 401


def test_list_and_detail(client, make_user, make_issue):
    reporter = make_user()
    issues = [make_issue(reporter) for _ in range(25)]

    page = client.get("/api/issues?page=2&limit=10&sortBy=createdAt&sortOrder=desc").json()
    assert len(page["issues"]) == 10
    assert page["pagination"] == {"page": 2, "limit": 10, "total": 25, "pages": 3}

    assert client.get("/api/issues?sortBy=nope").status_code == 400
    assert client.get("/api/issues?sortOrder=sideways").status_code == 400

    detail = client.get(f"/api/issues/{issues[0].id}").json()["issue"]
    assert detail["reported_by"]["name"] == reporter.name
    assert detail["verifiers"] == []
    assert detail["comments"] == []

    missing = client.get("/api/issues/9999")
    assert missing.status_code == 404
    assert missing.json()["code"] == "NotFound"


def test_three_verifications_over_http(client, make_user, make_issue, auth_headers):
    reporter = make_user()
    issue = make_issue(reporter)
    voters = [make_user() for _ in range(3)]

    own = client.post(f"/api/issues/{issue.id}/verify", json={"is_real": True}, headers=auth_headers(reporter))
    assert own.status_code == 400
    assert own.json()["code"] == "SelfVerificationForbidden"

    for voter in voters:
        response = client.post(f"/api/issues/{issue.id}/verify", json={"is_real": True},
                               headers=auth_headers(voter))
        assert response.status_code == 200

    body = response.json()["issue"]
    assert body["verifications"] == 3
    assert body["is_authentic"] is True
    assert body["status"] == "verified"
    assert body["verified_by"] == [v.id for v in voters]
    assert [entry["status"] for entry in body["timeline"]] == ["pending", "verified"]

    again = client.post(f"/api/issues/{issue.id}/verify", headers=auth_headers(voters[0]))
    assert again.status_code == 400
    assert again.json()["code"] == "AlreadyVerified"

    detail = client.get(f"/api/issues/{issue.id}").json()["issue"]
    assert [v["id"] for v in detail["verifiers"]] == [v.id for v in voters]


def test_authority_workflow(client, make_user, make_issue, auth_headers, image_store):
    reporter = make_user()
    staff = make_user(role="authority", department="roads")
    issue = make_issue(reporter)
    headers = auth_headers(staff)

    citizen_patch = client.patch(f"/api/issues/{issue.id}", json={"status": "verified"},
                                 headers=auth_headers(reporter))
    assert citizen_patch.status_code == 403

    response = client.patch(f"/api/issues/{issue.id}",
                            json={"status": "verified", "assigned_to": staff.id}, headers=headers)
    assert response.status_code == 200
    assert response.json()["issue"]["assigned_to"]["id"] == staff.id

    skip = client.patch(f"/api/issues/{issue.id}", json={"status": "resolved"}, headers=headers)
    assert skip.status_code == 409
    assert skip.json()["code"] == "InvalidTransition"

    for status in ("under_review", "in_progress"):
        assert client.patch(f"/api/issues/{issue.id}", json={"status": status},
                            headers=headers).status_code == 200

    resolved = client.post(
        f"/api/issues/{issue.id}/resolve",
        data={"notes": "Road patched"},
        files={"proof_image": ("after.png", b"\x89PNG proof", "image/png")},
        headers=headers
    )
    assert resolved.status_code == 200
    body = resolved.json()["issue"]
    assert body["status"] == "resolved"
    assert body["resolution"]["notes"] == "Road patched"
    assert body["resolution"]["resolved_by"]["id"] == staff.id
    assert body["resolution"]["proof_image"].startswith("https://images.test/civicsense/proofs/")
    assert [e["status"] for e in body["timeline"]] == [
        "pending", "verified", "under_review", "in_progress", "resolved"
    ]


def test_comments_and_delete(client, make_user, make_issue, auth_headers):
    reporter = make_user()
    other = make_user()
    issue = make_issue(reporter)

    comment = client.post(f"/api/issues/{issue.id}/comment", json={"text": "Seen it too"},
                          headers=auth_headers(other))
    assert comment.status_code == 201
    assert comment.json()["comment"]["user"]["id"] == other.id

    detail = client.get(f"/api/issues/{issue.id}").json()["issue"]
    assert [c["text"] for c in detail["comments"]] == ["Seen it too"]

    assert client.delete(f"/api/issues/{issue.id}", headers=auth_headers(other)).status_code == 403
    assert client.delete(f"/api/issues/{issue.id}", headers=auth_headers(reporter)).status_code == 200
    assert client.get(f"/api/issues/{issue.id}").status_code == 404


def test_my_issues_map_and_heatmap(client, make_user, make_issue, auth_headers):
    me = make_user()
    someone = make_user()
    make_issue(me)
    make_issue(someone)

    mine = client.get("/api/issues/user/my-issues", headers=auth_headers(me)).json()
    assert mine["pagination"]["total"] == 1
    assert mine["issues"][0]["reported_by"]["id"] == me.id

    markers = client.get("/api/issues/map").json()
    assert markers["count"] == 2

    hotspots = client.get("/api/issues/heatmap").json()["hotspots"]
    assert hotspots[0]["count"] == 2


def test_patch_with_missing_assignee_applies_nothing(client, make_user, make_issue, auth_headers):
    reporter = make_user()
    staff = make_user(role="authority", department="roads")
    issue = make_issue(reporter)

    response = client.patch(f"/api/issues/{issue.id}",
                            json={"status": "verified", "assigned_to": 99999}, headers=auth_headers(staff))
    assert response.status_code == 404

    detail = client.get(f"/api/issues/{issue.id}").json()["issue"]
    assert detail["status"] == "pending"
    assert detail["assigned_to"] is None
    assert [e["status"] for e in detail["timeline"]] == ["pending"]


def test_resolve_out_of_order_uploads_nothing(client, make_user, make_issue, auth_headers, image_store):
    reporter = make_user()
    staff = make_user(role="authority", department="roads")
    issue = make_issue(reporter)

    response = client.post(
        f"/api/issues/{issue.id}/resolve",
        data={"notes": "Too early"},
        files={"proof_image": ("after.png", b"\x89PNG proof", "image/png")},
        headers=auth_headers(staff)
    )
    assert response.status_code == 409
    assert response.json()["code"] == "InvalidTransition"
    assert image_store.uploads == []
