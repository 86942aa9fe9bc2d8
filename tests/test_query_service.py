import pytest

from civicsense.errors import ValidationFailed
from civicsense.services.issue_service import issue_service
from civicsense.services.query_service import query_service, haversine_distance, bounding_box


def test_pagination_over_25_issues(db, make_user, make_issue):
    reporter = make_user()
    for _ in range(25):
        make_issue(reporter)

    result = query_service.list_issues(db, page=2, limit=10)

    assert len(result["issues"]) == 10
    assert result["pagination"] == {"page": 2, "limit": 10, "total": 25, "pages": 3}

    last = query_service.list_issues(db, page=3, limit=10)
    assert len(last["issues"]) == 5


def test_pages_are_disjoint_and_newest_first(db, make_user, make_issue):
    reporter = make_user()
    ids = [make_issue(reporter).id for _ in range(6)]

    first = [i["id"] for i in query_service.list_issues(db, page=1, limit=3)["issues"]]
    second = [i["id"] for i in query_service.list_issues(db, page=2, limit=3)["issues"]]

    assert first + second == sorted(ids, reverse=True)


def test_filters_and_search(db, make_user, make_issue):
    reporter = make_user()
    make_issue(reporter, category="pothole", description="Deep pothole near the bus stop")
    make_issue(reporter, category="garbage", description="Garbage dumped beside the park gate")
    make_issue(reporter, category="streetlight", description="Streetlight flickers on Elm Street",
               address="Elm Street 4")

    assert query_service.list_issues(db, category="garbage")["pagination"]["total"] == 1
    assert query_service.list_issues(db, department="roads")["pagination"]["total"] == 1
    assert query_service.list_issues(db, severity="medium")["pagination"]["total"] == 2
    assert query_service.list_issues(db, search="PARK")["pagination"]["total"] == 1
    assert query_service.list_issues(db, search="elm street")["pagination"]["total"] == 1
    assert query_service.list_issues(db, status="resolved")["pagination"]["total"] == 0


def test_sort_by_severity_ascending(db, make_user, make_issue):
    reporter = make_user()
    make_issue(reporter, category="pothole")
    make_issue(reporter, category="noise", description="Loud music every night here")
    make_issue(reporter, category="garbage", description="Garbage dumped beside the park gate")

    result = query_service.list_issues(db, sort_by="severityScore", sort_order="asc")
    assert [i["severity_score"] for i in result["issues"]] == [3, 5, 8]


def test_unknown_sort_field_is_rejected(db):
    with pytest.raises(ValidationFailed):
        query_service.list_issues(db, sort_by="password_hash")


def test_proximity_filter(db, make_user, make_issue):
    reporter = make_user()
    near = make_issue(reporter, latitude=12.9716, longitude=77.5946)
    make_issue(reporter, latitude=12.9800, longitude=77.5946)  # ~930m north
    make_issue(reporter, latitude=28.6139, longitude=77.2090)  # another city

    result = query_service.list_issues(db, lat=12.9716, lng=77.5946, radius=500)
    assert [i["id"] for i in result["issues"]] == [near.id]

    wider = query_service.list_issues(db, lat=12.9716, lng=77.5946, radius=2000)
    assert wider["pagination"]["total"] == 2


def test_haversine_and_bounding_box():
    assert haversine_distance(0, 0, 0, 0) == 0
    assert haversine_distance(0, 0, 1, 0) == pytest.approx(111195, rel=1e-3)

    min_lat, max_lat, min_lng, max_lng = bounding_box(10, 20, 1000)
    assert min_lat < 10 < max_lat
    assert min_lng < 20 < max_lng


def test_map_markers_hide_closed_issues(db, make_user, make_issue):
    reporter = make_user()
    staff = make_user(role="admin")
    open_issue = make_issue(reporter, description="A" * 150)
    closed = make_issue(reporter)
    issue_service.transition_status(db, closed.id, "rejected", staff)

    markers = query_service.map_markers(db)
    assert [m["id"] for m in markers] == [open_issue.id]
    assert len(markers[0]["description"]) == 100
    assert set(markers[0]) == {
        "id", "latitude", "longitude", "category", "severity",
        "status", "verifications", "image_url", "description"
    }

    rejected = query_service.map_markers(db, status="rejected")
    assert [m["id"] for m in rejected] == [closed.id]


def test_heatmap_groups_nearby_issues(db, make_user, make_issue):
    reporter = make_user()
    make_issue(reporter, category="pothole", latitude=12.97161, longitude=77.59461)
    make_issue(reporter, category="garbage", description="Garbage dumped beside the park gate",
               latitude=12.97164, longitude=77.59458)
    make_issue(reporter, latitude=13.5, longitude=77.5)

    hotspots = query_service.heatmap(db)
    assert len(hotspots) == 2

    cell = next(h for h in hotspots if h["latitude"] == 12.972)
    assert cell["longitude"] == 77.595
    assert cell["count"] == 2
    assert cell["avg_severity"] == 6.5
    assert cell["weight"] == 13.0


def test_reported_by_filter(db, make_user, make_issue):
    alice = make_user()
    bob = make_user()
    make_issue(alice)
    make_issue(bob)
    make_issue(bob)

    assert query_service.list_issues(db, reported_by=bob.id)["pagination"]["total"] == 2
