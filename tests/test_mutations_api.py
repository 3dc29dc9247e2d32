from __future__ import annotations

import os
import tempfile

import pytest
from fastapi.testclient import TestClient

from vidtube.api.app import create_app
from vidtube.api.ratelimit import SlidingWindowLimiter
from vidtube.storage.sqlite_store import SQLiteStore


ALICE = {"X-User-Id": "auth_alice"}
BOB = {"X-User-Id": "auth_bob"}


def _seed_users(*, db_path: str) -> dict[str, str]:
    store = SQLiteStore(db_path)
    try:
        return {
            "alice": store.create_user(auth_id="auth_alice", name="Alice").user_id,
            "bob": store.create_user(auth_id="auth_bob", name="Bob").user_id,
        }
    finally:
        store.close()


def _app(monkeypatch: pytest.MonkeyPatch, td: str):  # noqa: ANN202
    db_path = os.path.join(td, "app.db")
    monkeypatch.setenv("VIDTUBE_SQLITE_PATH", db_path)
    monkeypatch.setenv("VIDTUBE_ENABLE_WORKER", "0")
    users = _seed_users(db_path=db_path)
    app = create_app()
    # Keep the limiter out of the way; it has its own test below.
    app.state.rate_limiter = SlidingWindowLimiter(max_requests=1000, window_s=60.0)
    return app, db_path, users


def _publish(client: TestClient, headers: dict[str, str], title: str = "My video") -> str:
    created = client.post("/api/v1/videos", headers=headers)
    assert created.status_code == 201
    video_id = created.json()["video"]["video_id"]
    resp = client.patch(
        f"/api/v1/videos/{video_id}",
        json={"title": title, "visibility": "public"},
        headers=headers,
    )
    assert resp.status_code == 200
    return video_id


def test_video_lifecycle_and_ownership(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, _, users = _app(monkeypatch, td)
        with TestClient(app) as client:
            resp = client.post("/api/v1/videos")
            assert resp.status_code == 401
            assert resp.json()["error"]["code"] == "unauthenticated"

            draft = client.post("/api/v1/videos", headers=ALICE).json()["video"]
            assert draft["title"] == "Untitled"
            assert draft["visibility"] == "private"
            assert draft["media_status"] == "waiting"
            video_id = draft["video_id"]

            # Private drafts only exist for their owner.
            assert client.get(f"/api/v1/videos/{video_id}", headers=BOB).status_code == 404
            assert client.get(f"/api/v1/videos/{video_id}").status_code == 404
            assert client.get(f"/api/v1/videos/{video_id}", headers=ALICE).status_code == 200

            # Non-owner edits look like a missing video.
            resp = client.patch(f"/api/v1/videos/{video_id}", json={"title": "hijack"}, headers=BOB)
            assert resp.status_code == 404

            resp = client.patch(f"/api/v1/videos/{video_id}", json={"visibility": "unlisted"}, headers=ALICE)
            assert resp.status_code == 400

            resp = client.patch(f"/api/v1/videos/{video_id}", json={}, headers=ALICE)
            assert resp.status_code == 400

            resp = client.patch(
                f"/api/v1/videos/{video_id}",
                json={"title": "Hello world", "visibility": "public"},
                headers=ALICE,
            )
            assert resp.status_code == 200
            video = resp.json()["video"]
            assert video["title"] == "Hello world"
            assert video["user"]["user_id"] == users["alice"]

            assert client.get(f"/api/v1/videos/{video_id}", headers=BOB).status_code == 200

            studio = client.get("/api/v1/studio/videos", params={"limit": 10}, headers=ALICE).json()
            assert [it["video_id"] for it in studio["items"]] == [video_id]
            assert client.get(f"/api/v1/studio/videos/{video_id}", headers=BOB).status_code == 404

            assert client.delete(f"/api/v1/videos/{video_id}", headers=BOB).status_code == 404
            assert client.delete(f"/api/v1/videos/{video_id}", headers=ALICE).status_code == 200
            assert client.get(f"/api/v1/videos/{video_id}", headers=ALICE).status_code == 404

            assert client.get("/api/v1/videos/not-a-uuid").status_code == 400


def test_reactions_toggle_and_views(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, _, _ = _app(monkeypatch, td)
        with TestClient(app) as client:
            video_id = _publish(client, ALICE)

            liked = client.post(f"/api/v1/videos/{video_id}/like", headers=BOB).json()
            assert liked["viewer_reaction"] == "like"
            assert liked["like_count"] == 1

            switched = client.post(f"/api/v1/videos/{video_id}/dislike", headers=BOB).json()
            assert switched["viewer_reaction"] == "dislike"
            assert switched["like_count"] == 0
            assert switched["dislike_count"] == 1

            cleared = client.post(f"/api/v1/videos/{video_id}/dislike", headers=BOB).json()
            assert cleared["viewer_reaction"] is None
            assert cleared["dislike_count"] == 0

            assert client.post(f"/api/v1/videos/{video_id}/views", headers=BOB).status_code == 201
            assert client.post(f"/api/v1/videos/{video_id}/views", headers=BOB).status_code == 201
            detail = client.get(f"/api/v1/videos/{video_id}", headers=BOB).json()["video"]
            assert detail["view_count"] == 1

            history = client.get("/api/v1/playlists/history", params={"limit": 5}, headers=BOB).json()
            assert [it["video_id"] for it in history["items"]] == [video_id]


def test_comments_create_react_delete(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, _, _ = _app(monkeypatch, td)
        with TestClient(app) as client:
            video_id = _publish(client, ALICE)

            resp = client.post("/api/v1/comments", json={"video_id": video_id, "value": "Nice!"})
            assert resp.status_code == 401

            resp = client.post("/api/v1/comments", json={"video_id": video_id, "value": ""}, headers=BOB)
            assert resp.status_code == 400

            created = client.post("/api/v1/comments", json={"video_id": video_id, "value": "Nice!"}, headers=BOB)
            assert created.status_code == 201
            comment_id = created.json()["comment"]["comment_id"]

            reacted = client.post(f"/api/v1/comments/{comment_id}/like", headers=ALICE).json()
            assert reacted["viewer_reaction"] == "like"

            page = client.get("/api/v1/comments", params={"video_id": video_id, "limit": 10}, headers=ALICE).json()
            assert page["total_count"] == 1
            assert page["items"][0]["like_count"] == 1
            assert page["items"][0]["viewer_reaction"] == "like"

            assert client.delete(f"/api/v1/comments/{comment_id}", headers=ALICE).status_code == 404
            assert client.delete(f"/api/v1/comments/{comment_id}", headers=BOB).status_code == 200
            page = client.get("/api/v1/comments", params={"video_id": video_id, "limit": 10}).json()
            assert page["items"] == []
            assert page["total_count"] == 0


def test_subscriptions(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, _, users = _app(monkeypatch, td)
        with TestClient(app) as client:
            video_id = _publish(client, ALICE)
            alice = users["alice"]

            resp = client.post(f"/api/v1/subscriptions/{alice}", headers=ALICE)
            assert resp.status_code == 400

            assert client.post(f"/api/v1/subscriptions/{alice}", headers=BOB).status_code == 201
            dup = client.post(f"/api/v1/subscriptions/{alice}", headers=BOB)
            assert dup.status_code == 409
            assert dup.json()["error"]["code"] == "conflict"

            subs = client.get("/api/v1/subscriptions", params={"limit": 10}, headers=BOB).json()
            assert [it["creator_id"] for it in subs["items"]] == [alice]
            assert subs["items"][0]["user"]["subscriber_count"] == 1

            feed = client.get("/api/v1/videos/subscribed", params={"limit": 10}, headers=BOB).json()
            assert [it["video_id"] for it in feed["items"]] == [video_id]

            profile = client.get(f"/api/v1/users/{alice}", headers=BOB).json()["user"]
            assert profile["subscriber_count"] == 1
            assert profile["viewer_subscribed"] is True
            assert profile["video_count"] == 1

            assert client.delete(f"/api/v1/subscriptions/{alice}", headers=BOB).status_code == 200
            assert client.delete(f"/api/v1/subscriptions/{alice}", headers=BOB).status_code == 404
            feed = client.get("/api/v1/videos/subscribed", params={"limit": 10}, headers=BOB).json()
            assert feed["items"] == []


def test_playlists(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, _, _ = _app(monkeypatch, td)
        with TestClient(app) as client:
            first = _publish(client, ALICE, title="First")
            second = _publish(client, ALICE, title="Second")

            created = client.post("/api/v1/playlists", json={"name": "Favorites"}, headers=BOB)
            assert created.status_code == 201
            playlist_id = created.json()["playlist"]["playlist_id"]

            for vid in (first, second):
                resp = client.post(f"/api/v1/playlists/{playlist_id}/videos/{vid}", headers=BOB)
                assert resp.status_code == 201

            # Only the owner can see or modify the playlist.
            assert client.get(f"/api/v1/playlists/{playlist_id}", headers=ALICE).status_code == 404
            resp = client.post(f"/api/v1/playlists/{playlist_id}/videos/{first}", headers=ALICE)
            assert resp.status_code == 404

            playlist = client.get(f"/api/v1/playlists/{playlist_id}", headers=BOB).json()["playlist"]
            assert playlist["video_count"] == 2

            videos = client.get(
                f"/api/v1/playlists/{playlist_id}/videos", params={"limit": 1}, headers=BOB
            ).json()
            assert [it["video_id"] for it in videos["items"]] == [second]
            rest = client.get(
                f"/api/v1/playlists/{playlist_id}/videos",
                params={"limit": 1, "cursor": videos["next_cursor"]},
                headers=BOB,
            ).json()
            assert [it["video_id"] for it in rest["items"]] == [first]
            assert rest["next_cursor"] is None

            mine = client.get("/api/v1/playlists", params={"limit": 10}, headers=BOB).json()
            assert [it["playlist_id"] for it in mine["items"]] == [playlist_id]

            resp = client.delete(f"/api/v1/playlists/{playlist_id}/videos/{second}", headers=BOB)
            assert resp.status_code == 200
            resp = client.delete(f"/api/v1/playlists/{playlist_id}/videos/{second}", headers=BOB)
            assert resp.status_code == 404

            assert client.delete(f"/api/v1/playlists/{playlist_id}", headers=ALICE).status_code == 404
            assert client.delete(f"/api/v1/playlists/{playlist_id}", headers=BOB).status_code == 200


def test_categories_and_suggestions(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, _, _ = _app(monkeypatch, td)
        with TestClient(app) as client:
            music = client.post("/api/v1/categories", json={"name": "Music"}, headers=ALICE)
            assert music.status_code == 201
            category_id = music.json()["category"]["category_id"]
            assert client.post("/api/v1/categories", json={"name": "Music"}, headers=ALICE).status_code == 409
            assert [c["name"] for c in client.get("/api/v1/categories").json()["items"]] == ["Music"]

            source = _publish(client, ALICE, title="Source")
            related = _publish(client, ALICE, title="Related")
            for vid in (source, related):
                resp = client.patch(f"/api/v1/videos/{vid}", json={"category_id": category_id}, headers=ALICE)
                assert resp.status_code == 200

            body = client.get("/api/v1/suggestions", params={"video_id": source, "limit": 10}).json()
            assert [it["video_id"] for it in body["items"]] == [related]

            filtered = client.get("/api/v1/videos", params={"limit": 10, "category_id": category_id}).json()
            assert {it["video_id"] for it in filtered["items"]} == {source, related}


def test_workflow_triggers_enqueue_jobs(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, db_path, _ = _app(monkeypatch, td)
        with TestClient(app) as client:
            video_id = _publish(client, ALICE)

            assert client.post(f"/api/v1/videos/{video_id}/generate-title", headers=BOB).status_code == 404

            resp = client.post(f"/api/v1/videos/{video_id}/generate-title", headers=ALICE)
            assert resp.status_code == 202
            job = resp.json()
            assert job["status"] == "queued"
            assert job["kind"] == "title"

            resp = client.post(
                f"/api/v1/videos/{video_id}/generate-thumbnail", json={"prompt": "short"}, headers=ALICE
            )
            assert resp.status_code == 400

            detail = client.get(f"/api/v1/jobs/{job['job_id']}", headers=ALICE).json()["job"]
            assert detail["status"] == "queued"
            assert client.get(f"/api/v1/jobs/{job['job_id']}", headers=BOB).status_code == 404

            events = client.get(f"/api/v1/jobs/{job['job_id']}/events", params={"limit": 10}, headers=ALICE)
            assert events.json() == {"items": [], "has_more": False, "next_cursor": None}

            # Thumbnail restore needs a finished media upload.
            resp = client.post(f"/api/v1/videos/{video_id}/restore-thumbnail", headers=ALICE)
            assert resp.status_code == 400

            store = SQLiteStore(db_path)
            try:
                store.update_video_media(video_id=video_id, media_status="ready", media_playback_id="pb123")
            finally:
                store.close()

            resp = client.post(f"/api/v1/videos/{video_id}/restore-thumbnail", headers=ALICE)
            assert resp.status_code == 200
            assert resp.json()["thumbnail_url"] == "https://image.mux.com/pb123/thumbnail.jpg"


def test_mutations_are_rate_limited_per_viewer(monkeypatch: pytest.MonkeyPatch) -> None:
    with tempfile.TemporaryDirectory() as td:
        app, _, _ = _app(monkeypatch, td)
        app.state.rate_limiter = SlidingWindowLimiter(max_requests=2, window_s=60.0)
        with TestClient(app) as client:
            assert client.post("/api/v1/videos", headers=ALICE).status_code == 201
            assert client.post("/api/v1/videos", headers=ALICE).status_code == 201
            resp = client.post("/api/v1/videos", headers=ALICE)
            assert resp.status_code == 429
            assert resp.json()["error"]["code"] == "rate_limited"

            # Buckets are per viewer.
            assert client.post("/api/v1/videos", headers=BOB).status_code == 201
