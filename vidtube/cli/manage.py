from __future__ import annotations

import argparse
import json
import logging
import os
import sys
import time
from typing import Any

from vidtube.config.load_config import load_app_config
from vidtube.runtime.worker import WorkflowWorker
from vidtube.storage.sqlite_store import ConflictError, SQLiteStore
from vidtube.utils.template import render_template


logger = logging.getLogger("vidtube.cli")


def _print(payload: dict[str, Any]) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2))


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="vidtube management commands.")
    parser.add_argument(
        "--db-path",
        default="",
        help="SQLite path (default: env VIDTUBE_SQLITE_PATH or data/app.db).",
    )
    parser.add_argument("--log-level", default=os.getenv("VIDTUBE_LOG_LEVEL", "info"))
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-user", help="Create a user bound to an auth id.")
    p.add_argument("--auth-id", required=True)
    p.add_argument("--name", required=True)
    p.add_argument("--image-url", default="")

    p = sub.add_parser("create-category", help="Create a video category.")
    p.add_argument("--name", required=True)
    p.add_argument("--description", default=None)

    p = sub.add_parser(
        "media-ready",
        help="Record a finished media upload (status, playback id, duration) for a video.",
    )
    p.add_argument("--video-id", required=True)
    p.add_argument("--playback-id", required=True)
    p.add_argument("--asset-id", default=None)
    p.add_argument("--duration-ms", type=int, default=0)

    p = sub.add_parser("seed-demo", help="Populate a small demo catalog (users, categories, public videos).")
    p.add_argument("--videos", type=int, default=30, help="Number of demo videos to create.")

    p = sub.add_parser("run-worker", help="Run the workflow worker in the foreground.")
    p.add_argument("--once", action="store_true", help="Drain the queue once, then exit.")

    return parser.parse_args(argv)


def _create_user(store: SQLiteStore, args: argparse.Namespace) -> int:
    try:
        rec = store.create_user(auth_id=args.auth_id, name=args.name, image_url=args.image_url)
    except ConflictError as e:
        print(str(e), file=sys.stderr)
        return 1
    _print({"user_id": rec.user_id, "auth_id": rec.auth_id, "name": rec.name})
    return 0


def _create_category(store: SQLiteStore, args: argparse.Namespace) -> int:
    try:
        rec = store.create_category(name=args.name, description=args.description)
    except ConflictError as e:
        print(str(e), file=sys.stderr)
        return 1
    _print({"category_id": rec.category_id, "name": rec.name})
    return 0


def _media_ready(store: SQLiteStore, args: argparse.Namespace) -> int:
    if store.get_video(video_id=args.video_id) is None:
        print(f"Video not found: {args.video_id}", file=sys.stderr)
        return 1
    media = load_app_config().media
    variables = {"playback_id": args.playback_id}
    store.update_video_media(
        video_id=args.video_id,
        media_status="ready",
        media_asset_id=args.asset_id,
        media_playback_id=args.playback_id,
        thumbnail_url=render_template(media.thumbnail_url_template, variables),
        preview_url=render_template(media.preview_url_template, variables),
        duration_ms=int(args.duration_ms),
    )
    _print({"video_id": args.video_id, "media_status": "ready"})
    return 0


def _seed_demo(store: SQLiteStore, args: argparse.Namespace) -> int:
    creators = []
    for i in range(3):
        auth_id = f"demo_creator_{i}"
        row = store.get_user_by_auth_id(auth_id=auth_id)
        if row is None:
            creators.append(store.create_user(auth_id=auth_id, name=f"Demo Creator {i}").user_id)
        else:
            creators.append(str(row["user_id"]))

    categories = []
    existing = {c["name"]: c["category_id"] for c in store.list_categories()}
    for name in ("Music", "Gaming", "Education", "Travel"):
        categories.append(existing.get(name) or store.create_category(name=name).category_id)

    for i in range(int(args.videos)):
        user_id = creators[i % len(creators)]
        video = store.create_video(user_id=user_id, title=f"Demo video #{i + 1}")
        store.update_video(
            video_id=video.video_id,
            user_id=user_id,
            changes={
                "visibility": "public",
                "category_id": categories[i % len(categories)],
                "description": f"Demo upload {i + 1} from the seed command.",
            },
        )

    logger.info("Seeded %d demo videos across %d creators", int(args.videos), len(creators))
    _print({"creators": creators, "categories": categories, "videos": int(args.videos)})
    return 0


def _run_worker(db_path: str | None, args: argparse.Namespace) -> int:
    worker = WorkflowWorker(db_path=db_path)
    if args.once:
        store = SQLiteStore(db_path)
        try:
            n = 0
            while worker.run_once(store):
                n += 1
        finally:
            store.close()
        _print({"processed": n})
        return 0

    worker.start()
    try:
        while worker.running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping worker")
    finally:
        worker.stop()
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv if argv is not None else sys.argv[1:])
    logging.basicConfig(
        level=str(args.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    db_path = (args.db_path or "").strip() or None

    if args.command == "run-worker":
        return _run_worker(db_path, args)

    store = SQLiteStore(db_path)
    try:
        if args.command == "create-user":
            return _create_user(store, args)
        if args.command == "create-category":
            return _create_category(store, args)
        if args.command == "media-ready":
            return _media_ready(store, args)
        if args.command == "seed-demo":
            return _seed_demo(store, args)
    finally:
        store.close()

    raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
