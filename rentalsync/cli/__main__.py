# rentalsync/cli/__main__.py
from __future__ import annotations

import argparse
import signal
import threading

from sqlalchemy import select

from ..clients.hostify import HostifyClient
from ..config import settings
from ..db import SessionLocal, init_db
from ..logging_config import configure_logging
from ..models import AppUser
from ..services.ownership import OWNER_ROLES
from ..services.scheduler import build_default_scheduler
from ..services.sync_listings import sync_listings
from ..services.sync_messages import sync_messages
from ..services.sync_reservations import sync_reservations
from ..services.sync_reviews import sync_reviews
from ..services.webhook_registrar import register_webhooks

# listings first: reservations and threads attach to properties it creates
ROUTINES = {
    "listings": sync_listings,
    "reservations": sync_reservations,
    "messages": sync_messages,
    "reviews": sync_reviews,
}


def _cmd_init_db(args) -> dict:
    init_db()
    return {"ok": True, "database_url": settings.database_url}


def _cmd_create_owner(args) -> dict:
    db = SessionLocal()
    try:
        email = args.email.strip().lower()
        user = db.scalar(select(AppUser).where(AppUser.email == email))
        if user is None:
            user = AppUser(email=email, display_name=args.name, role=args.role)
            db.add(user)
            db.commit()
        return {"ok": True, "user_id": user.id, "email": user.email, "role": user.role}
    finally:
        db.close()


def _cmd_sync(args) -> dict:
    names = list(ROUTINES) if args.entity == "all" else [args.entity]
    out: dict = {"ok": True}
    db = SessionLocal()
    try:
        with HostifyClient.from_settings(settings) as client:
            for name in names:
                out[name] = ROUTINES[name](db, client).as_metadata()
    finally:
        db.close()
    return out


def _cmd_scheduler(args) -> dict:
    scheduler = build_default_scheduler(settings)
    stop = threading.Event()

    def _on_signal(signum, frame) -> None:
        stop.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    scheduler.start()
    stop.wait()
    scheduler.stop(timeout=30.0)
    return {"ok": True, "stopped": True}


def _cmd_register_webhooks(args) -> dict:
    db = SessionLocal()
    try:
        with HostifyClient.from_settings(settings) as client:
            res = register_webhooks(
                db,
                client,
                api_url=args.api_url or settings.api_url,
                auth_secret=settings.hostify_webhook_auth_secret,
            )
        return {
            "ok": True,
            "callback_url": res.callback_url,
            "created": res.created,
            "already_registered": res.already_registered,
        }
    finally:
        db.close()


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rentalsync")
    sub = p.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="create tables").set_defaults(fn=_cmd_init_db)

    owner = sub.add_parser("create-owner", help="create the user new listings are assigned to")
    owner.add_argument("--email", required=True)
    owner.add_argument("--name", default=None)
    owner.add_argument("--role", default="OWNER", choices=list(OWNER_ROLES))
    owner.set_defaults(fn=_cmd_create_owner)

    sync = sub.add_parser("sync", help="run one reconciliation pass now")
    sync.add_argument("entity", choices=[*ROUTINES, "all"])
    sync.set_defaults(fn=_cmd_sync)

    sub.add_parser("scheduler", help="run the periodic sync loop in the foreground").set_defaults(
        fn=_cmd_scheduler
    )

    reg = sub.add_parser("register-webhooks", help="subscribe Hostify notifications to this API")
    reg.add_argument("--api-url", default=None)
    reg.set_defaults(fn=_cmd_register_webhooks)

    return p


def main(argv: list[str] | None = None) -> None:
    configure_logging()
    args = build_parser().parse_args(argv)
    print(args.fn(args))


if __name__ == "__main__":
    main()
