import os
import json
import logging
import time
from typing import Dict, Any, List

from pywebpush import webpush, WebPushException

logger = logging.getLogger(__name__)

VAPID_SUBJECT = os.getenv("VAPID_SUBJECT", "mailto:admin@example.com")

# Push services answer these for subscriptions that no longer exist
GONE_STATUSES = {404, 410}


class PushConfigError(RuntimeError):
    pass


def vapid_keys() -> Dict[str, str]:
    public_key = os.getenv("VAPID_PUBLIC_KEY")
    private_key = os.getenv("VAPID_PRIVATE_KEY")
    if not public_key or not private_key:
        raise PushConfigError("VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY must be set")
    return {"public_key": public_key, "private_key": private_key}


def build_payload(title: str, body: str = "", url: str = "/") -> str:
    return json.dumps({
        "title": title,
        "body": body or "",
        "url": url or "/",
        "timestamp": int(time.time() * 1000),
    })


def send_to_user(cur, user_id: int, payload: str) -> Dict[str, Any]:
    """Deliver ``payload`` to every subscription of ``user_id``.

    Subscriptions the push service reports as gone are deleted; the caller
    commits.
    """
    subs = cur.execute(
        "SELECT endpoint, p256dh, auth FROM push_subscriptions WHERE user_id=?",
        (user_id,),
    ).fetchall()
    if not subs:
        return {"successful": 0, "failed": 0, "removed": 0, "total": 0}

    keys = vapid_keys()
    successful = 0
    failed = 0
    gone: List[str] = []
    for s in subs:
        subscription = {"endpoint": s["endpoint"], "keys": {"p256dh": s["p256dh"], "auth": s["auth"]}}
        try:
            webpush(
                subscription_info=subscription,
                data=payload,
                vapid_private_key=keys["private_key"],
                vapid_claims={"sub": VAPID_SUBJECT},
            )
            successful += 1
        except WebPushException as e:
            failed += 1
            status = getattr(e.response, "status_code", None)
            logger.warning("Push to %s failed (status=%s): %s", s["endpoint"], status, e)
            if status in GONE_STATUSES:
                gone.append(s["endpoint"])

    for endpoint in gone:
        cur.execute("DELETE FROM push_subscriptions WHERE endpoint=?", (endpoint,))
    logger.info("Push to user %s: %s sent, %s failed, %s removed", user_id, successful, failed, len(gone))
    return {"successful": successful, "failed": failed, "removed": len(gone), "total": len(subs)}
