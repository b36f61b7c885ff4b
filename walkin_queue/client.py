from __future__ import annotations

# Command-line client.
#
# A client is a short-lived process:
# - connect to broker
# - publish one request (join, confirm entry, staff transition, ...)
# - wait for the correlated reply
# - print it and exit

import argparse
import time
from typing import Any

from .config import add_mqtt_args
from .models import Actor, CommsChannel, ServiceCategory, TicketStatus


def send_request(*, mqtt_host: str, mqtt_port: int, namespace: str, message: dict[str, Any], timeout: float = 5.0) -> dict:
    from .mqtt_client import MqttClient
    from .mqtt_topics import coordinator_requests, coordinator_responses

    # Unique client id so several clients can run concurrently.
    client_id = f"client-{message.get('type', 'request')}-{int(time.time() * 1000)}"
    mqtt = MqttClient(client_id=client_id, host=mqtt_host, port=mqtt_port)
    mqtt.start()

    reply_topic = coordinator_responses(client_id, namespace)
    mqtt.subscribe(reply_topic)

    try:
        return mqtt.request(
            request_topic=coordinator_requests(namespace),
            response_topic=reply_topic,
            message=message,
            timeout=timeout,
        )
    finally:
        mqtt.stop()


def add_client_commands(sub: Any) -> None:
    p_join = sub.add_parser("join", help="Join a branch queue remotely")
    add_mqtt_args(p_join)
    p_join.add_argument("--branch-id", required=True)
    p_join.add_argument("--name", required=True)
    p_join.add_argument("--phone", default="")
    p_join.add_argument("--channel", choices=[c.value for c in CommsChannel], default=CommsChannel.SMS.value)
    p_join.add_argument("--member-id", default=None)
    p_join.add_argument("--service-category", choices=[c.value for c in ServiceCategory], default=None)

    p_confirm = sub.add_parser("confirm", help="Confirm entry into the building")
    add_mqtt_args(p_confirm)
    p_confirm.add_argument("--ticket-id", required=True)

    p_tr = sub.add_parser("transition", help="(staff) Move a ticket to another status")
    add_mqtt_args(p_tr)
    p_tr.add_argument("--ticket-id", required=True)
    p_tr.add_argument("--target", required=True, choices=[s.value for s in TicketStatus])
    p_tr.add_argument("--actor", required=True, choices=[a.value for a in Actor])
    p_tr.add_argument("--reason", default=None)
    p_tr.add_argument("--teller-id", default=None)
    p_tr.add_argument("--counter-id", default=None)

    p_ns = sub.add_parser("no-show", help="(staff) Flag a ticket as a no-show")
    add_mqtt_args(p_ns)
    p_ns.add_argument("--ticket-id", required=True)
    p_ns.add_argument("--actor", choices=[Actor.RECEPTION.value, Actor.TELLER.value], default=Actor.RECEPTION.value)
    p_ns.add_argument("--requeue", action="store_true", help="send back to the waiting list instead of removing")

    p_fb = sub.add_parser("feedback", help="Rate a finished visit (1-5 stars)")
    add_mqtt_args(p_fb)
    p_fb.add_argument("--ticket-id", required=True)
    p_fb.add_argument("--stars", type=int, required=True)


def build_message(args: argparse.Namespace) -> dict[str, Any]:
    if args.cmd == "join":
        msg: dict[str, Any] = {
            "type": "join_queue",
            "branch_id": args.branch_id,
            "name": args.name,
            "phone": args.phone,
            "channel": args.channel,
        }
        if args.member_id:
            msg["member_id"] = args.member_id
        if args.service_category:
            msg["service_category"] = args.service_category
        return msg
    if args.cmd == "confirm":
        return {"type": "confirm_entry", "ticket_id": args.ticket_id}
    if args.cmd == "transition":
        msg = {"type": "request_transition", "ticket_id": args.ticket_id, "target": args.target, "actor": args.actor}
        for key in ("reason", "teller_id", "counter_id"):
            value = getattr(args, key)
            if value:
                msg[key] = value
        return msg
    if args.cmd == "no-show":
        return {"type": "flag_no_show", "ticket_id": args.ticket_id, "actor": args.actor, "requeue": args.requeue}
    if args.cmd == "feedback":
        return {"type": "submit_feedback", "ticket_id": args.ticket_id, "stars": args.stars}
    raise ValueError(f"unknown command {args.cmd!r}")


def run_client(args: argparse.Namespace) -> int:
    resp = send_request(
        mqtt_host=args.mqtt_host,
        mqtt_port=args.mqtt_port,
        namespace=args.namespace,
        message=build_message(args),
    )
    if resp.get("type") == "ticket":
        t = resp["ticket"]
        print(f"[client] ticket {t['id']} #{t['queue_number']} {t['status']}")
        return 0
    print(f"[client] error: {resp.get('code')}: {resp.get('message')}")
    return 1


def main() -> None:
    parser = argparse.ArgumentParser(description="Walk-in queue client (MQTT)")
    sub = parser.add_subparsers(dest="cmd", required=True)
    add_client_commands(sub)
    args = parser.parse_args()
    raise SystemExit(run_client(args))


if __name__ == "__main__":
    main()
