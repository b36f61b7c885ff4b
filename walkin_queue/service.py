from __future__ import annotations

# MQTT adapter around the Coordinator.
#
# - Requests arrive on `<ns>/coordinator/requests` and are answered on the
#   `reply_to` topic with either a ticket or an error envelope.
# - Coordinator events are republished per branch for notification and
#   display collaborators.
# - Two background threads: the grace-period ticker and the status publisher.

import argparse
import logging
import threading
import time
from typing import Any, TYPE_CHECKING

from .config import CoordinatorSettings, add_coordinator_args, settings_from_args
from .coordinator import Coordinator
from .errors import ErrorResponse, QueueError
from .events import Event, OccupancyChanged, TicketDemoted, TicketPromoted, TicketUpdated
from .models import Actor, CustomerInfo, ServiceCategory, TicketStatus
from .mqtt_topics import (
    coordinator_requests,
    demoted_events,
    occupancy_events,
    promoted_events,
    status_updates,
    ticket_events,
)
from .persistence import InMemoryTicketStore, PersistenceWriter, TicketStore

if TYPE_CHECKING:
    from .mqtt_client import MqttClient

logger = logging.getLogger(__name__)


class BadRequest(ValueError):
    pass


def _required(msg: dict[str, Any], key: str) -> str:
    value = msg.get(key)
    if not isinstance(value, str) or not value:
        raise BadRequest(f"{key} required")
    return value


def _enum(enum_cls: Any, raw: Any, key: str) -> Any:
    try:
        return enum_cls(raw)
    except ValueError as e:
        raise BadRequest(f"invalid {key}: {raw!r}") from e


class MqttCoordinatorService:
    def __init__(
        self,
        *,
        mqtt: MqttClient,
        coordinator: Coordinator,
        namespace: str,
        store: TicketStore | None = None,
    ) -> None:
        self.mqtt = mqtt
        self.coordinator = coordinator
        self.namespace = namespace
        self.writer = PersistenceWriter(store if store is not None else InMemoryTicketStore())

        coordinator.subscribe(self.writer, ordered=True)
        coordinator.subscribe(self._publish_event)

        self._stop_event = threading.Event()
        self._status_thread: threading.Thread | None = None

    def start(self, *, sweep_every: float, publish_status_every: float = 2.0) -> None:
        self.mqtt.subscribe(coordinator_requests(self.namespace))
        self.mqtt.add_handler(self._handle_message)

        self.writer.start()
        self.coordinator.monitor.start(sweep_every)

        self._status_thread = threading.Thread(
            target=self._status_publisher_loop,
            args=(publish_status_every,),
            daemon=True,
        )
        self._status_thread.start()

    def stop(self) -> None:
        """Stop background threads. Call before disconnecting MQTT."""
        self._stop_event.set()
        self.coordinator.monitor.stop()
        t = self._status_thread
        if t and t.is_alive():
            t.join(timeout=1.0)
        self.writer.stop()

    def _status_publisher_loop(self, interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.mqtt.publish(status_updates(self.namespace), self.coordinator.status())
            except Exception:
                logger.exception("status publish failed")
            self._stop_event.wait(interval)

    # -------------------- events --------------------

    def _publish_event(self, event: Event) -> None:
        if isinstance(event, TicketPromoted):
            topic = promoted_events(event.branch_id, self.namespace)
        elif isinstance(event, TicketDemoted):
            topic = demoted_events(event.branch_id, self.namespace)
        elif isinstance(event, OccupancyChanged):
            topic = occupancy_events(event.branch_id, self.namespace)
        elif isinstance(event, TicketUpdated):
            topic = ticket_events(event.branch_id, self.namespace)
        else:
            return
        self.mqtt.publish(topic, event.to_message())

    # -------------------- requests --------------------

    def _reply(self, reply_to: str, corr_id: str | None, message: dict[str, Any]) -> None:
        msg = dict(message)
        if corr_id is not None:
            msg["corr_id"] = corr_id
        self.mqtt.publish(reply_to, msg)

    def _handle_message(self, topic: str, msg: dict[str, Any]) -> None:
        corr_id = msg.get("corr_id") if isinstance(msg.get("corr_id"), str) else None
        reply_to = msg.get("reply_to") if isinstance(msg.get("reply_to"), str) else None
        if not reply_to:
            return

        try:
            ticket = self._dispatch(msg)
        except QueueError as e:
            self._reply(reply_to, corr_id, e.to_response().to_message())
            return
        except ValueError as e:
            self._reply(reply_to, corr_id, ErrorResponse("bad_request", str(e)).to_message())
            return
        self._reply(reply_to, corr_id, {"type": "ticket", "ticket": ticket.to_message()})

    def _dispatch(self, msg: dict[str, Any]):
        c = self.coordinator
        mtype = msg.get("type")

        if mtype == "join_queue":
            category = msg.get("service_category")
            return c.join_queue(
                _required(msg, "branch_id"),
                CustomerInfo.from_message(msg),
                service_category=_enum(ServiceCategory, category, "service_category") if category else None,
            )

        if mtype == "request_transition":
            return c.request_transition(
                _required(msg, "ticket_id"),
                _enum(TicketStatus, msg.get("target"), "target"),
                _enum(Actor, msg.get("actor"), "actor"),
                msg.get("reason") if isinstance(msg.get("reason"), str) else None,
                teller_id=msg.get("teller_id") if isinstance(msg.get("teller_id"), str) else None,
                counter_id=msg.get("counter_id") if isinstance(msg.get("counter_id"), str) else None,
            )

        if mtype == "confirm_entry":
            return c.confirm_entry(_required(msg, "ticket_id"))

        if mtype == "flag_no_show":
            return c.flag_no_show(
                _required(msg, "ticket_id"),
                _enum(Actor, msg.get("actor"), "actor"),
                requeue=bool(msg.get("requeue", False)),
            )

        if mtype == "submit_feedback":
            stars = msg.get("stars")
            if not isinstance(stars, int):
                raise BadRequest("stars must be an integer")
            return c.submit_feedback(_required(msg, "ticket_id"), stars)

        if mtype == "add_note":
            return c.add_note(_required(msg, "ticket_id"), _required(msg, "note"))

        if mtype == "get_ticket":
            return c.get_ticket(_required(msg, "ticket_id"))

        raise BadRequest(f"unknown request type {mtype!r}")


def run_service(settings: CoordinatorSettings) -> None:
    # Import MQTT dependencies only when running the real service.
    from .mqtt_client import MqttClient

    coordinator = Coordinator(settings.branches, demotion_penalty=settings.demotion_penalty)

    mqtt_client = MqttClient(client_id="coordinator", host=settings.mqtt_host, port=settings.mqtt_port)
    mqtt_client.start()

    service = MqttCoordinatorService(mqtt=mqtt_client, coordinator=coordinator, namespace=settings.namespace)
    service.start(
        sweep_every=settings.effective_sweep_every(),
        publish_status_every=settings.publish_status_every,
    )

    print(
        f"[service] connected to MQTT {settings.mqtt_host}:{settings.mqtt_port}, "
        f"namespace={settings.namespace}, branches={','.join(coordinator.branch_ids())}"
    )

    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        pass
    finally:
        service.stop()
        mqtt_client.stop()


def main() -> None:
    from .app import configure_logging

    parser = argparse.ArgumentParser(description="Walk-in queue coordinator (MQTT)")
    add_coordinator_args(parser)
    settings = settings_from_args(parser.parse_args())
    configure_logging(settings.log_level)
    run_service(settings)


if __name__ == "__main__":
    main()
