from walkin_queue.mqtt_topics import coordinator_requests
from walkin_queue.service import MqttCoordinatorService

NS = "test/v0"
REPLY = "test/v0/coordinator/responses/c1"


class FakeMqtt:
    def __init__(self):
        self.published = []
        self.subscriptions = []
        self.handlers = []

    def subscribe(self, topic):
        self.subscriptions.append(topic)

    def add_handler(self, handler):
        self.handlers.append(handler)

    def publish(self, topic, message):
        self.published.append((topic, message))

    def replies(self):
        return [m for t, m in self.published if t == REPLY]

    def on(self, topic_prefix):
        return [m for t, m in self.published if t.startswith(topic_prefix)]


def _service(make_coordinator, **branch_kwargs):
    mqtt = FakeMqtt()
    service = MqttCoordinatorService(mqtt=mqtt, coordinator=make_coordinator(**branch_kwargs), namespace=NS)
    return mqtt, service


def _request(service, **msg):
    service._handle_message(coordinator_requests(NS), {"reply_to": REPLY, "corr_id": "x1", **msg})


def test_join_replies_with_ticket_and_publishes_events(make_coordinator):
    mqtt, service = _service(make_coordinator)

    _request(service, type="join_queue", branch_id="B1", name="Ada", phone="555", service_category="DEPOSIT")

    (reply,) = mqtt.replies()
    assert reply["type"] == "ticket"
    assert reply["corr_id"] == "x1"
    assert reply["ticket"]["queue_number"] == 1
    assert reply["ticket"]["service_category"] == "DEPOSIT"
    assert mqtt.on("test/v0/events/promoted/B1")[0]["rank"] == 1
    assert [m["ticket"]["status"] for m in mqtt.on("test/v0/events/tickets/B1")] == [
        "REMOTE_WAITING",
        "ELIGIBLE_FOR_ENTRY",
    ]


def test_errors_use_envelope(make_coordinator):
    mqtt, service = _service(make_coordinator)

    _request(service, type="confirm_entry", ticket_id="missing")
    _request(service, type="join_queue", branch_id="B1")
    _request(service, type="request_transition", ticket_id="t", target="FLYING", actor="teller")
    _request(service, type="dance")

    codes = [r["code"] for r in mqtt.replies()]
    assert codes == ["ticket_not_found", "bad_request", "bad_request", "bad_request"]
    assert all(r["type"] == "error" and r["corr_id"] == "x1" for r in mqtt.replies())


def test_staff_flow_over_mqtt(make_coordinator):
    mqtt, service = _service(make_coordinator, max_occupancy=1)
    _request(service, type="join_queue", branch_id="B1", name="Ada")
    _request(service, type="join_queue", branch_id="B1", name="Bob")
    ada, bob = (r["ticket"]["id"] for r in mqtt.replies())

    _request(service, type="confirm_entry", ticket_id=bob)
    _request(service, type="confirm_entry", ticket_id=ada)
    _request(service, type="request_transition", ticket_id=ada, target="IN_SERVICE", actor="teller", teller_id="T1")
    _request(service, type="request_transition", ticket_id=ada, target="SERVED", actor="teller")
    _request(service, type="submit_feedback", ticket_id=ada, stars=5)

    replies = mqtt.replies()[2:]
    assert replies[0]["code"] == "invalid_transition"
    assert [r["ticket"]["status"] for r in replies[1:]] == ["IN_BUILDING", "IN_SERVICE", "SERVED", "SERVED"]
    assert replies[-1]["ticket"]["feedback_stars"] == 5
    assert {"type": "occupancy_changed", "branch_id": "B1", "count": 1} in mqtt.on("test/v0/events/occupancy/B1")


def test_no_show_and_notes_over_mqtt(make_coordinator):
    mqtt, service = _service(make_coordinator)
    _request(service, type="join_queue", branch_id="B1", name="Ada")
    ada = mqtt.replies()[0]["ticket"]["id"]

    _request(service, type="add_note", ticket_id=ada, note="wheelchair access")
    _request(service, type="flag_no_show", ticket_id=ada, actor="reception")
    _request(service, type="get_ticket", ticket_id=ada)

    note, flagged, fetched = mqtt.replies()[1:]
    assert note["ticket"]["notes"] == ["wheelchair access"]
    assert flagged["ticket"]["status"] == "REMOVED"
    assert fetched["ticket"]["is_no_show"] is True


def test_messages_without_reply_topic_are_ignored(make_coordinator):
    mqtt, service = _service(make_coordinator)

    service._handle_message(coordinator_requests(NS), {"type": "join_queue", "branch_id": "B1", "name": "Ada"})

    assert mqtt.published == []
