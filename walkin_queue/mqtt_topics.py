"""MQTT topic helpers.

We keep topic construction in one place so the service and its clients agree
on naming.

Topic layout (v0) under a configurable namespace (default: `walkin/v0`):

Request/response:
- `<ns>/coordinator/requests`
- `<ns>/coordinator/responses/<client_id>`

Events (one stream per branch):
- `<ns>/events/tickets/<branch_id>`     every committed ticket change
- `<ns>/events/promoted/<branch_id>`    ticket may enter now
- `<ns>/events/demoted/<branch_id>`     grace period expired / requeued no-show
- `<ns>/events/occupancy/<branch_id>`   occupancy count changed

Broadcast:
- `<ns>/status/updates`
    The service publishes periodic per-branch snapshots here.
"""

from __future__ import annotations

DEFAULT_NAMESPACE = "walkin/v0"


def coordinator_requests(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/coordinator/requests"


def coordinator_responses(client_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/coordinator/responses/{client_id}"


def ticket_events(branch_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/events/tickets/{branch_id}"


def promoted_events(branch_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    """Consumed by the notification collaborator ("you may enter now")."""
    return f"{namespace}/events/promoted/{branch_id}"


def demoted_events(branch_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/events/demoted/{branch_id}"


def occupancy_events(branch_id: str, namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/events/occupancy/{branch_id}"


def status_updates(namespace: str = DEFAULT_NAMESPACE) -> str:
    return f"{namespace}/status/updates"
