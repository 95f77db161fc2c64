"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Info


REQUEST_COUNTER = Counter(
	"nearby_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"nearby_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

SOCKET_CLIENTS = Gauge(
	"nearby_socketio_clients",
	"Active Socket.IO clients per namespace",
	["namespace"],
)

SOCKET_EVENTS = Counter(
	"nearby_socketio_events_total",
	"Socket.IO events emitted per namespace",
	["namespace", "event"],
)

REALTIME_SUBSCRIPTIONS = Gauge(
	"nearby_realtime_subscriptions",
	"Active realtime topic subscriptions",
	["kind"],
)

LOCATION_UPDATES = Counter(
	"nearby_location_updates_total",
	"Location reports accepted",
)

PROXIMITY_QUERIES = Counter(
	"nearby_proximity_queries_total",
	"Proximity queries served",
	["result"],
)

PROXIMITY_RESULTS = Histogram(
	"nearby_proximity_result_size",
	"Number of users returned per proximity query",
	buckets=(0, 1, 5, 10, 25, 50, 100),
)

CONNECTION_REQUESTS = Counter(
	"nearby_connection_requests_total",
	"Connection request outcomes",
	["result"],
)

CONNECTION_TRANSITIONS = Counter(
	"nearby_connection_transitions_total",
	"Connection request transitions",
	["status", "result"],
)

MESSAGES_SENT = Counter(
	"nearby_messages_sent_total",
	"Chat messages persisted",
	["result"],
)

MESSAGES_READ = Counter(
	"nearby_messages_marked_read_total",
	"Chat messages flipped to read",
)

NOTIFICATIONS = Counter(
	"nearby_notifications_total",
	"Notification lifecycle events",
	["type", "action"],
)

ACCESS_DENIED = Counter(
	"nearby_access_denied_total",
	"Access control denials",
	["resource", "action"],
)

STORE_ERRORS = Counter(
	"nearby_store_errors_total",
	"Storage failures surfaced as transient errors",
	["operation"],
)

BUILD_INFO = Info("nearby_build", "Deployment the process is running")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def socket_connected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).inc()


def socket_disconnected(namespace: str) -> None:
	SOCKET_CLIENTS.labels(namespace=namespace).dec()


def socket_event(namespace: str, event: str) -> None:
	SOCKET_EVENTS.labels(namespace=namespace, event=event).inc()


def realtime_subscribed(kind: str) -> None:
	REALTIME_SUBSCRIPTIONS.labels(kind=kind).inc()


def realtime_unsubscribed(kind: str) -> None:
	REALTIME_SUBSCRIPTIONS.labels(kind=kind).dec()


def inc_location_update() -> None:
	LOCATION_UPDATES.inc()


def inc_proximity_query(result: str, size: int | None = None) -> None:
	PROXIMITY_QUERIES.labels(result=result).inc()
	if size is not None:
		PROXIMITY_RESULTS.observe(size)


def inc_connection_request(result: str) -> None:
	CONNECTION_REQUESTS.labels(result=result).inc()


def inc_connection_transition(status: str, result: str) -> None:
	CONNECTION_TRANSITIONS.labels(status=status, result=result).inc()


def inc_message_sent(result: str) -> None:
	MESSAGES_SENT.labels(result=result).inc()


def inc_messages_read(count: int) -> None:
	if count > 0:
		MESSAGES_READ.inc(count)


def inc_notification(type_: str, action: str) -> None:
	NOTIFICATIONS.labels(type=type_, action=action).inc()


def inc_access_denied(resource: str, action: str) -> None:
	ACCESS_DENIED.labels(resource=resource, action=action).inc()


def inc_store_error(operation: str) -> None:
	STORE_ERRORS.labels(operation=operation).inc()


def record_build(service: str, environment: str, commit: str, store_backend: str) -> None:
	BUILD_INFO.info({"service": service, "env": environment, "commit": commit, "store": store_backend})
