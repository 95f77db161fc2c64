"""Realtime domain exports."""

from .sockets import LiveNamespace, publish, set_namespace  # noqa: F401
from .topics import Topic, TopicKind  # noqa: F401
