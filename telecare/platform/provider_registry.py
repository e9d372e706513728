from telecare.core.config import settings
from telecare.platform.ports.session_backend import SessionBackendPort
from telecare.platform.ports.notifier import NotifierPort
from telecare.platform.ports.event_bus import EventBusPort

class ProviderRegistry:
    _session_backend: SessionBackendPort | None = None
    _notifier: NotifierPort | None = None
    _event_bus: EventBusPort | None = None

    @classmethod
    def session_backend(cls) -> SessionBackendPort:
        if cls._session_backend is None:
            if settings.SESSION_BACKEND_PROVIDER == "chime":
                from telecare.platform.adapters.session_chime import ChimeSessionBackend
                cls._session_backend = ChimeSessionBackend()
            else:
                from telecare.platform.adapters.session_memory import InMemorySessionBackend
                cls._session_backend = InMemorySessionBackend()
        return cls._session_backend

    @classmethod
    def notifier(cls) -> NotifierPort:
        if cls._notifier is None:
            if settings.NOTIFY_PROVIDER == "webhook":
                from telecare.platform.adapters.notify_webhook import WebhookNotifier
                cls._notifier = WebhookNotifier()
            else:
                from telecare.platform.adapters.notify_log import LogNotifier
                cls._notifier = LogNotifier()
        return cls._notifier

    @classmethod
    def event_bus(cls) -> EventBusPort:
        if cls._event_bus is None:
            prov = (settings.EVENT_BUS_PROVIDER or "noop").lower()
            if prov == "redis":
                from telecare.platform.adapters.bus_redis import RedisEventBus
                cls._event_bus = RedisEventBus()
            else:
                from telecare.platform.adapters.bus_noop import NoopEventBus
                cls._event_bus = NoopEventBus()
        return cls._event_bus

    @classmethod
    def use(cls, *, session_backend: SessionBackendPort | None = None, notifier: NotifierPort | None = None, event_bus: EventBusPort | None = None):
        # explicit wiring (tests, alternative entry points)
        if session_backend is not None:
            cls._session_backend = session_backend
        if notifier is not None:
            cls._notifier = notifier
        if event_bus is not None:
            cls._event_bus = event_bus

    @classmethod
    def reset(cls):
        cls._session_backend = None
        cls._notifier = None
        cls._event_bus = None

registry = ProviderRegistry()
