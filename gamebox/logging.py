from types import MappingProxyType
from typing import Any, Callable, Optional

import structlog

Extractor = Callable[[Any], dict[str, Any]]

_DEFAULT_EXTRACTORS: dict[str, Extractor] = {}


def _register_default_extractor(context_key: str, extractor_function: Extractor):
    _DEFAULT_EXTRACTORS[context_key] = extractor_function


_register_default_extractor(
    "progress",
    lambda progress: {
        "job_id": getattr(progress, "pk", None),
        "import_type": getattr(progress, "import_type", None),
        "job_status": getattr(progress, "status", None),
    },
)

_register_default_extractor(
    "game",
    lambda game: {
        "game_slug": getattr(game, "slug", None),
        "game_id": getattr(game, "pk", None),
    },
)

_register_default_extractor(
    "session",
    lambda session: {"session_id": getattr(session, "pk", None)},
)

_DEFAULT_EXTRACTORS = MappingProxyType(_DEFAULT_EXTRACTORS)


class GameboxLogger:
    """
    Thin wrapper around a structlog logger which keeps the structured log
    stream consistent across the batch jobs.

    Every entry needs a human readable message and a machine readable
    ``event_code``. Warnings and errors also need ``reason`` and
    ``reason_code`` so failures can be grouped without parsing messages.

    Model instances can be passed by name and are expanded into plain fields
    by the extractor registry:

    - ``progress`` -> ``job_id``, ``import_type``, ``job_status``
    - ``game`` -> ``game_slug``, ``game_id``
    - ``session`` -> ``session_id``

    Usage::

        structured_logger = GameboxLogger.get_logger(__name__)
        job_logger = structured_logger.bind(progress=progress)
        job_logger.info("Batch started.", event_code="batch_started", page=3)
        job_logger.warning(
            "Record failed.",
            event_code="batch_record_failed",
            reason=str(exc),
            reason_code="upstream_error",
            item_key="portal-2",
        )

    Explicit keyword values win over extracted ones, and ``None`` values are
    dropped from the final entry.
    """

    def __init__(self, logger, context: Optional[dict[str, Any]] = None):
        self._logger = logger
        self._context = context or {}

    @classmethod
    def get_logger(cls, name: str) -> "GameboxLogger":
        """
        Build a logger routed through the ``structlog`` logging namespace, which
        the settings send to the JSON log file.
        """
        return cls(structlog.get_logger(f"structlog.{name}"))

    def _build_context(self, context: dict[str, Any]) -> dict[str, Any]:
        fields: dict[str, Any] = {}

        for key, extractor in _DEFAULT_EXTRACTORS.items():
            obj = context.pop(key, self._context.get(key))
            if obj is None:
                continue
            for field, value in extractor(obj).items():
                if value is not None:
                    fields.setdefault(field, value)

        for key, value in self._context.items():
            if key in _DEFAULT_EXTRACTORS or key in context or value is None:
                continue
            fields[key] = value

        fields.update({k: v for k, v in context.items() if v is not None})
        return fields

    def log(
        self,
        level: str,
        message: str,
        *,
        event_code: str,
        reason: Optional[str] = None,
        reason_code: Optional[str] = None,
        **context: Any,
    ) -> None:
        """
        Validate the required fields for ``level`` and emit the entry.

        Raises:
            ValueError: if the message, the event code or (for warnings and
                errors) the reason fields are missing
        """
        if not message:
            raise ValueError("Log message is required.")
        if not event_code:
            raise ValueError("Structured logs must include an 'event_code' field.")
        if level in ("warning", "error") and not (reason and reason_code):
            raise ValueError(
                "Warnings and errors must include both 'reason' and 'reason_code'."
            )

        fields = {"event_code": event_code}
        if reason:
            fields["reason"] = reason
        if reason_code:
            fields["reason_code"] = reason_code
        for key, value in self._build_context(context).items():
            fields.setdefault(key, value)

        getattr(self._logger, level)(message, **fields)

    def debug(self, message: str, *, event_code: str, **kwargs):
        self.log("debug", message, event_code=event_code, **kwargs)

    def info(self, message: str, *, event_code: str, **kwargs):
        self.log("info", message, event_code=event_code, **kwargs)

    def warning(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "warning",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )

    def error(
        self, message: str, *, event_code: str, reason: str, reason_code: str, **kwargs
    ):
        self.log(
            "error",
            message,
            event_code=event_code,
            reason=reason,
            reason_code=reason_code,
            **kwargs,
        )

    def bind(self, **kwargs: Any) -> "GameboxLogger":
        """
        Return a copy of this logger with ``kwargs`` attached to every entry.
        Model instances bound here go through the extractors at log time.
        """
        context = {**self._context, **kwargs}
        return GameboxLogger(self._logger, context=context)
