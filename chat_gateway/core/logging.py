import json
import logging
from datetime import UTC, datetime


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "timestamp": datetime.now(tz=UTC).isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        for field in (
            "trace_id",
            "usage_key",
            "provider",
            "model",
            "auto_routed",
            "rule",
            "fallback_provider",
            "attempt",
            "reason",
            "error_code",
            "error_class",
            "latency_ms",
            "token_in",
            "token_out",
            "cost_eur",
            "history_count",
            "history_count_before_limit",
            "max_messages",
            "roles",
            "content_lens",
            "kb_context_chars",
            "kb_context_warn_chars",
            "answer_chars",
        ):
            value = getattr(record, field, None)
            if value is not None:
                payload[field] = value
        return json.dumps(payload, ensure_ascii=True)


def configure_logging(log_level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level.upper())
