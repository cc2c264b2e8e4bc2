# src/stablepay/logging.py
import json
import logging
import sys

# attributes callers attach through `extra=`; copied into the JSON line when present
CONTEXT_FIELDS = ("payment_id", "network", "tx_hash")


def payment_context(payment_id: str, network: str | None = None, tx_hash: str | None = None) -> dict:
    """`extra=` mapping for log calls about one payment."""
    context = {"payment_id": payment_id}
    if network:
        context["network"] = network
    if tx_hash:
        context["tx_hash"] = tx_hash
    return context


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with payment context fields when the record has them."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure(level: str | None = None) -> None:
    if level is None:
        from .config import get_settings
        level = get_settings().log_level
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), handlers=[handler], force=True)
