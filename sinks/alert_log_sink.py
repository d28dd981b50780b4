"""
Alert log sink - appends every alert as one JSON line.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from core.interfaces import Sink
from core.models import Event


logger = logging.getLogger(__name__)


class AlertLogSink(Sink):
    """Writes alerts to a JSON-lines file that the CLI can read back."""

    name = "AlertLogSink"

    def __init__(self, path: str = "logs/error_alerts.log"):
        self.path = Path(path)

    async def handle(self, event: Event) -> None:
        entry = {
            "timestamp": event.timestamp.isoformat(),
            "message": event.message,
            "level": event.level,
            "data": {**event.metadata, "type": event.kind.value},
        }
        line = json.dumps(entry, ensure_ascii=False, default=str) + "\n"
        await asyncio.to_thread(self._append, line)

    def _append(self, line: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)

    def recent(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Last *limit* alerts, oldest first. Unreadable lines are skipped."""
        if not self.path.exists():
            return []
        alerts = []
        with self.path.open(encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    alerts.append(json.loads(line))
                except json.JSONDecodeError:
                    logger.debug(f"Skipping malformed alert line: {line[:80]}")
        return alerts[-limit:] if limit > 0 else []
