"""Raw vendor payload archive (JSONL, append-only)."""
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable

import aiofiles


logger = logging.getLogger(__name__)


class RawPayloadArchive:
    """Writes raw vendor responses to data/raw/*.jsonl for later inspection.

    Failures are logged only; archiving never breaks a sync.
    """

    def __init__(self, raw_dir: str | Path) -> None:
        self.raw_dir = Path(raw_dir)
        self.raw_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, source: str, kind: str, store_id: str, when: datetime) -> Path:
        return self.raw_dir / f"raw_{source}_{kind}_{store_id}_{when:%Y%m%d}.jsonl"

    async def write(
        self,
        source: str,
        kind: str,
        store_id: str,
        items: Iterable[Any],
    ) -> None:
        """Append one envelope line per raw item."""
        fetched_at = datetime.now(timezone.utc)
        path = self.path_for(source, kind, store_id, fetched_at)

        try:
            count = 0
            async with aiofiles.open(path, mode="a", encoding="utf-8") as handle:
                for item in items:
                    envelope = {
                        "source": source,
                        "kind": kind,
                        "store_id": store_id,
                        "fetched_at": fetched_at.isoformat(),
                        "response_item": item,
                    }
                    await handle.write(
                        json.dumps(envelope, separators=(",", ":"), default=str) + "\n"
                    )
                    count += 1
            logger.debug("Archived %s %s/%s items to %s", count, source, kind, path)
        except Exception as exc:
            logger.error("Failed to archive %s/%s payload: %s", source, kind, exc)
