"""Gate audit trail: one JSON line per ``enforce`` call, hash-chained.

Each line holds an AuditEvent whose ``prev_hash`` is the ``entry_hash`` of
the line before it (``GENESIS_HASH`` for the first line) and whose
``entry_hash`` is the SHA-256 of its own canonical JSON without that
field. Editing, reordering or dropping a line breaks the chain, which
``verify_log`` reports.
"""

from __future__ import annotations

import hashlib
import json
import threading
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from plan_gate.models import AuditEvent, GateResult, SubscriptionState

GENESIS_HASH = "0" * 64


class AuditError(Exception):
    """Raised when the gate audit log cannot be read."""


def entry_digest(payload: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON of an entry, ``entry_hash`` excluded."""
    body = {k: v for k, v in payload.items() if k != "entry_hash"}
    return hashlib.sha256(json.dumps(body, sort_keys=True).encode("utf-8")).hexdigest()


def _entries(path: Path) -> Iterator[tuple[int, str]]:
    """Yield (line number, text) for every non-blank line."""
    with path.open("r", encoding="utf-8") as f:
        for number, raw in enumerate(f, start=1):
            text = raw.strip()
            if text:
                yield number, text


class GateAuditLogger:
    """Appends gate checks to a JSON-lines file.

    Writes are serialized with a lock so the chain stays linear when
    several threads enforce at once. The chain head is recovered from
    the file on construction, so separate instances can share a log.
    """

    def __init__(self, log_path: str | Path) -> None:
        self._path = Path(log_path)
        self._lock = threading.Lock()
        self._head = self._recover_head()

    def _recover_head(self) -> str:
        if not self._path.is_file():
            return GENESIS_HASH
        last: str | None = None
        for _, text in _entries(self._path):
            last = text
        if last is None:
            return GENESIS_HASH
        try:
            return json.loads(last).get("entry_hash", GENESIS_HASH)
        except json.JSONDecodeError as exc:
            raise AuditError(f"Corrupt audit log, cannot resume chain: {self._path}") from exc

    @property
    def path(self) -> Path:
        return self._path

    @property
    def prev_hash(self) -> str:
        """Hash the next entry will chain from."""
        return self._head

    def log_enforcement(
        self,
        result: GateResult,
        subscription: SubscriptionState | None = None,
        context: dict[str, Any] | None = None,
        timestamp: datetime | None = None,
    ) -> AuditEvent:
        """Append one gate outcome and return the stored event."""
        denial = result.denial
        event = AuditEvent(
            event_id=f"gate-{uuid.uuid4().hex[:12]}",
            timestamp=timestamp or datetime.now(tz=UTC),
            prev_hash=GENESIS_HASH,
            tenant_id=result.tenant_id,
            feature_id=result.feature_id,
            allowed=denial is None,
            denial_code=denial.code if denial is not None else None,
            usage=result.decision.usage,
            limit=result.decision.limit,
            plan_id=subscription.plan_id if subscription else None,
            status=subscription.status if subscription else None,
            context=context,
        )

        with self._lock:
            event.prev_hash = self._head
            event.entry_hash = entry_digest(event.model_dump(mode="json"))
            line = json.dumps(event.model_dump(mode="json"), sort_keys=True)
            with self._path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
            self._head = event.entry_hash
        return event

    def read_events(self, tenant_id: str | None = None) -> list[AuditEvent]:
        """Parse the log, optionally keeping only one tenant's checks.

        Raises:
            AuditError: If a line is not a valid event.
        """
        if not self._path.is_file():
            return []

        events: list[AuditEvent] = []
        for number, text in _entries(self._path):
            try:
                event = AuditEvent(**json.loads(text))
            except (json.JSONDecodeError, ValueError, TypeError) as e:
                raise AuditError(f"Corrupt entry at line {number} in {self._path}: {e}") from e
            if tenant_id is None or event.tenant_id == tenant_id:
                events.append(event)
        return events


def verify_log(log_path: str | Path) -> tuple[bool, list[str]]:
    """Walk the chain and recompute every hash.

    Returns (is_valid, errors). A missing log is trivially valid.
    """
    log_path = Path(log_path)
    if not log_path.is_file():
        return True, []

    errors: list[str] = []
    expected_prev = GENESIS_HASH
    for position, (_, text) in enumerate(_entries(log_path), start=1):
        try:
            payload = json.loads(text)
        except json.JSONDecodeError as e:
            errors.append(f"Entry {position}: invalid JSON: {e}")
            continue

        prev = payload.get("prev_hash", "")
        if prev != expected_prev:
            errors.append(
                f"Entry {position}: chain broken, prev_hash is {prev[:16]}..., "
                f"previous entry hashed to {expected_prev[:16]}..."
            )

        stored = payload.get("entry_hash", "")
        actual = entry_digest(payload)
        if stored != actual:
            errors.append(
                f"Entry {position}: hash mismatch, stored {stored[:16]}..., "
                f"content hashes to {actual[:16]}..."
            )
        expected_prev = stored

    return not errors, errors
