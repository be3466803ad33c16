"""Append-only event log — the sole contract with the indexer and API layer.

Every committed state change produces one or more event records that are
appended to the log. Events are immutable once written. The log serves as:
1. The feed the relational mirror subscribes to.
2. The audit trail for third-party verification.
3. The source of truth for rebuilding query views.

Events are appended only when a unit of work commits. A rejected call
leaves no trace here.
"""

from __future__ import annotations

import enum
import hashlib
import json
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional


class EventKind(str, enum.Enum):
    """Classification of ledger events."""
    # Access control
    ROLE_GRANTED = "role_granted"
    ROLE_REVOKED = "role_revoked"
    SYSTEM_PAUSED = "system_paused"
    SYSTEM_UNPAUSED = "system_unpaused"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    # Incentive token
    TOKEN_GENESIS = "token_genesis"
    TOKENS_TRANSFERRED = "tokens_transferred"
    POOL_ALLOCATED = "pool_allocated"
    REWARD_DISTRIBUTED = "reward_distributed"
    TOKENS_STAKED = "tokens_staked"
    TOKENS_UNSTAKED = "tokens_unstaked"
    STAKING_REWARDS_CLAIMED = "staking_rewards_claimed"
    VESTING_CREATED = "vesting_created"
    VESTED_TOKENS_RELEASED = "vested_tokens_released"
    VESTING_REVOKED = "vesting_revoked"
    # Settlement asset
    SETTLEMENT_MINTED = "settlement_minted"
    SETTLEMENT_TRANSFERRED = "settlement_transferred"
    # Rewards distributor
    REWARD_ACCRUED = "reward_accrued"
    REWARDS_CLAIMED = "rewards_claimed"
    REWARD_RATE_SET = "reward_rate_set"
    CATEGORY_TOGGLED = "category_toggled"
    SUSPICIOUS_ACTIVITY_FLAGGED = "suspicious_activity_flagged"
    BATCH_PROCESSED = "batch_processed"
    # Product registry
    PRODUCT_REGISTERED = "product_registered"
    PRODUCT_UPDATED = "product_updated"
    PRODUCT_DEACTIVATED = "product_deactivated"
    PRODUCT_REACTIVATED = "product_reactivated"
    CHECKPOINT_ADDED = "checkpoint_added"
    CHECKPOINT_UPDATED = "checkpoint_updated"
    STAKEHOLDER_ADDED = "stakeholder_added"
    STAKEHOLDER_REMOVED = "stakeholder_removed"
    # Certificate registry
    CERTIFICATE_MINTED = "certificate_minted"
    CERTIFICATE_INVALIDATED = "certificate_invalidated"
    CERTIFICATE_TRANSFERRED = "certificate_transferred"
    CERTIFICATE_METADATA_UPDATED = "certificate_metadata_updated"
    # Compliance engine
    COMPLIANCE_RULE_ADDED = "compliance_rule_added"
    COMPLIANCE_RULE_AMENDED = "compliance_rule_amended"
    COMPLIANCE_RULE_REPLACED = "compliance_rule_replaced"
    COMPLIANCE_RULE_DEACTIVATED = "compliance_rule_deactivated"
    COMPLIANCE_CHECKED = "compliance_checked"
    # Payment escrow
    ESCROW_CREATED = "escrow_created"
    ESCROW_RELEASED = "escrow_released"
    ESCROW_DISPUTED = "escrow_disputed"
    ESCROW_RESOLVED = "escrow_resolved"
    ESCROW_CANCELLED = "escrow_cancelled"
    # Factories
    INSTANCE_DEPLOYED = "instance_deployed"
    INSTANCE_DEACTIVATED = "instance_deactivated"
    INSTANCE_REACTIVATED = "instance_reactivated"
    INSTANCE_STATS_UPDATED = "instance_stats_updated"
    DEPLOYMENT_FEE_UPDATED = "deployment_fee_updated"
    FACTORY_FEES_WITHDRAWN = "factory_fees_withdrawn"


@dataclass(frozen=True)
class EventRecord:
    """A single immutable event in the ledger log.

    Once created, an event cannot be modified. The event_hash is
    computed at creation time over the canonical JSON form.
    """
    event_id: str
    event_kind: EventKind
    timestamp_utc: str
    actor_id: str
    payload: dict[str, Any]
    event_hash: str  # SHA-256 of canonical JSON

    @staticmethod
    def create(
        event_id: str,
        event_kind: EventKind,
        actor_id: str,
        payload: dict[str, Any],
        timestamp_utc: Optional[datetime] = None,
    ) -> EventRecord:
        """Create a new event record with computed hash."""
        ts = timestamp_utc or datetime.now(timezone.utc)
        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%SZ")
        digest = _canonical_hash(event_id, event_kind.value, ts_str, actor_id, payload)
        return EventRecord(
            event_id=event_id,
            event_kind=event_kind,
            timestamp_utc=ts_str,
            actor_id=actor_id,
            payload=payload,
            event_hash=f"sha256:{digest}",
        )


class EventLog:
    """Append-only event log with optional file persistence.

    Events can only be appended, never modified or deleted.
    The log can be persisted to a JSONL file (one JSON object per line)
    and loaded back for recovery.
    """

    def __init__(self, storage_path: Optional[Path] = None) -> None:
        self._events: list[EventRecord] = []
        self._storage_path = storage_path
        self._event_ids: set[str] = set()

        if storage_path and storage_path.exists():
            self._load_from_file(storage_path)

    def append(self, event: EventRecord) -> None:
        """Append an event to the log.

        Raises ValueError if event_id is a duplicate (replay protection).
        """
        if event.event_id in self._event_ids:
            raise ValueError(f"Duplicate event ID: {event.event_id}")

        self._events.append(event)
        self._event_ids.add(event.event_id)

        if self._storage_path:
            self._append_to_file(event)

    def events(self, kind: Optional[EventKind] = None) -> list[EventRecord]:
        """Return events, optionally filtered by kind."""
        if kind is None:
            return list(self._events)
        return [e for e in self._events if e.event_kind == kind]

    def count_by_kind(self) -> dict[str, int]:
        return dict(Counter(e.event_kind.value for e in self._events))

    @property
    def count(self) -> int:
        return len(self._events)

    @property
    def last_event(self) -> Optional[EventRecord]:
        return self._events[-1] if self._events else None

    def _append_to_file(self, event: EventRecord) -> None:
        """Append a single event to the JSONL file."""
        record = {
            "event_id": event.event_id,
            "event_kind": event.event_kind.value,
            "timestamp_utc": event.timestamp_utc,
            "actor_id": event.actor_id,
            "payload": event.payload,
            "event_hash": event.event_hash,
        }
        with self._storage_path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, sort_keys=True, ensure_ascii=False) + "\n")

    def _load_from_file(self, path: Path) -> None:
        """Load events from a JSONL file with integrity verification.

        Fail-closed: rejects tampered records (hash mismatch) and
        duplicate event IDs (replay protection on recovery).
        """
        with path.open("r", encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue
                data = json.loads(line)

                event_id = data["event_id"]
                if event_id in self._event_ids:
                    raise ValueError(
                        f"Duplicate event ID on recovery (line {line_num}): {event_id}"
                    )

                expected_hash = "sha256:" + _canonical_hash(
                    data["event_id"],
                    data["event_kind"],
                    data["timestamp_utc"],
                    data["actor_id"],
                    data["payload"],
                )
                if data["event_hash"] != expected_hash:
                    raise ValueError(
                        f"Integrity check failed (line {line_num}): event {event_id} "
                        f"stored hash {data['event_hash']} != computed {expected_hash}"
                    )

                event = EventRecord(
                    event_id=data["event_id"],
                    event_kind=EventKind(data["event_kind"]),
                    timestamp_utc=data["timestamp_utc"],
                    actor_id=data["actor_id"],
                    payload=data["payload"],
                    event_hash=data["event_hash"],
                )
                self._events.append(event)
                self._event_ids.add(event.event_id)


def _canonical_hash(
    event_id: str,
    event_kind: str,
    timestamp_utc: str,
    actor_id: str,
    payload: dict[str, Any],
) -> str:
    canonical = json.dumps(
        {
            "event_id": event_id,
            "event_kind": event_kind,
            "timestamp_utc": timestamp_utc,
            "actor_id": actor_id,
            "payload": payload,
        },
        sort_keys=True,
        ensure_ascii=False,
    ).encode("utf-8")
    return hashlib.sha256(canonical).hexdigest()
