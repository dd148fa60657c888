"""
Change Feed Cursor for the Rithum order event stream.

Consumes an ordered, partitioned event log starting at a persisted position:
- Initialize: load the saved {streamId, position}, verify the stream still exists,
  create a fresh stream if it does not
- Poll: fetch events after the position, filter by event reason, advance the
  cursor to the last event of the batch
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from order_bridge.api.rithum_client import RithumClient
from order_bridge.config.constants import (
    DEFAULT_EVENT_REASONS,
    STREAM_DESCRIPTION,
    STREAM_START_POSITION,
)
from order_bridge.core.errors import OrderBridgeError
from order_bridge.core.logger import setup_logger
from order_bridge.store.base import StateStore

logger = setup_logger(__name__)

CURSOR_KEY = "stream_cursor"


class CursorState(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    ACTIVE = "active"


@dataclass
class StreamCursor:
    """Persisted position in the order stream."""
    stream_id: Optional[str] = None
    position: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "StreamCursor":
        data = data or {}
        return cls(
            stream_id=data.get("streamId"),
            # Older cursor files used "lastPosition"
            position=data.get("position", data.get("lastPosition")),
            updated_at=data.get("updatedAt"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"streamId": self.stream_id, "position": self.position, "updatedAt": self.updated_at}


@dataclass
class ChangeEvent:
    """One event from the stream."""
    id: Optional[str]
    reasons: List[str]
    object_id: Optional[str]
    payload: Optional[Dict[str, Any]] = None

    @classmethod
    def from_api(cls, raw: Dict[str, Any]) -> "ChangeEvent":
        event_id = raw.get("id")
        return cls(
            id=str(event_id) if event_id is not None else None,
            reasons=list(raw.get("eventReasons") or raw.get("reasons") or []),
            object_id=raw.get("objectId"),
            payload=raw.get("payload"),
        )

    @property
    def order_id(self) -> Optional[str]:
        """dscoOrderId from the payload snapshot, else the event's objectId."""
        if self.payload and self.payload.get("dscoOrderId"):
            return str(self.payload["dscoOrderId"])
        return str(self.object_id) if self.object_id is not None else None

    def matches(self, reasons: List[str], lifecycle: Optional[str] = None) -> bool:
        if not any(reason in reasons for reason in self.reasons):
            return False
        if lifecycle:
            return bool(self.payload) and self.payload.get("dscoLifecycle") == lifecycle
        return True


@dataclass
class PollResult:
    """Result of one poll of the change feed."""
    stream_id: Optional[str]
    previous_position: Optional[str]
    position: Optional[str]
    events: List[ChangeEvent] = field(default_factory=list)
    all_events: List[ChangeEvent] = field(default_factory=list)
    object_ids: List[str] = field(default_factory=list)
    order_details: List[Dict[str, Any]] = field(default_factory=list)
    position_saved: bool = False


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChangeFeedCursor:
    """Cursor over the Rithum order stream.

    States: UNINITIALIZED -> INITIALIZING -> ACTIVE. Only one poller may use a
    given persisted cursor at a time.
    """

    def __init__(
        self,
        client: RithumClient,
        store: StateStore,
        description: str = STREAM_DESCRIPTION,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.client = client
        self.store = store
        self.description = description
        self.clock = clock
        self.state = CursorState.UNINITIALIZED
        self.cursor = StreamCursor()

    async def _load(self) -> StreamCursor:
        return StreamCursor.from_dict(await self.store.get(CURSOR_KEY))

    async def _save(self) -> None:
        self.cursor.updated_at = self.clock().isoformat()
        await self.store.put(CURSOR_KEY, self.cursor.to_dict())
        logger.info(
            f"Saved stream cursor: stream={self.cursor.stream_id}, position={self.cursor.position}",
            extra={"stream_id": self.cursor.stream_id},
        )

    async def initialize(self) -> Dict[str, Any]:
        """
        Load and verify the persisted stream, or create a new one.

        A newly created stream starts with no position, so the first poll
        begins at the partition's current position (forward events only).

        Returns:
            The stream definition
        """
        self.state = CursorState.INITIALIZING
        try:
            persisted = await self._load()

            if persisted.stream_id:
                try:
                    stream = await self.client.get_stream(persisted.stream_id)
                except OrderBridgeError as e:
                    logger.warning(f"Could not verify stream {persisted.stream_id}: {e}")
                    stream = None

                if stream:
                    self.cursor = persisted
                    self.state = CursorState.ACTIVE
                    logger.info(
                        f"Using existing stream {persisted.stream_id} (position={persisted.position})"
                    )
                    return stream

                logger.warning(f"Stream {persisted.stream_id} no longer exists, creating a new one")

            stream = await self.client.create_order_stream(self.description)
            if not stream.get("id"):
                raise OrderBridgeError("Stream creation returned no id", details=stream)

            self.cursor = StreamCursor(stream_id=str(stream["id"]), position=None)
            await self._save()
            self.state = CursorState.ACTIVE
            return stream

        except Exception:
            self.state = CursorState.UNINITIALIZED
            raise

    async def poll(
        self,
        event_reasons: Optional[List[str]] = None,
        include_order_details: bool = False,
        lifecycle_filter: Optional[str] = None,
    ) -> PollResult:
        """
        Fetch the next batch of events and advance the cursor.

        The new position is the id of the last event in the whole batch, not
        just the last matching one, so events outside the filter are consumed too.

        Args:
            event_reasons: Reasons to keep (default: ["create"])
            include_order_details: Build full order dicts for matched events
            lifecycle_filter: Only keep events whose payload has this dscoLifecycle

        Returns:
            PollResult with matched events and their order ids
        """
        reasons = list(event_reasons or DEFAULT_EVENT_REASONS)

        if self.state != CursorState.ACTIVE:
            await self.initialize()

        stream_id = self.cursor.stream_id
        stream = await self.client.get_stream(stream_id)
        partitions = (stream or {}).get("partitions") or []
        if not partitions:
            self.state = CursorState.UNINITIALIZED
            raise OrderBridgeError(f"Stream {stream_id} not found or has no partitions")

        partition = partitions[0]
        partition_id = partition.get("partitionId")
        current_position = self.cursor.position or partition.get("position") or STREAM_START_POSITION

        logger.info(
            f"Polling stream {stream_id} partition {partition_id} from position {current_position}",
            extra={"stream_id": stream_id},
        )
        response = await self.client.get_stream_events(stream_id, partition_id, current_position)

        all_events = [ChangeEvent.from_api(raw) for raw in response.get("events") or []]
        matched = [event for event in all_events if event.matches(reasons, lifecycle_filter)]
        object_ids = [event.order_id for event in matched if event.order_id is not None]

        logger.info(f"Fetched {len(all_events)} event(s), {len(matched)} matching {reasons}")

        order_details = []
        if include_order_details:
            for event in matched:
                order_details.append(await self._order_detail(event))

        new_position = await self._next_position(
            all_events, current_position, stream_id, partition_id, response
        )

        previous_position = self.cursor.position
        saved = False
        if new_position and new_position != self.cursor.position:
            self.cursor.position = new_position
            await self._save()
            saved = True

        return PollResult(
            stream_id=stream_id,
            previous_position=previous_position,
            position=self.cursor.position,
            events=matched,
            all_events=all_events,
            object_ids=object_ids,
            order_details=order_details,
            position_saved=saved,
        )

    async def _next_position(
        self,
        all_events: List[ChangeEvent],
        current_position: str,
        stream_id: str,
        partition_id: Any,
        response: Dict[str, Any],
    ) -> str:
        if not all_events:
            return current_position

        last_event = all_events[-1]
        if last_event.id:
            return last_event.id

        # No id on the last event: use the partition's reported position
        new_position = current_position
        try:
            refreshed = await self.client.get_stream(stream_id)
            for partition in (refreshed or {}).get("partitions") or []:
                if partition.get("partitionId") == partition_id and partition.get("position"):
                    new_position = str(partition["position"])
        except OrderBridgeError as e:
            logger.warning(f"Could not refresh partition position: {e}")

        if new_position == current_position and response.get("position"):
            new_position = str(response["position"])
        return new_position

    async def _order_detail(self, event: ChangeEvent) -> Dict[str, Any]:
        """Order dict for an event: its payload, or the fetched order if line items are missing."""
        order_id = event.order_id
        detail = {"id": order_id, **event.payload} if event.payload else None

        needs_fetch = not detail or not isinstance(detail.get("lineItems"), list) or not detail["lineItems"]
        if needs_fetch and order_id:
            try:
                fetched = await self.client.get_order_by_id(order_id)
                if fetched:
                    detail = {"id": order_id, **fetched}
                else:
                    detail = detail or {"id": order_id}
                    detail["fetchError"] = f"Order {order_id} not found"
            except OrderBridgeError as e:
                logger.warning(f"Failed to fetch order {order_id}: {e}")
                detail = detail or {"id": order_id}
                detail["fetchError"] = e.message

        if not detail:
            detail = {"id": order_id, "error": "Payload not available in event"}
        return detail

    async def status(self) -> Dict[str, Any]:
        """Stream status for the dashboard / status endpoint."""
        cursor = await self._load()
        if not cursor.stream_id:
            return {"initialized": False, "message": "Stream not initialized"}

        stream = await self.client.get_stream(cursor.stream_id)
        return {
            "initialized": True,
            "state": self.state.value,
            "streamId": cursor.stream_id,
            "position": cursor.position,
            "updatedAt": cursor.updated_at,
            "stream": {
                "id": (stream or {}).get("id"),
                "description": (stream or {}).get("description"),
                "partitions": (stream or {}).get("partitions") or [],
            } if stream else None,
        }
