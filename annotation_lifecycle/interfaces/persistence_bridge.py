"""
Persistence bridge for the measurement coordinator.

Bridges the coordinator's unified event stream with the annotation
persistence facade.
"""

import logging
from typing import Callable, Optional

from ..core.annotation import EventType, MeasurementEvent
from ..core.measurement import MeasurementToolCoordinator
from ..core.persistence import AnnotationPersistence, SaveOutcome

logger = logging.getLogger(__name__)


class PersistenceBridge:
    """
    Adapter connecting a MeasurementToolCoordinator to AnnotationPersistence.

    Provides a thin layer that:
    - Queues completed and modified records into the current session
    - Queues removals for removed records
    - Keeps the last outcome for the UI to display
    """

    def __init__(
        self,
        coordinator: MeasurementToolCoordinator,
        persistence: AnnotationPersistence,
        on_outcome: Optional[Callable[[MeasurementEvent, SaveOutcome], None]] = None,
    ):
        """
        Initialize bridge.

        Args:
            coordinator: Coordinator whose events are persisted
            persistence: Facade receiving the changes
            on_outcome: Called with each event and the resulting outcome
        """
        self.coordinator = coordinator
        self.persistence = persistence
        self.on_outcome = on_outcome
        self.last_outcome: Optional[SaveOutcome] = None

        # Subscribe to coordinator events
        self._setup_event_handlers()

    def _setup_event_handlers(self):
        """Setup event handlers for coordinator events."""
        self.coordinator.events.on(EventType.MEASUREMENT_COMPLETED, self._on_record_changed)
        self.coordinator.events.on(EventType.MEASUREMENT_MODIFIED, self._on_record_changed)
        self.coordinator.events.on(EventType.MEASUREMENT_REMOVED, self._on_record_removed)

    def _on_record_changed(self, event: MeasurementEvent):
        """Handle completed or modified records."""
        if event.record is None:
            return
        self._report(event, self.persistence.save_annotation(event.record))

    def _on_record_removed(self, event: MeasurementEvent):
        """Handle removed records."""
        if event.record is None:
            return
        self._report(event, self.persistence.remove_annotation(event.record.id))

    def _report(self, event: MeasurementEvent, outcome: SaveOutcome):
        self.last_outcome = outcome
        if outcome.error is not None:
            logger.warning(
                f"Could not persist {event.event_type.value} for "
                f"{event.record.id}: {outcome.error.value} {outcome.message}"
            )
        if self.on_outcome:
            self.on_outcome(event, outcome)

    def detach(self):
        """Stop forwarding coordinator events."""
        self.coordinator.events.off(EventType.MEASUREMENT_COMPLETED, self._on_record_changed)
        self.coordinator.events.off(EventType.MEASUREMENT_MODIFIED, self._on_record_changed)
        self.coordinator.events.off(EventType.MEASUREMENT_REMOVED, self._on_record_removed)
