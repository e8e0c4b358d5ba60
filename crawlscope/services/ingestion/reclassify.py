"""Re-run the classifier over stored events.

Uses the stored headers and network origin, so no dataset lookups happen.
Only rows whose category or identity changed are updated.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from crawlscope.services.ingestion.sessions import SessionTracker

logger = logging.getLogger(__name__)


@dataclass
class ReclassifyReport:
    processed: int = 0
    updated: int = 0
    distribution: dict = field(default_factory=dict)


def reclassify_events(store, classifier, batch_size: int = 1000, session_window_seconds: float = 0, log=None) -> ReclassifyReport:
    log = log or logger
    report = ReclassifyReport()
    # Events come back in id order, which is insertion order, roughly time order.
    tracker = SessionTracker(session_window_seconds)
    pending = []

    for event in store.iter_events(batch_size=batch_size):
        previous = event.classification()
        result = classifier.classify(event, tracker.observe(event.client_address, event.timestamp))
        report.processed += 1
        if previous is None or (result.category, result.identity_name) != (previous.category, previous.identity_name):
            pending.append((event.event_id, result))
        if len(pending) >= batch_size:
            report.updated += store.update_classifications(pending)
            pending = []

    if pending:
        report.updated += store.update_classifications(pending)

    report.distribution = store.category_distribution()
    log.info('Reclassified %d events, %d changed', report.processed, report.updated)
    return report
