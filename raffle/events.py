from __future__ import annotations

import logging
from typing import Any, List

from sqlalchemy.orm import Session

from .models import RaffleEvent

ENTERED_RAFFLE = "EnteredRaffle"
REQUESTED_WINNER = "RequestedWinner"
PICKED_WINNER = "PickedWinner"

logger = logging.getLogger("chainraffle.events")


def emit(session: Session, name: str, **args: Any) -> RaffleEvent:
    """Append a notification to the event log inside the caller's transaction."""
    event = RaffleEvent(name=name)
    event.set_payload(args)
    session.add(event)
    # Committed or discarded with the caller's transaction.
    logger.debug("Staged %s %s", name, args)
    return event


def recent_events(session: Session, limit: int = 50) -> List[dict]:
    events = (
        session.query(RaffleEvent).order_by(RaffleEvent.id.desc()).limit(limit).all()
    )
    return [event.to_dict() for event in events]
