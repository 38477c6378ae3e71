"""
Transition-completed signal.

Downstream subscribers (export, notification, rollout execution) connect
to ``transition_completed``; engines call ``notify_transition`` after the
transition's transaction has committed. A failing subscriber is logged
with its traceback and never fails the originating operation.

    from curriculum.core.signals import transition_completed

    @transition_completed.connect_via("version")
    def on_version(sender, **payload):
        ...
"""

import logging

from blinker import Namespace

logger = logging.getLogger(__name__)

_signals = Namespace()

transition_completed = _signals.signal("transition-completed")


def notify_transition(
    *,
    entity_type: str,
    entity_id: int,
    tenant_id: int,
    from_state: str,
    to_state: str,
    event: str,
    actor_id: int | None,
) -> None:
    payload = {
        "entity_id": entity_id,
        "tenant_id": tenant_id,
        "from_state": from_state,
        "to_state": to_state,
        "event": event,
        "actor_id": actor_id,
    }
    for receiver in transition_completed.receivers_for(entity_type):
        try:
            receiver(entity_type, **payload)
        except Exception:
            logger.exception(
                "transition-completed subscriber failed entity=%s/%s event=%s",
                entity_type, entity_id, event,
                extra={"tenant_id": tenant_id},
            )
