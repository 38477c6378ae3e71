"""
Table-driven finite-state machines.

Each lifecycle entity (Version, Approval, Mapping) declares its rules as an
event-keyed table, the same shape the platform uses elsewhere:

    VERSION_TRANSITIONS = {
        "submit": {"from": ["draft"], "to": "pending_review"},
        "publish": {"from": ["approved"], "to": "published",
                    "effects": ["stamp_published_at"]},
    }

``StateMachine`` compiles that into a ``{(state, event): Transition}``
lookup. Callers fire events and apply the returned side effects; nothing
here touches the database.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class Transition:
    source: str
    event: str
    target: str
    effects: tuple[str, ...] = ()


class TransitionError(Exception):
    """Raised when ``event`` is not defined for ``state``."""

    def __init__(self, machine: str, state: str, event: str | None) -> None:
        self.machine = machine
        self.state = state
        self.event = event
        if event is None:
            msg = f"{machine}: no transition from '{state}'"
        else:
            msg = f"{machine}: cannot '{event}' from '{state}'"
        super().__init__(msg)


class StateMachine:
    def __init__(self, name: str, states, transitions: dict) -> None:
        self.name = name
        self.states = tuple(states)
        self._table: dict[tuple[str, str], Transition] = {}
        for event, rule in transitions.items():
            target = rule["to"]
            if target not in self.states:
                raise ValueError(f"{name}: unknown target state '{target}' for '{event}'")
            for source in rule["from"]:
                if source not in self.states:
                    raise ValueError(f"{name}: unknown source state '{source}' for '{event}'")
                self._table[(source, event)] = Transition(
                    source=source,
                    event=event,
                    target=target,
                    effects=tuple(rule.get("effects", ())),
                )

    def fire(self, state: str, event: str) -> Transition:
        try:
            return self._table[(state, event)]
        except KeyError:
            raise TransitionError(self.name, state, event) from None

    def can_fire(self, state: str, event: str) -> bool:
        return (state, event) in self._table

    def events_from(self, state: str) -> list[str]:
        return sorted(event for (source, event) in self._table if source == state)

    def route(self, state: str, target: str, allowed_events=None) -> Transition:
        """Return the transition from ``state`` to ``target``.

        ``allowed_events`` narrows the events a caller may drive; transitions
        reachable only through other events raise TransitionError.
        """
        for (source, event), transition in self._table.items():
            if source != state or transition.target != target:
                continue
            if allowed_events is not None and event not in allowed_events:
                continue
            return transition
        raise TransitionError(self.name, state, None)

    def is_terminal(self, state: str) -> bool:
        return not self.events_from(state)
