"""State table primitives for form-filling dialogues."""

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from ..models import TERMINAL_STATES

DEFAULT_ERROR = "Invalid input. Please try again."

Validator = Callable[[str, dict], bool]
Transformer = Callable[[str, dict], Any]
NextRule = Callable[[str], str | None]
PromptRenderer = Callable[[dict], str]


def goto(state: str) -> NextRule:
    """Fixed successor."""
    return lambda text: state


def static(text: str) -> PromptRenderer:
    """Prompt that ignores the collected data."""
    return lambda data: text


def keep_trimmed(text: str, data: dict) -> str:
    return text.strip()


def non_blank(text: str, data: dict) -> bool:
    return bool(text.strip())


@dataclass(frozen=True)
class StateSpec:
    """One non-terminal state of a dialogue.

    ``target`` is a dotted path into the session data ("storyteller.name");
    the transformed reply is stored there. A state without a validator
    accepts anything; one without a transformer stores the trimmed reply.
    """

    name: str
    prompt: PromptRenderer
    next: NextRule
    target: str | None = None
    validator: Validator | None = None
    transformer: Transformer = keep_trimmed
    error_text: str = DEFAULT_ERROR

    def validate(self, text: str, data: dict) -> bool:
        if self.validator is None:
            return True
        return self.validator(text, data)

    def transform(self, text: str, data: dict) -> Any:
        return self.transformer(text, data)

    def next_state(self, text: str) -> str | None:
        return self.next(text)

    def render_prompt(self, data: dict) -> str:
        return self.prompt(data)

    def error(self) -> str:
        return self.error_text


@dataclass
class Step:
    """Result of applying one reply to a state."""

    accepted: bool
    next_state: str | None = None
    data: dict = field(default_factory=dict)
    error: str | None = None


def fold(data: dict, path: str | None, value: Any) -> dict:
    """Return a copy of data with value stored at the dotted path."""
    updated = copy.deepcopy(data)
    if path is None:
        return updated

    *parents, leaf = path.split(".")
    target = updated
    for key in parents:
        child = target.get(key)
        if not isinstance(child, dict):
            child = {}
            target[key] = child
        target = child
    target[leaf] = value
    return updated


class UnknownStateError(KeyError):
    """A session refers to a state the dialogue does not define."""


class DialogueDefinition:
    """Ordered, static table of states plus the initial data factory."""

    def __init__(
        self,
        states: Iterable[StateSpec],
        initial_state: str,
        initial_data: Callable[[], dict],
    ):
        self._order: list[str] = []
        self._states: dict[str, StateSpec] = {}
        for spec in states:
            if spec.name in TERMINAL_STATES:
                raise ValueError(f"Terminal state {spec.name!r} cannot have a spec")
            if spec.name in self._states:
                raise ValueError(f"Duplicate state {spec.name!r}")
            self._order.append(spec.name)
            self._states[spec.name] = spec

        if initial_state not in self._states:
            raise ValueError(f"Initial state {initial_state!r} is not defined")
        self.initial_state = initial_state
        self._initial_data = initial_data

    @property
    def state_names(self) -> list[str]:
        return list(self._order)

    def is_terminal(self, state: str) -> bool:
        return state in TERMINAL_STATES

    def get(self, state: str) -> StateSpec:
        try:
            return self._states[state]
        except KeyError:
            raise UnknownStateError(state) from None

    def new_data(self) -> dict:
        return self._initial_data()

    def initial_prompt(self, data: dict | None = None) -> str:
        return self.prompt(self.initial_state, data if data is not None else self.new_data())

    def prompt(self, state: str, data: dict) -> str:
        return self.get(state).render_prompt(data)

    def advance(self, state: str, text: str, data: dict) -> Step:
        """Validate, transform and route one reply.

        A rejected reply leaves ``data`` untouched. An accepted reply whose
        state has no successor (or whose state is unknown) comes back with
        ``next_state`` None.
        """
        try:
            spec = self.get(state)
        except UnknownStateError:
            return Step(accepted=True, next_state=None, data=copy.deepcopy(data))

        if not spec.validate(text, data):
            return Step(accepted=False, error=spec.error())

        value = spec.transform(text, data)
        return Step(
            accepted=True,
            next_state=spec.next_state(text),
            data=fold(data, spec.target, value),
        )
