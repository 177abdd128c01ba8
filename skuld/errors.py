"""Exception hierarchy for the lifecycle controller."""

from __future__ import annotations


class SkuldError(Exception):
    """Base class for all lifecycle controller errors."""


class ConfigNotFoundError(SkuldError):
    """No lifecycle config exists for the referenced experiment or config id."""


class DuplicateConfigError(SkuldError):
    """A lifecycle config already exists for the experiment."""


class ExperimentNotFoundError(SkuldError):
    """The experiment store has no record of the experiment."""


class AlertNotFoundError(SkuldError):
    """The referenced alert does not exist on the experiment's state."""


class InvalidTransitionError(SkuldError):
    """The requested transition is not allowed from the current status."""

    def __init__(self, experiment_id: str, current: str, transition: str) -> None:
        super().__init__(f"Cannot {transition} experiment {experiment_id} while it is {current}")
        self.experiment_id = experiment_id
        self.current = current
        self.transition = transition


class TransitionFailedError(SkuldError):
    """A collaborator call failed while executing a transition.

    The experiment keeps its prior status and a ``*_failed`` event is
    recorded before this is raised.
    """

    def __init__(self, experiment_id: str, transition: str, cause: str) -> None:
        super().__init__(f"Failed to {transition} experiment {experiment_id}: {cause}")
        self.experiment_id = experiment_id
        self.transition = transition
        self.cause = cause


class EvaluationError(SkuldError):
    """A check cycle could not fetch or interpret analytics."""


class ExperimentBusyError(SkuldError):
    """Another worker holds the experiment's lease."""

    def __init__(self, experiment_id: str) -> None:
        super().__init__(f"Experiment {experiment_id} is busy in another worker")
        self.experiment_id = experiment_id


class NotificationNotFoundError(SkuldError):
    """The referenced notification is not in the in-app inbox."""
