"""In-memory lifecycle repository, for tests and embedded use."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING

from skuld.errors import ConfigNotFoundError, DuplicateConfigError

if TYPE_CHECKING:
    from skuld.models.config import LifecycleConfig
    from skuld.models.state import LifecycleState


class InMemoryLifecycleRepository:
    """Dict-backed implementation of ``LifecycleRepository``.

    Everything handed in or out is deep-copied, so callers never share
    objects with the store.
    """

    def __init__(self) -> None:
        self._configs: dict[str, LifecycleConfig] = {}
        self._config_ids: dict[str, str] = {}
        self._states: dict[str, LifecycleState] = {}
        self._leases: dict[str, tuple[str, float]] = {}

    def add_config(self, config: LifecycleConfig, state: LifecycleState) -> None:
        if config.experiment_id in self._config_ids:
            raise DuplicateConfigError(
                f"Lifecycle config already exists for experiment {config.experiment_id}"
            )
        self._configs[config.id] = config.model_copy(deep=True)
        self._config_ids[config.experiment_id] = config.id
        self._states[state.experiment_id] = state.model_copy(deep=True)

    def save_config(self, config: LifecycleConfig) -> None:
        if config.id not in self._configs:
            raise ConfigNotFoundError(f"Lifecycle config {config.id} not found")
        self._configs[config.id] = config.model_copy(deep=True)

    def get_config(self, config_id: str) -> LifecycleConfig | None:
        config = self._configs.get(config_id)
        return config.model_copy(deep=True) if config else None

    def get_config_for_experiment(self, experiment_id: str) -> LifecycleConfig | None:
        config_id = self._config_ids.get(experiment_id)
        return self.get_config(config_id) if config_id else None

    def list_configs(self) -> list[LifecycleConfig]:
        return [config.model_copy(deep=True) for config in self._configs.values()]

    def get_state(self, experiment_id: str) -> LifecycleState | None:
        state = self._states.get(experiment_id)
        return state.model_copy(deep=True) if state else None

    def save_state(self, state: LifecycleState) -> None:
        if state.experiment_id not in self._states:
            raise ConfigNotFoundError(f"No lifecycle state for experiment {state.experiment_id}")
        self._states[state.experiment_id] = state.model_copy(deep=True)

    def list_states(self) -> list[LifecycleState]:
        return [state.model_copy(deep=True) for state in self._states.values()]

    def acquire_lease(self, experiment_id: str, holder: str, ttl_seconds: float) -> bool:
        now = time.monotonic()
        current = self._leases.get(experiment_id)
        if current is not None and current[0] != holder and current[1] > now:
            return False
        self._leases[experiment_id] = (holder, now + ttl_seconds)
        return True

    def release_lease(self, experiment_id: str, holder: str) -> None:
        current = self._leases.get(experiment_id)
        if current is not None and current[0] == holder:
            del self._leases[experiment_id]
