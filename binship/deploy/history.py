"""Persistent deployment history.

Contract:
- Inputs: Deployment records and runs
- Outputs: Record chains per (host, binary name)
- Side Effects: Reads/writes state/deployments/history/<host>/<binary>.json
  and state/deployments/runs/<deployment_id>.json
"""

import logging
import threading
from pathlib import Path

from ..models.deployments import DeploymentRecord
from ..models.deployments import DeploymentRun
from ..models.deployments import DeploymentStatus
from ..models.deployments import HostHistory
from ..storage.json_store import load_model
from ..storage.json_store import save_model

logger = logging.getLogger(__name__)


class DeploymentHistory:
    """Record chains for every (host, binary name) pair.

    Each append is validated so that a record's ``previous_record_id``
    points at an existing record of the same chain and following the
    pointers never revisits a record.
    """

    def __init__(self, state_dir: Path) -> None:
        self.root = Path(state_dir) / "deployments"
        self.history_dir = self.root / "history"
        self.runs_dir = self.root / "runs"
        self._lock = threading.Lock()

    def _history_path(self, host_id: str, binary_name: str) -> Path:
        return self.history_dir / host_id / f"{binary_name}.json"

    def load(self, host_id: str, binary_name: str) -> HostHistory:
        history = load_model(self._history_path(host_id, binary_name), HostHistory)
        return history or HostHistory(host_id=host_id, binary_name=binary_name)

    def _save(self, history: HostHistory) -> None:
        save_model(self._history_path(history.host_id, history.binary_name), history)

    def get(self, host_id: str, binary_name: str, record_id: str | None) -> DeploymentRecord | None:
        if record_id is None:
            return None
        for record in self.load(host_id, binary_name).records:
            if record.record_id == record_id:
                return record
        return None

    def current(self, host_id: str, binary_name: str) -> DeploymentRecord | None:
        """Return the record currently active on the host, if any."""
        history = self.load(host_id, binary_name)
        return _find(history, history.current_record_id)

    def chain(self, host_id: str, binary_name: str) -> list[DeploymentRecord]:
        """Return the records reachable from the current one, newest first."""
        history = self.load(host_id, binary_name)
        chain = []
        record = _find(history, history.current_record_id)
        while record is not None:
            chain.append(record)
            record = _find(history, record.previous_record_id)
        return chain

    def append(self, record: DeploymentRecord, make_current: bool = True) -> HostHistory:
        """Add a record to its chain.

        Raises:
            ValueError: If the record id is already used, the previous record
                is unknown, or the link would create a cycle
        """
        with self._lock:
            history = self.load(record.host_id, record.binary_name)
            if _find(history, record.record_id) is not None:
                raise ValueError(f"Record {record.record_id} already exists for {record.host_id}")
            if record.previous_record_id is not None:
                if _find(history, record.previous_record_id) is None:
                    raise ValueError(f"Previous record {record.previous_record_id} not found for {record.host_id}")
                _check_acyclic(history, record)

            history.records.append(record)
            if make_current:
                history.current_record_id = record.record_id
            self._save(history)
        logger.debug(f"Recorded {record.status.value} {record.binary_name} on {record.host_id} as {record.record_id}")
        return history

    def update_status(self, host_id: str, binary_name: str, record_id: str, status: DeploymentStatus) -> None:
        with self._lock:
            history = self.load(host_id, binary_name)
            record = _find(history, record_id)
            if record is None:
                raise ValueError(f"Record {record_id} not found for {host_id}")
            record.status = status
            self._save(history)

    def clear_current(self, host_id: str, binary_name: str) -> None:
        with self._lock:
            history = self.load(host_id, binary_name)
            if history.current_record_id is None:
                return
            history.current_record_id = None
            self._save(history)

    def save_run(self, run: DeploymentRun) -> None:
        save_model(self.runs_dir / f"{run.deployment_id}.json", run)

    def load_run(self, deployment_id: str) -> DeploymentRun | None:
        return load_model(self.runs_dir / f"{deployment_id}.json", DeploymentRun)

    def hosts(self, binary_name: str) -> list[str]:
        """Return the hosts with a recorded history for ``binary_name``."""
        if not self.history_dir.exists():
            return []
        return sorted(path.name for path in self.history_dir.iterdir() if (path / f"{binary_name}.json").exists())


def _find(history: HostHistory, record_id: str | None) -> DeploymentRecord | None:
    if record_id is None:
        return None
    for record in history.records:
        if record.record_id == record_id:
            return record
    return None


def _check_acyclic(history: HostHistory, record: DeploymentRecord) -> None:
    seen = {record.record_id}
    cursor = record.previous_record_id
    while cursor is not None:
        if cursor in seen:
            raise ValueError(f"Record {record.record_id} would create a cycle in the history of {record.host_id}")
        seen.add(cursor)
        previous = _find(history, cursor)
        cursor = previous.previous_record_id if previous else None
