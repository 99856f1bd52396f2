"""
Model registry for trained-model records.

This module provides a ModelRegistry class that catalogs ModelRecord
instances in memory, with export/import of single records as JSON text and
an optional snapshot directory that keeps one JSON file per record. The
serialized bundle inside a record is opaque here and never inspected.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from notebook_engine.exceptions import ModelNotFoundError, ValidationError
from notebook_engine.ml.models import ModelRecord, TaskType, new_model_id

logger = logging.getLogger(__name__)


class ModelRegistry:
    """Thread-safe catalog of trained models."""

    def __init__(self, registry_dir: Optional[Union[str, Path]] = None):
        """
        Initialize ModelRegistry.

        Args:
            registry_dir: Directory for record snapshots. When None the
                registry lives in memory only.
        """
        self._records: Dict[str, ModelRecord] = {}
        self._lock = threading.RLock()
        self.registry_dir = Path(registry_dir) if registry_dir else None

        if self.registry_dir is not None:
            self.registry_dir.mkdir(parents=True, exist_ok=True)
            self._load_snapshots()

        logger.info(
            f"ModelRegistry initialized ({self.registry_dir or 'in memory'}, "
            f"{len(self._records)} models)"
        )

    def _snapshot_path(self, model_id: str) -> Path:
        return self.registry_dir / f"{model_id}.json"

    def _load_snapshots(self) -> None:
        """Load every snapshot file; unreadable files are skipped."""
        for path in sorted(self.registry_dir.glob("*.json")):
            try:
                record = ModelRecord.model_validate_json(path.read_text(encoding="utf-8"))
            except (OSError, PydanticValidationError) as e:
                logger.warning(f"Skipping unreadable model snapshot {path}: {e}")
                continue
            self._records[record.id] = record
        logger.info(f"Loaded {len(self._records)} model snapshots")

    def _write_snapshot(self, record: ModelRecord) -> None:
        if self.registry_dir is None:
            return
        path = self._snapshot_path(record.id)
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(record.model_dump_json(by_alias=True), encoding="utf-8")
        tmp.replace(path)

    def _remove_snapshot(self, model_id: str) -> None:
        if self.registry_dir is None:
            return
        try:
            self._snapshot_path(model_id).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f"Could not remove snapshot for {model_id}: {e}")

    def put(self, record: ModelRecord) -> str:
        """
        Store a record.

        Args:
            record: Fully constructed record

        Returns:
            The record's id
        """
        with self._lock:
            self._write_snapshot(record)
            self._records[record.id] = record
        logger.info(f"Registered model {record.id} ({record.algorithm}, v{record.version})")
        return record.id

    def get(self, model_id: str) -> Optional[ModelRecord]:
        """Return the record or None if absent."""
        with self._lock:
            return self._records.get(model_id)

    def require(self, model_id: str) -> ModelRecord:
        """
        Return the record.

        Raises:
            ModelNotFoundError: If no record has this id
        """
        record = self.get(model_id)
        if record is None:
            raise ModelNotFoundError(f"Model {model_id} not found", {"modelId": model_id})
        return record

    def list_models(
        self,
        task_type: Optional[TaskType] = None,
        algorithm: Optional[str] = None
    ) -> List[ModelRecord]:
        """
        List records, newest first.

        Args:
            task_type: Only records of this task type
            algorithm: Only records of this algorithm
        """
        with self._lock:
            records = list(self._records.values())

        if task_type is not None:
            records = [r for r in records if r.task_type == TaskType(task_type)]
        if algorithm is not None:
            records = [r for r in records if r.algorithm == algorithm]

        return sorted(records, key=lambda r: r.created_at, reverse=True)

    def delete(self, model_id: str) -> bool:
        """Remove a record; True iff it existed."""
        with self._lock:
            record = self._records.pop(model_id, None)
            if record is not None:
                self._remove_snapshot(model_id)

        if record is None:
            logger.info(f"Delete requested for unknown model {model_id}")
            return False
        logger.info(f"Deleted model {model_id}")
        return True

    def export_model(self, model_id: str) -> str:
        """
        Serialize one record, bundle included, as JSON text.

        Raises:
            ModelNotFoundError: If no record has this id
        """
        return self.require(model_id).model_dump_json(by_alias=True)

    def import_model(self, text: str) -> str:
        """
        Import a record exported by :meth:`export_model`.

        The imported record always gets a fresh id, whatever id the text
        carries, and the version after the exported one (1 when the text
        has no version).

        Returns:
            The new id

        Raises:
            ValidationError: If the text is not a valid exported record
        """
        try:
            payload = json.loads(text)
        except (TypeError, ValueError) as e:
            raise ValidationError(f"Model import is not valid JSON: {e}")
        if not isinstance(payload, dict):
            raise ValidationError("Model import must be a JSON object")

        try:
            source = ModelRecord.model_validate(payload)
        except PydanticValidationError as e:
            raise ValidationError(
                "Model import does not describe a model",
                {"errors": e.errors(include_url=False, include_context=False)}
            )

        previous_version = source.version if payload.get("version") is not None else 0
        record = source.model_copy(update={
            "id": new_model_id(source.algorithm),
            "version": previous_version + 1,
        })
        self.put(record)
        logger.info(f"Imported model {source.id} as {record.id}")
        return record.id

    def clear(self) -> None:
        with self._lock:
            ids = list(self._records)
            self._records.clear()
            for model_id in ids:
                self._remove_snapshot(model_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, model_id: object) -> bool:
        with self._lock:
            return model_id in self._records

    def __iter__(self) -> Iterator[ModelRecord]:
        return iter(self.list_models())
