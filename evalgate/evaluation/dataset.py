"""Immutable dataset snapshots for evaluation runs."""

import hashlib
import json
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict
import structlog

from evalgate.models.evaluation import DatasetKind
from evalgate.models.events import SessionRecord

logger = structlog.get_logger()

LIVE_DATASET_ID = "live"


class Dataset(BaseModel):
    """
    A frozen snapshot evaluated by every evaluator in a run.

    Reference datasets are curated static examples; live datasets are samples of
    recorded sessions drawn from the event store.
    """

    model_config = ConfigDict(frozen=True)

    dataset_id: str
    kind: DatasetKind
    records: tuple[dict[str, Any], ...] = ()
    window_start: datetime | None = None
    window_end: datetime | None = None
    seed: int | None = None

    def __len__(self) -> int:
        return len(self.records)

    @classmethod
    def from_records(
        cls,
        dataset_id: str,
        records: list[dict[str, Any]],
        kind: DatasetKind = DatasetKind.REFERENCE,
    ) -> "Dataset":
        return cls(dataset_id=dataset_id, kind=kind, records=tuple(records))

    @classmethod
    def from_file(cls, path: str | Path, dataset_id: str | None = None) -> "Dataset":
        """
        Load a reference dataset from a JSON array or a JSONL file.

        Without an explicit ID, the dataset is named after the file stem and a short
        content hash, so edits to a reference set produce a new dataset ID.
        """
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Dataset file not found: {path}")

        raw = path.read_text(encoding="utf-8")
        if path.suffix == ".jsonl":
            records = [json.loads(line) for line in raw.splitlines() if line.strip()]
        else:
            data = json.loads(raw)
            records = data if isinstance(data, list) else data.get("records", [])

        for i, record in enumerate(records):
            if not isinstance(record, dict):
                raise ValueError(f"Record {i} in {path} is not an object")

        if dataset_id is None:
            digest = hashlib.sha256(raw.encode("utf-8")).hexdigest()[:12]
            dataset_id = f"reference:{path.stem}:{digest}"

        logger.info("Loaded reference dataset", path=str(path), records=len(records))
        return cls(dataset_id=dataset_id, kind=DatasetKind.REFERENCE, records=tuple(records))

    @classmethod
    def from_sessions(
        cls,
        sessions: list[SessionRecord],
        window_start: datetime,
        window_end: datetime,
        seed: int,
        dataset_id: str | None = None,
    ) -> "Dataset":
        """
        Snapshot a live sample; each record is a session with its events.

        Successive samples share the dataset ID "live" so their metric sets form one
        trend series; the sample window and seed are kept on the dataset itself.
        """
        records = tuple(s.model_dump(mode="json") for s in sessions)
        if dataset_id is None:
            dataset_id = LIVE_DATASET_ID
        return cls(
            dataset_id=dataset_id,
            kind=DatasetKind.LIVE,
            records=records,
            window_start=window_start,
            window_end=window_end,
            seed=seed,
        )
