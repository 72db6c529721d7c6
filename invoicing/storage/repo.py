from __future__ import annotations

import glob
import json
import logging
import os
import shutil
import tempfile
import threading
from contextlib import contextmanager
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Union
from uuid import uuid4

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


def _json_default(o: Any) -> Any:
    if isinstance(o, (date, datetime)):
        return o.isoformat()
    return str(o)


class JsonRepository:
    """
    Une collection = un fichier JSON (liste d'objets), clé primaire configurable.

    Toute écriture passe par `transaction()`: lecture, mutation puis écriture
    atomique (fichier temporaire + os.replace) sous le même verrou. Une exception
    dans le bloc annule l'écriture. Les backups tournent (backup_keep) et un
    contenu inchangé n'est pas réécrit.
    """

    def __init__(
        self,
        filepath: Union[str, Path],
        entity_name: str = "entity",
        key: str = "id",
        *,
        backup_enabled: bool = True,
        backup_keep: int = 5,
    ) -> None:
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self.lock = threading.RLock()
        self.backup_enabled = backup_enabled
        self.backup_keep = max(0, int(backup_keep))

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._save([])

    # ---------------- lecture ---------------- #

    def _load(self) -> List[Row]:
        try:
            rows = json.loads(self.filepath.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return []
        except json.JSONDecodeError:
            aside = self.filepath.with_suffix(".corrupt.json")
            logger.warning("Corrupted %s store %s, copied to %s", self.entity_name, self.filepath, aside)
            try:
                shutil.copy2(self.filepath, aside)
            except OSError as e:
                logger.warning("Could not copy corrupted file %s: %s", self.filepath, e)
            return []
        return rows if isinstance(rows, list) else []

    def _matches(self, row: Mapping[str, Any], obj_id: Any) -> bool:
        return str(row.get(self.key)) == str(obj_id)

    def find(self, predicate: Optional[Callable[[Row], bool]] = None) -> List[Row]:
        rows = self._load()
        return rows if predicate is None else [r for r in rows if predicate(r)]

    def get_by_id(self, obj_id: Any) -> Optional[Row]:
        return next((r for r in self._load() if self._matches(r, obj_id)), None)

    # ---------------- écriture ---------------- #

    @contextmanager
    def transaction(self) -> Iterator[List[Row]]:
        with self.lock:
            rows = self._load()
            yield rows
            self._save(rows)

    def _backup(self) -> None:
        stamp = datetime.now().strftime("%Y%m%d-%H%M%S-%f")
        try:
            shutil.copy2(self.filepath, self.filepath.with_suffix(f".{stamp}.bak.json"))
        except OSError as e:
            logger.warning("Backup of %s failed: %s", self.filepath, e)
        # les noms horodatés se trient chronologiquement
        backups = sorted(glob.glob(str(self.filepath.with_suffix(".*.bak.json"))))
        for old in backups[: max(0, len(backups) - self.backup_keep)]:
            try:
                Path(old).unlink(missing_ok=True)
            except OSError as e:
                logger.warning("Could not remove old backup %s: %s", old, e)

    def _save(self, rows: List[Row]) -> None:
        payload = json.dumps(rows, ensure_ascii=False, indent=2, default=_json_default)
        with self.lock:
            if self.filepath.exists():
                try:
                    if self.filepath.read_text(encoding="utf-8") == payload:
                        return
                except OSError:
                    pass
                if self.backup_enabled and self.backup_keep > 0:
                    self._backup()

            fd, tmp = tempfile.mkstemp(dir=str(self.filepath.parent), suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                os.replace(tmp, self.filepath)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

    @staticmethod
    def _to_dict(item: Union[BaseModel, Mapping[str, Any]]) -> Row:
        if isinstance(item, BaseModel):
            return item.model_dump(mode="json")
        return dict(item)

    def add(self, item: Union[BaseModel, Mapping[str, Any]]) -> Row:
        record = self._to_dict(item)
        record.setdefault(self.key, None)
        if not record[self.key]:
            record[self.key] = uuid4().hex
        with self.transaction() as rows:
            if any(self._matches(r, record[self.key]) for r in rows):
                raise ValueError(f"{self.entity_name} with {self.key}={record[self.key]} already exists")
            rows.append(record)
        return record

    def update(self, item: Union[BaseModel, Mapping[str, Any]]) -> Row:
        """Mise à jour partielle: les clés fournies écrasent l'existant."""
        patch = self._to_dict(item)
        obj_id = patch.get(self.key)
        if not obj_id:
            raise ValueError(f"Cannot update {self.entity_name} without '{self.key}'")
        with self.transaction() as rows:
            for idx, row in enumerate(rows):
                if self._matches(row, obj_id):
                    rows[idx] = {**row, **patch}
                    return rows[idx]
            raise KeyError(f"{self.entity_name} with {self.key}={obj_id} not found")

    def delete(self, obj_id: Any) -> bool:
        with self.transaction() as rows:
            kept = [r for r in rows if not self._matches(r, obj_id)]
            if len(kept) == len(rows):
                return False
            rows[:] = kept
        return True
