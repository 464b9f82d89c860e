"""Timestamp-named snapshots of persisted data directories."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from datetime import datetime
import json
from pathlib import Path
import shutil

from core.errors import PreconditionViolated, SnapshotError, SnapshotNotFound
from core.logging import logger as LOGGER
from core.models import Snapshot


MANIFEST_NAME = "manifest.json"
SNAPSHOT_PREFIX = "backup_"

InUseCheck = Callable[[str, Path], bool]


class SnapshotManager:
    """Create and restore point-in-time copies of data directories.

    Backups are best-effort: reads are not exclusive and may race with a live
    service. Restores replace each target directory as a unit and refuse to
    touch a directory reported as in use.
    """

    def __init__(
        self,
        store_dir: Path,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store_dir = Path(store_dir).expanduser()
        self._clock = clock

    @property
    def store_dir(self) -> Path:
        return self._store_dir

    def backup(self, directories: Mapping[str, Path | str]) -> Snapshot:
        """Copy each directory tree into a new timestamp-named snapshot."""

        created_at = self._clock().replace(microsecond=0)
        self._store_dir.mkdir(parents=True, exist_ok=True)
        destination = self._allocate_destination(created_at)

        copied: dict[str, str] = {}
        try:
            for key, source in directories.items():
                source_path = Path(source).expanduser()
                if not source_path.is_dir():
                    LOGGER.warning("[Snapshot] Skipping %s: %s is not a directory", key, source_path)
                    continue
                LOGGER.info("[Snapshot] Copying %s from %s", key, source_path)
                shutil.copytree(source_path, destination / key, symlinks=True)
                copied[key] = str(source_path)

            snapshot = Snapshot(
                snapshot_id=destination.name,
                created_at=created_at,
                path=destination,
                directories=copied,
            )
            (destination / MANIFEST_NAME).write_text(
                json.dumps(snapshot.to_manifest(), indent=2),
                encoding="utf-8",
            )
        except OSError as exc:
            shutil.rmtree(destination, ignore_errors=True)
            raise SnapshotError(f"Backup failed: {exc}") from exc

        LOGGER.info("[Snapshot] Created %s (%s)", snapshot.snapshot_id, ", ".join(copied) or "empty")
        return snapshot

    def restore(
        self,
        snapshot: Snapshot | str,
        directories: Mapping[str, Path | str] | None = None,
        *,
        in_use: InUseCheck | None = None,
    ) -> Snapshot:
        """Overwrite target directories with the snapshot contents.

        ``directories`` maps snapshot keys to targets; it defaults to the
        source paths recorded at backup time. Every target is checked with
        ``in_use`` before any of them is modified.
        """

        if isinstance(snapshot, str):
            snapshot = self.get(snapshot)

        targets = self._resolve_targets(snapshot, directories)
        if in_use is not None:
            busy = [key for key, target in targets.items() if in_use(key, target)]
            if busy:
                raise PreconditionViolated(
                    f"Cannot restore while directories are in use: {', '.join(busy)}",
                    services=busy,
                )

        for key, target in targets.items():
            self._replace_directory(snapshot.path / key, target)
            LOGGER.info("[Snapshot] Restored %s into %s", key, target)
        return snapshot

    def get(self, snapshot_id: str) -> Snapshot:
        if snapshot_id in ("", ".", "..") or Path(snapshot_id).name != snapshot_id:
            raise SnapshotNotFound(snapshot_id)
        path = self._store_dir / snapshot_id
        if not path.is_dir():
            raise SnapshotNotFound(snapshot_id)
        return self._load(path)

    def list_snapshots(self) -> list[Snapshot]:
        """Return snapshots in the store, oldest first."""

        if not self._store_dir.is_dir():
            return []
        snapshots = []
        for path in sorted(self._store_dir.iterdir()):
            if path.is_dir() and (path / MANIFEST_NAME).is_file():
                try:
                    snapshots.append(self._load(path))
                except SnapshotError as exc:
                    LOGGER.warning("[Snapshot] Ignoring %s: %s", path.name, exc)
        return sorted(snapshots, key=lambda item: (item.created_at, item.snapshot_id))

    def _load(self, path: Path) -> Snapshot:
        manifest_path = path / MANIFEST_NAME
        if not manifest_path.is_file():
            # Legacy backups made by copying directories by hand.
            directories = {child.name: child.name for child in path.iterdir() if child.is_dir()}
            created_at = datetime.fromtimestamp(path.stat().st_mtime).replace(microsecond=0)
            return Snapshot(
                snapshot_id=path.name,
                created_at=created_at,
                path=path,
                directories=directories,
            )
        try:
            manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
            return Snapshot.from_manifest(path, manifest)
        except (OSError, ValueError, KeyError) as exc:
            raise SnapshotError(f"Unreadable manifest in {path.name}: {exc}") from exc

    def _allocate_destination(self, created_at: datetime) -> Path:
        base = f"{SNAPSHOT_PREFIX}{created_at.strftime('%Y%m%d_%H%M%S')}"
        candidate = self._store_dir / base
        suffix = 1
        while True:
            try:
                candidate.mkdir()
                return candidate
            except FileExistsError:
                candidate = self._store_dir / f"{base}_{suffix}"
                suffix += 1

    def _resolve_targets(
        self,
        snapshot: Snapshot,
        directories: Mapping[str, Path | str] | None,
    ) -> dict[str, Path]:
        if directories is None:
            directories = snapshot.directories
        targets: dict[str, Path] = {}
        for key, target in directories.items():
            if not (snapshot.path / key).is_dir():
                raise SnapshotError(f"Snapshot {snapshot.snapshot_id} has no {key} directory")
            targets[key] = Path(target).expanduser()
        if not targets:
            raise SnapshotError(f"Snapshot {snapshot.snapshot_id} contains no directories")
        return targets

    def _replace_directory(self, source: Path, target: Path) -> None:
        """Swap ``target`` for a copy of ``source``; leave it untouched on error."""

        staging = target.with_name(f".{target.name}.restore-staging")
        retired = target.with_name(f".{target.name}.restore-old")
        shutil.rmtree(staging, ignore_errors=True)
        shutil.rmtree(retired, ignore_errors=True)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, staging, symlinks=True)
        except OSError as exc:
            shutil.rmtree(staging, ignore_errors=True)
            raise SnapshotError(f"Restore of {target} failed, left untouched: {exc}") from exc

        had_target = target.exists()
        try:
            if had_target:
                target.rename(retired)
            staging.rename(target)
        except OSError as exc:
            if had_target and retired.exists() and not target.exists():
                retired.rename(target)
            shutil.rmtree(staging, ignore_errors=True)
            raise SnapshotError(f"Restore of {target} failed, left untouched: {exc}") from exc
        shutil.rmtree(retired, ignore_errors=True)
