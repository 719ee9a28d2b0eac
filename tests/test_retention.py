import os
from pathlib import Path

import pytest

from activities.retention import RetentionManager, collect_retention_set
from models.errors import RetentionError

PREFIXES = ("server_backup_", "database_backup_")


def make_artifacts(directory: Path, prefix: str, ext: str, count: int, base: int = 1_700_000_000):
    paths = []
    for i in range(count):
        path = directory / f"{prefix}2024-01-0{i + 1}T00-00-00.000Z{ext}"
        path.write_text(str(i))
        os.utime(path, (base + i * 60, base + i * 60))
        paths.append(path)
    return paths  # oldest first


def test_keeps_five_newest_of_eight_and_deletes_three_oldest(tmp_path):
    paths = make_artifacts(tmp_path, "server_backup_", ".tar.gz", 8)

    summary = RetentionManager().prune(tmp_path, PREFIXES, 5)

    assert sorted(summary.removed) == sorted(p.name for p in paths[:3])
    assert all(not p.exists() for p in paths[:3])
    assert all(p.exists() for p in paths[3:])
    assert summary.kept["server_backup_"] == [p.name for p in reversed(paths[3:])]


def test_categories_are_pruned_independently(tmp_path):
    servers = make_artifacts(tmp_path, "server_backup_", ".tar.gz", 3)
    dumps = make_artifacts(tmp_path, "database_backup_", ".sql", 6)
    (tmp_path / "notes.txt").write_text("unrelated")

    RetentionManager().prune(tmp_path, PREFIXES, 2)

    assert [p.exists() for p in servers] == [False, True, True]
    assert [p.exists() for p in dumps] == [False, False, False, False, True, True]
    assert (tmp_path / "notes.txt").exists()


def test_keep_zero_removes_everything_in_category(tmp_path):
    paths = make_artifacts(tmp_path, "database_backup_", ".sql", 2)
    RetentionManager().prune(tmp_path, PREFIXES, 0)
    assert not any(p.exists() for p in paths)


def test_negative_keep_count_is_rejected(tmp_path):
    with pytest.raises(ValueError):
        RetentionManager().prune(tmp_path, PREFIXES, -1)


def test_deletion_failure_does_not_block_the_rest(tmp_path, monkeypatch):
    paths = make_artifacts(tmp_path, "server_backup_", ".tar.gz", 4)
    stuck = paths[0]
    real_unlink = Path.unlink

    def flaky_unlink(self, *args, **kwargs):
        if self == stuck:
            raise PermissionError("read-only")
        return real_unlink(self, *args, **kwargs)

    monkeypatch.setattr(Path, "unlink", flaky_unlink)
    summary = RetentionManager().prune(tmp_path, PREFIXES, 1)

    assert summary.failed == {stuck.name: "read-only"}
    assert sorted(summary.removed) == sorted(p.name for p in paths[1:3])
    assert stuck.exists() and paths[3].exists()
    assert not paths[1].exists() and not paths[2].exists()


def test_equal_mtimes_fall_back_to_name_order(tmp_path):
    paths = make_artifacts(tmp_path, "server_backup_", ".tar.gz", 3)
    for p in paths:
        os.utime(p, (1_700_000_000, 1_700_000_000))
    ordered = collect_retention_set(tmp_path, PREFIXES)["server_backup_"]
    assert ordered == list(reversed(paths))


def test_unlistable_directory_raises(tmp_path):
    with pytest.raises(RetentionError):
        collect_retention_set(tmp_path / "missing", PREFIXES)


def test_collision_suffixed_run_sorts_as_the_newer_one(tmp_path):
    names = [
        "server_backup_2024-01-01T00-00-00.000Z.tar.gz",
        "server_backup_2024-01-01T00-00-00.000Z-1.tar.gz",
        "server_backup_2024-01-01T00-00-00.000Z-2.tar.gz",
    ]
    for name in names:
        path = tmp_path / name
        path.write_text(name)
        os.utime(path, (1_700_000_000, 1_700_000_000))

    summary = RetentionManager().prune(tmp_path, PREFIXES, 2)

    assert summary.kept["server_backup_"] == [names[2], names[1]]
    assert summary.removed == [names[0]]
