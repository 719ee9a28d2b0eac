"""End-to-end: real tar, scripted dump, three runs with keep_count=2."""

import dataclasses
import shutil
import tarfile

import pytest

from activities.archive import ArchiveStage
from utils.dir_size import estimate_size
from workflows.orchestrator import BackupOrchestrator
from tests.conftest import MemorySink, ScriptDumpStage, make_clock

pytestmark = pytest.mark.skipif(shutil.which("tar") is None, reason="tar not installed")

EXPECTED_SERVER = [
    "server_backup_2024-01-01T00-00-02.000Z.tar.gz",
    "server_backup_2024-01-01T00-00-01.000Z.tar.gz",
]
EXPECTED_DATABASE = [
    "database_backup_2024-01-01T00-00-02.000Z.sql",
    "database_backup_2024-01-01T00-00-01.000Z.sql",
]


@pytest.mark.asyncio
async def test_three_runs_leave_the_two_newest_per_category(backup_config):
    cfg = dataclasses.replace(backup_config, keep_count=2)
    assert estimate_size(cfg.source_dir) == 1000
    sink = MemorySink()
    orchestrator = BackupOrchestrator(
        cfg,
        sink,
        archive_stage=ArchiveStage(sink, poll_interval=0.05),
        dump_stage=ScriptDumpStage("print('-- panel dump')"),
        clock=make_clock(),
    )

    first = await orchestrator.run()

    backup_dir = cfg.backup_dir
    assert first["phase"] == "completed"
    assert (backup_dir / "server_backup_2024-01-01T00-00-00.000Z.tar.gz").is_file()
    assert (backup_dir / "database_backup_2024-01-01T00-00-00.000Z.sql").read_text().strip() == "-- panel dump"
    with tarfile.open(backup_dir / "server_backup_2024-01-01T00-00-00.000Z.tar.gz", "r:gz") as archive:
        names = {name.lstrip("./") for name in archive.getnames()}
    assert {"server.properties", "world/level.dat"} <= names

    await orchestrator.run()
    third = await orchestrator.run()

    server = sorted((p.name for p in backup_dir.glob("server_backup_*")), reverse=True)
    database = sorted((p.name for p in backup_dir.glob("database_backup_*")), reverse=True)
    assert server == EXPECTED_SERVER
    assert database == EXPECTED_DATABASE
    assert sorted(third["retention"]["removed"]) == [
        "database_backup_2024-01-01T00-00-00.000Z.sql",
        "server_backup_2024-01-01T00-00-00.000Z.tar.gz",
    ]
    assert sink.log_messages.count("Backup process completed successfully.") == 3
