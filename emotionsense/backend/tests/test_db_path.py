import os
from pathlib import Path

from emotionsense.backend.app import main


def clear_db_env():
    return (
        os.environ.pop("EMOTIONSENSE_DB_PATH", None),
        os.environ.pop("DB_PATH", None),
    )


def restore_db_env(backup):
    primary, alt = backup
    os.environ.pop("EMOTIONSENSE_DB_PATH", None)
    os.environ.pop("DB_PATH", None)
    if primary is not None:
        os.environ["EMOTIONSENSE_DB_PATH"] = primary
    if alt is not None:
        os.environ["DB_PATH"] = alt


def test_resolve_db_path_stable_across_cwd():
    original = os.getcwd()
    expected = Path(main.__file__).resolve().parents[3] / "emotionsense.db"
    backup = clear_db_env()
    try:
        os.chdir(Path(main.__file__).resolve().parents[2])
        resolved = Path(main.resolve_db_path())
        assert resolved == expected
    finally:
        os.chdir(original)
        restore_db_env(backup)


def test_relative_db_path_resolves_against_repo_root():
    backup = clear_db_env()
    try:
        os.environ["EMOTIONSENSE_DB_PATH"] = "data/local.db"
        resolved = Path(main.resolve_db_path())
        assert resolved == main.REPO_ROOT / "data" / "local.db"
    finally:
        restore_db_env(backup)
