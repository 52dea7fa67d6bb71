import runpy
from pathlib import Path

from licensing.services import ApplicationService

SCRIPTS = Path(__file__).resolve().parents[1] / "scripts"


def test_cleanup_unfinalized(db, api_payload, capsys):
    svc = ApplicationService(db)
    kept = svc.create_application(api_payload)["applicationId"]
    svc.create_application(api_payload)
    svc.create_application(api_payload)
    svc.update_application_status(kept, "approved")

    cleanup = runpy.run_path(str(SCRIPTS / "cleanup_unfinalized.py"))
    assert cleanup["main"](dry_run=True) == 2
    assert "would be deleted" in capsys.readouterr().out
    assert svc.get_applications()["pagination"]["count"] == 3

    assert cleanup["main"]() == 2
    remaining = svc.get_applications()["applications"]
    assert [r.application_id for r in remaining] == [kept]


def test_init_db_is_idempotent(capsys):
    init_db = runpy.run_path(str(SCRIPTS / "init_db.py"))
    init_db["main"]()
    init_db["main"]()
    assert "Database initialised." in capsys.readouterr().out
