"""
CLI command tests.

Verifies:
- catalog seed/list round trip through the Flask CLI runner
- payments reprocess reports the processor outcome
- rollup show picks day or month from the period format
"""

from sqlalchemy.orm.exc import StaleDataError

from fitsuite.cli import DEFAULT_PLANS
from fitsuite.services import plan_catalog

from conftest import license_ref


class TestCatalogCommands:
    def test_seed_defaults(self, app, db_session):
        result = app.test_cli_runner().invoke(args=["catalog", "seed"])

        assert result.exit_code == 0, result.output
        assert f"DONE {len(DEFAULT_PLANS)} plan(s) seeded." in result.output
        assert plan_catalog.read_plan("pro").limits["maxDevices"] == 3

    def test_seed_from_file_into_legacy(self, app, db_session, tmp_path):
        plan_file = tmp_path / "plans.json"
        plan_file.write_text('{"clasico": {"nombre": "Clasico", "precio": 500, "duracion": 15}}', encoding="utf-8")

        result = app.test_cli_runner().invoke(args=["catalog", "seed", "--file", str(plan_file), "--legacy"])

        assert result.exit_code == 0, result.output
        plan = plan_catalog.read_plan("clasico")
        assert plan.duration_days == 15
        assert plan.price_cents == 50000

    def test_seed_rejects_non_object(self, app, db_session, tmp_path):
        plan_file = tmp_path / "plans.json"
        plan_file.write_text("[1, 2]", encoding="utf-8")

        result = app.test_cli_runner().invoke(args=["catalog", "seed", "--file", str(plan_file)])

        assert result.exit_code != 0

    def test_list(self, app, db_session, plans):
        result = app.test_cli_runner().invoke(args=["catalog", "list"])

        assert result.exit_code == 0, result.output
        assert "basic" in result.output
        assert "legacy" in result.output
        assert "750.50" in result.output


class TestPaymentCommands:
    def test_reprocess_applied(self, app, db_session, fake_provider, sink, gym_a, plans):
        fake_provider.add_payment("P1", reference=license_ref(gym_a.id, "basic"), amount_cents=100000)

        result = app.test_cli_runner().invoke(args=["payments", "reprocess", "P1"])

        assert result.exit_code == 0, result.output
        assert '"outcome": "applied"' in result.output

    def test_reprocess_failure_exits_nonzero(self, app, db_session, fake_provider, sink):
        fake_provider.add_payment("P2", reference="garbage", amount_cents=100)

        result = app.test_cli_runner().invoke(args=["payments", "reprocess", "P2"])

        assert result.exit_code != 0
        assert "bad_reference" in result.output

    def test_reprocess_conflict_exits_nonzero(self, app, db_session, fake_provider, sink, gym_a, plans, monkeypatch):
        def always_stale(*args, **kwargs):
            raise StaleDataError("license row changed underneath")

        monkeypatch.setattr("fitsuite.services.concurrency.time.sleep", lambda seconds: None)
        monkeypatch.setattr("fitsuite.services.payment_processing.apply_payment", always_stale)
        fake_provider.add_payment("P3", reference=license_ref(gym_a.id, "basic"), amount_cents=100000)

        result = app.test_cli_runner().invoke(args=["payments", "reprocess", "P3"])

        assert result.exit_code != 0
        assert '"outcome": "conflict"' in result.output


class TestRollupCommands:
    def test_show_day_and_month(self, app, db_session, gym_a):
        runner = app.test_cli_runner()

        day = runner.invoke(args=["rollup", "show", gym_a.id, "2025-03-14"])
        month = runner.invoke(args=["rollup", "show", gym_a.id, "2025-03"])

        assert day.exit_code == 0, day.output
        assert "day 2025-03-14" in day.output
        assert "month 2025-03" in month.output
        assert "storeSale" in month.output
