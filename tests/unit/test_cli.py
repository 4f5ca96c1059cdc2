import pytest

from repairdesk.cli import run_cli
from repairdesk.domain import OrderStatus


@pytest.fixture
def run(monkeypatch, repo, lifecycle, allocations, inventory):
    monkeypatch.setattr("repairdesk.cli.postgres_unit", lambda db: repo.transaction())

    def _run(actor, *answers: str) -> None:
        replies = iter(answers)
        monkeypatch.setattr("builtins.input", lambda msg: next(replies))
        run_cli(None, actor, lifecycle=lifecycle, allocations=allocations, inventory=inventory)

    return _run


class TestCli:
    @pytest.mark.parametrize("choice", ["2", "3"])
    def test_registration_denied_for_technician(self, run, seed, capsys, choice) -> None:
        run(seed.tech, choice, "0")

        out = capsys.readouterr().out
        assert "[FORBIDDEN]" in out
        assert "Created" not in out

    def test_order_then_receive_spare_part(self, run, repo, seed, capsys) -> None:
        run(seed.admin, "12", "Drain pump", "3", "", "Acme", "13", "1", "Shelf C1", "", "0")

        out = capsys.readouterr().out
        assert "Created spare part order #1 (pending)" in out
        assert repo.get_spare_part_order(1).status == OrderStatus.RECEIVED
        (part,) = repo.list_parts()
        assert (part.part_name, part.quantity, part.location) == ("Drain pump", 3, "Shelf C1")

    def test_technician_cannot_order_without_service(self, run, repo, seed, capsys) -> None:
        run(seed.tech, "12", "Drain pump", "1", "", "", "0")

        assert "[FORBIDDEN]" in capsys.readouterr().out
        assert repo.get_spare_part_order(1) is None
