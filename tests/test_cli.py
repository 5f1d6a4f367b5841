"""
Tests for the command line entry point.
"""

import pytest

import main


class TestParseArgs:
    """Flag parsing."""

    def test_defaults(self):
        args = main.parse_args([])
        assert args.orders is None
        assert args.sort == "recent"
        assert args.format == "csv"
        assert args.category == "Calzado"

    def test_orders_without_tab_uses_default(self):
        assert main.parse_args(["--orders"]).orders == "active"
        assert main.parse_args(["--orders", "closed"]).orders == "closed"

    def test_sales_summary_defaults_to_today(self):
        assert main.parse_args(["--sales-summary"]).sales_summary == "today"

    @pytest.mark.parametrize("argv", [["--orders", "archived"], ["--sort", "price"], ["--format", "xml"]])
    def test_invalid_choices(self, argv):
        with pytest.raises(SystemExit):
            main.parse_args(argv)


class TestMain:
    """Dispatch and exit codes."""

    def test_nothing_to_do(self):
        assert main.main([]) == 0

    def test_dry_run_import(self, tmp_path):
        csv_file = tmp_path / "clientes.csv"
        csv_file.write_text(
            "Nombre,Telefono,Ciudad,Provincia,Direccion\nAna Pérez,11-5555,Rosario,Santa Fe,Calle 1\n",
            encoding="utf-8",
        )
        assert main.main(["--import-csv", str(csv_file), "--dry-run"]) == 0

    def test_missing_csv(self, tmp_path):
        assert main.main(["--import-csv", str(tmp_path / "nope.csv")]) == 1
