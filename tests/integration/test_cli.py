"""Integration tests for CSV loading and the command line interface."""

import json
from pathlib import Path

import pytest
from typer.testing import CliRunner

from hetmeta.cli.main import app
from hetmeta.io.loader import load_studies

CSV = """\
authors,publication_year,measure,m1,m2,sd1,sd2,n1,n2,a,b,c,d,outcome,nos_score
Selvi,2010,SMD,14.2,11.9,4.1,3.8,42,40,,,,,Paranoid Ideation,7
Kara,2016,SMD,9.8,9.1,3.0,3.2,55,61,,,,,Paranoid Ideation,6
Gao,2024,OR,,,,,,,38,962,21,979,Schizophrenia,8
"""

runner = CliRunner()


@pytest.fixture
def studies_csv(tmp_path: Path) -> Path:
    path = tmp_path / "studies.csv"
    path.write_text(CSV)
    return path


class TestLoader:
    """Tests for reading an extraction sheet."""

    def test_load_studies(self, studies_csv: Path) -> None:
        """Test rows become study records in file order."""
        studies = load_studies(studies_csv)
        assert [s.label for s in studies] == ["Selvi 2010", "Kara 2016", "Gao 2024"]
        assert [s.study_id for s in studies] == ["study_1", "study_2", "study_3"]
        assert studies[0].n1 == 42
        assert studies[0].a is None
        assert studies[2].measure == "OR"
        assert studies[2].m1 is None
        assert studies[2].d == 979
        assert studies[2].outcome == "Schizophrenia"
        assert studies[0].extra == {"nos_score": 7}

    def test_aliases(self, tmp_path: Path) -> None:
        """Test common alternative column names."""
        path = tmp_path / "alias.csv"
        path.write_text("ID,Author,Year,Measure,a,b,c,d\nx1,Doe,2001,or,5,10,3,12\n")
        study = load_studies(path)[0]
        assert study.study_id == "x1"
        assert study.label == "Doe 2001"
        assert study.year == 2001
        assert study.measure == "OR"

    def test_missing_measure_column(self, tmp_path: Path) -> None:
        """Test a sheet without a measure column is rejected."""
        path = tmp_path / "bad.csv"
        path.write_text("authors,m1\nDoe,1.0\n")
        with pytest.raises(ValueError):
            load_studies(path)


class TestCli:
    """Tests for the hetmeta commands."""

    def test_analyze(self, studies_csv: Path, tmp_path: Path) -> None:
        """Test the analyze command prints results and writes JSON."""
        out = tmp_path / "result.json"
        result = runner.invoke(app, ["analyze", str(studies_csv), "--output", str(out)])
        assert result.exit_code == 0, result.output
        assert "Heterogeneity" in result.output
        assert "Overall effect" in result.output
        payload = json.loads(out.read_text())
        assert payload["model"]["k"] == 3
        assert len(payload["effects"]) == 3
        assert len(payload["influence"]) == 3

    def test_harmonize(self, studies_csv: Path, tmp_path: Path) -> None:
        """Test the harmonize command writes effects and failures."""
        out = tmp_path / "effects.json"
        result = runner.invoke(app, ["harmonize", str(studies_csv), "-o", str(out)])
        assert result.exit_code == 0, result.output
        payload = json.loads(out.read_text())
        assert [e["label"] for e in payload["effects"]] == ["Selvi 2010", "Kara 2016", "Gao 2024"]
        assert payload["failures"] == []

    def test_failure_exits_nonzero(self, tmp_path: Path) -> None:
        """Test an unharmonizable study aborts the run by default."""
        path = tmp_path / "bad.csv"
        path.write_text(CSV + "Doe,2020,RR,,,,,,,1,2,3,4,Other,5\n")
        result = runner.invoke(app, ["analyze", str(path)])
        assert result.exit_code == 1
        assert "Unsupported measure" in result.output

    def test_skip_failures(self, tmp_path: Path) -> None:
        """Test --skip-failures excludes the study and continues."""
        path = tmp_path / "bad.csv"
        path.write_text(CSV + "Doe,2020,RR,,,,,,,1,2,3,4,Other,5\n")
        out = tmp_path / "result.json"
        result = runner.invoke(app, ["analyze", str(path), "--skip-failures", "-o", str(out)])
        assert result.exit_code == 0, result.output
        payload = json.loads(out.read_text())
        assert payload["model"]["k"] == 3
        assert payload["failures"][0]["error"] == "unsupported_measure"

    def test_level_option(self, studies_csv: Path, tmp_path: Path) -> None:
        """Test --level is carried into the fitted model."""
        out = tmp_path / "result.json"
        result = runner.invoke(app, ["analyze", str(studies_csv), "--level", "0.9", "-o", str(out)])
        assert result.exit_code == 0, result.output
        payload = json.loads(out.read_text())
        assert payload["model"]["level"] == pytest.approx(0.9)
        assert "90% CI" in result.output
        assert "95% CI" not in result.output

    def test_too_few_studies_for_influence(self, tmp_path: Path) -> None:
        """Test two studies still fit but report influence as unavailable."""
        path = tmp_path / "two.csv"
        path.write_text("\n".join(CSV.splitlines()[:3]) + "\n")
        result = runner.invoke(app, ["analyze", str(path)])
        assert result.exit_code == 0, result.output
        assert "Influence diagnostics unavailable" in result.output
