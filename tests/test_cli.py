"""Tests for the command line interface."""

import zipfile

from typer.testing import CliRunner

from cli import app


runner = CliRunner()


def test_classify():
    result = runner.invoke(app, ["classify", "change the background color to blue"])

    assert result.exit_code == 0
    assert "DIRECT_EDIT (0.90)" in result.output
    assert "Estimated: < 2s, $0.02" in result.output


def test_package(tmp_path):
    project = tmp_path / "site"
    (project / "src").mkdir(parents=True)
    (project / "src" / "App.tsx").write_text("export default 1;\n")
    (project / "node_modules" / "react").mkdir(parents=True)
    (project / "node_modules" / "react" / "index.js").write_text("module.exports = {};\n")
    target = tmp_path / "site.zip"

    result = runner.invoke(app, ["package", str(project), "--name", "site", "--output", str(target)])

    assert result.exit_code == 0
    assert "(1 files)" in result.output
    names = zipfile.ZipFile(target).namelist()
    assert "src/App.tsx" in names
    assert "package.json" in names
    assert not any(name.startswith("node_modules") for name in names)


def test_package_empty_directory(tmp_path):
    result = runner.invoke(app, ["package", str(tmp_path)])
    assert result.exit_code == 1
