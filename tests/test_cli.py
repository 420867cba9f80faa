import json

from formstamp.cli import main
from formstamp.templates import import_template


def write_template(tmp_path, make_template):
    template = make_template([{"id": "name", "label": "Name", "x": 50, "y": 100}])
    path = tmp_path / "template.json"
    path.write_text(template.model_dump_json(by_alias=True), encoding="utf-8")
    return path


def test_extract_writes_json(tmp_path, make_pdf, capsys):
    pdf = tmp_path / "form.pdf"
    pdf.write_bytes(make_pdf([[("Full Name:", 72, 700, "Helvetica", 12), ("Notes", 72, 600, "Helvetica", 12)]]))
    output = tmp_path / "runs.json"
    assert main(["extract", "--document", str(pdf), "--contains", "name", "--output-json", str(output)]) == 0
    items = json.loads(output.read_text())["items"]
    assert [item["text"] for item in items] == ["Full Name:"]
    assert "Matches: 1" in capsys.readouterr().out


def test_extract_max_items_spans_pages(tmp_path, make_pdf):
    pdf = tmp_path / "form.pdf"
    pdf.write_bytes(make_pdf([[("Name", 72, 700, "Helvetica", 12)], [("Email", 72, 700, "Helvetica", 12)], [("Phone", 72, 700, "Helvetica", 12)]]))
    output = tmp_path / "runs.json"
    assert main(["extract", "--document", str(pdf), "--max-items", "1", "--output-json", str(output)]) == 0
    items = json.loads(output.read_text())["items"]
    assert [item["text"] for item in items] == ["Name"]


def test_detect_seeds_a_template(tmp_path, make_pdf):
    pdf = tmp_path / "form.pdf"
    pdf.write_bytes(make_pdf([[("Email", 72, 700, "Helvetica", 12), ("Hello there", 72, 600, "Helvetica", 12)]]))
    seeded = tmp_path / "seeded.json"
    assert main(["detect", "--document", str(pdf), "--seed-template", str(seeded), "--name", "Contact"]) == 0
    template = import_template(seeded.read_bytes())
    assert template.name == "Contact"
    assert [field.label for field in template.fields] == ["Email"]
    assert template.background_artifact.startswith("data:image/png;base64,")


def test_render_from_json(tmp_path, make_template):
    template_path = write_template(tmp_path, make_template)
    data = tmp_path / "data.json"
    data.write_text(json.dumps({"name": "Jane"}), encoding="utf-8")
    output = tmp_path / "out" / "filled.pdf"
    code = main(["render", "--template", str(template_path), "--data-json", str(data),
                 "--fonts-dir", str(tmp_path / "fonts"), "--output", str(output)])
    assert code == 0
    assert output.read_bytes().startswith(b"%PDF")


def test_render_csv_row_out_of_range(tmp_path, make_template, capsys):
    template_path = write_template(tmp_path, make_template)
    csv_path = tmp_path / "rows.csv"
    csv_path.write_text("name\nAda\n", encoding="utf-8")
    code = main(["render", "--template", str(template_path), "--csv", str(csv_path), "--row", "3",
                 "--fonts-dir", str(tmp_path / "fonts"), "--output", str(tmp_path / "x.pdf")])
    assert code == 1
    assert "[ERROR]" in capsys.readouterr().err


def test_batch_writes_files_and_zip(tmp_path, make_template):
    template_path = write_template(tmp_path, make_template)
    csv_path = tmp_path / "rows.csv"
    csv_path.write_text("name\nAda\nGrace\n", encoding="utf-8")
    output_dir = tmp_path / "generated"
    code = main(["batch", "--template", str(template_path), "--csv", str(csv_path), "--zip",
                 "--format", "raster-lossy", "--fonts-dir", str(tmp_path / "fonts"), "--output", str(output_dir)])
    assert code == 0
    assert sorted(path.name for path in output_dir.iterdir()) == ["document_0001.jpg", "document_0002.jpg"]
    assert (tmp_path / "generated.zip").exists()


def test_missing_template_is_reported(tmp_path, capsys):
    code = main(["render", "--template", str(tmp_path / "missing.json"), "--output", str(tmp_path / "x.pdf")])
    assert code == 1
    assert "[ERROR]" in capsys.readouterr().err
