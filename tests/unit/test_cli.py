import json

from licensetag import __version__
from licensetag.presentation.cli import main as cli_main


def test_cli_tag_parser_flags():
    parser = cli_main.create_parser()
    args = parser.parse_args(
        ["tag", "-c", "tagger.yaml", "-b", "100", "-w", "3", "--best-effort", "skip", "a.ldj", "b.ldj"]
    )

    assert args.command == "tag"
    assert args.config == "tagger.yaml"
    assert args.batch_size == 100
    assert args.workers == 3
    assert args.best_effort == "skip"
    assert args.files == ["a.ldj", "b.ldj"]


def test_cli_label_parser_flags():
    parser = cli_main.create_parser()
    args = parser.parse_args(["label", "-g", "DE-15:a.tsv", "-g", "DE-14:b.tsv"])

    assert args.holdings == ["DE-15:a.tsv", "DE-14:b.tsv"]
    assert args.files == []


def test_cli_version(capsys):
    assert cli_main.run_cli(["--version"]) == 0
    assert capsys.readouterr().out.strip() == f"licensetag {__version__}"


def test_cli_without_command_prints_help(capsys):
    assert cli_main.run_cli([]) == 0
    assert "usage: licensetag" in capsys.readouterr().out


def test_cli_tag(fixtures_dir, capsys):
    exit_code = cli_main.run_cli(
        ["tag", "-c", str(fixtures_dir / "tagger.yaml"), str(fixtures_dir / "records.ldj")]
    )
    captured = capsys.readouterr()

    assert exit_code == 0
    labels = {
        payload["finc.record_id"]: payload["x.labels"]
        for payload in map(json.loads, captured.out.splitlines())
    }
    assert labels == {
        "r1": ["DE-14", "DE-15"],
        "r2": ["DE-14"],
        "r3": ["DE-14", "DE-15"],
        "r4": ["DE-14", "DE-15", "DE-Ch1"],
        "r5": ["DE-14", "DE-15"],
    }


def test_cli_tag_inline_config(tmp_path, capsys):
    records = tmp_path / "records.ldj"
    records.write_text('{"finc.record_id": "a", "finc.source_id": "48"}\n', encoding="utf-8")

    exit_code = cli_main.run_cli(
        ["tag", "-c", '{"X-1": {"source": {"list": ["48"]}}}', str(records)]
    )

    assert exit_code == 0
    assert json.loads(capsys.readouterr().out)["x.labels"] == ["X-1"]


def test_cli_tag_requires_configuration(capsys):
    assert cli_main.run_cli(["tag"]) == 2
    assert "-c" in capsys.readouterr().err


def test_cli_tag_bad_configuration(capsys):
    exit_code = cli_main.run_cli(["tag", "-c", '{"DE-15": {"nope": {}}}'])
    captured = capsys.readouterr()

    assert exit_code == 1
    assert "unknown filter" in captured.err


def test_cli_tag_bad_record(tmp_path, capsys):
    records = tmp_path / "records.ldj"
    records.write_text('{"finc.record_id": "a"}\nnot json\n', encoding="utf-8")

    exit_code = cli_main.run_cli(["tag", "-c", '{"A": {"any": {}}}', str(records)])
    assert exit_code == 1
    assert "line 2" in capsys.readouterr().err

    exit_code = cli_main.run_cli(
        ["tag", "-c", '{"A": {"any": {}}}', "--best-effort", "pass", str(records)]
    )
    lines = capsys.readouterr().out.splitlines()
    assert exit_code == 0
    assert lines[1] == "not json"


def test_cli_tag_rejects_bad_worker_count(capsys):
    assert cli_main.run_cli(["tag", "-c", '{"A": {"any": {}}}', "-w", "-1"]) == 1
    assert "workers" in capsys.readouterr().err


def test_cli_label(fixtures_dir, capsys):
    exit_code = cli_main.run_cli(
        [
            "label",
            "-g",
            f"DE-15:{fixtures_dir / 'kbart.tsv'}",
            str(fixtures_dir / "records.ldj"),
        ]
    )
    captured = capsys.readouterr()

    assert exit_code == 0
    assert captured.out.splitlines() == [
        "r1\tDE-15",
        "r2\tX",
        "r3\tDE-15",
        "r4\tX",
        "r5\tDE-15",
    ]


def test_cli_covers_json(kbart_file, capsys):
    exit_code = cli_main.run_cli(
        ["covers", "--kbart", str(kbart_file), "--issn", "12345678", "--date", "1995", "--json"]
    )
    rows = json.loads(capsys.readouterr().out)

    assert exit_code == 0
    assert rows == [
        {
            "title": "Journal of Tests",
            "package": "Test Package",
            "first_issue_date": "1996",
            "last_issue_date": "2005",
            "embargo": "",
            "covered": False,
            "reason": "before first issue date",
        }
    ]


def test_cli_covers_text(kbart_file, capsys):
    exit_code = cli_main.run_cli(
        ["covers", "--kbart", str(kbart_file), "--issn", "1234-5678", "--date", "2001"]
    )
    assert exit_code == 0
    assert capsys.readouterr().out.strip() == "Journal of Tests\tTest Package\tcovered"

    cli_main.run_cli(["covers", "--kbart", str(kbart_file), "--issn", "0000-0000"])
    assert capsys.readouterr().out.strip() == "no entries for 0000-0000"


def test_cli_covers_bad_date(kbart_file, capsys):
    exit_code = cli_main.run_cli(
        ["covers", "--kbart", str(kbart_file), "--issn", "1234-5678", "--date", "someday"]
    )
    assert exit_code == 1
    assert "invalid date" in capsys.readouterr().err


def test_cli_tag_rejects_zero_workers(capsys):
    assert cli_main.run_cli(["tag", "-c", '{"A": {"any": {}}}', "-w", "0"]) == 1
    assert "workers" in capsys.readouterr().err


def test_cli_freeze_to_unwritable_path(tmp_path, capsys):
    target = tmp_path / "missing" / "tagger.bin"
    assert cli_main.run_cli(["tag", "-c", '{"A": {"any": {}}}', "--freeze", str(target)]) == 1
    assert "cannot write frozen configuration" in capsys.readouterr().err


def test_cli_covers_latin1_holdings(tmp_path, capsys):
    kbart = tmp_path / "vendor.tsv"
    kbart.write_bytes("publication_title\tprint_identifier\nRevue Générale\t1234-5678\n".encode("latin-1"))

    exit_code = cli_main.run_cli(["covers", "--kbart", str(kbart), "--issn", "1234-5678"])

    assert exit_code == 1
    assert "not valid UTF-8" in capsys.readouterr().err


def test_cli_skips_undecodable_record(tmp_path, capsys):
    records = tmp_path / "records.ldj"
    records.write_bytes(b'{"finc.record_id": "a"}\n{"finc.record_id": "\xff"}\n')

    exit_code = cli_main.run_cli(
        ["tag", "-c", '{"A": {"any": {}}}', "--best-effort", "skip", str(records)]
    )

    assert exit_code == 0
    lines = capsys.readouterr().out.splitlines()
    assert [json.loads(line)["finc.record_id"] for line in lines] == ["a"]
