"""
licensetag command line.

    licensetag tag -c tagger.yaml < records.ldj > tagged.ldj
    licensetag tag -c '{"DE-15": {"any": {}}}' records.ldj
    licensetag tag -c tagger.yaml --freeze tagger.bin
    licensetag tag --unfreeze tagger.bin records.ldj
    licensetag label -g DE-15:de15.tsv records.ldj
    licensetag covers --kbart de15.tsv --issn 1234-5678 --date 2001 --volume 3
"""

from __future__ import annotations

import argparse
import io
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from dotenv import find_dotenv, load_dotenv

from licensetag import __version__
from licensetag.application.services.coverage_index import CoverageIndex
from licensetag.application.services.tagger import Tagger, load_tagger
from licensetag.application.workflows.batch_pipeline import ErrorPolicy, PipelineConfig
from licensetag.application.workflows.tagging import (
    holdings_tagger,
    label_transform,
    parse_holdings_labels,
    run_pipeline,
    tag_transform,
)
from licensetag.domain.errors import ConfigurationError, DecodeError, LicenseTagError
from licensetag.utils.logging_config import Logger, LogFiles, set_run_id

load_dotenv(find_dotenv(usecwd=True), override=False)

logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="licensetag",
        description="Tag bibliographic records with the institutions licensed to see them",
    )
    parser.add_argument("--version", "-v", action="store_true", help="show version")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="stderr log level",
    )

    subparsers = parser.add_subparsers(dest="command")

    tag_parser = subparsers.add_parser("tag", help="run a tagger over records")
    tag_parser.add_argument("files", nargs="*", help="newline delimited JSON, default stdin")
    tag_parser.add_argument("--config", "-c", help="tagger configuration, inline or file")
    tag_parser.add_argument("--freeze", help="write the decoded configuration to FILE and exit")
    tag_parser.add_argument("--unfreeze", help="load a frozen configuration instead of -c")
    _add_pipeline_arguments(tag_parser)

    label_parser = subparsers.add_parser("label", help="label records by holdings files")
    label_parser.add_argument("files", nargs="*", help="newline delimited JSON, default stdin")
    label_parser.add_argument(
        "-g",
        "--holdings",
        action="append",
        dest="holdings",
        required=True,
        metavar="LABEL:FILE",
        help="label and KBART file, can be repeated",
    )
    _add_pipeline_arguments(label_parser)

    covers_parser = subparsers.add_parser(
        "covers", help="explain which holdings entries cover a signature"
    )
    covers_parser.add_argument("--kbart", action="append", required=True, help="KBART file")
    covers_parser.add_argument(
        "--issn", action="append", dest="issns", required=True, help="ISSN, can be repeated"
    )
    covers_parser.add_argument("--date", default="", help="publication date")
    covers_parser.add_argument("--volume", default="", help="volume")
    covers_parser.add_argument("--issue", default="", help="issue")
    covers_parser.add_argument("--json", action="store_true", help="print JSON")

    return parser


def _add_pipeline_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-b", "--batch-size", type=int, default=None, help="records per batch")
    parser.add_argument("-w", "--workers", type=int, default=None, help="number of workers")
    parser.add_argument(
        "--best-effort",
        choices=[ErrorPolicy.PASS.value, ErrorPolicy.SKIP.value],
        default=None,
        help="keep going on bad records: pass them through or skip them",
    )


def _tolerate_undecodable_bytes() -> None:
    # records with bad bytes fail one by one and pass through byte for byte
    for stream in (sys.stdin, sys.stdout):
        if isinstance(stream, io.TextIOWrapper):
            stream.reconfigure(errors="surrogateescape")


def _pipeline_config(parsed: argparse.Namespace) -> PipelineConfig:
    return PipelineConfig.from_env(
        num_workers=parsed.workers,
        batch_size=parsed.batch_size,
        on_error=parsed.best_effort,
    )


def _load_tagger(parsed: argparse.Namespace) -> Tagger:
    if parsed.unfreeze:
        path = Path(parsed.unfreeze)
        try:
            blob = path.read_bytes()
        except OSError as e:
            raise ConfigurationError(f"cannot read frozen configuration {path}: {e}") from e
        tagger = Tagger.unfreeze(blob)
        logger.info(f"Unfroze {len(tagger)} labels from {path}")
        return tagger
    return load_tagger(parsed.config)


def _run_tag(parsed: argparse.Namespace) -> int:
    if not parsed.config and not parsed.unfreeze:
        print("tag: a configuration (-c) or --unfreeze is required", file=sys.stderr)
        return 2
    tagger = _load_tagger(parsed)

    if parsed.freeze:
        blob = tagger.freeze()
        try:
            Path(parsed.freeze).write_bytes(blob)
        except OSError as e:
            raise ConfigurationError(
                f"cannot write frozen configuration {parsed.freeze}: {e}"
            ) from e
        Logger.info(
            f"froze {len(tagger)} labels to {parsed.freeze} ({len(blob)} bytes)",
            file=LogFiles.RUNS,
        )
        return 0

    result = run_pipeline(tag_transform(tagger), parsed.files, sys.stdout, _pipeline_config(parsed))
    Logger.info(
        f"tag: {result.records_in} records, {len(result.failures)} failures, "
        f"{len(tagger)} labels, {result.duration_seconds:.2f}s",
        file=LogFiles.RUNS,
    )
    return 0


def _run_label(parsed: argparse.Namespace) -> int:
    tagger = holdings_tagger(parse_holdings_labels(parsed.holdings))
    result = run_pipeline(label_transform(tagger), parsed.files, sys.stdout, _pipeline_config(parsed))
    Logger.info(
        f"label: {result.records_in} records, {len(result.failures)} failures",
        file=LogFiles.RUNS,
    )
    return 0


def _run_covers(parsed: argparse.Namespace) -> int:
    index = CoverageIndex.from_files(parsed.kbart)
    outcomes = index.explain(parsed.issns, parsed.date, parsed.volume, parsed.issue)
    rows = [
        {
            "title": entry.describe(),
            "package": entry.package_collection,
            "first_issue_date": entry.first_issue_date,
            "last_issue_date": entry.last_issue_date,
            "embargo": entry.embargo,
            "covered": violation is None,
            "reason": violation.value if violation is not None else None,
        }
        for entry, violation in outcomes
    ]
    if parsed.json:
        print(json.dumps(rows, ensure_ascii=False, indent=2))
    elif not rows:
        print("no entries for " + ", ".join(parsed.issns))
    else:
        for row in rows:
            status = "covered" if row["covered"] else row["reason"]
            print(f"{row['title']}\t{row['package']}\t{status}")
    return 0


def run_cli(args: Optional[list] = None) -> int:
    """
    Run the CLI.

    Returns:
        Exit code: 0 on success, 1 on configuration or processing errors
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    if parsed.version:
        print(f"licensetag {__version__}")
        return 0

    if not parsed.command:
        parser.print_help()
        return 0

    logging.basicConfig(
        level=parsed.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    run_id = set_run_id()
    if parsed.command in ("tag", "label"):
        _tolerate_undecodable_bytes()

    handlers = {"tag": _run_tag, "label": _run_label, "covers": _run_covers}
    try:
        return handlers[parsed.command](parsed)
    except (ConfigurationError, DecodeError) as e:
        Logger.error(f"{parsed.command}: {e}", file=LogFiles.ERROR)
        print(f"{parsed.command}: {e}", file=sys.stderr)
        return 1
    except LicenseTagError as e:
        Logger.error(f"{parsed.command} aborted ({run_id}): {e}", file=LogFiles.ERROR)
        print(f"{parsed.command}: {e}", file=sys.stderr)
        return 1
    finally:
        sys.stdout.flush()


def main() -> None:
    sys.exit(run_cli())


if __name__ == "__main__":
    main()
