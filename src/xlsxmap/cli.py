"""Command line interface for xlsxmap with subcommands."""

import argparse
import json
import logging
import os.path
import sys
import textwrap
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from xlsxmap import __version__, config, setup_logging
from xlsxmap.xlsx_api import (
    XLSXExportBuilder,
    annotate_xlsx,
    import_from_xlsx,
    import_from_xlsx_with_search_params,
)
from xlsxmap.xlsx_common import XLSXMappingError
from xlsxmap.xlsx_feedback import ValidationResult

logger = logging.getLogger(__name__)


class XlsxmapError(Exception):
    """Error in the usage of the command line interface."""


def process_common_options(args, raw_args):
    # set up output directory
    outdir = getattr(args, "outdir", None)
    if outdir is not None and os.path.isfile(outdir):
        msg = "Outdir must be a directory but it is a file."
        logger.error(msg)
        raise XlsxmapError(msg)
    if outdir is not None and not os.path.isdir(outdir):
        outdir.mkdir(exist_ok=True, parents=True)

    # set up logging
    loglevel = logging.INFO + (args.quieter - args.verboser) * 10
    logfile = args.logfile
    if logfile is None:
        setup_logging(loglevel)
    else:
        logfile.parents[0].mkdir(exist_ok=True, parents=True)
        setup_logging(loglevel, logfile)

    logger.info("Executing cmd: xlsxmap %s", " ".join(raw_args))
    logger.debug("Processing common options.")

    # load config
    if args.config is not None:
        if args.config.exists():
            config.load_config(config_file=Path(args.config))
        else:
            msg = "Config file not found at: %s"
            logger.error(msg, args.config)
            raise XlsxmapError(msg % args.config)

    if not args.FILE.exists():
        msg = "File not found: %s"
        logger.error(msg, args.FILE)
        raise XlsxmapError(msg % args.FILE)


class DecentFormatter(argparse.HelpFormatter):
    """
    An argparse formatter that preserves newlines & keeps indentation.
    """

    def _fill_text(self, text, width, indent):
        """
        Reformat text while keeping newlines for lines shorter than width.
        """
        lines = []
        for line in textwrap.indent(textwrap.dedent(text), indent).splitlines():
            lines.append(textwrap.fill(line, width, subsequent_indent=indent))
        return "\n".join(lines)

    def _split_lines(self, text, width):
        """
        Conserve indentation in help/description lines when splitting long lines.
        """
        lines = []
        for line in textwrap.dedent(text).splitlines():
            if not line.strip():  # pragma: no cover
                continue
            indent = " " * (len(line) - len(line.lstrip()))
            lines.extend(
                textwrap.fill(line, width, subsequent_indent=indent).splitlines()
            )
        return lines


def _require_columns():
    if not config.SETTINGS.columns:
        msg = "No columns configured. Pass a config file with [[columns]] tables."
        raise XlsxmapError(msg)


def _output_path(args, default_name: str) -> Path:
    if args.outdir is not None:
        return args.outdir / default_name
    return args.FILE.parent / default_name


def read_cmd(args):
    """Import the first sheet of FILE into a JSON file."""
    _require_columns()
    settings = config.SETTINGS
    model = settings.record_model()
    columns = settings.import_columns()
    result = {}
    if settings.search_columns:
        records, search = import_from_xlsx_with_search_params(
            args.FILE,
            model,
            settings.search_model(),
            columns,
            settings.search_import_columns(),
        )
        result["search_parameters"] = search.model_dump(mode="json")
    else:
        records = import_from_xlsx(args.FILE, model, columns)
    result["records"] = [record.model_dump(mode="json") for record in records]

    text = json.dumps(result, indent=2, ensure_ascii=False)
    if args.outdir is None and not args.json:
        print(text)
        return
    outfile = args.json or _output_path(args, f"{args.FILE.stem}.json")
    outfile.write_text(text, encoding="utf-8")
    logger.info("-> Saved %d records to %s", len(records), outfile)


def export_cmd(args):
    """Write the records of a JSON file as xlsx table."""
    _require_columns()
    settings = config.SETTINGS
    model = settings.record_model()
    with args.FILE.open(encoding="utf-8") as fp:
        data = json.load(fp)
    rows = data["records"] if isinstance(data, dict) else data
    try:
        records = TypeAdapter(list[model]).validate_python(rows)
    except ValidationError as e:
        msg = f"Invalid records in {args.FILE}: {e}"
        raise XlsxmapError(msg) from e
    builder = XLSXExportBuilder(settings.export.to_export_config())
    outfile = _output_path(args, f"{args.FILE.stem}.xlsx")
    outfile.write_bytes(builder.generate_excel(records))
    logger.info("-> Saved %d records to %s", len(records), outfile)


def annotate_cmd(args):
    """Mark the rows of FILE with validation results."""
    _require_columns()
    with args.results.open(encoding="utf-8") as fp:
        raw_results = json.load(fp)
    try:
        results = TypeAdapter(list[ValidationResult]).validate_python(raw_results)
    except ValidationError as e:
        msg = f"Invalid validation results in {args.results}: {e}"
        raise XlsxmapError(msg) from e

    annotated = annotate_xlsx(
        args.FILE, config.SETTINGS.import_columns(), results, args.ok_message
    )
    if args.inplace:
        outfile = args.FILE
    else:
        outfile = _output_path(args, f"{args.FILE.stem}_annotated{args.FILE.suffix}")
    outfile.write_bytes(annotated)
    logger.info("-> Saved annotated file to %s", outfile)


def root_cmd(args):
    if args.version:  # pragma: no cover
        print(f"xlsxmap {__version__}")


def create_root_parser():
    parser = argparse.ArgumentParser(
        prog="xlsxmap",
        description=(
            "A command-line tool to read records from xlsx tables, write them "
            "back and annotate tables with validation results."
        ),
        allow_abbrev=False,
        formatter_class=DecentFormatter,
    )
    parser.add_argument(
        "-V",
        "--version",
        help="The version of xlsxmap command line interface.",
        action="store_true",
    )
    parser.set_defaults(func=root_cmd)
    return parser


def create_common_options_parser():
    parser = argparse.ArgumentParser(
        prog="xlsxmap",
        allow_abbrev=False,
        add_help=False,
        formatter_class=DecentFormatter,
    )
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "-v",
        "--verbose",
        action="count",
        dest="verboser",
        default=0,
        help="More verbose output. Repeat to increase verbosity (-vv or -vvv).",
    )
    group.add_argument(
        "-q",
        "--quiet",
        action="count",
        default=0,
        dest="quieter",
        help="Less verbose output. Repeat to reduce verbosity (-qq or -qqq).",
    )
    parser.add_argument(
        "--config",
        help="Path to config file with the column configuration (toml).",
        type=Path,
        required=False,
    )
    parser.add_argument(
        "-O",
        "--outdir",
        help=(
            "Specify directory where files should be written to. "
            "The directory is created if required."
        ),
        metavar=("DIRECTORY"),
        type=Path,
    )
    parser.add_argument(
        "-l",
        "--logfile",
        help=(
            "Activate logging to a file at given path. "
            "The path will be created if it is not existing."
        ),
        type=Path,
    )
    return parser


def add_read_subparser(subparsers, options):
    """Import records from xlsx."""
    parser = subparsers.add_parser(
        "read",
        description=(
            "Read the records of the first sheet of an xlsx file using the "
            "configured columns. Without --outdir or --json the records are "
            "printed to stdout."
        ),
        help="Read records from an xlsx file into json.",
        **options,
    )
    parser.add_argument(
        "--json",
        help="Path of the json file to write.",
        type=Path,
        metavar="FILE",
    )
    parser.add_argument("FILE", type=Path, help="The xlsx file to read.")
    parser.set_defaults(func=read_cmd)


def add_export_subparser(subparsers, options):
    """Export records to xlsx."""
    parser = subparsers.add_parser(
        "export",
        description=(
            "Write records from a json file (a list of objects or the output "
            'of "xlsxmap read") as xlsx table using the configured columns.'
        ),
        help="Write records from json into an xlsx file.",
        **options,
    )
    parser.add_argument("FILE", type=Path, help="The json file with records.")
    parser.set_defaults(func=export_cmd)


def add_annotate_subparser(subparsers, options):
    """Feedback pass on a previously read xlsx file."""
    parser = subparsers.add_parser(
        "annotate",
        description=(
            "Annotate the rows of an xlsx file with validation results. "
            "Results are read from a json list of objects with the keys "
            '"message", "row_index", "column_index" and "status".'
        ),
        help="Mark rows of an xlsx file with validation results.",
        **options,
    )
    parser.add_argument(
        "--results",
        help="Path of the json file with validation results.",
        type=Path,
        required=True,
        metavar="FILE",
    )
    parser.add_argument(
        "--ok-message",
        help='Text written for rows without results. (default: "IMPORT OK")',
        default=None,
    )
    parser.add_argument(
        "--inplace",
        help="Annotate the file in place instead of writing a copy.",
        default=False,
        action="store_true",
    )
    parser.add_argument("FILE", type=Path, help="The xlsx file to annotate.")
    parser.set_defaults(func=annotate_cmd)


def main_cli(raw_args=None):
    """Setup CLI app and run commands based on args."""
    # Create root parser for cli app
    parser = create_root_parser()

    subparsers = parser.add_subparsers(
        title="Subcommands",
        dest="subcommand",
        description="Get help for commands with xlsxmap COMMAND --help",
    )
    # Create parser to share some options between subparsers. We cannot use the
    # root parser for this because it includes the sub-commands and their help.
    common_options_parser = create_common_options_parser()

    # Create the subparsers with some common options
    common_options = {
        "parents": [common_options_parser],
        "formatter_class": DecentFormatter,
    }
    add_read_subparser(subparsers, common_options)
    add_export_subparser(subparsers, common_options)
    add_annotate_subparser(subparsers, common_options)

    if not raw_args:
        parser.print_help()
        return

    # Parse the command-line arguments
    #   pars_args will call sys.exit(2) if invalid commands are given.
    args = parser.parse_args(raw_args)
    if hasattr(args, "config"):
        process_common_options(args, raw_args)
    args.func(args)


def run_cli_app(raw_args=None):
    """Entry point for running the cli app."""
    if raw_args is None:
        raw_args = sys.argv[1:]
    try:
        main_cli(raw_args)
    except (XlsxmapError, XLSXMappingError) as e:
        logger.error("Terminating with error: %s", e)  # noqa: TRY400
        sys.exit(1)
    except Exception:  # pragma: no cover
        logger.exception("Unexpected error.")
        sys.exit(3)  # value 2 is used by argparse for invalid args.


if __name__ == "__main__":
    run_cli_app(sys.argv[1:])
