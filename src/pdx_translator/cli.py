"""Command-line interface for the Paradox mod translator."""

from __future__ import annotations

import asyncio
import argparse
import logging
import sys
from pathlib import Path
from typing import Optional

from tqdm.contrib.logging import logging_redirect_tqdm

from .config import has_api_key, load_api_key, load_task_file, mask_api_key
from .errors import AuthError, ConfigError, GlossaryLoadError, TranslatorError
from .llm_client import create_client
from .pipeline import translate_task, validate_task
from .reassembler import FailureReport

LOG_FILE = Path("paradox-mod-translator.log")
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(verbose: bool = False, log_file: Optional[Path] = LOG_FILE) -> Optional[logging.Handler]:
    """
    Configure logging.

    The console shows INFO (DEBUG with ``verbose``); ``log_file`` is appended
    to with every record so long unattended runs can be inspected afterwards.

    Returns:
        The file handler, to be closed by the caller, or None
    """
    console = logging.StreamHandler()
    console.setLevel(logging.DEBUG if verbose else logging.INFO)
    logging.basicConfig(
        level=logging.DEBUG,
        format=LOG_FORMAT,
        datefmt="%H:%M:%S",
        handlers=[console],
    )
    # The OpenAI SDK logs every HTTP request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.INFO)

    if log_file is None:
        return None

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root.addHandler(file_handler)
    return file_handler


def parse_arguments(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="pmt",
        description="Paradox Mod Translator - LLM-powered translation of game mod localisation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s translate task.toml                # Translate sequentially
  %(prog)s translate task.toml --concurrent   # Use client_settings.concurrency workers
  %(prog)s validate task.toml                 # Check existing translations
  %(prog)s check-api                          # Check that an API key is configured
        """
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Verbose logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    translate = subparsers.add_parser("translate", help="Run the translation tasks of a task file")
    translate.add_argument("task_file", type=Path, help="Task configuration file (TOML)")
    translate.add_argument(
        "--concurrent", action="store_true",
        help="Send up to client_settings.concurrency requests at once",
    )
    translate.add_argument("--no-progress", action="store_true", help="Hide progress bars")

    validate = subparsers.add_parser("validate", help="Check translated files without calling the API")
    validate.add_argument("task_file", type=Path, help="Task configuration file (TOML)")

    subparsers.add_parser("check-api", help="Check that an API key is configured")

    return parser.parse_args(argv)


async def run_translate(args: argparse.Namespace, report: FailureReport) -> int:
    """
    Main async workflow of the translate command.

    Args:
        args: Parsed command line arguments
        report: Collects failures of all tasks; owned by the caller so it
            survives an interrupted run
    """
    logger = logging.getLogger(__name__)

    api_key = load_api_key()
    logger.info("Loading task configuration...")
    settings, tasks = load_task_file(args.task_file)
    logger.info(f"Use API: {settings.api_base}")
    logger.info(f"Use Model: {settings.model}")
    logger.info(f"Configuration loaded successfully, found {len(tasks)} task(s)")

    client = create_client(api_key, settings)

    for i, task in enumerate(tasks, 1):
        logger.info(f"Processing task {i}/{len(tasks)}")
        logger.debug(f"Source language: {task.source_lang}")
        logger.debug(f"Target languages: {task.target_langs}")
        logger.debug(f"Glossaries: {task.glossaries}")

        await translate_task(
            task,
            settings,
            client,
            concurrent=args.concurrent,
            show_progress=not args.no_progress,
            report=report,
        )

    report.log_summary()
    logger.info("All translation tasks completed!")
    return 0


def run_validate(args: argparse.Namespace) -> int:
    logger = logging.getLogger(__name__)
    _, tasks = load_task_file(args.task_file)
    logger.info(f"Configuration is loaded! Found {len(tasks)} task(s)")

    problem_count = 0
    for i, task in enumerate(tasks, 1):
        logger.info(f"Task {i}:")
        logger.info(f"  - Source language: {task.source_lang}")
        logger.info(f"  - Target languages: {', '.join(task.target_langs)}")
        logger.info(f"  - Glossaries: {', '.join(task.glossaries)}")
        logger.info(f"  - Localisation directory: {task.localisation_dir}")

        for problem in validate_task(task):
            logger.warning(problem)
            problem_count += 1

    if problem_count:
        logger.warning(f"Found {problem_count} problem(s)")
    else:
        logger.info("No problems found")
    return 0


def run_check_api() -> int:
    logger = logging.getLogger(__name__)
    if not has_api_key():
        logger.error("API key is not configured")
        logger.info("Please set OPENAI_API_KEY environment variable or create a .env file")
        return 1

    logger.info("API key is configured")
    logger.info(f"API key (masked): {mask_api_key(load_api_key())}")
    return 0


def main(argv=None) -> None:
    """CLI entry point."""
    args = parse_arguments(argv)
    file_handler = setup_logging(args.verbose)
    report = FailureReport()

    try:
        if args.command == "translate":
            with logging_redirect_tqdm():
                exit_code = asyncio.run(run_translate(args, report))
        elif args.command == "validate":
            exit_code = run_validate(args)
        else:
            exit_code = run_check_api()
        sys.exit(exit_code)
    except KeyboardInterrupt:
        print("\nInterrupted by user. Unfinished files were not written.")
        report.log_summary()
        sys.exit(130)
    except (ConfigError, GlossaryLoadError) as e:
        logging.error(f"Configuration error: {e}")
        sys.exit(1)
    except AuthError as e:
        logging.error(f"Authentication failed, aborting: {e}")
        report.log_summary()
        sys.exit(1)
    except TranslatorError as e:
        logging.error(f"Fatal error: {e}")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)
    finally:
        if file_handler is not None:
            logging.getLogger().removeHandler(file_handler)
            file_handler.close()


if __name__ == "__main__":
    main()
