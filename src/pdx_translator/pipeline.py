"""Task-level workflow: discover files, translate, reassemble, write."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from .config import ClientSettings, TranslationTask
from .glossary import load_glossaries, resolve_glossary_paths
from .llm_client import ChatClient
from .models import LocalisationFile, Slice
from .orchestrator import Orchestrator, ResultTable, RetryPolicy, WorkUnit
from .parser import (
    find_localisation_files,
    read_localisation,
    retarget_header,
    save_localisation,
    target_filename,
    validate_localisation_file,
)
from .reassembler import FailureReport, apply_translations, reassemble
from .slicer import slice_entries
from .text_utils import check_markers
from .translator import load_template

logger = logging.getLogger(__name__)


@dataclass
class FileJob:
    """One source file translated into one target language."""

    file_id: str
    target_lang: str
    output_path: Path
    document: LocalisationFile
    slices: List[Slice]


def output_path_for(task: TranslationTask, source_path: Path, target_lang: str) -> Path:
    """``<dir>/<source>/a/l_english_x.yml`` -> ``<dir>/<target>/replace/a/l_<target>_x.yml``."""
    relative = source_path.relative_to(task.source_dir)
    name = target_filename(relative.name, task.source_lang, target_lang)
    return task.target_dir(target_lang) / relative.parent / name


def plan_jobs(
    task: TranslationTask,
    settings: ClientSettings,
    report: Optional[FailureReport] = None,
) -> List[FileJob]:
    """
    Parse every source file once and slice it for each target language.

    Args:
        task: Task whose source directory is scanned
        settings: Client settings supplying the slice budget
        report: Receives the source files that had to be skipped

    Returns:
        One job per (source file, target language), in file order
    """
    jobs: List[FileJob] = []

    for source_path in find_localisation_files(task.source_dir):
        relative = source_path.relative_to(task.localisation_dir).as_posix()
        error = validate_localisation_file(source_path)
        if error is None:
            try:
                document = read_localisation(source_path)
            except (OSError, UnicodeDecodeError) as e:
                error = f"Cannot read {source_path}: {e}"

        if error:
            logger.error(f"Skipping {relative}: {error}")
            if report is not None:
                report.skip(relative, error)
            continue

        logger.debug(f"Parsed {len(document.entries)} entries from {source_path}")

        for target_lang in task.target_langs:
            output_path = output_path_for(task, source_path, target_lang)
            file_id = output_path.relative_to(task.localisation_dir).as_posix()
            slices = slice_entries(document.entries, settings.max_chunk_tokens, file_id=file_id)
            jobs.append(FileJob(file_id, target_lang, output_path, document, slices))

    return jobs


async def _write_when_ready(
    job: FileJob,
    results: ResultTable,
    task: TranslationTask,
    report: FailureReport,
) -> None:
    await results.wait(job.file_id)

    reassembled = reassemble(job.file_id, results.results(job.file_id), job.slices)
    report.record(job.file_id, reassembled)

    document = apply_translations(job.document, reassembled)
    document = retarget_header(document, task.source_lang, job.target_lang)
    save_localisation(document, job.output_path)


async def translate_task(
    task: TranslationTask,
    settings: ClientSettings,
    client: ChatClient,
    *,
    concurrent: bool = False,
    search_dirs: Optional[Sequence[Path]] = None,
    show_progress: bool = True,
    retry: Optional[RetryPolicy] = None,
    report: Optional[FailureReport] = None,
) -> FailureReport:
    """
    Translate all localisation files of a task.

    A file is written once all of its slices are resolved. Files whose
    slices did not all resolve (cancelled run) are left untouched.

    Args:
        report: Report to add to, so callers keep what was recorded even
            when the run is interrupted; a new one is created when omitted

    Returns:
        Report of entries that kept their source text

    Raises:
        GlossaryLoadError: a named glossary is missing or unreadable
        AuthError: the API rejected the credentials
    """
    index = load_glossaries(resolve_glossary_paths(task.glossaries, search_dirs))
    template = load_template(search_dirs)

    report = report if report is not None else FailureReport()
    jobs = plan_jobs(task, settings, report)
    logger.info(
        f"Task {task.source_lang} -> {', '.join(task.target_langs)}: "
        f"{len(jobs)} files, {len(index)} glossary terms"
    )

    results = ResultTable()
    units: List[WorkUnit] = []
    for job in jobs:
        results.register(job.file_id, len(job.slices))
        units.extend(WorkUnit(s, task.source_lang, job.target_lang) for s in job.slices)

    orchestrator = Orchestrator(
        client,
        index,
        concurrency=settings.effective_concurrency(concurrent),
        retry=retry or RetryPolicy(
            max_retries=settings.max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
        ),
        timeout=settings.timeout_secs,
        template=template,
        results=results,
        show_progress=show_progress,
    )

    writers = [
        asyncio.create_task(_write_when_ready(job, results, task, report))
        for job in jobs
    ]

    try:
        await orchestrator.run(units)
    except BaseException:
        for job, writer in zip(jobs, writers):
            if not writer.done():
                writer.cancel()
                report.incomplete_files.append(job.file_id)
        await asyncio.gather(*writers, return_exceptions=True)
        raise

    written, abandoned = [], []
    for job, writer in zip(jobs, writers):
        if results.is_complete(job.file_id):
            written.append(writer)
        else:
            writer.cancel()
            abandoned.append(writer)
            report.incomplete_files.append(job.file_id)
    await asyncio.gather(*abandoned, return_exceptions=True)
    await asyncio.gather(*written)

    return report


def validate_task(task: TranslationTask) -> List[str]:
    """
    Check existing translations of a task without calling the API.

    Returns:
        Problems found: missing files, missing keys, marker mismatches
    """
    problems: List[str] = []

    for source_path in find_localisation_files(task.source_dir):
        try:
            source = read_localisation(source_path)
        except (OSError, UnicodeDecodeError) as e:
            problems.append(f"Cannot read {source_path}: {e}")
            continue
        for target_lang in task.target_langs:
            output_path = output_path_for(task, source_path, target_lang)
            if not output_path.is_file():
                problems.append(f"Missing translation file: {output_path}")
                continue

            translated = {e.key: e.value for e in read_localisation(output_path).entries}
            for entry in source.entries:
                if entry.key not in translated:
                    problems.append(f"{output_path.name}: missing key '{entry.key}'")
                    continue
                for problem in check_markers(entry.value, translated[entry.key]):
                    problems.append(f"{output_path.name} '{entry.key}': {problem}")

    return problems
