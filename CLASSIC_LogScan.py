import contextlib
import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from io import TextIOWrapper
from pathlib import Path

import chardet
import regex as re

from CLASSIC_Config import YAML, ConfigStore

logger = logging.getLogger("CLASSIC")


@contextlib.contextmanager
def open_file_with_encoding(file_path: Path | str | os.PathLike) -> Iterator[TextIOWrapper]:
    """Read only file open with encoding detection. Only for text files."""
    file_path = Path(file_path)
    raw_data = file_path.read_bytes()
    encoding = chardet.detect(raw_data)["encoding"] or "utf-8"

    file_handle = file_path.open(encoding=encoding, errors="ignore")
    try:
        yield file_handle
    finally:
        file_handle.close()


@dataclass(frozen=True)
class LogMatch:
    line: str
    """Line exactly as read, line ending included."""
    pattern: str
    """The catch pattern (as configured) that the line matched."""
    trimmed: str


def _compile_patterns(patterns: Iterable[str]) -> "re.Pattern[str] | None":
    alternatives = [re.escape(pattern) for pattern in patterns if pattern]
    if not alternatives:
        return None
    return re.compile("|".join(alternatives), flags=re.IGNORECASE)


class LogScanner:
    """Case-insensitive substring filter over the lines of a text log.

    A line is reported when it contains any `include` pattern and none of the `exclude` patterns.
    Every call to `scan()` reads the file again from the top.
    """

    def __init__(self, include: Iterable[str], exclude: Iterable[str] = ()) -> None:
        self.include = [pattern for pattern in include if pattern]
        self.exclude = [pattern for pattern in exclude if pattern]
        self._include_search = _compile_patterns(self.include)
        self._exclude_search = _compile_patterns(self.exclude)
        self._patterns = {pattern.casefold(): pattern for pattern in self.include}

    def match_line(self, line: str) -> LogMatch | None:
        if self._include_search is None:
            return None
        found = self._include_search.search(line)
        if found is None:
            return None
        if self._exclude_search is not None and self._exclude_search.search(line):
            return None
        return LogMatch(line=line, pattern=self._patterns.get(found.group().casefold(), found.group()), trimmed=line.strip())

    def scan(self, log_path: Path | str) -> Iterator[LogMatch]:
        with open_file_with_encoding(log_path) as log_file:
            for line in log_file:
                if (match := self.match_line(line)) is not None:
                    yield match


def scan_log(log_path: Path | str, include: Iterable[str], exclude: Iterable[str] = ()) -> Iterator[LogMatch]:
    return LogScanner(include, exclude).scan(log_path)


# ================================================
# CHECK ERRORS IN LOG FILES FOR GIVEN FOLDER
# ================================================
def check_log_errors(config: ConfigStore, folder_path: Path | str | None) -> list[str]:
    """Report error lines from every non-crash `*.log` file inside `folder_path`."""
    logger.debug("- - - INITIATED LOG ERRORS CHECK")
    if folder_path is None or not Path(folder_path).is_dir():
        return []
    folder_path = Path(folder_path)

    catch_errors = config.get(list[str], YAML.Main, "catch_log_errors") or []
    ignore_errors = config.get(list[str], YAML.Main, "exclude_log_errors") or []
    ignore_logs = [item.lower() for item in config.get(list[str], YAML.Main, "exclude_log_files") or []]
    scanner = LogScanner(catch_errors, ignore_errors)
    message_list: list[str] = []

    for file in sorted(folder_path.glob("*.log")):
        if "crash-" in file.name.lower() or any(part in file.name.lower() for part in ignore_logs):
            continue
        try:
            errors_list = [f"ERROR > {match.trimmed}\n" for match in scanner.scan(file)]
        except OSError:
            message_list.append(f"❌ ERROR : Unable to scan this log file :\n  {file}\n-----\n")
            logger.warning(f"> ! > DETECT LOG ERRORS > UNABLE TO SCAN : {file}")
            continue

        if errors_list:
            message_list.append("".join((
                "[!] CAUTION : THE FOLLOWING LOG FILE REPORTS ONE OR MORE ERRORS!\n",
                "[ Errors do not necessarily mean that the mod is not working. ]\n",
                f"\nLOG PATH > {file}\n",
                *errors_list,
                f"\n* TOTAL NUMBER OF DETECTED LOG ERRORS * : {len(errors_list)}\n-----\n",
            )))

    return message_list
