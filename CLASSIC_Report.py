import logging
from collections.abc import Callable
from enum import StrEnum
from functools import partial
from pathlib import Path

from CLASSIC_Config import YAML, ConfigError, ConfigStore, SettingsBootstrapError
from CLASSIC_GameINI import docs_check_ini
from CLASSIC_Integrity import game_check_integrity, xse_check_hashes, xse_check_integrity
from CLASSIC_LogScan import check_log_errors
from CLASSIC_Paths import PathResolver, PathUnresolvedError

logger = logging.getLogger("CLASSIC")

REPORT_PATH = Path("CLASSIC GFS Report.md")


class Severity(StrEnum):
    SUCCESS = "success"
    WARNING = "warning"
    CAUTION = "caution"
    NOTICE = "notice"


# Checked in order, so longer markers come before their prefixes.
_SEVERITY_MARKERS: tuple[tuple[str, Severity], ...] = (
    ("✔️", Severity.SUCCESS),
    ("#❌", Severity.CAUTION),
    ("# ❌", Severity.CAUTION),
    ("[!]", Severity.CAUTION),
    ("❌", Severity.WARNING),
    ("\U0001F480", Severity.WARNING),
    ("❓", Severity.NOTICE),
)


def severity_of(message: str) -> Severity:
    """Severity implied by the glyph a message starts with. Unmarked text counts as a notice."""
    text = message.lstrip()
    for marker, severity in _SEVERITY_MARKERS:
        if text.startswith(marker):
            return severity
    return Severity.NOTICE


def run_check(name: str, check: Callable[[], list[str]]) -> list[str]:
    """Run one check; if it raises, its failure becomes a message instead of stopping the report."""
    try:
        return check()
    except SettingsBootstrapError:
        raise
    except Exception as err:  # noqa: BLE001
        logger.error(f"> > > ERROR ({name}) : {err!r}")
        return [f"❌ ERROR : CLASSIC WAS UNABLE TO COMPLETE THE {name} CHECK! \n    {err} \n-----\n"]


class ReportAggregator:
    """Runs the setup checks in a fixed order and keeps their messages in that order."""

    def __init__(self, config: ConfigStore, resolver: PathResolver) -> None:
        self.config = config
        self.resolver = resolver
        self.unresolved = False

    def checks(self) -> list[tuple[str, Callable[[], list[str]]]]:
        docs_name = self.config.get(str, YAML.Game, self.config.info_key("Main_Docs_Name")) or self.config.gamevars["game"]
        xse_folder = self.config.get(Path, YAML.Game_Local, self.config.info_key("Docs_Folder_XSE"))
        return [
            ("DOCUMENTS FOLDER", self.resolver.check_docs_folder),
            ("GAME INTEGRITY", partial(game_check_integrity, self.config)),
            ("XSE INTEGRITY", partial(xse_check_integrity, self.config)),
            ("XSE FILE HASH", partial(xse_check_hashes, self.config)),
            *((f"{ini_name} INI", partial(docs_check_ini, self.config, ini_name)) for ini_name in (f"{docs_name}.ini", f"{docs_name}Custom.ini", f"{docs_name}Prefs.ini")),
            ("LOG ERRORS", partial(check_log_errors, self.config, xse_folder)),
        ]

    def save_failed_message(self, err: Exception) -> str:
        local_name = self.config.path_for(YAML.Game_Local).name
        lines = [
            "❌ ERROR : CLASSIC WAS UNABLE TO SAVE YOUR GAME AND DOCUMENTS FOLDER PATHS! \n",
            f"    {err} \n",
        ]
        if isinstance(err, PermissionError):
            lines.append(f"[!] YOUR {local_name} FILE IS SET TO READ ONLY, remove the read only property from it and run CLASSIC again. \n")
        else:
            lines.append(f"    Check that Game_Info in your {local_name} holds one folder path per key, or delete the file so CLASSIC can create it again. \n")
        lines.append("-----\n")
        return "".join(lines)

    def combined_messages(self) -> list[str]:
        message_list: list[str] = []
        try:
            message_list.extend(self.resolver.resolve())
        except PathUnresolvedError as err:
            self.unresolved = True
            logger.error(f"> > > ERROR (combined_messages) : {err}")
            message_list.extend(self.resolver.messages)
            message_list.append("".join((
                "❌ ERROR : CLASSIC CANNOT PROCEED WITHOUT YOUR GAME AND DOCUMENTS FOLDER PATHS! \n",
                f"    {err} \n",
                "    Run CLASSIC interactively once, or enter the paths in your CLASSIC Local.yaml. \n-----\n",
            )))
            return message_list
        except SettingsBootstrapError:
            raise
        except (OSError, ConfigError) as err:
            self.unresolved = True
            logger.error(f"> > > ERROR (combined_messages) : {err!r}")
            message_list.extend(self.resolver.messages)
            message_list.append(self.save_failed_message(err))
            return message_list

        for name, check in self.checks():
            message_list.extend(run_check(name, check))
        return message_list

    def combined_result(self) -> str:
        return "".join(self.combined_messages())

    def write_report(self, report_path: Path = REPORT_PATH) -> Path:
        report_path.write_text(self.combined_result(), encoding="utf-8", errors="ignore")
        return report_path
