import configparser
import logging
from pathlib import Path

import chardet

from CLASSIC_Config import YAML, ConfigStore
from CLASSIC_LogScan import open_file_with_encoding

logger = logging.getLogger("CLASSIC")

ARCHIVE_SECTION = "Archive"
ARCHIVE_SETTINGS = {
    "bInvalidateOlderFiles": "1",
    "sResourceDataDirsFinal": "",
}


def read_ini(ini_path: Path) -> configparser.ConfigParser:
    ini_config = configparser.ConfigParser(interpolation=None)
    ini_config.optionxform = str  # type: ignore[method-assign, assignment]
    with open_file_with_encoding(ini_path) as ini_file:
        ini_config.read_file(ini_file)
    return ini_config


def append_archive_section(ini_path: Path) -> None:
    """Add `[Archive]` with loose file (archive invalidation) settings to the end of `ini_path`."""
    raw_data = ini_path.read_bytes()
    encoding = chardet.detect(raw_data)["encoding"] or "utf-8"
    lines = [f"[{ARCHIVE_SECTION}]", *(f"{key}={value}" for key, value in ARCHIVE_SETTINGS.items())]
    separator = "" if not raw_data or raw_data.endswith(b"\n") else "\n"
    with ini_path.open("a", encoding=encoding, errors="ignore") as ini_file:
        ini_file.write(separator + "\n".join(lines) + "\n")


# =========== CHECK DOCS MAIN INI -> CHECK EXISTENCE & CORRUPTION ===========
def docs_check_ini(config: ConfigStore, ini_name: str) -> list[str]:
    message_list: list[str] = []
    logger.info(f"- - - INITIATED {ini_name} CHECK")
    folder_docs = config.get(Path, YAML.Game_Local, config.info_key("Root_Folder_Docs"))
    docs_name = config.get(str, YAML.Game, config.info_key("Main_Docs_Name")) or config.gamevars["game"]

    if folder_docs is None or not folder_docs.is_dir():
        return [f"❌ CAUTION : UNABLE TO CHECK {ini_name}, YOUR DOCUMENTS FOLDER PATH IS MISSING OR INVALID! \n-----\n"]

    is_custom_ini = ini_name.lower() == f"{docs_name.lower()}custom.ini"
    ini_path = next((file for file in folder_docs.glob("*.ini") if file.name.lower() == ini_name.lower()), None)
    if ini_path is not None:
        try:
            ini_config = read_ini(ini_path)
            message_list.append(f"✔️ No obvious corruption detected in {ini_name}, file seems OK! \n-----\n")

            if is_custom_ini:
                if ini_config.has_section(ARCHIVE_SECTION):
                    message_list.append("✔️ Archive Invalidation / Loose Files setting is already enabled! \n-----\n")
                else:
                    append_archive_section(ini_path)
                    message_list.append("".join((
                        "❌ WARNING : Archive Invalidation / Loose Files setting is not enabled. \n",
                        "  CLASSIC has now enabled this setting automatically in the game INI files. \n-----\n",
                    )))

        except PermissionError:
            message_list.append("".join((
                f"[!] CAUTION : YOUR {ini_name} FILE IS SET TO READ ONLY. \n",
                "     PLEASE REMOVE THE READ ONLY PROPERTY FROM THIS FILE, \n",
                "     SO CLASSIC CAN MAKE THE REQUIRED CHANGES TO IT. \n-----\n",
            )))
        except configparser.DuplicateOptionError as e:
            message_list.append(f"[!] ERROR : Your {ini_name} file has duplicate options! \n    {e} \n-----\n")
        except (configparser.Error, UnicodeError, OSError):
            message_list.append("".join((
                f"[!] CAUTION : YOUR {ini_name} FILE IS VERY LIKELY BROKEN, PLEASE CREATE A NEW ONE \n",
                f"    Delete this file from your Documents/My Games/{docs_name} folder, then press \n",
                f"    *Scan Game Files* in CLASSIC to generate a new {ini_name} file. \n-----\n",
            )))
        return message_list

    if ini_name.lower() == f"{docs_name.lower()}.ini":
        message_list.append("".join((
            f"❌ CAUTION : {ini_name} FILE IS MISSING FROM YOUR DOCUMENTS FOLDER! \n",
            f"   You need to run the game at least once with {docs_name}Launcher.exe \n",
            "    This will create files and INI settings required for the game to run. \n-----\n",
        )))

    if is_custom_ini:
        customini_config = config.get(str, YAML.Game, "Default_CustomINI")
        if not customini_config:
            customini_config = "\n".join((f"[{ARCHIVE_SECTION}]", *(f"{key}={value}" for key, value in ARCHIVE_SETTINGS.items()))) + "\n"
        try:
            (folder_docs / ini_name).write_text(customini_config, encoding="utf-8")
        except PermissionError:
            message_list.append(f"[!] CAUTION : CLASSIC IS NOT ALLOWED TO CREATE {ini_name} IN YOUR DOCUMENTS FOLDER. \n-----\n")
        else:
            message_list.append("".join((
                "❌ WARNING : Archive Invalidation / Loose Files setting is not enabled. \n",
                f"  CLASSIC has now created {ini_name} with this setting enabled. \n-----\n",
            )))

    return message_list
