import hashlib
import logging
from dataclasses import dataclass
from pathlib import Path

from CLASSIC_Config import YAML, ConfigStore
from CLASSIC_LogScan import LogScanner, open_file_with_encoding

logger = logging.getLogger("CLASSIC")

HASH_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class FingerprintRecord:
    target: str
    expected: str
    discovered: str | None
    """Hash of the file on disk; None when the file is missing or unreadable."""

    @property
    def missing(self) -> bool:
        return self.discovered is None

    @property
    def matches(self) -> bool:
        return self.discovered is not None and self.discovered.lower() == str(self.expected).lower()


def file_sha256(file_path: Path) -> str:
    # Algo should match the one used for Database YAML!
    digest = hashlib.sha256()
    with file_path.open("rb") as f:
        for chunk in iter(lambda: f.read(HASH_CHUNK_SIZE), b""):
            digest.update(chunk)
    return digest.hexdigest()


def fingerprint_files(folder: Path, expected_hashes: dict[str, str]) -> list[FingerprintRecord]:
    records: list[FingerprintRecord] = []
    for name, expected in expected_hashes.items():
        file_path = folder / str(name)
        discovered: str | None = None
        if file_path.is_file():
            try:
                discovered = file_sha256(file_path)
            except OSError as err:
                logger.error(f"> > > ERROR (fingerprint_files) : Unable to hash '{file_path}'. {err}")
        records.append(FingerprintRecord(target=str(name), expected=str(expected), discovered=discovered))
    return records


def _local_yaml_name(config: ConfigStore) -> str:
    return f"CLASSIC {config.gamevars["game"]} Local.yaml"


# =========== CHECK GAME EXE FILE -> GET PATH AND HASHES ===========
def game_check_integrity(config: ConfigStore) -> list[str]:
    """Compare the game EXE against the known pre-update hash and check where the game is installed.

    Only a hash equal to `EXE_HashedOLD` (with no steam_api.ini present) counts as up to date.
    Any other hash, including a newer release, is reported as out of date.
    """
    message_list: list[str] = []
    logger.debug("- - - INITIATED GAME INTEGRITY CHECK")

    exe_hash_old = config.get(str, YAML.Game, config.info_key("EXE_HashedOLD"))
    root_name = config.get(str, YAML.Game, config.info_key("Main_Root_Name")) or config.gamevars["game"]
    game_exe_path = config.get(Path, YAML.Game_Local, config.info_key("Game_File_EXE"))
    steam_ini_path = config.get(Path, YAML.Game_Local, config.info_key("Game_File_SteamINI"))

    if game_exe_path is None:
        return [f"❌ Value for Game_File_EXE is invalid or missing from {_local_yaml_name(config)}!\n-----\n"]
    if not game_exe_path.is_file():
        return [f"❌ CAUTION : YOUR {root_name} EXE FILE COULD NOT BE FOUND AT '{game_exe_path}'! \n-----\n"]

    exe_hash_local = file_sha256(game_exe_path)
    steam_ini_present = bool(steam_ini_path and steam_ini_path.exists())
    if exe_hash_old and exe_hash_local == exe_hash_old.lower() and not steam_ini_present:
        message_list.append(f"✔️ You have the latest version of {root_name}! \n-----\n")
    elif steam_ini_present:
        message_list.append(f"\U0001F480 CAUTION : YOUR {root_name} GAME / EXE VERSION IS OUT OF DATE \n-----\n")
    else:
        message_list.append(f"❌ CAUTION : YOUR {root_name} GAME / EXE VERSION IS OUT OF DATE \n-----\n")

    if "program files" not in str(game_exe_path).lower():
        message_list.append(f"✔️ Your {root_name} game files are installed outside of the Program Files folder! \n-----\n")
    else:
        root_warn = config.get(str, YAML.Main, "Warnings_GAME.warn_root_path")
        message_list.append(root_warn or "❌ CAUTION : YOUR GAME FILES ARE INSTALLED INSIDE OF THE DEFAULT PROGRAM FILES FOLDER!\n-----\n")

    return message_list


# =========== CHECK GAME XSE SCRIPTS -> GET PATH AND HASHES ===========
def xse_check_integrity(config: ConfigStore) -> list[str]:
    message_list: list[str] = []
    logger.debug("- - - INITIATED XSE INTEGRITY CHECK")

    catch_errors = config.get(list[str], YAML.Main, "catch_log_errors") or []
    ignore_errors = config.get(list[str], YAML.Main, "exclude_log_errors") or []
    xse_acronym = config.get(str, YAML.Game, config.info_key("XSE_Acronym")) or "XSE"
    xse_full_name = config.get(str, YAML.Game, config.info_key("XSE_FullName")) or xse_acronym
    xse_ver_latest = config.get(str, YAML.Game, config.info_key("XSE_Ver_Latest"))
    xse_log_file = config.get(Path, YAML.Game_Local, config.info_key("Docs_File_XSE"))
    adlib_file = config.get(Path, YAML.Game_Local, config.info_key("Game_File_AddressLib"))

    if adlib_file is None:
        message_list.append(f"❌ Value for Address Library is invalid or missing from {_local_yaml_name(config)}!\n-----\n")
    elif adlib_file.exists():
        message_list.append("✔️ REQUIRED: *Address Library* for Script Extender is installed! \n-----\n")
    else:
        warn_adlib = config.get(str, YAML.Game, "Warnings_MODS.Warn_ADLIB_Missing")
        message_list.append(warn_adlib or "❌ CAUTION : *Address Library* for Script Extender is missing! \n-----\n")

    if xse_log_file is None:
        message_list.append(f"❌ Value for {xse_acronym.lower()}.log is invalid or missing from {_local_yaml_name(config)}!\n-----\n")
        return message_list
    if not xse_log_file.is_file():
        message_list.append("".join((
            f"❌ CAUTION : *{xse_acronym.lower()}.log* FILE IS MISSING FROM YOUR DOCUMENTS FOLDER! \n",
            f"   You need to run the game at least once with {xse_acronym.lower()}_loader.exe \n",
            "    After that, try running CLASSIC again! \n-----\n",
        )))
        return message_list

    message_list.append(f"✔️ REQUIRED: *{xse_full_name}* is installed! \n-----\n")
    with open_file_with_encoding(xse_log_file) as xse_log:
        first_line = xse_log.readline()
    if xse_ver_latest and str(xse_ver_latest) in first_line:
        message_list.append(f"✔️ You have the latest version of *{xse_full_name}*! \n-----\n")
    else:
        warn_outdated = config.get(str, YAML.Game, "Warnings_XSE.Warn_Outdated")
        message_list.append(warn_outdated or f"❌ CAUTION : YOUR *{xse_full_name}* IS OUT OF DATE! \n-----\n")

    failed_list = [match.trimmed for match in LogScanner(catch_errors, ignore_errors).scan(xse_log_file)]
    if failed_list:
        message_list.append("".join((
            f"#❌ CAUTION : {xse_acronym}.log REPORTS THE FOLLOWING ERRORS #\n",
            *(f"ERROR > {line} \n-----\n" for line in failed_list),
        )))

    return message_list


def xse_check_hashes(config: ConfigStore) -> list[str]:
    logger.debug("- - - INITIATED XSE FILE HASH CHECK")

    xse_hashedscripts = config.get(dict[str, str], YAML.Game, config.info_key("XSE_HashedScripts"))
    game_folder_scripts = config.get(Path, YAML.Game_Local, config.info_key("Game_Folder_Scripts"))
    if not xse_hashedscripts:
        return ["❓ NOTICE : No Script Extender file hashes are listed for this game, skipping the file hash check. \n-----\n"]
    if game_folder_scripts is None:
        return [f"❌ Value for Game_Folder_Scripts is invalid or missing from {_local_yaml_name(config)}!\n-----\n"]

    records = fingerprint_files(game_folder_scripts, xse_hashedscripts)
    missing = [record for record in records if record.missing]
    mismatched = [record for record in records if not record.missing and not record.matches]
    if not missing and not mismatched:
        return ["✔️ All Script Extender files have been found and accounted for! \n-----\n"]

    block = ["# ❌ CAUTION : SOME SCRIPT EXTENDER FILES IN YOUR GAME SCRIPTS FOLDER NEED ATTENTION #\n"]
    block.extend(f"  MISSING    > {record.target}\n" for record in missing)
    block.extend(f"  MISMATCHED > {record.target} (outdated or overriden by another mod)\n" for record in mismatched)
    if missing:
        block.append(config.get(str, YAML.Game, "Warnings_XSE.Warn_Missing") or "")
    if mismatched:
        block.append(config.get(str, YAML.Game, "Warnings_XSE.Warn_Mismatch") or "")
    block.append("-----\n")

    return [
        "".join(block),
        f"❌ CAUTION : {len(missing)} Script Extender file(s) missing, {len(mismatched)} outdated or overriden! \n-----\n",
    ]
