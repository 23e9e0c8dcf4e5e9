from pathlib import Path

import pytest

from CLASSIC_Config import ConfigStore, GameVars

TEST_MAIN_YAML = """CLASSIC_Info:
  version: CLASSIC v8.0.0
  default_settings: |
    CLASSIC_Settings:
      Managed Game: Fallout 4
      Update Check: false
      VR Mode: false
      Update Source: Both
      SCAN Custom Path:
  default_ignorefile: |
    CLASSIC_Ignore_Fallout4:
      - Example Plugin.esp
  default_localyaml: |
    Game_Info:
      Root_Folder_Game:
      Root_Folder_Docs:

CLASSIC_Interface:
  update_warning_Fallout4: "❌ WARNING : YOUR FALLOUT 4 CLASSIC VERSION IS OUT OF DATE!\\n-----\\n"
  update_unable_Fallout4: "❌ WARNING : CLASSIC WAS UNABLE TO CHECK FOR UPDATES AT THIS TIME, TRY AGAIN LATER\\n-----\\n"

Warnings_GAME:
  warn_root_path: "❌ CAUTION : YOUR GAME FILES ARE INSTALLED INSIDE OF THE DEFAULT PROGRAM FILES FOLDER!\\n-----\\n"
  warn_docs_path: "❌ CAUTION : MICROSOFT ONEDRIVE IS OVERRIDING YOUR DOCUMENTS FOLDER PATH!\\n-----\\n"

catch_log_errors:
  - critical
  - error
  - failed

exclude_log_errors:
  - failed to get next record
  - failed to open pdb
  - failed to register method
  - keybind
  - no errors with this
  - unable to locate pdb

exclude_log_files:
  - cbpfo4
  - crash-
  - f4se
"""

TEST_GAME_YAML = """Game_Info:
  Main_Root_Name: Fallout 4
  Main_Docs_Name: Fallout4
  Main_SteamID: 377160
  XSE_Acronym: F4SE
  XSE_FullName: Fallout 4 Script Extender (F4SE)
  XSE_Ver_Latest: 0.6.23
  EXE_HashedOLD: "0000000000000000000000000000000000000000000000000000000000000000"
  XSE_HashedScripts:
    Actor.pex: "0000000000000000000000000000000000000000000000000000000000000000"

GameVR_Info:
  Main_Root_Name: Fallout 4 VR
  Main_Docs_Name: Fallout4VR
  Main_SteamID: 611660
  XSE_Acronym: F4SEVR
  XSE_FullName: Fallout 4 Script Extender VR (F4SEVR)
  XSE_Ver_Latest: 0.6.20

Warnings_XSE:
  Warn_Outdated: "❌ CAUTION : REPORTED F4SE VERSION DOES NOT MATCH THE LATEST VERSION!\\n-----\\n"
  Warn_Missing: "❌ CAUTION : SCRIPT EXTENDER FILES ARE MISSING!\\n"
  Warn_Mismatch: "❌ CAUTION : SCRIPT EXTENDER FILES ARE OUTDATED OR OVERRIDEN!\\n"

Warnings_MODS:
  Warn_ADLIB_Missing: "❌ CAUTION : ADDRESS LIBRARY IS MISSING!\\n-----\\n"

Default_CustomINI: |
  [Archive]
  bInvalidateOlderFiles=1
  sResourceDataDirsFinal=
"""


@pytest.fixture
def gamevars() -> GameVars:
    return {"game": "Fallout4", "vr": ""}


@pytest.fixture
def classic_folder(tmp_path: Path) -> Path:
    """A CLASSIC folder with the Main and Fallout4 databases in place and nothing generated yet."""
    databases = tmp_path / "CLASSIC Data/databases"
    databases.mkdir(parents=True)
    (databases / "CLASSIC Main.yaml").write_text(TEST_MAIN_YAML, encoding="utf-8")
    (databases / "CLASSIC Fallout4.yaml").write_text(TEST_GAME_YAML, encoding="utf-8")
    return tmp_path


@pytest.fixture
def config(classic_folder: Path, gamevars: GameVars) -> ConfigStore:
    return ConfigStore(gamevars=gamevars, base_path=classic_folder)


@pytest.fixture
def game_folder(tmp_path: Path) -> Path:
    """A fake Fallout 4 install: an EXE, a Scripts folder and an F4SE plugins folder."""
    game_path = tmp_path / "Games/Fallout 4"
    (game_path / "Data/Scripts").mkdir(parents=True)
    (game_path / "Data/F4SE/Plugins").mkdir(parents=True)
    (game_path / "Fallout4.exe").write_bytes(b"MZ fake game executable")
    return game_path


@pytest.fixture
def docs_folder(tmp_path: Path) -> Path:
    docs_path = tmp_path / "Documents/My Games/Fallout4"
    (docs_path / "F4SE").mkdir(parents=True)
    return docs_path
