import asyncio
import datetime
import logging
import sys
from pathlib import Path

import aiohttp
import regex as re
from packaging.version import InvalidVersion, Version
from tap import Tap

from CLASSIC_Config import YAML, ConfigStore, GameID, GameVars, SettingsBootstrapError, default_gamevars
from CLASSIC_Paths import ConsolePathPrompt, HeadlessPathPrompt, PathResolver
from CLASSIC_Report import REPORT_PATH, ReportAggregator

""" AUTHOR NOTES (POET): ❓ ❌ ✔️
    ❓ (..., encoding="utf-8", errors="ignore") needs to go with every opened file because of unicode & charmap errors.
    ❓ Every YAML read / write goes through one ConfigStore, create it with initialize() and pass it along.
"""

JOURNAL_PATH = Path("CLASSIC Journal.log")
GITHUB_RELEASE_URL = "https://api.github.com/repos/evildarkarchon/CLASSIC-Fallout4/releases/latest"
NEXUS_MOD_URL = "https://www.nexusmods.com/fallout4/mods/56255"
NEXUS_VERSION_META = re.compile(r'<meta property="twitter:data1" content="([^"]+)"')
UPDATE_SOURCES = ("Both", "GitHub", "Nexus")

# "Managed Game" values in CLASSIC Settings.yaml
MANAGED_GAMES: dict[str, GameID] = {
    "Fallout 4": "Fallout4",
    "Skyrim SE": "Skyrim",
    "Starfield": "Starfield",
}

logger = logging.getLogger("CLASSIC")


class UpdateCheckError(Exception):
    """Checking for updates failed."""


def configure_logging(journal_path: Path = JOURNAL_PATH) -> None:
    """Configure log output to `CLASSIC Journal.log`, regenerating if older than 7 days.

    Logging levels: debug | info | warning | error | critical.
    """
    if journal_path.exists():
        log_time = datetime.datetime.fromtimestamp(journal_path.stat().st_mtime)
        log_age = datetime.datetime.now() - log_time
        if log_age.days > 7:
            try:
                journal_path.unlink(missing_ok=True)
                print(f"{journal_path.name} has been deleted and regenerated due to being older than 7 days.")
            except (ValueError, OSError) as err:
                print(f"An error occurred while deleting {journal_path.name}: {err}")

    # Make sure we only configure the handler once
    if not any(isinstance(handler, logging.FileHandler) for handler in logger.handlers):
        logger.setLevel(logging.INFO)
        handler = logging.FileHandler(filename=journal_path, mode="a", encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)s | %(message)s"))
        logger.addHandler(handler)


# ================================================
# CREATE REQUIRED FILES, SETTINGS & UPDATE CHECK
# ================================================
def classic_generate_files(config: ConfigStore) -> None:
    """Generate `CLASSIC Ignore.yaml` and `CLASSIC Data/CLASSIC <GAME> Local.yaml` from their templates."""
    for yaml_store, template_key in ((YAML.Ignore, "default_ignorefile"), (YAML.Game_Local, "default_localyaml")):
        yaml_path = config.path_for(yaml_store)
        if yaml_path.exists():
            continue
        template = config.get(str, YAML.Main, f"CLASSIC_Info.{template_key}")
        if not template:
            logger.warning(f"> > > ERROR (classic_generate_files) : CLASSIC_Info.{template_key} is missing, {yaml_path.name} not generated.")
            continue
        yaml_path.parent.mkdir(parents=True, exist_ok=True)
        yaml_path.write_text(template, encoding="utf-8")


def version_from(text: str | None) -> Version | None:
    """Version at the end of a release name such as "CLASSIC v7.30.3"; None when there is none."""
    if not text:
        return None
    try:
        return Version(text.rsplit(maxsplit=1)[-1])
    except (InvalidVersion, IndexError):
        return None


async def get_github_version(session: aiohttp.ClientSession) -> Version | None:
    """Version named by the latest GitHub release, None if the check fails."""
    try:
        async with session.get(GITHUB_RELEASE_URL) as response:
            release = await response.json()
    except aiohttp.ClientError as err:
        logger.debug(f"> ! > GITHUB RELEASE CHECK FAILED : {err!r}")
        return None
    return version_from(release.get("name")) if isinstance(release, dict) else None


async def get_nexus_version(session: aiohttp.ClientSession) -> Version | None:
    """Version from the twitter:data1 meta tag of the Nexus Mods page, None if the check fails."""
    try:
        async with session.get(NEXUS_MOD_URL) as response:
            async for raw_line in response.content:
                line = raw_line.decode("utf-8", errors="ignore")
                if meta := NEXUS_VERSION_META.search(line):
                    return version_from(meta.group(1))
                if "</head>" in line:
                    break
    except aiohttp.ClientError as err:
        logger.debug(f"> ! > NEXUS VERSION CHECK FAILED : {err!r}")
    return None


async def fetch_remote_versions(update_source: str) -> list[Version]:
    """Ask the chosen update sources for their newest version; sources that fail are left out."""
    getters = {"GitHub": get_github_version, "Nexus": get_nexus_version}
    chosen = getters.values() if update_source == "Both" else [getters[update_source]]
    async with aiohttp.ClientSession(raise_for_status=True, timeout=aiohttp.ClientTimeout(total=30)) as session:
        found = [await getter(session) for getter in chosen]
    return [version for version in found if version is not None]


async def is_latest_version(config: ConfigStore, quiet: bool = False, gui_request: bool = True) -> bool:
    """Compare the local CLASSIC version with the newest one on GitHub and/or Nexus Mods.

    Returns True only when the local version is at least as new as every remote one.
    When no source answers, GUI requests raise UpdateCheckError and other requests return False.
    """

    def notify(text: str | None) -> None:
        if not quiet and text:
            print(text, flush=True)

    logger.debug("- - - INITIATED UPDATE CHECK")
    if not (gui_request or config.settings(bool, "Update Check")):
        notify("\n❌ NOTICE: UPDATE CHECK IS DISABLED IN CLASSIC Settings.yaml \n")
        return False

    update_source = config.settings(str, "Update Source") or "Both"
    if update_source not in UPDATE_SOURCES:
        notify("\n❌ NOTICE: INVALID VALUE FOR UPDATE SOURCE IN CLASSIC Settings.yaml \n")
        return False

    game = config.gamevars["game"]
    notify("❓ (Needs internet connection) CHECKING FOR NEW CLASSIC VERSIONS...")
    try:
        remote_versions = await fetch_remote_versions(update_source)
    except (ValueError, OSError, TimeoutError, aiohttp.ClientError) as err:
        logger.warning(f"> ! > UPDATE CHECK FAILED : {err!r}")
        remote_versions = []

    if not remote_versions:
        logger.warning(f"> ! > UPDATE CHECK FAILED : no answer from {update_source}")
        notify(config.get(str, YAML.Main, f"CLASSIC_Interface.update_unable_{game}"))
        if gui_request:
            raise UpdateCheckError(f"Unable to reach the update source: {update_source}")
        return False

    # An unreadable local version counts as outdated.
    local_version = version_from(config.get(str, YAML.Main, "CLASSIC_Info.version"))
    if local_version is None or local_version < max(remote_versions):
        notify(config.get(str, YAML.Main, f"CLASSIC_Interface.update_warning_{game}"))
        return False

    notify(f"Your CLASSIC Version: {local_version}\n\n✔️ You have the latest version of CLASSIC!\n")
    return True


async def update_check_message(config: ConfigStore) -> str:
    """Run the update check and describe its outcome; never raises for network problems."""
    game = config.gamevars["game"]
    try:
        latest = await is_latest_version(config, quiet=True, gui_request=True)
    except UpdateCheckError:
        return config.get(str, YAML.Main, f"CLASSIC_Interface.update_unable_{game}") or (
            "❌ WARNING : CLASSIC WAS UNABLE TO CHECK FOR UPDATES AT THIS TIME, TRY AGAIN LATER \n-----\n"
        )
    if latest:
        return "✔️ You have the latest version of CLASSIC! \n-----\n"
    return config.get(str, YAML.Main, f"CLASSIC_Interface.update_warning_{game}") or "❌ WARNING : YOUR CLASSIC VERSION IS OUT OF DATE! \n-----\n"


# ================================================
# START UP
# ================================================
def initialize(base_path: Path | None = None, gamevars: GameVars | None = None) -> ConfigStore:
    """Create the shared ConfigStore and set the active game from CLASSIC Settings.yaml.

    Raises SettingsBootstrapError when CLASSIC Settings.yaml cannot be created.
    """
    config = ConfigStore(gamevars=default_gamevars() if gamevars is None else gamevars, base_path=base_path)
    managed_game = config.settings(str, "Managed Game")
    if managed_game in MANAGED_GAMES:
        config.gamevars["game"] = MANAGED_GAMES[managed_game]
    config.gamevars["vr"] = "VR" if config.settings(bool, "VR Mode") else ""
    return config


def main_generate_required(config: ConfigStore) -> None:
    classic_generate_files(config)
    classic_ver = config.get(str, YAML.Main, "CLASSIC_Info.version") or "CLASSIC"
    game_name = config.get(str, YAML.Game, "Game_Info.Main_Root_Name") or config.gamevars["game"]
    print(f"Hello World! | Crash Log Auto Scanner & Setup Integrity Checker | {classic_ver} | {game_name}")
    print("❓ PLEASE WAIT WHILE CLASSIC CHECKS YOUR SETTINGS AND GAME SETUP...")
    logger.info(f"> > > STARTED {classic_ver}")


class Arguments(Tap):
    """Checks your game setup and writes the results to CLASSIC GFS Report.md."""

    headless: bool = False
    """Never ask for folder paths, stop with an error if they cannot be found"""

    no_update_check: bool = False
    """Skip the online CLASSIC update check"""

    report: Path = REPORT_PATH
    """Where to write the combined results"""


def main(argv: list[str] | None = None) -> int:
    args = Arguments().parse_args(argv)
    configure_logging()
    try:
        config = initialize()
    except SettingsBootstrapError as err:
        logger.critical(f"> > > ERROR (initialize) : {err}")
        print(f"❌ ERROR : {err}")
        return 2

    main_generate_required(config)
    if not args.no_update_check and config.settings(bool, "Update Check"):
        print(asyncio.run(update_check_message(config)))

    resolver = PathResolver(config, HeadlessPathPrompt() if args.headless else ConsolePathPrompt())
    aggregator = ReportAggregator(config, resolver)
    aggregator.write_report(args.report)
    print(args.report.read_text(encoding="utf-8", errors="ignore"))
    return 1 if aggregator.unresolved else 0


if __name__ == "__main__":  # AKA only autorun / do the following when NOT imported.
    sys.exit(main())
