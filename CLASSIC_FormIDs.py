import logging
import sqlite3
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Literal, get_args

from tap import Tap

from CLASSIC_Config import GameID

logger = logging.getLogger("CLASSIC")

DATABASES_PATH = Path("CLASSIC Data/databases")
GAME_IDS: tuple[str, ...] = get_args(GameID.__value__)


def parse_formid_lines(lines: Iterable[str]) -> Iterator[tuple[str, str, str]]:
    """Yield `(plugin, formid, entry)` from `plugin | formid | entry` lines; anything after a 4th `|` is dropped."""
    for line in lines:
        parts = line.strip().split(" | ", maxsplit=3)
        if len(parts) >= 3:
            plugin, formid, entry = parts[:3]
            yield plugin, formid, entry


class FormIDIndex:
    """SQLite lookup table of FormID entries, built once from the FID text lists."""

    def __init__(self, game: GameID, databases_path: Path = DATABASES_PATH) -> None:
        if game not in GAME_IDS:
            raise ValueError(f"Unknown game: {game}")
        self.game = game
        self.db_path = databases_path / f"{game} FormIDs.db"
        self.source_paths = (
            databases_path / f"{game} FID Main.txt",
            databases_path / f"{game} FID Mods.txt",
        )
        self.query_cache: dict[tuple[str, str], str] = {}

    def build(self, force: bool = False) -> bool:
        """Create the database from the FID lists unless it already exists. Returns True if it was built."""
        if self.db_path.is_file() and not force:
            return False
        if not self.source_paths[0].is_file():
            logger.error(f"> > > ERROR (FormIDIndex.build) : '{self.source_paths[0]}' not found, unable to build {self.db_path.name}")
            return False

        logger.info(f"- - - BUILDING {self.db_path.name}")
        temp_path = self.db_path.with_name(f"{self.db_path.name}.tmp")
        temp_path.unlink(missing_ok=True)
        try:
            with sqlite3.connect(temp_path) as conn:
                conn.execute(
                    f"""CREATE TABLE IF NOT EXISTS {self.game}
                    (id INTEGER PRIMARY KEY AUTOINCREMENT,
                    plugin TEXT, formid TEXT, entry TEXT)"""
                )
                conn.execute(f"CREATE INDEX IF NOT EXISTS {self.game}_index ON {self.game} (formid, plugin COLLATE nocase);")
                for source_path in self.source_paths:
                    if source_path.is_file():
                        with source_path.open(encoding="utf-8", errors="ignore") as f:
                            conn.executemany(f"INSERT INTO {self.game} (plugin, formid, entry) VALUES (?, ?, ?)", parse_formid_lines(f))
                if conn.in_transaction:
                    conn.commit()
            conn.close()
            temp_path.replace(self.db_path)
        except (sqlite3.Error, OSError):
            temp_path.unlink(missing_ok=True)
            raise

        self.query_cache.clear()
        return True

    def get_entry(self, formid: str, plugin: str) -> str | None:
        if (entry := self.query_cache.get((formid, plugin))) is not None:
            return entry
        if not self.db_path.is_file():
            return None

        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute(
                f"SELECT entry FROM {self.game} WHERE formid=? AND plugin=? COLLATE nocase",
                (formid, plugin),
            ).fetchone()
        conn.close()
        if row:
            self.query_cache[formid, plugin] = row[0]
            return row[0]
        return None


class Arguments(Tap):
    """Builds (or rebuilds) the FormID database for a game."""

    game: Literal["Fallout4", "Skyrim", "Starfield"] = "Fallout4"
    """Game whose FID lists are imported"""

    databases: Path = DATABASES_PATH
    """Folder holding the FID lists and the database"""

    force: bool = False
    """Rebuild even if the database already exists"""


if __name__ == "__main__":
    args = Arguments().parse_args()
    index = FormIDIndex(args.game, args.databases)
    if index.build(force=args.force):
        print(f"Built {index.db_path}")
    else:
        print(f"{index.db_path} already exists or its FID list is missing, nothing to do.")
