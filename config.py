import logging
import os

from dotenv import load_dotenv

from domain.repositories import KeyValueStore
from infrastructure.db.kv_store_memory import InMemoryKeyValueStore
from infrastructure.db.kv_store_sqlite import SqliteKeyValueStore
from infrastructure.db.staking_repository_kv import KeyValueStakingRepository


load_dotenv()

DB_PATH = os.environ.get("DB_PATH", "heliactyl.db")
DB_NAMESPACE = os.environ.get("DB_NAMESPACE", "heliactyl")
SECRET_KEY = os.environ.get("SECRET_KEY")
WEB_HOST = os.environ.get("WEB_HOST", "0.0.0.0")
WEB_PORT = int(os.environ.get("WEB_PORT", "5000"))
DISCORD_TOKEN = os.environ.get("DISCORD_TOKEN")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")


def configure_logging() -> None:
    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def create_store() -> KeyValueStore:
    if DB_PATH == ":memory:":
        return InMemoryKeyValueStore()
    return SqliteKeyValueStore(DB_PATH, namespace=DB_NAMESPACE)


def create_staking_repository() -> KeyValueStakingRepository:
    return KeyValueStakingRepository(create_store())
