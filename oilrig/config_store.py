"""Versioned economy configuration.

Readers take `get_config()` once per operation and keep that snapshot; an
update validates a complete new config, persists it as the next version and
only then replaces the reference.
"""

import logging
from asyncio import Lock
from typing import Optional

from sqlalchemy.exc import IntegrityError

from oilrig.crud import CreateData, ReadData
from oilrig.domain.economy_config import DEFAULT_ECONOMY, EconomyConfig, load, merge_updates
from oilrig.domain.outcomes import TransientFailure
from oilrig.time_utils import utc_now


class ConfigStore:
    def __init__(self, session_factory, config: Optional[EconomyConfig] = None):
        self.Session = session_factory
        self.config = config or load(DEFAULT_ECONOMY)
        self.lock = Lock()  # serializes writers only

    def get_config(self) -> EconomyConfig:
        return self.config

    async def load_or_seed(self) -> EconomyConfig:
        """Load the latest persisted version, or persist the default economy as version 1."""
        async with self.lock:
            async with self.Session() as session:
                async with session.begin():
                    row = await ReadData.read_latest_config(session)
                    if row is None:
                        config = load({**DEFAULT_ECONOMY, "version": 1})
                        CreateData.add_config_version(config.version, config.to_raw(), utc_now(), session)
                        logging.info("Seeded default economy config (version 1)")
                    else:
                        config = load({**row.payload, "version": row.version})
                        logging.info(f"Loaded economy config version {row.version}")
            self.config = config
            return config

    async def set_config(self, updates: dict) -> EconomyConfig:
        """Apply partial updates as a new config version

        Args:
            updates (dict): Nested or dotted-key partial config

        Raises:
            ConfigValidationError: The merged config violates an invariant; nothing is persisted
            TransientFailure: Another process wrote the same version first

        Returns:
            EconomyConfig: The new current config
        """
        async with self.lock:
            current = self.config
            raw = merge_updates(current.to_raw(), updates)
            raw["version"] = current.version + 1
            config = load(raw)

            try:
                async with self.Session() as session:
                    async with session.begin():
                        CreateData.add_config_version(config.version, config.to_raw(), utc_now(), session)
            except IntegrityError as e:
                logging.warning(f"Config version {config.version} already exists: {e}")
                async with self.Session() as session:
                    row = await ReadData.read_latest_config(session)
                    self.config = load({**row.payload, "version": row.version})
                raise TransientFailure("Config was changed concurrently, try again") from e

            self.config = config
            logging.info(f"Economy config updated to version {config.version}")
            return config
