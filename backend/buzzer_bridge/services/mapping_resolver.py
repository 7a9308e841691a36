"""Turn a buzzer identifier into concrete OSC dispatch instructions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from .config_store import ConfigurationReadError, ConfigurationStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DispatchInstruction:
    osc_address: str
    arguments: Tuple[Any, ...]
    host: str
    port: int
    command_name: str
    target_name: str
    device_name: Optional[str] = None
    mapping_id: Optional[int] = None


class MappingResolver:
    def __init__(self, store: ConfigurationStore) -> None:
        self._store = store

    def resolve(self, identifier: str) -> List[DispatchInstruction]:
        """Return instructions for every fully active mapping of ``identifier``.

        Raises:
            ConfigurationReadError: if the store query fails.
        """

        try:
            rows = self._store.mappings_for_buzzer(identifier)
        except ConfigurationReadError:
            raise
        except Exception as exc:
            raise ConfigurationReadError(f"mapping lookup failed for {identifier}: {exc}") from exc

        instructions = [
            DispatchInstruction(
                osc_address=row.command.address,
                arguments=tuple(row.command.arguments),
                host=row.target.ip_address,
                port=row.target.port,
                command_name=row.command.name,
                target_name=row.target.name,
                device_name=row.binding.device_name,
                mapping_id=row.mapping_id,
            )
            for row in rows
        ]
        logger.debug("Resolved %d mapping(s) for %s", len(instructions), identifier)
        return instructions


__all__ = ["DispatchInstruction", "MappingResolver"]
