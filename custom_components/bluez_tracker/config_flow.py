"""Config flow for BlueZ Tracker integration"""

from __future__ import annotations

import logging
from typing import Any

import voluptuous as vol

from homeassistant.config_entries import (
    ConfigEntry,
    ConfigFlow,
    ConfigFlowResult,
    OptionsFlowWithReload,
)
from homeassistant.core import callback

from .bus_client import BluezBusClient
from .const import (
    BUS_TYPE_SESSION,
    BUS_TYPE_SYSTEM,
    CONF_BUS_TYPE,
    CONF_DEBUG_SIGNALS,
    CONF_REGISTER_AVRC,
    CONF_TRACK_MEDIA,
    DEFAULT_BUS_TYPE,
    DEFAULT_DEBUG_SIGNALS,
    DEFAULT_NAME,
    DEFAULT_REGISTER_AVRC,
    DEFAULT_TRACK_MEDIA,
    DOMAIN,
)
from .coordinator import topology_from_objects
from .exceptions import BusError
from .paths import Kind

_LOGGER = logging.getLogger(__name__)

# =============================================================================
# Exceptions
# =============================================================================


class BluezConfigError(Exception):
    """Base exception for BlueZ Tracker config errors."""


class CannotConnect(BluezConfigError):
    """Error to indicate we cannot reach BlueZ over D-Bus."""


# =============================================================================
# Validation
# =============================================================================


async def async_validate_bus(bus_type: str) -> dict[str, Any]:
    """Connect to the bus and enumerate BlueZ objects.

    Returns the adapters found on the bus.

    Raises:
        CannotConnect: If the bus or the BlueZ daemon is unreachable.
    """
    bus = BluezBusClient(bus_type)
    try:
        await bus.connect()
        objects = await bus.get_managed_objects()
    except BusError as err:
        raise CannotConnect from err
    finally:
        bus.disconnect()

    topology = topology_from_objects(objects)
    adapters = sorted(topology.get(Kind.ADAPTER.value, {}))
    return {"adapters": adapters}


# =============================================================================
# Schemas
# =============================================================================

STEP_USER_DATA_SCHEMA = vol.Schema(
    {
        vol.Required(CONF_BUS_TYPE, default=DEFAULT_BUS_TYPE): vol.In(
            [BUS_TYPE_SYSTEM, BUS_TYPE_SESSION]
        ),
    }
)


def build_options_schema(options: dict[str, Any]) -> vol.Schema:
    """Build the options schema pre-filled with the current options."""
    return vol.Schema(
        {
            vol.Required(
                CONF_TRACK_MEDIA,
                default=options.get(CONF_TRACK_MEDIA, DEFAULT_TRACK_MEDIA),
            ): bool,
            vol.Required(
                CONF_DEBUG_SIGNALS,
                default=options.get(CONF_DEBUG_SIGNALS, DEFAULT_DEBUG_SIGNALS),
            ): bool,
            vol.Required(
                CONF_REGISTER_AVRC,
                default=options.get(CONF_REGISTER_AVRC, DEFAULT_REGISTER_AVRC),
            ): bool,
        }
    )


# =============================================================================
# Config Flow
# =============================================================================


class BluezTrackerConfigFlow(ConfigFlow, domain=DOMAIN):
    """Handle a config flow for BlueZ Tracker."""

    VERSION = 1

    @staticmethod
    @callback
    def async_get_options_flow(config_entry: ConfigEntry) -> BluezTrackerOptionsFlow:
        """Get the options flow for this handler."""
        return BluezTrackerOptionsFlow()

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle the initial step - bus selection."""
        errors: dict[str, str] = {}

        if user_input is not None:
            bus_type = user_input[CONF_BUS_TYPE]

            await self.async_set_unique_id(bus_type)
            self._abort_if_unique_id_configured()

            try:
                info = await async_validate_bus(bus_type)
            except CannotConnect:
                errors["base"] = "cannot_connect"
            except Exception:  # noqa: BLE001
                _LOGGER.exception("Unexpected error during bus validation")
                errors["base"] = "unknown"
            else:
                _LOGGER.info(
                    "Found %d adapters on the %s bus", len(info["adapters"]), bus_type
                )
                return self.async_create_entry(
                    title=f"{DEFAULT_NAME} ({bus_type})",
                    data={CONF_BUS_TYPE: bus_type},
                    options={
                        CONF_TRACK_MEDIA: DEFAULT_TRACK_MEDIA,
                        CONF_DEBUG_SIGNALS: DEFAULT_DEBUG_SIGNALS,
                        CONF_REGISTER_AVRC: DEFAULT_REGISTER_AVRC,
                    },
                )

        return self.async_show_form(
            step_id="user",
            data_schema=STEP_USER_DATA_SCHEMA,
            errors=errors,
        )


# =============================================================================
# Options Flow
# =============================================================================


class BluezTrackerOptionsFlow(OptionsFlowWithReload):
    """Handle options flow for BlueZ Tracker."""

    async def async_step_init(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Manage tracking and diagnostics options."""
        if user_input is not None:
            _LOGGER.info(
                "Updating options: track_media=%s, debug_signals=%s, register_avrc=%s",
                user_input[CONF_TRACK_MEDIA],
                user_input[CONF_DEBUG_SIGNALS],
                user_input[CONF_REGISTER_AVRC],
            )
            return self.async_create_entry(data=user_input)

        return self.async_show_form(
            step_id="init",
            data_schema=build_options_schema(dict(self.config_entry.options)),
        )
