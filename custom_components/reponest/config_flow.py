"""Config flow for RepoNest."""

from __future__ import annotations

from typing import Any

from homeassistant import config_entries
from homeassistant.config_entries import ConfigFlowResult

from .const import DOMAIN


class RepoNestConfigFlow(config_entries.ConfigFlow, domain=DOMAIN):
    """Handle a config flow for RepoNest."""

    VERSION = 1

    async def async_step_user(
        self, user_input: dict[str, Any] | None = None
    ) -> ConfigFlowResult:
        """Handle the initial step.

        The library is a single document, so only one entry may exist.
        """
        if self._async_current_entries():
            return self.async_abort(reason="single_instance_allowed")

        return self.async_create_entry(title="RepoNest", data={})
