"""
System Command Handlers.

- ping: Connectivity check
- getLicense: License status (always valid)
"""

from __future__ import annotations

from dataclasses import dataclass

from mpdsonic.web.handlers import HandlerContext
from mpdsonic.web.reply import Reply


@dataclass
class License(Reply):
    field_name = "license"

    valid: bool


async def ping(ctx: HandlerContext) -> None:
    """Handle 'ping'; the empty envelope tells clients the server is alive."""
    return None


async def get_license(ctx: HandlerContext) -> License:
    return License(valid=True)
