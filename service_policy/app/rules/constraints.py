"""
Contextual constraints attached to policy rules: time windows, IP
allow-lists and step-up requirements (MFA, VPN, trusted device, session
age). An absent constraint is always satisfied.
"""

import ipaddress
import math
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, List, Optional, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from shared.config import PolicySettings, get_settings
from shared.logging import get_logger
from .conditions import coerce_number
from .models import ContextRequirement, ContextRequirementType, RequestContext, TimeRestriction


DEFAULT_MAX_SESSION_AGE_MS = 60 * 60 * 1000

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


def parse_instant(value: Union[str, datetime]) -> datetime:
    """Parse an ISO-8601 instant; naive values are taken as UTC.

    Raises ValueError when the value is not an ISO-8601 date or datetime.
    """
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text[-1:] in ("Z", "z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@lru_cache(maxsize=512)
def _parse_network(entry: str) -> IPNetwork:
    return ipaddress.ip_network(entry.strip(), strict=False)


def _weekday(moment: datetime) -> int:
    """Day of week with 0=Sunday."""
    return (moment.weekday() + 1) % 7


class ConstraintChecker:
    """Evaluates time, network and context constraints."""

    def __init__(self, settings: Optional[PolicySettings] = None):
        self.settings = settings or get_settings()
        self.logger = get_logger("policy.constraints")

    def check_time_restrictions(self, restrictions: Optional[TimeRestriction], timestamp: str) -> bool:
        """Check whether ``timestamp`` falls inside the restriction window.

        ``validFrom`` is inclusive and ``validTo`` exclusive. Weekday and
        time-of-day are taken in the restriction's timezone (or the
        configured default). A ``startTime`` later than ``endTime`` is a
        window spanning midnight; both ends are inclusive.
        """
        if restrictions is None:
            return True

        try:
            instant = parse_instant(timestamp)
        except ValueError:
            self.logger.warning("Unparsable request timestamp", timestamp=timestamp)
            return False

        try:
            if restrictions.valid_from and instant < parse_instant(restrictions.valid_from):
                return False
            if restrictions.valid_to and instant >= parse_instant(restrictions.valid_to):
                return False
        except ValueError as e:
            self.logger.warning("Unparsable validity bound", error=str(e))
            return False

        if restrictions.days_of_week is None and not (restrictions.start_time or restrictions.end_time):
            return True

        zone_name = restrictions.timezone or self.settings.default_timezone
        try:
            local = instant.astimezone(ZoneInfo(zone_name))
        except (ZoneInfoNotFoundError, ValueError) as e:
            self.logger.warning("Unknown timezone", timezone=zone_name, error=str(e))
            return False

        if restrictions.days_of_week is not None and _weekday(local) not in restrictions.days_of_week:
            return False

        start, end = restrictions.start_time, restrictions.end_time
        if start or end:
            time_of_day = local.strftime("%H:%M")
            if start and end and start > end:
                return time_of_day >= start or time_of_day <= end
            if start and time_of_day < start:
                return False
            if end and time_of_day > end:
                return False

        return True

    def check_ip_restrictions(self, restrictions: Optional[List[str]], ip: str) -> bool:
        """Check the request IP against exact addresses and CIDR blocks.

        CIDR containment is bit-exact for any prefix length, IPv4 or IPv6.
        Malformed entries never match.
        """
        if not restrictions:
            return True

        address = None
        try:
            address = ipaddress.ip_address((ip or "").strip())
        except ValueError:
            self.logger.warning("Unparsable request IP", ip=ip)

        for entry in restrictions:
            if "/" in entry:
                if address is None:
                    continue
                try:
                    if address in _parse_network(entry):
                        return True
                except ValueError:
                    self.logger.warning("Invalid CIDR restriction", entry=entry)
            elif entry.strip() == (ip or "").strip():
                return True
            elif address is not None and self._same_address(entry, address):
                return True

        return False

    def check_context_requirements(
        self,
        requirements: Optional[List[ContextRequirement]],
        context: RequestContext
    ) -> bool:
        """Check that every context requirement holds."""
        if not requirements:
            return True

        return all(self._check_requirement(requirement, context) for requirement in requirements)

    def _check_requirement(self, requirement: ContextRequirement, context: RequestContext) -> bool:
        if requirement.type == ContextRequirementType.MFA:
            return context.mfa_verified is True

        if requirement.type == ContextRequirementType.VPN:
            return context.vpn_connected is True

        if requirement.type == ContextRequirementType.DEVICE_TRUST:
            return context.device_trusted is True

        if requirement.type == ContextRequirementType.SESSION_AGE:
            return self._check_session_age(requirement.value, context)

        # approval, custom and unrecognised types cannot be verified here
        return not self.settings.context_requirements_fail_closed

    def _check_session_age(self, max_age: Any, context: RequestContext) -> bool:
        unmeasurable = not self.settings.context_requirements_fail_closed
        if not context.session_started_at:
            return unmeasurable

        limit = DEFAULT_MAX_SESSION_AGE_MS if max_age is None else coerce_number(max_age)
        if math.isnan(limit):
            return unmeasurable

        try:
            started = parse_instant(context.session_started_at)
            now = parse_instant(context.timestamp)
        except ValueError:
            self.logger.warning(
                "Unparsable session timing",
                session_started_at=context.session_started_at,
                timestamp=context.timestamp
            )
            return unmeasurable

        age_ms = (now - started).total_seconds() * 1000
        return age_ms <= limit

    @staticmethod
    def _same_address(entry: str, address: Union[ipaddress.IPv4Address, ipaddress.IPv6Address]) -> bool:
        try:
            return ipaddress.ip_address(entry.strip()) == address
        except ValueError:
            return False
