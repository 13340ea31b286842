from __future__ import annotations

from typing import List, Optional

from multiping.models import Address, Verdict

PLUGIN_NAME = "multiping"


def u(value: Optional[float]) -> str:
    """Format a perfdata value; missing values are a single "U" as the Nagios
    plugin guidelines require."""
    if value is None:
        return "U"
    return number(value)


def number(value: float) -> str:
    text = f"{value:.6f}".rstrip("0").rstrip(".")
    return text or "0"


def best(address: Address) -> str:
    if address.is_literal:
        return address.ip
    return f"{address.target}/{address.ip}"


def perfdata(verdict: Verdict) -> str:
    warn = number(verdict.warning)
    crit = number(verdict.critical)
    return " ".join(
        f"'{address.ip}'={u(rtt)}s;{warn};{crit};0" for address, rtt in verdict.table.items()
    )


def summary(verdict: Verdict) -> str:
    if verdict.error is not None:
        return verdict.error
    if not verdict.table:
        return "no targets found"
    if verdict.best is None:
        return f"no data | {perfdata(verdict)}"
    return "best rtt {:.0f} ms (for {}) | {}".format(
        verdict.best.rtt * 1e3, best(verdict.best.address), perfdata(verdict)
    )


def render(verdict: Verdict) -> str:
    lines: List[str] = [f"{PLUGIN_NAME}: {verdict.status} - {summary(verdict)}"]
    lines.extend(f"warning: {message}" for message in verdict.messages)
    return "\n".join(lines)
