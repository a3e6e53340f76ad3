"""
Triggers: the rules that decide whether a target is outdated.

By default a target rebuilds when its command, its dependencies, or its
files change. A :class:`Trigger` switches those checks on or off and adds
two custom ones:

* ``condition`` - a boolean, or a command evaluated before the run,
  whose truth forces (or, in blacklist mode, prevents) a build;
* ``change`` - a command whose *value* is fingerprinted; the target
  rebuilds when the fingerprint differs from the one recorded last time.

Example::

    from remake import plan, target, trigger

    p = plan(
        data=target("load(file_in('data.csv'))"),
        stamp=target("fetch()", trigger=trigger(change="remote_timestamp()")),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any


class TriggerMode(str, Enum):
    """How ``condition`` combines with the other triggers."""

    WHITELIST = "whitelist"  # true condition forces a build
    BLACKLIST = "blacklist"  # false condition prevents a build
    CONDITION = "condition"  # condition alone decides


@dataclass(frozen=True)
class Trigger:
    """
    Per-target outdatedness rules.

    Attributes:
        command: Rebuild when the standardized command changes.
        depend: Rebuild when a dependency fingerprint changes.
        file: Rebuild when input or output files change or go missing.
        condition: ``bool`` or command text evaluated in the environment.
        change: ``None`` or command text whose value is fingerprinted.
        mode: How ``condition`` combines with the other triggers.
    """

    command: bool = True
    depend: bool = True
    file: bool = True
    condition: bool | str = False
    change: str | None = None
    mode: TriggerMode = TriggerMode.WHITELIST

    def __post_init__(self):
        object.__setattr__(self, "mode", TriggerMode(self.mode))
        for name in ("command", "depend", "file"):
            if not isinstance(getattr(self, name), bool):
                raise TypeError(f"trigger {name} must be a bool, got {getattr(self, name)!r}")
        if not isinstance(self.condition, bool | str):
            raise TypeError(f"trigger condition must be a bool or command text, got {self.condition!r}")
        if self.change is not None and not isinstance(self.change, str):
            raise TypeError(f"trigger change must be command text, got {self.change!r}")

    @classmethod
    def always(cls) -> Trigger:
        """Build on every run."""
        return cls(condition=True, mode=TriggerMode.WHITELIST)

    @classmethod
    def never(cls) -> Trigger:
        """Build only when the target has never been built."""
        return cls(command=False, depend=False, file=False, condition=False, mode=TriggerMode.WHITELIST)

    def with_(self, **changes: Any) -> Trigger:
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        return {
            "command": self.command,
            "depend": self.depend,
            "file": self.file,
            "condition": self.condition,
            "change": self.change,
            "mode": self.mode.value,
        }


DEFAULT_TRIGGER = Trigger()


def trigger(
    command: bool = True,
    depend: bool = True,
    file: bool = True,
    condition: bool | str = False,
    change: str | None = None,
    mode: TriggerMode | str = TriggerMode.WHITELIST,
) -> Trigger:
    """Build a :class:`Trigger` (functional spelling for plans)."""
    return Trigger(
        command=command,
        depend=depend,
        file=file,
        condition=condition,
        change=change,
        mode=TriggerMode(mode),
    )


__all__ = ["Trigger", "TriggerMode", "DEFAULT_TRIGGER", "trigger"]
