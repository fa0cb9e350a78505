"""Turn raw adb output into typed facts.

Pure functions without side effects.  Malformed input fails closed:
either with :class:`ParseError` or with the conservative answer
(``parse_power`` treats anything unexpected as "off").

Example focused-window line::

    mFocusedApp=AppWindowToken{e3cc25 token=Token{f7a281c ActivityRecord{eb72d8f
    u0 org.droidtv.playtv/.PlayTvActivity t30}}}
"""

from __future__ import annotations

from collections.abc import Iterable

from androidtv2mqtt._errors import ParseError
from androidtv2mqtt._models import LauncherToken, ProductIdentity


def parse_power(text: str) -> bool:
    """True only when the trimmed output is exactly ``"true"``."""
    return text.strip() == "true"


def parse_product_info(text: str) -> ProductIdentity:
    """Parse the model / manufacturer / serial ``getprop`` triple.

    Fields are positional, one per line, so blank lines are kept.  A
    missing or blank serial is returned as ``None``; the caller decides
    what to fall back to.

    Raises:
        ParseError: The model line is blank.
    """
    lines = [line.strip() for line in text.split("\n")]
    if not lines[0]:
        msg = f"Product information has no model: {text!r}"
        raise ParseError(msg)
    fields = (lines + ["", ""])[:3]
    model, manufacturer, serial = fields
    return ProductIdentity(
        model=model,
        manufacturer=manufacturer,
        serial=serial or None,
    )


def parse_focused_source(
    text: str,
    launcher_activities: Iterable[str],
) -> str | LauncherToken:
    """Extract the focused application from a ``mFocusedApp`` line.

    The package is the word directly before the first ``/``; the
    activity class is the word directly after it.  When the class
    contains any of *launcher_activities*, the home screen is showing.

    Returns:
        :attr:`LauncherToken.LAUNCHER` or the package name.

    Raises:
        ParseError: The line lacks the ``package/class`` structure.
    """
    head, slash, tail = text.strip().partition("/")
    if not slash:
        msg = f"No activity in focused-window output: {text!r}"
        raise ParseError(msg)

    head_words = head.split()
    tail_words = tail.split()
    if not head_words or not tail_words:
        msg = f"Incomplete activity in focused-window output: {text!r}"
        raise ParseError(msg)

    package = head_words[-1]
    activity = tail_words[0]
    if any(name in activity for name in launcher_activities):
        return LauncherToken.LAUNCHER
    return package


def parse_device_list(text: str) -> dict[str, str]:
    """Parse ``adb devices`` output into ``{serial: state}``.

    Header and daemon start-up lines (``* daemon ...``) are skipped.
    """
    devices: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith(("List of devices", "*")):
            continue
        serial, *rest = line.split()
        devices[serial] = rest[0] if rest else "unknown"
    return devices
