from __future__ import annotations

import math
import re
from collections import deque
from typing import Deque, Dict, List, Mapping, Optional, Sequence

from g4recorder.logger import get_logger
from g4recorder.models import (
    BufferGroup,
    CaptureMode,
    Job,
    KeyEvent,
    MouseButton,
    NormalizedEvent,
    PointerEvent,
    Reference,
    Rule,
    RuleContext,
)

logger = get_logger(__name__)


class Plugins:
    """Plugin names understood by the G4 engine. Closed set; do not derive."""

    CLICK = "InvokeClick"
    MIDDLE_CLICK = "InvokeMiddleClick"
    CONTEXT_CLICK = "InvokeContextClick"
    USER32_CLICK = "InvokeUser32Click"
    USER32_MIDDLE_CLICK = "InvokeUser32MiddleClick"
    USER32_CONTEXT_CLICK = "InvokeUser32ContextClick"

    KEYBOARD_KEY = "SendKeyboardKey"
    KEYS = "SendKeys"
    USER32_KEYBOARD_KEY = "SendUser32KeyboardKey"
    USER32_KEYS = "SendUser32Keys"

    WAIT = "WaitFlow"
    CLOSE_SESSION = "CloseBrowser"
    NONE = "None"


_CLICK_PLUGINS: Dict[bool, Dict[MouseButton, str]] = {
    True: {
        MouseButton.LEFT: Plugins.CLICK,
        MouseButton.MIDDLE: Plugins.MIDDLE_CLICK,
        MouseButton.RIGHT: Plugins.CONTEXT_CLICK,
    },
    False: {
        MouseButton.LEFT: Plugins.USER32_CLICK,
        MouseButton.MIDDLE: Plugins.USER32_MIDDLE_CLICK,
        MouseButton.RIGHT: Plugins.USER32_CONTEXT_CLICK,
    },
}

# Keys that get a dedicated single-key action instead of being typed.
SPECIAL_KEYS: Mapping[str, str] = {
    "backspace": "Backspace",
    "caps lock": "Caps Lock",
    "delete": "Delete",
    "down": "Down",
    "end": "End",
    "enter": "Enter",
    "esc": "Esc",
    "escape": "Esc",
    "f1": "F1",
    "f2": "F2",
    "f3": "F3",
    "f4": "F4",
    "f5": "F5",
    "f6": "F6",
    "f7": "F7",
    "f8": "F8",
    "f9": "F9",
    "f10": "F10",
    "f11": "F11",
    "f12": "F12",
    "home": "Home",
    "insert": "Insert",
    "left": "Left",
    "num del": "Num Del",
    "num lock": "Num Lock",
    "page down": "Page Down",
    "page up": "Page Up",
    "pause": "Pause",
    "prnt scrn": "Prnt Scrn",
    "right": "Right",
    "scroll lock": "Scroll Lock",
    "tab": "Tab",
    "up": "Up",
}

_SPACE = re.compile(r"^space$", re.IGNORECASE)

CLOSE_SESSION_RULE = Rule(plugin_name=Plugins.CLOSE_SESSION)


def format_argument(**params) -> str:
    """format_argument(Key='Enter') -> '{{$ --Key:Enter}}'"""
    return "{{$ " + " ".join(f"--{k}:{_fmt(v)}" for k, v in params.items()) + "}}"


def _fmt(value) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def think_time_rule(duration: int) -> Rule:
    seconds = duration / 1000
    return Rule(
        plugin_name=Plugins.WAIT,
        argument=format_argument(Timeout=duration),
        capabilities={"displayName": f"Think Time ({seconds:.2f} seconds)"},
    )


def apply_think_time(rules: Sequence[Rule], min_think_time: int, max_think_time: int) -> List[Rule]:
    """
    Insert a wait between two timestamped rules whose gap exceeds
    min_think_time, capped at max_think_time. Rules without a timestamp
    (the closing rule) never get a wait in front of them.
    """
    if len(rules) < 2:
        return list(rules)

    out: List[Rule] = []
    for current, following in zip(rules, rules[1:]):
        out.append(current)
        t1, t2 = current.timestamp, following.timestamp
        if t1 is None or t2 is None or not (math.isfinite(t1) and math.isfinite(t2)):
            continue
        delta = t2 - t1
        if delta > min_think_time:
            out.append(think_time_rule(min(delta, max_think_time)))
    out.append(rules[-1])
    return out


class RuleCompiler:
    """
    Compiles one BufferGroup into a Job.

    Pointer events map 1:1 to click rules. Consecutive keyboard events are
    collapsed into a single SendKeys-style rule, except that allow-listed
    keys (Enter, Tab, F-keys, arrows...) end the run and get their own rule.
    """

    def __init__(self, special_keys: Mapping[str, str] = SPECIAL_KEYS):
        self.special_keys = {k.lower(): v for k, v in special_keys.items()}

    def compile(self, group: BufferGroup, mode: CaptureMode = "standard") -> Job:
        machine = group.machine_name
        job = Job(
            reference=Reference(
                id=f"recorded-actions-job-{machine.lower()}",
                name=f"Recorded Actions Job ({machine})",
                description=f"Job to execute all recorded actions from machine {machine}.",
            ),
            driver_parameters={},
        )

        rules: List[Rule] = []
        buffer: Deque[NormalizedEvent] = deque(group.events)
        while buffer:
            ev = buffer.popleft()
            if isinstance(ev.event, PointerEvent):
                rules.append(self.pointer_rule(mode, ev))
                continue
            rules.extend(self.keyboard_rules(mode, ev, buffer))

        # Every job closes its session no matter what was recorded.
        rules.append(CLOSE_SESSION_RULE)

        settings = group.think_time_settings
        if settings is not None and settings.enabled:
            rules = apply_think_time(rules, settings.min_think_time, settings.max_think_time)

        job.rules = rules
        logger.debug("Compiled group %d (%s) into %d rules", group.id, machine, len(rules))
        return job

    # -------- pointer --------

    def pointer_rule(self, mode: CaptureMode, ev: NormalizedEvent) -> Rule:
        raw = ev.event
        plugin = _CLICK_PLUGINS[mode == "standard"].get(raw.button)
        if plugin is None:
            logger.warning("Unresolved mouse button in event %r at %s; emitting no-op", raw.event, raw.timestamp)
            plugin = Plugins.NONE

        context = RuleContext(timestamp=raw.timestamp, x=raw.x, y=raw.y)
        if mode == "coordinate":
            return Rule(plugin_name=plugin, argument=format_argument(X=raw.x, Y=raw.y), context=context)
        return Rule(plugin_name=plugin, on_element=ev.locator, context=context)

    # -------- keyboard --------

    def keyboard_rules(
        self,
        mode: CaptureMode,
        first: NormalizedEvent,
        buffer: Deque[NormalizedEvent],
    ) -> List[Rule]:
        """
        Consume the keyboard run that starts at `first`, peeking at `buffer`
        to decide whether the run continues.
        """
        keys: List[str] = []
        last: Optional[NormalizedEvent] = None
        ev = first
        while True:
            key = ev.event.key
            if _SPACE.match(key):
                key = " "

            special = self.special_keys.get(key.lower())
            if special is not None:
                rules = []
                if keys:
                    rules.append(self._flush(mode, keys, last))
                rules.append(self._key_rule(mode, special, ev))
                return rules

            # Non allow-listed key names (Shift, LControlKey...) are dropped.
            if len(key) == 1:
                keys.append(key)
                last = ev

            if not buffer or not isinstance(buffer[0].event, KeyEvent):
                break
            ev = buffer.popleft()

        return [self._flush(mode, keys, last)] if keys else []

    def _flush(self, mode: CaptureMode, keys: List[str], ev: NormalizedEvent) -> Rule:
        plugin = Plugins.KEYS if mode == "standard" else Plugins.USER32_KEYS
        return self._keyboard_rule(mode, plugin, format_argument(Keys="".join(keys)), ev)

    def _key_rule(self, mode: CaptureMode, key: str, ev: NormalizedEvent) -> Rule:
        plugin = Plugins.KEYBOARD_KEY if mode == "standard" else Plugins.USER32_KEYBOARD_KEY
        return self._keyboard_rule(mode, plugin, format_argument(Key=key), ev)

    @staticmethod
    def _keyboard_rule(mode: CaptureMode, plugin: str, argument: str, ev: NormalizedEvent) -> Rule:
        return Rule(
            plugin_name=plugin,
            on_element=None if mode == "coordinate" else ev.locator,
            argument=argument,
            context=RuleContext(timestamp=ev.timestamp),
        )
