"""
Regex post-processing toolkit used by the regex node.

Rules are stored per owner as RegexScript records in the JavaScript-style
"/pattern/flags" notation used by character-card tooling. The processor
translates them to Python ``re`` patterns:

- flags: ``g`` replaces every match (otherwise only the first), ``i``, ``m``
  and ``s`` map to the matching ``re`` flags
- named groups ``(?<name>...)`` become ``(?P<name>...)``
- replacement strings use ``$1``, ``$<name>``, ``$&`` and ``$$``

A rule whose pattern does not compile is retried without a trailing
backslash or slash wrapper, then applied as a literal string.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from nodeflow.runner.tool_registry import tool_method

logger = logging.getLogger(__name__)

# Placeholder rule shipped with imported cards; matches everything and deletes it
DEFAULT_DISABLED_PATTERN = "/[\\s\\S]*/gm"
UNPLACED = 999

_SLASH_FORMAT = re.compile(r"^/(.*)/([gimsuy]*)$", re.DOTALL)
_JS_NAMED_GROUP = re.compile(r"\(\?<(?=[A-Za-z_])")
_JS_REPLACEMENT_TOKEN = re.compile(r"\$(\$|&|\d{1,2}|<[A-Za-z_][A-Za-z0-9_]*>)")

_RESPONSE_TAGS = ("next_prompts", "events", "event", "think", "thinking")


class RegexScript(BaseModel):
    """One find/replace rule."""

    script_key: str = Field(alias="scriptKey")
    id: str | None = None
    script_name: str = Field(default="", alias="scriptName")
    find_regex: str = Field(alias="findRegex")
    replace_string: str = Field(default="", alias="replaceString")
    trim_strings: list[str] = Field(default_factory=list, alias="trimStrings")
    placement: list[int] = Field(default_factory=list)
    disabled: bool = False

    model_config = {"populate_by_name": True, "extra": "allow"}

    @property
    def order(self) -> int:
        return self.placement[0] if self.placement else UNPLACED

    def is_active(self) -> bool:
        placeholder = self.find_regex == DEFAULT_DISABLED_PATTERN and self.replace_string == ""
        return not self.disabled and not placeholder


class RegexSettings(BaseModel):
    """Per-owner switches for rule application."""

    enabled: bool = True
    apply_to_prompt: bool = Field(default=True, alias="applyToPrompt")
    apply_to_response: bool = Field(default=True, alias="applyToResponse")

    model_config = {"populate_by_name": True, "extra": "allow"}


@dataclass
class RegexReplacementResult:
    original_text: str
    replaced_text: str
    applied_scripts: list[str] = field(default_factory=list)
    success: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "originalText": self.original_text,
            "replacedText": self.replaced_text,
            "appliedScripts": list(self.applied_scripts),
            "success": self.success,
        }


@runtime_checkable
class RegexScriptStore(Protocol):
    """Storage of rules and settings, owned by the surrounding application."""

    async def get_scripts(self, owner_id: str) -> list[RegexScript]: ...

    async def get_settings(self, owner_id: str) -> RegexSettings: ...


class InMemoryRegexScriptStore:
    """RegexScriptStore backed by dicts. Scripts under owner "global" apply to every owner."""

    GLOBAL_OWNER = "global"

    def __init__(self):
        self._scripts: dict[str, list[RegexScript]] = {}
        self._settings: dict[str, RegexSettings] = {}

    def add_script(self, owner_id: str, script: RegexScript | dict[str, Any]) -> RegexScript:
        if isinstance(script, dict):
            script = RegexScript.model_validate(script)
        self._scripts.setdefault(owner_id, []).append(script)
        return script

    def set_settings(self, owner_id: str, settings: RegexSettings | dict[str, Any]) -> None:
        if isinstance(settings, dict):
            settings = RegexSettings.model_validate(settings)
        self._settings[owner_id] = settings

    async def get_scripts(self, owner_id: str) -> list[RegexScript]:
        scripts = list(self._scripts.get(self.GLOBAL_OWNER, []))
        if owner_id != self.GLOBAL_OWNER:
            scripts += self._scripts.get(owner_id, [])
        return scripts

    async def get_settings(self, owner_id: str) -> RegexSettings:
        return self._settings.get(owner_id, RegexSettings())


# ---------------------------------------------------------------------------
# Pattern translation
# ---------------------------------------------------------------------------


def _flags_from(js_flags: str) -> tuple[int, bool]:
    flags = 0
    if "i" in js_flags:
        flags |= re.IGNORECASE
    if "m" in js_flags:
        flags |= re.MULTILINE
    if "s" in js_flags:
        flags |= re.DOTALL
    return flags, "g" in js_flags


def compile_script_pattern(find_regex: str) -> tuple[re.Pattern, bool]:
    """
    Compile a stored pattern. Returns the pattern and whether it replaces all matches.

    Bare patterns (without slashes) replace every match.
    """
    match = _SLASH_FORMAT.match(find_regex)
    if match:
        body, js_flags = match.group(1), match.group(2) or "g"
    else:
        body, js_flags = find_regex, "g"
    flags, global_replace = _flags_from(js_flags)

    try:
        return re.compile(_JS_NAMED_GROUP.sub("(?P<", body), flags), global_replace
    except re.error:
        pass

    safe = body[:-1] if body.endswith("\\") else body
    try:
        pattern = re.compile(_JS_NAMED_GROUP.sub("(?P<", safe), flags)
        logger.warning(f"Corrected invalid regex '{find_regex}' to '{safe}'")
        return pattern, global_replace
    except re.error:
        logger.warning(f"Treating invalid regex '{find_regex}' as a literal string")
        return re.compile(re.escape(find_regex)), True


def _make_replacer(template: str, trim_strings: list[str]):
    def replace(match: re.Match) -> str:
        matched = match.group(0)
        for trim in trim_strings:
            if trim:
                matched = matched.replace(trim, "")

        def token(m: re.Match) -> str:
            ref = m.group(1)
            if ref == "$":
                return "$"
            if ref == "&":
                return matched
            if ref.startswith("<"):
                try:
                    return match.group(ref[1:-1]) or ""
                except IndexError:
                    return m.group(0)
            index = int(ref)
            if index <= (match.re.groups or 0):
                return match.group(index) or ""
            return m.group(0)

        return _JS_REPLACEMENT_TOKEN.sub(token, template)

    return replace


class RegexProcessor:
    """Applies an ordered set of RegexScripts to text."""

    def apply(self, text: str, scripts: list[RegexScript]) -> RegexReplacementResult:
        result = RegexReplacementResult(original_text=text, replaced_text=text)
        active = sorted((s for s in scripts if s.is_active()), key=lambda s: s.order)

        processed = text
        for script in active:
            if not script.find_regex:
                continue
            pattern, global_replace = compile_script_pattern(script.find_regex)
            replacer = _make_replacer(script.replace_string, script.trim_strings)
            updated = pattern.sub(replacer, processed, count=0 if global_replace else 1)
            if updated != processed:
                result.applied_scripts.append(script.script_key)
                result.success = True
                processed = updated

        result.replaced_text = processed
        if result.applied_scripts:
            logger.debug(f"Applied regex scripts: {', '.join(result.applied_scripts)}")
        return result


def parse_llm_response(response: str) -> dict[str, Any]:
    """
    Split a tagged model response into its parts.

    Recognizes an optional ``<output>`` wrapper, a ``<next_prompts>`` list,
    ``<events>``/``<event>`` and think blocks. Returns mainContent,
    nextPrompts and event.
    """

    def strip_tags(text: str, tags: tuple[str, ...]) -> str:
        for tag in tags:
            text = re.sub(rf"\n*\s*<{tag}>[\s\S]*?</{tag}>\s*\n*", "", text)
        return text.strip()

    def prompt_lines(block: str, bullets_only: bool) -> list[str]:
        lines = [line.strip() for line in block.strip().split("\n")]
        if bullets_only:
            lines = [line for line in lines if re.match(r"^[-*]|^\[", line)]
        else:
            lines = [line for line in lines if line]
        cleaned = []
        for line in lines:
            line = re.sub(r"^[-*]\s*", "", line)
            line = re.sub(r"^\s*\[|\]\s*$", "", line)
            cleaned.append(line.strip())
        return cleaned

    next_prompts: list[str] = []
    event = ""
    output = re.search(r"<output>([\s\S]*?)</output>", response)

    if output:
        body = output.group(1)
        prompts = re.search(r"<next_prompts>([\s\S]*?)</next_prompts>", body)
        if prompts:
            next_prompts = prompt_lines(prompts.group(1), bullets_only=False)
        events = re.search(r"<events>([\s\S]*?)</events>", body)
        if events:
            event = re.sub(r"\[|\]", "", events.group(1).strip())
        main = strip_tags(body, ("next_prompts", "events"))
    else:
        main = strip_tags(response, _RESPONSE_TAGS)
        prompts = re.search(r"<next_prompts>([\s\S]*?)</next_prompts>", response)
        if prompts:
            next_prompts = prompt_lines(prompts.group(1), bullets_only=True)
        single = re.search(r"<event>([\s\S]*?)</event>", response)
        event = single.group(1).strip() if single else ""

    return {"mainContent": main, "nextPrompts": next_prompts, "event": event}


class RegexToolkit:
    """Tools applying an owner's regex scripts to prompts, messages and responses."""

    def __init__(
        self, store: RegexScriptStore | None = None, processor: RegexProcessor | None = None
    ):
        self.store = store or InMemoryRegexScriptStore()
        self.processor = processor or RegexProcessor()

    async def _run(self, text: str, owner_id: str, target: str) -> RegexReplacementResult:
        settings = await self.store.get_settings(owner_id)
        enabled = settings.enabled
        if target == "prompt":
            enabled = enabled and settings.apply_to_prompt
        elif target == "response":
            enabled = enabled and settings.apply_to_response
        if not enabled:
            return RegexReplacementResult(original_text=text, replaced_text=text)
        scripts = await self.store.get_scripts(owner_id)
        return self.processor.apply(text, scripts)

    @tool_method(description="Apply the owner's scripts to a free-text blob")
    async def process_full_context(self, text: str, owner_id: str) -> dict[str, Any]:
        return (await self._run(text, owner_id, "context")).to_dict()

    @tool_method(description="Apply the owner's scripts to a model response")
    async def process_response(self, text: str, owner_id: str) -> dict[str, Any]:
        return (await self._run(text, owner_id, "response")).to_dict()

    @tool_method(description="Apply the owner's scripts to the content of every message")
    async def process_chat_messages(
        self, messages: list[dict[str, Any]], owner_id: str
    ) -> list[dict[str, Any]]:
        processed = []
        for message in messages:
            content = message.get("content")
            if isinstance(content, str) and content:
                target = "response" if message.get("role") == "assistant" else "prompt"
                result = await self._run(content, owner_id, target)
                message = {**message, "content": result.replaced_text}
            processed.append(message)
        return processed

    @tool_method(description="Apply the owner's scripts to a system prompt")
    async def process_system_prompt(self, system_prompt: str, owner_id: str) -> str:
        return (await self._run(system_prompt, owner_id, "prompt")).replaced_text

    @tool_method(description="Apply the owner's scripts to a user message")
    async def process_user_message(self, user_message: str, owner_id: str) -> str:
        return (await self._run(user_message, owner_id, "prompt")).replaced_text

    @tool_method(description="Process system prompt, user message and messages together")
    async def process_conversation(
        self,
        system_prompt: str,
        user_message: str,
        messages: list[dict[str, Any]],
        owner_id: str,
    ) -> dict[str, Any]:
        system, user, history = await asyncio.gather(
            self.process_system_prompt(system_prompt, owner_id),
            self.process_user_message(user_message, owner_id),
            self.process_chat_messages(messages, owner_id),
        )
        return {"systemPrompt": system, "userMessage": user, "messages": history}

    @tool_method(description="Split a tagged model response into content, prompts and event")
    def parse_llm_response(self, response: str) -> dict[str, Any]:
        return parse_llm_response(response)
