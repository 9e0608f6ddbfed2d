"""
Sandboxed agent invocation for Cobbler.

This module provides:
- Agent protocol: check() plus run(prompt, workdir, timeout)
- PodmanClaudeAgent: runs the Claude CLI inside a podman container with
  the workspace mounted at the same path and the prompt on stdin
- Parsers for Claude's stream-json output (text, token usage, cost)
- extract_yaml_block for pulling the first fenced YAML block from a reply

The contract is binary: zero exit is success, a nonzero exit raises
AgentInvocationError and exceeding the wall-clock budget raises
AgentTimeoutError. No partial state is guaranteed on failure.
"""

from __future__ import annotations

import json
import shutil
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional, Protocol

from cobbler_orchestrator.errors import (
    AgentErrorType,
    AgentInvocationError,
    AgentTimeoutError,
    AgentUnavailableError,
    ErrorClassifier,
)
from cobbler_orchestrator.models import AgentResult, TokenUsage

if TYPE_CHECKING:
    from cobbler_orchestrator.config import CobblerConfig
    from cobbler_orchestrator.logger import CobblerLogger


class Agent(Protocol):
    """Sandboxed coding agent."""

    def check(self) -> None: ...

    def run(self, prompt: str, workdir: Path, timeout: int) -> AgentResult: ...


def _json_lines(output: str) -> list[dict[str, Any]]:
    events = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            event = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(event, dict):
            events.append(event)
    return events


def extract_text(output: str) -> str:
    """
    Concatenate the text blocks of assistant messages in stream-json output.

    Falls back to the final result event's text, then to the raw output
    when it is not stream-json at all.
    """
    events = _json_lines(output)
    if not events:
        return output

    parts = []
    for event in events:
        if event.get("type") != "assistant":
            continue
        for block in (event.get("message") or {}).get("content") or []:
            if isinstance(block, dict) and block.get("type") == "text":
                parts.append(block.get("text", ""))
    if parts:
        return "".join(parts)

    for event in reversed(events):
        if event.get("type") == "result":
            return str(event.get("result", ""))
    return ""


def parse_usage(output: str) -> tuple[TokenUsage, float]:
    """Token usage and cost from the last "result" event; zeros if absent."""
    for event in reversed(_json_lines(output)):
        if event.get("type") != "result":
            continue
        usage = event.get("usage") or {}
        tokens = TokenUsage(
            input=int(usage.get("input_tokens", 0)),
            output=int(usage.get("output_tokens", 0)),
            cache_creation=int(usage.get("cache_creation_input_tokens", 0)),
            cache_read=int(usage.get("cache_read_input_tokens", 0)),
        )
        return tokens, float(event.get("total_cost_usd", 0.0))
    return TokenUsage(), 0.0


class YamlBlockNotFound(ValueError):
    """Raised when a reply has no fenced YAML block."""
    pass


def extract_yaml_block(text: str) -> str:
    """
    Return the content of the first ```yaml (or ```yml) fenced block.

    Raises:
        YamlBlockNotFound: If there is no opening fence or it is never closed.
    """
    start = -1
    marker_len = 0
    for marker in ("```yaml\n", "```yml\n", "```yaml\r\n", "```yml\r\n"):
        idx = text.find(marker)
        if idx >= 0 and (start < 0 or idx < start):
            start = idx
            marker_len = len(marker)
    if start < 0:
        raise YamlBlockNotFound("no ```yaml fenced code block found in agent output")

    content = text[start + marker_len:]
    end = content.find("\n```")
    if end < 0:
        end = content.find("```")
    if end < 0:
        raise YamlBlockNotFound("unclosed ```yaml fenced code block")
    return content[:end].strip()


@dataclass
class PodmanClaudeAgent:
    """
    Agent adapter that runs `claude` inside a podman container.

    The working directory is mounted at the same path inside the container
    and the credentials file is mounted read-only when present.
    """
    config: CobblerConfig
    logger: Optional[CobblerLogger] = None

    def _log(self, event_type: str, data: Optional[dict] = None, level: str = "info") -> None:
        """Log an event if logger is configured."""
        if self.logger:
            log_data = {"component": "agent"}
            if data:
                log_data.update(data)
            self.logger.log(event_type, log_data, level=level)

    def check(self) -> None:
        """
        Validate that the sandbox runtime and credentials are usable.

        Raises:
            AgentUnavailableError: If podman, the image or the credentials are missing.
        """
        podman = self.config.podman.binary
        if shutil.which(podman) is None:
            raise AgentUnavailableError(f"{podman} not found on PATH", AgentErrorType.CLI_NOT_FOUND)

        image = self.config.podman.image
        result = subprocess.run(
            [podman, "image", "exists", image],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0:
            raise AgentUnavailableError(
                f"container image {image} not found; build it before running",
                AgentErrorType.CLI_NOT_FOUND,
            )

        credentials = self.config.credentials_path
        if not credentials.is_file():
            raise AgentUnavailableError(f"claude credentials not found at {credentials}")

    def build_command(self, workdir: Path) -> list[str]:
        workdir_str = str(Path(workdir).absolute())
        cmd = [
            self.config.podman.binary, "run", "--rm", "-i",
            "-v", f"{workdir_str}:{workdir_str}",
            "-w", workdir_str,
        ]
        credentials = self.config.credentials_path.absolute()
        if credentials.is_file():
            cmd.extend(["-v", f"{credentials}:{self.config.claude.container_credentials_path}:ro"])
        cmd.extend(self.config.podman.extra_args)
        cmd.append(self.config.podman.image)
        cmd.append(self.config.claude.binary)
        cmd.extend(self.config.claude.args)
        return cmd

    def run(self, prompt: str, workdir: Path, timeout: int) -> AgentResult:
        """
        Run the agent with the prompt on stdin.

        Raises:
            AgentInvocationError: If the container exits nonzero.
            AgentTimeoutError: If the wall-clock budget is exceeded.
        """
        cmd = self.build_command(workdir)
        self._log("agent_start", {
            "prompt_length": len(prompt),
            "workdir": str(workdir),
            "timeout": timeout,
        })

        started = time.monotonic()
        try:
            proc = subprocess.run(
                cmd,
                input=prompt,
                capture_output=True,
                text=True,
                cwd=workdir,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            self._log("agent_timeout", {"timeout_seconds": timeout}, level="error")
            raise AgentTimeoutError(timeout, target=str(workdir))
        except FileNotFoundError as e:
            raise AgentUnavailableError(str(e), AgentErrorType.CLI_NOT_FOUND)
        duration = time.monotonic() - started

        if proc.returncode != 0:
            error_type = ErrorClassifier.classify(proc.stderr, proc.stdout, proc.returncode)
            self._log("agent_error", {
                "returncode": proc.returncode,
                "error_type": error_type.name,
                "stderr": proc.stderr[:500] if proc.stderr else "",
            }, level="error")
            raise AgentInvocationError(
                f"agent exited with code {proc.returncode}",
                error_type=error_type,
                stderr=proc.stderr,
                returncode=proc.returncode,
                target=str(workdir),
            )

        tokens, cost = parse_usage(proc.stdout)
        result = AgentResult(
            text=extract_text(proc.stdout),
            tokens=tokens,
            cost_usd=cost,
            duration_s=duration,
            raw_output=proc.stdout,
        )
        self._log("agent_complete", {
            "duration_s": round(duration, 1),
            "cost_usd": cost,
            "input_tokens": tokens.input,
            "output_tokens": tokens.output,
        })
        return result
