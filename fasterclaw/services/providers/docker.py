"""
Docker provider - local OpenClaw containers for development.

Drives the ``docker`` CLI through ``asyncio.create_subprocess_exec`` with an
argument list, so nothing user-supplied ever reaches a host shell.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import secrets
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from fasterclaw.db.models import InstanceStatus, ProviderKind
from fasterclaw.services.providers.base import (
    ChatReply,
    CreateInstanceConfig,
    InstanceProvider,
    ProviderError,
    ProviderResult,
    ProviderTarget,
    UploadResult,
)
from fasterclaw.services.providers.bootstrap import (
    GATEWAY_PORT,
    SOUL_FILE,
    STARTUP_SCRIPT,
    instance_env,
    integration_section,
    slugify,
    upload_path,
)

logger = logging.getLogger(__name__)

CHAT_GRACE_SECONDS = 30
SUCCESS_MARKER = '"payloads"'
DEFAULT_TIMEOUT = 60

_STATE_MAP = {
    "running": InstanceStatus.RUNNING,
    "created": InstanceStatus.STARTING,
    "restarting": InstanceStatus.STARTING,
    "paused": InstanceStatus.STOPPED,
    "exited": InstanceStatus.STOPPED,
    "dead": InstanceStatus.STOPPED,
    "removing": InstanceStatus.STOPPING,
    "removed": InstanceStatus.DELETED,
}


def map_docker_state(state: str) -> str:
    return _STATE_MAP.get(state.strip().strip("'\""), InstanceStatus.UNKNOWN).value


@dataclass
class CommandResult:
    returncode: int
    stdout: str
    stderr: str
    truncated: bool = False
    # Killed at the deadline; stdout and stderr hold what arrived before that
    timed_out: bool = False


async def _read_bounded(stream: Optional[asyncio.StreamReader], limit: int, sink: bytearray) -> bool:
    """Drain ``stream`` into ``sink``, keeping at most ``limit`` bytes. True if anything was dropped."""
    if stream is None:
        return False
    truncated = False
    while True:
        chunk = await stream.read(65536)
        if not chunk:
            break
        room = limit - len(sink)
        if room > 0:
            sink.extend(chunk[:room])
        if len(chunk) > room:
            truncated = True
    return truncated


def _decode(data: bytearray) -> str:
    return bytes(data).decode("utf-8", errors="replace")


async def run_docker(
    args: List[str],
    stdin: Optional[bytes] = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_output: int = 10 * 1024 * 1024,
) -> CommandResult:
    """Run ``docker <args>``; kill the process if it outlives ``timeout``.

    A timeout is reported through ``CommandResult.timed_out`` rather than
    raised, so callers can still inspect the partial output.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            "docker",
            *args,
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        raise ProviderError("Docker is not available. Please ensure Docker is running.") from e

    out, err = bytearray(), bytearray()

    async def _communicate() -> bool:
        if stdin is not None and proc.stdin is not None:
            proc.stdin.write(stdin)
            await proc.stdin.drain()
            proc.stdin.close()
        out_truncated, _ = await asyncio.gather(
            _read_bounded(proc.stdout, max_output, out),
            _read_bounded(proc.stderr, max_output, err),
        )
        await proc.wait()
        return out_truncated

    try:
        truncated = await asyncio.wait_for(_communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("docker %s timed out after %ss, killing it", args[0], int(timeout))
        try:
            proc.kill()
        except ProcessLookupError:
            # Exited on its own in the meantime
            pass
        await proc.wait()
        return CommandResult(returncode=-1, stdout=_decode(out), stderr=_decode(err), timed_out=True)

    return CommandResult(
        returncode=proc.returncode if proc.returncode is not None else -1,
        stdout=_decode(out),
        stderr=_decode(err),
        truncated=truncated,
    )


DockerRunner = Callable[..., Awaitable[CommandResult]]


def parse_agent_output(stdout: str) -> str:
    """Extract reply text from ``openclaw agent --json`` output.

    stdout may carry log lines before the JSON document.
    """
    start = stdout.find("{")
    if start < 0:
        raise ProviderError("OpenClaw returned no JSON output")
    try:
        data, _ = json.JSONDecoder().raw_decode(stdout[start:])
    except json.JSONDecodeError as e:
        raise ProviderError("OpenClaw returned malformed JSON") from e

    payloads = data.get("payloads")
    if payloads is None and isinstance(data.get("result"), dict):
        payloads = data["result"].get("payloads")
    texts = [p.get("text", "") for p in payloads or [] if isinstance(p, dict) and p.get("text")]
    return "\n\n".join(texts)


class DockerProvider(InstanceProvider):
    name = ProviderKind.DOCKER.value

    def __init__(
        self,
        image: str,
        chat_timeout: int = 120,
        max_output_bytes: int = 10 * 1024 * 1024,
        runner: Optional[DockerRunner] = None,
    ):
        self.image = image
        self.chat_timeout = chat_timeout
        self.max_output_bytes = max_output_bytes
        self._run = runner or run_docker

    @staticmethod
    def _raise_on_timeout(result: CommandResult, kwargs: Dict[str, Any]) -> None:
        if result.timed_out:
            raise ProviderError(f"Docker command timed out after {int(kwargs.get('timeout', DEFAULT_TIMEOUT))}s")

    async def _docker(self, args: List[str], **kwargs: Any) -> str:
        result = await self._run(args, **kwargs)
        self._raise_on_timeout(result, kwargs)
        if result.returncode != 0:
            logger.warning("docker %s failed (%s): %s", args[0], result.returncode, result.stderr.strip()[:500])
            raise ProviderError(f"Docker command failed: {result.stderr.strip()[:200] or 'unknown error'}")
        return result.stdout.strip()

    async def _ensure_image(self) -> None:
        result = await self._run(["image", "inspect", self.image])
        self._raise_on_timeout(result, {})
        if result.returncode != 0:
            logger.info("Pulling %s...", self.image)
            await self._docker(["pull", self.image], timeout=600)

    async def create_instance(self, config: CreateInstanceConfig) -> ProviderResult:
        await self._docker(["version", "--format", "{{.Server.Version}}"])
        await self._ensure_image()

        container_name = f"openclaw-{slugify(config.name)}-{int(time.time() * 1000)}"
        args = ["run", "-d", "--name", container_name]
        for key, value in instance_env(config, secrets.token_hex(24)).items():
            args += ["-e", f"{key}={value}"]
        args += ["-p", str(GATEWAY_PORT), "--entrypoint", "sh", self.image, "-c", STARTUP_SCRIPT]

        container_id = await self._docker(args)
        port = await self._container_port(container_id)
        logger.info("Container %s created for instance %s", container_name, config.instance_id)

        return ProviderResult(
            provider_id=container_id[:12],
            provider_app_id=container_name,
            ip_address="localhost",
            port=port,
        )

    async def _container_port(self, container_id: str) -> Optional[int]:
        result = await self._run(["port", container_id, f"{GATEWAY_PORT}/tcp"])
        self._raise_on_timeout(result, {})
        match = re.search(r":(\d+)\s*$", result.stdout.strip().splitlines()[0]) if result.stdout.strip() else None
        return int(match.group(1)) if match else None

    def instance_fields(self, result: ProviderResult) -> Dict[str, Any]:
        return {
            "docker_container_id": result.provider_id,
            "docker_port": result.port,
            "ip_address": result.ip_address,
        }

    def has_resources(self, target: ProviderTarget) -> bool:
        return bool(target.docker_container_id)

    def _container(self, target: ProviderTarget) -> str:
        if not target.docker_container_id:
            raise ProviderError("Missing Docker container ID", status_code=400)
        return target.docker_container_id

    async def start_instance(self, target: ProviderTarget) -> None:
        await self._docker(["start", self._container(target)])

    async def stop_instance(self, target: ProviderTarget) -> None:
        await self._docker(["stop", self._container(target)])

    async def delete_instance(self, target: ProviderTarget) -> None:
        if not target.docker_container_id:
            return
        await self._docker(["rm", "-f", target.docker_container_id])

    async def get_instance_status(self, target: ProviderTarget) -> str:
        if not target.docker_container_id:
            return InstanceStatus.UNKNOWN.value
        result = await self._run(["inspect", "--format", "{{.State.Status}}", target.docker_container_id])
        self._raise_on_timeout(result, {})
        if result.returncode != 0:
            return InstanceStatus.DELETED.value
        return map_docker_state(result.stdout)

    async def send_message(self, target: ProviderTarget, session_id: str, message: str) -> ChatReply:
        args = [
            "exec", self._container(target),
            "node", "openclaw.mjs", "agent",
            "--session-id", session_id,
            "--message", message,
            "--json",
            "--timeout", str(self.chat_timeout),
        ]
        result = await self._run(
            args,
            timeout=self.chat_timeout + CHAT_GRACE_SECONDS,
            max_output=self.max_output_bytes,
        )
        # The agent may exit non-zero or hang after printing a valid reply
        if SUCCESS_MARKER not in result.stdout:
            logger.error(
                "OpenClaw agent failed in %s (exit %s%s): %s",
                target.docker_container_id, result.returncode,
                ", timed out" if result.timed_out else "", result.stderr.strip()[:1000],
            )
            raise ProviderError("Failed to communicate with OpenClaw instance")
        if result.timed_out:
            logger.warning("OpenClaw agent in %s hung after replying", target.docker_container_id)
        elif result.returncode != 0:
            logger.warning("OpenClaw agent exited %s but produced a reply", result.returncode)
        return ChatReply(response=parse_agent_output(result.stdout))

    async def upload_file(self, target: ProviderTarget, data: bytes, filename: str) -> UploadResult:
        path = upload_path(filename)
        await self._docker(
            ["exec", "-i", self._container(target), "sh", "-c", 'mkdir -p "$(dirname "$1")" && cat > "$1"', "sh", path],
            stdin=data,
        )
        return UploadResult(file_path=path)

    async def configure_integration(
        self,
        target: ProviderTarget,
        instance_id: str,
        provider_name: str,
        proxy_url: str,
        instructions: str,
    ) -> None:
        section = integration_section(provider_name, instance_id, proxy_url, instructions)
        await self._docker(
            ["exec", "-i", self._container(target), "sh", "-c", 'cat >> "$1"', "sh", SOUL_FILE],
            stdin=section.encode("utf-8"),
        )
