"""Controllers for code server CLI commands."""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from pathlib import Path

from harmony_codeserver.codeserver.dispatcher import DispatchLoop
from harmony_codeserver.codeserver.endpoint import parse_endpoint
from harmony_codeserver.codeserver.registry import parse_worker_spec
from harmony_codeserver.config import Settings
from harmony_codeserver.layers.cache import PointCache, parse_point_values
from harmony_codeserver.protocol.codec import read_message_file
from harmony_codeserver.protocol.models import Point


@dataclass(slots=True)
class ServeCommand:
    """CLI input for running the coordinator."""

    codegen_path: Path
    poll_interval_seconds: float | None = None
    max_steps: int | None = None
    max_idle_polls: int | None = None


@dataclass(slots=True)
class HostsCommand:
    """CLI input for host list expansion."""

    spec: str


@dataclass(slots=True)
class EndpointCommand:
    """CLI input for endpoint parsing."""

    uri: str


@dataclass(slots=True)
class DecodeCommand:
    """CLI input for message file inspection."""

    path: Path


@dataclass(slots=True)
class CacheCommand:
    """CLI input for point cache inspection."""

    log_path: Path
    point: str | None = None


class CodeServerCliController:
    """Coordinates the dispatch loop and the inspection helpers."""

    def serve(self, command: ServeCommand) -> list[str]:
        if not command.codegen_path.is_dir():
            raise NotADirectoryError(f"{command.codegen_path} is not a valid directory.")

        settings = Settings.from_env()
        if command.poll_interval_seconds is not None:
            settings = replace(
                settings,
                dispatch=replace(
                    settings.dispatch,
                    poll_interval_seconds=command.poll_interval_seconds,
                ),
            )
        settings.validate()

        loop = DispatchLoop(inbox=command.codegen_path, settings=settings)
        loop.prepare()
        try:
            summary = loop.run_loop(
                max_steps=command.max_steps,
                max_idle_polls=command.max_idle_polls,
            )
        finally:
            loop.shutdown()
        return [
            "Code server summary: "
            f"sessions={summary.sessions} rejected_sessions={summary.rejected_sessions} "
            f"dispatched={summary.dispatched} completed={summary.completed} "
            f"protocol_errors={summary.protocol_errors} idle_polls={summary.idle_polls}",
        ]

    def hosts(self, command: HostsCommand) -> list[str]:
        registry = parse_worker_spec(command.spec)
        return [*registry.hostnames, f"Total slots: {len(registry)}"]

    def endpoint(self, command: EndpointCommand) -> list[str]:
        endpoint = parse_endpoint(command.uri)
        return [
            f"scheme: {endpoint.scheme.value}",
            f"host: {endpoint.host}",
            f"user: {endpoint.user}",
            f"port: {endpoint.port}",
            f"path: {endpoint.path}",
        ]

    def decode(self, command: DecodeCommand) -> list[str]:
        message = read_message_file(command.path)
        return json.dumps(message.to_payload(), indent=2, sort_keys=True).splitlines()

    def cache(self, command: CacheCommand) -> list[str]:
        cache = PointCache()
        loaded = cache.load_log(command.log_path)
        lines = [f"Cached points: {loaded}"]
        if command.point is None:
            return lines

        point = Point(id=0, values=parse_point_values(command.point))
        hit = cache.generate(point)
        if hit is None:
            lines.append(f"Miss: ( {point.render()} )")
        else:
            perf = ", ".join(repr(value) for value in hit.perf)
            lines.append(f"Hit: ( {point.render()} ) => ( {perf} )")
        return lines
