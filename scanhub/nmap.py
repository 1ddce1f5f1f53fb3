"""Nmap XML report model: parsing and JSON conversion."""

from __future__ import annotations

import json
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Iterable, TypeVar, Union

T = TypeVar("T")


class NmapParseError(Exception):
    """Raised when an nmap XML report cannot be read or parsed."""


def _attr(xml: str | None = None, json_name: str | None = None) -> Any:
    return field(default="", metadata={"kind": "attr", "xml": xml, "json": json_name})


def _one(cls: type, xml: str, json_name: str | None = None) -> Any:
    return field(
        default_factory=cls,
        metadata={"kind": "one", "cls": cls, "xml": xml, "json": json_name},
    )


def _many(cls: type, xml: str, json_name: str | None = None) -> Any:
    return field(
        default_factory=list,
        metadata={"kind": "many", "cls": cls, "xml": xml, "json": json_name},
    )


@dataclass
class ScanInfo:
    type: str = _attr()
    protocol: str = _attr()
    num_services: str = _attr("numservices", "num_services")
    services: str = _attr()


@dataclass
class Verbose:
    level: str = _attr()


@dataclass
class Debugging:
    level: str = _attr()


@dataclass
class TaskBegin:
    task: str = _attr()
    time: str = _attr()


@dataclass
class TaskEnd:
    task: str = _attr()
    time: str = _attr()
    extra_info: str = _attr("extrainfo", "extra_info")


@dataclass
class Status:
    state: str = _attr()
    reason: str = _attr()
    reason_ttl: str = _attr()


@dataclass
class Address:
    addr: str = _attr()
    addr_type: str = _attr("addrtype", "addr_type")


@dataclass
class State:
    state: str = _attr()
    reason: str = _attr()
    reason_ttl: str = _attr()


@dataclass
class Service:
    name: str = _attr()
    method: str = _attr()
    conf: str = _attr()


@dataclass
class Port:
    protocol: str = _attr()
    port_id: str = _attr("portid", "port_id")
    state: State = _one(State, "state")
    service: Service = _one(Service, "service")


@dataclass
class Ports:
    ports: list[Port] = _many(Port, "port", "ports")


@dataclass
class Host:
    status: Status = _one(Status, "status")
    address: Address = _one(Address, "address")
    ports: Ports = _one(Ports, "ports")


@dataclass
class Finished:
    time: str = _attr()
    timestr: str = _attr()
    summary: str = _attr()
    elapsed: str = _attr()
    exit: str = _attr()


@dataclass
class Hosts:
    up: str = _attr()
    down: str = _attr()
    total: str = _attr()


@dataclass
class RunStats:
    finished: Finished = _one(Finished, "finished")
    hosts: Hosts = _one(Hosts, "hosts")


@dataclass
class NmapRun:
    """Root of an nmap XML report."""

    scanner: str = _attr()
    args: str = _attr()
    start: str = _attr()
    startstr: str = _attr()
    version: str = _attr()
    xml_output_version: str = _attr("xmloutputversion", "xml_output_version")
    scan_info: ScanInfo = _one(ScanInfo, "scaninfo", "scan_info")
    verbose: Verbose = _one(Verbose, "verbose")
    debugging: Debugging = _one(Debugging, "debugging")
    task_begin: TaskBegin = _one(TaskBegin, "taskbegin", "task_begin")
    task_end: TaskEnd = _one(TaskEnd, "taskend", "task_end")
    hosts: list[Host] = _many(Host, "host", "hosts")
    run_stats: RunStats = _one(RunStats, "runstats", "run_stats")

    def to_dict(self) -> dict[str, Any]:
        """Return the report as a JSON-ready dictionary."""
        return _to_dict(self)

    def to_json(self, indent: int | None = 2) -> str:
        """Return the report serialised as JSON."""
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _children(elements: Iterable[ET.Element], tag: str) -> list[ET.Element]:
    return [child for element in elements for child in element if _local_name(child.tag) == tag]


def _merged_attrs(elements: Iterable[ET.Element]) -> dict[str, str]:
    # Repeated elements fill the same record; later attributes win.
    merged: dict[str, str] = {}
    for element in elements:
        merged.update(element.attrib)
    return merged


def _build(cls: type[T], elements: list[ET.Element]) -> T:
    attrs = _merged_attrs(elements)
    values: dict[str, Any] = {}
    for item in fields(cls):  # type: ignore[arg-type]
        meta = item.metadata
        tag = meta.get("xml") or item.name
        kind = meta["kind"]
        if kind == "attr":
            values[item.name] = attrs.get(tag, "")
        elif kind == "one":
            values[item.name] = _build(meta["cls"], _children(elements, tag))
        else:
            values[item.name] = [_build(meta["cls"], [child]) for child in _children(elements, tag)]
    return cls(**values)


def _to_dict(obj: Any) -> dict[str, Any]:
    result: dict[str, Any] = {}
    for item in fields(obj):
        meta = item.metadata
        key = meta.get("json") or item.name
        value = getattr(obj, item.name)
        kind = meta["kind"]
        if kind == "attr":
            result[key] = value
        elif kind == "one":
            result[key] = _to_dict(value)
        else:
            result[key] = [_to_dict(entry) for entry in value] if value else None
    return result


def parse_nmap_xml_string(data: Union[str, bytes]) -> NmapRun:
    """Parse an nmap XML report held in memory."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise NmapParseError(f"failed to parse XML data: {exc}") from exc
    name = _local_name(root.tag)
    if name != "nmaprun":
        raise NmapParseError(f"failed to parse XML data: expected element <nmaprun> but have <{name}>")
    return _build(NmapRun, [root])


def parse_nmap_xml(xml_file_path: Union[str, Path]) -> NmapRun:
    """Read and parse an nmap XML report file."""
    try:
        data = Path(xml_file_path).read_bytes()
    except OSError as exc:
        raise NmapParseError(f"failed to read XML file: {exc}") from exc
    return parse_nmap_xml_string(data)


def convert_xml_to_json(xml_file_path: Union[str, Path], json_file_path: Union[str, Path]) -> None:
    """Convert an nmap XML report file into an indented JSON file."""
    result = parse_nmap_xml(xml_file_path)
    try:
        Path(json_file_path).write_text(result.to_json(), encoding="utf-8")
    except OSError as exc:
        raise NmapParseError(f"failed to write JSON file: {exc}") from exc