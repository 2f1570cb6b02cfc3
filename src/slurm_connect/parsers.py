"""Parsers for Slurm text reports.

Reports come in several shapes depending on which sinfo format string the
cluster accepts, so every parser here is total: malformed fields contribute
0 or nothing instead of raising.
"""

import re
from dataclasses import dataclass, field
from functools import reduce
from typing import Optional

from slurm_connect.models import ClusterInfo, PartitionRecord

_DIGITS_RE = re.compile(r"\d+")
_PAREN_RE = re.compile(r"\(.*?\)")

GPU_MARKER = "gpu:"


def parse_numeric_field(value: str) -> int:
    """Return the first run of digits in ``value`` as an integer, or 0.

    Examples:
        "128000" -> 128000
        "257000M" -> 257000
        "n/a" -> 0
    """
    if not value:
        return 0
    match = _DIGITS_RE.search(value)
    if not match:
        return 0
    return int(match.group(0))


def parse_gres(gres_str: str) -> tuple[int, dict[str, int]]:
    """Parse a GRES string into the max GPU count and per-type maxima.

    Examples:
        "gpu:a100:4(S:0-1)" -> (4, {"a100": 4})
        "gpu:2" -> (2, {"": 2})
        "gpu:a100" -> (0, {})
        "gpu:a100:2,gpu:v100:4" -> (4, {"a100": 2, "v100": 4})
    """
    gpu_max = 0
    gpu_types: dict[str, int] = {}
    if not gres_str:
        return gpu_max, gpu_types

    for token in gres_str.split(','):
        token = token.strip()
        if not token or 'gpu' not in token:
            continue

        # Remove socket affinity info like (S:0-1)
        cleaned = _PAREN_RE.sub('', token)
        parts = [p.strip() for p in cleaned.split(':') if p.strip()]
        if not parts or parts[0] != 'gpu':
            continue

        gpu_type = ''
        count = 0
        if len(parts) == 2:
            # Format: gpu:count or gpu:type
            if parts[1].isdecimal():
                count = int(parts[1])
            else:
                gpu_type = parts[1]
        elif len(parts) >= 3:
            # Format: gpu:type:count
            gpu_type = parts[1]
            if parts[2].isdecimal():
                count = int(parts[2])

        if count <= 0:
            continue

        gpu_max = max(gpu_max, count)
        gpu_types[gpu_type] = max(gpu_types.get(gpu_type, 0), count)

    return gpu_max, gpu_types


@dataclass
class _PartitionAccumulator:
    """Mutable per-partition totals while folding report rows."""
    name: str
    nodes: int = 0
    cpus: int = 0
    mem_mb: int = 0
    gpu_max: int = 0
    gpu_types: dict[str, int] = field(default_factory=dict)
    is_default: bool = False
    node_names: set[str] = field(default_factory=set)

    def finalize(self) -> PartitionRecord:
        # A set of distinct node names is exact; a reported count is not
        nodes = len(self.node_names) if self.node_names else self.nodes
        return PartitionRecord(
            name=self.name,
            nodes=nodes,
            cpus=self.cpus,
            mem_mb=self.mem_mb,
            gpu_max=self.gpu_max,
            gpu_types=dict(self.gpu_types),
            is_default=self.is_default,
        )


@dataclass
class _ReportState:
    partitions: dict[str, _PartitionAccumulator] = field(default_factory=dict)
    default_partition: Optional[str] = None


def _fold_row(state: _ReportState, fields: list[str]) -> _ReportState:
    """Merge one report row into the accumulator state."""
    raw_names = fields[0]
    field1 = fields[1] if len(fields) > 1 else ''
    cpus_raw = fields[2] if len(fields) > 2 else ''
    mem_raw = fields[3] if len(fields) > 3 else ''
    gres_raw = fields[4] if len(fields) > 4 else ''

    # Field 1 is either a node count (per-partition rows) or a node name (per-node rows).
    # Node names may start with a digit ("2gpu-01"), so only all-decimal values are counts.
    is_count = field1.isdecimal()
    node_name = field1 if field1 and not is_count else None
    node_count = parse_numeric_field(field1) if is_count else 0

    # CPUs may be A/I/O/T; the last segment is the total
    if '/' in cpus_raw:
        cpus_raw = cpus_raw.rsplit('/', 1)[-1]
    cpus = parse_numeric_field(cpus_raw)
    mem_mb = parse_numeric_field(mem_raw)
    gpu_max, gpu_types = parse_gres(gres_raw)

    for raw_name in raw_names.split(','):
        raw_name = raw_name.strip()
        if not raw_name:
            continue
        is_default = '*' in raw_name
        name = raw_name.replace('*', '')
        if not name:
            continue
        if is_default and state.default_partition is None:
            state.default_partition = name

        acc = state.partitions.get(name)
        if acc is None:
            acc = _PartitionAccumulator(name=name)
            state.partitions[name] = acc

        if node_name:
            acc.node_names.add(node_name)
        elif node_count:
            acc.nodes = max(acc.nodes, node_count)

        acc.cpus = max(acc.cpus, cpus)
        acc.mem_mb = max(acc.mem_mb, mem_mb)
        acc.gpu_max = max(acc.gpu_max, gpu_max)
        for gpu_type, count in gpu_types.items():
            acc.gpu_types[gpu_type] = max(acc.gpu_types.get(gpu_type, 0), count)
        acc.is_default = acc.is_default or is_default

    return state


def _split_rows(output: str) -> list[list[str]]:
    rows = []
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        fields = [f.strip() for f in line.split('|')]
        if len(fields) < 3 or not fields[0]:
            continue
        rows.append(fields)
    return rows


def parse_partition_info(output: str) -> ClusterInfo:
    """Parse a pipe-delimited partition report into ClusterInfo.

    Accepts both one-row-per-node (``%P|%n|%c|%m|%G``) and
    one-row-per-partition (``%P|%D|%c|%m|%G``) shapes. Rows for the same
    partition are merged with elementwise maxima.
    """
    state = reduce(_fold_row, _split_rows(output or ''), _ReportState())
    partitions = sorted(
        (acc.finalize() for acc in state.partitions.values()),
        key=lambda p: p.name,
    )
    return ClusterInfo(partitions=partitions, default_partition=state.default_partition)


def max_field_count(output: str) -> int:
    """Return the largest number of pipe-delimited fields on any line."""
    counts = [len(line.split('|')) for line in (output or '').splitlines() if line.strip()]
    return max(counts, default=0)


def has_gpu_marker(output: str) -> bool:
    """Check if raw report text mentions a GPU GRES."""
    return GPU_MARKER in (output or '')


def parse_simple_list(output: str) -> list[str]:
    """Split whitespace-separated output into unique tokens, keeping order."""
    return list(dict.fromkeys(t for t in (output or '').split() if t))


def parse_partition_list(output: str) -> tuple[list[str], Optional[str]]:
    """Parse plain partition names where ``*`` marks the default.

    Returns:
        Tuple of (unique partition names, default partition or None).
    """
    partitions: list[str] = []
    default_partition = None
    for token in (output or '').split():
        is_default = '*' in token
        name = token.replace('*', '')
        if not name:
            continue
        if is_default and default_partition is None:
            default_partition = name
        if name not in partitions:
            partitions.append(name)
    return partitions, default_partition


def format_memory(mem_mb: int) -> str:
    """Format memory in MB for display."""
    if not mem_mb or mem_mb <= 0:
        return "unknown"
    if mem_mb >= 1024:
        gb = round(mem_mb / 1024, 1)
        if gb == int(gb):
            return f"{int(gb)} GB"
        return f"{gb} GB"
    return f"{mem_mb} MB"


def describe_partition(partition: PartitionRecord) -> str:
    """One-line resource summary of a partition."""
    if partition.gpu_max and partition.gpu_types:
        gpu = ", ".join(
            f"{gpu_type or 'gpu'}x{partition.gpu_types[gpu_type]}"
            for gpu_type in sorted(partition.gpu_types)
        )
    else:
        gpu = "none"
    return (
        f"Nodes: {partition.nodes} | CPUs/node: {partition.cpus} | "
        f"Mem/node: {format_memory(partition.mem_mb)} | GPU: {gpu}"
    )


def format_cluster_info(host: str, info: ClusterInfo, fetched_at: Optional[str] = None) -> str:
    """Multi-line summary of every partition in ``info``."""
    header = f"Cluster info for {host}"
    if fetched_at:
        header += f" (cached {fetched_at})"
    lines = [header + ":", ""]

    if not info.partitions:
        lines.append("  No partitions found.")
        return "\n".join(lines)

    for partition in info.partitions:
        default_marker = " (default)" if partition.name == info.default_partition else ""
        lines.append(f"  {partition.name}{default_marker}: {describe_partition(partition)}")
    return "\n".join(lines)
