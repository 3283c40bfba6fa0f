#!/usr/bin/env python3
"""
End-to-end MLP benchmark.

This benchmark measures:
- Graph build time (filtering, split insertion, setup)
- Forward and backward time per iteration

Usage:
    python benchmarks/mlp_e2e.py
"""

import sys
import time
from pathlib import Path

import numpy as np

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from unitgraph import GraphConfig, Runtime, build_graph
from unitgraph.ir import GraphDescription


# =============================================================================
# Configuration
# =============================================================================

WARMUP_ITERS = 10
BENCH_ITERS = 100
BATCH = 128
WIDTH = 256
DEPTH = 4


def build_mlp_description() -> GraphDescription:
    """Build a DEPTH-layer MLP with a Euclidean loss."""
    d = GraphDescription(name="mlp_bench")
    d.unit("data", "Input", tops=["x", "target"], attrs={"shape": [[BATCH, WIDTH], [BATCH, WIDTH]]})
    prev = "x"
    for i in range(DEPTH):
        d.unit(f"fc{i}", "InnerProduct", bottoms=[prev], tops=[f"h{i}"], attrs={"num_output": WIDTH})
        d.unit(f"relu{i}", "ReLU", bottoms=[f"h{i}"], tops=[f"h{i}"])
        prev = f"h{i}"
    d.unit("loss", "EuclideanLoss", bottoms=[prev, "target"], tops=["loss"])
    return d


def time_build(iters: int = 20) -> float:
    desc = build_mlp_description()
    start = time.perf_counter()
    for _ in range(iters):
        build_graph(desc, GraphConfig(seed=0))
    return (time.perf_counter() - start) / iters * 1e3


def time_step(rt: Runtime, iters: int) -> tuple[float, float]:
    fwd = bwd = 0.0
    for _ in range(iters):
        t0 = time.perf_counter()
        rt.forward()
        t1 = time.perf_counter()
        rt.backward()
        t2 = time.perf_counter()
        fwd += t1 - t0
        bwd += t2 - t1
    return fwd / iters * 1e3, bwd / iters * 1e3


def main() -> None:
    print("=" * 60)
    print(f"MLP benchmark: batch={BATCH} width={WIDTH} depth={DEPTH}")
    print("=" * 60)

    print(f"Build: {time_build():.3f} ms")

    graph = build_graph(build_mlp_description())
    rt = Runtime(graph)
    rng = np.random.default_rng(0)
    rt.set_input("x", rng.standard_normal((BATCH, WIDTH)))
    rt.set_input("target", rng.standard_normal((BATCH, WIDTH)))

    time_step(rt, WARMUP_ITERS)
    fwd_ms, bwd_ms = time_step(rt, BENCH_ITERS)
    print(f"Forward:  {fwd_ms:.3f} ms/iter")
    print(f"Backward: {bwd_ms:.3f} ms/iter")
    print(f"Memory:   {graph.memory_bytes / 1024:.1f} KiB of buffers")


if __name__ == "__main__":
    main()
