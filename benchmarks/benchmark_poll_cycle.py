import random
import time
from datetime import timedelta

from core.alert_gate import AlertGate
from core.data_sources import SimulatedSource
from core.notifier import LogNotifier
from core.observers import PredictionAnnotator, RecentReadings, StoreWriter
from core.orchestrator import SourceOrchestrator
from core.predictor import RulePredictor
from core.store import InMemoryStore


SOURCE_COUNTS = [1, 10, 100, 500]
CYCLES = 20


def build_orchestrator(source_count: int, with_observers: bool) -> SourceOrchestrator:
    """Orchestrator with `source_count` connected simulated sources."""
    orchestrator = SourceOrchestrator(period_seconds=60)
    for i in range(source_count):
        source = SimulatedSource(f"SIM{i}", f"Room {i}", rng=random.Random(i))
        source.initialize()
        orchestrator.add_source(source)

    if with_observers:
        store = InMemoryStore()
        store.initialize()
        predictor = RulePredictor()
        predictor.initialize()
        orchestrator.add_observer(AlertGate(LogNotifier(), cooldown=timedelta(seconds=900)))
        orchestrator.add_observer(PredictionAnnotator(predictor, StoreWriter(store)))
        orchestrator.add_observer(RecentReadings())
    return orchestrator


def benchmark(orchestrator: SourceOrchestrator, cycles: int):
    """
    Run `cycles` poll cycles back to back.
    Returns: (mean_cycle_time, per_reading_time, readings_per_cycle)
    """
    readings = 0
    t0 = time.perf_counter()
    for _ in range(cycles):
        readings += len(orchestrator.poll_once())
    total = time.perf_counter() - t0

    mean_cycle = total / cycles
    per_reading = total / readings if readings else 0.0
    return mean_cycle, per_reading, readings // cycles


if __name__ == "__main__":
    results = []

    for count in SOURCE_COUNTS:
        bare_cycle, bare_reading, bare_n = benchmark(build_orchestrator(count, False), CYCLES)
        full_cycle, full_reading, full_n = benchmark(build_orchestrator(count, True), CYCLES)

        results.append(
            {
                "sources": count,
                "bare": {"cycle": bare_cycle, "reading": bare_reading, "n": bare_n},
                "full": {"cycle": full_cycle, "reading": full_reading, "n": full_n},
            }
        )

    # Print all results together
    for entry in results:
        bare = entry["bare"]
        full = entry["full"]
        overhead_pct = ((full["cycle"] - bare["cycle"]) / bare["cycle"]) * 100 if bare["cycle"] else 0.0

        print(f"\n=== Poll Cycle Benchmark ({entry['sources']} sources, {CYCLES} cycles) ===")
        print("No observers:")
        print(f"  Mean cycle time : {bare['cycle']:.6f} seconds")
        print(f"  Per reading     : {bare['reading']:.6f} seconds")
        print(f"  Readings/cycle  : {bare['n']}")
        print()

        print("Default observer chain (alert gate, annotator + store, recent buffer):")
        print(f"  Mean cycle time : {full['cycle']:.6f} seconds ({overhead_pct:+.2f}% vs none)")
        print(f"  Per reading     : {full['reading']:.6f} seconds")
        print(f"  Readings/cycle  : {full['n']}")
        print()
