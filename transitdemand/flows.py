"""
flows.py – demand nodes → sized commute flows (population groups)

Per origin (a node with residents)
----------------------------------
1. score every job node:  weight × closeness^exp + base
       closeness = max(floor, 1 / (1 + (d / scale)^k)),  scale from a
       population tier; terminals get a boost and a flatter exponent
2. keep the nearest few, every terminal, and the best-scoring rest
3. pull the terminal share of weight back inside [min, max]
4. largest-remainder apportionment of the residents
5. same band on the integer units
6. top up empty nearest picks, merge flows below the finalize size
7. chunk each flow into bounded groups (see chunking.py)

After all origins the dataset-wide terminal traffic is capped, then split
fairly between airports.  Flow ids come from one counter per run.
"""
from __future__ import annotations

import heapq
import logging
import math
from bisect import bisect_left
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

import numpy as np
from tqdm import tqdm

from .chunking import split_into_groups
from .config import DistanceWeightingConfig, PopulationChunkingConfig
from .geometry import haversine_km
from .models import DemandDataset, Flow, Neighborhood

logger = logging.getLogger("transitdemand.flows")

SECONDS_PER_METER = 0.12
MIN_JOB_SHARE = 1e-6


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass
class Candidate:
    """One destination as seen from one origin."""
    node: Neighborhood
    index: int
    distance_km: float
    closeness: float
    score: float
    terminal: bool
    nearest: bool = False
    weight: float = 0.0
    size: int = 0

    @property
    def distance_m(self) -> float:
        return self.distance_km * 1000.0


class FlowSynthesizer:
    """Turns one region's nodes into a DemandDataset."""

    def __init__(
        self,
        nodes: Sequence[Neighborhood],
        weighting: Optional[DistanceWeightingConfig] = None,
        chunking: Optional[PopulationChunkingConfig] = None,
    ) -> None:
        self.nodes = list(nodes)
        self.w = weighting or DistanceWeightingConfig()
        self.chunk = chunking or PopulationChunkingConfig()

        self.destinations = [n for n in self.nodes if n.jobs > 0]
        self._dest_lons = np.array([n.location[0] for n in self.destinations], dtype=float)
        self._dest_lats = np.array([n.location[1] for n in self.destinations], dtype=float)
        self._dest_jobs = np.array([n.jobs for n in self.destinations], dtype=float)
        self._dest_terminal = np.array([n.is_terminal for n in self.destinations], dtype=bool)
        total_jobs = self._dest_jobs.sum()
        self._job_share = (
            self._dest_jobs / total_jobs if total_jobs > 0 else np.zeros_like(self._dest_jobs)
        )
        self._counter = 0

    # ── public ─────────────────────────────────────────────────────────────
    def run(self) -> DemandDataset:
        flows: List[Flow] = []
        origins = [n for n in self.nodes if n.residents > 0]
        for origin in tqdm(origins, desc="Flows", leave=False, disable=None):
            flows.extend(self.flows_for_origin(origin))
        logger.info("Synthesised %d flow(s) from %d origin(s) to %d destination(s)",
                    len(flows), len(origins), len(self.destinations))

        self.cap_terminal_traffic(flows)
        return self.finalize(flows)

    def flows_for_origin(self, origin: Neighborhood) -> List[Flow]:
        population = origin.residents
        if population <= 0 or not self.destinations:
            return []

        candidates = self.score_candidates(origin)
        selected = self.select_candidates(candidates, population)
        self.balance_terminal_weight(selected)
        self.apportion(selected, population)
        self.correct_terminal_units(selected, population)
        self.enforce_minimum_sizes(selected)
        return self.emit(origin, selected)

    # ── 1 ▸ scoring ────────────────────────────────────────────────────────
    def _tier(self, population: int) -> int:
        return bisect_left(self.w.population_tiers, population)

    def score_candidates(self, origin: Neighborhood) -> List[Candidate]:
        w = self.w
        scale = w.distance_scales_km[self._tier(origin.residents)]
        dist = haversine_km(origin.location[0], origin.location[1],
                            self._dest_lons, self._dest_lats)
        closeness = np.maximum(
            w.closeness_floor, 1.0 / (1.0 + (dist / scale) ** w.distance_exponent)
        )
        weight = (self._dest_jobs + 1.0) ** w.job_exponent * np.maximum(
            self._job_share, MIN_JOB_SHARE
        ) ** w.cluster_exponent
        exponent = np.full(len(dist), w.closeness_exponent)

        weight = np.where(self._dest_terminal, weight * w.terminal_boost, weight)
        exponent = np.where(
            self._dest_terminal,
            np.minimum(exponent, w.terminal_closeness_exponent),
            exponent,
        )
        score = weight * closeness ** exponent + w.base_weight

        return [
            Candidate(
                node=node,
                index=i,
                distance_km=float(dist[i]),
                closeness=float(closeness[i]),
                score=float(score[i]),
                terminal=bool(self._dest_terminal[i]),
            )
            for i, node in enumerate(self.destinations)
        ]

    # ── 2 ▸ selection ──────────────────────────────────────────────────────
    def select_candidates(self, candidates: List[Candidate], population: int) -> List[Candidate]:
        max_conn = self.chunk.max_connections_per_point or len(candidates)
        quota = min(self.w.local_quotas[self._tier(population)], max_conn)

        by_distance = sorted(candidates, key=lambda c: (c.distance_km, c.index))
        chosen: "OrderedDict[int, Candidate]" = OrderedDict()
        for c in by_distance[:quota]:
            c.nearest = True
            chosen[c.index] = c
        for c in candidates:
            if c.terminal:
                chosen.setdefault(c.index, c)

        limit = max(max_conn, len(chosen))
        for c in sorted(candidates, key=lambda c: (-c.score, c.distance_km, c.index)):
            if len(chosen) >= limit:
                break
            chosen.setdefault(c.index, c)

        selected = list(chosen.values())
        for c in selected:
            c.weight = c.score
        return selected

    # ── 3 ▸ terminal share of weight ───────────────────────────────────────
    def balance_terminal_weight(self, selected: List[Candidate]) -> None:
        total = sum(c.weight for c in selected)
        terminal = sum(c.weight for c in selected if c.terminal)
        other = total - terminal
        if terminal <= 0 or other <= 0:
            return

        share = terminal / total
        if share > self.w.terminal_max_share:
            target = self.w.terminal_max_share
        elif share < self.w.terminal_min_share:
            target = self.w.terminal_min_share
        else:
            return
        if target >= 1:
            return

        factor = (target * other / (1 - target)) / terminal
        floor = self.w.base_weight / 10
        for c in selected:
            if c.terminal:
                c.weight = max(c.weight * factor, floor)

    # ── 4 ▸ apportionment ──────────────────────────────────────────────────
    @staticmethod
    def apportion(selected: List[Candidate], population: int) -> None:
        """Largest remainder; ties in remainder go to the closer candidate."""
        if not selected:
            return
        total = sum(c.weight for c in selected)
        weights = [c.weight for c in selected] if total > 0 else [1.0] * len(selected)
        total = total if total > 0 else float(len(selected))

        remainders = []
        for c, weight in zip(selected, weights):
            raw = weight / total * population
            c.size = math.floor(raw)
            remainders.append(raw - c.size)

        remaining = max(0, population - sum(c.size for c in selected))
        order = sorted(
            range(len(selected)),
            key=lambda k: (-(remainders[k] * selected[k].closeness), k),
        )
        for j in range(remaining):
            selected[order[j % len(order)]].size += 1

    # ── 5 ▸ terminal share of units ────────────────────────────────────────
    def correct_terminal_units(self, selected: List[Candidate], population: int) -> None:
        terminals = [c for c in selected if c.terminal]
        others = [c for c in selected if not c.terminal]
        if not terminals or not others:
            return

        units = sum(c.size for c in terminals)
        max_units = round_half_up(population * self.w.terminal_max_share)
        min_units = round_half_up(population * self.w.terminal_min_share)

        if units > max_units:
            excess = units - max_units
            removed = 0
            for c in sorted(terminals, key=lambda c: (c.closeness, c.index)):
                take = min(c.size, excess - removed)
                c.size -= take
                removed += take
                if removed >= excess:
                    break
            receivers = sorted(others, key=lambda c: (-c.closeness, c.index))
            active = [c for c in receivers if c.size > 0] or receivers[:1]
            for j in range(removed):
                active[j % len(active)].size += 1
            logger.debug("Moved %d unit(s) off terminals (cap %d)", removed, max_units)

        elif units < min_units:
            deficit = min(min_units - units, self.w.terminal_min_share_attempts)
            donors = sorted(others, key=lambda c: (c.closeness, c.index))
            receivers = sorted(terminals, key=lambda c: (-c.closeness, c.index))
            for step in range(deficit):
                donor = next((c for c in donors if c.size > 1), None)
                if donor is None:
                    break
                donor.size -= 1
                receivers[step % len(receivers)].size += 1

    # ── 6 ▸ minimum sizes ──────────────────────────────────────────────────
    def enforce_minimum_sizes(self, selected: List[Candidate]) -> None:
        minimum = self.chunk.minimum_finalize_size
        if not minimum:
            return

        for c in selected:
            if not c.nearest or c.size > 0:
                continue
            donors = [d for d in selected if d.size > minimum]
            if not donors:
                continue
            donor = max(donors, key=lambda d: (d.distance_km, -d.index))
            donor.size -= 1
            c.size += 1

        while True:
            active = [c for c in selected if c.size > 0]
            if len(active) <= 1:
                return
            small = [c for c in active if c.size < minimum]
            if not small:
                return
            victim = min(small, key=lambda c: (c.size, -c.distance_km, c.index))
            target = min(
                (c for c in active if c is not victim),
                key=lambda c: (abs(c.distance_km - victim.distance_km), -c.closeness, c.index),
            )
            target.size += victim.size
            victim.size = 0

    # ── 7 ▸ chunk + emit ───────────────────────────────────────────────────
    def emit(self, origin: Neighborhood, selected: List[Candidate]) -> List[Flow]:
        flows = []
        for c in sorted(selected, key=lambda c: (c.distance_km, c.index)):
            if c.size <= 0:
                continue
            distance_m = c.distance_m
            for group in split_into_groups(c.size, origin.id, c.node.id, self.chunk):
                flows.append(Flow(
                    id=str(self._counter),
                    residence_id=origin.id,
                    job_id=c.node.id,
                    size=group,
                    driving_distance=round_half_up(distance_m),
                    driving_seconds=round_half_up(distance_m * SECONDS_PER_METER),
                    closeness=c.closeness,
                    terminal_key=c.node.terminal_key,
                ))
                self._counter += 1
        return flows

    # ── dataset-wide terminal cap ──────────────────────────────────────────
    def terminal_cap(self) -> int:
        total_population = sum(n.residents for n in self.nodes)
        return round_half_up(total_population * self.w.global_terminal_share)

    def cap_terminal_traffic(self, flows: List[Flow]) -> None:
        terminal_flows = [f for f in flows if f.is_terminal]
        if not terminal_flows:
            return
        cap = self.terminal_cap()
        units = sum(f.size for f in terminal_flows)
        if units <= cap:
            return
        logger.info("Terminal traffic %d > cap %d – rebalancing", units, cap)

        # largest flows shed first, never below one
        heap = [(-f.size, int(f.id), f) for f in terminal_flows if f.size > 1]
        heapq.heapify(heap)
        while units > cap and heap:
            _, key, f = heapq.heappop(heap)
            f.size -= 1
            units -= 1
            if f.size > 1:
                heapq.heappush(heap, (-f.size, key, f))

        # fair share per airport
        groups: "OrderedDict[str, List[Flow]]" = OrderedDict()
        for f in terminal_flows:
            groups.setdefault(f.terminal_key, []).append(f)
        jobs_by_key: Dict[str, int] = {}
        for n in self.nodes:
            if n.is_terminal:
                jobs_by_key[n.terminal_key] = jobs_by_key.get(n.terminal_key, 0) + n.jobs
        total_jobs = sum(jobs_by_key.get(k, 0) for k in groups)

        for key, members in groups.items():
            if total_jobs > 0:
                share = cap * jobs_by_key.get(key, 0) / total_jobs
            else:
                share = cap / len(groups)
            allowed = max(round_half_up(share), sum(1 for f in members if f.size > 0))
            group_units = sum(f.size for f in members)
            for f in sorted(members, key=lambda f: (f.closeness, int(f.id))):
                if group_units <= allowed:
                    break
                take = min(f.size - 1, group_units - allowed)
                if take > 0:
                    f.size -= take
                    group_units -= take

        # one-person flows are all that is left to give
        units = sum(f.size for f in terminal_flows)
        if units > cap:
            for f in sorted(terminal_flows, key=lambda f: (f.closeness, int(f.id))):
                if units <= cap:
                    break
                units -= f.size
                f.size = 0
        logger.debug("Terminal traffic after rebalancing: %d", units)

    # ── output ─────────────────────────────────────────────────────────────
    def finalize(self, flows: List[Flow]) -> DemandDataset:
        nodes = [n for n in self.nodes if n.jobs > 0 or n.residents > 0]
        by_id = {n.id: n for n in nodes}
        for n in nodes:
            n.pop_ids = []

        kept: List[Flow] = []
        for f in flows:
            if f.size <= 0:
                continue
            if f.job_id not in by_id or f.residence_id not in by_id:
                logger.warning("Dropping flow %s – endpoint missing", f.id)
                continue
            by_id[f.job_id].pop_ids.append(f.id)
            by_id[f.residence_id].pop_ids.append(f.id)
            kept.append(f)

        logger.info("Final dataset → %d node(s), %d flow(s), %d commuter(s)",
                    len(nodes), len(kept), sum(f.size for f in kept))
        return DemandDataset(points=nodes, pops=kept)


def synthesize_flows(
    nodes: Sequence[Neighborhood],
    weighting: Optional[DistanceWeightingConfig] = None,
    chunking: Optional[PopulationChunkingConfig] = None,
) -> DemandDataset:
    return FlowSynthesizer(nodes, weighting, chunking).run()
