from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping, Sequence

from .models import (
    Athlete,
    GpsSample,
    JumpSample,
    MetricFamily,
    Sample,
    StrengthSample,
    TimeWindow,
    TrainingSession,
    athlete_from_row,
    sample_from_row,
    session_from_row,
)
from .store import Store

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0


@dataclass(frozen=True)
class MetricBundle:
    """Everything one pass needs, fetched together."""

    window: TimeWindow
    athletes: list[Athlete] = field(default_factory=list)
    sessions: list[TrainingSession] = field(default_factory=list)
    gps: list[GpsSample] = field(default_factory=list)
    jumps: list[JumpSample] = field(default_factory=list)
    strength: list[StrengthSample] = field(default_factory=list)

    def samples(self, family: MetricFamily) -> list[Any]:
        if family is MetricFamily.GPS:
            return self.gps
        if family is MetricFamily.JUMP:
            return self.jumps
        if family is MetricFamily.STRENGTH:
            return self.strength
        raise ValueError(f"Unsupported metric family: {family!r}")


class MetricStoreAdapter:
    """
    Typed read access over a `Store`.

    This is the only place raw rows are validated and coerced. Any failure in the
    underlying store is logged and turned into an empty result so callers always
    receive a (possibly partial) data set.
    """

    def __init__(self, store: Store, *, timeout: float | None = None) -> None:
        self.store = store
        self.timeout = timeout if timeout and timeout > 0 else DEFAULT_TIMEOUT_SECONDS

    def _safe_query(self, collection: str, **kwargs: Any) -> list[dict[str, Any]]:
        try:
            return list(self.store.query(collection, **kwargs))
        except Exception as exc:
            LOGGER.warning("Store read failed for %s: %s", collection, exc)
            return []

    def fetch_athletes(self, athlete_filter: str | None = None) -> list[Athlete]:
        """Roster ordered by last name, optionally narrowed by id or name substring."""
        return self._athletes_from_rows(self._safe_query("athletes"), athlete_filter)

    def fetch_sessions(self) -> list[TrainingSession]:
        rows = self._safe_query("training_sessions", order_by="session_date")
        return [session for session in (session_from_row(row) for row in rows) if session is not None]

    def resolve_athlete(self, name_or_id: str | None) -> Athlete | None:
        """First roster entry matching the id or a name fragment."""
        if not name_or_id or not name_or_id.strip():
            return None
        matches = self.fetch_athletes(name_or_id.strip())
        return matches[0] if matches else None

    def fetch_samples(
        self,
        family: MetricFamily,
        window: TimeWindow,
        athlete_filter: str | None = None,
        *,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[Sample]:
        """
        Samples of one family recorded inside ``[window.since, window.until)``.

        Results are chronological unless ``newest_first`` is set. With a filter,
        only samples of athletes matching it (exact id or name substring) are kept.
        """
        family = MetricFamily(family)
        athlete_ids: set[str] | None = None
        if athlete_filter:
            athlete_ids = self._filter_ids(self.fetch_athletes(athlete_filter), athlete_filter)
            if not athlete_ids:
                return []
        sessions = self.fetch_sessions() if family is MetricFamily.GPS else []
        rows = self._sample_rows(family, window, athlete_ids, newest_first=newest_first, limit=limit)
        return self._samples_from_rows(family, rows, sessions)

    def fetch_bundle(
        self,
        window: TimeWindow,
        families: Iterable[MetricFamily] = tuple(MetricFamily),
        athlete_filter: str | None = None,
    ) -> MetricBundle:
        """
        Fetch roster, sessions and the requested sample families concurrently.

        All reads are joined before returning; a read that fails or does not
        finish before the shared timeout contributes an empty list.
        """
        wanted = [MetricFamily(family) for family in families]
        jobs: dict[str, Callable[[], list[dict[str, Any]]]] = {
            "athletes": lambda: self._safe_query("athletes"),
            "training_sessions": lambda: self._safe_query("training_sessions", order_by="session_date"),
        }
        for family in wanted:
            jobs[family.collection] = lambda family=family: self._sample_rows(family, window, None)

        raw = self._run_concurrently(jobs)
        athletes = self._athletes_from_rows(raw["athletes"], None)
        sessions = [s for s in (session_from_row(row) for row in raw["training_sessions"]) if s is not None]
        session_index = {session.id: session for session in sessions}

        athlete_ids: set[str] | None = None
        if athlete_filter:
            athletes = [athlete for athlete in athletes if athlete.matches(athlete_filter)]
            athlete_ids = self._filter_ids(athletes, athlete_filter)

        converted: dict[MetricFamily, list[Any]] = {}
        for family in wanted:
            rows = raw.get(family.collection, [])
            if athlete_ids is not None:
                rows = [row for row in rows if row.get("athlete_id") in athlete_ids]
            converted[family] = self._samples_from_rows(family, rows, sessions, session_index)

        return MetricBundle(
            window=window,
            athletes=athletes,
            sessions=sessions,
            gps=converted.get(MetricFamily.GPS, []),
            jumps=converted.get(MetricFamily.JUMP, []),
            strength=converted.get(MetricFamily.STRENGTH, []),
        )

    def _run_concurrently(
        self, jobs: Mapping[str, Callable[[], list[dict[str, Any]]]]
    ) -> dict[str, list[dict[str, Any]]]:
        results: dict[str, list[dict[str, Any]]] = {}
        executor = ThreadPoolExecutor(max_workers=len(jobs), thread_name_prefix="perflab-read")
        try:
            futures: dict[str, Future] = {name: executor.submit(job) for name, job in jobs.items()}
            # One deadline for the whole bundle, not one per read.
            _, pending = wait(futures.values(), timeout=self.timeout)
            for name, future in futures.items():
                if future in pending:
                    LOGGER.warning("Store read for %s timed out after %.1fs", name, self.timeout)
                    results[name] = []
                    continue
                try:
                    results[name] = future.result()
                except Exception as exc:
                    LOGGER.warning("Store read for %s failed: %s", name, exc)
                    results[name] = []
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results

    def _sample_rows(
        self,
        family: MetricFamily,
        window: TimeWindow,
        athlete_ids: set[str] | None,
        *,
        newest_first: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        filters: dict[str, Any] = {"since": window.since, "until": window.until}
        single = athlete_ids is not None and len(athlete_ids) == 1
        if single:
            filters["athlete_id"] = next(iter(athlete_ids))
        rows = self._safe_query(
            family.collection,
            filters=filters,
            order_by="recorded_at",
            descending=newest_first,
            limit=limit if athlete_ids is None or single else None,
        )
        if athlete_ids is not None and not single:
            rows = [row for row in rows if row.get("athlete_id") in athlete_ids]
            if limit is not None:
                rows = rows[:limit]
        return rows

    @staticmethod
    def _filter_ids(athletes: Sequence[Athlete], athlete_filter: str) -> set[str]:
        exact = [athlete.id for athlete in athletes if athlete.id == athlete_filter]
        if exact:
            return set(exact)
        return {athlete.id for athlete in athletes}

    @staticmethod
    def _athletes_from_rows(rows: Iterable[Mapping[str, Any]], athlete_filter: str | None) -> list[Athlete]:
        athletes = []
        for row in rows:
            athlete = athlete_from_row(row)
            if athlete is None:
                LOGGER.debug("Skipping athlete row without id: %r", row)
                continue
            if athlete_filter and not athlete.matches(athlete_filter):
                continue
            athletes.append(athlete)
        if athlete_filter:
            exact = [athlete for athlete in athletes if athlete.id == athlete_filter]
            if exact:
                return exact
        athletes.sort(key=lambda athlete: (athlete.last_name.casefold(), athlete.first_name.casefold()))
        return athletes

    @staticmethod
    def _samples_from_rows(
        family: MetricFamily,
        rows: Iterable[Mapping[str, Any]],
        sessions: Sequence[TrainingSession],
        session_index: Mapping[str, TrainingSession] | None = None,
    ) -> list[Any]:
        index = session_index if session_index is not None else {session.id: session for session in sessions}
        samples = []
        for row in rows:
            sample = sample_from_row(family, row, index)
            if sample is None:
                LOGGER.debug("Skipping malformed %s row: %r", family.value, row)
                continue
            samples.append(sample)
        return samples
