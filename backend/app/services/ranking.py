import logging
import math
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from app import settings
from app.models import RankedProvider
from app.services.availability import AvailabilityEngine, availability_engine, filter_time_of_day
from app.services.errors import SchedulingError, SchedulingValidationError
from app.services.qualification import QualifiedProvider

logger = logging.getLogger(__name__)

DISTANCE_WEIGHT = 0.5
RATING_WEIGHT = 0.3
AVAILABILITY_WEIGHT = 0.2
AVAILABILITY_SATURATION = 5
DEFAULT_LIMIT = 5


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    r = 6371.0
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return r * c


@dataclass(frozen=True)
class ScoreBreakdown:
    distance_score: float
    rating_score: float
    availability_score: float
    recommendation_score: float


def score_provider(
    distance_km: float,
    max_distance_km: float,
    rating: Optional[float],
    free_slot_count: int,
) -> ScoreBreakdown:
    distance_score = max(0.0, 100.0 - (distance_km / max_distance_km) * 100.0)
    rating_score = ((rating or 0.0) / 5.0) * 100.0
    availability_score = min(100.0, (free_slot_count / AVAILABILITY_SATURATION) * 100.0)
    total = (
        distance_score * DISTANCE_WEIGHT
        + rating_score * RATING_WEIGHT
        + availability_score * AVAILABILITY_WEIGHT
    )
    return ScoreBreakdown(
        distance_score=round(distance_score, 2),
        rating_score=round(rating_score, 2),
        availability_score=round(availability_score, 2),
        recommendation_score=round(total, 2),
    )


def paginate(items: Sequence, page: int, limit: int) -> Tuple[List, Dict[str, int]]:
    total = len(items)
    total_pages = math.ceil(total / limit) if total else 0
    start = (page - 1) * limit
    return list(items[start : start + limit]), {"total": total, "total_pages": total_pages}


class RankingEngine:
    """Scores qualified providers on distance, rating and free capacity."""

    def __init__(
        self,
        availability: AvailabilityEngine,
        max_workers: Optional[int] = None,
        provider_timeout: Optional[float] = None,
        max_distance_km: Optional[float] = None,
    ) -> None:
        self.availability = availability
        self.max_workers = max_workers or settings.RANKING_MAX_WORKERS
        self.provider_timeout = provider_timeout or settings.RANKING_PROVIDER_TIMEOUT_SECONDS
        self.max_distance_km = max_distance_km or settings.RANKING_MAX_DISTANCE_KM

    def _distance(
        self,
        candidate: QualifiedProvider,
        origin: Optional[Tuple[float, float]],
        max_distance_km: float,
    ) -> Tuple[Optional[float], float]:
        provider = candidate.provider
        if origin is None or provider.latitude is None or provider.longitude is None:
            return None, max_distance_km / 2
        distance = haversine_km(origin[0], origin[1], provider.latitude, provider.longitude)
        return round(distance, 2), distance

    def evaluate(
        self,
        candidate: QualifiedProvider,
        *,
        day: Optional[str],
        origin: Optional[Tuple[float, float]],
        max_distance_km: float,
        time_of_day: Optional[str] = None,
    ) -> Optional[RankedProvider]:
        distance_km, scored_distance = self._distance(candidate, origin, max_distance_km)
        if distance_km is not None and distance_km > max_distance_km:
            return None

        free_slot_count = 0
        next_available: Optional[str] = None
        if day:
            schedule = self.availability.day_schedule(
                candidate.provider.id,
                day,
                candidate.total_service_duration,
            )
            if not schedule.has_room_for(candidate.total_service_duration):
                return None
            available = [slot for slot in filter_time_of_day(schedule.slots, time_of_day) if slot.is_available]
            if not available:
                return None
            free_slot_count = len(available)
            next_available = available[0].start_time

        scores = score_provider(scored_distance, max_distance_km, candidate.provider.rating, free_slot_count)
        return RankedProvider(
            provider=candidate.provider,
            total_service_duration=candidate.total_service_duration,
            services=candidate.services,
            distance_km=distance_km,
            free_slot_count=free_slot_count,
            next_available_slot=next_available,
            distance_score=scores.distance_score,
            rating_score=scores.rating_score,
            availability_score=scores.availability_score,
            recommendation_score=scores.recommendation_score,
        )

    def evaluate_all(
        self,
        candidates: Sequence[QualifiedProvider],
        *,
        day: Optional[str] = None,
        origin: Optional[Tuple[float, float]] = None,
        max_distance_km: Optional[float] = None,
        time_of_day: Optional[str] = None,
    ) -> List[RankedProvider]:
        """Evaluate every candidate on a bounded pool, sorted by score.

        A provider whose evaluation fails or exceeds the per-provider timeout
        is left out of the result.
        """
        radius = max_distance_km or self.max_distance_km
        if radius <= 0:
            raise SchedulingValidationError("max_distance_km must be positive", field="max_distance_km", value=radius)
        if not candidates:
            return []

        executor = ThreadPoolExecutor(max_workers=min(self.max_workers, len(candidates)))
        ranked: List[RankedProvider] = []
        try:
            futures = {
                executor.submit(
                    self.evaluate,
                    candidate,
                    day=day,
                    origin=origin,
                    max_distance_km=radius,
                    time_of_day=time_of_day,
                ): candidate.provider.id
                for candidate in candidates
            }
            for future, provider_id in futures.items():
                try:
                    result = future.result(timeout=self.provider_timeout)
                except FuturesTimeoutError:
                    logger.warning("Ranking timed out for provider_id=%s", provider_id)
                    continue
                except SchedulingError as exc:
                    logger.warning("Skipping provider_id=%s in ranking: %s", provider_id, exc)
                    continue
                except Exception:
                    logger.exception("Ranking failed for provider_id=%s", provider_id)
                    continue
                if result is not None:
                    ranked.append(result)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        ranked.sort(
            key=lambda item: (-item.recommendation_score, -(item.provider.rating or 0.0), item.provider.id)
        )
        return ranked

    def rank(
        self,
        candidates: Sequence[QualifiedProvider],
        *,
        day: Optional[str] = None,
        origin: Optional[Tuple[float, float]] = None,
        max_distance_km: Optional[float] = None,
        limit: int = DEFAULT_LIMIT,
        time_of_day: Optional[str] = None,
    ) -> List[RankedProvider]:
        if limit < 1:
            raise SchedulingValidationError("limit must be positive", field="limit", value=limit)
        ranked = self.evaluate_all(
            candidates,
            day=day,
            origin=origin,
            max_distance_km=max_distance_km,
            time_of_day=time_of_day,
        )
        return ranked[:limit]


ranking_engine = RankingEngine(availability=availability_engine)
