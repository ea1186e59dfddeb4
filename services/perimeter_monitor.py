from enum import Enum
from typing import Iterable, Optional

from pydantic import BaseModel

from models.location import LocationSample
from utils.geofence import is_within, nearest_distance_meters


class PerimeterEvent(str, Enum):
    ENTERED = "perimeter_entered"
    EXITED = "perimeter_exited"


class PerimeterTransition(BaseModel):
    event: PerimeterEvent
    within: bool
    distance_meters: float
    accuracy: Optional[float] = None
    low_accuracy: bool = False
    sample: LocationSample


class PerimeterMonitor:
    """
    Tracks whether one session's worker is inside the work zones.

    `observe` returns a transition only when the inside/outside status
    changes, so a worker who drifts out and stays out produces a single
    exit no matter how many samples arrive. The first sample sets the
    baseline and is always reported.
    """

    def __init__(self, low_accuracy_threshold_m: Optional[float] = None):
        self.low_accuracy_threshold_m = low_accuracy_threshold_m
        self.last_known_within: Optional[bool] = None

    def is_low_accuracy(self, sample: LocationSample) -> bool:
        if self.low_accuracy_threshold_m is None or sample.accuracy is None:
            return False
        return sample.accuracy > self.low_accuracy_threshold_m

    def observe(self, sample: LocationSample, zones: Iterable) -> Optional[PerimeterTransition]:
        zones = list(zones)
        within_now = is_within(sample, zones)

        if within_now == self.last_known_within:
            return None
        self.last_known_within = within_now

        # Accuracy is reported, never used to drop a sample
        return PerimeterTransition(
            event=PerimeterEvent.ENTERED if within_now else PerimeterEvent.EXITED,
            within=within_now,
            distance_meters=round(nearest_distance_meters(sample, zones), 1),
            accuracy=sample.accuracy,
            low_accuracy=self.is_low_accuracy(sample),
            sample=sample,
        )
