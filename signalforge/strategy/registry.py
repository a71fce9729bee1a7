"""Detector registry — maps detector names to classes.

Used by the signal generator to instantiate the detector list of a profile
and by the backtest CLI to pick a single detector.
"""

from signalforge.errors import InvalidConfigurationError
from signalforge.strategy.base import Detector
from signalforge.strategy.bos import BOSDetector
from signalforge.strategy.choch import CHOCHDetector
from signalforge.strategy.crt import CRTDetector, MomentumCRTDetector
from signalforge.strategy.pure_crt import PureCRTDetector
from signalforge.strategy.scalping import (
    PriceActionScalpingDetector,
    PureScalpingDetector,
)
from signalforge.strategy.smc import SMCDetector


DETECTOR_REGISTRY: dict[str, type] = {
    "crt": CRTDetector,
    "crt_momentum": MomentumCRTDetector,
    "pure_crt": PureCRTDetector,
    "choch": CHOCHDetector,
    "bos": BOSDetector,
    "smc": SMCDetector,
    "pure_scalping": PureScalpingDetector,
    "price_action": PriceActionScalpingDetector,
}


def get_detector(name: str) -> Detector:
    """Look up and instantiate a detector by registry key.

    Raises ``InvalidConfigurationError`` if the name is not registered.
    """
    if name not in DETECTOR_REGISTRY:
        raise InvalidConfigurationError(
            f"Unknown detector '{name}'. "
            f"Available: {', '.join(DETECTOR_REGISTRY.keys())}"
        )
    return DETECTOR_REGISTRY[name]()
