from typing import Any

from ..config import PipelineConfig
from .adverse_events import AdverseEventsAdapter
from .audit_deadlines import AuditDeadlinesAdapter
from .base import SourceAdapter
from .device_enforcement import DeviceEnforcementAdapter
from .drug_enforcement import DrugEnforcementAdapter
from .payment_schedule import PaymentScheduleAdapter
from .regulatory_notices import RegulatoryNoticesAdapter
from .state_notices import StateNoticesAdapter

ADAPTER_TYPES: dict[str, type[SourceAdapter]] = {
    cls.name: cls
    for cls in (
        DeviceEnforcementAdapter,
        DrugEnforcementAdapter,
        PaymentScheduleAdapter,
        RegulatoryNoticesAdapter,
        AdverseEventsAdapter,
        StateNoticesAdapter,
        AuditDeadlinesAdapter,
    )
}


def build_adapters(config: PipelineConfig, **kwargs: Any) -> dict[str, SourceAdapter]:
    """Instantiate an adapter for every enabled source, keyed by source name."""
    return {name: ADAPTER_TYPES[name](config, **kwargs) for name in config.enabled_sources}


__all__ = [
    "ADAPTER_TYPES",
    "AdverseEventsAdapter",
    "AuditDeadlinesAdapter",
    "DeviceEnforcementAdapter",
    "DrugEnforcementAdapter",
    "PaymentScheduleAdapter",
    "RegulatoryNoticesAdapter",
    "SourceAdapter",
    "StateNoticesAdapter",
    "build_adapters",
]
