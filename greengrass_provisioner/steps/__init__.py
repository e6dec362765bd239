from .step_10_service_account import EnsureServiceAccountStep
from .step_20_acquire_agent import AcquireAgentStep
from .step_30_install_agent import InstallAgentStep
from .step_40_register_service import RegisterServiceStep
from .step_50_start_service import StartServiceStep
from .step_60_verify_connection import VerifyConnectionStep

__all__ = [
    "EnsureServiceAccountStep",
    "AcquireAgentStep",
    "InstallAgentStep",
    "RegisterServiceStep",
    "StartServiceStep",
    "VerifyConnectionStep",
]
