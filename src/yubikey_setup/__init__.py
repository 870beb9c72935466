"""YubiKey setup tool.

Configures GPG, the GPG agent, SSH authentication and Git commit signing
for a YubiKey that already holds an OpenPGP key.
"""

__version__ = "1.0.0"

from .commands import (
    CommandResult,
    CommandRunner,
    DryRunRunner,
    SubprocessRunner,
)
from .context import PlatformProfile, ProvisioningContext, resolve_platform
from .environment import (
    CheckResult,
    EnvironmentReport,
    verify_environment,
)
from .errors import EnvironmentError as EnvError
from .errors import (
    ErrorCategory,
    ErrorLogger,
    GPGOperationError,
    HardwareError,
    IdentifierError,
    PreconditionError,
    RecoveryHint,
    StateError,
    ToolError,
    YubiKeySetupError,
)
from .fallback import candidate_identifiers, try_candidates
from .main import run
from .pipeline import PipelineOutcome, ProvisioningPipeline, Step, StepRecord
from .prompts import MockPrompts, Prompts
from .types import OperatingSystem, Result, StepStatus

__all__ = [
    # Types
    "OperatingSystem",
    "Result",
    "StepStatus",
    # Commands
    "CommandResult",
    "CommandRunner",
    "DryRunRunner",
    "SubprocessRunner",
    # Context
    "PlatformProfile",
    "ProvisioningContext",
    "resolve_platform",
    # Pipeline
    "ProvisioningPipeline",
    "PipelineOutcome",
    "Step",
    "StepRecord",
    "candidate_identifiers",
    "try_candidates",
    # Environment
    "CheckResult",
    "EnvironmentReport",
    "verify_environment",
    # Prompts
    "Prompts",
    "MockPrompts",
    # Errors
    "YubiKeySetupError",
    "ErrorCategory",
    "RecoveryHint",
    "EnvError",
    "PreconditionError",
    "ToolError",
    "IdentifierError",
    "HardwareError",
    "GPGOperationError",
    "StateError",
    "ErrorLogger",
    # Main
    "run",
    "__version__",
]
