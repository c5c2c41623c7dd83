# Key creation parameters and the access policy attached to a key.

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Final, List

SOFTWARE_TOKEN: Final[str] = "software"
SECURE_ENCLAVE_TOKEN: Final[str] = "secure-enclave"


@dataclass(frozen=True, slots=True)
class AccessPolicy:
    """Conditions the store enforces on every private-key use"""

    require_current_enrollment: bool = True
    when_unlocked_this_device_only: bool = True
    exportable: bool = False
    synchronizable: bool = False

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def access_flags(self) -> List[str]:
        """Build the access-control descriptor stored alongside the key.

        Raises ``ValueError`` for policies a secure store cannot honour: keys
        never leave the device and never sync to a backup.
        """
        if self.exportable:
            raise ValueError("exportable private keys are not supported")
        if self.synchronizable:
            raise ValueError("synchronizable private keys are not supported")
        flags = ["private-key-usage"]
        if self.require_current_enrollment:
            flags.append("current-enrollment")
        if self.when_unlocked_this_device_only:
            flags.append("when-unlocked-this-device-only")
        return flags

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AccessPolicy":
        return cls(
            require_current_enrollment=bool(data.get("require_current_enrollment", True)),
            when_unlocked_this_device_only=bool(data.get("when_unlocked_this_device_only", True)),
            exportable=bool(data.get("exportable", False)),
            synchronizable=bool(data.get("synchronizable", False)),
        )


@dataclass(frozen=True, slots=True)
class KeyParameters:
    identity: str
    curve: str = "SECP256R1"
    key_size: int = 256
    token: str = SOFTWARE_TOKEN
    permanent: bool = True
    policy: AccessPolicy = field(default_factory=AccessPolicy)


__all__ = ["AccessPolicy", "KeyParameters", "SECURE_ENCLAVE_TOKEN", "SOFTWARE_TOKEN"]
